"""
Configuration models for the agent executor.

Defines dataclasses for the unified YAML configuration file.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class CompletionConfig:
    """Configuration for the completion service (OpenAI-compatible)."""
    base_url: str = "http://localhost:8001/v1"
    model: str = "gpt-4o-mini"
    api_key: str = "not-needed"
    temperature: float = 0.0
    max_tokens: int = 2048
    timeout: float = 60.0  # Per-request timeout in seconds
    native_tool_calls: bool = True


@dataclass
class ExecutorConfig:
    """Bounds and recovery settings for the reasoning loop."""
    max_iterations: int = 15
    max_execution_time: Optional[float] = None
    max_transient_retries: int = 2
    parallel_tool_calls: bool = False
    parse_max_retries: int = 1


@dataclass
class SearxngConfig:
    """Configuration for the SearXNG search tool."""
    url: str = "http://localhost:8080/search"
    timeout: int = 30


@dataclass
class ToolsConfig:
    """Configuration for built-in tool endpoints."""
    searxng: SearxngConfig = field(default_factory=SearxngConfig)


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    public_key: str = ""
    secret_key: str = ""
    host: str = ""
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml.
    """
    version: str = "1.0"
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        return self.logging.level
