"""
Data models for the agent executor.
"""

from .config import (
    CompletionConfig,
    ExecutorConfig,
    SearxngConfig,
    ToolsConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)
from .messages import (
    Role,
    RunStatus,
    ToolCall,
    Message,
    FinalAnswer,
    ToolRequests,
    StepDecision,
    RunState,
    RunResult,
)

__all__ = [
    # Config models
    "CompletionConfig",
    "ExecutorConfig",
    "SearxngConfig",
    "ToolsConfig",
    "ServerConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
    # Run models
    "Role",
    "RunStatus",
    "ToolCall",
    "Message",
    "FinalAnswer",
    "ToolRequests",
    "StepDecision",
    "RunState",
    "RunResult",
]
