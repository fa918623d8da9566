"""
Configuration loader for the agent executor.

Loads configuration from a YAML file with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .models import (
    AppConfig,
    CompletionConfig,
    ExecutorConfig,
    LangfuseConfig,
    LoggingConfig,
    SearxngConfig,
    ServerConfig,
    ToolsConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _as_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _parse_completion_config(data: dict) -> CompletionConfig:
    defaults = CompletionConfig()
    return CompletionConfig(
        base_url=data.get("base_url") or defaults.base_url,
        model=data.get("model") or defaults.model,
        api_key=data.get("api_key") or defaults.api_key,
        temperature=float(data.get("temperature", defaults.temperature)),
        max_tokens=int(data.get("max_tokens", defaults.max_tokens)),
        timeout=float(data.get("timeout", defaults.timeout)),
        native_tool_calls=_as_bool(
            data.get("native_tool_calls"), defaults.native_tool_calls
        ),
    )


def _parse_executor_config(data: dict) -> ExecutorConfig:
    """Parse executor bounds, rejecting values the loop cannot honor."""
    defaults = ExecutorConfig()
    executor = ExecutorConfig(
        max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
        max_execution_time=_as_optional_float(data.get("max_execution_time")),
        max_transient_retries=int(
            data.get("max_transient_retries", defaults.max_transient_retries)
        ),
        parallel_tool_calls=_as_bool(
            data.get("parallel_tool_calls"), defaults.parallel_tool_calls
        ),
        parse_max_retries=int(
            data.get("parse_max_retries", defaults.parse_max_retries)
        ),
    )
    if executor.max_iterations < 1:
        raise ValueError("executor.max_iterations must be at least 1")
    if executor.max_transient_retries < 0 or executor.parse_max_retries < 0:
        raise ValueError("executor retry counts must not be negative")
    return executor


def _parse_tools_config(data: dict) -> ToolsConfig:
    searxng_data = data.get("searxng", {}) or {}
    return ToolsConfig(
        searxng=SearxngConfig(
            url=searxng_data.get("url", SearxngConfig.url),
            timeout=int(searxng_data.get("timeout", SearxngConfig.timeout)),
        )
    )


def _parse_server_config(data: dict) -> ServerConfig:
    return ServerConfig(
        host=data.get("host", "0.0.0.0"),
        port=int(data.get("port", 8000)),
        workers=int(data.get("workers", 1)),
        reload=_as_bool(data.get("reload"), False),
    )


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    return LangfuseConfig(
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", ""),
        debug=_as_bool(data.get("debug"), False),
    )


def parse_app_config(raw_config: dict) -> AppConfig:
    """Build an AppConfig from an already-loaded mapping."""
    raw_config = _substitute_env_vars_recursive(raw_config)
    return AppConfig(
        version=str(raw_config.get("version", "1.0")),
        completion=_parse_completion_config(raw_config.get("completion") or {}),
        executor=_parse_executor_config(raw_config.get("executor") or {}),
        tools=_parse_tools_config(raw_config.get("tools") or {}),
        server=_parse_server_config(raw_config.get("server") or {}),
        logging=LoggingConfig(
            level=(raw_config.get("logging") or {}).get("level", "INFO")
        ),
        langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
    )


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load unified application configuration from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified.

    Args:
        path: Path to the YAML configuration file. If None, uses
              CONFIG_PATH env var or the default path (config/config.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig with all configuration loaded. Defaults are used when
        the file does not exist.

    Raises:
        ValueError: If the config is invalid
    """
    global _app_config

    if _app_config is not None and not reload:
        return _app_config

    load_dotenv()

    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        logger.warning("Config not found at %s, using defaults", config_path)
        _app_config = parse_app_config({})
        return _app_config

    logger.info("Loading configuration from %s", config_path)

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")
    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    _app_config = parse_app_config(raw_config)
    logger.debug(
        "Configuration loaded: version=%s, model=%s",
        _app_config.version,
        _app_config.completion.model,
    )
    return _app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
