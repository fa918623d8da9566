"""
Shared collaborators for API routes.

The registry and gateway are created once and shared read-only by every
request; each request gets its own run state inside the executor.
"""

from typing import Optional

from ..config import config
from ..gateway import CompletionGateway, OpenAIGateway
from ..tools import ToolRegistry, build_default_registry

_registry: Optional[ToolRegistry] = None
_gateway: Optional[CompletionGateway] = None


def get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry(config.tools)
    return _registry


def get_gateway() -> CompletionGateway:
    global _gateway
    if _gateway is None:
        _gateway = OpenAIGateway(config.completion)
    return _gateway


def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        _gateway.close()
        _gateway = None
