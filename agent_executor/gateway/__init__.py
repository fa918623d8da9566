"""
Completion gateways: adapt a completion service into next-step decisions.
"""

from .base import CompletionGateway
from .openai_gateway import OpenAIGateway
from .tool_defs import build_tool_definitions, build_tools_prompt_block

__all__ = [
    "CompletionGateway",
    "OpenAIGateway",
    "build_tool_definitions",
    "build_tools_prompt_block",
]
