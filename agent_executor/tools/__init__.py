"""
Agent Executor Tools Package

Registry and built-in tools:
- calculate: Mathematical expression evaluation (SymPy)
- web_search: Web search via SearXNG
"""

from typing import Optional

from ..models import ToolsConfig
from .registry import (
    ErrorPolicy,
    ToolDescriptor,
    ToolOutcome,
    ToolRegistry,
    schema_from_mapping,
    tool,
)
from .math_solver import CALCULATE_TOOL, calculate
from .search import make_web_search_tool, search, format_results_for_llm as format_search_results


def build_default_registry(tools_config: Optional[ToolsConfig] = None) -> ToolRegistry:
    """Create a fresh registry holding the built-in tools."""
    tools_config = tools_config or ToolsConfig()
    return ToolRegistry([CALCULATE_TOOL, make_web_search_tool(tools_config.searxng)])


__all__ = [
    "ErrorPolicy",
    "ToolDescriptor",
    "ToolOutcome",
    "ToolRegistry",
    "schema_from_mapping",
    "tool",
    "calculate",
    "search",
    "format_search_results",
    "make_web_search_tool",
    "build_default_registry",
]
