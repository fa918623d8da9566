"""
Tool definitions for completion requests.

Converts ToolDescriptors into OpenAI-style JSON function definitions, and
formats them into the ChatML ``<tools>`` prompt block for models that
expect tool descriptions inside the system prompt instead of the
``tools`` API parameter.
"""

import json
from typing import Sequence

from ..tools.registry import ToolDescriptor


def _parameters_schema(descriptor: ToolDescriptor) -> dict:
    schema = descriptor.schema_model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


def build_tool_definitions(tools: Sequence[ToolDescriptor]) -> list[dict]:
    """Build OpenAI function-calling definitions, one per tool."""
    return [
        {
            "type": "function",
            "function": {
                "name": descriptor.name,
                "description": descriptor.description,
                "parameters": _parameters_schema(descriptor),
            },
        }
        for descriptor in tools
    ]


def build_tools_prompt_block(tools: list[dict]) -> str:
    """
    Format tool definitions into the ChatML ``<tools>`` prompt block.

    Args:
        tools: OpenAI-format tool definitions (from ``build_tool_definitions``).

    Returns:
        Prompt block to append to the system prompt.
    """
    lines = [
        "",
        "# Tools",
        "",
        "You may call one or more functions to assist with the user query.",
        "",
        "You are provided with function signatures within <tools></tools> XML tags:",
        "<tools>",
    ]
    for definition in tools:
        lines.append(json.dumps(definition, separators=(",", ":")))
    lines.append("</tools>")
    lines.append("")
    lines.append(
        "For each function call, return a json object with function name and arguments "
        "within <tool_call></tool_call> XML tags:"
    )
    lines.append("<tool_call>")
    lines.append('{"name": <function-name>, "arguments": <args-json-object>}')
    lines.append("</tool_call>")
    lines.append("When no function is needed, reply with the final answer as plain text.")
    return "\n".join(lines)
