"""
Structured output parsing with bounded repair.
"""

from .structured import (
    ParseOutcome,
    SchemaParser,
    OutputFixingParser,
    RepairRequester,
    build_repair_requester,
    extract_json_text,
)

__all__ = [
    "ParseOutcome",
    "SchemaParser",
    "OutputFixingParser",
    "RepairRequester",
    "build_repair_requester",
    "extract_json_text",
]
