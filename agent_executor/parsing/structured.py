"""
Structured output validation and repair.

SchemaParser validates raw model output against a pydantic schema.
OutputFixingParser wraps it with bounded, best-effort repair: when parsing
fails it asks the completion service to correct the text, passing along
the malformed output and the validation error.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import StructuredParseError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# (malformed_text, error_detail) -> replacement text
RepairRequester = Callable[[str, str], str]

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)

REPAIR_PROMPT = """Instructions:
--------------
{instructions}
--------------
Completion:
--------------
{completion}
--------------

Above, the Completion did not satisfy the constraints given in the Instructions.
Error:
--------------
{error}
--------------

Please try again. Please only respond with an answer that satisfies the constraints laid out in the Instructions:"""


@dataclass
class ParseOutcome(Generic[T]):
    """Result of validating one payload against a schema."""

    success: bool
    value: Optional[T] = None
    error_detail: Optional[str] = None


def extract_json_text(raw_text: str) -> str:
    """
    Pull the JSON object out of a model response.

    Prefers a fenced code block; otherwise takes the span from the first
    ``{`` to the last ``}``. Returns the stripped text unchanged when no
    object delimiters are found.
    """
    text = raw_text.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


class SchemaParser(Generic[T]):
    """Validates text against a pydantic model."""

    def __init__(self, schema: type[T]):
        self.schema = schema

    def parse(self, raw_text: str) -> ParseOutcome[T]:
        if not raw_text or not raw_text.strip():
            return ParseOutcome(success=False, error_detail="Output is empty")

        candidate = extract_json_text(raw_text)
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            return ParseOutcome(success=False, error_detail=f"Invalid JSON: {e}")

        try:
            value = self.schema.model_validate(data)
        except ValidationError as e:
            return ParseOutcome(success=False, error_detail=str(e))
        return ParseOutcome(success=True, value=value)

    def format_instructions(self) -> str:
        schema = self.schema.model_json_schema()
        return (
            "The output should be formatted as a JSON instance that conforms "
            "to the JSON schema below.\n\n"
            f"```\n{json.dumps(schema)}\n```"
        )


class OutputFixingParser(Generic[T]):
    """
    Parser that asks the completion service to fix invalid output.

    Performs at most ``max_retries`` repair requests per ``parse`` call.
    A successful first parse costs no repair requests at all.
    """

    def __init__(
        self,
        parser: SchemaParser[T],
        repair_requester: RepairRequester,
        max_retries: int = 1,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.parser = parser
        self.repair_requester = repair_requester
        self.max_retries = max_retries
        self.repair_attempts = 0

    def parse(self, raw_text: str) -> T:
        """
        Parse ``raw_text``, repairing it if needed.

        Raises:
            StructuredParseError: Still invalid after all repair attempts.
        """
        self.repair_attempts = 0
        outcome = self.parser.parse(raw_text)

        while not outcome.success and self.repair_attempts < self.max_retries:
            self.repair_attempts += 1
            logger.info(
                "Structured output invalid (attempt %d/%d): %s",
                self.repair_attempts,
                self.max_retries,
                (outcome.error_detail or "")[:200],
            )
            raw_text = self.repair_requester(raw_text, outcome.error_detail or "")
            outcome = self.parser.parse(raw_text)

        if not outcome.success:
            raise StructuredParseError(
                f"Failed to parse {self.parser.schema.__name__} after "
                f"{self.repair_attempts} repair attempt(s): {outcome.error_detail}",
                raw_text=raw_text,
                error_detail=outcome.error_detail or "",
            )
        return outcome.value  # type: ignore[return-value]


def build_repair_requester(
    complete: Callable[[str], str],
    parser: SchemaParser[Any],
) -> RepairRequester:
    """Build a repair requester from a plain ``complete(prompt)`` capability."""
    instructions = parser.format_instructions()

    def request_repair(completion: str, error: str) -> str:
        prompt = REPAIR_PROMPT.format(
            instructions=instructions,
            completion=completion,
            error=error,
        )
        return complete(prompt)

    return request_repair
