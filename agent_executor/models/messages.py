"""
Message and run-state models for the reasoning loop.

Defines the interaction history (messages and tool calls), the decisions
returned by a completion gateway, and the per-run mutable state owned by
the executor.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Role(Enum):
    """Author of a message in the interaction history."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class RunStatus(Enum):
    """Lifecycle status of a single run."""

    RUNNING = "running"
    FINISHED = "finished"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the completion service."""

    id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "arguments": dict(self.arguments),
        }


@dataclass
class Message:
    """One turn in the interaction history."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    def __post_init__(self):
        if self.role is Role.TOOL_RESULT and not self.tool_call_id:
            raise ValueError("tool_result messages require a tool_call_id")
        if self.role is not Role.TOOL_RESULT and self.tool_call_id:
            raise ValueError("tool_call_id is only valid on tool_result messages")
        if self.tool_calls and self.role is not Role.ASSISTANT:
            raise ValueError("only assistant messages can carry tool calls")

    def to_dict(self) -> dict:
        """Render the message as a JSON-safe dict."""
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data


@dataclass
class FinalAnswer:
    """Gateway decision: the reasoning is complete."""

    text: str


@dataclass
class ToolRequests:
    """Gateway decision: invoke these tools, in order, then continue."""

    calls: list[ToolCall] = field(default_factory=list)
    content: str = ""


StepDecision = Union[FinalAnswer, ToolRequests]


@dataclass
class RunState:
    """
    Mutable state for a single top-level run.

    Created fresh per call and mutated only by the executor. The history is
    append-only and doubles as the run's audit trail.
    """

    max_iterations: int = 15
    max_execution_time: Optional[float] = None
    history: list[Message] = field(default_factory=list)
    iteration_count: int = 0
    started_at: float = field(default_factory=time.monotonic)
    status: RunStatus = RunStatus.RUNNING
    # Tool calls whose result text is a recovery or error observation.
    recovered_calls: set[str] = field(default_factory=set)
    _call_ids: set[str] = field(default_factory=set, repr=False)

    def append(self, message: Message) -> None:
        """Append a message, enforcing the tool-result linkage invariant."""
        if message.role is Role.TOOL_RESULT and message.tool_call_id not in self._call_ids:
            raise ValueError(
                f"tool_result references unknown tool call '{message.tool_call_id}'"
            )
        for call in message.tool_calls:
            self._call_ids.add(call.id)
        self.history.append(message)

    def elapsed(self) -> float:
        """Seconds since the run started."""
        return time.monotonic() - self.started_at

    def remaining_time(self) -> Optional[float]:
        """Seconds left in the time budget, or None when unbounded."""
        if self.max_execution_time is None:
            return None
        return max(0.0, self.max_execution_time - self.elapsed())

    def iterations_exhausted(self) -> bool:
        return self.iteration_count >= self.max_iterations

    def time_exhausted(self) -> bool:
        if self.max_execution_time is None:
            return False
        return self.elapsed() >= self.max_execution_time

    def finish(self) -> None:
        self._transition(RunStatus.FINISHED)

    def abort(self) -> None:
        self._transition(RunStatus.ABORTED)

    def _transition(self, target: RunStatus) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(
                f"Cannot move run from {self.status.value} to {target.value}"
            )
        self.status = target


@dataclass
class RunResult:
    """Result handed back to the caller of a run."""

    final_text: str
    trace: list[Message] = field(default_factory=list)
    status: RunStatus = RunStatus.FINISHED
    iterations: int = 0
    error: Optional[str] = None
    # Validated model when the executor was given an output schema.
    output: Optional[Any] = None

    @property
    def finished(self) -> bool:
        return self.status is RunStatus.FINISHED

    def tools_used(self) -> list[str]:
        """Unique tool names requested during the run, in first-use order."""
        seen: list[str] = []
        for message in self.trace:
            for call in message.tool_calls:
                if call.tool_name not in seen:
                    seen.append(call.tool_name)
        return seen
