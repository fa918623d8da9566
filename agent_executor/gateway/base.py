"""
Completion Gateway contract.

A gateway adapts an external completion service into a single decision:
given the history so far and the available tools, either answer or ask for
one or more tool calls. Gateways never execute tools or mutate history.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..models import Message, StepDecision
from ..tools.registry import ToolDescriptor
from ..tracing import TracingContext


class CompletionGateway(ABC):
    """Decides the next step of a run from a snapshot of its history."""

    @abstractmethod
    def next_step(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        timeout: Optional[float] = None,
        tracing: Optional[TracingContext] = None,
    ) -> StepDecision:
        """
        Decide the next step.

        Args:
            history: Messages so far (read-only snapshot).
            tools: Tools the model may request.
            timeout: Seconds the call may take before it is abandoned.
            tracing: Tracing context of the calling run, if any.

        Returns:
            FinalAnswer or ToolRequests.

        Raises:
            CompletionUnavailableError: Service unreachable, timed out or
                returned a decision that cannot be parsed.
        """

    @abstractmethod
    def complete(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        tracing: Optional[TracingContext] = None,
    ) -> str:
        """Plain single-prompt completion, used for structured output repair."""

    def close(self) -> None:
        """Release any underlying client resources."""
