"""
Error/recovery policy for the reasoning loop.

Classifies failures and decides whether the loop retries the current
iteration, carries on, aborts the run or lets the error escape to the
caller. Keeps that decision out of the executor's main flow.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import (
    BudgetExceededError,
    CompletionUnavailableError,
    RegistryError,
    StructuredParseError,
    ToolArgumentError,
    ToolException,
    ToolExecutionError,
    UnknownToolError,
)

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    TRANSIENT = "transient"
    TOOL = "tool"
    TOOL_FATAL = "tool_fatal"
    STRUCTURED_OUTPUT = "structured_output"
    BUDGET = "budget"
    CONFIGURATION = "configuration"


class RecoveryAction(Enum):
    RETRY = "retry"
    CONTINUE = "continue"
    ABORT = "abort"
    RAISE = "raise"


@dataclass
class RecoveryPolicy:
    """
    Decides continue/retry/abort for classified failures.

    Transient completion failures are retried up to
    ``max_transient_retries`` times within the same iteration.
    """

    max_transient_retries: int = 2

    def classify(self, error: BaseException) -> FailureKind:
        if isinstance(error, CompletionUnavailableError):
            return FailureKind.TRANSIENT
        if isinstance(error, ToolExecutionError):
            return FailureKind.TOOL_FATAL
        if isinstance(error, (ToolArgumentError, UnknownToolError, ToolException)):
            # An unknown name at run time comes from the model, not from setup.
            return FailureKind.TOOL
        if isinstance(error, StructuredParseError):
            return FailureKind.STRUCTURED_OUTPUT
        if isinstance(error, BudgetExceededError):
            return FailureKind.BUDGET
        if isinstance(error, RegistryError):
            return FailureKind.CONFIGURATION
        return FailureKind.TOOL_FATAL

    def decide(self, kind: FailureKind, attempt: int = 0) -> RecoveryAction:
        """
        Args:
            kind: Classified failure.
            attempt: Retries already spent on this iteration.
        """
        if kind is FailureKind.TRANSIENT:
            if attempt < self.max_transient_retries:
                return RecoveryAction.RETRY
            logger.warning("Transient failure persisted after %d retries", attempt)
            return RecoveryAction.ABORT
        if kind is FailureKind.TOOL:
            return RecoveryAction.CONTINUE
        if kind in (FailureKind.STRUCTURED_OUTPUT, FailureKind.BUDGET):
            return RecoveryAction.ABORT
        return RecoveryAction.RAISE

    def handle(self, error: BaseException, attempt: int = 0) -> RecoveryAction:
        return self.decide(self.classify(error), attempt)
