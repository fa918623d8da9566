"""
Reasoning loop controller and its recovery policy.
"""

from .recovery import FailureKind, RecoveryAction, RecoveryPolicy
from .executor import (
    AgentExecutor,
    ExecutorLimits,
    BUDGET_EXCEEDED_MESSAGE,
    run,
)

__all__ = [
    "FailureKind",
    "RecoveryAction",
    "RecoveryPolicy",
    "AgentExecutor",
    "ExecutorLimits",
    "BUDGET_EXCEEDED_MESSAGE",
    "run",
]
