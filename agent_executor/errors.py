"""
Error taxonomy for the agent executor.

Registry misuse fails fast at setup time. Tool and completion failures are
classified by the recovery policy; under the default policy budget
exhaustion ends a run as aborted rather than raising.
"""

from typing import Optional


class AgentExecutorError(Exception):
    """Base class for all agent executor errors."""


class StructuredParseError(AgentExecutorError):
    """Structured output could not be validated after all repair attempts."""

    def __init__(self, message: str, raw_text: str = "", error_detail: str = ""):
        super().__init__(message)
        self.raw_text = raw_text
        self.error_detail = error_detail


class RegistryError(AgentExecutorError):
    """Misuse of the tool registry (a configuration error)."""


class UnknownToolError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool '{name}'")
        self.name = name


class DuplicateToolError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


class ToolArgumentError(AgentExecutorError):
    """Arguments for a tool call do not match the tool's input schema."""

    def __init__(self, tool_name: str, detail: str):
        super().__init__(f"Invalid arguments for tool '{tool_name}': {detail}")
        self.tool_name = tool_name
        self.detail = detail


class ToolException(AgentExecutorError):
    """
    Raised by tool implementations for expected, recoverable failures.

    Handled according to the tool's error policy.
    """


class ToolExecutionError(AgentExecutorError):
    """A tool configured with the propagate policy raised."""

    def __init__(self, tool_name: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Tool '{tool_name}' failed{detail}")
        self.tool_name = tool_name
        self.cause = cause


class CompletionUnavailableError(AgentExecutorError):
    """The completion service is unreachable or returned an unusable decision."""


class BudgetExceededError(AgentExecutorError):
    """
    Iteration or time budget exhausted.

    Raised out of a run only when the recovery policy says so; the default
    policy reports it as an aborted status.
    """
