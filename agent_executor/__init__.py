"""
Agent Executor - tool-augmented reasoning loop

This package provides:
- A tool registry with schema validation and per-tool error policies
- A completion gateway for OpenAI-compatible services
- Structured output validation with bounded repair
- The bounded reasoning loop controller and its recovery policy
- An HTTP API for running the loop
"""

from .chain import Pipeline
from .errors import (
    AgentExecutorError,
    StructuredParseError,
    UnknownToolError,
    DuplicateToolError,
    ToolArgumentError,
    ToolException,
    ToolExecutionError,
    CompletionUnavailableError,
)
from .executor import AgentExecutor, ExecutorLimits, RecoveryPolicy, run
from .gateway import CompletionGateway, OpenAIGateway
from .models import FinalAnswer, Message, Role, RunResult, RunStatus, ToolCall, ToolRequests
from .parsing import OutputFixingParser, SchemaParser
from .tools import ErrorPolicy, ToolDescriptor, ToolRegistry, tool

__all__ = [
    "AgentExecutor",
    "ExecutorLimits",
    "RecoveryPolicy",
    "run",
    "CompletionGateway",
    "OpenAIGateway",
    "ErrorPolicy",
    "ToolDescriptor",
    "ToolRegistry",
    "tool",
    "SchemaParser",
    "OutputFixingParser",
    "Pipeline",
    "FinalAnswer",
    "ToolRequests",
    "ToolCall",
    "Message",
    "Role",
    "RunResult",
    "RunStatus",
    "AgentExecutorError",
    "StructuredParseError",
    "UnknownToolError",
    "DuplicateToolError",
    "ToolArgumentError",
    "ToolException",
    "ToolExecutionError",
    "CompletionUnavailableError",
]

__version__ = "0.1.0"
