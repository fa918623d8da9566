"""
Pytest configuration and fixtures for agent executor tests.
"""

import pytest

from agent_executor.errors import CompletionUnavailableError
from agent_executor.gateway import CompletionGateway
from agent_executor.models import FinalAnswer, ToolCall, ToolRequests
from agent_executor.tools import ErrorPolicy, ToolDescriptor, ToolRegistry


class ScriptedGateway(CompletionGateway):
    """
    Gateway that replays a fixed script of decisions.

    Script entries may be decisions, exceptions or callables; an exception
    is raised in place of returning a decision and a callable is called
    to produce one. Every history and tracing context seen is recorded.
    """

    def __init__(self, script=(), repairs=()):
        self.script = list(script)
        self.repairs = list(repairs)
        self.histories = []
        self.prompts = []
        self.tools_seen = []
        self.tracing_seen = []
        self.closed = False

    def next_step(self, history, tools, timeout=None, tracing=None):
        self.histories.append(list(history))
        self.tracing_seen.append(tracing)
        self.tools_seen.append([t.name for t in tools])
        if not self.script:
            raise AssertionError("ScriptedGateway ran out of decisions")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step()
        return step

    def complete(self, prompt, timeout=None, tracing=None):
        self.prompts.append(prompt)
        self.tracing_seen.append(tracing)
        if not self.repairs:
            raise CompletionUnavailableError("no repair scripted")
        return self.repairs.pop(0)

    def close(self):
        self.closed = True


def tool_requests(*calls, content=""):
    """Build a ToolRequests decision from (id, name, arguments) tuples."""
    return ToolRequests(
        calls=[ToolCall(id=call_id, tool_name=name, arguments=args) for call_id, name, args in calls],
        content=content,
    )


def final(text):
    return FinalAnswer(text=text)


@pytest.fixture
def scripted_gateway():
    """Factory for ScriptedGateway instances."""
    return ScriptedGateway


@pytest.fixture
def multiply_tool():
    return ToolDescriptor(
        name="multiply",
        description="Multiply two integers",
        input_schema={"a": int, "b": int},
        invoke=lambda args: args["a"] * args["b"],
    )


@pytest.fixture
def flaky_tool():
    """A tool that always fails, recovered with a fixed message."""

    def _fail(args):
        raise RuntimeError("backend down")

    return ToolDescriptor(
        name="flaky",
        description="Always fails",
        input_schema={"query": str},
        invoke=_fail,
        error_policy=ErrorPolicy.FIXED_MESSAGE,
        fixed_message="Tool unavailable, try something else.",
    )


@pytest.fixture
def registry(multiply_tool):
    return ToolRegistry([multiply_tool])


@pytest.fixture(autouse=True)
def reset_tracing():
    """Keep tracing disabled between tests."""
    from agent_executor.tracing import shutdown_tracing

    shutdown_tracing()
    yield
    shutdown_tracing()
