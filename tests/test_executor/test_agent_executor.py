"""
Tests for the reasoning loop controller.

Completion decisions come from a scripted gateway so every run is
deterministic.
"""

import threading
import time

import pytest
from pydantic import BaseModel
from unittest.mock import MagicMock, patch

from conftest import ScriptedGateway, final, tool_requests

from agent_executor.errors import (
    BudgetExceededError,
    CompletionUnavailableError,
    StructuredParseError,
    ToolExecutionError,
)
from agent_executor.executor import (
    BUDGET_EXCEEDED_MESSAGE,
    AgentExecutor,
    ExecutorLimits,
    FailureKind,
    RecoveryAction,
    RecoveryPolicy,
    run,
)
from agent_executor.models import Role, RunStatus
from agent_executor.tools import ErrorPolicy, ToolDescriptor, ToolRegistry
from agent_executor.tracing import TracingContext


def weather_tool():
    return ToolDescriptor(
        name="get_weather",
        description="Current weather for a city",
        input_schema={"city": str},
        invoke=lambda args: "Sunny, 20C" if args["city"] == "Paris" else "Unknown",
    )


class StrictPolicy(RecoveryPolicy):
    """Raises instead of aborting on budget and structured output failures."""

    def decide(self, kind, attempt=0):
        if kind in (FailureKind.BUDGET, FailureKind.STRUCTURED_OUTPUT):
            return RecoveryAction.RAISE
        return super().decide(kind, attempt)


class TestScenarios:
    """End-to-end loop behavior."""

    def test_single_tool_then_answer(self):
        gateway = ScriptedGateway([
            tool_requests(("c1", "get_weather", {"city": "Paris"})),
            final("It is sunny in Paris"),
        ])
        executor = AgentExecutor(gateway, ToolRegistry([weather_tool()]))

        result = executor.run("What's the weather in Paris?", "You are helpful.")

        assert result.final_text == "It is sunny in Paris"
        assert result.status is RunStatus.FINISHED
        assert result.iterations == 2
        assert result.error is None
        assert [m.role for m in result.trace] == [
            Role.SYSTEM,
            Role.USER,
            Role.ASSISTANT,
            Role.TOOL_RESULT,
            Role.ASSISTANT,
        ]
        assert result.trace[3].content == "Sunny, 20C"
        assert result.trace[3].tool_call_id == "c1"

    def test_iteration_cap_aborts_with_fallback(self):
        gateway = ScriptedGateway([
            tool_requests(("c1", "get_weather", {"city": "Paris"})),
            tool_requests(("c2", "get_weather", {"city": "Paris"})),
            tool_requests(("c3", "get_weather", {"city": "Paris"})),
        ])
        executor = AgentExecutor(
            gateway, ToolRegistry([weather_tool()]), limits=ExecutorLimits(max_iterations=2)
        )

        result = executor.run("Keep checking the weather")

        assert result.status is RunStatus.ABORTED
        assert len(gateway.histories) == 2
        assert result.iterations == 2
        assert result.final_text
        assert "Sunny, 20C" in result.final_text

    def test_direct_answer_without_tools(self, registry):
        gateway = ScriptedGateway([final("Hello!")])

        result = AgentExecutor(gateway, registry).run("Hi")

        assert result.final_text == "Hello!"
        assert result.iterations == 1
        assert len(result.trace) == 3

    def test_history_visible_to_gateway(self, registry):
        gateway = ScriptedGateway([
            tool_requests(("c1", "multiply", {"a": 6, "b": 7})),
            final("42"),
        ])

        AgentExecutor(gateway, registry).run("6 * 7?", "Be brief.")

        first, second = gateway.histories
        assert [m.content for m in first] == ["Be brief.", "6 * 7?"]
        assert second[-1].role is Role.TOOL_RESULT
        assert second[-1].content == "42"
        assert gateway.tools_seen[0] == ["multiply"]


class TestBudget:
    """Iteration and time bounds."""

    @pytest.mark.parametrize("max_iterations", [1, 3, 5])
    def test_gateway_calls_never_exceed_cap(self, registry, max_iterations):
        script = [
            tool_requests((f"c{i}", "multiply", {"a": i, "b": 2})) for i in range(10)
        ]
        gateway = ScriptedGateway(script)
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(max_iterations=max_iterations)
        )

        result = executor.run("loop forever")

        assert len(gateway.histories) == max_iterations
        assert result.status is RunStatus.ABORTED

    def test_fallback_prefers_assistant_text(self, registry):
        gateway = ScriptedGateway([
            tool_requests(("c1", "multiply", {"a": 2, "b": 2}), content="Let me multiply."),
        ])
        executor = AgentExecutor(gateway, registry, limits=ExecutorLimits(max_iterations=1))

        result = executor.run("2*2")

        assert result.final_text == "Let me multiply."

    def test_fallback_ignores_recovered_results(self, flaky_tool):
        gateway = ScriptedGateway([tool_requests(("c1", "flaky", {"query": "x"}))])
        executor = AgentExecutor(
            gateway, ToolRegistry([flaky_tool]), limits=ExecutorLimits(max_iterations=1)
        )

        result = executor.run("search")

        assert result.final_text == BUDGET_EXCEEDED_MESSAGE
        assert result.status is RunStatus.ABORTED

    def test_time_budget(self):
        def _slow(args):
            time.sleep(0.05)
            return "done"

        registry = ToolRegistry([
            ToolDescriptor(name="slow", description="Slow", input_schema={}, invoke=_slow)
        ])
        script = [tool_requests((f"c{i}", "slow", {})) for i in range(50)]
        gateway = ScriptedGateway(script)
        executor = AgentExecutor(
            gateway,
            registry,
            limits=ExecutorLimits(max_iterations=50, max_execution_time=0.1),
        )

        result = executor.run("take your time")

        assert result.status is RunStatus.ABORTED
        assert len(gateway.histories) < 50

    def test_time_runs_out_during_completion(self, registry):
        def _timed_out():
            time.sleep(0.4)
            raise CompletionUnavailableError("Request timed out")

        gateway = ScriptedGateway([
            tool_requests(("c1", "multiply", {"a": 6, "b": 7}), content="Working on it: 6*7"),
            _timed_out,
        ])
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(max_execution_time=0.3)
        )

        result = executor.run("6*7")

        assert result.status is RunStatus.ABORTED
        assert result.final_text == "Working on it: 6*7"
        assert result.error is None
        assert len(gateway.histories) == 2

    def test_budget_abort_consults_recovery_policy(self, registry):
        policy = RecoveryPolicy()
        gateway = ScriptedGateway([tool_requests(("c1", "multiply", {"a": 1, "b": 1}))])
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(max_iterations=1), recovery_policy=policy
        )

        with patch.object(policy, "handle", wraps=policy.handle) as handle:
            result = executor.run("loop")

        assert result.status is RunStatus.ABORTED
        (error,) = [call.args[0] for call in handle.call_args_list]
        assert isinstance(error, BudgetExceededError)

    def test_policy_may_raise_on_budget(self, registry):
        gateway = ScriptedGateway([tool_requests(("c1", "multiply", {"a": 1, "b": 1}))])
        executor = AgentExecutor(
            gateway,
            registry,
            limits=ExecutorLimits(max_iterations=1),
            recovery_policy=StrictPolicy(),
        )

        with pytest.raises(BudgetExceededError, match="Iteration limit of 1"):
            executor.run("loop")

    def test_limits_validated(self):
        with pytest.raises(ValueError):
            ExecutorLimits(max_iterations=0)
        with pytest.raises(ValueError):
            ExecutorLimits(max_execution_time=0)


class TestToolDispatch:
    """Ordering, recovery and return_direct."""

    def test_results_follow_request_order(self, registry):
        gateway = ScriptedGateway([
            tool_requests(
                ("c1", "multiply", {"a": 1, "b": 1}),
                ("c2", "multiply", {"a": 2, "b": 2}),
                ("c3", "multiply", {"a": 3, "b": 3}),
            ),
            final("done"),
        ])

        result = AgentExecutor(gateway, registry).run("squares")

        results = [m for m in result.trace if m.role is Role.TOOL_RESULT]
        assert [m.tool_call_id for m in results] == ["c1", "c2", "c3"]
        assert [m.content for m in results] == ["1", "4", "9"]
        request_index = next(i for i, m in enumerate(result.trace) if m.tool_calls)
        assert all(result.trace.index(m) > request_index for m in results)

    def test_parallel_results_follow_request_order(self):
        release = threading.Event()

        def _first(args):
            release.wait(timeout=2)
            return "first"

        def _second(args):
            release.set()
            return "second"

        registry = ToolRegistry([
            ToolDescriptor(name="first", description="", input_schema={}, invoke=_first),
            ToolDescriptor(name="second", description="", input_schema={}, invoke=_second),
        ])
        gateway = ScriptedGateway([
            tool_requests(("c1", "first", {}), ("c2", "second", {})),
            final("done"),
        ])
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(parallel_tool_calls=True)
        )

        result = executor.run("both")

        results = [m for m in result.trace if m.role is Role.TOOL_RESULT]
        assert [(m.tool_call_id, m.content) for m in results] == [
            ("c1", "first"),
            ("c2", "second"),
        ]

    def test_recovered_failure_continues_loop(self, flaky_tool):
        gateway = ScriptedGateway([
            tool_requests(("c1", "flaky", {"query": "x"})),
            final("I could not search."),
        ])

        result = AgentExecutor(gateway, ToolRegistry([flaky_tool])).run("search x")

        assert result.status is RunStatus.FINISHED
        assert result.trace[3].content == "Tool unavailable, try something else."

    def test_invalid_arguments_become_observation(self, registry):
        gateway = ScriptedGateway([
            tool_requests(("c1", "multiply", {"a": "six", "b": 7})),
            tool_requests(("c2", "multiply", {"a": 6, "b": 7})),
            final("42"),
        ])

        result = AgentExecutor(gateway, registry).run("6 * 7")

        observation = result.trace[3].content
        assert observation.startswith("Error: invalid arguments for tool 'multiply'")
        assert result.trace[5].content == "42"
        assert result.final_text == "42"

    def test_unknown_tool_becomes_observation(self, registry):
        gateway = ScriptedGateway([
            tool_requests(("c1", "divide", {"a": 1, "b": 2})),
            final("ok"),
        ])

        result = AgentExecutor(gateway, registry).run("1/2")

        assert result.trace[3].content == (
            "Error: 'divide' is not a valid tool, try one of [multiply]."
        )

    def test_propagate_policy_escapes_run(self):
        def _fail(args):
            raise RuntimeError("disk full")

        registry = ToolRegistry([
            ToolDescriptor(name="write", description="", input_schema={}, invoke=_fail)
        ])
        gateway = ScriptedGateway([tool_requests(("c1", "write", {}))])

        with pytest.raises(ToolExecutionError):
            AgentExecutor(gateway, registry).run("write it")

    def test_return_direct_short_circuits(self):
        gateway = ScriptedGateway([
            tool_requests(("c1", "lookup", {}), ("c2", "lookup_more", {})),
            final("never reached"),
        ])
        more = MagicMock(return_value="more")
        registry = ToolRegistry([
            ToolDescriptor(
                name="lookup",
                description="",
                input_schema={},
                invoke=lambda args: "Order #123 shipped",
                return_direct=True,
            ),
            ToolDescriptor(name="lookup_more", description="", input_schema={}, invoke=more),
        ])

        result = AgentExecutor(gateway, registry).run("where is my order?")

        assert result.final_text == "Order #123 shipped"
        assert result.status is RunStatus.FINISHED
        assert len(gateway.histories) == 1
        assert result.trace[-1].role is Role.TOOL_RESULT
        more.assert_not_called()

    def test_parallel_return_direct_waits_for_siblings(self):
        sibling_done = threading.Event()

        def _slow(args):
            time.sleep(0.1)
            sibling_done.set()
            return "slow result"

        registry = ToolRegistry([
            ToolDescriptor(
                name="lookup",
                description="",
                input_schema={},
                invoke=lambda args: "Order #123 shipped",
                return_direct=True,
            ),
            ToolDescriptor(name="slow", description="", input_schema={}, invoke=_slow),
        ])
        gateway = ScriptedGateway([
            tool_requests(("c1", "lookup", {}), ("c2", "slow", {})),
            final("never reached"),
        ])
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(parallel_tool_calls=True)
        )

        result = executor.run("where is my order?")

        assert sibling_done.is_set()
        assert result.status is RunStatus.FINISHED
        assert result.final_text == "Order #123 shipped"
        results = [m for m in result.trace if m.role is Role.TOOL_RESULT]
        assert [(m.tool_call_id, m.content) for m in results] == [
            ("c1", "Order #123 shipped"),
            ("c2", "slow result"),
        ]
        assert len(gateway.histories) == 1

    def test_failing_error_handler_escapes_as_tool_error(self):
        def _fail(args):
            raise RuntimeError("backend down")

        def _bad_handler(error):
            raise KeyError("handler bug")

        registry = ToolRegistry([
            ToolDescriptor(
                name="search",
                description="",
                input_schema={},
                invoke=_fail,
                error_policy=ErrorPolicy.CUSTOM_HANDLER,
                error_handler=_bad_handler,
            )
        ])
        gateway = ScriptedGateway([tool_requests(("c1", "search", {}))])

        with pytest.raises(ToolExecutionError) as exc_info:
            AgentExecutor(gateway, registry).run("search")

        assert isinstance(exc_info.value.__cause__, KeyError)


class TestCompletionFailures:
    """Transient completion failures and recovery."""

    def test_transient_failure_retried_within_iteration(self, registry):
        gateway = ScriptedGateway([
            CompletionUnavailableError("503"),
            final("recovered"),
        ])
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(max_transient_retries=1)
        )

        result = executor.run("hi")

        assert result.final_text == "recovered"
        assert result.iterations == 1

    def test_persistent_failure_aborts(self, registry):
        gateway = ScriptedGateway([CompletionUnavailableError("503")] * 3)
        executor = AgentExecutor(
            gateway, registry, limits=ExecutorLimits(max_transient_retries=2)
        )

        result = executor.run("hi")

        assert result.status is RunStatus.ABORTED
        assert "503" in result.error
        assert len(gateway.histories) == 3

    def test_run_tracing_context_reaches_gateway(self, registry):
        tracing = TracingContext(execution_id="run-test")
        gateway = ScriptedGateway(
            [
                tool_requests(("c1", "multiply", {"a": 2, "b": 3})),
                final("six"),
            ],
            repairs=['{"city": "Paris", "temperature": 20}'],
        )
        executor = AgentExecutor(
            gateway, registry, output_schema=Answer, tracing_context=tracing
        )

        executor.run("2*3")

        # Two decisions and one repair completion.
        assert len(gateway.tracing_seen) == 3
        assert all(seen is tracing for seen in gateway.tracing_seen)


class Answer(BaseModel):
    city: str
    temperature: int


class TestStructuredOutput:
    """Final answers validated against an output schema."""

    def test_valid_structured_answer(self, registry):
        gateway = ScriptedGateway([final('{"city": "Paris", "temperature": 20}')])
        executor = AgentExecutor(gateway, registry, output_schema=Answer)

        result = executor.run("weather?")

        assert result.output == Answer(city="Paris", temperature=20)
        assert result.status is RunStatus.FINISHED
        assert gateway.prompts == []

    def test_repaired_structured_answer(self, registry):
        gateway = ScriptedGateway(
            [final("Paris, 20 degrees")],
            repairs=['{"city": "Paris", "temperature": 20}'],
        )
        executor = AgentExecutor(gateway, registry, output_schema=Answer)

        result = executor.run("weather?")

        assert result.output.city == "Paris"
        assert len(gateway.prompts) == 1
        assert "Paris, 20 degrees" in gateway.prompts[0]

    def test_unrepairable_answer_aborts(self, registry):
        gateway = ScriptedGateway(
            [final("no idea")],
            repairs=["still no idea", "nope"],
        )
        executor = AgentExecutor(
            gateway, registry, output_schema=Answer, parse_max_retries=2
        )

        result = executor.run("weather?")

        assert result.status is RunStatus.ABORTED
        assert result.final_text == "no idea"
        assert result.error
        assert len(gateway.prompts) == 2

    def test_unavailable_repair_aborts_as_parse_failure(self, registry):
        gateway = ScriptedGateway([final("no idea")])
        executor = AgentExecutor(gateway, registry, output_schema=Answer)

        result = executor.run("weather?")

        assert result.status is RunStatus.ABORTED
        assert result.final_text == "no idea"
        assert result.error.startswith("Repair request failed")

    def test_policy_may_raise_on_parse_failure(self, registry):
        gateway = ScriptedGateway([final("no idea")], repairs=["still no idea"])
        executor = AgentExecutor(
            gateway, registry, output_schema=Answer, recovery_policy=StrictPolicy()
        )

        with pytest.raises(StructuredParseError):
            executor.run("weather?")


class TestRunFunction:
    """Tests for the module-level run() entry point."""

    def test_accepts_descriptor_list(self):
        gateway = ScriptedGateway([
            tool_requests(("c1", "get_weather", {"city": "Paris"})),
            final("It is sunny in Paris"),
        ])

        result = run(
            "Weather in Paris?",
            tool_set=[weather_tool()],
            limits=ExecutorLimits(max_iterations=3),
            gateway=gateway,
        )

        assert result.final_text == "It is sunny in Paris"
        assert gateway.closed is False

    @patch("agent_executor.executor.executor.OpenAIGateway")
    def test_closes_gateway_it_creates(self, mock_gateway_cls, registry):
        gateway = ScriptedGateway([final("hi")])
        mock_gateway_cls.return_value = gateway

        result = run("hello", tool_set=registry)

        assert result.final_text == "hi"
        assert gateway.closed is True

    def test_independent_runs_share_registry(self, registry):
        def _run(text):
            gateway = ScriptedGateway([
                tool_requests(("c1", "multiply", {"a": 2, "b": 3})),
                final(text),
            ])
            return AgentExecutor(gateway, registry).run(text)

        first, second = _run("one"), _run("two")

        assert first.final_text == "one"
        assert second.final_text == "two"
        assert len(first.trace) == len(second.trace) == 5
