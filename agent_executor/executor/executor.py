"""
Reasoning loop controller.

Drives the bounded think -> act -> observe cycle: asks the completion
gateway for the next step, dispatches requested tool calls through the
registry, appends their results to the history and repeats until a final
answer, the iteration cap or the time budget is reached.

Each run owns a fresh RunState, so one executor (and its registry and
gateway) can serve independent runs in parallel.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from pydantic import BaseModel

from ..config import config
from ..errors import (
    BudgetExceededError,
    CompletionUnavailableError,
    StructuredParseError,
    ToolArgumentError,
    UnknownToolError,
)
from ..gateway import CompletionGateway, OpenAIGateway
from ..models import (
    ExecutorConfig,
    FinalAnswer,
    Message,
    Role,
    RunResult,
    RunState,
    ToolCall,
    ToolRequests,
)
from ..parsing import OutputFixingParser, SchemaParser, build_repair_requester
from ..tools import ToolDescriptor, ToolOutcome, ToolRegistry, build_default_registry
from ..tracing import TracingContext
from .recovery import RecoveryAction, RecoveryPolicy

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED_MESSAGE = (
    "Agent stopped: could not complete the request within the "
    "iteration or time budget."
)
COMPLETION_FAILED_MESSAGE = (
    "Agent stopped: the completion service was unavailable."
)
INVALID_ARGUMENTS_OBSERVATION = (
    "Error: invalid arguments for tool '{name}': {detail}. "
    "Check the tool's parameters and try again."
)
UNKNOWN_TOOL_OBSERVATION = (
    "Error: '{name}' is not a valid tool, try one of [{available}]."
)


@dataclass
class ExecutorLimits:
    """Resource bounds for a run."""

    max_iterations: int = 15
    max_execution_time: Optional[float] = None  # seconds
    max_transient_retries: int = 2
    parallel_tool_calls: bool = False

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_execution_time is not None and self.max_execution_time <= 0:
            raise ValueError("max_execution_time must be positive")

    @classmethod
    def from_config(cls, executor_config: ExecutorConfig) -> "ExecutorLimits":
        return cls(
            max_iterations=executor_config.max_iterations,
            max_execution_time=executor_config.max_execution_time,
            max_transient_retries=executor_config.max_transient_retries,
            parallel_tool_calls=executor_config.parallel_tool_calls,
        )


class AgentExecutor:
    """
    Runs the tool-augmented reasoning loop.

    Per iteration:
        1. Check iteration and time bounds; abort with a partial answer
           when either is exhausted
        2. Ask the gateway for the next step (transient failures are
           retried without consuming an iteration)
        3. Final answer: validate against the output schema if one is set,
           then finish
        4. Tool requests: record them, invoke each through the registry and
           append one tool_result per call in request order
        5. A return_direct tool result finishes the run immediately
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        registry: ToolRegistry,
        limits: Optional[ExecutorLimits] = None,
        recovery_policy: Optional[RecoveryPolicy] = None,
        output_schema: Optional[type[BaseModel]] = None,
        parse_max_retries: int = 1,
        tracing_context: Optional[TracingContext] = None,
    ):
        self.gateway = gateway
        self.registry = registry
        self.limits = limits or ExecutorLimits()
        self.recovery_policy = recovery_policy or RecoveryPolicy(
            max_transient_retries=self.limits.max_transient_retries
        )
        self.output_schema = output_schema
        self.parse_max_retries = parse_max_retries
        self.tracing_context = tracing_context

    def run(
        self,
        user_text: str,
        system_instructions: str = "",
        execution_id: Optional[str] = None,
    ) -> RunResult:
        """
        Run the loop for one request.

        Args:
            user_text: The user's request.
            system_instructions: System prompt seeded ahead of the request.
            execution_id: Optional ID for correlating logs and traces.

        Returns:
            RunResult with the final text, full trace and status. Budget
            exhaustion and persistent completion failures come back as an
            aborted result.

        Raises:
            ToolExecutionError: A tool with the propagate policy failed.
            AgentExecutorError: Any other failure the recovery policy
                decides to raise rather than abort on.
        """
        execution_id = execution_id or f"run-{uuid.uuid4().hex[:8]}"
        tracing = self.tracing_context or TracingContext(execution_id=execution_id)
        state = RunState(
            max_iterations=self.limits.max_iterations,
            max_execution_time=self.limits.max_execution_time,
        )
        state.append(Message(role=Role.SYSTEM, content=system_instructions))
        state.append(Message(role=Role.USER, content=user_text))

        logger.info("[%s] Starting run (max_iterations=%d)", execution_id, state.max_iterations)
        tracing.start_trace(name="agent_run", query=user_text)
        status = "error"
        try:
            result = self._run_loop(state, tracing, execution_id)
            status = result.status.value
            return result
        finally:
            tracing.end_trace(
                output=state.history[-1].content if state.history else None,
                status=status,
            )
            self._log_trace_summary(state, execution_id)

    def _run_loop(
        self, state: RunState, tracing: TracingContext, execution_id: str
    ) -> RunResult:
        tools = list(self.registry.all_tools().values())

        while True:
            if state.iterations_exhausted() or state.time_exhausted():
                logger.warning(
                    "[%s] Budget exhausted after %d iteration(s), %.1fs",
                    execution_id,
                    state.iteration_count,
                    state.elapsed(),
                )
                return self._abort_for(
                    state, self._budget_error(state), self._best_partial_answer(state)
                )

            try:
                with tracing.span(
                    name=f"step_{state.iteration_count + 1}",
                    metadata={"execution_id": execution_id},
                ):
                    decision = self._next_step(state, tools, tracing, execution_id)
            except CompletionUnavailableError as e:
                if state.time_exhausted():
                    # The request was cut short by the time budget, not an outage.
                    logger.warning(
                        "[%s] Time budget ran out during completion request", execution_id
                    )
                    return self._abort_for(
                        state, self._budget_error(state), self._best_partial_answer(state)
                    )
                return self._abort_for(
                    state,
                    e,
                    COMPLETION_FAILED_MESSAGE,
                    error_text=str(e),
                    attempt=self.recovery_policy.max_transient_retries,
                )
            state.iteration_count += 1

            if isinstance(decision, FinalAnswer):
                return self._finish_with_answer(state, decision.text, tracing, execution_id)

            direct_answer = self._dispatch(state, decision, tracing)
            if direct_answer is not None:
                logger.info("[%s] return_direct tool produced the final answer", execution_id)
                state.finish()
                return self._result(state, direct_answer)

    def _next_step(
        self,
        state: RunState,
        tools: list[ToolDescriptor],
        tracing: TracingContext,
        execution_id: str,
    ):
        attempt = 0
        while True:
            try:
                return self.gateway.next_step(
                    list(state.history),
                    tools,
                    timeout=state.remaining_time(),
                    tracing=tracing,
                )
            except CompletionUnavailableError as e:
                action = self.recovery_policy.handle(e, attempt)
                if action is not RecoveryAction.RETRY or state.time_exhausted():
                    logger.error("[%s] Completion unavailable: %s", execution_id, e)
                    raise
                attempt += 1
                logger.warning(
                    "[%s] Completion failed, retrying iteration %d (%d/%d): %s",
                    execution_id,
                    state.iteration_count + 1,
                    attempt,
                    self.recovery_policy.max_transient_retries,
                    e,
                )

    def _dispatch(
        self, state: RunState, decision: ToolRequests, tracing: TracingContext
    ) -> Optional[str]:
        """Invoke the requested tools; return a return_direct result if any."""
        calls = list(decision.calls)
        state.append(
            Message(role=Role.ASSISTANT, content=decision.content, tool_calls=calls)
        )

        if self.limits.parallel_tool_calls and len(calls) > 1:
            with ThreadPoolExecutor(max_workers=len(calls)) as pool:
                futures = [pool.submit(self._invoke, call, tracing) for call in calls]
                # Results are collected in request order; the pool waits for
                # every sibling on exit even if one of them raises.
                outcomes = [future.result() for future in futures]
            direct_answer = None
            for call, outcome in zip(calls, outcomes):
                self._record(state, call, outcome)
                if outcome.return_direct and direct_answer is None:
                    direct_answer = outcome.result_text
            return direct_answer

        for call in calls:
            outcome = self._invoke(call, tracing)
            self._record(state, call, outcome)
            if outcome.return_direct:
                return outcome.result_text
        return None

    def _invoke(self, call: ToolCall, tracing: TracingContext) -> ToolOutcome:
        with tracing.span(name=f"tool:{call.tool_name}", input=dict(call.arguments)) as span:
            try:
                outcome = self.registry.invoke(call.tool_name, call.arguments)
            except (ToolArgumentError, UnknownToolError) as e:
                if self.recovery_policy.handle(e) is not RecoveryAction.CONTINUE:
                    raise
                logger.warning("Rejected call to '%s': %s", call.tool_name, e)
                span.set_status("error")
                return ToolOutcome(
                    result_text=self._observation_for(e), recovered=True, error=str(e)
                )
            except Exception:
                span.set_status("error")
                raise

            if outcome.recovered:
                span.set_status("error")
            span.set_output({"result": outcome.result_text[:500]})
            return outcome

    def _observation_for(self, error: Exception) -> str:
        if isinstance(error, ToolArgumentError):
            return INVALID_ARGUMENTS_OBSERVATION.format(
                name=error.tool_name, detail=error.detail
            )
        return UNKNOWN_TOOL_OBSERVATION.format(
            name=getattr(error, "name", ""),
            available=", ".join(self.registry.names()),
        )

    @staticmethod
    def _record(state: RunState, call: ToolCall, outcome: ToolOutcome) -> None:
        if outcome.recovered:
            state.recovered_calls.add(call.id)
        state.append(
            Message(role=Role.TOOL_RESULT, content=outcome.result_text, tool_call_id=call.id)
        )

    def _finish_with_answer(
        self, state: RunState, text: str, tracing: TracingContext, execution_id: str
    ) -> RunResult:
        state.append(Message(role=Role.ASSISTANT, content=text))
        if self.output_schema is None:
            state.finish()
            return self._result(state, text)

        parser = OutputFixingParser(
            SchemaParser(self.output_schema),
            build_repair_requester(
                lambda prompt: self.gateway.complete(
                    prompt, timeout=state.remaining_time(), tracing=tracing
                ),
                SchemaParser(self.output_schema),
            ),
            max_retries=self.parse_max_retries,
        )
        try:
            value = parser.parse(text)
        except CompletionUnavailableError as e:
            parse_error = StructuredParseError(f"Repair request failed: {e}", raw_text=text)
            parse_error.__cause__ = e
        except StructuredParseError as e:
            parse_error = e
        else:
            state.finish()
            result = self._result(state, value.model_dump_json())
            result.output = value
            return result

        logger.error("[%s] Structured answer rejected: %s", execution_id, parse_error)
        return self._abort_for(state, parse_error, text, error_text=str(parse_error))

    def _abort_for(
        self,
        state: RunState,
        error: Exception,
        final_text: str,
        error_text: Optional[str] = None,
        attempt: int = 0,
    ) -> RunResult:
        """Abort the run unless the recovery policy wants ``error`` raised."""
        if self.recovery_policy.handle(error, attempt) is RecoveryAction.RAISE:
            state.abort()
            raise error
        return self._abort(state, final_text, error=error_text)

    def _abort(self, state: RunState, final_text: str, error: Optional[str] = None) -> RunResult:
        state.abort()
        return self._result(state, final_text or BUDGET_EXCEEDED_MESSAGE, error=error)

    @staticmethod
    def _budget_error(state: RunState) -> BudgetExceededError:
        if state.iterations_exhausted():
            return BudgetExceededError(
                f"Iteration limit of {state.max_iterations} reached"
            )
        return BudgetExceededError(
            f"Time budget of {state.max_execution_time}s exceeded"
        )

    @staticmethod
    def _result(state: RunState, final_text: str, error: Optional[str] = None) -> RunResult:
        return RunResult(
            final_text=final_text,
            trace=list(state.history),
            status=state.status,
            iterations=state.iteration_count,
            error=error,
        )

    @staticmethod
    def _best_partial_answer(state: RunState) -> str:
        """Best-effort answer from the history of an unfinished run."""
        for message in reversed(state.history):
            if message.role is Role.ASSISTANT and message.content.strip():
                return message.content
        for message in reversed(state.history):
            if (
                message.role is Role.TOOL_RESULT
                and message.content.strip()
                and message.tool_call_id not in state.recovered_calls
            ):
                return f"Based on available information: {message.content[:1000]}"
        return BUDGET_EXCEEDED_MESSAGE

    @staticmethod
    def _log_trace_summary(state: RunState, execution_id: str) -> None:
        logger.info("[%s] %s", execution_id, "─" * 50)
        logger.info(
            "[%s] TRACE SUMMARY: %s after %d iteration(s), %.2fs",
            execution_id,
            state.status.value,
            state.iteration_count,
            state.elapsed(),
        )
        for index, message in enumerate(state.history):
            if message.tool_calls:
                names = ", ".join(call.tool_name for call in message.tool_calls)
                logger.info("[%s] %d %s -> %s", execution_id, index, message.role.value, names)
            else:
                preview = message.content[:80] + ("..." if len(message.content) > 80 else "")
                logger.info("[%s] %d %s: %s", execution_id, index, message.role.value, preview)


def run(
    initial_user_text: str,
    system_instructions: str = "",
    tool_set: Optional[Union[ToolRegistry, Iterable[ToolDescriptor]]] = None,
    limits: Optional[ExecutorLimits] = None,
    gateway: Optional[CompletionGateway] = None,
) -> RunResult:
    """
    Run the reasoning loop once.

    Args:
        initial_user_text: The user's request.
        system_instructions: System prompt for the run.
        tool_set: A ToolRegistry or an iterable of ToolDescriptors; the
            built-in tools are used when omitted.
        limits: Resource bounds; taken from configuration when omitted.
        gateway: Completion gateway; an OpenAIGateway from configuration
            when omitted.
    """
    if tool_set is None:
        registry = build_default_registry(config.tools)
    elif isinstance(tool_set, ToolRegistry):
        registry = tool_set
    else:
        registry = ToolRegistry(tool_set)

    owns_gateway = gateway is None
    gateway = gateway or OpenAIGateway()
    executor = AgentExecutor(
        gateway=gateway,
        registry=registry,
        limits=limits or ExecutorLimits.from_config(config.executor),
    )
    try:
        return executor.run(initial_user_text, system_instructions)
    finally:
        if owns_gateway:
            gateway.close()
