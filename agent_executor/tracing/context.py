"""
Run-scoped tracing context using the Langfuse SDK v3.

A TracingContext owns the root observation for one agent run. Spans (tool
calls, the loop itself) and generations (completion requests) are opened
as context managers and nest under it. Children are linked to their parent
through an explicit trace_context so nesting does not depend on OTEL
context state. Everything degrades to a no-op when tracing is disabled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """A single span or generation; no-op unless started while enabled."""

    name: str
    as_type: str = "span"
    enabled: bool = False
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    model: Optional[str] = None
    model_parameters: Optional[dict] = None
    trace_context: Optional[TraceContext] = None
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _usage: Optional[dict] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)

    def start(self) -> None:
        if not self.enabled:
            return
        client = get_tracing_client()
        if not client or not client.client:
            return

        kwargs: dict[str, Any] = {
            "trace_context": self.trace_context,
            "as_type": self.as_type,
            "name": self.name,
            "input": self.input,
            "metadata": self.metadata,
        }
        if self.as_type == "generation":
            kwargs["model"] = self.model
            kwargs["model_parameters"] = self.model_parameters

        try:
            self._start_time = time.time()
            self._context_manager = client.client.start_as_current_observation(**kwargs)
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning("Failed to start %s '%s': %s", self.as_type, self.name, e)
            self._observation = None

    def end(self) -> None:
        if not self._observation:
            return
        try:
            update: dict[str, Any] = {
                "metadata": {
                    "status": self._status,
                    "duration_ms": round((time.time() - self._start_time) * 1000, 2),
                }
            }
            if self._output is not None:
                update["output"] = self._output
            if self._usage:
                update["usage_details"] = self._usage
            self._observation.update(**update)
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("Failed to end %s '%s': %s", self.as_type, self.name, e)

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        usage = {
            "input": prompt_tokens,
            "output": completion_tokens,
            "total": total_tokens,
        }
        self._usage = {k: v for k, v in usage.items() if v is not None}


@dataclass
class TracingContext:
    """
    Tracing for a single run.

    Call ``start_trace`` once, open spans and generations while the run
    executes, then ``end_trace``.
    """

    execution_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _root: Optional[Observation] = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)

    def __post_init__(self):
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(self, name: str = "agent_run", query: Optional[str] = None) -> None:
        if not self._enabled:
            return
        self._root = Observation(
            name=name,
            enabled=True,
            input={"query": query} if query else None,
            metadata={"execution_id": self.execution_id},
        )
        self._root.start()
        observation = self._root._observation
        if observation is None:
            self._root = None
            return
        try:
            observation.update_trace(user_id=self.user_id, session_id=self.session_id)
        except Exception as e:
            logger.warning("[%s] Failed to set trace attributes: %s", self.execution_id, e)
        trace_id = getattr(observation, "trace_id", None)
        span_id = getattr(observation, "id", None)
        if trace_id and span_id:
            self._root.trace_context = TraceContext(trace_id=trace_id, parent_span_id=span_id)

    def end_trace(self, output: Optional[str] = None, status: str = "success") -> None:
        if not self._root:
            return
        self._root.set_output(output)
        self._root.set_status(status)
        self._root.end()
        self._root = None

    def _parent_context(self) -> Optional[TraceContext]:
        return self._root.trace_context if self._root else None

    @contextmanager
    def span(
        self,
        name: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> Generator[Observation, None, None]:
        observation = Observation(
            name=name,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            trace_context=self._parent_context(),
        )
        observation.start()
        try:
            yield observation
        finally:
            observation.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator[Observation, None, None]:
        observation = Observation(
            name=name,
            as_type="generation",
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            model=model,
            model_parameters=model_parameters,
            trace_context=self._parent_context(),
        )
        observation.start()
        try:
            yield observation
        finally:
            observation.end()
