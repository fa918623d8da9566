"""
Sequential composition of processing stages.

A Pipeline is an ordered list of callables. Nothing runs until ``run`` is
called, which feeds each stage's output into the next.

    pipeline = Pipeline().then(build_prompt).then(executor_stage).then(str.upper)
    answer = pipeline.run("What is 6 * 7?")
"""

import logging
from typing import Any, Callable, Iterator, Sequence

logger = logging.getLogger(__name__)

Stage = Callable[[Any], Any]


class Pipeline:
    """Immutable, lazily evaluated sequence of stages."""

    def __init__(self, stages: Sequence[Stage] = ()):
        for stage in stages:
            if not callable(stage):
                raise TypeError(f"Pipeline stage {stage!r} is not callable")
        self._stages: tuple[Stage, ...] = tuple(stages)

    def then(self, stage: Stage) -> "Pipeline":
        """Return a new pipeline with ``stage`` appended."""
        return Pipeline(self._stages + (stage,))

    def run(self, value: Any) -> Any:
        for index, stage in enumerate(self._stages):
            try:
                value = stage(value)
            except Exception:
                logger.error(
                    "Pipeline stage %d (%s) failed",
                    index,
                    getattr(stage, "__name__", type(stage).__name__),
                )
                raise
        return value

    __call__ = run

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)
