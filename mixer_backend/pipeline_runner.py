from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

logger = logging.getLogger("mixer.pipeline")


class TracedContext(Protocol):
    def log(self, event: str, detail: str, status: str = "success") -> None:
        ...


@dataclass
class PipelineStep:
    """Step descriptor for the reply pipeline runner.

    A step function may return a trace status ("failed", ...); None means success.
    """
    name: str
    fn: Callable[[TracedContext], Optional[str]]
    skip_if: Optional[Callable[[TracedContext], bool]] = None


class StepRunner:
    """Ordered step runner for deterministic pipelines."""

    def __init__(self, steps: list[PipelineStep]) -> None:
        """Purpose: Initialize the runner with an ordered list of steps.
        Inputs/Outputs: Input is a list of PipelineStep; no return value.
        Side Effects / State: Stores the step list for later execution.
        Failure Modes: None; assumes valid callables in steps.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        self._steps = steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def run(self, context: TracedContext) -> None:
        """Purpose: Execute steps in order, skipping those whose guard is true.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Invokes step functions that may mutate context and appends
            one trace entry per step, with the status the step reported.
        Failure Modes: Exceptions in step functions propagate to the caller.
        Testing Notes: Verify skip_if and reported statuses with simple steps.
        """
        for step in self._steps:
            if step.skip_if and step.skip_if(context):
                context.log(step.name, "skipped", status="skipped")
                logger.debug("step=%s status=skipped", step.name)
                continue
            started = time.perf_counter()
            status = step.fn(context) or "success"
            elapsed_ms = (time.perf_counter() - started) * 1000
            context.log(step.name, f"{elapsed_ms:.0f}ms", status=status)
            logger.debug("step=%s status=%s elapsed_ms=%.0f", step.name, status, elapsed_ms)
