from __future__ import annotations

import logging
import time

from .errors import PipelineError, RunValidationError, StepError
from .models import RunError, RunRecord, RunStatus
from .steps import PipelineStep

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Run an ordered list of steps against a run record.

    Each step receives exactly the record its predecessor returned. The step
    list can be grown with :meth:`add_step`, :meth:`prepend_step` and
    :meth:`insert_step` while composing a phase; ``run`` snapshots the list so
    one invocation always executes the steps it started with.
    """

    def __init__(self, steps: list[PipelineStep] | None = None) -> None:
        self._steps: list[PipelineStep] = list(steps or [])

    def add_step(self, step: PipelineStep) -> PipelineRunner:
        self._steps.append(step)
        return self

    def prepend_step(self, step: PipelineStep) -> PipelineRunner:
        self._steps.insert(0, step)
        return self

    def insert_step(self, index: int, step: PipelineStep) -> PipelineRunner:
        self._steps.insert(index, step)
        return self

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return tuple(self._steps)

    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def __len__(self) -> int:
        return len(self._steps)

    def validate(self, record: RunRecord) -> None:
        """Check that every step's inputs are present before anything runs.

        A field counts as available when the record already holds it or an
        earlier step in the list provides it.

        Raises:
            RunValidationError: Naming the first step whose input is missing.
        """
        available = {name for name in RunRecord.model_fields if record.has(name)}
        for step in self._steps:
            missing = [name for name in step.requires if name not in available]
            if missing:
                raise RunValidationError(
                    f'Run {record.run_id}: step "{step.name}" requires {", ".join(missing)}'
                )
            available.update(step.provides)

    def run(self, initial: RunRecord) -> RunRecord:
        """Execute all steps in order.

        Returns:
            The final record with ``status`` set to ``completed``.

        Raises:
            PipelineError: At the first failing step. ``error.record`` is the
                last good record with ``status=failed`` and the failure noted.
        """
        steps = tuple(self._steps)
        current = initial
        total = len(steps)
        for index, step in enumerate(steps, start=1):
            logger.info("[%d/%d] Running step: %s (run %s)", index, total, step.name, current.run_id)
            started = time.monotonic()
            try:
                current = step.execute(current)
            except Exception as exc:  # noqa: BLE001
                cause = exc.cause if isinstance(exc, StepError) else exc
                logger.error('Step "%s" failed for run %s: %s', step.name, current.run_id, cause)
                failed = current.touched(
                    status=RunStatus.FAILED,
                    error=RunError(step_name=step.name, message=str(cause)),
                )
                raise PipelineError(step.name, str(cause), failed) from exc
            logger.info('Step "%s" completed in %.1fs', step.name, time.monotonic() - started)

        return current.touched(status=RunStatus.COMPLETED)
