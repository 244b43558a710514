from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RunRecord


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestration engine."""


class RunValidationError(OrchestratorError, ValueError):
    """A run record is missing a required field or carries invalid data.

    Raised before any step runs; nothing is persisted.
    """


class PreconditionError(OrchestratorError):
    """An operation was invoked out of order (wrong gate, wrong phase, terminal run)."""


class RunNotFoundError(OrchestratorError, LookupError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class PersistenceError(OrchestratorError):
    """Run storage is unreadable or unwritable for one operation."""


class CapabilityUnavailableError(OrchestratorError, RuntimeError):
    """A real adapter failed on transport, authentication, or response parsing."""

    def __init__(self, capability: str, message: str) -> None:
        super().__init__(f"{capability} unavailable: {message}")
        self.capability = capability


class StepError(OrchestratorError):
    def __init__(self, step_name: str, cause: BaseException | str) -> None:
        message = str(cause)
        super().__init__(f'Step "{step_name}" failed: {message}')
        self.step_name = step_name
        self.cause = cause


class MissingInputError(StepError):
    """A step's declared upstream field is absent from the record."""

    def __init__(self, step_name: str, field_name: str) -> None:
        super().__init__(step_name, f"required input '{field_name}' is missing")
        self.field_name = field_name


class StepExecutionError(StepError):
    """The capability behind a step failed even after the resilient fallback."""


class PipelineError(OrchestratorError):
    """A pipeline run stopped at ``step_name``; ``record`` is the failed snapshot."""

    def __init__(self, step_name: str, message: str, record: RunRecord) -> None:
        super().__init__(f'Pipeline failed at step "{step_name}": {message}')
        self.step_name = step_name
        self.message = message
        self.record = record
