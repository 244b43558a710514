from importlib.metadata import version

from .capabilities import AdapterSet
from .composition import build_adapter_set
from .errors import (
    CapabilityUnavailableError,
    MissingInputError,
    OrchestratorError,
    PersistenceError,
    PipelineError,
    PreconditionError,
    RunNotFoundError,
    RunValidationError,
    StepError,
    StepExecutionError,
)
from .mock_adapters import mock_adapter_set
from .models import (
    PRD,
    Approval,
    ContextPacket,
    Feature,
    FeatureBrief,
    GateName,
    PipelineState,
    PRDResult,
    RunError,
    RunRecord,
    RunStatus,
    RunTrack,
    UIContract,
)
from .resilient import ResilientAdapter
from .run_store import RunStore
from .runner import PipelineRunner
from .service import OrchestratorService
from .settings import RuntimeSettings
from .state_machine import GateStateMachine
from .steps import PipelineStep


def get_version() -> str:
    try:
        return version("meeting-to-demo-orchestrator")
    except Exception:
        return "0.0.0"


__all__ = [
    "AdapterSet",
    "Approval",
    "CapabilityUnavailableError",
    "ContextPacket",
    "Feature",
    "FeatureBrief",
    "GateName",
    "GateStateMachine",
    "MissingInputError",
    "OrchestratorError",
    "OrchestratorService",
    "PRD",
    "PRDResult",
    "PersistenceError",
    "PipelineError",
    "PipelineRunner",
    "PipelineState",
    "PipelineStep",
    "PreconditionError",
    "ResilientAdapter",
    "RunError",
    "RunNotFoundError",
    "RunRecord",
    "RunStatus",
    "RunStore",
    "RunTrack",
    "RunValidationError",
    "RuntimeSettings",
    "StepError",
    "StepExecutionError",
    "UIContract",
    "build_adapter_set",
    "get_version",
    "mock_adapter_set",
]
