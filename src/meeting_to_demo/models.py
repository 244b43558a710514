from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    AWAITING_PRD_REVIEW = "awaiting_prd_review"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


class PipelineState(str, Enum):
    IDLE = "idle"
    GATE0_CONSENT = "gate0_consent"
    GATE1_FEATURE_SELECT = "gate1_feature_select"
    CLEAN_ROOM = "clean_room"
    ENRICHMENT = "enrichment"
    GATE2_CONTEXT_APPROVAL = "gate2_context_approval"
    PRD_GENERATION = "prd_generation"
    GATE3_PRD_APPROVAL = "gate3_prd_approval"
    FIXTURE_GENERATION = "fixture_generation"
    PROTOTYPE_GENERATION = "prototype_generation"
    ADAPTATION = "adaptation"
    GATE4_DEMO_REVIEW = "gate4_demo_review"
    PUSH_DOWNSTREAM = "push_downstream"
    GATE5_FINAL_APPROVAL = "gate5_final_approval"
    COMPLETED = "completed"
    FAILED = "failed"


class GateName(str, Enum):
    GATE0 = "gate0"
    GATE1 = "gate1"
    GATE2 = "gate2"
    GATE3 = "gate3"
    GATE4 = "gate4"
    GATE5 = "gate5"

    @classmethod
    def parse(cls, value: str | GateName) -> GateName:
        """Accept ``gate2``, ``GATE2`` or the gate state name ``gate2_context_approval``."""
        if isinstance(value, GateName):
            return value
        token = value.strip().lower()
        for gate in cls:
            if token == gate.value or token.startswith(f"{gate.value}_"):
                return gate
        raise ValueError(f"unknown gate: {value!r}")


class RunTrack(str, Enum):
    GATED = "gated"
    TWO_PHASE = "two_phase"


class Feature(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    priority: Literal["low", "medium", "high"] = "medium"

    @field_validator("title")
    @classmethod
    def _title_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("feature title must be non-empty")
        return value.strip()


class FeatureBrief(BaseModel):
    """Seed input of a run: the features requested in a meeting or by hand."""

    source: str
    meeting_date: datetime = Field(default_factory=utc_now)
    context: str = ""
    features: list[Feature]
    supporting_quotes: list[str] = Field(default_factory=list)

    @field_validator("features")
    @classmethod
    def _at_least_one_feature(cls, value: list[Feature]) -> list[Feature]:
        if not value:
            raise ValueError("feature brief requires at least one feature")
        return value

    @property
    def title(self) -> str:
        return self.features[0].title


class ContextPacket(BaseModel):
    account_id: str = Field(default_factory=new_id)
    project_context: str
    scope: str
    assumptions: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


class Requirement(BaseModel):
    id: str = Field(default_factory=new_id)
    description: str
    priority: Literal["must", "should", "could"] = "should"


class PRD(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    overview: str = ""
    requirements: list[Requirement] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    user_stories: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _title_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("PRD title must be non-empty")
        return value


class UIComponent(BaseModel):
    name: str
    props: dict[str, Any] = Field(default_factory=dict)
    state: dict[str, Any] = Field(default_factory=dict)


class Screen(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    route: str = "/"
    description: str = ""
    components: list[UIComponent] = Field(default_factory=list)


class EntityField(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "date"] = "string"


class Entity(BaseModel):
    name: str
    fields: list[EntityField] = Field(default_factory=list)


class UIContract(BaseModel):
    screens: list[Screen] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)


class PRDResult(BaseModel):
    """Output of the PRD-generation capability."""

    prd: PRD
    ui_contract: UIContract


class Approval(BaseModel):
    gate: GateName
    approver: str
    timestamp: datetime = Field(default_factory=utc_now)
    comments: str | None = None


class RunError(BaseModel):
    step_name: str
    message: str


class RunRecord(BaseModel):
    """Persisted workflow instance tracking one feature through the pipeline."""

    run_id: str = Field(default_factory=new_id)
    status: RunStatus = RunStatus.PENDING
    stage: PipelineState = PipelineState.IDLE
    track: RunTrack = RunTrack.GATED
    feature_brief: FeatureBrief
    context_packet: ContextPacket | None = None
    prd: PRD | None = None
    ui_contract: UIContract | None = None
    fixtures: str | None = None
    prototype_output: str | None = None
    adapted_output: str | None = None
    artifacts: dict[str, str] = Field(default_factory=dict)
    pushed_at: datetime | None = None
    approvals: list[Approval] = Field(default_factory=list)
    error: RunError | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def has(self, field_name: str) -> bool:
        """True when an optional artifact field is present and non-empty."""
        value = getattr(self, field_name)
        if value is None:
            return False
        if isinstance(value, (str, list, dict)):
            return bool(value)
        return True

    def approved_gates(self) -> list[GateName]:
        return [approval.gate for approval in self.approvals]

    def touched(self, **changes: Any) -> RunRecord:
        """Return a copy with ``changes`` applied and ``updated_at`` refreshed.

        ``updated_at`` never moves backwards even if the wall clock does.
        """
        stamp = max(utc_now(), self.updated_at)
        return self.model_copy(update={**changes, "updated_at": stamp}, deep=True)
