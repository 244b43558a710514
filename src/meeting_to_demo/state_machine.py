from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .errors import PreconditionError
from .models import Approval, GateName, PipelineState, RunRecord, RunStatus, RunTrack
from .runner import PipelineRunner
from .steps import PipelineStep

logger = logging.getLogger(__name__)

S = PipelineState

GATED_ORDER: tuple[PipelineState, ...] = (
    S.IDLE,
    S.GATE0_CONSENT,
    S.GATE1_FEATURE_SELECT,
    S.CLEAN_ROOM,
    S.ENRICHMENT,
    S.GATE2_CONTEXT_APPROVAL,
    S.PRD_GENERATION,
    S.GATE3_PRD_APPROVAL,
    S.FIXTURE_GENERATION,
    S.PROTOTYPE_GENERATION,
    S.ADAPTATION,
    S.GATE4_DEMO_REVIEW,
    S.PUSH_DOWNSTREAM,
    S.GATE5_FINAL_APPROVAL,
    S.COMPLETED,
)

# Two-phase runs start at PRD generation, pause once for PRD review and finish
# after adaptation.
TWO_PHASE_ORDER: tuple[PipelineState, ...] = (
    S.IDLE,
    S.PRD_GENERATION,
    S.GATE3_PRD_APPROVAL,
    S.FIXTURE_GENERATION,
    S.PROTOTYPE_GENERATION,
    S.ADAPTATION,
    S.COMPLETED,
)

TRACK_ORDER: dict[RunTrack, tuple[PipelineState, ...]] = {
    RunTrack.GATED: GATED_ORDER,
    RunTrack.TWO_PHASE: TWO_PHASE_ORDER,
}

GATE_STATES: dict[GateName, PipelineState] = {
    GateName.GATE0: S.GATE0_CONSENT,
    GateName.GATE1: S.GATE1_FEATURE_SELECT,
    GateName.GATE2: S.GATE2_CONTEXT_APPROVAL,
    GateName.GATE3: S.GATE3_PRD_APPROVAL,
    GateName.GATE4: S.GATE4_DEMO_REVIEW,
    GateName.GATE5: S.GATE5_FINAL_APPROVAL,
}
STATE_GATES: dict[PipelineState, GateName] = {state: gate for gate, state in GATE_STATES.items()}

PROCESSING_STATES = frozenset(
    {
        S.CLEAN_ROOM,
        S.ENRICHMENT,
        S.PRD_GENERATION,
        S.FIXTURE_GENERATION,
        S.PROTOTYPE_GENERATION,
        S.ADAPTATION,
        S.PUSH_DOWNSTREAM,
    }
)
TERMINAL_STATES = frozenset({S.COMPLETED, S.FAILED})

# Where each intake path may place a fresh record.
ENTRY_STATES: dict[RunTrack, frozenset[PipelineState]] = {
    RunTrack.GATED: frozenset({S.GATE0_CONSENT, S.GATE1_FEATURE_SELECT, S.CLEAN_ROOM}),
    RunTrack.TWO_PHASE: frozenset({S.PRD_GENERATION}),
}

GATE_PRECONDITIONS: dict[GateName, tuple[str, ...]] = {
    GateName.GATE0: ("feature_brief",),
    GateName.GATE1: ("feature_brief",),
    GateName.GATE2: ("context_packet",),
    GateName.GATE3: ("prd", "ui_contract"),
    GateName.GATE4: ("adapted_output",),
    GateName.GATE5: (),
}


class EnterStateStep(PipelineStep):
    """Move the record into a processing state before that state's steps run."""

    def __init__(self, machine: GateStateMachine, target: PipelineState) -> None:
        self.machine = machine
        self.target = target
        self.name = f"enter {target.value}"

    def transform(self, record: RunRecord) -> RunRecord:
        return self.machine.transition(record, self.target)


class GateStateMachine:
    """Single authority over which stage a run is in and how it may move.

    Gate states advance only through :meth:`approve`; processing states are
    entered by the runner that :meth:`runner_from` builds and left by
    :meth:`settle` once their steps succeed. Any failure goes to ``failed``.
    """

    def __init__(self, steps_by_state: Mapping[PipelineState, Sequence[PipelineStep]]) -> None:
        unknown = set(steps_by_state) - PROCESSING_STATES
        if unknown:
            raise ValueError(f"steps can only be bound to processing states, got: {sorted(s.value for s in unknown)}")
        self.steps_by_state = {state: tuple(steps) for state, steps in steps_by_state.items()}

    # ------------------------------------------------------------------
    # Transition table
    # ------------------------------------------------------------------

    @staticmethod
    def order(track: RunTrack) -> tuple[PipelineState, ...]:
        return TRACK_ORDER[track]

    def next_state(self, state: PipelineState, track: RunTrack) -> PipelineState:
        order = self.order(track)
        if state not in order or state == S.COMPLETED:
            raise PreconditionError(f"no state follows {state.value} on the {track.value} track")
        return order[order.index(state) + 1]

    def can_transition(self, current: PipelineState, target: PipelineState, track: RunTrack) -> bool:
        if current in TERMINAL_STATES:
            return False
        if target == S.FAILED:
            return True
        if current == S.IDLE:
            return target in ENTRY_STATES[track]
        return self.next_state(current, track) == target

    def transition(self, record: RunRecord, target: PipelineState) -> RunRecord:
        if not self.can_transition(record.stage, target, record.track):
            raise PreconditionError(
                f"Run {record.run_id}: illegal transition {record.stage.value} -> {target.value} "
                f"on the {record.track.value} track"
            )
        logger.info("Run %s: %s -> %s", record.run_id, record.stage.value, target.value)
        return record.touched(stage=target)

    def enter(self, record: RunRecord, entry_state: PipelineState) -> RunRecord:
        """Place a freshly created record at its intake's entry state."""
        if record.stage != S.IDLE:
            raise PreconditionError(f"Run {record.run_id} has already started ({record.stage.value})")
        return self.transition(record, entry_state)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def runner_from(self, state: PipelineState, track: RunTrack) -> PipelineRunner:
        """Runner for the processing states starting at ``state``.

        Walks forward while states are processing states; each state
        contributes an :class:`EnterStateStep` followed by its bound steps.
        A non-processing ``state`` yields an empty runner.
        """
        runner = PipelineRunner()
        current = state
        while current in PROCESSING_STATES:
            runner.add_step(EnterStateStep(self, current))
            for step in self.steps_by_state.get(current, ()):
                runner.add_step(step)
            current = self.next_state(current, track)
        return runner

    def settle(self, record: RunRecord) -> RunRecord:
        """Advance past the processing states just run and set the status to match.

        A record already sitting in a gate state (an approval with no
        processing path) moves to the following state.
        """
        stage = self.next_state(record.stage, record.track)
        settled = self.transition(record, stage)
        if stage == S.COMPLETED:
            status = RunStatus.COMPLETED
        elif record.track == RunTrack.TWO_PHASE and stage == S.GATE3_PRD_APPROVAL:
            status = RunStatus.AWAITING_PRD_REVIEW
        elif settled.approvals:
            status = RunStatus.IN_PROGRESS
        else:
            status = RunStatus.PENDING
        return settled.touched(status=status, error=None)

    def fail(self, record: RunRecord) -> RunRecord:
        if record.stage in TERMINAL_STATES:
            return record.touched(status=RunStatus.FAILED)
        return self.transition(record, S.FAILED).touched(status=RunStatus.FAILED)

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    @staticmethod
    def current_gate(record: RunRecord) -> GateName | None:
        return STATE_GATES.get(record.stage)

    def check_approval(self, record: RunRecord, gate: GateName) -> bool:
        """Validate an approval request.

        Returns:
            ``True`` when ``gate`` was already passed (a duplicate approval),
            ``False`` when it is the gate the run is waiting on.

        Raises:
            PreconditionError: Terminal run, missing gate input, or a gate
                that is not the current one and was never approved.
        """
        if record.is_terminal or record.stage in TERMINAL_STATES:
            raise PreconditionError(f"Run {record.run_id} is {record.status.value}; no further approvals accepted")
        gate_state = GATE_STATES[gate]
        if gate_state not in self.order(record.track):
            raise PreconditionError(f"{gate.value} is not part of the {record.track.value} track")
        missing = [name for name in GATE_PRECONDITIONS[gate] if not record.has(name)]
        if missing:
            raise PreconditionError(f"Run {record.run_id}: {gate.value} requires {', '.join(missing)}")
        if gate in record.approved_gates() and self.current_gate(record) != gate:
            return True
        if self.current_gate(record) != gate:
            waiting = record.stage.value
            raise PreconditionError(
                f"Run {record.run_id}: {gate.value} cannot be approved while the run is at {waiting}"
            )
        return False

    @staticmethod
    def record_approval(
        record: RunRecord,
        gate: GateName,
        *,
        approver: str,
        comments: str | None = None,
    ) -> RunRecord:
        approval = Approval(gate=gate, approver=approver, comments=comments)
        return record.touched(approvals=[*record.approvals, approval])

    def approve(
        self,
        record: RunRecord,
        gate: GateName,
        *,
        approver: str,
        comments: str | None = None,
    ) -> tuple[RunRecord, PipelineRunner | None]:
        """Append the approval and return the runner for the gate's auto-transition.

        The runner is ``None`` for a duplicate approval: the ledger entry is
        recorded but the auto-transition never runs a second time.
        """
        duplicate = self.check_approval(record, gate)
        approved = self.record_approval(record, gate, approver=approver, comments=comments)
        if duplicate:
            logger.warning(
                "Run %s: %s approved again by %s; ledger updated, auto-transition not re-run",
                record.run_id,
                gate.value,
                approver,
            )
            return approved, None
        next_state = self.next_state(record.stage, record.track)
        return approved.touched(status=RunStatus.IN_PROGRESS), self.runner_from(next_state, record.track)
