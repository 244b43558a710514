from __future__ import annotations

import json
import logging
import time
from contextlib import nullcontext
from pathlib import Path
from typing import Any, ContextManager, Iterable

from pydantic import ValidationError

from .capabilities import AdapterSet
from .composition import build_adapter_set
from .errors import PipelineError, PreconditionError, RunValidationError, StepExecutionError
from .models import Feature, FeatureBrief, GateName, PipelineState, RunRecord, RunStatus, RunTrack
from .run_store import RunStore
from .runner import PipelineRunner
from .settings import RuntimeSettings
from .state_machine import GateStateMachine
from .steps import (
    AdaptationStep,
    CleanRoomStep,
    EnrichmentStep,
    FixtureGenerationStep,
    PRDGenerationStep,
    PrototypeGenerationStep,
    PushDownstreamStep,
)

logger = logging.getLogger(__name__)

# Fields only the engine may change; update_run_fields rejects them.
PROTECTED_FIELDS = frozenset({"run_id", "created_at", "updated_at", "approvals", "stage", "status", "track", "error"})


def _priority(value: Any) -> str:
    lowered = str(value or "").strip().lower()
    if lowered == "high":
        return "high"
    if lowered == "low":
        return "low"
    return "medium"


class OrchestratorService:
    """Façade over the run store, the adapters and the gate state machine.

    Every mutating operation loads the record, validates it, runs the phase's
    steps through a fresh :class:`PipelineRunner`, persists the result and
    returns it. Validation and precondition errors are raised before anything
    is written; step failures are persisted as ``failed`` runs and re-raised.
    """

    def __init__(
        self,
        store: RunStore,
        adapters: AdapterSet,
        *,
        approver: str = "operator",
        lock_runs: bool = True,
    ) -> None:
        self.store = store
        self.adapters = adapters
        self.approver = approver
        self.lock_runs = lock_runs
        self.machine = GateStateMachine(
            {
                PipelineState.CLEAN_ROOM: [CleanRoomStep()],
                PipelineState.ENRICHMENT: [EnrichmentStep(adapters.context_enricher)],
                PipelineState.PRD_GENERATION: [PRDGenerationStep(adapters.prd_generator)],
                PipelineState.FIXTURE_GENERATION: [FixtureGenerationStep()],
                PipelineState.PROTOTYPE_GENERATION: [
                    PrototypeGenerationStep(adapters.prototype_generator, store.write_artifact)
                ],
                PipelineState.ADAPTATION: [AdaptationStep(adapters.prototype_adapter, store.write_artifact)],
                PipelineState.PUSH_DOWNSTREAM: [PushDownstreamStep(adapters.downstream)],
            }
        )

    @classmethod
    def from_settings(cls, settings: RuntimeSettings | None = None, *, repo_root: Path | None = None) -> OrchestratorService:
        settings = settings if settings is not None else RuntimeSettings.from_env()
        store = RunStore(settings.runs_path(repo_root))
        adapters = build_adapter_set(settings, repo_root=repo_root)
        return cls(store, adapters, approver=settings.approver)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _locked(self, run_id: str) -> ContextManager[None]:
        return self.store.run_lock(run_id) if self.lock_runs else nullcontext()

    def _execute(self, record: RunRecord, runner: PipelineRunner, *, phase: str) -> RunRecord:
        """Run ``runner`` on ``record``, settle the stage and persist.

        Raises:
            RunValidationError: A step input is missing; nothing is saved.
            PipelineError: A step failed; the failed record is saved first.
        """
        runner.validate(record)
        if len(runner):
            logger.info("Run %s: %s: %s", record.run_id, phase, " -> ".join(runner.step_names()))
        started = time.monotonic()
        try:
            result = runner.run(record)
        except PipelineError as exc:
            failed = self.machine.fail(exc.record)
            self.store.save(failed)
            exc.record = failed
            logger.error("Run %s failed during %s at step %s", record.run_id, phase, exc.step_name)
            raise
        settled = self.machine.settle(result)
        self.store.save(settled)
        logger.info(
            "Run %s: %s finished in %.1fs (stage=%s, status=%s)",
            record.run_id,
            phase,
            time.monotonic() - started,
            settled.stage.value,
            settled.status.value,
        )
        return settled

    def _create(self, brief: FeatureBrief, entry: PipelineState, *, track: RunTrack = RunTrack.GATED) -> RunRecord:
        record = self.machine.enter(RunRecord(feature_brief=brief, track=track), entry)
        self.store.save(record)
        logger.info("Created run %s from %s at %s", record.run_id, brief.source, entry.value)
        return record

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def start_run(self, meeting_ref: str) -> RunRecord:
        """Create a run from the features discussed in a meeting; waits on consent (gate0)."""
        if not meeting_ref or not meeting_ref.strip():
            raise RunValidationError("meeting reference must be non-empty")
        try:
            brief = self.adapters.meeting_source.get_feature_brief(meeting_ref.strip())
        except Exception as exc:  # noqa: BLE001
            raise StepExecutionError("Meeting import", exc) from exc
        return self._create(brief, PipelineState.GATE0_CONSENT)

    def start_manual_run(self, title: str, description: str, *, priority: str = "medium") -> RunRecord:
        try:
            brief = FeatureBrief(
                source="manual",
                context="Manual Input",
                features=[Feature(title=title, description=description, priority=_priority(priority))],
            )
        except ValidationError as exc:
            raise RunValidationError(f"invalid manual run input: {exc}") from exc
        return self._create(brief, PipelineState.GATE1_FEATURE_SELECT)

    def start_run_from_json(self, json_input: str) -> RunRecord:
        """Create a run from a JSON export with ``features`` or ``actionItems``.

        Items are read leniently (``title``/``name``, ``description``/``reason``);
        a payload with no items becomes a single feature built from its own
        ``title`` and ``description``.
        """
        try:
            data = json.loads(json_input)
        except json.JSONDecodeError as exc:
            raise RunValidationError("Invalid JSON input") from exc
        if not isinstance(data, dict):
            raise RunValidationError("JSON input must be an object")

        items = data.get("features") or data.get("actionItems") or []
        if not isinstance(items, list):
            raise RunValidationError("features must be a list")
        try:
            features = [
                Feature(
                    title=item.get("title") or item.get("name") or "Untitled Feature",
                    description=item.get("description") or item.get("reason") or "Feature recommendation",
                    priority=_priority(item.get("priority")),
                )
                for item in items
                if isinstance(item, dict)
            ]
            if not features:
                features.append(
                    Feature(
                        title=data.get("title") or "Manual JSON Entry",
                        description=data.get("description") or "No specific features found in JSON",
                    )
                )
            brief = FeatureBrief(
                source="json-import",
                context=data.get("summary") or data.get("context") or "Imported via JSON",
                features=features,
                supporting_quotes=[str(quote) for quote in data.get("quotes", []) if quote],
            )
        except (ValidationError, AttributeError, TypeError) as exc:
            raise RunValidationError(f"invalid JSON run input: {exc}") from exc
        return self._create(brief, PipelineState.GATE1_FEATURE_SELECT)

    def start_run_from_text(self, raw_text: str) -> RunRecord:
        """Format freeform text into a brief, scrub and enrich it; waits on gate2."""
        if not raw_text or not raw_text.strip():
            raise RunValidationError("raw text must be non-empty")
        try:
            brief = self.adapters.brief_formatter.format_feature_brief(raw_text)
        except Exception as exc:  # noqa: BLE001
            raise StepExecutionError("Format feature brief", exc) from exc
        record = RunRecord(feature_brief=brief)
        self.store.save(record)
        runner = self.machine.runner_from(PipelineState.CLEAN_ROOM, record.track)
        return self._execute(record, runner, phase="intake enrichment")

    # ------------------------------------------------------------------
    # Two-phase flow
    # ------------------------------------------------------------------

    def run_phase_one(self, raw_text: str) -> RunRecord:
        """Generate the PRD for ``raw_text`` and pause for review (``awaiting_prd_review``)."""
        text = raw_text.strip() if raw_text else ""
        if not text:
            raise RunValidationError("raw text must be non-empty")
        brief = FeatureBrief(
            source="direct-input",
            context=text,
            features=[Feature(title=text[:80], description=text, priority="high")],
        )
        record = RunRecord(feature_brief=brief, track=RunTrack.TWO_PHASE, status=RunStatus.IN_PROGRESS)
        self.store.save(record)
        runner = self.machine.runner_from(PipelineState.PRD_GENERATION, record.track)
        result = self._execute(record, runner, phase="phase one")
        logger.info("PRD generated. Run %s is awaiting review.", result.run_id)
        return result

    def approve_and_continue(self, run_id: str, *, approver: str | None = None, comments: str | None = None) -> RunRecord:
        """Approve the reviewed PRD and generate and adapt the prototype."""
        with self._locked(run_id):
            record = self.store.require(run_id)
            if record.status != RunStatus.AWAITING_PRD_REVIEW:
                raise PreconditionError(
                    f"Run {run_id} is not awaiting PRD review (status: {record.status.value})"
                )
            return self._approve(record, GateName.GATE3, approver=approver, comments=comments)

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def approve_gate(
        self,
        run_id: str,
        gate: GateName | str,
        *,
        approver: str | None = None,
        comments: str | None = None,
        selected_features: Iterable[int] | None = None,
    ) -> RunRecord:
        """Record an approval for ``gate`` and run its auto-transition synchronously.

        ``selected_features`` (gate1 only) keeps just the brief features at
        those indices before clean-room and enrichment run.
        """
        try:
            gate = GateName.parse(gate)
        except ValueError as exc:
            raise RunValidationError(str(exc)) from exc
        if selected_features is not None and gate != GateName.GATE1:
            raise RunValidationError("selected_features is only accepted for gate1")
        with self._locked(run_id):
            record = self.store.require(run_id)
            return self._approve(
                record,
                gate,
                approver=approver,
                comments=comments,
                selected_features=list(selected_features) if selected_features is not None else None,
            )

    def _approve(
        self,
        record: RunRecord,
        gate: GateName,
        *,
        approver: str | None,
        comments: str | None,
        selected_features: list[int] | None = None,
    ) -> RunRecord:
        if selected_features is not None:
            if self.machine.check_approval(record, gate):
                raise RunValidationError(
                    f"Run {record.run_id}: {gate.value} is already approved; selected_features cannot change"
                )
            count = len(record.feature_brief.features)
            if not selected_features or any(index < 0 or index >= count for index in selected_features):
                raise RunValidationError(f"selected_features must be indices in [0, {count})")
            if comments is None:
                comments = f"Approved features: {', '.join(str(index) for index in selected_features)}"

        approved, runner = self.machine.approve(
            record,
            gate,
            approver=approver or self.approver,
            comments=comments,
        )
        if runner is None:
            self.store.save(approved)
            return approved

        if selected_features is not None:
            chosen = [approved.feature_brief.features[index] for index in dict.fromkeys(selected_features)]
            approved = approved.touched(feature_brief=approved.feature_brief.model_copy(update={"features": chosen}))
        logger.info("Run %s: %s approved by %s", record.run_id, gate.value, approver or self.approver)
        return self._execute(approved, runner, phase=f"{gate.value} auto-transition")

    # ------------------------------------------------------------------
    # Queries and manual correction
    # ------------------------------------------------------------------

    def get_run(self, run_id: str) -> RunRecord | None:
        return self.store.get(run_id)

    def list_runs(self) -> list[RunRecord]:
        """All readable runs, newest first."""
        return sorted(self.store.list(), key=lambda record: record.created_at, reverse=True)

    def update_run_fields(self, run_id: str, partial: dict[str, Any]) -> RunRecord:
        """Merge ``partial`` into the record (top-level keys replace) and stamp ``updated_at``.

        Raises:
            RunValidationError: Protected or unknown keys, or a merged record
                that fails schema validation.
        """
        if not isinstance(partial, dict):
            raise RunValidationError("partial update must be an object")
        protected = sorted(PROTECTED_FIELDS & set(partial))
        if protected:
            raise RunValidationError(f"fields cannot be updated directly: {', '.join(protected)}")
        unknown = sorted(set(partial) - set(RunRecord.model_fields))
        if unknown:
            raise RunValidationError(f"unknown run fields: {', '.join(unknown)}")

        with self._locked(run_id):
            record = self.store.require(run_id)
            payload = record.model_dump(mode="json")
            payload.update(partial)
            try:
                merged = RunRecord.model_validate(payload)
            except ValidationError as exc:
                raise RunValidationError(f"update for run {run_id} failed validation: {exc}") from exc
            updated = merged.touched()
            self.store.save(updated)
            logger.info("Run %s: updated fields %s", run_id, ", ".join(sorted(partial)))
            return updated
