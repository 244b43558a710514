from __future__ import annotations

import logging
from typing import Any, Callable

from .canonical import to_canonical_json
from .capabilities import ContextEnricher, DownstreamPush, PRDGenerator, PrototypeAdapter, PrototypeGenerator
from .clean_room import scrub_brief
from .errors import MissingInputError, StepError, StepExecutionError
from .models import ContextPacket, Entity, FeatureBrief, RunRecord, UIContract, utc_now

logger = logging.getLogger(__name__)

ArtifactWriter = Callable[..., str]
"""``write(run_id, name, content, *, suffix) -> relative path``; see ``RunStore.write_artifact``."""

_FIXTURE_ROWS = 3


class PipelineStep:
    """One ordered transformation ``RunRecord -> RunRecord``.

    Subclasses declare the record fields they need (``requires``) and the
    fields they fill in (``provides``) and implement :meth:`transform`.
    ``execute`` never mutates its input; it returns a new record.
    """

    name: str = "step"
    requires: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()

    def execute(self, record: RunRecord) -> RunRecord:
        for field_name in self.requires:
            if not record.has(field_name):
                raise MissingInputError(self.name, field_name)
        snapshot = record.model_copy(deep=True)
        try:
            return self.transform(snapshot)
        except StepError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise StepExecutionError(self.name, exc) from exc

    def transform(self, record: RunRecord) -> RunRecord:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CleanRoomStep(PipelineStep):
    name = "Clean room: scrub personal data"
    requires = ("feature_brief",)
    provides = ("feature_brief",)

    def transform(self, record: RunRecord) -> RunRecord:
        return record.touched(feature_brief=scrub_brief(record.feature_brief))


class EnrichmentStep(PipelineStep):
    name = "Enrichment: build context packet"
    requires = ("feature_brief",)
    provides = ("context_packet",)

    def __init__(self, enricher: ContextEnricher) -> None:
        self.enricher = enricher

    def transform(self, record: RunRecord) -> RunRecord:
        context = self.enricher.enrich_context(record.feature_brief)
        return record.touched(context_packet=context)


def context_from_brief(brief: FeatureBrief) -> ContextPacket:
    """Minimal context packet for runs that skipped enrichment."""
    return ContextPacket(
        project_context=brief.context or "Feature request",
        scope=", ".join(feature.title for feature in brief.features),
    )


class PRDGenerationStep(PipelineStep):
    """Generate the PRD and UI contract.

    Uses the enriched context packet when one exists; otherwise a context is
    derived from the brief and stored alongside the PRD.
    """

    name = "PRD: generate PRD and UI contract"
    requires = ("feature_brief",)
    provides = ("context_packet", "prd", "ui_contract")

    def __init__(self, generator: PRDGenerator) -> None:
        self.generator = generator

    def transform(self, record: RunRecord) -> RunRecord:
        context = record.context_packet or context_from_brief(record.feature_brief)
        result = self.generator.generate_prd(context)
        return record.touched(context_packet=context, prd=result.prd, ui_contract=result.ui_contract)


def _fixture_value(entity: Entity, field_name: str, field_type: str, index: int) -> Any:
    if field_type == "number":
        return index * 10
    if field_type == "boolean":
        return index % 2 == 1
    if field_type == "date":
        return f"2026-01-{index:02d}"
    return f"{entity.name} {field_name} {index}"


def build_fixtures(ui_contract: UIContract) -> str:
    """Deterministic sample data for every entity in the UI contract, as a TS module."""
    data: dict[str, list[dict[str, Any]]] = {}
    for entity in ui_contract.entities:
        data[entity.name] = [
            {field.name: _fixture_value(entity, field.name, field.type, index) for field in entity.fields}
            for index in range(1, _FIXTURE_ROWS + 1)
        ]
    return f"export const fixtures = {to_canonical_json(data)};\n"


class FixtureGenerationStep(PipelineStep):
    name = "Fixtures: generate sample data"
    requires = ("ui_contract",)
    provides = ("fixtures",)

    def transform(self, record: RunRecord) -> RunRecord:
        return record.touched(fixtures=build_fixtures(record.ui_contract))


def _artifact_suffix(content: str) -> str:
    return ".url" if content.strip().startswith(("http://", "https://")) else ".tsx"


class PrototypeGenerationStep(PipelineStep):
    name = "Prototype: generate UI prototype"
    requires = ("ui_contract", "fixtures")
    provides = ("prototype_output",)

    def __init__(self, generator: PrototypeGenerator, write_artifact: ArtifactWriter | None = None) -> None:
        self.generator = generator
        self.write_artifact = write_artifact

    def transform(self, record: RunRecord) -> RunRecord:
        output = self.generator.generate_prototype(record.ui_contract, record.fixtures)
        artifacts = dict(record.artifacts)
        if self.write_artifact is not None:
            artifacts["prototype"] = self.write_artifact(record.run_id, "prototype", output, suffix=_artifact_suffix(output))
        return record.touched(prototype_output=output, artifacts=artifacts)


class AdaptationStep(PipelineStep):
    name = "Adaptation: prepare prototype for review"
    requires = ("prototype_output",)
    provides = ("adapted_output",)

    def __init__(self, adapter: PrototypeAdapter, write_artifact: ArtifactWriter | None = None) -> None:
        self.adapter = adapter
        self.write_artifact = write_artifact

    def transform(self, record: RunRecord) -> RunRecord:
        adapted = self.adapter.adapt_prototype(record.prototype_output)
        artifacts = dict(record.artifacts)
        if self.write_artifact is not None:
            artifacts["adapted"] = self.write_artifact(record.run_id, "adapted", adapted, suffix=_artifact_suffix(adapted))
        return record.touched(adapted_output=adapted, artifacts=artifacts)


class PushDownstreamStep(PipelineStep):
    name = "Push: send run to issue tracker"
    requires = ("adapted_output",)
    provides = ("pushed_at",)

    def __init__(self, downstream: DownstreamPush) -> None:
        self.downstream = downstream

    def transform(self, record: RunRecord) -> RunRecord:
        self.downstream.push_downstream(record)
        return record.touched(pushed_at=utc_now())
