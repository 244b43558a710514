from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Protocol, runtime_checkable

from .models import ContextPacket, FeatureBrief, PRDResult, RunRecord, UIContract


@runtime_checkable
class MeetingSource(Protocol):
    def get_feature_brief(self, meeting_ref: str) -> FeatureBrief:
        ...


@runtime_checkable
class BriefFormatter(Protocol):
    def format_feature_brief(self, raw_text: str) -> FeatureBrief:
        ...


@runtime_checkable
class ContextEnricher(Protocol):
    def enrich_context(self, brief: FeatureBrief) -> ContextPacket:
        ...


@runtime_checkable
class PRDGenerator(Protocol):
    def generate_prd(self, context: ContextPacket) -> PRDResult:
        ...


@runtime_checkable
class PrototypeGenerator(Protocol):
    def generate_prototype(self, ui_contract: UIContract, fixtures: str) -> str:
        ...


@runtime_checkable
class PrototypeAdapter(Protocol):
    def adapt_prototype(self, artifact: str) -> str:
        ...


@runtime_checkable
class DownstreamPush(Protocol):
    def push_downstream(self, record: RunRecord) -> None:
        ...


CAPABILITY_METHODS: dict[str, str] = {
    "meeting_source": "get_feature_brief",
    "brief_formatter": "format_feature_brief",
    "context_enricher": "enrich_context",
    "prd_generator": "generate_prd",
    "prototype_generator": "generate_prototype",
    "prototype_adapter": "adapt_prototype",
    "downstream": "push_downstream",
}


@dataclass(frozen=True)
class AdapterSet:
    """Capability-to-implementation map injected into the orchestrator.

    Which implementation backs each capability is decided by the caller
    (see :func:`meeting_to_demo.composition.build_adapter_set`), never read
    from the environment by the service itself.
    """

    meeting_source: MeetingSource
    brief_formatter: BriefFormatter
    context_enricher: ContextEnricher
    prd_generator: PRDGenerator
    prototype_generator: PrototypeGenerator
    prototype_adapter: PrototypeAdapter
    downstream: DownstreamPush

    def __post_init__(self) -> None:
        # Checked with getattr rather than isinstance so resilient wrappers,
        # which resolve methods dynamically, are accepted.
        for item in fields(self):
            implementation = getattr(self, item.name)
            method = CAPABILITY_METHODS[item.name]
            if not callable(getattr(implementation, method, None)):
                raise TypeError(
                    f"{item.name} implementation {type(implementation).__name__} does not provide {method}()"
                )
