"""Deterministic stand-ins for every capability.

Used directly when no credentials are configured and as the fallback side of
every resilient adapter, so their output must always be good enough for the
next step to consume.
"""

from __future__ import annotations

import logging

from .capabilities import AdapterSet
from .models import (
    PRD,
    ContextPacket,
    Feature,
    FeatureBrief,
    PRDResult,
    Requirement,
    RunRecord,
    Screen,
    UIComponent,
    UIContract,
)

logger = logging.getLogger(__name__)

MOCK_PROTOTYPE_URL = "https://v0.dev/mock-prototype-url"


class MockMeetingSource:
    def get_feature_brief(self, meeting_ref: str) -> FeatureBrief:
        return FeatureBrief(
            source=meeting_ref,
            context="Initial mock context",
            features=[
                Feature(
                    title="Mock Feature Request",
                    description="A mock feature request from a meeting.",
                    priority="medium",
                )
            ],
        )


class MockBriefAdapter:
    def format_feature_brief(self, raw_text: str) -> FeatureBrief:
        text = raw_text.strip()
        return FeatureBrief(
            source="text",
            context=text,
            features=[
                Feature(
                    title=text[:80] or "Untitled Feature",
                    description=text,
                    priority="medium",
                )
            ],
        )

    def enrich_context(self, brief: FeatureBrief) -> ContextPacket:
        return ContextPacket(
            project_context=brief.context or "Feature request",
            scope=", ".join(feature.title for feature in brief.features),
            assumptions=["Existing design system is reused", "No backend changes are required for the demo"],
            open_questions=[f"Who is the primary user of {brief.title}?"],
        )


class MockPRDAdapter:
    def generate_prd(self, context: ContextPacket) -> PRDResult:
        feature = context.scope or context.project_context or "Feature"
        prd = PRD(
            title=f"PRD: {feature}",
            overview=f"Product Requirements Document for: {feature}\n\nContext: {context.project_context}",
            requirements=[
                Requirement(description=f"Implement the core feature: {feature}", priority="must"),
                Requirement(description="Ensure responsive design across desktop and mobile", priority="must"),
                Requirement(description="Add smooth animations and visual polish", priority="should"),
                Requirement(description="Include accessibility support", priority="should"),
            ],
            acceptance_criteria=[
                f'The feature "{feature}" works as described',
                "UI is responsive and visually polished",
                "No console errors or warnings",
            ],
        )
        ui_contract = UIContract(
            screens=[
                Screen(
                    name=feature,
                    route="/",
                    description=f"Main screen implementing: {feature}",
                    components=[UIComponent(name="FeatureComponent", props={"feature": feature})],
                )
            ]
        )
        return PRDResult(prd=prd, ui_contract=ui_contract)


class MockPrototypeAdapter:
    def generate_prototype(self, ui_contract: UIContract, fixtures: str) -> str:
        return MOCK_PROTOTYPE_URL

    def adapt_prototype(self, artifact: str) -> str:
        return f"Mock Adapted Prototype based on {artifact}"


class MockDownstream:
    def __init__(self) -> None:
        self.pushed: list[str] = []

    def push_downstream(self, record: RunRecord) -> None:
        logger.info("Mock downstream push for run %s", record.run_id)
        self.pushed.append(record.run_id)


def mock_adapter_set() -> AdapterSet:
    briefs = MockBriefAdapter()
    prototypes = MockPrototypeAdapter()
    return AdapterSet(
        meeting_source=MockMeetingSource(),
        brief_formatter=briefs,
        context_enricher=briefs,
        prd_generator=MockPRDAdapter(),
        prototype_generator=prototypes,
        prototype_adapter=prototypes,
        downstream=MockDownstream(),
    )
