from __future__ import annotations

from pathlib import Path

import pytest

from meeting_to_demo import OrchestratorService, RunStore, mock_adapter_set
from meeting_to_demo.models import Feature, FeatureBrief, RunRecord


@pytest.fixture
def store(tmp_path: Path) -> RunStore:
    return RunStore(tmp_path / "runs")


@pytest.fixture
def service(store: RunStore) -> OrchestratorService:
    return OrchestratorService(store, mock_adapter_set())


def make_brief(*titles: str, context: str = "Weekly sync") -> FeatureBrief:
    names = titles or ("Add dark mode toggle",)
    return FeatureBrief(
        source="test",
        context=context,
        features=[Feature(title=name, description=f"{name} for all users") for name in names],
    )


def make_record(**overrides: object) -> RunRecord:
    fields: dict[str, object] = {"feature_brief": make_brief()}
    fields.update(overrides)
    return RunRecord(**fields)
