from __future__ import annotations

from pathlib import Path

import pytest

from meeting_to_demo import get_version
from meeting_to_demo.settings import RuntimeSettings


def test_runtime_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("M2D_RUNS_DIR", "M2D_ADAPTER_MODE", "M2D_LLM_TIMEOUT_SECONDS", "M2D_APPROVER"):
        monkeypatch.delenv(name, raising=False)
    settings = RuntimeSettings.from_env()
    assert settings.runs_dir == "data/runs"
    assert settings.adapter_mode == "auto"
    assert settings.llm_timeout_seconds == 120
    assert settings.approver == "operator"


def test_runtime_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("M2D_ADAPTER_MODE", " MOCK ")
    monkeypatch.setenv("M2D_LLM_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("M2D_V0_BASE_URL", "https://v0.example.com/v1/")
    monkeypatch.setenv("M2D_APPROVER", "pm@team")

    settings = RuntimeSettings.from_env()

    assert settings.adapter_mode == "mock"
    assert settings.llm_timeout_seconds == 45
    assert settings.v0_base_url == "https://v0.example.com/v1"
    assert settings.approver == "pm@team"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("M2D_ADAPTER_MODE", "sometimes", "M2D_ADAPTER_MODE"),
        ("M2D_LLM_TIMEOUT_SECONDS", "abc", "must be an integer"),
        ("M2D_LLM_MAX_RETRIES", "99", "must be <= 10"),
        ("M2D_MEETING_SOURCE_URL", "ftp://meetings", "http"),
        ("M2D_APPROVER", "  ", "M2D_APPROVER"),
    ],
)
def test_runtime_settings_invalid_env_raises(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message):
        RuntimeSettings.from_env()


def test_runs_path_resolves_against_repo_root(tmp_path: Path) -> None:
    assert RuntimeSettings(runs_dir="runs").runs_path(tmp_path) == tmp_path / "runs"
    absolute = tmp_path / "elsewhere"
    assert RuntimeSettings(runs_dir=str(absolute)).runs_path(Path("/ignored")) == absolute


def test_get_version_returns_string() -> None:
    assert isinstance(get_version(), str)
