from __future__ import annotations

import urllib.error
from pathlib import Path
from typing import Any

import pytest

from conftest import make_record
from meeting_to_demo import OrchestratorService, RunStore
from meeting_to_demo import integrations as integrations_module
from meeting_to_demo import llm_adapters as llm_adapters_module
from meeting_to_demo.composition import build_adapter_set
from meeting_to_demo.errors import CapabilityUnavailableError
from meeting_to_demo.integrations import ASANA_TASKS_URL, AsanaPushAdapter, HttpMeetingSource, ReviewPackagingAdapter
from meeting_to_demo.llm import normalize_structured_output
from meeting_to_demo.llm_adapters import LLMBriefAdapter, LLMPRDAdapter, V0PrototypeAdapter
from meeting_to_demo.mock_adapters import MOCK_PROTOTYPE_URL, MockBriefAdapter, MockDownstream, MockPRDAdapter
from meeting_to_demo.models import PRD, ContextPacket, Screen, UIComponent, UIContract
from meeting_to_demo.resilient import ResilientAdapter
from meeting_to_demo.settings import RuntimeSettings

_CREDENTIALS = ("OPENAI_API_KEY", "V0_API_KEY", "M2D_MEETING_SOURCE_TOKEN", "ASANA_ACCESS_TOKEN")


@pytest.fixture(autouse=True)
def _no_ambient_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    # Set then delete so values loaded from a .env file are also undone.
    for name in _CREDENTIALS:
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)


class _FakeStructuredModel:
    def __init__(self, schema: type, payload: dict[str, Any]) -> None:
        self.schema = schema
        self.payload = payload
        self.prompts: list[Any] = []

    def invoke(self, prompt: Any) -> Any:
        self.prompts.append(prompt)
        return normalize_structured_output(raw_output={"parsed": self.payload, "parsing_error": None}, schema=self.schema)


class _FakeMessage:
    def __init__(self, content: Any) -> None:
        self.content = content


# ---------------------------------------------------------------------------
# HTTP integrations
# ---------------------------------------------------------------------------

def test_meeting_source_builds_brief_from_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def _fake_http_post_json(url: str, payload: dict[str, Any], headers: dict[str, str], *, timeout: int) -> dict[str, Any]:
        captured.update(url=url, payload=payload, headers=headers, timeout=timeout)
        return {
            "date": "2026-03-02T10:00:00+00:00",
            "summary": "Roadmap review",
            "features": [
                {"title": "Dark mode", "description": "Theme switch", "priority": "High"},
                {"name": "Saved filters", "priority": "someday"},
            ],
            "quotes": ["We really need dark mode"],
        }

    monkeypatch.setattr(integrations_module, "_http_post_json", _fake_http_post_json)

    brief = HttpMeetingSource("https://meetings.example.com/brief", "tok", timeout=5).get_feature_brief("m-1")

    assert captured["payload"] == {"meetingId": "m-1"}
    assert captured["headers"] == {"Authorization": "Bearer tok"}
    assert captured["timeout"] == 5
    assert brief.source == "m-1"
    assert brief.context == "Roadmap review"
    assert [(f.title, f.priority) for f in brief.features] == [("Dark mode", "high"), ("Saved filters", "medium")]
    assert brief.supporting_quotes == ["We really need dark mode"]
    assert brief.meeting_date.year == 2026


def test_meeting_source_without_features_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(integrations_module, "_http_post_json", lambda *args, **kwargs: {"features": []})
    with pytest.raises(CapabilityUnavailableError, match="no features"):
        HttpMeetingSource("https://meetings.example.com/brief", "").get_feature_brief("m-2")


def test_meeting_source_transport_failure_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def _failing(*args: Any, **kwargs: Any) -> dict[str, Any]:
        raise RuntimeError("Failed to reach https://meetings.example.com/brief: Connection refused")

    monkeypatch.setattr(integrations_module, "_http_post_json", _failing)
    with pytest.raises(CapabilityUnavailableError, match="Connection refused"):
        HttpMeetingSource("https://meetings.example.com/brief", "tok").get_feature_brief("m-3")


def test_http_post_json_wraps_url_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(request: Any, timeout: int) -> Any:
        raise urllib.error.URLError("Connection refused")

    monkeypatch.setattr(integrations_module.urllib.request, "urlopen", _refuse)
    with pytest.raises(RuntimeError, match="Connection refused"):
        integrations_module._http_post_json("https://example.invalid/", {}, {}, timeout=1)


def test_asana_push_posts_task_for_run(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def _fake_http_post_json(url: str, payload: dict[str, Any], headers: dict[str, str], *, timeout: int) -> dict[str, Any]:
        captured.update(url=url, payload=payload, headers=headers)
        return {"data": {"gid": "1200"}}

    monkeypatch.setattr(integrations_module, "_http_post_json", _fake_http_post_json)
    record = make_record(prd=PRD(title="PRD: Dark mode", acceptance_criteria=["Toggle persists"]))

    AsanaPushAdapter("asana-token", "42").push_downstream(record)

    assert captured["url"] == ASANA_TASKS_URL
    assert captured["headers"] == {"Authorization": "Bearer asana-token"}
    data = captured["payload"]["data"]
    assert data["name"] == "PRD: Dark mode"
    assert data["projects"] == ["42"]
    assert f"Run: {record.run_id}" in data["notes"]
    assert "- Toggle persists" in data["notes"]


def test_asana_push_requires_configuration() -> None:
    with pytest.raises(ValueError):
        AsanaPushAdapter("", "42")
    with pytest.raises(ValueError):
        AsanaPushAdapter("token", "")


def test_review_packaging_extracts_fenced_code() -> None:
    adapter = ReviewPackagingAdapter()
    adapted = adapter.adapt_prototype("Here you go:\n```tsx\nexport default function App() {}\n```\nEnjoy")
    assert adapted == "// Ready for review: generated prototype\nexport default function App() {}\n"
    with pytest.raises(CapabilityUnavailableError):
        adapter.adapt_prototype("   ")


def test_review_packaging_passes_prototype_urls_through() -> None:
    adapter = ReviewPackagingAdapter()
    assert adapter.adapt_prototype(" https://v0.dev/mock-prototype-url\n") == "https://v0.dev/mock-prototype-url"


# ---------------------------------------------------------------------------
# LLM-backed adapters
# ---------------------------------------------------------------------------

def test_llm_brief_adapter_formats_and_enriches(monkeypatch: pytest.MonkeyPatch) -> None:
    payloads = {
        "_BriefDraft": {
            "title": "Theme work",
            "description": "Users asked for themes",
            "features": [{"title": "Dark mode", "description": "Theme switch", "priority": "high"}],
            "supporting_quotes": ["dark mode please"],
        },
        "_ContextDraft": {
            "project_context": "Web app settings",
            "scope": "Dark mode",
            "assumptions": ["Tailwind available"],
            "open_questions": ["Default theme?"],
        },
    }
    models: list[_FakeStructuredModel] = []

    def _fake_get_structured_chat_model(*, model_name: str, schema: type, **kwargs: Any) -> _FakeStructuredModel:
        assert model_name == "gpt-test"
        model = _FakeStructuredModel(schema, payloads[schema.__name__])
        models.append(model)
        return model

    monkeypatch.setattr(llm_adapters_module, "get_structured_chat_model", _fake_get_structured_chat_model)
    adapter = LLMBriefAdapter(model_name="gpt-test")

    brief = adapter.format_feature_brief("Can we get dark mode please?")
    context = adapter.enrich_context(brief)

    assert brief.source == "text"
    assert brief.features[0].priority == "high"
    assert brief.supporting_quotes == ["dark mode please"]
    assert context.scope == "Dark mode"
    assert context.open_questions == ["Default theme?"]
    assert models[0].prompts[0][1] == ("human", "Can we get dark mode please?")


def test_llm_prd_adapter_maps_draft_to_prd_and_contract(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {
        "title": "PRD: Dark mode",
        "overview": "Let users switch themes",
        "requirements": [{"description": "Toggle in settings", "priority": "must"}],
        "acceptance_criteria": ["Theme persists across reloads"],
        "user_stories": ["As a user I want a dark theme"],
        "screens": [{"name": "Settings", "route": "/settings", "description": "Settings page", "components": ["ThemeToggle"]}],
        "entities": [{"name": "Preference", "fields": [{"name": "theme", "type": "string"}]}],
    }
    monkeypatch.setattr(
        llm_adapters_module,
        "get_structured_chat_model",
        lambda *, schema, **kwargs: _FakeStructuredModel(schema, payload),
    )

    result = LLMPRDAdapter(model_name="gpt-test").generate_prd(ContextPacket(project_context="App", scope="Dark mode"))

    assert result.prd.title == "PRD: Dark mode"
    assert result.prd.requirements[0].priority == "must"
    assert result.ui_contract.screens[0].components[0].name == "ThemeToggle"
    assert result.ui_contract.entities[0].fields[0].name == "theme"


def test_llm_failures_surface_as_capability_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def _no_key(**kwargs: Any) -> Any:
        raise RuntimeError("OPENAI_API_KEY is required for LLM-backed adapters")

    monkeypatch.setattr(llm_adapters_module, "get_structured_chat_model", _no_key)

    with pytest.raises(CapabilityUnavailableError, match="OPENAI_API_KEY"):
        LLMPRDAdapter(model_name="gpt-test").generate_prd(ContextPacket(project_context="App", scope="x"))

    resilient = ResilientAdapter("prd_generator", LLMPRDAdapter(model_name="gpt-test"), MockPRDAdapter())
    assert resilient.generate_prd(ContextPacket(project_context="App", scope="x")).prd.title == "PRD: x"


def test_structured_output_parsing_error_raises() -> None:
    with pytest.raises(RuntimeError, match="parsing failed"):
        normalize_structured_output(
            raw_output={"parsed": None, "parsing_error": ValueError("bad json"), "raw": None},
            schema=PRD,
        )


def test_v0_prototype_adapter_uses_v0_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    class _FakeChat:
        def invoke(self, prompt: Any) -> _FakeMessage:
            captured["prompt"] = prompt
            return _FakeMessage([{"type": "text", "text": "export default function Toggle() {}"}])

    def _fake_get_chat_model(**kwargs: Any) -> _FakeChat:
        captured.update(kwargs)
        return _FakeChat()

    monkeypatch.setattr(llm_adapters_module, "get_chat_model", _fake_get_chat_model)
    contract = UIContract(screens=[Screen(name="Settings", components=[UIComponent(name="ThemeToggle")])])
    adapter = V0PrototypeAdapter(model_name="v0-1.5-md", base_url="https://api.v0.dev/v1")

    output = adapter.generate_prototype(contract, "export const fixtures = {};\n")

    assert output == "export default function Toggle() {}"
    assert captured["api_key_env"] == "V0_API_KEY"
    assert captured["base_url"] == "https://api.v0.dev/v1"
    assert "ThemeToggle" in captured["prompt"][1][1]
    with pytest.raises(CapabilityUnavailableError, match="no screens"):
        adapter.generate_prototype(UIContract(), "")


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def test_mock_mode_uses_mocks_even_with_credentials(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    adapters = build_adapter_set(RuntimeSettings(adapter_mode="mock").normalized(), repo_root=tmp_path)

    assert isinstance(adapters.prd_generator, MockPRDAdapter)
    assert isinstance(adapters.brief_formatter, MockBriefAdapter)
    assert isinstance(adapters.downstream, MockDownstream)


def test_auto_mode_wraps_configured_capabilities(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    adapters = build_adapter_set(RuntimeSettings(adapter_mode="auto").normalized(), repo_root=tmp_path)

    assert isinstance(adapters.prd_generator, ResilientAdapter)
    assert isinstance(adapters.prd_generator.primary, LLMPRDAdapter)
    assert isinstance(adapters.prd_generator.fallback, MockPRDAdapter)
    assert adapters.context_enricher is adapters.brief_formatter
    assert not isinstance(adapters.prototype_generator, ResilientAdapter)
    assert isinstance(adapters.downstream, MockDownstream)


def test_auto_mode_reads_credentials_from_env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("V0_API_KEY=v0-test\n", encoding="utf-8")
    adapters = build_adapter_set(RuntimeSettings(adapter_mode="auto").normalized(), repo_root=tmp_path)

    assert isinstance(adapters.prototype_generator, ResilientAdapter)
    assert isinstance(adapters.prototype_generator.primary, V0PrototypeAdapter)


def test_auto_mode_without_credentials_keeps_mock_prototype_url(tmp_path: Path) -> None:
    adapters = build_adapter_set(RuntimeSettings(adapter_mode="auto").normalized(), repo_root=tmp_path)
    service = OrchestratorService(RunStore(tmp_path / "runs"), adapters)

    record = service.approve_and_continue(service.run_phase_one("Add dark mode toggle").run_id)

    assert record.prototype_output == MOCK_PROTOTYPE_URL
    assert record.adapted_output == MOCK_PROTOTYPE_URL
    assert record.artifacts["adapted"].endswith(".url")


def test_real_mode_requires_credentials(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        build_adapter_set(RuntimeSettings(adapter_mode="real").normalized(), repo_root=tmp_path)
