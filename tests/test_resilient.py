from __future__ import annotations

import logging

import pytest

from meeting_to_demo.capabilities import AdapterSet
from meeting_to_demo.errors import CapabilityUnavailableError
from meeting_to_demo.mock_adapters import MockPRDAdapter, mock_adapter_set
from meeting_to_demo.models import ContextPacket, PRDResult
from meeting_to_demo.resilient import ResilientAdapter


class _FailingPRDAdapter:
    def __init__(self) -> None:
        self.calls = 0

    def generate_prd(self, context: ContextPacket) -> PRDResult:
        self.calls += 1
        raise CapabilityUnavailableError("generate_prd", "401 Unauthorized")


class _ExplodingFallback:
    def generate_prd(self, context: ContextPacket) -> PRDResult:
        raise RuntimeError("fallback down too")


def _context() -> ContextPacket:
    return ContextPacket(project_context="Settings page", scope="Add dark mode toggle")


def test_primary_result_is_returned_without_fallback() -> None:
    primary = MockPRDAdapter()
    adapter = ResilientAdapter("prd_generator", primary, _ExplodingFallback())

    result = adapter.generate_prd(_context())

    assert result.prd.title == "PRD: Add dark mode toggle"
    assert adapter.fallback_count == 0


def test_primary_failure_falls_back_once_and_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    primary = _FailingPRDAdapter()
    adapter = ResilientAdapter("prd_generator", primary, MockPRDAdapter())

    with caplog.at_level(logging.WARNING, logger="meeting_to_demo.resilient"):
        result = adapter.generate_prd(_context())

    assert result.prd.title == "PRD: Add dark mode toggle"
    assert primary.calls == 1
    assert adapter.fallback_count == 1
    assert isinstance(adapter.last_error, CapabilityUnavailableError)
    assert "prd_generator.generate_prd" in caplog.text
    assert "401 Unauthorized" in caplog.text


def test_primary_is_tried_again_on_every_call() -> None:
    primary = _FailingPRDAdapter()
    adapter = ResilientAdapter("prd_generator", primary, MockPRDAdapter())

    adapter.generate_prd(_context())
    adapter.generate_prd(_context())

    assert primary.calls == 2
    assert adapter.fallback_count == 2


def test_fallback_error_propagates() -> None:
    adapter = ResilientAdapter("prd_generator", _FailingPRDAdapter(), _ExplodingFallback())
    with pytest.raises(RuntimeError, match="fallback down too"):
        adapter.generate_prd(_context())


def test_unknown_methods_raise_attribute_error() -> None:
    adapter = ResilientAdapter("prd_generator", MockPRDAdapter(), MockPRDAdapter())
    with pytest.raises(AttributeError):
        adapter.enrich_context
    with pytest.raises(AttributeError):
        adapter._private


def test_adapter_set_accepts_resilient_wrappers_and_rejects_missing_methods() -> None:
    mocks = mock_adapter_set()
    wrapped = ResilientAdapter("prd_generator", _FailingPRDAdapter(), mocks.prd_generator)
    fields = {name: getattr(mocks, name) for name in AdapterSet.__dataclass_fields__}

    AdapterSet(**{**fields, "prd_generator": wrapped})
    with pytest.raises(TypeError, match="prd_generator"):
        AdapterSet(**{**fields, "prd_generator": object()})
