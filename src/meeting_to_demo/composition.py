"""Composition root: decide which implementation backs each capability.

This is the only place that looks at credentials. The orchestrator receives
the finished :class:`AdapterSet` and never inspects the environment itself.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .capabilities import AdapterSet
from .integrations import AsanaPushAdapter, HttpMeetingSource, ReviewPackagingAdapter
from .llm import read_api_key
from .llm_adapters import LLMBriefAdapter, LLMPRDAdapter, V0PrototypeAdapter
from .mock_adapters import (
    MockBriefAdapter,
    MockDownstream,
    MockMeetingSource,
    MockPRDAdapter,
    MockPrototypeAdapter,
)
from .resilient import ResilientAdapter
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


def _resolve(capability: str, mode: str, configured: bool, missing: str, build_real: Any, mock: Any) -> Any:
    """Return the implementation for one capability.

    ``build_real`` is only called when the real implementation is selected,
    and the result is always wrapped with ``mock`` as its fallback.
    """
    if mode == "mock" or (mode == "auto" and not configured):
        logger.info("Capability %s: using mock implementation", capability)
        return mock
    if not configured:
        raise RuntimeError(f"M2D_ADAPTER_MODE=real requires {missing} for capability {capability}")
    real = build_real()
    logger.info("Capability %s: using %s with mock fallback", capability, type(real).__name__)
    return ResilientAdapter(capability, real, mock)


def build_adapter_set(settings: RuntimeSettings, *, repo_root: Path | None = None) -> AdapterSet:
    """Build the capability map for ``settings.adapter_mode``.

    Raises:
        RuntimeError: In ``real`` mode when a capability's credentials are missing.
    """
    mode = settings.adapter_mode
    openai_key = read_api_key("OPENAI_API_KEY", repo_root=repo_root)
    v0_key = read_api_key("V0_API_KEY", repo_root=repo_root)
    meeting_token = read_api_key("M2D_MEETING_SOURCE_TOKEN", repo_root=repo_root)
    asana_token = read_api_key("ASANA_ACCESS_TOKEN", repo_root=repo_root)

    mock_briefs = MockBriefAdapter()
    mock_prototypes = MockPrototypeAdapter()
    llm_kwargs = {
        "model_name": settings.openai_model,
        "timeout": settings.llm_timeout_seconds,
        "max_retries": settings.llm_max_retries,
    }

    brief_adapter = _resolve(
        "brief_formatter",
        mode,
        bool(openai_key),
        "OPENAI_API_KEY",
        lambda: LLMBriefAdapter(**llm_kwargs),
        mock_briefs,
    )
    return AdapterSet(
        meeting_source=_resolve(
            "meeting_source",
            mode,
            bool(settings.meeting_source_url),
            "M2D_MEETING_SOURCE_URL",
            lambda: HttpMeetingSource(
                settings.meeting_source_url,
                meeting_token,
                timeout=settings.http_timeout_seconds,
            ),
            MockMeetingSource(),
        ),
        brief_formatter=brief_adapter,
        context_enricher=brief_adapter,
        prd_generator=_resolve(
            "prd_generator",
            mode,
            bool(openai_key),
            "OPENAI_API_KEY",
            lambda: LLMPRDAdapter(**llm_kwargs),
            MockPRDAdapter(),
        ),
        prototype_generator=_resolve(
            "prototype_generator",
            mode,
            bool(v0_key),
            "V0_API_KEY",
            lambda: V0PrototypeAdapter(
                model_name=settings.v0_model,
                base_url=settings.v0_base_url,
                timeout=settings.llm_timeout_seconds,
                max_retries=settings.llm_max_retries,
            ),
            mock_prototypes,
        ),
        prototype_adapter=_resolve(
            "prototype_adapter",
            mode,
            True,
            "",
            ReviewPackagingAdapter,
            mock_prototypes,
        ),
        downstream=_resolve(
            "downstream",
            mode,
            bool(asana_token and settings.asana_project_gid),
            "ASANA_ACCESS_TOKEN and M2D_ASANA_PROJECT_GID",
            lambda: AsanaPushAdapter(asana_token, settings.asana_project_gid, timeout=settings.http_timeout_seconds),
            MockDownstream(),
        ),
    )
