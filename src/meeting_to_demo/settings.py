from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ADAPTER_MODES = frozenset({"auto", "mock", "real"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    runs_dir: str = "data/runs"
    adapter_mode: str = "auto"
    openai_model: str = "gpt-4o"
    llm_timeout_seconds: int = 120
    llm_max_retries: int = 2
    v0_model: str = "v0-1.5-md"
    v0_base_url: str = "https://api.v0.dev/v1"
    meeting_source_url: str = ""
    asana_project_gid: str = ""
    http_timeout_seconds: int = 30
    approver: str = "operator"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            runs_dir=os.getenv("M2D_RUNS_DIR", "data/runs"),
            adapter_mode=os.getenv("M2D_ADAPTER_MODE", "auto"),
            openai_model=os.getenv("M2D_OPENAI_MODEL", "gpt-4o"),
            llm_timeout_seconds=_get_env_int("M2D_LLM_TIMEOUT_SECONDS", default=120, minimum=1, maximum=3_600),
            llm_max_retries=_get_env_int("M2D_LLM_MAX_RETRIES", default=2, minimum=0, maximum=10),
            v0_model=os.getenv("M2D_V0_MODEL", "v0-1.5-md"),
            v0_base_url=os.getenv("M2D_V0_BASE_URL", "https://api.v0.dev/v1"),
            meeting_source_url=os.getenv("M2D_MEETING_SOURCE_URL", ""),
            asana_project_gid=os.getenv("M2D_ASANA_PROJECT_GID", ""),
            http_timeout_seconds=_get_env_int("M2D_HTTP_TIMEOUT_SECONDS", default=30, minimum=1, maximum=600),
            approver=os.getenv("M2D_APPROVER", "operator"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        adapter_mode = self.adapter_mode.strip().lower()
        if adapter_mode not in ADAPTER_MODES:
            raise ValueError("M2D_ADAPTER_MODE must be one of: auto, mock, real")

        if not self.runs_dir.strip():
            raise ValueError("M2D_RUNS_DIR must be non-empty")
        openai_model = self.openai_model.strip()
        if not openai_model:
            raise ValueError("M2D_OPENAI_MODEL must be non-empty")
        v0_model = self.v0_model.strip()
        if not v0_model:
            raise ValueError("M2D_V0_MODEL must be non-empty")
        approver = self.approver.strip()
        if not approver:
            raise ValueError("M2D_APPROVER must be non-empty")

        v0_base_url = self.v0_base_url.strip().rstrip("/")
        meeting_source_url = self.meeting_source_url.strip()
        for name, url in (("M2D_V0_BASE_URL", v0_base_url), ("M2D_MEETING_SOURCE_URL", meeting_source_url)):
            if url and not url.startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL, got: {url!r}")

        return RuntimeSettings(
            runs_dir=self.runs_dir,
            adapter_mode=adapter_mode,
            openai_model=openai_model,
            llm_timeout_seconds=self.llm_timeout_seconds,
            llm_max_retries=self.llm_max_retries,
            v0_model=v0_model,
            v0_base_url=v0_base_url,
            meeting_source_url=meeting_source_url,
            asana_project_gid=self.asana_project_gid.strip(),
            http_timeout_seconds=self.http_timeout_seconds,
            approver=approver,
        )

    def runs_path(self, repo_root: Path | None = None) -> Path:
        path = Path(self.runs_dir)
        if path.is_absolute():
            return path
        return (repo_root if repo_root is not None else Path.cwd()) / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Integer from env var ``name`` (``default`` when unset), bounded to [minimum, maximum].

    Raises:
        ValueError: Not an integer, or out of bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
