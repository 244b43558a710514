from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from .errors import CapabilityUnavailableError
from .models import Feature, FeatureBrief, RunRecord

logger = logging.getLogger(__name__)

ASANA_TASKS_URL = "https://app.asana.com/api/1.0/tasks"
_DEFAULT_TIMEOUT_SECONDS = 30
_PRIORITIES = {"low", "medium", "high"}
_CODE_FENCE_RE = re.compile(r"```(?:tsx|jsx|typescript|ts|javascript|js)?\s*\n(.*?)```", re.DOTALL)
_URL_RE = re.compile(r"https?://\S+")


def _http_post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    *,
    timeout: int = _DEFAULT_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    """Send a JSON POST request and return the parsed JSON response.

    Raises:
        RuntimeError: If the HTTP request fails or the response is not valid JSON.
    """
    request = urllib.request.Request(
        url,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json", **headers},
        data=json.dumps(payload).encode("utf-8"),
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            data = response.read().decode("utf-8")
            return json.loads(data)
    except urllib.error.HTTPError as exc:
        body = ""
        try:
            body = exc.read().decode("utf-8", errors="replace")[:500]
        except Exception:
            pass
        logger.error("HTTP %d from %s: %s", exc.code, url, body)
        raise RuntimeError(f"HTTP {exc.code} from {url}: {exc.reason}") from exc
    except urllib.error.URLError as exc:
        logger.error("URL error reaching %s: %s", url, exc.reason)
        raise RuntimeError(f"Failed to reach {url}: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON response from %s", url)
        raise RuntimeError(f"Invalid JSON response from {url}") from exc


def _normalize_priority(value: Any) -> str:
    lowered = str(value or "").strip().lower()
    return lowered if lowered in _PRIORITIES else "medium"


class HttpMeetingSource:
    """Fetch the feature requests discussed in a meeting from a JSON endpoint.

    The endpoint receives ``{"meetingId": ...}`` and answers with
    ``{"date": ..., "summary": ..., "features": [{"title", "description", "priority"}],
    "quotes": [...]}``.
    """

    def __init__(self, url: str, token: str, *, timeout: int = _DEFAULT_TIMEOUT_SECONDS) -> None:
        if not url:
            raise ValueError("meeting source url must be non-empty")
        self.url = url
        self.token = token
        self.timeout = timeout

    def get_feature_brief(self, meeting_ref: str) -> FeatureBrief:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            data = _http_post_json(self.url, {"meetingId": meeting_ref}, headers, timeout=self.timeout)
        except RuntimeError as exc:
            raise CapabilityUnavailableError("get_feature_brief", str(exc)) from exc

        raw_features = data.get("features")
        if not isinstance(raw_features, list) or not raw_features:
            raise CapabilityUnavailableError("get_feature_brief", f"meeting {meeting_ref} returned no features")
        try:
            features = [
                Feature(
                    title=item.get("title") or item.get("name") or "Untitled Feature",
                    description=item.get("description", ""),
                    priority=_normalize_priority(item.get("priority")),
                )
                for item in raw_features
                if isinstance(item, dict)
            ]
            meeting_date = data.get("date")
            return FeatureBrief(
                source=meeting_ref,
                meeting_date=datetime.fromisoformat(meeting_date) if meeting_date else datetime.now().astimezone(),
                context=data.get("summary") or "Summary from meeting",
                features=features,
                supporting_quotes=[str(quote) for quote in data.get("quotes", [])],
            )
        except (ValidationError, ValueError, TypeError) as exc:
            raise CapabilityUnavailableError("get_feature_brief", f"unparseable meeting payload: {exc}") from exc


class AsanaPushAdapter:
    """Create one Asana task per completed run in the configured project."""

    def __init__(self, token: str, project_gid: str, *, timeout: int = _DEFAULT_TIMEOUT_SECONDS) -> None:
        if not token:
            raise ValueError("Asana access token must be non-empty")
        if not project_gid:
            raise ValueError("Asana project gid must be non-empty")
        self.token = token
        self.project_gid = project_gid
        self.timeout = timeout

    @staticmethod
    def task_notes(record: RunRecord) -> str:
        lines = [f"Run: {record.run_id}"]
        if record.prd is not None:
            lines.append(f"PRD: {record.prd.title}")
            lines.extend(f"- [{item.priority}] {item.description}" for item in record.prd.requirements)
            if record.prd.acceptance_criteria:
                lines.append("Acceptance criteria:")
                lines.extend(f"- {criterion}" for criterion in record.prd.acceptance_criteria)
        if record.artifacts.get("prototype"):
            lines.append(f"Prototype artifact: {record.artifacts['prototype']}")
        return "\n".join(lines)

    def push_downstream(self, record: RunRecord) -> None:
        payload = {
            "data": {
                "name": record.prd.title if record.prd is not None else record.feature_brief.title,
                "notes": self.task_notes(record),
                "projects": [self.project_gid],
            }
        }
        try:
            response = _http_post_json(
                ASANA_TASKS_URL,
                payload,
                {"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
        except RuntimeError as exc:
            raise CapabilityUnavailableError("push_downstream", str(exc)) from exc
        task_gid = (response.get("data") or {}).get("gid")
        logger.info("Pushed run %s to Asana task %s", record.run_id, task_gid)


class ReviewPackagingAdapter:
    """Turn raw prototype output into a review-ready TSX module.

    Pulls the code out of a fenced block when the generator wrapped it in
    markdown and prepends a review banner. Plain code gets the banner only.
    A hosted prototype URL is returned unchanged.
    """

    def adapt_prototype(self, artifact: str) -> str:
        if not artifact.strip():
            raise CapabilityUnavailableError("adapt_prototype", "prototype artifact is empty")
        if _URL_RE.fullmatch(artifact.strip()):
            return artifact.strip()
        match = _CODE_FENCE_RE.search(artifact)
        code = match.group(1).strip() if match else artifact.strip()
        return f"// Ready for review: generated prototype\n{code}\n"
