from __future__ import annotations

import re
from typing import Iterable, Pattern

from .models import FeatureBrief

REDACTED = "[REDACTED]"

DEFAULT_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),  # email
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"\b\d{3}-\d{3}-\d{4}\b"),  # phone
)


def scrub_text(text: str, patterns: Iterable[Pattern[str]] = DEFAULT_PATTERNS) -> str:
    scrubbed = text
    for pattern in patterns:
        scrubbed = pattern.sub(REDACTED, scrubbed)
    return scrubbed


def scrub_brief(brief: FeatureBrief, patterns: Iterable[Pattern[str]] = DEFAULT_PATTERNS) -> FeatureBrief:
    """Return a copy of ``brief`` with personal data redacted from every free-text field."""
    patterns = tuple(patterns)
    return brief.model_copy(
        update={
            "context": scrub_text(brief.context, patterns),
            "features": [
                feature.model_copy(
                    update={
                        "title": scrub_text(feature.title, patterns),
                        "description": scrub_text(feature.description, patterns),
                    }
                )
                for feature in brief.features
            ],
            "supporting_quotes": [scrub_text(quote, patterns) for quote in brief.supporting_quotes],
        },
        deep=True,
    )
