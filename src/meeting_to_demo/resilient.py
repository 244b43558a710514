from __future__ import annotations

import functools
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ResilientAdapter:
    """Present ``primary`` and ``fallback`` behind the capability's own methods.

    Every public method call is tried once on ``primary``. Any exception from
    ``primary`` triggers exactly one call to the same method on ``fallback``;
    an exception from ``fallback`` propagates unchanged. There is no retry
    loop and no recovery window: the next call tries ``primary`` again.

    Each fallback is logged at WARNING and counted in ``fallback_count`` so a
    degraded run is visible to the operator.
    """

    def __init__(self, capability: str, primary: Any, fallback: Any) -> None:
        self.capability = capability
        self.primary = primary
        self.fallback = fallback
        self.fallback_count = 0
        self.last_error: BaseException | None = None

    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes not set in __init__.
        if name.startswith("_"):
            raise AttributeError(name)
        primary_method = getattr(self.primary, name)
        if not callable(primary_method):
            return primary_method
        fallback_method = getattr(self.fallback, name)
        return self._wrap(name, primary_method, fallback_method)

    def _wrap(self, name: str, primary_method: Callable[..., Any], fallback_method: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(primary_method)
        def call(*args: Any, **kwargs: Any) -> Any:
            try:
                return primary_method(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                self.fallback_count += 1
                self.last_error = exc
                logger.warning(
                    "Resilient %s.%s: primary %s failed (%s: %s); falling back to %s",
                    self.capability,
                    name,
                    type(self.primary).__name__,
                    type(exc).__name__,
                    exc,
                    type(self.fallback).__name__,
                )
            return fallback_method(*args, **kwargs)

        return call

    def __repr__(self) -> str:
        return (
            f"ResilientAdapter(capability={self.capability!r}, primary={type(self.primary).__name__}, "
            f"fallback={type(self.fallback).__name__})"
        )
