"""Date-scoped refresh signalling between sync and record consumers."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

_logger = logging.getLogger(__name__)


class RefreshSource(StrEnum):
    """Why a date's local record should be reloaded."""

    CLOUD_SYNC = "cloudSync"
    DELETE = "delete"
    CONFLICT = "conflict"
    ANALYSIS_CACHE = "analysisCache"


@dataclass(frozen=True)
class RefreshSignal:
    """Request to reload the local record for one date."""

    date: str
    source: RefreshSource


RefreshListener = Callable[[RefreshSignal], None]


@dataclass
class RefreshChannel:
    """Publish/subscribe channel for refresh signals."""

    _listeners: list[RefreshListener] = field(default_factory=list)

    def subscribe(self, listener: RefreshListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, signal: RefreshSignal) -> None:
        """Deliver a signal to every listener; listener errors are logged."""
        _logger.info("Refresh signal for %s (source=%s)", signal.date, signal.source)
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                _logger.exception("Refresh listener failed for %s", signal.date)
