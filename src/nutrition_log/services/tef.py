"""Thermic-effect-of-food analysis with content-hash caching and debounce."""

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from nutrition_log.domain.errors import NoRecordDataError
from nutrition_log.domain.metabolism import compute_tef_analysis
from nutrition_log.domain.profile import AIConfig
from nutrition_log.domain.records import FoodEntry, TEFAnalysis, is_placeholder

_logger = logging.getLogger(__name__)

_HASH_EXCLUDE = {"log_id", "is_pending"}

CacheListener = Callable[[str, TEFAnalysis], None]


def food_entries_hash(entries: list[FoodEntry]) -> str:
    """Hash the content of a food list; ids and placeholders do not count."""
    content = [
        entry.model_dump(mode="json", exclude=_HASH_EXCLUDE)
        for entry in entries
        if not is_placeholder(entry)
    ]
    encoded = json.dumps(content, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def should_recompute(entries: list[FoodEntry], last_seen_hash: str) -> bool:
    """Return True when the list's content differs from the last seen hash."""
    return food_entries_hash(entries) != last_seen_hash


class TEFAnalysisClient(Protocol):
    """Interface for the AI enhancement analysis."""

    async def analyze_tef(
        self, food_entries: list[FoodEntry], ai_config: AIConfig
    ) -> dict[str, object]:
        """Return ``{enhancementMultiplier, enhancementFactors, analysisTimestamp}``."""


@dataclass
class _CacheEntry:
    analysis: TEFAnalysis
    cached_at: datetime
    expires_at: datetime


@dataclass
class TEFAnalysisCache:
    """In-memory analyses keyed by food-list content hash."""

    ttl_seconds: int = 86400
    _entries: dict[str, _CacheEntry] = field(default_factory=dict)
    _listeners: list[CacheListener] = field(default_factory=list)

    def get(self, entries: list[FoodEntry]) -> TEFAnalysis | None:
        """Return the cached analysis for this content if it hasn't expired."""
        key = food_entries_hash(entries)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if datetime.now(tz=UTC) >= entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.analysis

    def set(self, entries: list[FoodEntry], analysis: TEFAnalysis) -> None:
        """Cache an analysis and notify listeners."""
        key = food_entries_hash(entries)
        now = datetime.now(tz=UTC)
        self._entries[key] = _CacheEntry(
            analysis=analysis,
            cached_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        for listener in list(self._listeners):
            try:
                listener(key, analysis)
            except Exception:
                _logger.exception("TEF cache listener failed")

    def clear(self) -> None:
        self._entries.clear()

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


@dataclass
class TEFService:
    """Combines the local base TEF with the AI enhancement analysis."""

    client: TEFAnalysisClient
    cache: TEFAnalysisCache

    def cached(self, entries: list[FoodEntry]) -> TEFAnalysis | None:
        return self.cache.get(entries)

    async def analyze(
        self, entries: list[FoodEntry], ai_config: AIConfig
    ) -> TEFAnalysis:
        """Analyse a food list and cache the result."""
        food = [entry for entry in entries if not is_placeholder(entry)]
        if not food:
            raise NoRecordDataError("Add food entries before analysing TEF")
        remote = await self.client.analyze_tef(food, ai_config)
        multiplier = _as_float(remote.get("enhancementMultiplier"), 1.0)
        local = compute_tef_analysis(food, multiplier)
        factors = remote.get("enhancementFactors")
        timestamp = remote.get("analysisTimestamp")
        analysis = local.model_copy(
            update={
                "enhancement_factors": (
                    [str(factor) for factor in factors]
                    if isinstance(factors, list) and factors
                    else local.enhancement_factors
                ),
                "analysis_timestamp": (
                    str(timestamp) if timestamp else local.analysis_timestamp
                ),
            }
        )
        self.cache.set(food, analysis)
        return analysis


@dataclass
class TEFRecomputeScheduler:
    """Debounces recomputation until the food list has been quiet for a while.

    A qualifying change (new content hash) restarts the quiet period; an
    empty list cancels any pending run and clears the analysis at once. Runs
    are bound to the date whose food list changed.
    """

    recompute: Callable[[str, list[FoodEntry]], Awaitable[None]]
    clear: Callable[[str], Awaitable[None]]
    quiet_period_seconds: float = 15.0
    last_seen_hash: str = ""
    _task: asyncio.Task[None] | None = None
    _deadline: float | None = None

    @property
    def countdown(self) -> float:
        """Seconds until the pending recomputation fires, 0 when idle."""
        if self._deadline is None or self._task is None or self._task.done():
            return 0.0
        return max(0.0, self._deadline - time.monotonic())

    @property
    def is_pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def notify(self, date_key: str, entries: list[FoodEntry]) -> bool:
        """Report a date's food list; return True if a run was scheduled."""
        food = [entry for entry in entries if not is_placeholder(entry)]
        if not food:
            self.reset()
            await self.clear(date_key)
            return False
        if not should_recompute(food, self.last_seen_hash):
            return False
        self.last_seen_hash = food_entries_hash(food)
        self.cancel()
        self._deadline = time.monotonic() + self.quiet_period_seconds
        self._task = asyncio.create_task(self._fire(date_key, food))
        return True

    def reset(self) -> None:
        """Cancel any pending run and forget the last seen food list."""
        self.cancel()
        self.last_seen_hash = ""

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._deadline = None

    async def _fire(self, date_key: str, entries: list[FoodEntry]) -> None:
        await asyncio.sleep(self.quiet_period_seconds)
        self._deadline = None
        _logger.info("Food entries for %s quiet, running TEF analysis", date_key)
        try:
            await self.recompute(date_key, entries)
        except Exception as exc:
            _logger.warning("Automatic TEF analysis failed: %s", exc)


def _as_float(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return default
    return float(value)
