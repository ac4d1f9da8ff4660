"""Session bound to the selected date: loading, refreshing and editing a day."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from nutrition_log.domain.errors import InvalidInputError, NoRecordDataError
from nutrition_log.domain.metabolism import (
    ACTIVITY_MULTIPLIERS,
    calculate_metabolic_rates,
)
from nutrition_log.domain.profile import AIConfig, UserProfile
from nutrition_log.domain.records import (
    DailyRecord,
    DailyStatus,
    Entry,
    EntryKind,
    ExerciseEntry,
    FoodEntry,
    RecordPatch,
    TEFAnalysis,
    empty_record,
)
from nutrition_log.services.parsing import ParseRequest
from nutrition_log.services.patches import PatchApplier, PatchBuilder
from nutrition_log.services.signals import (
    RefreshChannel,
    RefreshSignal,
    RefreshSource,
)
from nutrition_log.services.submissions import SubmissionManager, SubmissionResult
from nutrition_log.services.sync import SyncReconciler, SyncResult
from nutrition_log.services.tef import (
    TEFRecomputeScheduler,
    TEFService,
    food_entries_hash,
)

_logger = logging.getLogger(__name__)


@dataclass
class DailyLogSession:
    """Owns the view of one selected date and routes every edit through
    the patch applier, so racing completions never clobber each other.

    Refresh signals for the selected date reload it after a short delay to
    let the store's write settle; ``cloudSync`` signals also refresh the set
    of recorded dates.
    """

    applier: PatchApplier
    reconciler: SyncReconciler
    submissions: SubmissionManager
    channel: RefreshChannel
    profile: UserProfile
    ai_config: AIConfig
    tef_service: TEFService | None = None
    auto_tef_analysis: bool = False
    tef_debounce_seconds: float = 15.0
    refresh_delay_seconds: float = 0.3
    records_refresh_delay_seconds: float = 0.5
    selected_date: str | None = None
    recorded_dates: set[str] = field(default_factory=set)
    tef_scheduler: TEFRecomputeScheduler | None = None
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list)
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set)

    def __post_init__(self) -> None:
        self._unsubscribers.append(self.channel.subscribe(self._on_refresh))
        if self.tef_service is not None:
            self._unsubscribers.append(
                self.tef_service.cache.subscribe(self._on_analysis_cached)
            )
            if self.auto_tef_analysis and self.tef_scheduler is None:
                self.tef_scheduler = TEFRecomputeScheduler(
                    recompute=self._auto_tef,
                    clear=self._clear_tef,
                    quiet_period_seconds=self.tef_debounce_seconds,
                )

    @property
    def record(self) -> DailyRecord:
        """Current record of the selected date (an empty one if none)."""
        return self.record_for(self._require_date())

    def record_for(self, date_key: str) -> DailyRecord:
        """In-memory record of a date (an empty one if not loaded)."""
        snapshot = self.applier.snapshot(date_key)
        if snapshot is not None:
            return snapshot
        return empty_record(date_key, self.profile.activity_level)

    @property
    def tef_countdown(self) -> float:
        return self.tef_scheduler.countdown if self.tef_scheduler else 0.0

    async def select_date(self, date_key: str) -> DailyRecord | None:
        """Select a date and load it."""
        if date_key != self.selected_date and self.tef_scheduler is not None:
            self.tef_scheduler.reset()
        self.selected_date = date_key
        return await self.load(date_key)

    async def load(self, date_key: str | None = None) -> DailyRecord | None:
        """Load a date from the store.

        Returns None when the selection moved on while the read was in
        flight. An empty load triggers a one-time background full sync.
        """
        date_key = date_key or self._require_date()
        stored = await self.applier.load(date_key)
        if date_key != self.selected_date:
            _logger.info("Discarding stale load for %s", date_key)
            return None

        state = self.reconciler.state
        if stored is not None and stored.has_data():
            state.reset_auto_pull(date_key)
            return stored

        if state.should_auto_pull(date_key):
            _logger.info("No local data for %s, pulling from remote", date_key)
            state.mark_auto_pull(date_key)
            self._spawn(self._auto_pull())
        return self.record_for(date_key)

    async def submit(self, date_key: str, request: ParseRequest) -> SubmissionResult:
        """Parse text/photos into entries for a date."""
        result = await self.submissions.submit(date_key, request)
        await self._entries_changed(date_key)
        return result

    async def update_and_push(
        self, date_key: str, patch: RecordPatch | PatchBuilder
    ) -> DailyRecord:
        """Apply a patch to a date, persist it and push it."""
        record, effective = await self.applier.apply(date_key, patch)
        self.reconciler.push(date_key, effective)
        if {"food_entries", "exercise_entries"} & effective.model_fields_set:
            await self._entries_changed(date_key)
        return record

    async def update_entry(
        self, date_key: str, kind: EntryKind, entry: Entry
    ) -> DailyRecord:
        """Replace an entry with the same id."""

        def build(record: DailyRecord) -> RecordPatch:
            entries = record.entries(kind)
            positions = [
                index
                for index, current in enumerate(entries)
                if current.log_id == entry.log_id
            ]
            if not positions:
                raise InvalidInputError(f"No {kind} entry {entry.log_id}")
            entries[positions[0]] = entry
            if kind == "food":
                return RecordPatch(food_entries=entries)
            return RecordPatch(exercise_entries=entries)

        if kind == "food" and not isinstance(entry, FoodEntry):
            raise InvalidInputError("Expected a food entry")
        if kind == "exercise" and not isinstance(entry, ExerciseEntry):
            raise InvalidInputError("Expected an exercise entry")
        return await self.update_and_push(date_key, build)

    async def delete_entry(
        self, date_key: str, kind: EntryKind, entry_id: str
    ) -> DailyRecord:
        record = await self.reconciler.remove_entry(date_key, kind, entry_id)
        await self._entries_changed(date_key)
        return record

    async def save_weight(self, date_key: str, weight: float) -> DailyRecord:
        """Record body weight and recompute BMR/TDEE in the same patch."""
        if weight <= 0:
            raise InvalidInputError("Weight must be a positive number")

        def build(record: DailyRecord) -> RecordPatch:
            return RecordPatch(
                weight=weight,
                **self._rates_fields(record, weight=weight),
            )

        return await self.update_and_push(date_key, build)

    async def change_activity_level(
        self, date_key: str, activity_level: str
    ) -> DailyRecord:
        if activity_level not in ACTIVITY_MULTIPLIERS:
            raise InvalidInputError(f"Unknown activity level: {activity_level}")

        def build(record: DailyRecord) -> RecordPatch:
            return RecordPatch(
                activity_level=activity_level,
                **self._rates_fields(record, activity_level=activity_level),
            )

        return await self.update_and_push(date_key, build)

    async def save_daily_status(
        self, date_key: str, status: DailyStatus
    ) -> DailyRecord:
        return await self.update_and_push(
            date_key, RecordPatch(daily_status=status)
        )

    async def generate_tef_analysis(self, date_key: str) -> DailyRecord:
        """Analyse a date's food now, bypassing the debounce."""
        if self.tef_service is None:
            raise NoRecordDataError("TEF analysis is not configured")
        record = await self.applier.current(date_key)
        analysis = await self.tef_service.analyze(
            record.food_entries, self.ai_config
        )
        if self.tef_scheduler is not None and date_key == self.selected_date:
            self.tef_scheduler.cancel()
        return await self._store_tef(date_key, analysis)

    async def sync(self, force_full_pull: bool = False) -> SyncResult:
        """Manual full reconciliation."""
        result = await self.reconciler.sync_all(force_full_pull)
        await self.refresh_recorded_dates()
        return result

    async def refresh_recorded_dates(self) -> set[str]:
        """Rescan the store for dates that hold any data."""
        store = self.applier.store
        await store.wait_for_ready()
        records = await store.get_all()
        self.recorded_dates = {record.date for record in records if record.has_data()}
        return self.recorded_dates

    def has_record(self, date_key: str) -> bool:
        return date_key in self.recorded_dates

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self.tef_scheduler is not None:
            self.tef_scheduler.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _rates_fields(
        self,
        record: DailyRecord,
        *,
        weight: float | None = None,
        activity_level: str | None = None,
    ) -> dict[str, Any]:
        additional_tef = None
        if record.tef_analysis is not None:
            additional_tef = (
                record.tef_analysis.enhanced_tef - record.tef_analysis.base_tef
            )
        rates = calculate_metabolic_rates(
            self.profile,
            weight=weight if weight is not None else record.weight,
            activity_level=activity_level or record.activity_level,
            additional_tef=additional_tef,
        )
        if rates is None:
            return {}
        return {"calculated_bmr": rates.bmr, "calculated_tdee": rates.tdee}

    async def _store_tef(
        self, date_key: str, analysis: TEFAnalysis | None
    ) -> DailyRecord:
        def build(record: DailyRecord) -> RecordPatch:
            with_tef = record.model_copy(update={"tef_analysis": analysis})
            return RecordPatch(tef_analysis=analysis, **self._rates_fields(with_tef))

        record, effective = await self.applier.apply(date_key, build)
        self.reconciler.push(date_key, effective)
        return record

    async def _entries_changed(self, date_key: str) -> None:
        if self.tef_scheduler is None or date_key != self.selected_date:
            return
        record = self.record_for(date_key)
        food = record.food_entries
        cached = self.tef_service.cached(food) if self.tef_service else None
        if cached is not None and food:
            self.tef_scheduler.last_seen_hash = food_entries_hash(food)
            if record.tef_analysis != cached:
                await self._store_tef(date_key, cached)
            return
        await self.tef_scheduler.notify(date_key, food)

    async def _auto_tef(self, date_key: str, entries: list[FoodEntry]) -> None:
        if self.tef_service is None:
            return
        analysis = await self.tef_service.analyze(entries, self.ai_config)
        await self._store_tef(date_key, analysis)

    async def _clear_tef(self, date_key: str) -> None:
        record = await self.applier.current(date_key)
        if record.tef_analysis is not None:
            await self._store_tef(date_key, None)

    async def _auto_pull(self) -> None:
        result = await self.reconciler.sync_all(force_full_pull=True)
        if result.error:
            _logger.warning("Automatic pull failed: %s", result.error)

    def _on_refresh(self, signal: RefreshSignal) -> None:
        if signal.date == self.selected_date:
            self._spawn(self._reload_later(signal.date))
        if signal.source == RefreshSource.CLOUD_SYNC:
            self._spawn(self._refresh_dates_later())

    def _on_analysis_cached(self, key: str, analysis: TEFAnalysis) -> None:
        if self.selected_date is not None:
            self.channel.publish(
                RefreshSignal(self.selected_date, RefreshSource.ANALYSIS_CACHE)
            )

    async def _reload_later(self, date_key: str) -> None:
        await asyncio.sleep(self.refresh_delay_seconds)
        if date_key == self.selected_date:
            await self.load(date_key)

    async def _refresh_dates_later(self) -> None:
        await asyncio.sleep(self.records_refresh_delay_seconds)
        await self.refresh_recorded_dates()

    def _require_date(self) -> str:
        if self.selected_date is None:
            raise InvalidInputError("Select a date first")
        return self.selected_date

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._finish_task)
        return task

    def _finish_task(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Background refresh failed: %s", exc)
