"""Field-wise patch application with write-through persistence."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from nutrition_log.domain.errors import PersistenceError
from nutrition_log.domain.records import (
    DailyRecord,
    Macros,
    RecordPatch,
    Summary,
    empty_record,
    is_placeholder,
)
from nutrition_log.services.storage import KeyValueStore

_CORE_NUTRIENTS = ("calories", "carbohydrates", "protein", "fat")
_ENTRY_FIELDS = {"food_entries", "exercise_entries"}

_logger = logging.getLogger(__name__)

PatchBuilder = Callable[[DailyRecord], RecordPatch]


def compute_summary(record: DailyRecord) -> Summary:
    """Derive totals from the record's entry lists."""
    calories = carbs = protein = fat = burned = 0.0
    micronutrients: dict[str, float] = {}
    for entry in record.food_entries:
        consumed = entry.total_nutritional_info_consumed
        calories += consumed.calories
        carbs += consumed.carbohydrates
        protein += consumed.protein
        fat += consumed.fat
        for key, value in (consumed.model_extra or {}).items():
            if key in _CORE_NUTRIENTS or isinstance(value, bool):
                continue
            if isinstance(value, int | float):
                micronutrients[key] = micronutrients.get(key, 0.0) + float(value)
    for entry in record.exercise_entries:
        burned += entry.calories_burned_estimated
    return Summary(
        total_calories_consumed=calories,
        total_calories_burned=burned,
        macros=Macros(carbs=carbs, protein=protein, fat=fat),
        micronutrients=micronutrients,
    )


def recalculate_summary(record: DailyRecord) -> DailyRecord:
    """Return a copy of the record with a freshly derived summary."""
    return record.model_copy(update={"summary": compute_summary(record)})


def apply_patch(record: DailyRecord, patch: RecordPatch) -> DailyRecord:
    """Overwrite every field set on the patch and re-derive the summary."""
    updated = record.model_copy(update=patch.set_fields())
    return recalculate_summary(updated)


def merge_patches(first: RecordPatch, second: RecordPatch) -> RecordPatch:
    """Combine two patches; fields set on ``second`` win."""
    return RecordPatch(**{**first.set_fields(), **second.set_fields()})


def strip_placeholders(record: DailyRecord) -> DailyRecord:
    """Drop speculative entries that must never be stored or shown after load."""
    food = [entry for entry in record.food_entries if not is_placeholder(entry)]
    exercise = [
        entry for entry in record.exercise_entries if not is_placeholder(entry)
    ]
    if len(food) == len(record.food_entries) and len(exercise) == len(
        record.exercise_entries
    ):
        return record
    return record.model_copy(
        update={"food_entries": food, "exercise_entries": exercise}
    )


def strip_patch_placeholders(patch: RecordPatch) -> RecordPatch:
    """Drop speculative entries from any entry lists carried by a patch."""
    fields = patch.set_fields()
    if fields.get("food_entries") is not None:
        fields["food_entries"] = [
            entry for entry in fields["food_entries"] if not is_placeholder(entry)
        ]
    if fields.get("exercise_entries") is not None:
        fields["exercise_entries"] = [
            entry for entry in fields["exercise_entries"] if not is_placeholder(entry)
        ]
    return RecordPatch(**fields)


@dataclass
class PatchApplier:
    """Owns the in-memory snapshot per date and writes every change through.

    Every mutation for a date holds that date's lock while it reads the
    latest snapshot, builds the new record, swaps the snapshot and persists
    it, so racing writers land on disk in the order they were applied.
    """

    store: KeyValueStore[DailyRecord]
    default_activity_level: str | None = None
    _snapshots: dict[str, DailyRecord] = field(default_factory=dict)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict)

    def snapshot(self, date_key: str) -> DailyRecord | None:
        """Return the in-memory record for a date, if loaded."""
        return self._snapshots.get(date_key)

    def forget(self, date_key: str) -> None:
        """Drop the in-memory record for a date."""
        self._snapshots.pop(date_key, None)

    async def load(self, date_key: str) -> DailyRecord | None:
        """Read a date from the store, replacing the in-memory record."""
        async with self._lock(date_key):
            await self.store.wait_for_ready()
            stored = await self.store.get(date_key)
            if stored is None:
                return None
            record = strip_placeholders(stored)
            self._snapshots[date_key] = record
            return record

    async def current(self, date_key: str) -> DailyRecord:
        """Return the latest record for a date, reading the store if needed."""
        async with self._lock(date_key):
            return await self._ensure_loaded(date_key)

    async def apply(
        self,
        date_key: str,
        patch: RecordPatch | PatchBuilder,
        *,
        persist: bool = True,
    ) -> tuple[DailyRecord, RecordPatch]:
        """Apply a patch (or a patch built from the latest record) to a date.

        Returns the new record and the effective patch, stamped with the
        modification time when persisted.
        """
        async with self._lock(date_key):
            previous = await self._ensure_loaded(date_key)
            effective = patch(previous) if callable(patch) else patch
            if persist:
                effective = merge_patches(
                    effective, RecordPatch(last_modified=datetime.now(tz=UTC))
                )
            updated = apply_patch(previous, effective)
            if _ENTRY_FIELDS & effective.model_fields_set:
                effective = merge_patches(
                    effective, RecordPatch(summary=updated.summary)
                )
            self._snapshots[date_key] = updated
            if not persist:
                return updated, effective

            try:
                await self.store.set(date_key, strip_placeholders(updated))
            except Exception as exc:
                self._snapshots[date_key] = previous
                _logger.error("Failed to persist record for %s: %s", date_key, exc)
                raise PersistenceError(
                    f"Failed to save record for {date_key}"
                ) from exc
            return updated, effective

    async def replace(self, record: DailyRecord) -> DailyRecord:
        """Persist a full record (e.g. a pulled remote snapshot) for its date."""
        cleaned = recalculate_summary(strip_placeholders(record))
        async with self._lock(cleaned.date):
            try:
                await self.store.set(cleaned.date, cleaned)
            except Exception as exc:
                _logger.error(
                    "Failed to persist record for %s: %s", cleaned.date, exc
                )
                raise PersistenceError(
                    f"Failed to save record for {cleaned.date}"
                ) from exc
            if cleaned.date in self._snapshots:
                self._snapshots[cleaned.date] = cleaned
        return cleaned

    def _lock(self, date_key: str) -> asyncio.Lock:
        return self._locks.setdefault(date_key, asyncio.Lock())

    async def _ensure_loaded(self, date_key: str) -> DailyRecord:
        if date_key not in self._snapshots:
            await self.store.wait_for_ready()
            stored = await self.store.get(date_key)
            if date_key not in self._snapshots:
                self._snapshots[date_key] = (
                    strip_placeholders(stored)
                    if stored is not None
                    else empty_record(date_key, self.default_activity_level)
                )
        return self._snapshots[date_key]
