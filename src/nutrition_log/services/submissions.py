"""Optimistic entry submission: propose a placeholder, then commit or roll back."""

import logging
from dataclasses import dataclass, field
from uuid import uuid4

from nutrition_log.domain.errors import (
    PersistenceError,
    SubmissionFailedError,
    SubmissionInProgressError,
)
from nutrition_log.domain.records import (
    PENDING_ID_PREFIX,
    DailyRecord,
    Entry,
    EntryKind,
    ExerciseEntry,
    FoodEntry,
    RecordPatch,
)
from nutrition_log.services.parsing import (
    ParseRequest,
    ParseResult,
    ParseService,
    check_model_config,
)
from nutrition_log.services.patches import PatchApplier
from nutrition_log.services.sync import SyncReconciler

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    """Committed record and the entries the submission added."""

    record: DailyRecord
    entries: list[Entry]


@dataclass
class SubmissionManager:
    """Runs one parse submission per entry kind at a time.

    The outcome is committed or rolled back by the submission's own date and
    kind, so switching the selected date or tab mid-flight is harmless.
    """

    applier: PatchApplier
    reconciler: SyncReconciler
    parse_service: ParseService
    _in_flight: dict[EntryKind, str] = field(default_factory=dict)

    def is_processing(self, kind: EntryKind) -> bool:
        return kind in self._in_flight

    async def submit(self, date_key: str, request: ParseRequest) -> SubmissionResult:
        """Parse a request and append its entries to a date."""
        kind = request.kind
        if kind in self._in_flight:
            raise SubmissionInProgressError(f"A {kind} submission is in progress")
        check_model_config(request)

        temp_id = f"{PENDING_ID_PREFIX}{uuid4()}"
        self._in_flight[kind] = temp_id
        try:
            await self.applier.apply(
                date_key,
                lambda record: _append_placeholder(record, kind, temp_id, request),
                persist=False,
            )
            try:
                parsed = await self.parse_service.parse(request)
                added = _fresh_entries(parsed, kind, request.user_weight)
                if not added:
                    raise SubmissionFailedError(f"No {kind} entries were recognised")
            except Exception as exc:
                await self._rollback(date_key, kind, temp_id)
                _logger.warning("Submission for %s failed: %s", date_key, exc)
                if isinstance(exc, SubmissionFailedError):
                    raise
                raise SubmissionFailedError(str(exc)) from exc

            try:
                record, patch = await self.applier.apply(
                    date_key,
                    lambda record: _replace_entry(record, kind, temp_id, added),
                )
            except PersistenceError:
                await self._rollback(date_key, kind, temp_id)
                raise
        finally:
            self._in_flight.pop(kind, None)

        self.reconciler.push(date_key, patch)
        return SubmissionResult(record=record, entries=added)

    async def _rollback(self, date_key: str, kind: EntryKind, temp_id: str) -> None:
        await self.applier.apply(
            date_key,
            lambda record: _replace_entry(record, kind, temp_id, []),
            persist=False,
        )


def _append_placeholder(
    record: DailyRecord, kind: EntryKind, temp_id: str, request: ParseRequest
) -> RecordPatch:
    label = request.text.strip() or "Analysing..."
    if kind == "food":
        placeholder = FoodEntry(log_id=temp_id, food_name=label, is_pending=True)
        return RecordPatch(food_entries=[*record.food_entries, placeholder])
    pending = ExerciseEntry(
        log_id=temp_id,
        exercise_name=label,
        estimated_mets=1,
        user_weight=request.user_weight,
        is_pending=True,
    )
    return RecordPatch(exercise_entries=[*record.exercise_entries, pending])


def _replace_entry(
    record: DailyRecord, kind: EntryKind, entry_id: str, added: list[Entry]
) -> RecordPatch:
    """Drop an entry by id and append new ones to the same list."""
    remaining = [entry for entry in record.entries(kind) if entry.log_id != entry_id]
    if kind == "food":
        return RecordPatch(food_entries=[*remaining, *added])
    return RecordPatch(exercise_entries=[*remaining, *added])


def _fresh_entries(
    parsed: ParseResult, kind: EntryKind, user_weight: float
) -> list[Entry]:
    """Validate parsed entries of a kind, always assigning new permanent ids."""
    if kind == "food":
        return [
            FoodEntry.model_validate(
                {**raw, "log_id": str(uuid4()), "is_pending": False}
            )
            for raw in parsed.food
        ]
    return [
        ExerciseEntry.model_validate(
            {
                "user_weight": user_weight,
                **raw,
                "log_id": str(uuid4()),
                "is_pending": False,
            }
        )
        for raw in parsed.exercise
    ]
