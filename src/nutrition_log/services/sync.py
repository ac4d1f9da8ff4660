"""Reconciliation between the local record store and the remote copy."""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field, field_serializer

from nutrition_log.domain.errors import (
    InvalidInputError,
    PersistenceError,
    SyncConflictError,
)
from nutrition_log.domain.records import DailyRecord, EntryKind, RecordPatch, as_utc
from nutrition_log.services.patches import (
    PatchApplier,
    apply_patch,
    merge_patches,
    strip_patch_placeholders,
)
from nutrition_log.services.signals import RefreshChannel, RefreshSignal, RefreshSource
from nutrition_log.services.storage import KeyValueStore

_logger = logging.getLogger(__name__)


class RemoteSyncService(Protocol):
    """Remote copy of every daily record."""

    async def push(self, date_key: str, patch: RecordPatch) -> None:
        """Merge a patch into the remote record for a date."""

    async def pull(self, date_key: str) -> DailyRecord | None:
        """Return the remote record for a date, if any."""

    async def pull_all(
        self, *, force: bool, since: datetime | None
    ) -> list[DailyRecord]:
        """Return remote records changed since a time (all when forced)."""


class PendingPush(BaseModel):
    """Outbox entry: fields that still need to reach the remote copy."""

    date: str
    patch: RecordPatch
    queued_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    attempts: int = 1

    @field_serializer("patch")
    def serialize_patch(self, patch: RecordPatch) -> dict[str, object]:
        # Unset fields are omitted so a reloaded patch does not clear them.
        return patch.to_payload()


@dataclass
class SyncState:
    """Session-wide sync bookkeeping."""

    pushes_in_flight: int = 0
    is_pulling: bool = False
    sync_in_progress: bool = False
    last_pulled_at: datetime | None = None
    auto_pull_attempted: set[str] = field(default_factory=set)

    @property
    def is_syncing(self) -> bool:
        return self.is_pulling or self.sync_in_progress

    def should_auto_pull(self, date_key: str) -> bool:
        """Return True if an empty load of this date may trigger a pull."""
        return not self.is_syncing and date_key not in self.auto_pull_attempted

    def mark_auto_pull(self, date_key: str) -> None:
        self.auto_pull_attempted.add(date_key)

    def reset_auto_pull(self, date_key: str) -> None:
        self.auto_pull_attempted.discard(date_key)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a full reconciliation pass."""

    updated_dates: list[str] = field(default_factory=list)
    flushed: int = 0
    skipped: bool = False
    error: str | None = None


@dataclass
class SyncReconciler:
    """Pushes local patches, pulls remote snapshots, and signals refreshes.

    Local state is the source of truth for pushes: a failed push never rolls
    back the local commit, the patch is kept in the outbox instead.
    """

    applier: PatchApplier
    remote: RemoteSyncService
    channel: RefreshChannel
    outbox: KeyValueStore[PendingPush]
    state: SyncState = field(default_factory=SyncState)
    post_delete_pull_delay_seconds: float = 0.5
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set)

    def push(self, date_key: str, patch: RecordPatch) -> asyncio.Task[bool]:
        """Send a patch to the remote copy in the background."""
        return self._spawn(self.push_now(date_key, patch))

    async def push_now(self, date_key: str, patch: RecordPatch) -> bool:
        """Send a patch and wait; return True when the remote accepted it."""
        payload = strip_patch_placeholders(patch)
        if payload.is_empty():
            return True
        self.state.pushes_in_flight += 1
        try:
            await self.remote.push(date_key, payload)
        except SyncConflictError:
            _logger.warning("Remote conflict for %s, forcing a re-pull", date_key)
            await self.outbox.delete(date_key)
            await self.pull(force=True, date_key=date_key)
            return False
        except Exception as exc:
            _logger.warning("Push for %s failed, kept in outbox: %s", date_key, exc)
            await self._enqueue(date_key, payload)
            return False
        finally:
            self.state.pushes_in_flight -= 1
        await self._settle_outbox(date_key, payload)
        return True

    async def pull(
        self, force: bool = False, date_key: str | None = None
    ) -> list[str]:
        """Fetch remote snapshots and store the ones that should win locally.

        Returns the dates whose local record changed; each gets a ``cloudSync``
        refresh signal. Remote errors are logged and yield no changes.
        """
        try:
            return await self._pull(force=force, date_key=date_key)
        except PersistenceError:
            raise
        except Exception as exc:
            _logger.warning("Pull failed (date=%s): %s", date_key or "all", exc)
            return []

    async def sync_all(self, force_full_pull: bool = False) -> SyncResult:
        """Flush the outbox, then pull every date changed remotely."""
        if self.state.is_syncing:
            _logger.info("Sync already in progress, skipping")
            return SyncResult(skipped=True)
        self.state.sync_in_progress = True
        try:
            flushed = await self.flush_outbox()
            try:
                updated = await self._pull(force=force_full_pull, date_key=None)
            except PersistenceError:
                raise
            except Exception as exc:
                _logger.warning("Sync pull failed: %s", exc)
                return SyncResult(flushed=flushed, error=str(exc))
        finally:
            self.state.sync_in_progress = False
        return SyncResult(updated_dates=updated, flushed=flushed)

    async def flush_outbox(self) -> int:
        """Retry every queued patch; return how many reached the remote."""
        flushed = 0
        for pending in await self.outbox.get_all():
            try:
                await self.remote.push(pending.date, pending.patch)
            except SyncConflictError:
                _logger.warning(
                    "Dropping conflicting outbox patch for %s", pending.date
                )
                await self.outbox.delete(pending.date)
                await self.pull(force=True, date_key=pending.date)
                continue
            except Exception as exc:
                _logger.warning("Outbox retry for %s failed: %s", pending.date, exc)
                await self.outbox.set(
                    pending.date,
                    pending.model_copy(update={"attempts": pending.attempts + 1}),
                )
                continue
            await self.outbox.delete(pending.date)
            flushed += 1
        return flushed

    async def remove_entry(
        self, date_key: str, kind: EntryKind, entry_id: str
    ) -> DailyRecord:
        """Delete an entry locally, push the change, and signal a refresh."""

        def build(record: DailyRecord) -> RecordPatch:
            entries = record.entries(kind)
            remaining = [entry for entry in entries if entry.log_id != entry_id]
            if len(remaining) == len(entries):
                raise InvalidInputError(f"No {kind} entry {entry_id} on {date_key}")
            if kind == "food":
                return RecordPatch(food_entries=remaining)
            return RecordPatch(exercise_entries=remaining)

        record, patch = await self.applier.apply(date_key, build)
        self.push(date_key, patch)
        self.channel.publish(RefreshSignal(date_key, RefreshSource.DELETE))
        self._spawn(self._pull_after_delete())
        return record

    async def drain(self) -> None:
        """Wait for every background push and pull to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _pull_after_delete(self) -> None:
        await asyncio.sleep(self.post_delete_pull_delay_seconds)
        await self.pull(force=False)

    async def _pull(self, *, force: bool, date_key: str | None) -> list[str]:
        self.state.is_pulling = True
        started = datetime.now(tz=UTC)
        try:
            if date_key is not None:
                record = await self.remote.pull(date_key)
                records = [record] if record is not None else []
            else:
                since = None if force else self.state.last_pulled_at
                records = await self.remote.pull_all(force=force, since=since)
            updated = [
                record.date
                for record in records
                if await self._store_remote(record, force=force)
            ]
            if date_key is None:
                self.state.last_pulled_at = started
        finally:
            self.state.is_pulling = False
        for updated_date in updated:
            self.channel.publish(RefreshSignal(updated_date, RefreshSource.CLOUD_SYNC))
        return updated

    async def _store_remote(self, record: DailyRecord, *, force: bool) -> bool:
        local = await self.applier.store.get(record.date)
        if not force and local is not None and _is_newer(local, record):
            _logger.info("Keeping newer local record for %s", record.date)
            return False
        pending = None if force else await self.outbox.get(record.date)
        if pending is not None:
            record = apply_patch(record, pending.patch)
        await self.applier.replace(record)
        return True

    async def _enqueue(self, date_key: str, patch: RecordPatch) -> None:
        try:
            pending = await self.outbox.get(date_key)
            if pending is None:
                pending = PendingPush(date=date_key, patch=patch)
            else:
                pending = pending.model_copy(
                    update={
                        "patch": merge_patches(pending.patch, patch),
                        "attempts": pending.attempts + 1,
                    }
                )
            await self.outbox.set(date_key, pending)
        except Exception:
            _logger.exception("Failed to queue patch for %s", date_key)

    async def _settle_outbox(self, date_key: str, pushed: RecordPatch) -> None:
        pending = await self.outbox.get(date_key)
        if pending is None:
            return
        pushed_fields = pushed.set_fields()
        superseded = _queued_before(pending.patch, pushed)
        remaining = {
            name: value
            for name, value in pending.patch.set_fields().items()
            if name not in pushed_fields
            or (not superseded and pushed_fields[name] != value)
        }
        if not remaining.keys() - {"last_modified"}:
            await self.outbox.delete(date_key)
            return
        await self.outbox.set(
            date_key, pending.model_copy(update={"patch": RecordPatch(**remaining)})
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _is_newer(local: DailyRecord, remote: DailyRecord) -> bool:
    if local.last_modified is None or remote.last_modified is None:
        return False
    return as_utc(local.last_modified) > as_utc(remote.last_modified)


def _queued_before(queued: RecordPatch, pushed: RecordPatch) -> bool:
    """True when the queued patch is no newer than the one the remote accepted.

    A newer queued patch only loses the fields whose value reached the remote.
    """
    if queued.last_modified is None:
        return True
    if pushed.last_modified is None:
        return False
    return as_utc(queued.last_modified) <= as_utc(pushed.last_modified)
