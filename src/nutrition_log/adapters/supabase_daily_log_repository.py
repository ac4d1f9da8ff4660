"""Supabase-backed remote copy of daily records."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from nutrition_log.domain.errors import SyncConflictError
from nutrition_log.domain.records import (
    DailyRecord,
    RecordPatch,
    as_utc,
    empty_record,
)
from nutrition_log.services.patches import apply_patch
from nutrition_log.services.sync import RemoteSyncService

_TABLE = "daily_logs"


@dataclass
class SupabaseDailyLogRepository(RemoteSyncService):
    """Supabase implementation of the remote sync service.

    Each row holds one user's record for one date as JSON. The client is
    synchronous, so calls run in a worker thread.
    """

    client: Client
    user_id: str

    async def push(self, date_key: str, patch: RecordPatch) -> None:
        """Merge a patch into the remote record (read, merge, upsert)."""
        await asyncio.to_thread(self._push, date_key, patch)

    async def pull(self, date_key: str) -> DailyRecord | None:
        """Return the remote record for a date."""
        return await asyncio.to_thread(self._pull, date_key)

    async def pull_all(
        self, *, force: bool, since: datetime | None
    ) -> list[DailyRecord]:
        """Return remote records changed since a time, or all when forced."""
        return await asyncio.to_thread(self._pull_all, force, since)

    def _push(self, date_key: str, patch: RecordPatch) -> None:
        remote = self._pull(date_key)
        if (
            remote is not None
            and remote.last_modified is not None
            and patch.last_modified is not None
            and as_utc(remote.last_modified) > as_utc(patch.last_modified)
        ):
            raise SyncConflictError(f"Remote record for {date_key} is newer")
        merged = apply_patch(remote or empty_record(date_key), patch)
        if merged.last_modified is None:
            merged = merged.model_copy(update={"last_modified": datetime.now(tz=UTC)})
        self.client.table(_TABLE).upsert(
            {
                "user_id": self.user_id,
                "date": date_key,
                "log_data": merged.model_dump(mode="json", by_alias=True),
                "last_modified": as_utc(merged.last_modified).isoformat(),
            },
            on_conflict="user_id,date",
        ).execute()

    def _pull(self, date_key: str) -> DailyRecord | None:
        response = (
            self.client.table(_TABLE)
            .select("log_data")
            .eq("user_id", self.user_id)
            .eq("date", date_key)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return DailyRecord.model_validate(response.data[0]["log_data"])

    def _pull_all(self, force: bool, since: datetime | None) -> list[DailyRecord]:
        query = (
            self.client.table(_TABLE).select("log_data").eq("user_id", self.user_id)
        )
        if since is not None and not force:
            query = query.gt("last_modified", as_utc(since).isoformat())
        response = query.order("date").execute()
        return [
            DailyRecord.model_validate(row["log_data"]) for row in response.data or []
        ]
