"""Tests for the Supabase remote sync repository."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from nutrition_log.adapters.supabase_daily_log_repository import (
    SupabaseDailyLogRepository,
)
from nutrition_log.domain.errors import SyncConflictError
from nutrition_log.domain.records import DailyRecord, RecordPatch
from tests.conftest import food_entry

DAY = "2024-05-01"


@dataclass
class FakeResponse:
    data: list[dict[str, object]] | None


@dataclass
class FakeTable:
    name: str
    response_queue: dict[str, list[list[dict[str, object]]]] = field(
        default_factory=lambda: {"select": [], "upsert": []}
    )
    last_payload: object | None = None
    last_on_conflict: str | None = None
    last_filters: list[tuple[str, str, object]] = field(default_factory=list)

    def queue(self, action: str, data: list[dict[str, object]]) -> None:
        self.response_queue[action].append(data)

    def select(self, *_args) -> "FakeTable":
        self._action = "select"
        return self

    def upsert(self, payload: object, on_conflict: str = "") -> "FakeTable":
        self._action = "upsert"
        self.last_payload = payload
        self.last_on_conflict = on_conflict
        return self

    def eq(self, column: str, value: object) -> "FakeTable":
        self.last_filters.append(("eq", column, value))
        return self

    def gt(self, column: str, value: object) -> "FakeTable":
        self.last_filters.append(("gt", column, value))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def order(self, _column: str, desc: bool = False) -> "FakeTable":
        return self

    def execute(self) -> FakeResponse:
        action = getattr(self, "_action", "select")
        queue = self.response_queue.get(action, [])
        data = queue.pop(0) if queue else []
        return FakeResponse(data=data)


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]


def _row(record: DailyRecord) -> dict[str, object]:
    return {"log_data": record.model_dump(mode="json", by_alias=True)}


def test_push_merges_patch_into_remote_record() -> None:
    client = FakeSupabaseClient()
    table = client.table("daily_logs")
    table.queue("select", [_row(DailyRecord(date=DAY, weight=70.0))])
    repository = SupabaseDailyLogRepository(client=client, user_id="user-1")
    stamp = datetime.now(tz=UTC)

    asyncio.run(
        repository.push(
            DAY,
            RecordPatch(
                food_entries=[food_entry("a", calories=120)], last_modified=stamp
            ),
        )
    )

    payload = table.last_payload
    assert payload["user_id"] == "user-1"
    assert payload["date"] == DAY
    assert payload["log_data"]["weight"] == 70.0
    assert payload["log_data"]["summary"]["totalCaloriesConsumed"] == 120
    assert payload["last_modified"] == stamp.isoformat()
    assert table.last_on_conflict == "user_id,date"
    assert ("eq", "user_id", "user-1") in table.last_filters


def test_push_rejects_stale_patch() -> None:
    client = FakeSupabaseClient()
    now = datetime.now(tz=UTC)
    client.table("daily_logs").queue(
        "select", [_row(DailyRecord(date=DAY, last_modified=now))]
    )
    repository = SupabaseDailyLogRepository(client=client, user_id="user-1")

    with pytest.raises(SyncConflictError):
        asyncio.run(
            repository.push(
                DAY, RecordPatch(weight=70.0, last_modified=now - timedelta(minutes=5))
            )
        )

    assert client.table("daily_logs").last_payload is None


def test_pull_returns_none_for_missing_date() -> None:
    repository = SupabaseDailyLogRepository(
        client=FakeSupabaseClient(), user_id="user-1"
    )

    assert asyncio.run(repository.pull(DAY)) is None


def test_pull_all_filters_by_last_pull_unless_forced() -> None:
    client = FakeSupabaseClient()
    table = client.table("daily_logs")
    table.queue("select", [_row(DailyRecord(date=DAY, weight=70.0))])
    table.queue("select", [])
    repository = SupabaseDailyLogRepository(client=client, user_id="user-1")
    since = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    records = asyncio.run(repository.pull_all(force=False, since=since))
    asyncio.run(repository.pull_all(force=True, since=since))

    assert [record.weight for record in records] == [70.0]
    gt_filters = [item for item in table.last_filters if item[0] == "gt"]
    assert gt_filters == [("gt", "last_modified", since.isoformat())]
