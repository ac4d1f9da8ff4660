"""Tests for optimistic entry submission."""

import asyncio

import pytest

from nutrition_log.domain.errors import (
    InvalidInputError,
    ModelConfigError,
    ServerError,
    SubmissionFailedError,
    SubmissionInProgressError,
)
from nutrition_log.domain.profile import AIConfig, ModelSettings
from nutrition_log.domain.records import DailyRecord
from nutrition_log.services.parsing import ParseRequest
from tests.conftest import FakeParseClient, FakeRemoteSync, food_entry

DAY = "2024-05-01"


def _request(kind: str = "food", **kwargs: object) -> ParseRequest:
    return ParseRequest(
        text=kwargs.pop("text", "oatmeal with milk"),
        kind=kind,  # type: ignore[arg-type]
        user_weight=70.0,
        ai_config=kwargs.pop("ai_config", AIConfig()),
        **kwargs,
    )


def test_submit_replaces_placeholder_with_parsed_entries(
    container, remote_sync: FakeRemoteSync
) -> None:
    container.record_store.values[DAY] = DailyRecord(
        date=DAY, food_entries=[food_entry("existing", calories=100)]
    )

    async def scenario():  # type: ignore[no-untyped-def]
        result = await container.submission_manager.submit(DAY, _request())
        await container.reconciler.drain()
        return result

    result = asyncio.run(scenario())

    names = [entry.food_name for entry in result.record.food_entries]
    assert names == ["Rice", "Oatmeal"]
    assert result.record.exercise_entries == []
    assert result.record.summary.total_calories_consumed == 400
    added = result.entries[0]
    assert not added.log_id.startswith("pending-")
    assert added.is_pending is False
    stored = container.record_store.values[DAY]
    assert [entry.log_id for entry in stored.food_entries][-1] == added.log_id
    assert remote_sync.records[DAY].summary.total_calories_consumed == 400


def test_failed_remote_push_keeps_committed_entries(
    container, remote_sync: FakeRemoteSync
) -> None:
    remote_sync.offline = True

    async def scenario():  # type: ignore[no-untyped-def]
        result = await container.submission_manager.submit(DAY, _request())
        await container.reconciler.drain()
        return result

    result = asyncio.run(scenario())

    added = result.entries[0].log_id
    stored = container.record_store.values[DAY]
    assert [entry.log_id for entry in stored.food_entries] == [added]
    assert container.applier.snapshot(DAY).food_entries == stored.food_entries
    assert DAY not in remote_sync.records
    queued = container.outbox_store.values[DAY].patch
    assert [entry.log_id for entry in queued.food_entries] == [added]

def test_submit_exercise_keeps_user_weight(container) -> None:
    result = asyncio.run(
        container.submission_manager.submit(DAY, _request("exercise", text="run"))
    )

    assert [entry.exercise_name for entry in result.record.exercise_entries] == [
        "Running"
    ]
    assert result.record.exercise_entries[0].user_weight == 70.0
    assert result.record.summary.total_calories_burned == 280


def test_placeholder_is_visible_but_not_persisted(
    container, parse_client: FakeParseClient
) -> None:
    async def scenario() -> None:
        parse_client.gate = asyncio.Event()
        task = asyncio.create_task(
            container.submission_manager.submit(DAY, _request(text="toast"))
        )
        await asyncio.sleep(0)
        snapshot = container.applier.snapshot(DAY)
        assert snapshot is not None
        assert snapshot.food_entries[0].is_pending is True
        assert snapshot.food_entries[0].food_name == "toast"
        assert DAY not in container.record_store.values
        assert container.submission_manager.is_processing("food")
        parse_client.gate.set()
        await task

    asyncio.run(scenario())

    assert not container.submission_manager.is_processing("food")


def test_second_submission_of_same_kind_is_rejected(
    container, parse_client: FakeParseClient
) -> None:
    async def scenario() -> None:
        parse_client.gate = asyncio.Event()
        manager = container.submission_manager
        first = asyncio.create_task(manager.submit(DAY, _request()))
        await asyncio.sleep(0)
        with pytest.raises(SubmissionInProgressError):
            await container.submission_manager.submit(DAY, _request())
        other = asyncio.create_task(
            container.submission_manager.submit(DAY, _request("exercise"))
        )
        await asyncio.sleep(0)
        parse_client.gate.set()
        await asyncio.gather(first, other)

    asyncio.run(scenario())

    record = container.applier.snapshot(DAY)
    assert len(record.food_entries) == 1
    assert len(record.exercise_entries) == 1


def test_parse_failure_rolls_back_placeholder(
    container, parse_client: FakeParseClient, remote_sync: FakeRemoteSync
) -> None:
    parse_client.error = ServerError("model exploded", status_code=500)

    with pytest.raises(SubmissionFailedError) as excinfo:
        asyncio.run(container.submission_manager.submit(DAY, _request()))

    assert isinstance(excinfo.value.__cause__, ServerError)
    assert container.applier.snapshot(DAY).food_entries == []
    assert DAY not in container.record_store.values
    assert remote_sync.pushes == []
    assert not container.submission_manager.is_processing("food")


def test_empty_parse_result_fails(container, parse_client: FakeParseClient) -> None:
    parse_client.payload = {"food": [], "exercise": []}

    with pytest.raises(SubmissionFailedError):
        asyncio.run(container.submission_manager.submit(DAY, _request()))

    assert container.applier.snapshot(DAY).food_entries == []


def test_server_reported_error_fails(container, parse_client: FakeParseClient) -> None:
    parse_client.payload = {"food": [], "exercise": [], "error": "unreadable"}

    with pytest.raises(SubmissionFailedError, match="unreadable"):
        asyncio.run(container.submission_manager.submit(DAY, _request()))


def test_incomplete_private_model_is_rejected_up_front(
    container, parse_client: FakeParseClient
) -> None:
    private = ModelSettings(name="gpt-4o", api_key="", source="private")
    config = AIConfig(agent_model=private)

    with pytest.raises(ModelConfigError):
        asyncio.run(
            container.submission_manager.submit(DAY, _request(ai_config=config))
        )

    assert parse_client.requests == []
    assert container.applier.snapshot(DAY) is None


def test_too_many_images_are_rejected(container) -> None:
    request = _request(images=[b"\xff\xd8\xff"] * 6)

    with pytest.raises(InvalidInputError):
        asyncio.run(container.submission_manager.submit(DAY, request))
