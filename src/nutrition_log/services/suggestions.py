"""Streaming generation of AI suggestions for one analysis date."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from nutrition_log.domain.errors import (
    AIServiceError,
    AITimeoutError,
    EmptyStreamError,
    FatalStreamError,
    InvalidInputError,
    NoRecordDataError,
    PersistenceError,
    StreamIncompleteError,
)
from nutrition_log.domain.profile import AIConfig, UserProfile
from nutrition_log.domain.records import DailyRecord
from nutrition_log.domain.suggestions import (
    CategoryState,
    GenerationStatus,
    StreamFrame,
    SuggestionProgress,
    SuggestionSet,
)
from nutrition_log.services.event_stream import iter_frame_payloads, parse_frame
from nutrition_log.services.storage import KeyValueStore
from nutrition_log.services.suggestion_merger import SuggestionMerger

_logger = logging.getLogger(__name__)


class SuggestionRequest(BaseModel):
    """Body of a suggestion-generation request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    daily_log: DailyRecord
    user_profile: UserProfile
    recent_logs: list[DailyRecord] = Field(default_factory=list)
    ai_config: AIConfig
    selected_experts: list[str]


class SuggestionStreamClient(Protocol):
    """Interface for the suggestion-generation endpoint."""

    def stream_suggestions(
        self, request: SuggestionRequest
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open the event stream; entering raises for non-2xx responses."""


@dataclass
class SuggestionRun:
    """Observable state of one generation invocation."""

    analysis_date: str
    progress: SuggestionProgress = field(default_factory=SuggestionProgress)
    latest: SuggestionSet | None = None
    result: SuggestionSet | None = None
    error: AIServiceError | None = None
    frames_received: int = 0

    @property
    def status(self) -> GenerationStatus:
        return self.progress.status


UpdateCallback = Callable[[SuggestionRun], None]


@dataclass
class SuggestionService:
    """Drives the suggestion stream: retry, watchdog, progress and merging."""

    client: SuggestionStreamClient
    records: KeyValueStore[DailyRecord]
    store: KeyValueStore[SuggestionSet]
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    request_timeout_seconds: float = 90.0
    watchdog_seconds: float = 30.0
    history_days: int = 7

    async def get(self, date_key: str) -> SuggestionSet | None:
        """Return the stored suggestions for an analysis date."""
        return await self.store.get(date_key)

    async def generate(
        self,
        analysis_date: str,
        *,
        profile: UserProfile,
        ai_config: AIConfig,
        categories: list[str],
        on_update: UpdateCallback | None = None,
    ) -> SuggestionRun:
        """Generate suggestions for a date.

        Stream and gateway failures end the run in the ``error`` state and
        are reported on the returned run; local persistence failures raise.
        """
        record = await self.records.get(analysis_date)
        if record is None or not (record.food_entries or record.exercise_entries):
            raise NoRecordDataError(f"No entries recorded on {analysis_date}")
        request = SuggestionRequest(
            daily_log=record,
            user_profile=profile,
            recent_logs=await self._recent_records(analysis_date),
            ai_config=ai_config,
            selected_experts=categories,
        )

        run = SuggestionRun(analysis_date=analysis_date)
        run.progress.start(categories, "Preparing data...")
        _notify(on_update, run)
        try:
            await self._stream(request, run, on_update)
        except AIServiceError as exc:
            _logger.warning(
                "Suggestion generation for %s failed: %s", analysis_date, exc
            )
            run.error = exc
            run.progress.fail(exc.message)
        finally:
            if not run.progress.is_finished:
                run.progress.fail("Suggestion generation was interrupted")
            _notify(on_update, run)
        return run

    async def _stream(
        self,
        request: SuggestionRequest,
        run: SuggestionRun,
        on_update: UpdateCallback | None,
    ) -> None:
        merger = SuggestionMerger(data_date=run.analysis_date)
        async with AsyncExitStack() as stack:
            chunks = await self._open_with_retry(stack, request)
            frames = iter_frame_payloads(chunks)
            stack.push_async_callback(frames.aclose)
            while True:
                try:
                    payload = await asyncio.wait_for(
                        anext(frames), timeout=self.watchdog_seconds
                    )
                except StopAsyncIteration:
                    break
                except TimeoutError as exc:
                    _logger.warning(
                        "No stream data for %s seconds, aborting", self.watchdog_seconds
                    )
                    raise AITimeoutError(
                        f"No data received for {self.watchdog_seconds:g} seconds"
                    ) from exc
                run.frames_received += 1
                frame = parse_frame(payload)
                if frame is None:
                    continue
                try:
                    finished = await self._handle(frame, run, merger)
                except ValidationError as exc:
                    _logger.warning("Dropping malformed %s frame: %s", frame.type, exc)
                    continue
                _notify(on_update, run)
                if finished:
                    return

        if run.frames_received == 0:
            raise EmptyStreamError("No data received, check the network connection")
        leftover = merger.finalize(partial=True)
        if leftover is not None:
            await self._persist(run, leftover)
        raise StreamIncompleteError("Stream ended before generation completed")

    async def _open_with_retry(
        self, stack: AsyncExitStack, request: SuggestionRequest
    ) -> AsyncIterator[str]:
        attempt = 0
        while True:
            try:
                async with asyncio.timeout(self.request_timeout_seconds):
                    return await stack.enter_async_context(
                        self.client.stream_suggestions(request)
                    )
            except TimeoutError:
                error: AIServiceError = AITimeoutError("Suggestion request timed out")
            except AIServiceError as exc:
                error = exc
            attempt += 1
            if not error.retryable or attempt > self.max_retries:
                raise error
            _logger.warning(
                "Suggestion attempt %s/%s failed, retrying: %s",
                attempt,
                self.max_retries + 1,
                error,
            )
            await asyncio.sleep(self.retry_delay_seconds * attempt)

    async def _handle(
        self, frame: StreamFrame, run: SuggestionRun, merger: SuggestionMerger
    ) -> bool:
        """Apply one frame; return True when the stream is finished."""
        progress = run.progress
        if frame.type == "init":
            progress.set_status(
                GenerationStatus.LOADING,
                frame.message or "Generating suggestions...",
            )
        elif frame.type == "progress":
            if frame.category:
                progress.set_category(
                    frame.category, CategoryState.GENERATING, frame.message
                )
            progress.set_status(GenerationStatus.PARTIAL, frame.message)
        elif frame.type == "partial":
            snapshot = merger.merge(frame)
            if snapshot is not None:
                run.latest = snapshot
            if frame.category and frame.is_single_suggestion:
                count = merger.suggestion_count(frame.category)
                progress.set_category(
                    frame.category,
                    CategoryState.GENERATING,
                    f"Generated suggestion {count}",
                )
            elif frame.category:
                progress.set_category(
                    frame.category, CategoryState.SUCCESS, "Analysis complete"
                )
            progress.set_status(
                GenerationStatus.PARTIAL,
                f"Generating {frame.category or 'category'} suggestions...",
            )
        elif frame.type == "error":
            if frame.category:
                progress.set_category(
                    frame.category,
                    CategoryState.ERROR,
                    frame.message or "Analysis failed",
                )
        elif frame.type == "fatal":
            raise FatalStreamError(
                frame.message or "Generation failed, please try again later"
            )
        elif frame.type == "complete":
            final = merger.finalize(frame)
            if final is not None:
                await self._persist(run, final)
            progress.complete("Suggestions ready")
            return True
        return False

    async def _persist(self, run: SuggestionRun, suggestions: SuggestionSet) -> None:
        try:
            await self.store.set(run.analysis_date, suggestions)
        except Exception as exc:
            _logger.error(
                "Failed to save suggestions for %s: %s", run.analysis_date, exc
            )
            raise PersistenceError(
                f"Failed to save suggestions for {run.analysis_date}"
            ) from exc
        run.result = suggestions
        run.latest = suggestions

    async def _recent_records(self, analysis_date: str) -> list[DailyRecord]:
        try:
            day = date.fromisoformat(analysis_date)
        except ValueError as exc:
            raise InvalidInputError(f"Invalid date: {analysis_date}") from exc
        recent = []
        for offset in range(1, self.history_days + 1):
            key = (day - timedelta(days=offset)).isoformat()
            record = await self.records.get(key)
            if record is not None and (record.food_entries or record.exercise_entries):
                recent.append(record)
        return recent


def _notify(callback: UpdateCallback | None, run: SuggestionRun) -> None:
    if callback is None:
        return
    try:
        callback(run)
    except Exception:
        _logger.exception("Suggestion update callback failed")
