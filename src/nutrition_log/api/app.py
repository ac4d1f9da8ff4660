"""FastAPI application factory."""

import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from nutrition_log.api.request_models import (
    ActivityLevelBody,
    SubmitEntriesBody,
    SuggestionsBody,
    SyncBody,
    WeightBody,
)
from nutrition_log.app_logging import configure_logging
from nutrition_log.containers import AppContainer
from nutrition_log.domain.errors import (
    AIServiceError,
    AITimeoutError,
    CapacityExhaustedError,
    InvalidInputError,
    ModelConfigError,
    NoRecordDataError,
    NutritionLogError,
    RateLimitedError,
    ServerTimeoutError,
    SubmissionFailedError,
    SubmissionInProgressError,
    SyncConflictError,
    UnauthorizedError,
)
from nutrition_log.domain.records import (
    DailyRecord,
    DailyStatus,
    EntryKind,
    ExerciseEntry,
    FoodEntry,
)
from nutrition_log.services.daily_log import DailyLogSession
from nutrition_log.services.parsing import ParseRequest
from nutrition_log.services.suggestions import SuggestionRun

# First match wins, so subclasses come before their bases.
_ERROR_STATUS: tuple[tuple[type[NutritionLogError], int], ...] = (
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (ModelConfigError, status.HTTP_400_BAD_REQUEST),
    (NoRecordDataError, status.HTTP_404_NOT_FOUND),
    (SubmissionInProgressError, status.HTTP_409_CONFLICT),
    (SubmissionFailedError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SyncConflictError, status.HTTP_409_CONFLICT),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (CapacityExhaustedError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ServerTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (AITimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (AIServiceError, status.HTTP_502_BAD_GATEWAY),
)


def create_app(container: AppContainer) -> FastAPI:  # noqa: C901, PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await app.state.container.session.refresh_recorded_dates()
        except Exception:
            logger.exception("Failed to scan recorded dates")
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    async def require_token(
        request: Request, x_api_token: str | None = Header(default=None)
    ) -> None:
        """Ensure requests carry the API token when one is configured."""
        expected = request.app.state.container.settings.api_token
        if expected and x_api_token != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)

    @app.exception_handler(NutritionLogError)
    async def handle_app_error(
        request: Request, exc: NutritionLogError
    ) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.warning("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    secured = [Depends(require_token)]

    @app.get("/days/{date_key}", dependencies=secured)
    async def get_day(date_key: str, request: Request) -> dict[str, object]:
        """Select a date and return its record."""
        session = await _select(request, date_key)
        return _record_payload(session.record_for(date_key))

    @app.post("/days/{date_key}/entries", dependencies=secured)
    async def submit_entries(
        date_key: str, body: SubmitEntriesBody, request: Request
    ) -> dict[str, object]:
        """Parse text and photos into entries for a date."""
        session = await _select(request, date_key)
        weight = session.record_for(date_key).weight or session.profile.weight
        result = await session.submit(
            date_key,
            ParseRequest(
                text=body.text,
                kind=body.kind,
                user_weight=weight,
                ai_config=session.ai_config,
                lang=body.lang,
                images=list(body.images),
            ),
        )
        return {
            "record": _record_payload(result.record),
            "entries": [
                entry.model_dump(mode="json", by_alias=True)
                for entry in result.entries
            ],
        }

    @app.put("/days/{date_key}/entries/{kind}/{entry_id}", dependencies=secured)
    async def update_entry(
        date_key: str,
        kind: EntryKind,
        entry_id: str,
        body: dict[str, Any],
        request: Request,
    ) -> dict[str, object]:
        """Replace one entry with an edited copy."""
        model = FoodEntry if kind == "food" else ExerciseEntry
        try:
            entry = model.model_validate({**body, "log_id": entry_id})
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid {kind} entry: {exc}") from exc
        session = await _select(request, date_key)
        return _record_payload(await session.update_entry(date_key, kind, entry))

    @app.delete("/days/{date_key}/entries/{kind}/{entry_id}", dependencies=secured)
    async def delete_entry(
        date_key: str, kind: EntryKind, entry_id: str, request: Request
    ) -> dict[str, object]:
        session = await _select(request, date_key)
        return _record_payload(await session.delete_entry(date_key, kind, entry_id))

    @app.put("/days/{date_key}/weight", dependencies=secured)
    async def save_weight(
        date_key: str, body: WeightBody, request: Request
    ) -> dict[str, object]:
        session = await _select(request, date_key)
        return _record_payload(await session.save_weight(date_key, body.weight))

    @app.put("/days/{date_key}/activity-level", dependencies=secured)
    async def change_activity_level(
        date_key: str, body: ActivityLevelBody, request: Request
    ) -> dict[str, object]:
        session = await _select(request, date_key)
        return _record_payload(
            await session.change_activity_level(date_key, body.activity_level)
        )

    @app.put("/days/{date_key}/daily-status", dependencies=secured)
    async def save_daily_status(
        date_key: str, body: DailyStatus, request: Request
    ) -> dict[str, object]:
        session = await _select(request, date_key)
        return _record_payload(await session.save_daily_status(date_key, body))

    @app.post("/days/{date_key}/tef-analysis", dependencies=secured)
    async def generate_tef_analysis(
        date_key: str, request: Request
    ) -> dict[str, object]:
        """Run the TEF analysis for a date now."""
        session = await _select(request, date_key)
        return _record_payload(await session.generate_tef_analysis(date_key))

    @app.post("/days/{date_key}/suggestions", dependencies=secured)
    async def generate_suggestions(
        date_key: str, body: SuggestionsBody, request: Request
    ) -> dict[str, object]:
        """Stream suggestions for a date and return the finished run."""
        state_container: AppContainer = request.app.state.container
        session = state_container.session
        run = await state_container.suggestion_service.generate(
            date_key,
            profile=session.profile,
            ai_config=session.ai_config,
            categories=body.categories or state_container.settings.categories(),
        )
        return _run_payload(run)

    @app.get("/days/{date_key}/suggestions", dependencies=secured)
    async def get_suggestions(date_key: str, request: Request) -> dict[str, object]:
        state_container: AppContainer = request.app.state.container
        suggestions = await state_container.suggestion_service.get(date_key)
        if suggestions is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return suggestions.model_dump(mode="json", by_alias=True)

    @app.post("/sync", dependencies=secured)
    async def sync(body: SyncBody, request: Request) -> dict[str, object]:
        """Flush pending pushes and pull remote changes."""
        state_container: AppContainer = request.app.state.container
        result = await state_container.session.sync(body.force_full_pull)
        return dataclasses.asdict(result)

    @app.get("/recorded-dates", dependencies=secured)
    async def recorded_dates(request: Request) -> dict[str, list[str]]:
        state_container: AppContainer = request.app.state.container
        dates = await state_container.session.refresh_recorded_dates()
        return {"dates": sorted(dates)}

    return app


async def _select(request: Request, date_key: str) -> DailyLogSession:
    session: DailyLogSession = request.app.state.container.session
    if session.selected_date != date_key:
        await session.select_date(date_key)
    return session


def _status_for(exc: NutritionLogError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_body(exc: NutritionLogError) -> dict[str, object]:
    if isinstance(exc, AIServiceError):
        return {"error": exc.message, "code": exc.code, "details": exc.details}
    return {"error": str(exc), "code": type(exc).__name__}


def _record_payload(record: DailyRecord) -> dict[str, object]:
    return record.model_dump(mode="json", by_alias=True)


def _run_payload(run: SuggestionRun) -> dict[str, object]:
    suggestions = run.result or run.latest
    return {
        "analysisDate": run.analysis_date,
        "status": run.status.value,
        "message": run.progress.message,
        "categories": {
            key: {"state": progress.state.value, "message": progress.message}
            for key, progress in run.progress.categories.items()
        },
        "suggestions": (
            suggestions.model_dump(mode="json", by_alias=True)
            if suggestions is not None
            else None
        ),
        "error": _error_body(run.error) if run.error is not None else None,
    }
