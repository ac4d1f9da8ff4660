"""Error taxonomy for the nutrition log engine."""


class NutritionLogError(Exception):
    """Base class for all application errors."""


class PersistenceError(NutritionLogError):
    """Local record store failed; the causing operation must not continue."""


class InvalidInputError(NutritionLogError):
    """User-supplied value is out of range."""


class ModelConfigError(NutritionLogError):
    """Private AI model configuration is incomplete."""


class NoRecordDataError(NutritionLogError):
    """Date has no entries to analyse."""


class SubmissionInProgressError(NutritionLogError):
    """Another submission for the same category has not finished."""


class SubmissionFailedError(NutritionLogError):
    """A parse submission failed and was rolled back."""


class SyncConflictError(NutritionLogError):
    """Remote copy changed after the local one; a forced re-pull is needed."""


class AIServiceError(NutritionLogError):
    """Failure reported by or while talking to the AI gateway."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}


class AITransportError(AIServiceError):
    """Connection refused, DNS failure, or aborted request."""

    retryable = True


class AITimeoutError(AIServiceError):
    """Per-attempt timeout or dead-stream watchdog expiry."""

    retryable = True


class ServerError(AIServiceError):
    """Unclassified server-side or application error."""

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code is not None and self.status_code >= 500


class RateLimitedError(AIServiceError):
    """Daily usage limit reached."""

    @property
    def current_usage(self) -> object:
        return self.details.get("currentUsage", "unknown")

    @property
    def daily_limit(self) -> object:
        return self.details.get("dailyLimit", "unknown")


class UnauthorizedError(AIServiceError):
    """Login required before using AI features."""


class CapacityExhaustedError(AIServiceError):
    """Every shared key has hit its daily limit."""


class ServerTimeoutError(AIServiceError):
    """Gateway gave up waiting for the model."""

    hint = (
        "The AI service took too long. Try again later or switch to a private "
        "model configuration for more stable service."
    )


class EmptyStreamError(AIServiceError):
    """Stream closed cleanly without a single frame."""


class FatalStreamError(AIServiceError):
    """Server sent a fatal frame."""


class StreamIncompleteError(AIServiceError):
    """Stream closed after some frames but before a terminal frame."""


def api_error_from_response(
    status_code: int, body: dict[str, object] | None
) -> AIServiceError:
    """Map a structured ``{error, code, details}`` body onto the taxonomy."""
    payload = body or {}
    code = payload.get("code")
    code = str(code) if code else None
    raw_details = payload.get("details")
    details = raw_details if isinstance(raw_details, dict) else {}
    error = payload.get("error")
    message = str(error) if isinstance(error, str) and error else None
    kwargs = {"status_code": status_code, "code": code, "details": details}

    if status_code == 429 and code == "LIMIT_EXCEEDED":
        current = details.get("currentUsage", "unknown")
        limit = details.get("dailyLimit", "unknown")
        return RateLimitedError(
            f"Daily AI usage limit reached ({current}/{limit})", **kwargs
        )
    if status_code == 401:
        return UnauthorizedError(
            message or "Please log in before using AI features", **kwargs
        )
    if status_code == 503 and code == "SHARED_KEYS_EXHAUSTED":
        return CapacityExhaustedError(
            message or "All shared keys have reached their daily limit", **kwargs
        )
    if status_code == 408:
        return ServerTimeoutError(
            message or ServerTimeoutError.hint, **kwargs
        )
    return ServerError(message or f"Server error ({status_code})", **kwargs)
