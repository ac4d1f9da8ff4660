"""Free-text (and photo) parsing into food and exercise entries."""

import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel, Field

from nutrition_log.domain.errors import (
    InvalidInputError,
    ModelConfigError,
    ServerError,
)
from nutrition_log.domain.profile import AIConfig, ModelSettings
from nutrition_log.domain.records import EntryKind

MAX_IMAGES = 5

_NUTRITION_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "calories": {"type": "number", "minimum": 0},
        "carbohydrates": {"type": "number", "minimum": 0},
        "protein": {"type": "number", "minimum": 0},
        "fat": {"type": "number", "minimum": 0},
    },
    "required": ["calories", "carbohydrates", "protein", "fat"],
    "additionalProperties": False,
}

PARSE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "food": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "food_name": {"type": "string"},
                    "consumed_grams": {"type": "number", "minimum": 0},
                    "meal_type": {"anyOf": [{"type": "string"}, {"type": "null"}]},
                    "nutritional_info_per_100g": _NUTRITION_SCHEMA,
                    "total_nutritional_info_consumed": _NUTRITION_SCHEMA,
                    "is_estimated": {"type": "boolean"},
                },
                "required": [
                    "food_name",
                    "consumed_grams",
                    "meal_type",
                    "nutritional_info_per_100g",
                    "total_nutritional_info_consumed",
                    "is_estimated",
                ],
                "additionalProperties": False,
            },
        },
        "exercise": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "exercise_name": {"type": "string"},
                    "exercise_type": {"type": "string"},
                    "duration_minutes": {"type": "number", "minimum": 0},
                    "estimated_mets": {"type": "number", "minimum": 0},
                    "calories_burned_estimated": {"type": "number", "minimum": 0},
                    "is_estimated": {"type": "boolean"},
                },
                "required": [
                    "exercise_name",
                    "exercise_type",
                    "duration_minutes",
                    "estimated_mets",
                    "calories_burned_estimated",
                    "is_estimated",
                ],
                "additionalProperties": False,
            },
        },
    },
    "required": ["food", "exercise"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ParseRequest:
    """Text and optional photos describing what was eaten or done."""

    text: str
    kind: EntryKind
    user_weight: float
    ai_config: AIConfig
    lang: str = "en"
    images: list[bytes] = field(default_factory=list)

    @property
    def model(self) -> ModelSettings:
        return self.ai_config.model_for(with_images=bool(self.images))


class ParseResult(BaseModel):
    """Entries returned by a parse call, before ids are assigned."""

    food: list[dict[str, Any]] = Field(default_factory=list)
    exercise: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None


class ParseClient(Protocol):
    """Interface for AI-backed entry parsing."""

    async def parse(self, request: ParseRequest) -> dict[str, object]:
        """Return the raw ``{food, exercise, error?}`` payload."""


@dataclass
class ParseService:
    """Validates a parse request and routes it to the shared or a private model."""

    shared_client: ParseClient
    private_client_factory: Callable[[ModelSettings], ParseClient] | None = None

    async def parse(self, request: ParseRequest) -> ParseResult:
        """Parse a request into raw entries; server-reported errors raise."""
        check_model_config(request)
        if request.model.source == "private" and self.private_client_factory:
            client = self.private_client_factory(request.model)
        else:
            client = self.shared_client
        raw = await client.parse(request)
        result = ParseResult.model_validate(raw)
        if result.error:
            raise ServerError(result.error)
        return result


def check_model_config(request: ParseRequest) -> None:
    """Reject requests that cannot be served with the configured model."""
    if len(request.images) > MAX_IMAGES:
        raise InvalidInputError(f"At most {MAX_IMAGES} images are allowed")
    if not request.model.is_complete():
        role = "vision" if request.images else "agent"
        raise ModelConfigError(
            f"Configure the {role} model name, base URL and API key first"
        )


def parse_prompt(request: ParseRequest) -> str:
    """Build the instruction sent to a private model."""
    focus = "foods eaten" if request.kind == "food" else "exercise performed"
    return (
        f"Extract the {focus} from the user's description and photos. "
        "Estimate grams, nutrition per 100g and total consumed nutrition for "
        "each food; estimate duration, METs and calories burned for each "
        f"exercise using a body weight of {request.user_weight} kg. "
        f"Answer in language '{request.lang}'. Description: {request.text}"
    )


def to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
