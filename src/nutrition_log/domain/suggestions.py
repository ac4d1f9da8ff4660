"""Models for streamed AI suggestions and their progress state."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FrameType = Literal[
    "heartbeat", "init", "progress", "partial", "error", "fatal", "complete"
]


class StreamFrame(BaseModel):
    """One event of the suggestion stream."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    type: FrameType
    category: str | None = None
    message: str | None = None
    data: dict[str, Any] | None = None
    is_single_suggestion: bool = False
    suggestions: list[dict[str, Any]] | None = None
    generated_at: str | None = None
    key_info: dict[str, Any] | None = None
    processing_time: float | None = None

    def final_suggestions(self) -> list[dict[str, Any]] | None:
        """Return the authoritative set carried by a complete frame, if any."""
        if self.suggestions:
            return self.suggestions
        if self.data and isinstance(self.data.get("suggestions"), list):
            return self.data["suggestions"] or None
        return None


class CategorySuggestion(BaseModel):
    """Suggestions produced by one expert category."""

    model_config = ConfigDict(extra="allow")

    key: str
    category: str
    priority: str = "medium"
    suggestions: list[Any] = Field(default_factory=list)
    summary: str


class SuggestionSet(BaseModel):
    """Suggestions for one analysis date, partial or final."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    suggestions: list[CategorySuggestion] = Field(default_factory=list)
    generated_at: str
    data_date: str
    processing_time: float | None = None
    is_partial: bool = False
    last_updated: int = 0
    current_category: str | None = None
    recent_suggestion: Any | None = None
    key_info: dict[str, Any] | None = None


class CategoryState(StrEnum):
    """Per-category generation state."""

    PENDING = "pending"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"


class GenerationStatus(StrEnum):
    """Overall generation state."""

    IDLE = "idle"
    LOADING = "loading"
    PARTIAL = "partial"
    SUCCESS = "success"
    ERROR = "error"


_CATEGORY_RANK = {
    CategoryState.PENDING: 0,
    CategoryState.GENERATING: 1,
    CategoryState.SUCCESS: 2,
    CategoryState.ERROR: 2,
}
_STATUS_RANK = {
    GenerationStatus.IDLE: 0,
    GenerationStatus.LOADING: 1,
    GenerationStatus.PARTIAL: 2,
    GenerationStatus.SUCCESS: 3,
    GenerationStatus.ERROR: 3,
}


@dataclass
class CategoryProgress:
    """State and latest message for one category."""

    state: CategoryState = CategoryState.PENDING
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in {CategoryState.SUCCESS, CategoryState.ERROR}


@dataclass
class SuggestionProgress:
    """Monotonic progress of one generation run.

    Categories move pending -> generating -> success|error; the overall
    status moves idle -> loading -> partial* -> success|error. Updates that
    would move backwards are ignored.
    """

    status: GenerationStatus = GenerationStatus.IDLE
    message: str | None = None
    categories: dict[str, CategoryProgress] = field(default_factory=dict)

    def start(self, category_keys: list[str], message: str | None = None) -> None:
        """Begin a run with every selected category pending."""
        self.status = GenerationStatus.LOADING
        self.message = message
        self.categories = {key: CategoryProgress() for key in category_keys}

    def set_status(
        self, status: GenerationStatus, message: str | None = None
    ) -> bool:
        """Advance the overall status; return False if the move was refused."""
        if self.is_finished or _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            return False
        self.status = status
        if message is not None:
            self.message = message
        return True

    def set_category(
        self, key: str, state: CategoryState, message: str | None = None
    ) -> bool:
        """Advance one category; return False if the move was refused."""
        progress = self.categories.setdefault(key, CategoryProgress())
        if progress.is_terminal:
            return False
        if _CATEGORY_RANK[state] < _CATEGORY_RANK[progress.state]:
            return False
        progress.state = state
        progress.message = message
        return True

    def complete(self, message: str | None = None) -> None:
        """Finish successfully; categories that did not fail succeed."""
        for key, progress in self.categories.items():
            if not progress.is_terminal:
                self.set_category(key, CategoryState.SUCCESS, progress.message)
        self.set_status(GenerationStatus.SUCCESS, message)

    def fail(self, message: str) -> None:
        """Finish with an error; unfinished categories fail with it."""
        for key, progress in self.categories.items():
            if not progress.is_terminal:
                self.set_category(key, CategoryState.ERROR, message)
        self.set_status(GenerationStatus.ERROR, message)

    @property
    def is_finished(self) -> bool:
        return self.status in {GenerationStatus.SUCCESS, GenerationStatus.ERROR}
