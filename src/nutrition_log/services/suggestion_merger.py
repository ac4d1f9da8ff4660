"""Folds streamed partial results into a displayable suggestion set."""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from nutrition_log.domain.suggestions import (
    CategorySuggestion,
    StreamFrame,
    SuggestionSet,
)

_logger = logging.getLogger(__name__)

PARTIAL_SUMMARY = "Generating suggestions..."
FINAL_SUMMARY = "No summary"


@dataclass
class SuggestionMerger:
    """Per-run accumulator of category results.

    A whole-category ``partial`` frame replaces the category outright; a
    single-suggestion frame appends one unit to it. Categories keep their
    first-seen order.
    """

    data_date: str
    started_at: float = field(default_factory=time.monotonic)
    _categories: dict[str, dict[str, Any]] = field(default_factory=dict)
    _last_updated: int = 0

    @property
    def has_results(self) -> bool:
        return bool(self._categories)

    def suggestion_count(self, category: str) -> int:
        suggestions = self._categories.get(category, {}).get("suggestions")
        return len(suggestions) if isinstance(suggestions, list) else 0

    def merge(self, frame: StreamFrame) -> SuggestionSet | None:
        """Fold a ``partial`` frame in and return the new in-progress snapshot."""
        if not frame.data or not frame.category:
            return None
        category = frame.category
        recent = None
        if frame.is_single_suggestion and "suggestion" in frame.data:
            recent = frame.data["suggestion"]
            existing = self._categories.get(category) or {
                "key": category,
                "category": category,
                "priority": frame.data.get("priority") or "medium",
                "suggestions": [],
                "summary": frame.data.get("summary") or PARTIAL_SUMMARY,
            }
            current = existing.get("suggestions")
            units = current if isinstance(current, list) else []
            candidate = {**existing, "suggestions": [*units, recent]}
        else:
            candidate = dict(frame.data)
        self._categories[category] = _normalize(
            candidate, category, PARTIAL_SUMMARY
        ).model_dump()
        return self.snapshot(current_category=category, recent_suggestion=recent)

    def snapshot(
        self,
        *,
        current_category: str | None = None,
        recent_suggestion: Any | None = None,
    ) -> SuggestionSet:
        """Return every category accumulated so far as a partial set."""
        return SuggestionSet(
            suggestions=[
                _normalize(value, key, PARTIAL_SUMMARY)
                for key, value in self._categories.items()
            ],
            generated_at=_now(),
            data_date=self.data_date,
            processing_time=self._elapsed_ms(),
            is_partial=True,
            last_updated=self._tick(),
            current_category=current_category,
            recent_suggestion=recent_suggestion,
        )

    def finalize(
        self, frame: StreamFrame | None = None, *, partial: bool = False
    ) -> SuggestionSet | None:
        """Build the final set.

        The set carried by a ``complete`` frame wins; otherwise the
        accumulated categories become final. Returns None when there is
        nothing to keep.
        """
        authoritative = frame.final_suggestions() if frame is not None else None
        items = authoritative or list(self._categories.values())
        suggestions = [
            _normalize(item, "unknown", FINAL_SUMMARY)
            for item in items
            if isinstance(item, dict)
        ]
        if len(suggestions) != len(items):
            _logger.warning(
                "Skipped %s non-object suggestions", len(items) - len(suggestions)
            )
        if not suggestions:
            return None
        return SuggestionSet(
            suggestions=suggestions,
            generated_at=(frame.generated_at if frame else None) or _now(),
            data_date=self.data_date,
            key_info=frame.key_info if frame else None,
            processing_time=(frame.processing_time if frame else None)
            or self._elapsed_ms(),
            is_partial=partial,
            last_updated=self._tick(),
        )

    def _tick(self) -> int:
        self._last_updated = max(self._last_updated + 1, time.time_ns() // 1_000_000)
        return self._last_updated

    def _elapsed_ms(self) -> float:
        return round((time.monotonic() - self.started_at) * 1000, 1)


def _normalize(
    item: dict[str, Any], fallback_key: str, default_summary: str
) -> CategorySuggestion:
    """Fill the required fields of a category result."""
    suggestions = item.get("suggestions")
    return CategorySuggestion.model_validate(
        {
            **item,
            "key": item.get("key") or item.get("category") or fallback_key,
            "category": item.get("category") or fallback_key,
            "priority": item.get("priority") or "medium",
            "suggestions": suggestions if isinstance(suggestions, list) else [],
            "summary": item.get("summary") or default_summary,
        }
    )


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()
