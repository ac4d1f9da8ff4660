"""Domain models for daily records and their entries."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EntryKind = Literal["food", "exercise"]

PENDING_ID_PREFIX = "pending-"

_RECORD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NutritionInfo(BaseModel):
    """Nutrient amounts; keys beyond the core macros are micronutrients."""

    model_config = ConfigDict(extra="allow")

    calories: float = 0.0
    carbohydrates: float = 0.0
    protein: float = 0.0
    fat: float = 0.0


class FoodEntry(BaseModel):
    """Single logged food item."""

    model_config = ConfigDict(extra="allow")

    log_id: str
    food_name: str
    consumed_grams: float = 0.0
    meal_type: str | None = None
    nutritional_info_per_100g: NutritionInfo = Field(default_factory=NutritionInfo)
    total_nutritional_info_consumed: NutritionInfo = Field(
        default_factory=NutritionInfo
    )
    is_estimated: bool = True
    is_pending: bool = False


class ExerciseEntry(BaseModel):
    """Single logged exercise session."""

    model_config = ConfigDict(extra="allow")

    log_id: str
    exercise_name: str
    exercise_type: str = "other"
    duration_minutes: float = 0.0
    estimated_mets: float | None = None
    user_weight: float | None = None
    calories_burned_estimated: float = 0.0
    is_estimated: bool = True
    is_pending: bool = False


Entry = FoodEntry | ExerciseEntry


class Macros(BaseModel):
    """Macronutrient totals in grams."""

    carbs: float = 0.0
    protein: float = 0.0
    fat: float = 0.0


class Summary(BaseModel):
    """Totals derived from a record's entry lists."""

    model_config = _RECORD_CONFIG

    total_calories_consumed: float = 0.0
    total_calories_burned: float = 0.0
    macros: Macros = Field(default_factory=Macros)
    micronutrients: dict[str, float] = Field(default_factory=dict)


class DailyStatus(BaseModel):
    """Self-reported wellbeing for a day."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    stress: int | None = None
    mood: int | None = None
    health: int | None = None
    sleep_quality: int | None = None
    bed_time: str | None = None
    wake_time: str | None = None
    notes: str | None = None


class TEFAnalysis(BaseModel):
    """Thermic effect of food for a day's food entries."""

    model_config = _RECORD_CONFIG

    base_tef: float
    base_tef_percentage: float
    enhancement_multiplier: float = 1.0
    enhanced_tef: float
    enhancement_factors: list[str] = Field(default_factory=list)
    analysis_timestamp: str


class DailyRecord(BaseModel):
    """Everything logged for one calendar date."""

    model_config = _RECORD_CONFIG

    date: str
    food_entries: list[FoodEntry] = Field(default_factory=list)
    exercise_entries: list[ExerciseEntry] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    weight: float | None = None
    activity_level: str | None = None
    calculated_bmr: float | None = Field(default=None, alias="calculatedBMR")
    calculated_tdee: float | None = Field(default=None, alias="calculatedTDEE")
    tef_analysis: TEFAnalysis | None = None
    daily_status: DailyStatus | None = None
    last_modified: datetime | None = Field(default=None, alias="last_modified")

    def entries(self, kind: EntryKind) -> list[Entry]:
        """Return the entry list for a kind."""
        if kind == "food":
            return list(self.food_entries)
        return list(self.exercise_entries)

    def has_data(self) -> bool:
        """Return True when the record holds anything worth showing."""
        return bool(
            self.food_entries
            or self.exercise_entries
            or self.weight is not None
            or self.daily_status
            or self.calculated_bmr
            or self.calculated_tdee
            or self.tef_analysis
        )


class RecordPatch(BaseModel):
    """Field-wise partial update of a DailyRecord.

    Only fields explicitly set on the patch are applied; an explicitly set
    ``None`` clears the field.
    """

    model_config = _RECORD_CONFIG

    food_entries: list[FoodEntry] | None = None
    exercise_entries: list[ExerciseEntry] | None = None
    summary: Summary | None = None
    weight: float | None = None
    activity_level: str | None = None
    calculated_bmr: float | None = Field(default=None, alias="calculatedBMR")
    calculated_tdee: float | None = Field(default=None, alias="calculatedTDEE")
    tef_analysis: TEFAnalysis | None = None
    daily_status: DailyStatus | None = None
    last_modified: datetime | None = Field(default=None, alias="last_modified")

    def set_fields(self) -> dict[str, object]:
        """Return only the fields that were explicitly set."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def to_payload(self) -> dict[str, object]:
        """Serialize the set fields using wire names."""
        return self.model_dump(
            mode="json", by_alias=True, include=self.model_fields_set
        )

    def is_empty(self) -> bool:
        """Return True when no fields are set."""
        return not self.model_fields_set


def empty_record(date_key: str, activity_level: str | None = None) -> DailyRecord:
    """Build the record shown for a date with no stored data."""
    return DailyRecord(date=date_key, activity_level=activity_level)


def is_placeholder(entry: Entry) -> bool:
    """Return True for speculative entries awaiting a parse result."""
    return entry.is_pending or entry.log_id.startswith(PENDING_ID_PREFIX)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
