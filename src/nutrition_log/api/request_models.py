from pydantic import Base64Bytes, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nutrition_log.domain.records import EntryKind

_BODY_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitEntriesBody(BaseModel):
    """Text and base64 photos to parse into entries."""

    model_config = _BODY_CONFIG

    text: str = ""
    kind: EntryKind
    lang: str = "en"
    images: list[Base64Bytes] = Field(default_factory=list)


class WeightBody(BaseModel):
    model_config = _BODY_CONFIG

    weight: float


class ActivityLevelBody(BaseModel):
    model_config = _BODY_CONFIG

    activity_level: str


class SyncBody(BaseModel):
    model_config = _BODY_CONFIG

    force_full_pull: bool = False


class SuggestionsBody(BaseModel):
    model_config = _BODY_CONFIG

    categories: list[str] | None = None
