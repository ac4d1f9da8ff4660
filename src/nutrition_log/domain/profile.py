"""User profile and AI model configuration models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ModelSource = Literal["shared", "private"]


class UserProfile(BaseModel):
    """Body metrics and goals used for metabolic calculations."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    weight: float = 70.0
    height: float = 170.0
    age: int = 30
    gender: str = "male"
    activity_level: str = "moderate"
    goal: str = "maintain"
    bmr_formula: Literal["mifflin-st-jeor", "harris-benedict"] = "mifflin-st-jeor"


class ModelSettings(BaseModel):
    """Connection settings for one AI model role."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = "gpt-4o"
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    source: ModelSource = "shared"

    def is_complete(self) -> bool:
        """Return True when the settings can be used for a request."""
        if self.source == "shared":
            return True
        return bool(self.name and self.base_url and self.api_key)


class SharedKeySelection(BaseModel):
    """Shared-key pool selection."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    selected_key_ids: list[str] = Field(default_factory=list)


class AIConfig(BaseModel):
    """Model settings per role, sent along with AI requests."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent_model: ModelSettings = Field(default_factory=ModelSettings)
    chat_model: ModelSettings = Field(default_factory=ModelSettings)
    vision_model: ModelSettings = Field(default_factory=ModelSettings)
    shared_key: SharedKeySelection = Field(default_factory=SharedKeySelection)

    def model_for(self, *, with_images: bool) -> ModelSettings:
        """Return the model used for a parse request."""
        return self.vision_model if with_images else self.agent_model
