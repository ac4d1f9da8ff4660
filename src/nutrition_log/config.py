"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from nutrition_log.domain.profile import AIConfig, ModelSettings, UserProfile

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

DEFAULT_CATEGORIES = ("nutrition", "exercise")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    ai_gateway_base_url: str = "http://localhost:3000"
    ai_gateway_token: str | None = None
    supabase_url: str
    supabase_service_key: str
    sync_user_id: str = "local"
    api_token: str | None = None
    log_level: str = "INFO"
    data_dir: str = ".nutrition_log"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"
    openai_model: str = "gpt-4o"

    suggestion_max_retries: int = 2
    suggestion_retry_delay_seconds: float = 1.0
    suggestion_request_timeout_seconds: float = 90.0
    stream_watchdog_seconds: float = 30.0
    tef_debounce_seconds: float = 15.0
    refresh_delay_seconds: float = 0.3
    records_refresh_delay_seconds: float = 0.5
    post_delete_pull_delay_seconds: float = 0.5
    auto_tef_analysis: bool = False

    profile_weight: float = 70.0
    profile_height: float = 170.0
    profile_age: int = 30
    profile_gender: str = "male"
    profile_activity_level: str = "moderate"
    profile_goal: str = "maintain"
    profile_bmr_formula: Literal["mifflin-st-jeor", "harris-benedict"] = (
        "mifflin-st-jeor"
    )
    suggestion_categories: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    def user_profile(self) -> UserProfile:
        """Build the default user profile."""
        return UserProfile(
            weight=self.profile_weight,
            height=self.profile_height,
            age=self.profile_age,
            gender=self.profile_gender,
            activity_level=self.profile_activity_level,
            goal=self.profile_goal,
            bmr_formula=self.profile_bmr_formula,
        )

    def ai_config(self) -> AIConfig:
        """Private model settings when an OpenAI key is set, shared otherwise."""
        if not self.openai_api_key:
            return AIConfig()
        model = ModelSettings(
            name=self.openai_model,
            base_url=self.openai_base_url,
            api_key=self.openai_api_key,
            source="private",
        )
        return AIConfig(agent_model=model, chat_model=model, vision_model=model)

    def categories(self) -> list[str]:
        return parse_category_list(self.suggestion_categories)


def parse_category_list(raw: str | None) -> list[str]:
    """Parse a comma-separated list of suggestion categories."""
    if raw is None:
        return list(DEFAULT_CATEGORIES)
    categories: list[str] = []
    for chunk in raw.split(","):
        value = chunk.strip().lower()
        if value and value not in categories:
            categories.append(value)
    return categories or list(DEFAULT_CATEGORIES)
