from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(
        default="storeadmin",
        validation_alias=AliasChoices("STOREADMIN_APP_NAME", "APP_NAME"),
    )
    app_host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("STOREADMIN_APP_HOST", "APP_HOST"),
    )
    app_port: int = Field(
        default=8080,
        validation_alias=AliasChoices("STOREADMIN_APP_PORT", "APP_PORT"),
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./storeadmin.db",
        validation_alias=AliasChoices("STOREADMIN_DATABASE_URL", "DATABASE_URL"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("STOREADMIN_LOG_LEVEL", "LOG_LEVEL"),
    )
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("STOREADMIN_SCHEDULER_ENABLED", "SCHEDULER_ENABLED"),
    )
    scheduled_content_interval_seconds: int = Field(
        default=60,
        validation_alias=AliasChoices(
            "STOREADMIN_SCHEDULED_CONTENT_INTERVAL_SECONDS", "SCHEDULED_CONTENT_INTERVAL_SECONDS"
        ),
    )
    analytics_retention_days: int = Field(
        default=90,
        validation_alias=AliasChoices("STOREADMIN_ANALYTICS_RETENTION_DAYS", "ANALYTICS_RETENTION_DAYS"),
    )
    amazon_associate_tag: str = Field(
        default="recoveryessentials-20",
        validation_alias=AliasChoices("STOREADMIN_AMAZON_ASSOCIATE_TAG", "AMAZON_ASSOCIATE_TAG"),
    )
    amazon_marketplace: str = Field(
        default="www.amazon.com",
        validation_alias=AliasChoices("STOREADMIN_AMAZON_MARKETPLACE", "AMAZON_MARKETPLACE"),
    )
    amazon_cache_hours: int = Field(
        default=24,
        validation_alias=AliasChoices("STOREADMIN_AMAZON_CACHE_HOURS", "AMAZON_CACHE_HOURS"),
    )
    email_provider: str = Field(
        default="log",
        validation_alias=AliasChoices("STOREADMIN_EMAIL_PROVIDER", "EMAIL_PROVIDER"),
    )
    email_sender: str = Field(
        default="hello@recoveryessentials.example",
        validation_alias=AliasChoices("STOREADMIN_EMAIL_SENDER", "EMAIL_SENDER"),
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    def build_amazon_url(self, asin: str, tag: str | None = None) -> str:
        return f"https://{self.amazon_marketplace}/dp/{asin}?tag={tag or self.amazon_associate_tag}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
