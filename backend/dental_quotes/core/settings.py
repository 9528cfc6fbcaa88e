from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dental_quotes.models.quote import Currency

logger = logging.getLogger("dental_quotes.config")


class Settings(BaseSettings):
    app_env: str = "development"
    database_url: str = "sqlite:///./dental_quotes.db"
    quote_prefix: str = Field(default="AJAN", alias="QUOTE_PREFIX")
    default_validity_days: int = Field(default=30, alias="DEFAULT_VALIDITY_DAYS")
    default_currency: Currency = Field(default=Currency.huf, alias="DEFAULT_CURRENCY")
    sequencing_base_url: str | None = Field(default=None, alias="SEQUENCING_BASE_URL")
    sequencing_timeout_seconds: float = Field(default=5.0, alias="SEQUENCING_TIMEOUT_SECONDS")
    catalog_path: str | None = Field(default=None, alias="CATALOG_PATH")
    doctors: dict[str, str] = Field(default_factory=dict, alias="DOCTORS")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    @field_validator("default_validity_days", "sequencing_timeout_seconds", mode="before")
    @classmethod
    def _coerce_empty_numbers(cls, value, info):
        if value in {"", None}:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("sequencing_base_url", "catalog_path", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


def _is_production(app_env: str) -> bool:
    return app_env.strip().lower() in {"prod", "production"}


def validate_settings(settings: Settings) -> None:
    production = _is_production(settings.app_env)
    failures: list[str] = []
    warnings: list[str] = []

    prefix = settings.quote_prefix.strip()
    if len(prefix) != 4 or not prefix.isalnum():
        failures.append("QUOTE_PREFIX must be exactly 4 alphanumeric characters")

    if settings.default_validity_days < 1:
        failures.append("DEFAULT_VALIDITY_DAYS must be at least 1")

    if settings.sequencing_base_url is None:
        msg = "SEQUENCING_BASE_URL not set; quote ids are generated locally"
        if production:
            warnings.append(msg)
        else:
            logger.info(msg)

    if not settings.doctors:
        warnings.append("DOCTORS is empty; events are recorded without a doctor name")

    if settings.database_url.startswith("sqlite") and production:
        warnings.append("DATABASE_URL points to SQLite in production")

    for warning in warnings:
        logger.warning("Config warning: %s", warning)

    if failures:
        raise RuntimeError("Config validation failed: " + "; ".join(failures))


settings = Settings()
