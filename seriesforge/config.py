"""SeriesForge configuration loaded from environment variables."""

from __future__ import annotations

import json

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from seriesforge.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Origins: JSON object mapping origin name to its connector settings,
    # e.g. {"local": {"type": "rrd", "path": "/var/lib/collectd/rrd", "pattern": "..."}}
    origins: str = Field(default="{}", alias="ORIGINS")

    # Refresh
    refresh_interval_seconds: int = Field(
        default=300,
        validation_alias=AliasChoices("REFRESH_INTERVAL_SECONDS", "REFRESH_INTERVAL"),
    )

    # Queries
    default_percentiles: str = Field(default="50,95,99", alias="DEFAULT_PERCENTILES")

    @property
    def origins_map(self) -> dict[str, dict[str, str]]:
        raw = (self.origins or "").strip()
        if not raw:
            return {}

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid ORIGINS setting: {exc}") from exc

        if not isinstance(parsed, dict):
            raise ConfigError("invalid ORIGINS setting: expected a JSON object")

        origins: dict[str, dict[str, str]] = {}
        for name, config in parsed.items():
            if not isinstance(config, dict):
                raise ConfigError(f"invalid ORIGINS setting: `{name}' is not an object")
            origins[str(name)] = {str(key): str(value) for key, value in config.items()}
        return origins

    @property
    def default_percentiles_list(self) -> list[float]:
        raw = (self.default_percentiles or "").strip()
        if not raw:
            return []

        try:
            return [float(value.strip()) for value in raw.split(",") if value.strip()]
        except ValueError as exc:
            raise ConfigError(f"invalid DEFAULT_PERCENTILES setting: {exc}") from exc

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
