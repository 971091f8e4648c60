"""
Application settings.

Settings are read from the environment (and a local ``.env`` file) exactly
once, at startup, and then passed explicitly to every component that needs
them. Nothing in the package reads ``os.environ`` on its own.

Usage::

    from campfire_planner.config import get_settings

    settings = get_settings()
    service = build_service(settings)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SOURCE_NAME = "Forestry Corporation NSW"
DEFAULT_FIRE_BAN_ENTRY_URL = "https://www.forestrycorporation.com.au/visit/solid-fuel-fire-bans"
DEFAULT_NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org"


class Settings(BaseModel):
    """Runtime configuration for the whole pipeline."""

    model_config = {"frozen": True}

    app_name: str = "campfire-planner"
    app_env: str = "development"
    debug: bool = False

    # Storage
    data_dir: Path = Path("data")
    input_dir: Path = Field(
        default=Path("data/pipeline"),
        description="Directory holding the extraction pipeline's JSON outputs",
    )
    snapshot_ttl_minutes: float = Field(default=15.0, gt=0)
    source_name: str = DEFAULT_SOURCE_NAME
    fire_ban_entry_url: str = DEFAULT_FIRE_BAN_ENTRY_URL

    # Geocoding
    nominatim_base_url: str = DEFAULT_NOMINATIM_BASE_URL
    google_maps_api_key: str | None = None
    geocode_region: str = "New South Wales, Australia"
    geocode_country_code: str = "au"
    geocode_max_premium_per_run: int = Field(default=25, ge=0)
    geocode_delay_seconds: float = Field(default=1.2, ge=0)
    geocode_timeout_seconds: float = Field(default=15.0, gt=0)
    geocode_retry_attempts: int = Field(default=3, ge=1)
    geocode_retry_base_delay_seconds: float = Field(default=0.75, ge=0)

    # Routing (empty disables driving distances)
    osrm_base_url: str = ""

    # Matching
    facility_match_threshold: float = Field(default=0.62, ge=0, le=1)
    closure_match_threshold: float = Field(default=0.68, ge=0, le=1)

    @property
    def geocode_cache_path(self) -> Path:
        return self.data_dir / "cache" / "coordinates.sqlite"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Args:
            env: Mapping to read from. Defaults to ``os.environ`` after
                loading ``.env``.
        """
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        values: dict[str, object] = {}
        mapping = {
            "CAMPFIRE_ENV": "app_env",
            "CAMPFIRE_DEBUG": "debug",
            "CAMPFIRE_DATA_DIR": "data_dir",
            "CAMPFIRE_INPUT_DIR": "input_dir",
            "CAMPFIRE_SNAPSHOT_TTL_MINUTES": "snapshot_ttl_minutes",
            "CAMPFIRE_SOURCE_NAME": "source_name",
            "NOMINATIM_BASE_URL": "nominatim_base_url",
            "GOOGLE_MAPS_API_KEY": "google_maps_api_key",
            "GEOCODE_MAX_PREMIUM_PER_RUN": "geocode_max_premium_per_run",
            "GEOCODE_DELAY_SECONDS": "geocode_delay_seconds",
            "GEOCODE_TIMEOUT_SECONDS": "geocode_timeout_seconds",
            "GEOCODE_RETRY_ATTEMPTS": "geocode_retry_attempts",
            "GEOCODE_RETRY_BASE_DELAY_SECONDS": "geocode_retry_base_delay_seconds",
            "FACILITY_MATCH_THRESHOLD": "facility_match_threshold",
            "CLOSURE_MATCH_THRESHOLD": "closure_match_threshold",
            "OSRM_BASE_URL": "osrm_base_url",
        }
        for env_name, field_name in mapping.items():
            raw = env.get(env_name, "").strip()
            if raw:
                values[field_name] = raw

        # Input dir follows the data dir unless set explicitly.
        if "data_dir" in values and "input_dir" not in values:
            values["input_dir"] = Path(str(values["data_dir"])) / "pipeline"

        return cls.model_validate(values)


def get_settings() -> Settings:
    """Load settings from the process environment."""
    return Settings.from_env()
