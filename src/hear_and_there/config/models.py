from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hear_and_there.llm.settings import LLMSettings


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 5


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = "data/logs/hear-and-there.log"
    rotation: FileRotationSettings = Field(default_factory=FileRotationSettings)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: Optional[FileLoggingSettings] = Field(default_factory=FileLoggingSettings)


class GoogleMapsSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: str = ""
    timeout_seconds: float = 15
    max_retries: int = 3


class StorageSettings(BaseModel):
    """
    Where the caches, checkpoints and session records are persisted.

    When `data_dir` is empty every store stays in memory for the lifetime of the process.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    data_dir: str = ""


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    poi_ttl_days: float = 7
    summary_ttl_days: float = 30
    suggestion_ttl_days: float = 7
    checkpoint_ttl_minutes: float = 120
    checkpoint_refresh_on_read: bool = False
    session_ttl_days: float = 7


class TourSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Minimum number of points handed to candidate generation.
    min_poi_count: int = 40
    radius_multiplier: float = 1.5
    min_radius_m: int = 500
    max_radius_m: int = 3000
    max_ranked_tours: int = 3
    duration_tolerance_minutes: int = 30
    suggestion_match_radius_m: float = 50
    max_cached_suggestions: int = 10
    food_min_duration_minutes: int = 120
    max_food_pois: int = 15
    search_results_per_group: int = 20


class AudioguideSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    default_voice: str = "en-GB-Wavenet-B"
    hebrew_voice: str = "he-IL-Standard-D"
    script_concurrency: int = 6
    audio_concurrency: int = 4
    tts_max_bytes: int = 4998


class RetrySettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_factor: float = 2.0


class CancellationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    poll_interval_seconds: float = 1.0


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    google_maps: GoogleMapsSettings = Field(default_factory=GoogleMapsSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    tours: TourSettings = Field(default_factory=TourSettings)
    audioguide: AudioguideSettings = Field(default_factory=AudioguideSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cancellation: CancellationSettings = Field(default_factory=CancellationSettings)


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: Optional[str] = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = ".env"
