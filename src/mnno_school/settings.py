"""Coordination settings loaded from environment variables."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings


class CoordinationSettings(BaseSettings):
    """Configuration for the data-access coordination layer and its proxies.

    Values are read from ``MNNO_``-prefixed environment variables
    (case-insensitive) and optionally from a ``.env`` file in the working
    directory.  Every window below is tunable; none of the defaults is a
    correctness requirement.
    """

    # Global cache
    cache_ttl_seconds: float = 30.0
    eviction_interval_seconds: float = 60.0

    # Request coordination
    throttle_window_seconds: float = 10.0
    debounce_delay_ms: int = 300
    slow_loading_threshold_seconds: float = 300.0
    error_backoff_base_seconds: float = 10.0
    error_backoff_max_seconds: float = 300.0

    # Local snapshots
    data_dir: Path = Path.home() / ".mnno-school"
    snapshot_max_age_minutes: float = 10.0
    snapshot_version: int = 1
    snapshot_max_entry_bytes: int = 200 * 1024

    # Remote services
    supabase_url: str = ""
    supabase_key: str = ""
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    loom_api_key: str = ""
    http_timeout_seconds: float = 30.0
    video_poll_interval_seconds: float = 4.0

    model_config = {
        "env_prefix": "MNNO_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def _validate_windows(self) -> "CoordinationSettings":
        if self.cache_ttl_seconds < 0:
            raise ValueError("MNNO_CACHE_TTL_SECONDS must be >= 0")
        if self.eviction_interval_seconds <= 0:
            raise ValueError("MNNO_EVICTION_INTERVAL_SECONDS must be > 0")
        if self.throttle_window_seconds < 0:
            raise ValueError("MNNO_THROTTLE_WINDOW_SECONDS must be >= 0")
        if self.debounce_delay_ms < 0:
            raise ValueError("MNNO_DEBOUNCE_DELAY_MS must be >= 0")
        if self.error_backoff_base_seconds < 0:
            raise ValueError("MNNO_ERROR_BACKOFF_BASE_SECONDS must be >= 0")
        if self.error_backoff_max_seconds < self.error_backoff_base_seconds:
            raise ValueError(
                "MNNO_ERROR_BACKOFF_MAX_SECONDS must be >= MNNO_ERROR_BACKOFF_BASE_SECONDS"
            )
        return self

    @property
    def snapshot_db_path(self) -> Path:
        return self.data_dir / "snapshots.db"

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


settings = CoordinationSettings()
