from pathlib import Path
import logging

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/iptv.db"
    log_level: str = "INFO"

    playlist_url: str | None = None
    epg_url: str | None = None

    playlist_chunk_size: int = 100  # Lines scanned per cooperative chunk
    category_chunk_size: int = 200  # Channels tallied per cooperative chunk
    category_chunk_threshold: int = 1000  # Chunk the tally only above this size

    default_group: str = "General"
    placeholder_name_prefix: str = "Untitled Channel"
    untitled_program_title: str = "Untitled"

    playlist_fetch_timeout_sec: float = 20.0
    epg_fetch_timeout_sec: float = 45.0
    fetch_max_retries: int = 1
    fetch_backoff_factor: float = 2.0
    fetch_user_agent: str = "iptv-engine/0.1.0"

    epg_parse_timeout_sec: int = 600  # XML parsing timeout, 0 disables timeout
    epg_refresh_enabled: bool = True
    epg_refresh_cron: str = "0 */6 * * *"  # Every 6 hours
    epg_refresh_misfire_grace_sec: int = 600
    now_playing_refresh_sec: int = 30

    model_config = SettingsConfigDict(
        env_prefix="IPTV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("playlist_url", "epg_url", mode="before")
    @classmethod
    def blank_url_to_none(cls, value):
        """Treat empty strings as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("playlist_url", "epg_url", mode="after")
    @classmethod
    def validate_source_url(cls, value: str | None) -> str | None:
        """Validate startup source URLs are HTTP/HTTPS."""
        if value is None:
            return value
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"Source URL must be HTTP/HTTPS: {value}")
        return value

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate logging level name."""
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator(
        "playlist_chunk_size",
        "category_chunk_size",
        "category_chunk_threshold",
        "now_playing_refresh_sec",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure chunk sizes and intervals are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("default_group", "placeholder_name_prefix", "untitled_program_title")
    @classmethod
    def validate_non_empty(cls, value: str, info) -> str:
        """Sentinel labels must never be blank."""
        if not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value.strip()

    @field_validator("playlist_fetch_timeout_sec", "epg_fetch_timeout_sec", "fetch_backoff_factor")
    @classmethod
    def validate_positive_floats(cls, value: float, info) -> float:
        """Ensure timeouts are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("fetch_max_retries")
    @classmethod
    def validate_retry_count(cls, value: int) -> int:
        """Retries are bounded; resilience beyond that belongs to the player."""
        if value < 0 or value > 5:
            raise ValueError("fetch_max_retries must be between 0 and 5")
        return value

    @field_validator("epg_parse_timeout_sec", "epg_refresh_misfire_grace_sec")
    @classmethod
    def validate_non_negative(cls, value: int, info) -> int:
        """Validate second-based settings are non-negative."""
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("epg_refresh_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @model_validator(mode="after")
    def validate_refresh_configuration(self):
        """Validate cross-field configuration."""
        if self.epg_refresh_enabled and not self.epg_url:
            logger.info(
                "No EPG URL configured - scheduled refresh only runs after an EPG is loaded"
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Database: %s", self.database_path)
        logger.info("  Playlist URL: %s", "configured" if self.playlist_url else "none")
        logger.info("  EPG URL: %s", "configured" if self.epg_url else "none")
        logger.info("  Playlist Chunk Size: %s lines", self.playlist_chunk_size)
        logger.info(
            "  Category Chunking: %s per chunk above %s channels",
            self.category_chunk_size,
            self.category_chunk_threshold,
        )
        logger.info("  Fetch Retries: %s", self.fetch_max_retries)
        logger.info(
            "  Parse Timeout: %s seconds",
            self.epg_parse_timeout_sec or "disabled",
        )
        logger.info(
            "  EPG Refresh: %s",
            self.epg_refresh_cron if self.epg_refresh_enabled else "disabled",
        )


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
