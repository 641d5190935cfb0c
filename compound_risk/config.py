"""
Configuration for the Compound Risk service
Every tunable of the cache, breakers, fallback and classification layers is
read from the environment (or a .env file) here and nowhere else
"""

from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Service settings

    Field names map to upper-case environment variables, e.g.
    BREAKER_FAILURE_THRESHOLD=3. Defaults suit local development.
    """

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "human"
    log_file: Optional[str] = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    # Runtime
    env: str = "development"
    debug: bool = False
    allowed_origins: str = "*"  # comma-separated

    # Hazard cache
    cache_max_size: int = Field(1000, gt=0)
    cache_cleanup_interval_seconds: float = Field(60 * 60, gt=0)
    cache_storage_dir: Optional[str] = None  # None keeps the snapshot in memory
    cache_storage_key: str = "pharma_cache"
    cache_storage_max_bytes: Optional[int] = 5 * 1024 * 1024

    # Circuit breakers
    breaker_failure_threshold: int = Field(5, gt=0)
    breaker_reset_timeout_seconds: float = Field(60.0, gt=0)

    # Fallback
    source_timeout_seconds: Optional[float] = 10.0
    parallel_min_success_rate: float = Field(0.5, ge=0.0, le=1.0)

    # Reliability statistics
    reliability_threshold: float = Field(0.8, ge=0.0, le=1.0)
    reliability_min_calls: int = 10
    reliability_recent_failure_seconds: float = 5 * 60

    # Classification
    large_batch_threshold: float = 1000.0
    max_ingredients: int = Field(50, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def _json_logs_in_production(self) -> "Settings":
        # Production always logs JSON
        if self.is_production:
            self.log_format = "json"
        return self

    @property
    def log_format_json(self) -> bool:
        return self.log_format.lower() == "json"

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        """CORS origins; a '*' anywhere allows every origin"""
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return ["*"] if "*" in origins else origins


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
