from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    database_url: str = Field(default="sqlite:///liftsync.db", validation_alias="DATABASE_URL")
    api_key: str = Field(default="", validation_alias="LIFTSYNC_API_KEY")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LIFTSYNC_LOG_FILE")

    active_import_timeout_seconds: int = Field(
        default=600,
        gt=0,
        validation_alias="LIFTSYNC_ACTIVE_IMPORT_TIMEOUT_SECONDS",
        description="Seconds after the last heartbeat before an active import is considered stale",
    )
    max_run_duration_ms: int = Field(
        default=330_000,
        gt=0,
        validation_alias="LIFTSYNC_MAX_RUN_DURATION_MS",
        description="Per-run execution ceiling; kept under the 6 minute platform limit",
    )
    daily_quota_ms: int = Field(
        default=90 * 60 * 1000,
        gt=0,
        validation_alias="LIFTSYNC_DAILY_QUOTA_MS",
        description="Total trigger runtime allowed per day",
    )
    quota_warning_threshold: float = Field(default=0.8, validation_alias="LIFTSYNC_QUOTA_WARNING_THRESHOLD")
    quota_critical_threshold: float = Field(default=0.9, validation_alias="LIFTSYNC_QUOTA_CRITICAL_THRESHOLD")
    step_budget_ms: int = Field(
        default=30_000,
        ge=0,
        validation_alias="LIFTSYNC_STEP_BUDGET_MS",
        description="Minimum time that must remain in the run before starting another step",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LIFTSYNC_",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("quota_warning_threshold", "quota_critical_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError(f"Quota thresholds must be in (0, 1], got {value}")
        return value

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "Settings":
        if self.quota_warning_threshold > self.quota_critical_threshold:
            raise ValueError(
                f"Quota warning threshold ({self.quota_warning_threshold}) must not exceed "
                f"the critical threshold ({self.quota_critical_threshold})"
            )
        return self

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, value: str) -> str:
        """Warn when no API key is configured.

        Imports fail with ConfigurationError at run time; settings still load
        so status and reset commands keep working.
        """
        if not value:
            logger.warning("LIFTSYNC_API_KEY is not set. Imports will refuse to start until it is configured.")
        return value


settings = Settings()
