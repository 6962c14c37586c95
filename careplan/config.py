"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Calm-urgency thresholds live here, not scattered through the classifier
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from rich.console import Console
from rich.table import Table

from careplan.exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()

MoodPolicy = Literal["generate", "suppress"]
StorageBackend = Literal["memory", "sqlite"]


class SchedulerConfig(BaseModel):
    """Schedule expansion behaviour."""

    default_patient_id: str = Field(default="default", min_length=1)
    auto_mark_missed: bool = Field(
        default=False, description="Move stale pending instances to missed during expansion"
    )
    missed_grace_minutes: int = Field(
        default=120, ge=0, description="Minutes after the scheduled time before auto-miss"
    )
    mood_policy: MoodPolicy = Field(
        default="generate",
        description="Whether an enabled mood bucket produces daily mood check-ins",
    )


class UrgencyConfig(BaseModel):
    """Calm urgency thresholds."""

    critical_overdue_minutes: int = Field(
        default=30, gt=0, description="Minutes late before a clinical item turns critical"
    )
    upcoming_window_minutes: int = Field(
        default=60, gt=0, description="Items due within this many minutes need attention"
    )
    max_red_above_fold: int = Field(
        default=1, ge=0, description="Critical elements allowed in the primary viewport"
    )


class StorageConfig(BaseModel):
    """Key-value persistence settings."""

    backend: StorageBackend = Field(default="memory", description="Storage backend")
    sqlite_path: str = Field(default="./careplan.db", description="SQLite database file")
    key_prefix: str = Field(default="careplan", min_length=1, description="Key namespace")

    instance_index_retention_days: int = Field(default=90, gt=0)
    log_index_retention_days: int = Field(default=365, gt=0)
    max_all_logs: int = Field(default=5000, gt=0, description="Cap on the append-only log list")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    urgency: UrgencyConfig = Field(default_factory=UrgencyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    backend = os.getenv("CAREPLAN_STORAGE_BACKEND", "memory").strip().lower()
    mood_policy = os.getenv("CAREPLAN_MOOD_POLICY", "generate").strip().lower()

    try:
        scheduler_config = SchedulerConfig(
            default_patient_id=os.getenv("CAREPLAN_DEFAULT_PATIENT_ID", "default"),
            auto_mark_missed=_parse_bool(os.getenv("CAREPLAN_AUTO_MARK_MISSED"), False),
            missed_grace_minutes=int(os.getenv("CAREPLAN_MISSED_GRACE_MINUTES", "120")),
            mood_policy=cast(MoodPolicy, mood_policy),
        )

        urgency_config = UrgencyConfig(
            critical_overdue_minutes=int(os.getenv("CAREPLAN_CRITICAL_OVERDUE_MINUTES", "30")),
            upcoming_window_minutes=int(os.getenv("CAREPLAN_UPCOMING_WINDOW_MINUTES", "60")),
        )

        storage_config = StorageConfig(
            backend=cast(StorageBackend, backend),
            sqlite_path=os.getenv("CAREPLAN_SQLITE_PATH", "./careplan.db"),
        )

        logging_config = LoggingConfig(
            level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
            format="console" if debug else "json",
        )

        return AppConfig(
            environment=environment,
            debug=debug,
            scheduler=scheduler_config,
            urgency=urgency_config,
            storage=storage_config,
            logging=logging_config,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid care plan configuration: {e}") from e


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next ``get_config`` re-reads the environment."""
    get_config.cache_clear()


# Development helpers
def print_config_summary(config: AppConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config()

    table = Table(title="🔧 Configuration summary", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Environment", config.environment)
    table.add_row("Log level", config.logging.level)
    table.add_row("Storage backend", config.storage.backend)
    table.add_row("Auto-mark missed", str(config.scheduler.auto_mark_missed))
    table.add_row("Missed grace", f"{config.scheduler.missed_grace_minutes}m")
    table.add_row("Mood policy", config.scheduler.mood_policy)
    table.add_row("Critical after", f"{config.urgency.critical_overdue_minutes}m late")
    table.add_row("Red above fold", str(config.urgency.max_red_above_fold))
    Console().print(table)
