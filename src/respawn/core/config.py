"""Configuration management for respawn."""

import shlex
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from respawn.core.exceptions import ConfigurationError
from respawn.core.models import DEFAULT_RESTART_DELAY, DEFAULT_STOP_TIMEOUT

LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
LOG_FORMATS = {"console", "json"}


class Settings(BaseSettings):
    """Supervisor settings, read from RESPAWN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RESPAWN_",
        case_sensitive=False,
        extra="ignore",
    )

    # Worker
    command: Optional[str] = Field(None, description="Worker command line")
    env_file: Optional[str] = Field(None, description="Environment file passed to the worker")

    # Restart loop
    restart_delay: float = Field(
        DEFAULT_RESTART_DELAY,
        ge=0,
        description="Seconds to wait between a worker exit and the next launch",
    )
    stop_timeout: float = Field(
        DEFAULT_STOP_TIMEOUT,
        gt=0,
        description="Seconds to wait after SIGTERM before killing the worker",
    )
    capture_output: bool = Field(False, description="Forward worker output into the log")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("console")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(sorted(LOG_LEVELS))}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Check the log renderer name."""
        fmt = v.strip().lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"must be one of {', '.join(sorted(LOG_FORMATS))}")
        return fmt

    @property
    def command_list(self) -> List[str]:
        """Get the worker command split into arguments."""
        if not self.command:
            return []
        try:
            return shlex.split(self.command)
        except ValueError as e:
            raise ConfigurationError(f"Cannot parse worker command {self.command!r}: {e}")


def load_settings(**overrides: Any) -> Settings:
    """Build Settings, letting explicit overrides win over the environment.

    Overrides whose value is ``None`` are ignored so unset CLI flags fall back
    to the environment or the defaults.
    """
    values: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError("; ".join(messages)) from e
