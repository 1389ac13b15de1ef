"""Data models for the worker supervisor."""

import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from respawn.core.exceptions import ConfigurationError

DEFAULT_RESTART_DELAY = 5.0
DEFAULT_STOP_TIMEOUT = 10.0


class SupervisorState(Enum):
    """State of the supervisor loop."""
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPING = "stopping"
    STOPPED = "stopped"


class TerminationReason(Enum):
    """Why the supervisor loop returned."""
    REQUESTED_STOP = "requested_stop"


@dataclass(frozen=True)
class SupervisorConfig:
    """Configuration for a supervised worker."""

    command: Tuple[str, ...]
    environment: Mapping[str, str] = field(default_factory=dict)
    restart_delay: float = DEFAULT_RESTART_DELAY
    stop_timeout: float = DEFAULT_STOP_TIMEOUT  # seconds before SIGTERM escalates to SIGKILL
    capture_output: bool = False

    def __post_init__(self):
        command = tuple(self.command)
        if not command or not command[0]:
            raise ConfigurationError("Worker command must not be empty")
        if not self.restart_delay >= 0:  # also rejects NaN
            raise ConfigurationError(
                f"restart_delay must be >= 0, got: {self.restart_delay}"
            )
        if not self.stop_timeout > 0:
            raise ConfigurationError(
                f"stop_timeout must be > 0, got: {self.stop_timeout}"
            )
        for key, value in self.environment.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise ConfigurationError(
                    f"Environment entries must be strings, got: {key!r}={value!r}"
                )

        object.__setattr__(self, "command", command)
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))


@dataclass
class RunAttempt:
    """One launch of the worker process."""

    attempt: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    stopped_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def launched(self) -> bool:
        """Whether the worker process was actually started."""
        return self.pid is not None

    @property
    def uptime(self) -> Optional[float]:
        """Seconds between launch and observed exit (or now, if still running)."""
        if not self.launched:
            return None
        end = self.stopped_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def mark_exited(self, exit_code: Optional[int]) -> None:
        self.exit_code = exit_code
        self.stopped_at = datetime.now(timezone.utc)

    def mark_failed(self, error: str) -> None:
        self.error_message = error
        self.stopped_at = datetime.now(timezone.utc)

    def describe_exit(self) -> str:
        """Human-readable description of how the attempt ended."""
        if self.error_message is not None:
            return f"launch failed: {self.error_message}"
        if self.exit_code is None:
            return "running" if self.stopped_at is None else "exited with unknown status"
        return describe_returncode(self.exit_code)


def describe_returncode(returncode: int) -> str:
    """Describe a subprocess return code, decoding negative values as signals."""
    if returncode >= 0:
        return f"exited with code {returncode}"

    signum = -returncode
    try:
        name = signal.Signals(signum).name
    except ValueError:
        name = f"signal {signum}"
    return f"terminated by {name}"
