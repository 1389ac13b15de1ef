"""Custom exceptions for respawn."""

from typing import Optional


class RespawnError(Exception):
    """Base exception for all supervisor errors."""
    
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ConfigurationError(RespawnError):
    """Configuration is invalid; raised before the restart loop starts."""
    pass


class LaunchError(RespawnError):
    """The worker command could not be started."""
    pass
