"""respawn - keeps a single worker process running."""

__version__ = "0.1.0"

from respawn.core.config import Settings
from respawn.core.models import SupervisorConfig, SupervisorState, TerminationReason
from respawn.supervisor import Supervisor, run_supervisor

__all__ = [
    "Settings",
    "Supervisor",
    "SupervisorConfig",
    "SupervisorState",
    "TerminationReason",
    "run_supervisor",
    "__version__",
]
