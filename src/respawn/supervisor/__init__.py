"""Worker supervisor - restart loop and process launching."""

from .launcher import SubprocessLauncher, WorkerProcess
from .supervisor import Supervisor, run_supervisor

__all__ = ["Supervisor", "SubprocessLauncher", "WorkerProcess", "run_supervisor"]
