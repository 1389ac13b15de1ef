"""Worker process launching."""

import asyncio
import subprocess
from typing import List, Mapping, Optional, Protocol, Sequence

import structlog

from respawn.core.exceptions import LaunchError

logger = structlog.get_logger()

# Upper bound on waiting for forwarded output after the worker exited;
# a grandchild holding the pipe open must not block the restart loop.
OUTPUT_DRAIN_TIMEOUT = 1.0

# Longest single output line forwarded; longer lines are dropped with a warning.
OUTPUT_LINE_LIMIT = 1024 * 1024


class WorkerHandle(Protocol):
    """What the supervisor needs from a running worker."""

    pid: int

    @property
    def returncode(self) -> Optional[int]: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class ProcessLauncher(Protocol):
    """Starts worker processes."""

    async def launch(
        self,
        command: Sequence[str],
        environment: Mapping[str, str],
        capture_output: bool = False,
    ) -> WorkerHandle: ...


class WorkerProcess:
    """A launched worker subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self.process = process
        self.pid = process.pid
        self._forward_tasks: List[asyncio.Task] = []

        if process.stdout is not None:
            self._forward_tasks.append(asyncio.create_task(self._forward_logs("stdout", process.stdout)))
        if process.stderr is not None:
            self._forward_tasks.append(asyncio.create_task(self._forward_logs("stderr", process.stderr)))

    async def _forward_logs(self, stream_name: str, stream: asyncio.StreamReader):
        """Forward worker output lines to the supervisor log.

        Reads until EOF no matter what the worker writes; a worker blocked on
        a full pipe would never exit.
        """
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # readline already discarded the oversized chunk
                logger.warning("Worker output line too long, dropped", pid=self.pid, stream=stream_name)
                continue
            if not line:  # EOF
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.info(f"Worker {stream_name}", pid=self.pid, log=text)

    async def wait(self) -> int:
        """Wait for the worker to exit and its output to drain."""
        returncode = await self.process.wait()

        if self._forward_tasks:
            _, pending = await asyncio.wait(self._forward_tasks, timeout=OUTPUT_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
            self._forward_tasks = []

        return returncode

    def terminate(self) -> None:
        """Send SIGTERM; no-op if the worker already exited."""
        if self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        """Send SIGKILL; no-op if the worker already exited."""
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    @property
    def returncode(self) -> Optional[int]:
        """Get exit code if the worker has exited."""
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        """Check if the worker is still running."""
        return self.process.returncode is None


class SubprocessLauncher:
    """Launches the worker with asyncio subprocesses."""

    def __init__(self, line_limit: int = OUTPUT_LINE_LIMIT):
        self.line_limit = line_limit

    async def launch(
        self,
        command: Sequence[str],
        environment: Mapping[str, str],
        capture_output: bool = False,
    ) -> WorkerProcess:
        """Start the worker command.

        Args:
            command: Executable and arguments
            environment: Complete environment for the worker (not merged)
            capture_output: Pipe stdout/stderr into the supervisor log

        Raises:
            LaunchError: If the process could not be started
        """
        stream = subprocess.PIPE if capture_output else None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                env=dict(environment),
                stdout=stream,
                stderr=stream,
                limit=self.line_limit,
            )
        except (OSError, ValueError) as e:
            raise LaunchError(f"Cannot start {command[0]!r}: {e}") from e

        return WorkerProcess(process)
