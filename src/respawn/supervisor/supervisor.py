"""Restart loop keeping a single worker process alive."""

import asyncio
import shlex
from typing import Optional

import structlog

from respawn.core.exceptions import LaunchError
from respawn.core.models import (
    RunAttempt,
    SupervisorConfig,
    SupervisorState,
    TerminationReason,
)
from .launcher import ProcessLauncher, SubprocessLauncher, WorkerHandle

logger = structlog.get_logger()


class Supervisor:
    """Launches the worker, waits for it to exit, pauses and relaunches it.

    The loop runs until the stop event is set. Only one worker is alive at a
    time: a new launch happens only after the previous exit was observed.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        launcher: Optional[ProcessLauncher] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.launcher = launcher if launcher is not None else SubprocessLauncher()
        self.stop_event = stop_event if stop_event is not None else asyncio.Event()
        self.state = SupervisorState.IDLE
        self.launch_count = 0
        self.current_attempt: Optional[RunAttempt] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def request_stop(self) -> None:
        """Ask the loop to stop. Safe from signal handlers and other threads."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self.stop_event.set()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self.stop_event.set()
        else:
            loop.call_soon_threadsafe(self.stop_event.set)

    async def run(self) -> TerminationReason:
        """Run the restart loop until a stop is requested."""
        self._loop = asyncio.get_running_loop()
        logger.info(
            "Supervisor started",
            command=shlex.join(self.config.command),
            restart_delay=self.config.restart_delay,
        )

        try:
            while True:
                if self.stop_event.is_set():
                    self._enter_stopping(SupervisorState.IDLE)
                    break

                worker = await self._launch()
                if worker is not None and await self._wait_for_exit(worker):
                    break

                if await self._pause():
                    break
        finally:
            self.state = SupervisorState.STOPPED

        logger.info("Supervisor stopped", launches=self.launch_count)
        return TerminationReason.REQUESTED_STOP

    async def _launch(self) -> Optional[WorkerHandle]:
        self.launch_count += 1
        attempt = RunAttempt(attempt=self.launch_count)
        self.current_attempt = attempt

        try:
            worker = await self.launcher.launch(
                self.config.command,
                self.config.environment,
                self.config.capture_output,
            )
        except LaunchError as e:
            attempt.mark_failed(str(e))
            logger.error("Worker launch failed", attempt=attempt.attempt, error=str(e))
            return None

        attempt.pid = worker.pid
        self.state = SupervisorState.RUNNING
        logger.info("Worker started", attempt=attempt.attempt, pid=worker.pid)
        return worker

    async def _wait_for_exit(self, worker: WorkerHandle) -> bool:
        """Wait for the worker to exit or a stop request.

        Returns True when the loop must stop; the worker has been reaped
        either way.
        """
        exit_task = asyncio.ensure_future(worker.wait())
        stop_task = asyncio.ensure_future(self.stop_event.wait())

        try:
            await asyncio.wait({exit_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            stop_task.cancel()
            await self._terminate(worker, exit_task)
            raise

        if exit_task.done():
            # A stop that raced with the exit is picked up before the next launch
            stop_task.cancel()
            self._record_exit(exit_task.result())
            return False

        self._enter_stopping(SupervisorState.RUNNING)
        await self._terminate(worker, exit_task)
        return True

    async def _terminate(self, worker: WorkerHandle, exit_task: asyncio.Future) -> None:
        """Terminate the worker, escalating to kill after stop_timeout."""
        timeout = self.config.stop_timeout
        logger.info("Terminating worker", pid=worker.pid, timeout=timeout)

        try:
            worker.terminate()
        except Exception as e:
            logger.error("Error terminating worker", pid=worker.pid, error=str(e))

        try:
            returncode = await asyncio.wait_for(asyncio.shield(exit_task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Worker did not stop gracefully, killing", pid=worker.pid)
            try:
                worker.kill()
            except Exception as e:
                logger.error("Error killing worker", pid=worker.pid, error=str(e))
            returncode = await exit_task

        self._record_exit(returncode)

    def _record_exit(self, returncode: Optional[int]) -> None:
        attempt = self.current_attempt
        attempt.mark_exited(returncode)

        log = logger.info if returncode == 0 else logger.warning
        log(
            "Worker exited",
            attempt=attempt.attempt,
            pid=attempt.pid,
            exit_code=returncode,
            status=attempt.describe_exit(),
            uptime=round(attempt.uptime, 3),
        )

    async def _pause(self) -> bool:
        """Sleep restart_delay seconds; return True if a stop cut it short."""
        if self.stop_event.is_set():
            self._enter_stopping(self.state)
            return True

        self.state = SupervisorState.SLEEPING
        logger.info("Restarting worker after delay", delay=self.config.restart_delay)

        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.config.restart_delay)
        except asyncio.TimeoutError:
            return False

        self._enter_stopping(SupervisorState.SLEEPING)
        return True

    def _enter_stopping(self, previous: SupervisorState) -> None:
        self.state = SupervisorState.STOPPING
        logger.info("Stop requested", state=previous.value)


async def run_supervisor(
    config: SupervisorConfig,
    stop_event: asyncio.Event,
    launcher: Optional[ProcessLauncher] = None,
) -> TerminationReason:
    """Run a Supervisor for ``config`` until ``stop_event`` is set."""
    supervisor = Supervisor(config, launcher=launcher, stop_event=stop_event)
    return await supervisor.run()
