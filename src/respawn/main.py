"""Main entry point for respawn."""

import argparse
import asyncio
import signal
import sys
import threading
from typing import Any, Dict, Optional, Sequence

import structlog

from respawn import __version__
from respawn.core.config import Settings, load_settings
from respawn.core.exceptions import ConfigurationError
from respawn.core.models import SupervisorConfig, TerminationReason
from respawn.supervisor import Supervisor
from respawn.supervisor.launcher import ProcessLauncher
from respawn.utils.envfile import build_worker_environment, resolve_env_file
from respawn.utils.logging import setup_logging

logger = structlog.get_logger()

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="respawn",
        description="Keep a worker process running, relaunching it whenever it exits",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--command", help="Worker command line (or pass it after --)")
    parser.add_argument("--env-file", help="Environment file for the worker (default: ./.env if present)")
    parser.add_argument("--restart-delay", help="Seconds to wait before relaunching (default: 5)")
    parser.add_argument("--stop-timeout", help="Seconds to wait after SIGTERM before killing the worker (default: 10)")
    parser.add_argument(
        "--capture-output",
        action="store_true",
        default=None,
        help="Forward worker stdout/stderr into the supervisor log",
    )
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    parser.add_argument("--log-format", help="console or json (default: console)")
    parser.add_argument("worker", nargs=argparse.REMAINDER, help="Worker command and arguments")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Merge CLI flags over RESPAWN_* environment variables."""
    return load_settings(
        command=args.command,
        env_file=args.env_file,
        restart_delay=args.restart_delay,
        stop_timeout=args.stop_timeout,
        capture_output=args.capture_output,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def build_config(settings: Settings, worker_args: Sequence[str] = ()) -> SupervisorConfig:
    """Assemble the supervisor configuration.

    Raises:
        ConfigurationError: If no command is configured or the env file is unusable
    """
    command = list(worker_args)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        command = settings.command_list
    if not command:
        raise ConfigurationError(
            "No worker command configured: pass --command, give the command after --, "
            "or set RESPAWN_COMMAND"
        )

    env_path = resolve_env_file(settings.env_file)
    environment = build_worker_environment(env_path)

    return SupervisorConfig(
        command=tuple(command),
        environment=environment,
        restart_delay=settings.restart_delay,
        stop_timeout=settings.stop_timeout,
        capture_output=settings.capture_output,
    )


def _install_signal_handlers(supervisor: Supervisor) -> Dict[signal.Signals, Any]:
    """Route SIGINT/SIGTERM to supervisor.request_stop.

    Returns the installed signals mapped to the handler to restore: ``None``
    for loop handlers, the previous ``signal.signal`` handler otherwise.
    """
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals):
        logger.info("Received shutdown signal", signal=sig.name)
        supervisor.request_stop()

    def fallback_handler(signum, frame):
        # Runs between bytecodes; hand over to the loop and wake it up
        loop.call_soon_threadsafe(handle_signal, signal.Signals(signum))

    installed: Dict[signal.Signals, Any] = {}
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, handle_signal, sig)
            installed[sig] = None
        except NotImplementedError:
            # Event loops without add_signal_handler (Windows)
            if threading.current_thread() is threading.main_thread():
                installed[sig] = signal.signal(sig, fallback_handler)
            else:
                logger.warning("Cannot install signal handler", signal=sig.name)
    return installed


def _remove_signal_handlers(installed: Dict[signal.Signals, Any]) -> None:
    loop = asyncio.get_running_loop()
    for sig, previous in installed.items():
        if previous is None:
            loop.remove_signal_handler(sig)
        else:
            signal.signal(sig, previous)


async def serve(
    config: SupervisorConfig,
    launcher: Optional[ProcessLauncher] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> TerminationReason:
    """Run the supervisor with OS signal handling until it is stopped."""
    supervisor = Supervisor(config, launcher=launcher, stop_event=stop_event)
    installed = _install_signal_handlers(supervisor)
    try:
        return await supervisor.run()
    finally:
        _remove_signal_handlers(installed)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments, run the supervisor and return the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigurationError as e:
        setup_logging()
        logger.error("Invalid configuration", error=str(e))
        return 1

    setup_logging(settings.log_level, settings.log_format)

    try:
        config = build_config(settings, args.worker)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    asyncio.run(serve(config))
    return 0


def run():
    """Run the application."""
    sys.exit(main())


if __name__ == "__main__":
    run()
