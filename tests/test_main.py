"""Tests for the respawn CLI entry point."""

import asyncio
import os
import signal
import sys

import pytest

from respawn.core.config import load_settings
from respawn.core.exceptions import ConfigurationError
from respawn.core.models import SupervisorConfig, TerminationReason
from respawn.main import build_config, build_parser, main, serve, settings_from_args

from fakes import FakeLauncher, wait_until


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run in an empty directory so no stray .env is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestParser:
    """Argument parsing."""

    def test_trailing_worker_command(self):
        args = build_parser().parse_args(["--restart-delay", "2", "--", "python", "bot.py", "--verbose"])

        assert args.restart_delay == "2"
        assert args.worker[-3:] == ["python", "bot.py", "--verbose"]

    def test_flags_default_to_unset(self):
        args = build_parser().parse_args([])

        assert args.command is None
        assert args.capture_output is None
        assert args.worker == []

    def test_cli_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("RESPAWN_RESTART_DELAY", "7")
        monkeypatch.setenv("RESPAWN_STOP_TIMEOUT", "3")
        args = build_parser().parse_args(["--restart-delay", "2", "--capture-output"])

        settings = settings_from_args(args)

        assert settings.restart_delay == 2.0
        assert settings.stop_timeout == 3.0
        assert settings.capture_output is True


class TestBuildConfig:
    """Assembling SupervisorConfig from settings."""

    def test_trailing_command_wins(self, workdir):
        settings = load_settings(command="ignored", restart_delay="1")

        config = build_config(settings, ["--", "python", "bot.py"])

        assert config.command == ("python", "bot.py")
        assert config.restart_delay == 1.0

    def test_command_from_settings(self, workdir):
        config = build_config(load_settings(command="cargo run --bin setmod-bot"))

        assert config.command == ("cargo", "run", "--bin", "setmod-bot")

    def test_missing_command_fails(self, workdir):
        with pytest.raises(ConfigurationError, match="No worker command"):
            build_config(load_settings())

    def test_env_file_reaches_worker_environment(self, workdir, monkeypatch):
        monkeypatch.setenv("HOME_MARKER", "shell")
        (workdir / "bot.env").write_text("TWITCH_TOKEN=abc\n")

        config = build_config(load_settings(command="bot", env_file="bot.env"))

        assert config.environment["TWITCH_TOKEN"] == "abc"
        assert config.environment["HOME_MARKER"] == "shell"

    def test_default_dotenv_is_loaded(self, workdir):
        (workdir / ".env").write_text("FROM_DOTENV=1\n")

        config = build_config(load_settings(command="bot"))

        assert config.environment["FROM_DOTENV"] == "1"

    def test_missing_env_file_fails(self, workdir):
        with pytest.raises(ConfigurationError, match="Env file not found"):
            build_config(load_settings(command="bot", env_file="nope.env"))


class TestMainExitCodes:
    """Configuration problems abort with exit code 1 before the loop starts."""

    def test_unparsable_delay(self, workdir):
        assert main(["--restart-delay", "soon", "--", "bot"]) == 1

    @pytest.mark.parametrize("flag", ["--restart-delay", "--stop-timeout"])
    def test_nan_duration(self, workdir, flag):
        assert main([flag, "nan", "--", "bot"]) == 1

    def test_no_command(self, workdir):
        assert main([]) == 1

    def test_missing_env_file(self, workdir):
        assert main(["--env-file", "missing.env", "--", "bot"]) == 1


@pytest.mark.asyncio
class TestServe:
    """Running the supervisor with OS signal handling."""

    async def test_serve_returns_on_stop_event(self):
        stop_event = asyncio.Event()
        stop_event.set()
        launcher = FakeLauncher()

        reason = await serve(SupervisorConfig(command=("bot",)), launcher=launcher, stop_event=stop_event)

        assert reason is TerminationReason.REQUESTED_STOP
        assert launcher.launch_times == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
    @pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
    async def test_signal_stops_supervisor(self, sig):
        launcher = FakeLauncher([None])
        task = asyncio.create_task(serve(SupervisorConfig(command=("bot",)), launcher=launcher))
        await wait_until(lambda: len(launcher.workers) == 1)

        os.kill(os.getpid(), sig)
        reason = await asyncio.wait_for(task, timeout=2)

        assert reason is TerminationReason.REQUESTED_STOP
        assert launcher.workers[0].terminated
        assert len(launcher.launch_times) == 1

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
    async def test_fallback_handlers_are_restored(self, monkeypatch):
        """Without loop signal support, signal.signal is used and undone on return."""
        loop = asyncio.get_running_loop()

        def unsupported(*args):
            raise NotImplementedError

        monkeypatch.setattr(loop, "add_signal_handler", unsupported)
        original = {sig: signal.getsignal(sig) for sig in (signal.SIGTERM, signal.SIGINT)}
        launcher = FakeLauncher([None])

        task = asyncio.create_task(serve(SupervisorConfig(command=("bot",)), launcher=launcher))
        await wait_until(lambda: len(launcher.workers) == 1)
        assert signal.getsignal(signal.SIGTERM) is not original[signal.SIGTERM]

        os.kill(os.getpid(), signal.SIGTERM)
        reason = await asyncio.wait_for(task, timeout=2)

        assert reason is TerminationReason.REQUESTED_STOP
        assert launcher.workers[0].terminated
        assert signal.getsignal(signal.SIGTERM) is original[signal.SIGTERM]
        assert signal.getsignal(signal.SIGINT) is original[signal.SIGINT]
