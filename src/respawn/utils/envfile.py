"""Environment file loading for the supervised worker."""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import structlog
import yaml

from respawn.core.exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_ENV_FILE = ".env"
YAML_SUFFIXES = {".yml", ".yaml"}


def load_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """Load environment variables from a ``KEY=VALUE`` or YAML file.

    Args:
        path: File to read. ``.yml``/``.yaml`` files must contain a mapping of
            names to scalar values; anything else is parsed as dotenv lines.

    Returns:
        Dict of environment variables from the file

    Raises:
        ConfigurationError: If the file cannot be read or is malformed
    """
    env_path = Path(path)
    try:
        text = env_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read env file {env_path}: {e}") from e

    if env_path.suffix.lower() in YAML_SUFFIXES:
        env_vars = _parse_yaml(text, env_path)
    else:
        env_vars = _parse_dotenv(text, env_path)

    logger.info(
        "Loaded env file",
        path=str(env_path),
        var_count=len(env_vars),
        vars=sorted(env_vars.keys()),  # Log keys only, not values
    )
    return env_vars


def _parse_dotenv(text: str, env_path: Path) -> Dict[str, str]:
    env_vars = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        # Skip comments and empty lines
        if not line or line.startswith('#'):
            continue

        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        if '=' not in line:
            logger.warning("Skipping env file line without '='", path=str(env_path), line=lineno)
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        value = value.strip()
        if not key:
            logger.warning("Skipping env file line with empty name", path=str(env_path), line=lineno)
            continue

        # Remove quotes if present
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        env_vars[key] = value
    return env_vars


def _parse_yaml(text: str, env_path: Path) -> Dict[str, str]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in env file {env_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Env file {env_path} must contain a mapping, got {type(data).__name__}")

    env_vars = {}
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            raise ConfigurationError(f"Env file {env_path}: value for {key!r} must be a scalar")
        if value is None:
            value = ""
        elif isinstance(value, bool):
            value = "true" if value else "false"
        env_vars[str(key)] = str(value)
    return env_vars


def resolve_env_file(env_file: Optional[str], cwd: Optional[Path] = None) -> Optional[Path]:
    """Pick the env file to load.

    An explicitly configured path must exist. Without one, ``.env`` in the
    working directory is used when present.
    """
    base = cwd or Path.cwd()
    if env_file:
        path = Path(env_file)
        if not path.is_absolute():
            path = base / path
        if not path.is_file():
            raise ConfigurationError(f"Env file not found: {path}")
        return path

    default = base / DEFAULT_ENV_FILE
    if default.is_file():
        return default
    return None


def build_worker_environment(
    env_file: Optional[Path],
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Overlay the env file's variables on the supervisor's own environment."""
    env = dict(os.environ if base is None else base)
    if env_file is not None:
        env.update(load_env_file(env_file))
    else:
        logger.debug("No env file, worker inherits supervisor environment")
    return env
