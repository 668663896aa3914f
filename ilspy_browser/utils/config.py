"""
Settings lookup: process environment first, then an optional .env file.

The .env file is the first one found walking up from this package, or in
the working directory. It is read once; reset_config_cache() forces a
re-read.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Recognized settings, shown by the engine_status tool
CONFIG_KEYS = {
    "ILSPY_ENGINE_PATH": "Decompiler engine executable, or a .dll run through dotnet",
    "ILSPY_ENGINE_ARGS": "Extra engine arguments, shell-quoted",
    "ILSPY_STARTUP_TIMEOUT": "Seconds to wait for the engine's ready line (default: 30)",
    "ILSPY_REQUEST_TIMEOUT": "Seconds to wait for one engine response (default: 60)",
    "ILSPY_STOP_GRACE": "Seconds between terminate and kill at shutdown (default: 5)",
    "ILSPY_LANGUAGE": "Decompiled output language, csharp or il (default: csharp)",
    "ILSPY_BROWSER_LOG_LEVEL": "Root logging level (default: INFO)",
    "ILSPY_BROWSER_TRACE": "Trace every session call to ~/.ilspy_browser/trace.log",
}

_file_values: dict[str, str] | None = None


def _find_env_file() -> Path | None:
    here = Path(__file__).resolve().parent
    candidates = [d / ".env" for d in [here, *here.parents][:5]]
    candidates.append(Path.cwd() / ".env")
    return next((c for c in candidates if c.is_file()), None)


def _parse_env_file(env_path: Path) -> dict[str, str]:
    """Read KEY=value lines; '#' comments, blank lines and matching quotes are handled."""
    values = {}
    try:
        lines = env_path.read_text().splitlines()
    except OSError as e:
        logger.warning(f"Cannot read {env_path}: {e}")
        return values

    for number, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            logger.warning(f"{env_path.name}:{number}: expected KEY=value")
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def _env_file_values() -> dict[str, str]:
    global _file_values
    if _file_values is None:
        env_file = _find_env_file()
        _file_values = _parse_env_file(env_file) if env_file else {}
        if env_file:
            logger.info(f"Read {len(_file_values)} settings from {env_file}")
    return _file_values


def reset_config_cache() -> None:
    global _file_values
    _file_values = None


def get_config(key: str, default: str | None = None) -> str | None:
    """
    Look up a setting.

    Args:
        key: Setting name, e.g. ILSPY_ENGINE_PATH
        default: Returned when neither the environment nor .env has it

    Returns:
        The setting's value or default
    """
    if key in os.environ:
        return os.environ[key]
    return _env_file_values().get(key, default)


def get_config_bool(key: str, default: bool = False) -> bool:
    value = get_config(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_config_float(key: str, default: float = 0.0) -> float:
    """Numeric setting (seconds); unparseable values fall back to default."""
    value = get_config(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"{key}={value!r} is not a number; using {default}")
        return default


def get_config_status() -> dict[str, dict]:
    """
    Describe where each recognized setting comes from.

    Returns:
        key -> {"set": bool, "source": "environment" | ".env file" | None, "value": str | None}
    """
    file_values = _env_file_values()
    status = {}
    for key in CONFIG_KEYS:
        if key in os.environ:
            status[key] = {"set": True, "source": "environment", "value": os.environ[key]}
        elif key in file_values:
            status[key] = {"set": True, "source": ".env file", "value": file_values[key]}
        else:
            status[key] = {"set": False, "source": None, "value": None}
    return status
