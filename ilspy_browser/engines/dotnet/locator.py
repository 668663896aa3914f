"""
Decompiler engine discovery and startup settings.

The engine executable is resolved once, when settings are loaded at
startup, and the resulting command line is reused for every spawn.
"""

import logging
import os
import platform
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from ilspy_browser.engines.base import DecompileLanguage
from ilspy_browser.utils.config import get_config, get_config_float

logger = logging.getLogger(__name__)

ENGINE_NAME = "ilspy-backend"

DEFAULT_STARTUP_TIMEOUT = 30.0
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_STOP_GRACE = 5.0


class EngineLocator:
    """
    Cross-platform discovery of the decompiler engine and the dotnet host.

    Supports Windows, Linux, and macOS.
    """

    def __init__(self, engine_path: str | None = None):
        """
        Initialize engine locator.

        Args:
            engine_path: Explicit engine location. Skips auto-detection when set.
        """
        self.system = platform.system()
        self._explicit_path = engine_path
        self._engine_path: str | None = None
        self._dotnet_path: str | None = None

    def find_engine(self) -> str | None:
        """
        Find the engine executable.

        Checks:
        1. The explicitly configured path
        2. ilspy-backend in PATH (if installed as global dotnet tool)
        3. Common installation locations

        Returns:
            Path to the engine or None if not found
        """
        if self._engine_path:
            return self._engine_path

        if self._explicit_path:
            explicit = Path(self._explicit_path).expanduser()
            if explicit.exists():
                self._engine_path = str(explicit)
                logger.info(f"Using configured engine: {explicit}")
                return self._engine_path
            logger.warning(f"Configured engine path does not exist: {explicit}")
            return None

        engine = shutil.which(ENGINE_NAME)
        if engine:
            self._engine_path = engine
            logger.info(f"Found {ENGINE_NAME} in PATH: {engine}")
            return engine

        home = Path.home()
        if self.system == "Windows":
            tool_paths = [
                home / ".dotnet" / "tools" / f"{ENGINE_NAME}.exe",
                Path(os.environ.get("USERPROFILE", "")) / ".dotnet" / "tools" / f"{ENGINE_NAME}.exe",
            ]
        else:  # Linux/macOS
            tool_paths = [
                home / ".dotnet" / "tools" / ENGINE_NAME,
                Path("/usr/local/bin") / ENGINE_NAME,
                Path("/usr/bin") / ENGINE_NAME,
            ]

        for path in tool_paths:
            if path.exists():
                self._engine_path = str(path)
                logger.info(f"Found {ENGINE_NAME} at: {path}")
                return self._engine_path

        logger.warning(f"{ENGINE_NAME} not found. Set ILSPY_ENGINE_PATH to the engine executable")
        return None

    def find_dotnet(self) -> str | None:
        """
        Find dotnet CLI.

        Returns:
            Path to dotnet or None if not found
        """
        if self._dotnet_path:
            return self._dotnet_path

        dotnet = shutil.which("dotnet")
        if dotnet:
            self._dotnet_path = dotnet
            return dotnet

        if self.system == "Windows":
            paths = [
                Path(os.environ.get("ProgramFiles", "")) / "dotnet" / "dotnet.exe",
                Path("C:\\Program Files\\dotnet\\dotnet.exe"),
            ]
        else:
            paths = [
                Path("/usr/share/dotnet/dotnet"),
                Path("/usr/local/share/dotnet/dotnet"),
                Path.home() / ".dotnet" / "dotnet",
            ]

        for path in paths:
            if path.exists():
                self._dotnet_path = str(path)
                return self._dotnet_path

        return None

    def build_command(self, extra_args: list[str] | None = None) -> list[str] | None:
        """
        Build the engine command line.

        A .dll engine is launched through the dotnet host.

        Returns:
            argv list, or None if the engine (or its host) is missing
        """
        engine = self.find_engine()
        if not engine:
            return None

        if engine.lower().endswith(".dll"):
            dotnet = self.find_dotnet()
            if not dotnet:
                logger.warning(f"Engine {engine} needs the dotnet host, which was not found")
                return None
            command = [dotnet, engine]
        else:
            command = [engine]

        return command + list(extra_args or [])

    def diagnose(self) -> dict:
        """
        Run diagnostic checks on the engine installation.

        Returns:
            Diagnostic information dict
        """
        diag = {
            "platform": self.system,
            "engine_found": False,
            "engine_path": None,
            "dotnet_found": False,
            "dotnet_path": None,
            "dotnet_version": None,
        }

        engine = self.find_engine()
        if engine:
            diag["engine_found"] = True
            diag["engine_path"] = engine

        dotnet = self.find_dotnet()
        if dotnet:
            diag["dotnet_found"] = True
            diag["dotnet_path"] = dotnet
            try:
                result = subprocess.run(
                    [dotnet, "--version"],
                    capture_output=True,
                    text=True,
                    timeout=10
                )
                diag["dotnet_version"] = result.stdout.strip()
            except (subprocess.SubprocessError, OSError) as e:
                logger.debug(f"dotnet --version failed: {e}")

        return diag


@dataclass
class EngineSettings:
    """Engine startup configuration, resolved once."""
    command: list[str] | None
    language: DecompileLanguage = DecompileLanguage.CSHARP
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    stop_grace: float = DEFAULT_STOP_GRACE
    environment: dict[str, str] = field(default_factory=dict)


def load_engine_settings(locator: EngineLocator | None = None) -> EngineSettings:
    """
    Resolve engine settings from configuration.

    Args:
        locator: Locator to use; built from ILSPY_ENGINE_PATH if None

    Returns:
        EngineSettings (command is None when no engine was found)
    """
    if locator is None:
        locator = EngineLocator(get_config("ILSPY_ENGINE_PATH"))

    extra_args = shlex.split(get_config("ILSPY_ENGINE_ARGS", "") or "")

    language_value = get_config("ILSPY_LANGUAGE", DecompileLanguage.CSHARP.value)
    try:
        language = DecompileLanguage.parse(language_value)
    except ValueError as e:
        logger.warning(f"{e}; falling back to {DecompileLanguage.CSHARP.value}")
        language = DecompileLanguage.CSHARP

    settings = EngineSettings(
        command=locator.build_command(extra_args),
        language=language,
        startup_timeout=get_config_float("ILSPY_STARTUP_TIMEOUT", DEFAULT_STARTUP_TIMEOUT),
        request_timeout=get_config_float("ILSPY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        stop_grace=get_config_float("ILSPY_STOP_GRACE", DEFAULT_STOP_GRACE),
    )
    logger.info(f"Engine command: {settings.command}")
    return settings
