"""
Decompiler session: the supervised engine behind operation-shaped calls.

State machine:

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                              |
                              +-> CRASHED -> (STOPPING) -> STOPPED

CRASHED is entered when the running engine exits without stop() being
called. The next operation restarts it through ensure_running(); that
implicit restart is the only built-in recovery, failed requests are never
retried.
"""

from __future__ import annotations

import functools
import logging
import platform
import threading
import time
from pathlib import Path
from typing import Any

from ilspy_browser.engines.base import DecompileLanguage, DecompilerEngine, EngineState
from ilspy_browser.engines.dotnet.channel import RequestChannel
from ilspy_browser.engines.dotnet.errors import (
    DecompileFailure,
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    LoadFailure,
    MalformedResponse,
)
from ilspy_browser.engines.dotnet.locator import EngineLocator, EngineSettings
from ilspy_browser.engines.dotnet.process import EngineProcess
from ilspy_browser.engines.dotnet.protocol import (
    Command,
    EngineResponse,
    MemberDescriptor,
    ProtocolError,
    parse_assembly_body,
    parse_code_body,
    parse_members_body,
)
from ilspy_browser.utils.config import get_config_bool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Debug trace: activate with ILSPY_BROWSER_TRACE=1 to log session calls to file
# ---------------------------------------------------------------------------
def _setup_trace_log() -> logging.Logger:
    """Configure file logging when ILSPY_BROWSER_TRACE env var is set."""
    trace_logger = logging.getLogger("ilspy_browser.trace")
    if get_config_bool("ILSPY_BROWSER_TRACE"):
        log_path = Path.home() / ".ilspy_browser" / "trace.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-5s %(message)s", datefmt="%H:%M:%S"
        ))
        trace_logger.addHandler(handler)
        trace_logger.setLevel(logging.DEBUG)
        trace_logger.debug("=== ilspy-browser session trace started ===")
    return trace_logger


_trace_log = _setup_trace_log()


def _trace(fn):
    """Decorator that logs method calls, results, and exceptions to the trace log."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        if not _trace_log.handlers:
            return fn(*args, **kwargs)
        name = fn.__qualname__
        call_args = ", ".join(
            [repr(a) for a in args[1:]] + [f"{k}={v!r}" for k, v in kwargs.items()]
        )
        _trace_log.debug("CALL  %s(%s)", name, call_args)
        t0 = time.perf_counter()
        try:
            result = fn(*args, **kwargs)
            ms = (time.perf_counter() - t0) * 1000
            summary = repr(result)
            if len(summary) > 200:
                summary = summary[:200] + "..."
            _trace_log.debug("OK    %s -> %s  (%.1fms)", name, summary, ms)
            return result
        except Exception as exc:
            ms = (time.perf_counter() - t0) * 1000
            _trace_log.debug("FAIL  %s -> %s: %s  (%.1fms)", name, type(exc).__name__, exc, ms)
            raise
    return wrapper


def _member_arguments(member_key: str, assembly: str | None) -> dict[str, Any]:
    # Member keys are only guaranteed unique within their assembly
    arguments: dict[str, Any] = {"key": member_key}
    if assembly is not None:
        arguments["assembly"] = assembly
    return arguments


class DecompilerSession(DecompilerEngine):
    """Supervises one engine process and exposes load/enumerate/decompile."""

    def __init__(self, settings: EngineSettings, locator: EngineLocator | None = None):
        """
        Initialize the session. The engine is not started until first use.

        Args:
            settings: Resolved engine settings
            locator: Locator that produced the settings; adds installation
                details to diagnose() when given
        """
        self.settings = settings
        self.locator = locator
        self._process = EngineProcess(
            settings.command,
            startup_timeout=settings.startup_timeout,
            stop_grace=settings.stop_grace,
            on_message=self._on_message,
            on_exit=self._on_exit,
            environment=settings.environment,
        )
        self._state = EngineState.STOPPED
        self._state_lock = threading.Lock()
        self._lifecycle_lock = threading.RLock()
        self._channel: RequestChannel | None = None
        self._loaded: dict[str, MemberDescriptor] = {}
        self._loaded_lock = threading.Lock()

        logger.info("DecompilerSession initialized (engine not started)")

    def __enter__(self) -> "DecompilerSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        with self._state_lock:
            return self._state

    @property
    def generation(self) -> int:
        return self._process.generation

    @property
    def loaded_assemblies(self) -> list[str]:
        with self._loaded_lock:
            return list(self._loaded)

    def is_running(self) -> bool:
        """Return True when requests can be sent; detects a dead engine."""
        channel = self._channel
        if self.state is not EngineState.RUNNING or channel is None or channel.closed:
            return False
        if not self._process.is_running():
            # Exit not reported by the reader yet; the poll is authoritative
            self._mark_crashed(channel, self._process.generation, None)
            return False
        return True

    @_trace
    def ensure_running(self) -> None:
        if self.is_running():
            return
        with self._lifecycle_lock:
            # A concurrent caller may have restarted the engine meanwhile
            if self.is_running():
                return
            self._restart_locked()

    @_trace
    def restart(self) -> None:
        with self._lifecycle_lock:
            self._restart_locked()

    @_trace
    def stop(self) -> None:
        with self._lifecycle_lock:
            self._teardown("engine stopped")

    def _restart_locked(self) -> None:
        self._teardown("engine restarting")

        self._set_state(EngineState.STARTING)
        try:
            generation = self._process.start()
        except EngineError:
            self._set_state(EngineState.STOPPED)
            raise

        channel = RequestChannel(self._process, generation, self.settings.request_timeout)
        self._channel = channel
        self._set_state(EngineState.RUNNING)
        self._reload_assemblies(channel)

    def _teardown(self, reason: str) -> None:
        channel = self._channel
        self._channel = None
        if channel is not None:
            channel.close(reason)

        if self.state is EngineState.STOPPED and not self._process.is_running():
            return

        self._set_state(EngineState.STOPPING)
        self._process.stop()
        self._set_state(EngineState.STOPPED)

    def _reload_assemblies(self, channel: RequestChannel) -> None:
        """
        Load every previously loaded assembly into a fresh engine.

        An assembly the engine now rejects is forgotten. If the engine itself
        fails (timeout, garbage output, exit) it is stopped and the error
        propagates from restart() and ensure_running().
        """
        for path in self.loaded_assemblies:
            try:
                response = channel.send(Command.LOAD, {"path": path})
            except EngineError as e:
                logger.error(f"Engine failed while reloading {path}: {e.structured_error.message}")
                self._teardown("engine failed while reloading assemblies")
                raise
            if not response.success:
                logger.warning(f"Could not reload {path}: {response.error_message}; forgetting it")
                with self._loaded_lock:
                    self._loaded.pop(path, None)
        if self._loaded:
            logger.info(f"Reloaded {len(self._loaded)} assemblies into engine gen {channel.generation}")

    def _set_state(self, state: EngineState) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        if previous is not state:
            logger.debug(f"Session state {previous.value} -> {state.value}")

    def _mark_crashed(self, channel: RequestChannel, generation: int, returncode: int | None) -> None:
        if channel.generation != generation:
            return
        channel.close(f"engine exited unexpectedly (code {returncode})")
        with self._state_lock:
            # A restart may have installed a newer channel meanwhile
            if self._state is not EngineState.RUNNING or self._channel is not channel:
                return
            self._state = EngineState.CRASHED
        logger.error(f"Engine gen {generation} crashed (exit code {returncode})")

    def _on_message(self, generation: int, line: str) -> None:
        channel = self._channel
        if channel is None or channel.generation != generation:
            logger.debug(f"Ignoring output from superseded engine gen {generation}")
            return
        channel.handle_line(line)

    def _on_exit(self, generation: int, returncode: int | None) -> None:
        channel = self._channel
        if channel is not None:
            self._mark_crashed(channel, generation, returncode)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _request(self, command: Command, arguments: dict[str, Any]) -> EngineResponse:
        self.ensure_running()
        channel = self._channel
        if channel is None:
            raise EngineUnavailable(command.value, "engine stopped before the request was sent")
        try:
            return channel.send(command, arguments)
        except EngineTimeout:
            # A wedged engine is stopped; the next call starts a fresh one
            with self._lifecycle_lock:
                if self._channel is channel:
                    self._teardown("engine timed out")
            raise

    @_trace
    def load_assembly(self, path: str) -> MemberDescriptor:
        """
        Load an assembly into the engine.

        Args:
            path: Assembly path

        Returns:
            Descriptor of the assembly root

        Raises:
            LoadFailure: If the engine rejects the assembly
            StartupFailure, EngineUnavailable, EngineTimeout, MalformedResponse
        """
        response = self._request(Command.LOAD, {"path": path})
        if not response.success:
            raise LoadFailure(path, response.error_message, response.error_code)

        try:
            descriptor = parse_assembly_body(response.body)
        except ProtocolError as e:
            raise MalformedResponse(Command.LOAD.value, str(e)) from e

        with self._loaded_lock:
            self._loaded[path] = descriptor
        logger.info(f"Loaded assembly {descriptor.name} ({path})")
        return descriptor

    def unload_assembly(self, path: str) -> None:
        with self._loaded_lock:
            self._loaded.pop(path, None)

    @_trace
    def list_children(self, member_key: str, assembly: str | None = None) -> list[MemberDescriptor]:
        """
        Enumerate the direct children of a member.

        Returns:
            Ordered child descriptors; an empty list marks a leaf

        Raises:
            DecompileFailure: If the engine cannot resolve the key
        """
        response = self._request(Command.ENUMERATE, _member_arguments(member_key, assembly))
        if not response.success:
            raise DecompileFailure(
                member_key, Command.ENUMERATE.value, response.error_message, response.error_code
            )
        try:
            return parse_members_body(response.body)
        except ProtocolError as e:
            raise MalformedResponse(Command.ENUMERATE.value, str(e)) from e

    @_trace
    def decompile(
        self,
        member_key: str,
        language: DecompileLanguage | str = DecompileLanguage.CSHARP,
        assembly: str | None = None,
    ) -> str:
        """
        Decompile one member.

        Raises:
            DecompileFailure: If the key is unresolvable (e.g. stale after reload)
        """
        language = DecompileLanguage.parse(language)
        arguments = _member_arguments(member_key, assembly)
        arguments["language"] = language.value
        response = self._request(Command.DECOMPILE, arguments)
        if not response.success:
            raise DecompileFailure(
                member_key, Command.DECOMPILE.value, response.error_message, response.error_code
            )
        try:
            return parse_code_body(response.body)
        except ProtocolError as e:
            raise MalformedResponse(Command.DECOMPILE.value, str(e)) from e

    def diagnose(self) -> dict:
        """
        Report the session state for troubleshooting.

        Returns:
            Diagnostic information dict
        """
        diag = {
            "platform": platform.system(),
            "engine_command": self.settings.command,
            "engine_found": self.settings.command is not None,
        }
        if self.locator is not None:
            diag.update(self.locator.diagnose())

        diag.update({
            "state": self.state.value,
            "running": self.is_running(),
            "pid": self._process.pid,
            "generation": self._process.generation,
            "language": self.settings.language.value,
            "request_timeout": self.settings.request_timeout,
            "loaded_assemblies": self.loaded_assemblies,
        })
        return diag
