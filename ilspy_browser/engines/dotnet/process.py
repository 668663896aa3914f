"""
Lifecycle of the external decompiler engine process.

One EngineProcess owns at most one child process at a time. Each spawn
gets a new generation number; output lines and the exit notification are
reported together with the generation that produced them so that
listeners can ignore a superseded process.

Crash detection: a reader thread blocks on the engine's stdout and reports
the exit as soon as the pipe reaches EOF, which happens when the process
dies. is_running() additionally polls the child before answering.
"""

import logging
import os
import subprocess  # nosec B404 - Required for the engine child process
import threading
import time
from typing import Callable

from ilspy_browser.engines.dotnet.errors import EngineUnavailable, StartupFailure
from ilspy_browser.engines.dotnet.protocol import READY_EVENT, ProtocolError, decode_line

logger = logging.getLogger(__name__)

MessageCallback = Callable[[int, str], None]
ExitCallback = Callable[[int, "int | None"], None]


class EngineProcess:
    """Spawns, health-checks and terminates the engine child process."""

    def __init__(
        self,
        command: list[str] | None,
        startup_timeout: float = 30.0,
        stop_grace: float = 5.0,
        on_message: MessageCallback | None = None,
        on_exit: ExitCallback | None = None,
        environment: dict[str, str] | None = None,
    ):
        """
        Initialize the process handle. Nothing is spawned until start().

        Args:
            command: Engine argv; None when no engine was found
            startup_timeout: Seconds to wait for the ready event
            stop_grace: Seconds between terminate and kill
            on_message: Called with (generation, line) for every line after the handshake
            on_exit: Called with (generation, returncode) when a process exits
            environment: Extra environment variables for the child
        """
        self.command = command
        self.startup_timeout = startup_timeout
        self.stop_grace = stop_grace
        self.on_message = on_message
        self.on_exit = on_exit
        self.environment = environment or {}

        self._proc: subprocess.Popen | None = None
        self._generation = 0
        self._eof_generation = 0
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pid(self) -> int | None:
        proc = self._proc
        return proc.pid if proc is not None else None

    def is_running(self) -> bool:
        """Return True while the current child is alive and its stdout is open."""
        proc = self._proc
        if proc is None:
            return False
        if self._eof_generation == self._generation:
            return False
        return proc.poll() is None

    def start(self) -> int:
        """
        Start the engine unless it is already running.

        Returns:
            Generation number of the running process

        Raises:
            StartupFailure: If the executable is missing, exits immediately,
                or does not report ready before the startup timeout
        """
        with self._lock:
            if self.is_running():
                return self._generation
            if self._proc is not None:
                # Dead child still referenced; reap it before spawning
                self.stop()
            return self._spawn()

    def restart(self) -> int:
        """Stop any running process, then start a new one."""
        with self._lock:
            self.stop()
            return self._spawn()

    def stop(self) -> None:
        """
        Terminate the engine. Best-effort: errors are logged, never raised.

        Always leaves the handle in the not-running state.
        """
        with self._lock:
            proc = self._proc
            self._proc = None
            if proc is None:
                return

            generation = self._generation
            try:
                if proc.poll() is not None:
                    logger.info(f"Engine (gen {generation}) already exited with code {proc.returncode}")
                    return

                logger.info(f"Stopping engine pid {proc.pid} (gen {generation})")
                try:
                    proc.stdin.close()
                except OSError as e:
                    logger.debug(f"Closing engine stdin failed: {e}")

                proc.terminate()
                try:
                    proc.wait(timeout=self.stop_grace)
                except subprocess.TimeoutExpired:
                    logger.warning(
                        f"Engine pid {proc.pid} ignored terminate for {self.stop_grace}s, killing"
                    )
                    proc.kill()
                    proc.wait(timeout=self.stop_grace)
            except Exception as e:
                logger.error(f"Error while stopping engine pid {proc.pid}: {e}")

    def send_line(self, generation: int, line: str) -> None:
        """
        Write one protocol line to the engine.

        Raises:
            EngineUnavailable: If the process of that generation is gone
        """
        with self._write_lock:
            proc = self._proc
            if proc is None or generation != self._generation or not self.is_running():
                raise EngineUnavailable(
                    "send", "engine process is not running", generation
                )
            try:
                proc.stdin.write(line)
                proc.stdin.flush()
            except (OSError, ValueError) as e:
                raise EngineUnavailable("send", f"engine pipe closed: {e}", generation) from e

    def _spawn(self) -> int:
        if not self.command:
            raise StartupFailure(None, "No decompiler engine executable was found")

        env = os.environ.copy()
        env.update(self.environment)

        logger.info(f"Starting engine: {' '.join(self.command)}")
        try:
            proc = subprocess.Popen(  # nosec B603 - argv list, no shell
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=env,
            )
        except OSError as e:
            raise StartupFailure(self.command, f"Cannot execute engine: {e}") from e

        self._generation += 1
        generation = self._generation
        ready = threading.Event()
        handshake: dict[str, str] = {}

        threading.Thread(
            target=self._read_stdout,
            args=(proc, generation, ready, handshake),
            name=f"engine-stdout-{generation}",
            daemon=True,
        ).start()
        threading.Thread(
            target=self._drain_stderr,
            args=(proc, generation),
            name=f"engine-stderr-{generation}",
            daemon=True,
        ).start()

        start_time = time.time()
        if not ready.wait(self.startup_timeout):
            self._kill_quietly(proc)
            raise StartupFailure(
                self.command,
                f"Engine did not report ready within {self.startup_timeout}s",
            )

        first_line = handshake.get("line")
        if first_line is None:
            exit_code = self._reap(proc)
            raise StartupFailure(
                self.command,
                f"Engine exited before reporting ready (exit code {exit_code})",
                exit_code,
            )

        try:
            message = decode_line(first_line)
        except ProtocolError as e:
            self._kill_quietly(proc)
            raise StartupFailure(self.command, f"Invalid handshake line: {e}") from e

        if message.get("event") != READY_EVENT:
            self._kill_quietly(proc)
            raise StartupFailure(self.command, f"Unexpected handshake: {first_line[:120]}")

        self._proc = proc
        elapsed = time.time() - start_time
        version = message.get("version", "unknown")
        logger.info(
            f"Engine ready in {elapsed:.2f}s (pid {proc.pid}, gen {generation}, version {version})"
        )
        return generation

    def _read_stdout(
        self,
        proc: subprocess.Popen,
        generation: int,
        ready: threading.Event,
        handshake: dict[str, str],
    ) -> None:
        try:
            for raw in proc.stdout:
                line = raw.strip()
                if not line:
                    continue
                if not ready.is_set():
                    handshake["line"] = line
                    ready.set()
                    continue
                if self.on_message is not None:
                    self.on_message(generation, line)
        except (OSError, ValueError) as e:
            logger.debug(f"Engine stdout reader (gen {generation}) stopped: {e}")
        finally:
            self._eof_generation = max(self._eof_generation, generation)
            ready.set()

        returncode = self._reap(proc)
        logger.info(f"Engine (gen {generation}) exited with code {returncode}")
        if self.on_exit is not None:
            self.on_exit(generation, returncode)

    @staticmethod
    def _drain_stderr(proc: subprocess.Popen, generation: int) -> None:
        try:
            for raw in proc.stderr:
                line = raw.rstrip()
                if line:
                    logger.debug(f"[engine gen {generation}] {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Engine stderr reader (gen {generation}) stopped: {e}")

    def _reap(self, proc: subprocess.Popen) -> int | None:
        try:
            return proc.wait(timeout=self.stop_grace)
        except subprocess.TimeoutExpired:
            return None

    def _kill_quietly(self, proc: subprocess.Popen) -> None:
        try:
            proc.kill()
            proc.wait(timeout=self.stop_grace)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not kill engine pid {proc.pid}: {e}")
