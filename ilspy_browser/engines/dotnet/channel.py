"""
Request/response correlation over one engine process generation.

A RequestChannel is bound to a single generation of EngineProcess. Requests
are serialized: a request is written only after the previous one has been
answered (or has failed), and every response is matched to its request by
id. Closing the channel fails every pending request with EngineUnavailable;
this is how a crash or restart invalidates in-flight work.
"""

import itertools
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable

from ilspy_browser.engines.dotnet.errors import (
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    MalformedResponse,
)
from ilspy_browser.engines.dotnet.process import EngineProcess
from ilspy_browser.engines.dotnet.protocol import (
    Command,
    EngineRequest,
    EngineResponse,
    ProtocolError,
    decode_line,
    is_event,
    parse_response,
)

logger = logging.getLogger(__name__)


class RequestChannel:
    """Serialized, id-correlated request channel to one engine process."""

    def __init__(self, process: EngineProcess, generation: int, timeout: float = 60.0):
        self._process = process
        self.generation = generation
        self.timeout = timeout

        self._ids = itertools.count(1)
        self._send_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: dict[int, tuple[Command, Future]] = {}
        self._closed_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    def send(
        self,
        command: Command,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> EngineResponse:
        """
        Send one request and wait for its response.

        Args:
            command: Engine command
            arguments: Command arguments
            timeout: Seconds to wait; defaults to the channel timeout

        Returns:
            The correlated EngineResponse (which may report failure)

        Raises:
            EngineUnavailable: If the process is not running or the channel closes
            EngineTimeout: If no response arrives in time
            MalformedResponse: If the engine answers with an unparseable payload
        """
        timeout = self.timeout if timeout is None else timeout
        self._check_available(command)

        with self._send_lock:
            future: Future = Future()
            with self._pending_lock:
                self._check_available(command)
                request = EngineRequest(id=next(self._ids), command=command, arguments=arguments)
                self._pending[request.id] = (command, future)

            try:
                logger.debug(f"-> gen {self.generation} #{request.id} {command.value} {arguments}")
                self._process.send_line(self.generation, request.encode())
                response = future.result(timeout=timeout)
            except FutureTimeout:
                logger.error(f"Engine request #{request.id} {command.value} timed out after {timeout}s")
                raise EngineTimeout(command.value, timeout) from None
            finally:
                with self._pending_lock:
                    self._pending.pop(request.id, None)

        logger.debug(f"<- gen {self.generation} #{response.id} success={response.success}")
        return response

    def handle_line(self, line: str) -> None:
        """Route one line read from the engine to the request awaiting it."""
        try:
            message = decode_line(line)
        except ProtocolError as e:
            logger.warning(f"Unparseable engine output on gen {self.generation}: {line[:120]}")
            self._fail_pending(lambda command: MalformedResponse(command.value, str(e), line))
            return

        if is_event(message):
            logger.debug(f"Engine event on gen {self.generation}: {message.get('event')}")
            return

        try:
            response = parse_response(message)
        except ProtocolError as e:
            request_id = message.get("id")
            entry = self._take(request_id) if isinstance(request_id, int) else None
            if entry is not None:
                entry[1].set_exception(MalformedResponse(entry[0].value, str(e), line))
            else:
                self._fail_pending(lambda command: MalformedResponse(command.value, str(e), line))
            return

        entry = self._take(response.id)
        if entry is None:
            logger.warning(f"Dropping engine response for unknown request #{response.id}")
            return
        entry[1].set_result(response)

    def close(self, reason: str) -> None:
        """Fail all pending requests and refuse new ones."""
        with self._pending_lock:
            if self._closed_reason is not None:
                return
            self._closed_reason = reason
        logger.info(f"Request channel gen {self.generation} closed: {reason}")
        self._fail_pending(
            lambda command: EngineUnavailable(command.value, reason, self.generation)
        )

    def _check_available(self, command: Command) -> None:
        if self._closed_reason is not None:
            raise EngineUnavailable(command.value, self._closed_reason, self.generation)
        if self._process.generation != self.generation or not self._process.is_running():
            raise EngineUnavailable(command.value, "engine process is not running", self.generation)

    def _take(self, request_id: int) -> tuple[Command, Future] | None:
        # Popping under the lock guarantees each future is resolved once
        with self._pending_lock:
            return self._pending.pop(request_id, None)

    def _fail_pending(self, make_error: Callable[[Command], EngineError]) -> None:
        with self._pending_lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for command, future in entries:
            future.set_exception(make_error(command))
