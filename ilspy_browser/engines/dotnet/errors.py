"""
Exceptions raised by the decompiler engine stack.

Each class wraps a StructuredError so the tool layer can render one
human-readable message per failure.
"""

from ilspy_browser.utils.structured_errors import (
    StructuredBaseError,
    create_decompile_failed_error,
    create_engine_startup_error,
    create_engine_timeout_error,
    create_engine_unavailable_error,
    create_load_failed_error,
    create_malformed_response_error,
)


class EngineError(StructuredBaseError):
    """Base class for all decompiler engine failures."""


class StartupFailure(EngineError):
    """Engine executable missing, exited at once, or never reported ready."""

    def __init__(self, command: list[str] | None, reason: str, exit_code: int | None = None):
        super().__init__(create_engine_startup_error(command, reason, exit_code))
        self.command = command
        self.reason = reason
        self.exit_code = exit_code


class EngineUnavailable(EngineError):
    """No live engine for the request, or its process generation ended."""

    def __init__(self, operation: str, reason: str | None = None, generation: int | None = None):
        super().__init__(create_engine_unavailable_error(operation, reason, generation))
        self.operation = operation
        self.generation = generation


class EngineTimeout(EngineError):
    """No response within the request window; the engine is assumed wedged."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(create_engine_timeout_error(operation, int(timeout * 1000)))
        self.operation = operation
        self.timeout = timeout


class MalformedResponse(EngineError):
    """The engine sent a payload that does not follow the protocol."""

    def __init__(self, operation: str, detail: str, payload: str | None = None):
        super().__init__(create_malformed_response_error(operation, detail, payload))
        self.operation = operation
        self.detail = detail


class LoadFailure(EngineError):
    """The assembly is invalid, unsupported, or unreadable."""

    def __init__(self, assembly_path: str, reason: str, engine_code: str | None = None):
        super().__init__(create_load_failed_error(assembly_path, reason, engine_code))
        self.assembly_path = assembly_path
        self.engine_code = engine_code


class DecompileFailure(EngineError):
    """The engine could not resolve or decompile a member key."""

    def __init__(
        self,
        member_key: str,
        operation: str,
        reason: str,
        engine_code: str | None = None,
    ):
        super().__init__(create_decompile_failed_error(member_key, operation, reason, engine_code))
        self.member_key = member_key
        self.operation = operation
        self.engine_code = engine_code
