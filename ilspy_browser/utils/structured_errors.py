"""
Structured error messages with actionable suggestions.

Every failure surfaced to a tool consumer carries:
- An error code for programmatic handling
- A human-readable message
- Actionable suggestions for resolution
- Debug information for troubleshooting
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """
    Error codes for ilspy-browser operations.

    Naming convention: CATEGORY_SPECIFIC_ERROR
    """

    # Engine lifecycle errors
    ENGINE_STARTUP_FAILED = "ENGINE_STARTUP_FAILED"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
    ENGINE_TIMEOUT = "ENGINE_TIMEOUT"
    ENGINE_MALFORMED_RESPONSE = "ENGINE_MALFORMED_RESPONSE"

    # Decompilation errors
    ASSEMBLY_LOAD_FAILED = "ASSEMBLY_LOAD_FAILED"
    DECOMPILE_FAILED = "DECOMPILE_FAILED"

    # Parameter errors
    PARAMETER_INVALID = "PARAMETER_INVALID"

    # General errors
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class StructuredError:
    """
    Rich error information with actionable suggestions.

    Attributes:
        error: Error code for programmatic handling
        message: Human-readable error description
        reason: Explanation of why the error occurred
        suggestions: List of actionable steps to resolve the error
        debug_info: Additional debugging information
    """

    error: ErrorCode
    message: str
    reason: str | None = None
    suggestions: list[str] = field(default_factory=list)
    debug_info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.error.value,
            "message": self.message,
            "reason": self.reason,
            "suggestions": self.suggestions,
            "debug_info": self.debug_info,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to formatted JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def to_user_message(self) -> str:
        """Format error for human-readable display."""
        lines = [f"Error [{self.error.value}]: {self.message}"]

        if self.reason:
            lines.append(f"Reason: {self.reason}")

        if self.suggestions:
            lines.append("\nSuggested actions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.debug_info:
            lines.append("\nDebug information:")
            for key, value in self.debug_info.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_user_message()


class StructuredBaseError(Exception):
    """
    Exception that wraps a StructuredError.

    Allows raising structured errors as exceptions while maintaining
    all error information.
    """

    def __init__(self, structured_error: StructuredError):
        self.structured_error = structured_error
        super().__init__(structured_error.to_user_message())

    @property
    def code(self) -> ErrorCode:
        return self.structured_error.error

    def to_dict(self) -> dict[str, Any]:
        """Get the underlying structured error as a dictionary."""
        return self.structured_error.to_dict()

    def to_json(self, indent: int = 2) -> str:
        """Get the underlying structured error as JSON."""
        return self.structured_error.to_json(indent)


# =============================================================================
# Suggestion Mappings
# =============================================================================

ENGINE_SUGGESTIONS = {
    "startup_failed": [
        "Check that ILSPY_ENGINE_PATH points at the decompiler engine executable",
        "If the engine is a .dll, make sure the dotnet host is installed and on PATH",
        "Run engine_status() to see the resolved engine command line",
        "Increase ILSPY_STARTUP_TIMEOUT if the engine is slow to initialise",
    ],
    "unavailable": [
        "The engine stopped or was restarted while the request was pending",
        "Retry the operation; the engine is restarted automatically on the next call",
        "Use restart_engine() to start it explicitly",
    ],
    "timeout": [
        "The engine did not answer in time and has been stopped",
        "Retry the operation; a fresh engine process will be started",
        "Increase ILSPY_REQUEST_TIMEOUT for very large types",
    ],
    "malformed": [
        "The engine answered with data that does not follow the protocol",
        "Check that the engine version matches this client",
        "Set ILSPY_BROWSER_LOG_LEVEL=DEBUG to log raw engine traffic",
    ],
}

DECOMPILE_SUGGESTIONS = {
    "load_failed": [
        "Verify the file is a managed (.NET) assembly and not a native binary",
        "Check that the file is readable and not locked by another process",
        "Make sure the path points at a .dll, .exe, .winrt or .netmodule file",
    ],
    "decompile_failed": [
        "The member may belong to an assembly that was removed or reloaded",
        "Call refresh_tree() and browse to the member again",
        "Try the IL language with set_language('il') if C# decompilation fails",
    ],
}


# =============================================================================
# Error Factory Functions
# =============================================================================


def create_engine_startup_error(
    command: list[str] | None,
    reason: str,
    exit_code: int | None = None,
) -> StructuredError:
    """Create error for an engine that could not be started."""
    debug_info: dict[str, Any] = {"command": " ".join(command) if command else None}
    if exit_code is not None:
        debug_info["exit_code"] = exit_code

    return StructuredError(
        error=ErrorCode.ENGINE_STARTUP_FAILED,
        message="Failed to start the decompiler engine",
        reason=reason,
        suggestions=ENGINE_SUGGESTIONS["startup_failed"],
        debug_info=debug_info,
    )


def create_engine_unavailable_error(
    operation: str,
    reason: str | None = None,
    generation: int | None = None,
) -> StructuredError:
    """Create error for a request that cannot reach a live engine."""
    debug_info: dict[str, Any] = {"operation": operation}
    if generation is not None:
        debug_info["generation"] = generation

    return StructuredError(
        error=ErrorCode.ENGINE_UNAVAILABLE,
        message=f"Decompiler engine unavailable for '{operation}'",
        reason=reason or "The engine process is not running",
        suggestions=ENGINE_SUGGESTIONS["unavailable"],
        debug_info=debug_info,
    )


def create_engine_timeout_error(operation: str, timeout_ms: int) -> StructuredError:
    """Create error for an engine request that timed out."""
    return StructuredError(
        error=ErrorCode.ENGINE_TIMEOUT,
        message=f"Operation '{operation}' timed out after {timeout_ms}ms",
        reason="The engine did not respond within the time limit",
        suggestions=ENGINE_SUGGESTIONS["timeout"],
        debug_info={"operation": operation, "timeout_ms": timeout_ms},
    )


def create_malformed_response_error(
    operation: str,
    detail: str,
    payload: str | None = None,
) -> StructuredError:
    """Create error for an engine response that could not be parsed."""
    debug_info: dict[str, Any] = {"operation": operation}
    if payload is not None:
        debug_info["payload"] = payload[:200]

    return StructuredError(
        error=ErrorCode.ENGINE_MALFORMED_RESPONSE,
        message=f"Malformed engine response for '{operation}'",
        reason=detail,
        suggestions=ENGINE_SUGGESTIONS["malformed"],
        debug_info=debug_info,
    )


def create_load_failed_error(
    assembly_path: str,
    reason: str,
    engine_code: str | None = None,
) -> StructuredError:
    """Create error for an assembly the engine could not load."""
    debug_info: dict[str, Any] = {"assembly_path": assembly_path}
    if engine_code:
        debug_info["engine_code"] = engine_code

    return StructuredError(
        error=ErrorCode.ASSEMBLY_LOAD_FAILED,
        message=f"Failed to load assembly: {assembly_path}",
        reason=reason,
        suggestions=DECOMPILE_SUGGESTIONS["load_failed"],
        debug_info=debug_info,
    )


def create_decompile_failed_error(
    member_key: str,
    operation: str,
    reason: str,
    engine_code: str | None = None,
) -> StructuredError:
    """Create error for a member the engine could not enumerate or decompile."""
    debug_info: dict[str, Any] = {"member_key": member_key, "operation": operation}
    if engine_code:
        debug_info["engine_code"] = engine_code

    return StructuredError(
        error=ErrorCode.DECOMPILE_FAILED,
        message=f"Failed to {operation} member: {member_key}",
        reason=reason,
        suggestions=DECOMPILE_SUGGESTIONS["decompile_failed"],
        debug_info=debug_info,
    )


def create_parameter_error(
    param_name: str,
    provided_value: Any,
    expected: str,
) -> StructuredError:
    """Create error for an invalid tool parameter."""
    return StructuredError(
        error=ErrorCode.PARAMETER_INVALID,
        message=f"Invalid {param_name}: {provided_value!r}",
        reason=f"Expected {expected}",
        suggestions=[f"Provide {param_name} as {expected}"],
        debug_info={"parameter_name": param_name, "provided_value": provided_value},
    )


def format_exception(exc: BaseException) -> str:
    """
    Render any exception as a single user-facing message.

    Structured errors keep their full formatting; anything else is
    reported as UNKNOWN_ERROR.
    """
    if isinstance(exc, StructuredBaseError):
        return exc.structured_error.to_user_message()

    logger.debug(f"Unstructured error reported to user: {exc!r}")
    return StructuredError(
        error=ErrorCode.UNKNOWN_ERROR,
        message=str(exc) or type(exc).__name__,
        debug_info={"exception_type": type(exc).__name__},
    ).to_user_message()
