"""
Line-delimited JSON protocol spoken with the decompiler engine.

Every message is one UTF-8 JSON object terminated by a newline:

    request:  {"id": 7, "command": "decompile", "arguments": {"key": "...", "language": "csharp"}}
    success:  {"id": 7, "success": true, "body": {"code": "..."}}
    failure:  {"id": 7, "success": false, "error": {"code": "UnknownMember", "message": "..."}}
    event:    {"event": "ready", "version": "8.2"}

The engine must emit the "ready" event as its first line.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

READY_EVENT = "ready"


class Command(str, Enum):
    """Engine commands."""
    LOAD = "load"
    ENUMERATE = "enumerate"
    DECOMPILE = "decompile"


class MemberKind(str, Enum):
    """Kind tag of a node in the member hierarchy."""
    ASSEMBLY = "assembly"
    NAMESPACE = "namespace"
    TYPE = "type"
    METHOD = "method"
    FIELD = "field"
    PROPERTY = "property"
    EVENT = "event"

    @property
    def is_container(self) -> bool:
        """Whether nodes of this kind can have children."""
        return self in (MemberKind.ASSEMBLY, MemberKind.NAMESPACE, MemberKind.TYPE)


@dataclass(frozen=True)
class MemberDescriptor:
    """An addressable member as reported by the engine."""
    key: str
    name: str
    kind: MemberKind
    token: int | None = None


@dataclass
class EngineRequest:
    id: int
    command: Command
    arguments: dict[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        """Serialize to a single protocol line (with trailing newline)."""
        return json.dumps(
            {"id": self.id, "command": self.command.value, "arguments": self.arguments},
            separators=(",", ":"),
        ) + "\n"


@dataclass
class EngineResponse:
    id: int
    success: bool
    body: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None


class ProtocolError(ValueError):
    """A line or payload that does not follow the protocol."""


def decode_line(line: str) -> dict[str, Any]:
    """
    Parse one protocol line.

    Raises:
        ProtocolError: If the line is not a JSON object
    """
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"not valid JSON: {e.msg}") from e
    if not isinstance(message, dict):
        raise ProtocolError(f"expected a JSON object, got {type(message).__name__}")
    return message


def is_event(message: dict[str, Any]) -> bool:
    return "event" in message and "id" not in message


def parse_response(message: dict[str, Any]) -> EngineResponse:
    """
    Build an EngineResponse from a decoded message.

    Raises:
        ProtocolError: If required fields are missing or mistyped
    """
    request_id = message.get("id")
    if not isinstance(request_id, int) or isinstance(request_id, bool):
        raise ProtocolError("response has no integer 'id'")

    success = message.get("success")
    if not isinstance(success, bool):
        raise ProtocolError("response has no boolean 'success'")

    if success:
        body = message.get("body", {})
        if not isinstance(body, dict):
            raise ProtocolError("response 'body' is not an object")
        return EngineResponse(id=request_id, success=True, body=body)

    error = message.get("error")
    if not isinstance(error, dict):
        raise ProtocolError("failed response has no 'error' object")
    return EngineResponse(
        id=request_id,
        success=False,
        error_code=str(error.get("code", "")) or None,
        error_message=str(error.get("message", "")) or "engine reported a failure",
    )


def parse_descriptor(data: Any) -> MemberDescriptor:
    """
    Convert an engine descriptor object to a MemberDescriptor.

    Raises:
        ProtocolError: If the descriptor is incomplete or has an unknown kind
    """
    if not isinstance(data, dict):
        raise ProtocolError("descriptor is not an object")

    key = data.get("key")
    name = data.get("name")
    if not isinstance(key, str) or not key:
        raise ProtocolError("descriptor has no 'key'")
    if not isinstance(name, str):
        raise ProtocolError(f"descriptor {key!r} has no 'name'")

    try:
        kind = MemberKind(data.get("kind"))
    except ValueError:
        raise ProtocolError(f"descriptor {key!r} has unknown kind {data.get('kind')!r}") from None

    token = data.get("token")
    if token is not None and (not isinstance(token, int) or isinstance(token, bool)):
        raise ProtocolError(f"descriptor {key!r} has a non-integer 'token'")

    return MemberDescriptor(key=key, name=name, kind=kind, token=token)


def parse_assembly_body(body: dict[str, Any]) -> MemberDescriptor:
    descriptor = parse_descriptor(body.get("assembly"))
    if descriptor.kind is not MemberKind.ASSEMBLY:
        raise ProtocolError(f"load returned a {descriptor.kind.value}, not an assembly")
    return descriptor


def parse_members_body(body: dict[str, Any]) -> list[MemberDescriptor]:
    members = body.get("members")
    if not isinstance(members, list):
        raise ProtocolError("enumerate response has no 'members' list")
    return [parse_descriptor(m) for m in members]


def parse_code_body(body: dict[str, Any]) -> str:
    code = body.get("code")
    if not isinstance(code, str):
        raise ProtocolError("decompile response has no 'code' string")
    return code
