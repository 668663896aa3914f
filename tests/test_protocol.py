"""
Tests for the engine line protocol.
"""

import json

import pytest

from ilspy_browser.engines.dotnet.protocol import (
    Command,
    EngineRequest,
    MemberKind,
    ProtocolError,
    decode_line,
    is_event,
    parse_assembly_body,
    parse_code_body,
    parse_descriptor,
    parse_members_body,
    parse_response,
)


class TestRequest:
    def test_encode_is_one_line(self):
        line = EngineRequest(id=4, command=Command.DECOMPILE, arguments={"key": "a\nb"}).encode()
        assert line.endswith("\n")
        assert line.count("\n") == 1
        assert json.loads(line) == {
            "id": 4,
            "command": "decompile",
            "arguments": {"key": "a\nb"},
        }


class TestDecode:
    def test_object(self):
        assert decode_line('{"id": 1}') == {"id": 1}

    @pytest.mark.parametrize("line", ["nope", "[1, 2]", '"text"'])
    def test_rejects(self, line):
        with pytest.raises(ProtocolError):
            decode_line(line)

    def test_is_event(self):
        assert is_event({"event": "ready"})
        assert not is_event({"id": 1, "event": "x"})
        assert not is_event({"id": 1, "success": True})


class TestParseResponse:
    def test_success(self):
        response = parse_response({"id": 2, "success": True, "body": {"code": "x"}})
        assert response.success
        assert response.body == {"code": "x"}

    def test_success_without_body(self):
        assert parse_response({"id": 2, "success": True}).body == {}

    def test_failure(self):
        response = parse_response(
            {"id": 2, "success": False, "error": {"code": "E1", "message": "bad"}}
        )
        assert not response.success
        assert response.error_code == "E1"
        assert response.error_message == "bad"

    def test_failure_without_message(self):
        response = parse_response({"id": 2, "success": False, "error": {}})
        assert response.error_code is None
        assert response.error_message == "engine reported a failure"

    @pytest.mark.parametrize("message", [
        {"success": True},
        {"id": "2", "success": True},
        {"id": True, "success": True},
        {"id": 2},
        {"id": 2, "success": "yes"},
        {"id": 2, "success": True, "body": []},
        {"id": 2, "success": False},
    ])
    def test_invalid(self, message):
        with pytest.raises(ProtocolError):
            parse_response(message)


class TestDescriptors:
    def test_descriptor(self):
        desc = parse_descriptor({"key": "k", "name": "Run()", "kind": "method", "token": 100663297})
        assert desc.kind is MemberKind.METHOD
        assert desc.token == 100663297
        assert not desc.kind.is_container

    @pytest.mark.parametrize("data", [
        None,
        {"name": "x", "kind": "type"},
        {"key": "", "name": "x", "kind": "type"},
        {"key": "k", "kind": "type"},
        {"key": "k", "name": "x", "kind": "module"},
        {"key": "k", "name": "x", "kind": "type", "token": "0x02"},
    ])
    def test_invalid_descriptor(self, data):
        with pytest.raises(ProtocolError):
            parse_descriptor(data)

    def test_container_kinds(self):
        containers = {k for k in MemberKind if k.is_container}
        assert containers == {MemberKind.ASSEMBLY, MemberKind.NAMESPACE, MemberKind.TYPE}


class TestBodies:
    def test_assembly_body(self):
        desc = parse_assembly_body({"assembly": {"key": "/a.dll", "name": "a", "kind": "assembly"}})
        assert desc.key == "/a.dll"

    def test_assembly_body_wrong_kind(self):
        with pytest.raises(ProtocolError):
            parse_assembly_body({"assembly": {"key": "k", "name": "n", "kind": "type"}})

    def test_members_body(self):
        members = parse_members_body({"members": [
            {"key": "a", "name": "A", "kind": "namespace"},
            {"key": "b", "name": "B", "kind": "type"},
        ]})
        assert [m.key for m in members] == ["a", "b"]
        assert parse_members_body({"members": []}) == []

    def test_members_body_missing(self):
        with pytest.raises(ProtocolError):
            parse_members_body({})

    def test_code_body(self):
        assert parse_code_body({"code": ""}) == ""
        with pytest.raises(ProtocolError):
            parse_code_body({"code": None})
