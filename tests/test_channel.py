"""
Tests for request/response correlation.

Routing is tested against a mocked process; end-to-end traffic against the
fake engine.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import fake_engine_command
from ilspy_browser.engines.dotnet.channel import RequestChannel
from ilspy_browser.engines.dotnet.errors import (
    EngineTimeout,
    EngineUnavailable,
    MalformedResponse,
)
from ilspy_browser.engines.dotnet.process import EngineProcess
from ilspy_browser.engines.dotnet.protocol import Command


def make_mock_process(generation=1):
    process = MagicMock()
    process.generation = generation
    process.is_running.return_value = True
    return process


def send_in_background(channel, command=Command.LOAD, arguments=None, timeout=5.0):
    outcome = {}

    def run():
        try:
            outcome["response"] = channel.send(command, arguments or {}, timeout=timeout)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=run)
    thread.start()
    return thread, outcome


def wait_for_write(process, count=1):
    deadline = time.time() + 5
    while process.send_line.call_count < count and time.time() < deadline:
        time.sleep(0.01)
    assert process.send_line.call_count >= count


class TestRouting:
    """Response correlation with a mocked process."""

    def test_response_resolves_request(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel, arguments={"path": "a.dll"})
        wait_for_write(process)
        channel.handle_line('{"id": 1, "success": true, "body": {"ok": 1}}')
        thread.join(5)

        assert outcome["response"].success
        assert outcome["response"].body == {"ok": 1}
        generation, line = process.send_line.call_args[0]
        assert generation == 1
        assert '"command":"load"' in line
        assert line.endswith("\n")

    def test_failure_response_is_returned(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.handle_line(
            '{"id": 1, "success": false, "error": {"code": "E", "message": "nope"}}'
        )
        thread.join(5)

        response = outcome["response"]
        assert not response.success
        assert response.error_code == "E"
        assert response.error_message == "nope"

    def test_unknown_id_is_dropped(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.handle_line('{"id": 99, "success": true, "body": {}}')
        channel.handle_line('{"id": 1, "success": true, "body": {}}')
        thread.join(5)

        assert outcome["response"].id == 1

    def test_events_are_ignored(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.handle_line('{"event": "log", "message": "hi"}')
        channel.handle_line('{"id": 1, "success": true, "body": {}}')
        thread.join(5)

        assert outcome["response"].success

    def test_invalid_json_fails_pending(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.handle_line("not json at all")
        thread.join(5)

        assert isinstance(outcome["error"], MalformedResponse)

    def test_response_without_success_flag(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.handle_line('{"id": 1, "body": {}}')
        thread.join(5)

        assert isinstance(outcome["error"], MalformedResponse)

    def test_timeout(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        with pytest.raises(EngineTimeout) as exc_info:
            channel.send(Command.DECOMPILE, {"key": "k"}, timeout=0.1)
        assert exc_info.value.operation == "decompile"


class TestClose:
    def test_close_fails_pending(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.close("engine restarting")
        thread.join(5)

        assert isinstance(outcome["error"], EngineUnavailable)
        assert channel.closed

    def test_send_after_close(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)
        channel.close("engine stopped")

        with pytest.raises(EngineUnavailable):
            channel.send(Command.LOAD, {})
        process.send_line.assert_not_called()

    def test_send_on_superseded_generation(self):
        process = make_mock_process(generation=2)
        channel = RequestChannel(process, generation=1)

        with pytest.raises(EngineUnavailable):
            channel.send(Command.LOAD, {})
        process.send_line.assert_not_called()

    def test_late_response_after_close_is_dropped(self):
        process = make_mock_process()
        channel = RequestChannel(process, generation=1)

        thread, outcome = send_in_background(channel)
        wait_for_write(process)
        channel.close("engine stopped")
        thread.join(5)

        # Must not raise or resolve anything twice
        channel.handle_line('{"id": 1, "success": true, "body": {}}')
        assert isinstance(outcome["error"], EngineUnavailable)


class TestAgainstFakeEngine:
    """Traffic through a real child process."""

    def test_requests_are_correlated(self):
        channels = {}
        process = EngineProcess(
            fake_engine_command(),
            stop_grace=2.0,
            on_message=lambda gen, line: channels[gen].handle_line(line),
        )
        try:
            generation = process.start()
            channel = RequestChannel(process, generation, timeout=5.0)
            channels[generation] = channel

            loaded = channel.send(Command.LOAD, {"path": "/x/Demo.dll"})
            assert loaded.body["assembly"]["kind"] == "assembly"

            members = channel.send(Command.ENUMERATE, {"key": "/x/Demo.dll"})
            assert [m["name"] for m in members.body["members"]] == ["Demo"]

            code = channel.send(
                Command.DECOMPILE, {"key": "/x/Demo.dll|Demo.Widget", "language": "il"}
            )
            assert code.body["code"].startswith("// il")
        finally:
            process.stop()

    def test_concurrent_requests_are_serialized(self):
        channels = {}
        process = EngineProcess(
            fake_engine_command(),
            stop_grace=2.0,
            on_message=lambda gen, line: channels[gen].handle_line(line),
        )
        try:
            generation = process.start()
            channel = RequestChannel(process, generation, timeout=5.0)
            channels[generation] = channel
            channel.send(Command.LOAD, {"path": "/x/Demo.dll"})

            keys = ["/x/Demo.dll", "/x/Demo.dll|Demo", "/x/Demo.dll|Demo.Widget"] * 4
            results = [None] * len(keys)

            def worker(index, key):
                results[index] = channel.send(Command.DECOMPILE, {"key": key, "language": "csharp"})

            threads = [threading.Thread(target=worker, args=(i, k)) for i, k in enumerate(keys)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(10)

            for key, response in zip(keys, results):
                assert response.success
                assert key in response.body["code"]
        finally:
            process.stop()
