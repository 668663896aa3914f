"""
Tests for the decompiler session against the fake engine.
"""

import os
import signal
import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import fake_engine_command
from ilspy_browser.engines.base import DecompileLanguage, EngineState
from ilspy_browser.engines.dotnet.errors import (
    DecompileFailure,
    EngineTimeout,
    EngineUnavailable,
    LoadFailure,
    MalformedResponse,
    StartupFailure,
)
from ilspy_browser.engines.dotnet.locator import EngineSettings
from ilspy_browser.engines.dotnet.protocol import MemberKind
from ilspy_browser.engines.dotnet.session import DecompilerSession


def wait_until(predicate, timeout=10.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestLifecycle:
    """Start, stop and restart."""

    def test_not_started_until_first_use(self, session):
        assert session.state is EngineState.STOPPED
        assert not session.is_running()
        assert session.generation == 0

    def test_ensure_running_starts_engine(self, session):
        session.ensure_running()
        assert session.state is EngineState.RUNNING
        assert session.is_running()
        assert session.generation == 1

    def test_ensure_running_twice_keeps_process(self, session):
        session.ensure_running()
        session.ensure_running()
        assert session.generation == 1

    def test_concurrent_ensure_running_spawns_once(self, session):
        threads = [threading.Thread(target=session.ensure_running) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(15)
        assert session.is_running()
        assert session.generation == 1

    def test_stop(self, session):
        session.ensure_running()
        session.stop()
        assert session.state is EngineState.STOPPED
        assert not session.is_running()

    def test_stop_is_idempotent(self, session):
        session.stop()
        session.stop()
        assert session.state is EngineState.STOPPED

    def test_restart_bumps_generation(self, session):
        session.ensure_running()
        session.restart()
        assert session.generation == 2
        assert session.is_running()

    def test_startup_failure_leaves_session_stopped(self):
        settings = EngineSettings(command=fake_engine_command("--exit-immediately"), stop_grace=2.0)
        with DecompilerSession(settings) as session:
            with pytest.raises(StartupFailure):
                session.ensure_running()
            assert session.state is EngineState.STOPPED

    def test_missing_engine(self):
        with DecompilerSession(EngineSettings(command=None)) as session:
            with pytest.raises(StartupFailure):
                session.load_assembly("/x/Demo.dll")


class TestOperations:
    """load_assembly / list_children / decompile."""

    def test_load_assembly(self, session, assembly_path):
        descriptor = session.load_assembly(assembly_path)
        assert descriptor.kind is MemberKind.ASSEMBLY
        assert descriptor.key == assembly_path
        assert descriptor.name == "Demo"
        assert session.loaded_assemblies == [assembly_path]

    def test_load_failure(self, session, tmp_path):
        with pytest.raises(LoadFailure) as exc_info:
            session.load_assembly(str(tmp_path / "missing.dll"))
        assert exc_info.value.engine_code == "LoadError"
        assert session.loaded_assemblies == []

    def test_list_children(self, session, assembly_path):
        session.load_assembly(assembly_path)
        namespaces = session.list_children(assembly_path)
        assert [(d.name, d.kind) for d in namespaces] == [("Demo", MemberKind.NAMESPACE)]

        members = session.list_children(f"{assembly_path}|Demo.Widget")
        assert [d.name for d in members] == ["Run()", "count"]
        assert members[0].token == 0x06000001

    def test_list_children_unknown_key(self, session, assembly_path):
        session.load_assembly(assembly_path)
        with pytest.raises(DecompileFailure) as exc_info:
            session.list_children(f"{assembly_path}|Nope")
        assert exc_info.value.operation == "enumerate"

    def test_decompile_languages(self, session, assembly_path):
        session.load_assembly(assembly_path)
        key = f"{assembly_path}|Demo.Widget|Run"
        assert session.decompile(key, DecompileLanguage.CSHARP).startswith("// csharp")
        assert session.decompile(key, "il").startswith("// il")

    def test_decompile_unknown_key(self, session, assembly_path):
        with pytest.raises(DecompileFailure):
            session.decompile(f"{assembly_path}|Demo.Widget|Run")

    def test_owning_assembly_is_sent(self, session, assembly_path, tmp_path):
        session.load_assembly(assembly_path)
        key = f"{assembly_path}|Demo.Widget"
        assert len(session.list_children(key, assembly=assembly_path)) == 2
        assert session.decompile(key, "il", assembly=assembly_path).startswith("// il")
        with pytest.raises(DecompileFailure):
            session.list_children(key, assembly=str(tmp_path / "Other.dll"))

    def test_garbage_output_is_malformed(self, session, assembly_path):
        session.load_assembly(assembly_path)
        with pytest.raises(MalformedResponse):
            session.decompile(f"{assembly_path}|__garbage__")


class TestRecovery:
    """Crash, timeout and restart behaviour."""

    def test_crash_is_detected(self, session, assembly_path):
        session.load_assembly(assembly_path)
        with pytest.raises(EngineUnavailable):
            session.decompile(f"{assembly_path}|__crash__")
        assert wait_until(lambda: session.state is EngineState.CRASHED)
        assert not session.is_running()

    @pytest.mark.skipif(os.name == "nt", reason="SIGKILL is POSIX only")
    def test_external_kill(self, session, assembly_path):
        session.load_assembly(assembly_path)
        os.kill(session.diagnose()["pid"], signal.SIGKILL)
        assert wait_until(lambda: not session.is_running())

        session.ensure_running()
        assert session.state is EngineState.RUNNING
        assert session.list_children(assembly_path)[0].name == "Demo"

    def test_next_call_restarts_and_reloads(self, session, assembly_path):
        session.load_assembly(assembly_path)
        with pytest.raises(EngineUnavailable):
            session.decompile(f"{assembly_path}|__crash__")

        # The fresh engine only knows the assembly if it was reloaded
        code = session.decompile(f"{assembly_path}|Demo.Widget|Run")
        assert assembly_path in code
        assert session.generation == 2
        assert session.state is EngineState.RUNNING

    def test_explicit_restart_reloads(self, session, assembly_path):
        session.load_assembly(assembly_path)
        session.restart()
        assert session.list_children(assembly_path)[0].name == "Demo"

    def test_unloaded_assembly_is_not_reloaded(self, session, assembly_path):
        session.load_assembly(assembly_path)
        session.unload_assembly(assembly_path)
        session.restart()
        assert session.loaded_assemblies == []
        with pytest.raises(DecompileFailure):
            session.list_children(assembly_path)

    def test_restart_fails_in_flight_request(self, session, assembly_path):
        session.load_assembly(assembly_path)
        outcome = {}

        def hang():
            try:
                session.decompile(f"{assembly_path}|__hang__")
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=hang)
        thread.start()
        time.sleep(0.3)
        session.restart()
        thread.join(10)

        assert isinstance(outcome["error"], EngineUnavailable)
        assert session.is_running()

    def test_timeout_stops_engine(self, assembly_path):
        settings = EngineSettings(
            command=fake_engine_command(), request_timeout=0.5, stop_grace=2.0
        )
        with DecompilerSession(settings) as session:
            session.load_assembly(assembly_path)
            with pytest.raises(EngineTimeout):
                session.decompile(f"{assembly_path}|__hang__")
            assert session.state is EngineState.STOPPED

            # Next call starts a fresh engine
            assert session.list_children(assembly_path)
            assert session.generation == 2


    def test_rejected_reload_is_forgotten(self, session, assembly_path, tmp_path):
        changed = str(tmp_path / "reload-fails.dll")
        session.load_assembly(assembly_path)
        session.load_assembly(changed)

        session.restart()
        assert session.is_running()
        assert session.loaded_assemblies == [assembly_path]
        assert session.list_children(assembly_path)[0].name == "Demo"

    def test_reload_timeout_fails_restart(self, tmp_path):
        path = str(tmp_path / "reload-hangs.dll")
        settings = EngineSettings(
            command=fake_engine_command(), request_timeout=0.5, stop_grace=2.0
        )
        with DecompilerSession(settings) as session:
            session.load_assembly(path)
            with pytest.raises(EngineTimeout):
                session.restart()
            assert session.state is EngineState.STOPPED
            assert not session.is_running()

    def test_reload_timeout_fails_implicit_restart(self, tmp_path):
        path = str(tmp_path / "reload-hangs.dll")
        settings = EngineSettings(
            command=fake_engine_command(), request_timeout=0.5, stop_grace=2.0
        )
        with DecompilerSession(settings) as session:
            session.load_assembly(path)
            with pytest.raises(EngineUnavailable):
                session.decompile(f"{path}|__crash__")

            with pytest.raises(EngineTimeout):
                session.list_children(path)
            assert session.state is EngineState.STOPPED


class TestDiagnose:
    def test_diagnose_reports_state(self, session, assembly_path):
        session.load_assembly(assembly_path)
        diag = session.diagnose()
        assert diag["state"] == "running"
        assert diag["running"] is True
        assert diag["generation"] == 1
        assert diag["loaded_assemblies"] == [assembly_path]
        assert diag["engine_found"] is True

    def test_diagnose_includes_installation(self, engine_settings):
        locator = MagicMock()
        locator.diagnose.return_value = {
            "engine_path": "/opt/ilspy-backend",
            "dotnet_found": True,
            "dotnet_version": "8.0.100",
        }
        with DecompilerSession(engine_settings, locator) as session:
            diag = session.diagnose()
        assert diag["engine_path"] == "/opt/ilspy-backend"
        assert diag["dotnet_version"] == "8.0.100"
        assert diag["state"] == "stopped"
        assert diag["loaded_assemblies"] == []
