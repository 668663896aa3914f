"""Shared fixtures: a fake engine process speaking the real protocol."""

import sys
from pathlib import Path

import pytest

from ilspy_browser.engines.dotnet.locator import EngineSettings
from ilspy_browser.engines.dotnet.session import DecompilerSession

FAKE_ENGINE = Path(__file__).parent / "fake_engine.py"


def fake_engine_command(*switches: str) -> list[str]:
    return [sys.executable, str(FAKE_ENGINE), *switches]


@pytest.fixture
def engine_settings():
    return EngineSettings(
        command=fake_engine_command(),
        startup_timeout=10.0,
        request_timeout=5.0,
        stop_grace=2.0,
    )


@pytest.fixture
def session(engine_settings):
    with DecompilerSession(engine_settings) as s:
        yield s


@pytest.fixture
def assembly_path(tmp_path):
    return str(tmp_path / "Demo.dll")
