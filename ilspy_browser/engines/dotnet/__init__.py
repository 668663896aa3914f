"""
.NET decompiler engine supervision.

Runs the external decompiler engine as a child process and exposes
load/enumerate/decompile requests through DecompilerSession.
"""

from ilspy_browser.engines.dotnet.errors import (
    DecompileFailure,
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    LoadFailure,
    MalformedResponse,
    StartupFailure,
)
from ilspy_browser.engines.dotnet.locator import EngineLocator, EngineSettings, load_engine_settings
from ilspy_browser.engines.dotnet.protocol import MemberDescriptor, MemberKind
from ilspy_browser.engines.dotnet.session import DecompilerSession

__all__ = [
    "DecompileFailure",
    "DecompilerSession",
    "EngineError",
    "EngineLocator",
    "EngineSettings",
    "EngineTimeout",
    "EngineUnavailable",
    "LoadFailure",
    "MalformedResponse",
    "MemberDescriptor",
    "MemberKind",
    "StartupFailure",
    "load_engine_settings",
]
