"""
Base interface for decompiler engines.

The cache tree talks to an engine only through this interface, so any
backend (the supervised .NET engine process, or an in-memory stand-in)
can sit behind it.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class EngineState(Enum):
    """Decompiler session lifecycle state."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


class DecompileLanguage(str, Enum):
    """Surface syntax of decompiled text."""
    CSHARP = "csharp"
    IL = "il"

    @classmethod
    def parse(cls, value: "str | DecompileLanguage") -> "DecompileLanguage":
        """Accept enum members, values and a few common spellings."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {"c#": "csharp", "cs": "csharp", "msil": "il", "cil": "il"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown language '{value}' (expected one of: {choices})") from None


class DecompilerEngine(ABC):
    """Base class for decompiler engine sessions."""

    @abstractmethod
    def is_running(self) -> bool:
        """Return True while a live engine can accept requests."""
        pass

    @abstractmethod
    def ensure_running(self) -> None:
        """
        Start the engine if it is not running.

        Raises:
            StartupFailure: If the engine cannot be started
        """
        pass

    @abstractmethod
    def restart(self) -> None:
        """Stop any running engine and start a new one."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the engine. Never raises."""
        pass

    @abstractmethod
    def load_assembly(self, path: str) -> Any:
        """
        Load an assembly into the engine.

        Args:
            path: Assembly path

        Returns:
            Descriptor of the assembly's root member

        Raises:
            LoadFailure: If the engine rejects the assembly
        """
        pass

    @abstractmethod
    def unload_assembly(self, path: str) -> None:
        """Forget an assembly so it is not reloaded after a restart."""
        pass

    @abstractmethod
    def list_children(self, member_key: str, assembly: str | None = None) -> list:
        """
        Enumerate the direct children of a member.

        Args:
            member_key: Identity key of the parent member
            assembly: Path of the assembly that owns the member, when known

        Returns:
            Ordered child descriptors; empty for leaf members
        """
        pass

    @abstractmethod
    def decompile(
        self,
        member_key: str,
        language: DecompileLanguage,
        assembly: str | None = None,
    ) -> str:
        """
        Decompile one member.

        Args:
            member_key: Identity key of the member
            language: Target surface syntax
            assembly: Path of the assembly that owns the member, when known

        Returns:
            Decompiled source text
        """
        pass
