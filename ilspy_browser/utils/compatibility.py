"""
Managed assembly pre-check.

Reads PE headers with pefile to decide whether a file carries a CLR
(COR20) header before it is handed to the decompiler engine, so that
native binaries are rejected without an engine round-trip.
"""

import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path

import pefile

logger = logging.getLogger(__name__)


@dataclass
class AssemblyInfo:
    """Header-level facts about a candidate assembly."""
    path: Path
    size: int
    is_pe: bool = False
    is_dotnet: bool = False
    architecture: str = "unknown"
    runtime_version: str = ""
    clr_flags: int = 0
    is_il_only: bool = False
    is_strong_named: bool = False
    warnings: list = field(default_factory=list)


class AssemblyCompatibilityChecker:
    """Detects whether a file is a managed assembly the engine can load."""

    MAGIC_PE = b'MZ'

    # .NET CLR header constants
    IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR = 14
    COMIMAGE_FLAGS_ILONLY = 0x00000001
    COMIMAGE_FLAGS_32BITREQUIRED = 0x00000002
    COMIMAGE_FLAGS_STRONGNAMESIGNED = 0x00000008
    COMIMAGE_FLAGS_NATIVE_ENTRYPOINT = 0x00000010

    MACHINE_NAMES = {
        0x014c: "x86",
        0x8664: "x64",
        0x01c4: "ARM",
        0xaa64: "ARM64",
    }

    def check(self, assembly_path: str | Path) -> AssemblyInfo:
        """
        Inspect a file's headers.

        Args:
            assembly_path: Path to the candidate assembly

        Returns:
            AssemblyInfo; is_dotnet is False for anything the engine cannot load
        """
        path = Path(assembly_path)
        info = AssemblyInfo(path=path, size=path.stat().st_size)

        with open(path, "rb") as f:
            magic = f.read(2)

        if magic != self.MAGIC_PE:
            info.warnings.append("Not a PE file (missing MZ header)")
            return info

        try:
            pe = pefile.PE(str(path), fast_load=True)
        except pefile.PEFormatError as e:
            info.warnings.append(f"PE header parsing error: {str(e)[:100]}")
            return info

        try:
            info.is_pe = True
            info.architecture = self.MACHINE_NAMES.get(pe.FILE_HEADER.Machine, "unknown")
            if self._has_clr_header(pe):
                info.is_dotnet = True
                self._analyze_clr_header(pe, info)
            else:
                info.warnings.append("No CLR header - native binary, not a .NET assembly")
        finally:
            pe.close()

        return info

    def _has_clr_header(self, pe) -> bool:
        """Check if PE has CLR/.NET header."""
        try:
            clr_dir = pe.OPTIONAL_HEADER.DATA_DIRECTORY[self.IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR]
            return clr_dir.VirtualAddress != 0 and clr_dir.Size != 0
        except (AttributeError, IndexError):
            return False

    def _analyze_clr_header(self, pe, info: AssemblyInfo) -> None:
        """Read runtime version and flags from the COR20 header."""
        clr_dir = pe.OPTIONAL_HEADER.DATA_DIRECTORY[self.IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR]
        try:
            clr_data = pe.get_data(clr_dir.VirtualAddress, min(clr_dir.Size, 72))
        except pefile.PEFormatError as e:
            logger.debug(f"CLR header read failed: {e}")
            info.warnings.append("Could not read CLR header")
            return

        if len(clr_data) < 20:
            info.warnings.append("Truncated CLR header")
            return

        # COR20: cb at 0-4, runtime version at 4-8, metadata dir at 8-16, flags at 16-20
        major_runtime, minor_runtime = struct.unpack('<HH', clr_data[4:8])
        flags = struct.unpack('<I', clr_data[16:20])[0]

        info.runtime_version = f"{major_runtime}.{minor_runtime}"
        info.clr_flags = flags
        info.is_il_only = bool(flags & self.COMIMAGE_FLAGS_ILONLY)
        info.is_strong_named = bool(flags & self.COMIMAGE_FLAGS_STRONGNAMESIGNED)

        if not info.is_il_only:
            info.warnings.append("Mixed-mode assembly (native + .NET) - native code is not decompiled")
        if flags & self.COMIMAGE_FLAGS_NATIVE_ENTRYPOINT:
            info.warnings.append("Assembly has a native entry point")
