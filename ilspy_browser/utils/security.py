"""Input validation for user-supplied assembly paths."""

import os
from pathlib import Path
from typing import List, Optional

ASSEMBLY_SUFFIXES = (".dll", ".exe", ".winrt", ".netmodule")

# Directories never descended into when searching a workspace for assemblies
EXCLUDED_DIRS = frozenset({"node_modules", ".git", "bower_components"})


class SecurityError(Exception):
    """Base exception for path validation errors."""
    pass


class PathTraversalError(SecurityError):
    """Raised when a path resolves outside the allowed directories."""
    pass


class FileSizeError(SecurityError):
    """Raised when file size exceeds limits."""
    pass


class UnreadableFileError(SecurityError):
    """Raised when a path does not name a readable regular file."""
    pass


def strip_path_quotes(raw_path: str) -> str:
    """
    Remove one pair of surrounding double quotes.

    Paths copied from Windows Explorer arrive as "C:\\dir\\file.dll".
    """
    path = raw_path.strip()
    if len(path) >= 2 and path[0] == '"' and path[-1] == '"':
        path = path[1:-1]
    return path


def sanitize_assembly_path(
    assembly_path: str,
    allowed_dirs: Optional[List[Path]] = None,
    max_size_bytes: int = 500 * 1024 * 1024  # 500MB default
) -> Path:
    """
    Normalize and validate a user-supplied assembly path.

    Args:
        assembly_path: Path as typed or pasted by the user
        allowed_dirs: List of allowed base directories (None = allow any)
        max_size_bytes: Maximum allowed file size in bytes

    Returns:
        Validated absolute path

    Raises:
        UnreadableFileError: If the path is empty, missing, not a file or unreadable
        PathTraversalError: If path is outside allowed directories
        FileSizeError: If file exceeds size limit
    """
    cleaned = strip_path_quotes(assembly_path)
    if not cleaned:
        raise UnreadableFileError("cannot read the file: empty path")

    try:
        path = Path(cleaned).expanduser().resolve()
    except (OSError, RuntimeError) as e:
        raise UnreadableFileError(f"cannot read the file {assembly_path}: {e}")

    if not path.is_file() or not os.access(path, os.R_OK):
        raise UnreadableFileError(f"cannot read the file {assembly_path}")

    if allowed_dirs:
        is_allowed = False
        for allowed_dir in allowed_dirs:
            try:
                if path.is_relative_to(allowed_dir.resolve()):
                    is_allowed = True
                    break
            except (OSError, RuntimeError, ValueError):
                continue

        if not is_allowed:
            raise PathTraversalError(
                f"Access denied: Path outside allowed directories: {assembly_path}"
            )

    file_size = path.stat().st_size
    if file_size > max_size_bytes:
        raise FileSizeError(
            f"File too large: {file_size} bytes (max: {max_size_bytes})"
        )

    return path


def find_assemblies(root_dir: str | Path | None) -> list[str]:
    """
    Recursively list assembly files below a workspace root.

    Args:
        root_dir: Workspace root; None or a missing directory yields []

    Returns:
        Sorted absolute paths of .dll/.exe/.winrt/.netmodule files
    """
    if not root_dir:
        return []

    root = Path(root_dir).expanduser()
    if not root.is_dir():
        return []

    found = []
    for current, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if d not in EXCLUDED_DIRS]
        for name in files:
            if name.lower().endswith(ASSEMBLY_SUFFIXES):
                found.append(str(Path(current, name).resolve()))

    return sorted(found)
