"""
Assembly browser MCP tools.

Exposes the cache tree to MCP clients: add assemblies, walk the member
hierarchy, and read decompiled source for any member.
"""

import logging

from fastmcp import FastMCP

from ilspy_browser.engines.base import DecompileLanguage
from ilspy_browser.engines.dotnet.errors import LoadFailure
from ilspy_browser.engines.tree.cache_tree import (
    AmbiguousKeyError,
    CacheTree,
    StaleNodeError,
    TreeChangeEvent,
)
from ilspy_browser.utils.compatibility import AssemblyCompatibilityChecker
from ilspy_browser.utils.config import get_config_status
from ilspy_browser.utils.formatters import format_code, format_diagnostics, format_member_list
from ilspy_browser.utils.security import (
    SecurityError,
    find_assemblies as find_assembly_files,
    sanitize_assembly_path,
)
from ilspy_browser.utils.structured_errors import (
    StructuredBaseError,
    create_parameter_error,
    format_exception,
)

logger = logging.getLogger(__name__)


class SelectionTracker:
    """Remembers the last member whose code was shown."""

    def __init__(self):
        self.last_key: tuple[str, str] | None = None

    def select(self, key: tuple[str, str]) -> bool:
        """
        Record a selection.

        Args:
            key: (assembly path, member key) of the shown member

        Returns:
            False if the same member was already the last one shown
        """
        if key == self.last_key:
            return False
        self.last_key = key
        return True

    def on_tree_changed(self, event: TreeChangeEvent) -> None:
        # Keys shown before a structure change may point at new nodes now
        self.last_key = None


def add_assembly_to_tree(
    tree: CacheTree,
    assembly_path: str,
    checker: AssemblyCompatibilityChecker | None = None,
) -> tuple[bool, str]:
    """
    Validate a path, make sure the engine runs, and add the assembly.

    Args:
        tree: Target cache tree
        assembly_path: Path as typed by the user (surrounding quotes allowed)
        checker: Header checker; a default one is used when None

    Returns:
        (added, resolved_path); added is False if the path was already loaded

    Raises:
        SecurityError: If the path is not a readable file
        LoadFailure: If the file is not a managed assembly or the engine rejects it
    """
    path = sanitize_assembly_path(assembly_path)

    checker = checker or AssemblyCompatibilityChecker()
    info = checker.check(path)
    if not info.is_dotnet:
        reason = info.warnings[0] if info.warnings else "No CLR header found"
        raise LoadFailure(str(path), reason, "NotManaged")
    for warning in info.warnings:
        logger.info(f"{path.name}: {warning}")

    tree.engine.ensure_running()

    return tree.add_assembly(str(path)), str(path)


def match_loaded_assembly(tree: CacheTree, assembly_path: str) -> str | None:
    """
    Map a user-typed assembly path to the path the tree stores.

    Returns:
        The stored path, or None if no loaded assembly matches
    """
    loaded = tree.assembly_paths
    if assembly_path in loaded:
        return assembly_path

    # Paths are stored resolved; accept the form the user typed too
    try:
        resolved = str(sanitize_assembly_path(assembly_path))
    except SecurityError:
        return None
    return resolved if resolved in loaded else None


def register_browser_tools(app: FastMCP, tree: CacheTree) -> None:
    """
    Register assembly browser tools with the MCP server.

    Args:
        app: FastMCP application instance
        tree: Cache tree shared by all tools
    """
    selection = SelectionTracker()
    tree.subscribe(selection.on_tree_changed)

    def resolve(key: str, assembly: str | None = None):
        assembly_key = None
        if assembly is not None:
            assembly_key = match_loaded_assembly(tree, assembly)
            if assembly_key is None:
                raise StructuredBaseError(create_parameter_error(
                    "assembly", assembly, "the path of a loaded assembly"
                ))

        try:
            node = tree.get_node(key, assembly_key)
        except AmbiguousKeyError as e:
            raise StructuredBaseError(create_parameter_error(
                "assembly", None, "one of: " + ", ".join(e.assemblies)
            )) from e
        if node is None:
            raise StructuredBaseError(create_parameter_error(
                "key", key, "a member key returned by list_members()"
            ))
        return node

    @app.tool()
    def add_assembly(assembly_path: str) -> str:
        """
        Add a .NET assembly to the browser.

        Starts the decompiler engine if needed, loads the assembly and
        attaches it as a new root. Adding the same path twice is a no-op.

        Args:
            assembly_path: Path to a .dll/.exe/.winrt/.netmodule file

        Returns:
            Confirmation with the assembly's root key
        """
        try:
            added, path = add_assembly_to_tree(tree, assembly_path)
        except SecurityError as e:
            return f"Error: {e}"
        except Exception as e:
            logger.error(f"add_assembly failed: {e}")
            return format_exception(e)

        if not added:
            return f"Assembly already loaded: {path}"

        root = next(r for r in tree.roots if r.assembly_key == path)
        return (
            f"Added assembly **{root.name}**\n\n"
            f"- Key: `{root.key}`\n\n"
            f"Next: `list_members(\"{root.key}\")` to browse its namespaces."
        )

    @app.tool()
    def find_assemblies(root_dir: str) -> str:
        """
        Find assemblies below a workspace directory.

        Skips node_modules, .git and bower_components.

        Args:
            root_dir: Directory to search

        Returns:
            List of assembly paths
        """
        paths = find_assembly_files(root_dir)
        if not paths:
            return f"No assemblies found under {root_dir}"

        result = f"**Assemblies: {len(paths)} found**\n\n"
        for path in paths:
            result += f"- `{path}`\n"
        return result

    @app.tool()
    def list_members(key: str | None = None, assembly: str | None = None, limit: int = 200) -> str:
        """
        List loaded assemblies, or the children of one member.

        Args:
            key: Member key; omit to list the loaded assemblies
            assembly: Path of the assembly owning the key; needed only when
                several loaded assemblies share the key
            limit: Maximum number of members to show

        Returns:
            Member list with keys for further browsing
        """
        if key is None:
            return format_member_list("Assemblies", tree.roots, limit)

        try:
            node = resolve(key, assembly)
            children = tree.get_children(node)
        except StaleNodeError as e:
            return f"Error: {e}. Call list_members() to browse from the roots again."
        except Exception as e:
            logger.error(f"list_members failed: {e}")
            return format_exception(e)

        return format_member_list(
            f"{node.name} ({node.kind.value})", list(children), limit, assembly=node.assembly_key
        )

    @app.tool()
    def get_code(key: str, assembly: str | None = None, only_if_changed: bool = False) -> str:
        """
        Show decompiled source for a member.

        Decompiled text is cached per member until refresh_tree().

        Args:
            key: Member key from list_members()
            assembly: Path of the assembly owning the key; needed only when
                several loaded assemblies share the key
            only_if_changed: Skip output when this member was the last one shown

        Returns:
            Decompiled source as a code block
        """
        try:
            node = resolve(key, assembly)
        except StructuredBaseError as e:
            return format_exception(e)

        changed = selection.select((node.assembly_key, node.key))
        if only_if_changed and not changed:
            return f"Member `{key}` is already shown."

        try:
            code = tree.get_code(node)
        except StaleNodeError as e:
            selection.last_key = None
            return f"Error: {e}. Call list_members() to browse from the roots again."
        except Exception as e:
            selection.last_key = None
            logger.error(f"get_code failed: {e}")
            return format_exception(e)

        return format_code(node, code, tree.language.value)

    @app.tool()
    def refresh_tree() -> str:
        """
        Discard all cached members and decompiled text.

        Loaded assemblies stay loaded; members are fetched again on access.
        """
        tree.refresh()
        return f"Tree refreshed ({len(tree.roots)} assemblies loaded)."

    @app.tool()
    def remove_assembly(assembly_path: str) -> str:
        """
        Remove an assembly and all of its cached members.

        Args:
            assembly_path: Path used when the assembly was added
        """
        path = match_loaded_assembly(tree, assembly_path)
        if path is not None and tree.remove_assembly(path):
            return f"Removed assembly: {path}"
        return f"Assembly not loaded: {assembly_path}"

    @app.tool()
    def set_language(language: str) -> str:
        """
        Choose the decompiled output language.

        Changing the language clears cached decompiled text.

        Args:
            language: "csharp" or "il"
        """
        try:
            changed = tree.set_language(language)
        except ValueError:
            return format_exception(StructuredBaseError(create_parameter_error(
                "language", language, "one of: " + ", ".join(m.value for m in DecompileLanguage)
            )))

        if not changed:
            return f"Language already set to {tree.language.value}."
        return f"Language set to {tree.language.value}; cached code cleared."

    @app.tool()
    def engine_status() -> str:
        """
        Report decompiler engine state and diagnostics.
        """
        diag = tree.engine.diagnose()
        diag["tree_language"] = tree.language.value
        result = format_diagnostics(diag)

        result += "\n**Configuration**\n\n"
        for key, status in get_config_status().items():
            if status["set"]:
                result += f"- {key}: `{status['value']}` ({status['source']})\n"
            else:
                result += f"- {key}: (default)\n"
        return result

    @app.tool()
    def restart_engine() -> str:
        """
        Restart the decompiler engine.

        Requests in flight fail; loaded assemblies are reloaded.
        """
        try:
            tree.engine.restart()
        except Exception as e:
            logger.error(f"restart_engine failed: {e}")
            return format_exception(e)
        return format_diagnostics(tree.engine.diagnose())
