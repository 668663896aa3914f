"""
Output formatting utilities for browser tool results.
"""

from ilspy_browser.engines.tree.member_node import MemberNode

KIND_ICONS = {
    "assembly": "📚",
    "namespace": "🗂️",
    "type": "📦",
    "method": "🔧",
    "field": "🔹",
    "property": "🔸",
    "event": "⚡",
}


def format_member_list(
    title: str,
    nodes: list[MemberNode],
    limit: int = 200,
    assembly: str | None = None,
) -> str:
    """
    Format a list of member nodes for display.

    Args:
        title: Heading text
        nodes: Nodes to list, in tree order
        limit: Maximum number to display
        assembly: Owning assembly path, shown when listing members

    Returns:
        Formatted string
    """
    result = f"**{title}: {len(nodes)} total**\n\n"
    if assembly is not None:
        result += f"Assembly: `{assembly}`\n\n"

    if not nodes:
        return result + "*(no members)*\n"

    for node in nodes[:limit]:
        icon = KIND_ICONS.get(node.kind.value, "❓")
        result += f"- {icon} **{node.name}** ({node.kind.value})"
        if node.is_expandable:
            result += " ▾" if node.children_populated else " ▸"
        result += f"\n  - Key: `{node.key}`\n"

    if len(nodes) > limit:
        result += f"\n*Showing {limit} of {len(nodes)} members*\n"

    return result


def format_code(node: MemberNode, code: str, language: str) -> str:
    """
    Format decompiled text as a fenced code block.

    Args:
        node: Member the code belongs to
        code: Decompiled text, passed through verbatim
        language: Decompile language value

    Returns:
        Formatted string
    """
    fence = "csharp" if language == "csharp" else "il"
    return (
        f"**{node.name}** ({node.kind.value}) - `{node.key}`\n\n"
        f"```{fence}\n{code}\n```\n"
    )


def format_diagnostics(diag: dict) -> str:
    """
    Format a diagnostics dict as a bullet list.

    Args:
        diag: Output of a diagnose() call

    Returns:
        Formatted string
    """
    result = "**Decompiler Engine Status**\n\n"

    for key, value in diag.items():
        label = key.replace('_', ' ').title()
        if isinstance(value, list):
            if not value:
                result += f"- {label}: (none)\n"
                continue
            result += f"- {label}:\n"
            for item in value:
                result += f"  - `{item}`\n"
        else:
            result += f"- {label}: `{value}`\n"

    return result
