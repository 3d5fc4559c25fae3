"""Unified diff rendering for patched files."""

import difflib


def unified_diff(file_path: str, before: str, after: str) -> str:
    """Render a git-style unified diff of one file.

    Args:
        file_path: Project-relative path used in the ``a/`` and ``b/`` headers.
        before: Content before patching ("" for a created file).
        after: Content after patching.

    Returns:
        The diff text, or "" when the contents are identical.
    """
    if before == after:
        return ""

    lines = difflib.unified_diff(
        before.splitlines(),
        after.splitlines(),
        fromfile="/dev/null" if not before else f"a/{file_path}",
        tofile=f"b/{file_path}",
        lineterm="",
    )
    return "\n".join(lines)
