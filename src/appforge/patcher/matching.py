"""Line-based matching of SEARCH text against file content."""

import re

DEFAULT_SIMILARITY_THRESHOLD = 0.6

_LEADING_WHITESPACE = re.compile(r"^\s*")


def similarity_ratio(a: list[str], b: list[str]) -> float:
    """Fraction of positions where ``a`` and ``b`` hold equal lines."""
    total = max(len(a), len(b))
    if total == 0:
        return 1.0
    matches = sum(1 for left, right in zip(a, b) if left == right)
    return matches / total


def perfect_replace(
    whole_lines: list[str], part_lines: list[str], replace_lines: list[str]
) -> list[str] | None:
    """Splice ``replace_lines`` over the first exact occurrence of ``part_lines``."""
    part_len = len(part_lines)
    for i in range(len(whole_lines) - part_len + 1):
        if whole_lines[i:i + part_len] == part_lines:
            return whole_lines[:i] + replace_lines + whole_lines[i + part_len:]
    return None


def _leading_whitespace(line: str) -> str:
    match = _LEADING_WHITESPACE.match(line)
    return match.group(0) if match else ""


def reindent(lines: list[str], search_indent: str, file_indent: str) -> list[str]:
    """Move ``lines`` from the SEARCH indentation to the file's indentation.

    Lines that start with ``search_indent`` keep whatever indentation they add
    on top of it. Blank lines stay blank.
    """
    adjusted: list[str] = []
    for line in lines:
        if not line.strip():
            adjusted.append("")
        elif line.startswith(search_indent):
            adjusted.append(file_indent + line[len(search_indent):])
        else:
            adjusted.append(file_indent + line.lstrip())
    return adjusted


def replace_with_flexible_whitespace(
    whole_lines: list[str], part_lines: list[str], replace_lines: list[str]
) -> list[str] | None:
    """Like ``perfect_replace`` but compares lines with leading whitespace removed.

    On a match the replacement is re-indented from the SEARCH block's first
    line indentation to the matched file line's indentation.
    """
    stripped_part = [line.lstrip() for line in part_lines]
    part_len = len(part_lines)
    for i in range(len(whole_lines) - part_len + 1):
        chunk = whole_lines[i:i + part_len]
        if [line.lstrip() for line in chunk] == stripped_part:
            adjusted = reindent(
                replace_lines,
                search_indent=_leading_whitespace(part_lines[0]),
                file_indent=_leading_whitespace(chunk[0]),
            )
            return whole_lines[:i] + adjusted + whole_lines[i + part_len:]
    return None


def do_replace(content: str, original: str, updated: str) -> str | None:
    """Apply one SEARCH/REPLACE pair to ``content``.

    Returns:
        The new content, or None when the SEARCH text does not match. An empty
        SEARCH only matches an empty file (pure creation).
    """
    if not original.strip():
        return updated if not content else None

    whole_lines = content.split("\n")
    part_lines = original.split("\n")
    replace_lines = updated.split("\n")

    exact = perfect_replace(whole_lines, part_lines, replace_lines)
    if exact is not None:
        return "\n".join(exact)

    flexible = replace_with_flexible_whitespace(whole_lines, part_lines, replace_lines)
    if flexible is not None:
        return "\n".join(flexible)

    return None


def find_similar_lines(
    search_text: str,
    content: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> str | None:
    """Return the file window most similar to ``search_text``, if similar enough."""
    search_lines = search_text.split("\n")
    content_lines = content.split("\n")

    best_ratio = 0.0
    best_match: list[str] | None = None
    for i in range(len(content_lines) - len(search_lines) + 1):
        chunk = content_lines[i:i + len(search_lines)]
        ratio = similarity_ratio(search_lines, chunk)
        if ratio > best_ratio:
            best_ratio = ratio
            best_match = chunk

    if best_match is None or best_ratio < threshold:
        return None
    return "\n".join(best_match)


def describe_failure(
    path: str,
    original: str,
    updated: str,
    content: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> str:
    """Build the diagnostic for an edit whose SEARCH text did not match."""
    message = (
        f"Failed to apply edit to {path}\n"
        "The SEARCH section must exactly match an existing block of lines "
        "including all white space, comments, indentation, docstrings, etc\n"
    )

    similar = find_similar_lines(original, content, threshold)
    if similar:
        message += f"\nDid you mean to match these lines?\n{similar}\n"

    if updated.strip() and updated.strip() in content:
        message += (
            "\nAre you sure you need this SEARCH/REPLACE block?\n"
            f"The REPLACE lines are already in {path}!\n"
        )

    return message
