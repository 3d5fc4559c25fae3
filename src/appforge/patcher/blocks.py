"""Extraction of SEARCH/REPLACE edit blocks from (streamed) model output.

Block format::

    src/lib/util.ts
    <<<<<<< SEARCH
    existing lines (empty for a new file)
    =======
    replacement lines
    >>>>>>> REPLACE

Markers accept 5 to 9 repetitions of the marker character. The path line may
be omitted when it is unchanged from the previous block.
"""

import logging
import re
from collections import deque

from appforge.models import Edit
from appforge.patcher.exceptions import EditBlockError

logger = logging.getLogger(__name__)

SEARCH = re.compile(r"^<{5,9} SEARCH\s*$")
DIVIDER = re.compile(r"^={5,9}\s*$")
REPLACE = re.compile(r"^>{5,9} REPLACE\s*$")

FILENAME_WINDOW = 3

_FILE_EXTENSION = re.compile(
    r"\.(js|jsx|ts|tsx|css|scss|html|json|md|py|rb|go|rs|java|php|c|cpp|h|swift)$",
    re.IGNORECASE,
)
# Path characters only, including route groups and dynamic segments
_PATH_SHAPE = re.compile(r"^/?[\w.@(\[][\w.@()\[\]/-]*$")

# Scanner states
_TEXT = "text"
_SEARCH = "search"
_REPLACE = "replace"
_SKIP = "skip"


def _is_marker(line: str) -> bool:
    return bool(SEARCH.match(line) or DIVIDER.match(line) or REPLACE.match(line))


def find_filename(lines: list[str]) -> str | None:
    """Return the nearest line (scanning backwards) that looks like a file path.

    Markdown fences, headings, HTML-like fragments, bold markers, edit-block
    markers and prose are rejected: a candidate must consist of path
    characters only. It is accepted when it ends in a known source extension,
    or when it contains a directory separator and the last path segment
    contains a dot.

    Args:
        lines: Candidate lines preceding a SEARCH marker, oldest first.

    Returns:
        The stripped path line, or None if no candidate qualifies.
    """
    for raw in reversed(lines):
        candidate = raw.strip()
        if (
            not candidate
            or _is_marker(candidate)
            or ">>>>>" in candidate
            or "<<<<<" in candidate
            or candidate.startswith("```")
            or candidate.startswith("<")
            or candidate.endswith(">")
            or "**" in candidate
            or not _PATH_SHAPE.match(candidate)
        ):
            continue

        if _FILE_EXTENSION.search(candidate):
            return candidate
        if "/" in candidate and "." in candidate[candidate.rindex("/"):]:
            return candidate

    return None


class EditBlockScanner:
    """Re-entrant scanner that turns arbitrary text chunks into edits.

    Chunks are buffered until a full line is available; a block is emitted as
    soon as its REPLACE marker line is complete. Malformed blocks are logged,
    recorded in ``errors`` and skipped without stopping the scan.
    """

    def __init__(self, project_id: str = "") -> None:
        self.project_id = project_id
        self.errors: list[str] = []
        self.current_path: str | None = None
        self._partial = ""
        self._state = _TEXT
        self._recent: deque[str] = deque(maxlen=FILENAME_WINDOW)
        self._block_path: str | None = None
        self._search_lines: list[str] = []
        self._replace_lines: list[str] = []

    def feed(self, chunk: str) -> list[Edit]:
        """Consume a chunk of model output and return the edits it completed."""
        self._partial += chunk
        *lines, self._partial = self._partial.split("\n")
        edits: list[Edit] = []
        for line in lines:
            edit = self._process_line(line)
            if edit is not None:
                edits.append(edit)
        return edits

    def close(self) -> list[Edit]:
        """Flush the trailing partial line and report an unterminated block."""
        edits: list[Edit] = []
        if self._partial:
            edit = self._process_line(self._partial)
            self._partial = ""
            if edit is not None:
                edits.append(edit)

        if self._state == _SEARCH:
            self._record_error(EditBlockError("Expected ======="))
        elif self._state == _REPLACE:
            self._record_error(EditBlockError("Expected >>>>>>> REPLACE"))
        self._reset_block()
        return edits

    def pending_block(self) -> tuple[str, str, str] | None:
        """Return ``(path, search, replace)`` of the block being streamed, if any."""
        if self._state not in (_SEARCH, _REPLACE) or self._block_path is None:
            return None
        return (
            self._block_path,
            "\n".join(self._search_lines),
            "\n".join(self._replace_lines),
        )

    def _process_line(self, line: str) -> Edit | None:
        stripped = line.strip()

        if self._state == _TEXT:
            if SEARCH.match(stripped):
                self._open_block()
            else:
                self._recent.append(line)
            return None

        if self._state == _SKIP:
            if REPLACE.match(stripped):
                self._state = _TEXT
            return None

        if self._state == _SEARCH:
            if DIVIDER.match(stripped):
                self._state = _REPLACE
            elif SEARCH.match(stripped) or REPLACE.match(stripped):
                self._record_error(EditBlockError("Expected ======="))
                self._reset_block()
                return self._process_line(line) if SEARCH.match(stripped) else None
            else:
                self._search_lines.append(line)
            return None

        # _REPLACE
        if REPLACE.match(stripped):
            edit = Edit(
                path=self._block_path or "",
                original="\n".join(self._search_lines),
                updated="\n".join(self._replace_lines),
            )
            self._reset_block()
            return edit
        if SEARCH.match(stripped):
            self._record_error(EditBlockError("Expected >>>>>>> REPLACE"))
            self._reset_block()
            return self._process_line(line)
        self._replace_lines.append(line)
        return None

    def _open_block(self) -> None:
        filename = find_filename(list(self._recent)) or self.current_path
        self._recent.clear()
        if not filename:
            self._record_error(EditBlockError("Missing filename before edit block"))
            self._state = _SKIP
            return
        self._block_path = filename
        self.current_path = filename
        self._search_lines = []
        self._replace_lines = []
        self._state = _SEARCH

    def _reset_block(self) -> None:
        self._state = _TEXT
        self._block_path = None
        self._search_lines = []
        self._replace_lines = []

    def _record_error(self, error: EditBlockError) -> None:
        message = f"Error parsing edit block: {error}"
        logger.warning("[coder:%s] %s", self.project_id, message)
        self.errors.append(message)


def extract_edits(content: str, project_id: str = "") -> list[Edit]:
    """Extract every well-formed edit block from a complete text."""
    scanner = EditBlockScanner(project_id=project_id)
    edits = scanner.feed(content)
    edits.extend(scanner.close())
    return edits
