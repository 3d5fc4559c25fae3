"""Search/replace edit patcher."""

from appforge.patcher.apply import apply_edits, group_edits_by_path
from appforge.patcher.blocks import EditBlockScanner, extract_edits, find_filename
from appforge.patcher.cache import FileCache
from appforge.patcher.exceptions import EditBlockError, PatcherError
from appforge.patcher.matching import (
    DEFAULT_SIMILARITY_THRESHOLD,
    do_replace,
    find_similar_lines,
)

__all__ = [
    "DEFAULT_SIMILARITY_THRESHOLD",
    "EditBlockError",
    "EditBlockScanner",
    "FileCache",
    "PatcherError",
    "apply_edits",
    "do_replace",
    "extract_edits",
    "find_filename",
    "find_similar_lines",
    "group_edits_by_path",
]
