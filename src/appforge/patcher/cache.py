"""Per-run file content cache."""

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

FileLoader = Callable[[str], Awaitable[str | None]]


class FileCache:
    """Lazily loaded, in-place updated file contents for one pipeline run.

    ``baseline`` keeps what was loaded from storage so callers can tell which
    paths were changed during the run.
    """

    def __init__(self, loader: FileLoader | None = None) -> None:
        self._loader = loader
        self._contents: dict[str, str] = {}
        self._baseline: dict[str, str | None] = {}

    async def get(self, path: str) -> str | None:
        """Return cached content, loading it on first access."""
        if path in self._contents:
            return self._contents[path]
        if path in self._baseline or self._loader is None:
            return None

        content = await self._loader(path)
        self._baseline[path] = content
        if content is not None:
            self._contents[path] = content
        logger.debug("Loaded %s into file cache (%s)", path, "hit" if content is not None else "miss")
        return content

    def peek(self, path: str) -> str | None:
        """Return cached content without loading."""
        return self._contents.get(path)

    def set(self, path: str, content: str) -> None:
        self._baseline.setdefault(path, None)
        self._contents[path] = content

    def discard(self, path: str) -> None:
        self._contents.pop(path, None)

    def baseline(self, path: str) -> str | None:
        return self._baseline.get(path)

    def changed_paths(self) -> list[str]:
        """Paths whose cached content differs from what was loaded."""
        return [
            path
            for path, content in self._contents.items()
            if self._baseline.get(path) != content
        ]

    def __contains__(self, path: object) -> bool:
        return path in self._contents
