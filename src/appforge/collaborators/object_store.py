"""Blob storage for project files, keyed by project and path."""

import asyncio
import hashlib
import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

from appforge.collaborators.exceptions import CollaboratorError, ObjectNotFoundError

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Versioned key-value blob store for project files."""

    async def read_file(
        self, project_id: str, path: str, version_tag: str | None = None
    ) -> str | None:
        """Return the content at ``version_tag`` (latest when None), or None."""
        ...

    async def write_file(self, project_id: str, path: str, content: str) -> str:
        """Store content and return its version tag."""
        ...

    async def delete_file(self, project_id: str, path: str) -> None:
        ...

    async def copy_boilerplate(self, preset_id: str, project_id: str) -> dict[str, str]:
        """Copy a boilerplate preset into a project; returns path -> version tag."""
        ...


def content_tag(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def _safe_relative(path: str) -> PurePosixPath:
    relative = PurePosixPath(path.lstrip("/"))
    if not relative.parts or ".." in relative.parts:
        raise CollaboratorError(f"Invalid object path: {path}")
    return relative


class LocalObjectStore:
    """Filesystem-backed ObjectStore.

    Layout under ``root``::

        <project>/blobs/<path>/<tag>   immutable content per version tag
        <project>/latest/<path>        tag of the current content

    Deleting a file removes only its ``latest`` pointer, so older versions
    stay readable by tag.
    """

    def __init__(self, root: Path, boilerplate_root: Path | None = None) -> None:
        self.root = Path(root)
        self.boilerplate_root = Path(boilerplate_root) if boilerplate_root else None

    def _blob_path(self, project_id: str, path: str, tag: str) -> Path:
        return self.root / project_id / "blobs" / _safe_relative(path) / tag

    def _latest_path(self, project_id: str, path: str) -> Path:
        return self.root / project_id / "latest" / _safe_relative(path)

    def _read(self, project_id: str, path: str, version_tag: str | None) -> str | None:
        tag = version_tag
        if tag is None:
            pointer = self._latest_path(project_id, path)
            if not pointer.is_file():
                return None
            tag = pointer.read_text(encoding="utf-8").strip()
        blob = self._blob_path(project_id, path, tag)
        if not blob.is_file():
            return None
        return blob.read_text(encoding="utf-8")

    def _write(self, project_id: str, path: str, content: str) -> str:
        tag = content_tag(content)
        blob = self._blob_path(project_id, path, tag)
        blob.parent.mkdir(parents=True, exist_ok=True)
        blob.write_text(content, encoding="utf-8")
        pointer = self._latest_path(project_id, path)
        pointer.parent.mkdir(parents=True, exist_ok=True)
        pointer.write_text(tag, encoding="utf-8")
        return tag

    def _delete(self, project_id: str, path: str) -> None:
        self._latest_path(project_id, path).unlink(missing_ok=True)

    async def read_file(
        self, project_id: str, path: str, version_tag: str | None = None
    ) -> str | None:
        return await asyncio.to_thread(self._read, project_id, path, version_tag)

    async def write_file(self, project_id: str, path: str, content: str) -> str:
        tag = await asyncio.to_thread(self._write, project_id, path, content)
        logger.debug("Stored %s/%s at %s", project_id, path, tag)
        return tag

    async def delete_file(self, project_id: str, path: str) -> None:
        await asyncio.to_thread(self._delete, project_id, path)

    async def copy_boilerplate(self, preset_id: str, project_id: str) -> dict[str, str]:
        if self.boilerplate_root is None:
            raise ObjectNotFoundError("No boilerplate directory configured")
        preset_dir = self.boilerplate_root / preset_id
        if not preset_dir.is_dir():
            raise ObjectNotFoundError(f"Boilerplate preset not found: {preset_id}")

        tags: dict[str, str] = {}
        for source in sorted(p for p in preset_dir.rglob("*") if p.is_file()):
            relative = source.relative_to(preset_dir).as_posix()
            content = await asyncio.to_thread(source.read_text, encoding="utf-8")
            tags[relative] = await self.write_file(project_id, relative, content)
        logger.info("Copied boilerplate %s into %s (%d files)", preset_id, project_id, len(tags))
        return tags
