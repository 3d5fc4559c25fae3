"""Sandbox machines that run the generated project."""

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol

from appforge.collaborators.exceptions import CollaboratorError, ObjectNotFoundError
from appforge.models import CommandResult, SandboxFile

logger = logging.getLogger(__name__)


class Sandbox(Protocol):
    """Remote machine provisioning.

    Commands run in the machine's project working directory.
    """

    async def create(self, project_id: str, version_id: str, files: list[SandboxFile]) -> str:
        """Create a machine holding ``files``; returns its machine id."""
        ...

    async def update(self, project_id: str, machine_id: str, files: list[SandboxFile]) -> None:
        ...

    async def execute_command(
        self, project_id: str, machine_id: str, command: str
    ) -> CommandResult:
        ...


class LocalSandbox:
    """Sandbox backed by local directories and shell subprocesses.

    A machine is ``<root>/<project>/<machine id>``; guest paths are placed
    below it and commands run in ``<machine>/<workdir>``.
    """

    def __init__(self, root: Path, workdir: str = "/app", command_timeout: float = 600.0) -> None:
        self.root = Path(root)
        self.workdir = workdir
        self.command_timeout = command_timeout

    def _machine_dir(self, project_id: str, machine_id: str) -> Path:
        return self.root / project_id / machine_id

    def _write_files(self, machine_dir: Path, files: list[SandboxFile]) -> None:
        for file in files:
            relative = PurePosixPath(file.guest_path.lstrip("/"))
            if ".." in relative.parts:
                raise CollaboratorError(f"Invalid guest path: {file.guest_path}")
            target = machine_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(file.content, encoding="utf-8")

    async def create(self, project_id: str, version_id: str, files: list[SandboxFile]) -> str:
        machine_id = f"m-{uuid.uuid4().hex[:12]}"
        machine_dir = self._machine_dir(project_id, machine_id)
        (machine_dir / self.workdir.lstrip("/")).mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._write_files, machine_dir, files)
        logger.info(
            "[sandbox:%s] Created machine %s for version %s (%d files)",
            project_id, machine_id, version_id, len(files),
        )
        return machine_id

    async def update(self, project_id: str, machine_id: str, files: list[SandboxFile]) -> None:
        machine_dir = self._machine_dir(project_id, machine_id)
        if not machine_dir.is_dir():
            raise ObjectNotFoundError(f"Machine not found: {machine_id}")
        await asyncio.to_thread(self._write_files, machine_dir, files)
        logger.info("[sandbox:%s] Updated machine %s (%d files)", project_id, machine_id, len(files))

    async def execute_command(
        self, project_id: str, machine_id: str, command: str
    ) -> CommandResult:
        machine_dir = self._machine_dir(project_id, machine_id)
        if not machine_dir.is_dir():
            raise ObjectNotFoundError(f"Machine not found: {machine_id}")

        cwd = machine_dir / self.workdir.lstrip("/")
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return CommandResult(exit_code=124, stderr=f"Command timed out: {command}")

        logger.debug("[sandbox:%s] %s -> %s", project_id, command, process.returncode)
        return CommandResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
