"""Coder agent: drives the model stream into applied edits."""

import logging
from typing import Any, Iterable

from pydantic import BaseModel, Field, ValidationError

from appforge.agents.exceptions import GenerationError
from appforge.collaborators.llm import ModelOracle, StreamFinish, TextDelta, ToolCall
from appforge.models import Edit, GenerationResult, PackageChanges, PackageKind, PackageSpec
from appforge.patcher import DEFAULT_SIMILARITY_THRESHOLD, EditBlockScanner, FileCache, apply_edits

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 8
CONTINUE_MESSAGE = "Continue exactly where you stopped. Do not repeat anything you already wrote."


class _PathsInput(BaseModel):
    paths: list[str] = Field(min_length=1)


class _InstallInput(BaseModel):
    packages: list[PackageSpec] = Field(min_length=1)


class _RemoveInput(BaseModel):
    names: list[str] = Field(min_length=1)


def get_tool_schemas() -> list[dict[str, Any]]:
    """Return the tool-use schemas offered to the coder model."""
    paths_schema = {
        "type": "object",
        "properties": {
            "paths": {
                "type": "array",
                "items": {"type": "string", "description": "Project-relative path"},
            }
        },
        "required": ["paths"],
    }
    return [
        {
            "name": "read_files",
            "description": "Read the current content of project files",
            "input_schema": paths_schema,
        },
        {
            "name": "delete_files",
            "description": "Delete project files",
            "input_schema": paths_schema,
        },
        {
            "name": "install_packages",
            "description": "Install npm packages into the project",
            "input_schema": {
                "type": "object",
                "properties": {
                    "packages": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "kind": {
                                    "type": "string",
                                    "enum": [kind.value for kind in PackageKind],
                                },
                                "version": {
                                    "type": "string",
                                    "description": "Version range, defaults to latest",
                                },
                            },
                            "required": ["name", "kind"],
                        },
                    }
                },
                "required": ["packages"],
            },
        },
        {
            "name": "remove_packages",
            "description": "Remove npm packages from the project",
            "input_schema": {
                "type": "object",
                "properties": {"names": {"type": "array", "items": {"type": "string"}}},
                "required": ["names"],
            },
        },
    ]


class Coder:
    """Runs one generation round against the model and applies its edits.

    Edit blocks are scanned from the stream as it arrives and applied once
    the round is complete, so every path is patched all-or-nothing. Tool
    calls and ``length`` finishes resume the stream with a new message, up
    to ``max_tool_rounds`` times.
    """

    def __init__(
        self,
        oracle: ModelOracle,
        cache: FileCache,
        project_id: str = "",
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self.oracle = oracle
        self.cache = cache
        self.project_id = project_id
        self.max_tool_rounds = max_tool_rounds
        self.threshold = threshold

    async def generate(
        self,
        system: str,
        messages: list[dict[str, str]],
        existing_files: Iterable[str],
        allow_empty: bool = False,
    ) -> GenerationResult:
        """Stream a response, run requested tools and apply the edits.

        Args:
            system: System prompt.
            messages: Conversation so far; not mutated.
            existing_files: Paths present in the version being built.
            allow_empty: Treat an empty reply as a round without edits
                instead of an error; used for retry rounds.

        Returns:
            GenerationResult with the edit outcome, deleted files, package
            changes and any block parse errors.

        Raises:
            GenerationError: If the model produced neither text nor tool calls
                and ``allow_empty`` is false.
            ModelOracleError: Propagated from the oracle.
        """
        conversation = list(messages)
        known_files = set(existing_files)
        scanner = EditBlockScanner(project_id=self.project_id)
        edits: list[Edit] = []
        transcript: list[str] = []
        deleted: list[str] = []
        changes = PackageChanges()
        rounds = 0

        while True:
            text_parts: list[str] = []
            tool_calls: list[ToolCall] = []
            finish = "stop"

            async for event in self.oracle.stream_text(system, conversation, get_tool_schemas()):
                if isinstance(event, TextDelta):
                    text_parts.append(event.text)
                    edits.extend(scanner.feed(event.text))
                elif isinstance(event, ToolCall):
                    tool_calls.append(event)
                elif isinstance(event, StreamFinish):
                    finish = event.reason

            text = "".join(text_parts)
            transcript.append(text)
            if not text and not tool_calls and rounds == 0 and not allow_empty:
                raise GenerationError("Model returned an empty response")

            if finish not in ("tool_calls", "length"):
                break
            if rounds >= self.max_tool_rounds:
                logger.warning(
                    "[coder:%s] Stopping after %d continuation rounds", self.project_id, rounds
                )
                break
            rounds += 1

            if finish == "length":
                logger.debug("[coder:%s] Output truncated, continuing", self.project_id)
                conversation.append({"role": "assistant", "content": text or "..."})
                conversation.append({"role": "user", "content": CONTINUE_MESSAGE})
                continue

            results = [
                await self._run_tool(call, known_files, deleted, changes) for call in tool_calls
            ]
            conversation.append({"role": "assistant", "content": text or "(tool calls)"})
            conversation.append({"role": "user", "content": "\n\n".join(results)})

        edits.extend(scanner.close())
        outcome = await apply_edits(
            known_files, edits, self.cache, project_id=self.project_id, threshold=self.threshold
        )
        logger.info(
            "[coder:%s] Round finished: %d passed, %d failed, %d deleted",
            self.project_id,
            len(outcome.passed),
            len(outcome.failed),
            len(deleted),
        )
        return GenerationResult(
            outcome=outcome,
            deleted_files=deleted,
            package_changes=changes,
            parse_errors=list(scanner.errors),
            text="".join(transcript),
        )

    async def _run_tool(
        self,
        call: ToolCall,
        known_files: set[str],
        deleted: list[str],
        changes: PackageChanges,
    ) -> str:
        """Execute one tool call and return its result text for the model."""
        logger.info("[coder:%s] Tool call %s", self.project_id, call.name)
        try:
            if call.name == "read_files":
                args = _PathsInput.model_validate(call.arguments)
                return await self._read_files(args.paths)

            if call.name == "delete_files":
                args = _PathsInput.model_validate(call.arguments)
                for path in args.paths:
                    known_files.discard(path)
                    self.cache.discard(path)
                    if path not in deleted:
                        deleted.append(path)
                return f"[delete_files] Deleted: {', '.join(args.paths)}"

            if call.name == "install_packages":
                args = _InstallInput.model_validate(call.arguments)
                for spec in args.packages:
                    changes.installed = [p for p in changes.installed if p.name != spec.name]
                    changes.installed.append(spec)
                    if spec.name in changes.removed:
                        changes.removed.remove(spec.name)
                names = ", ".join(f"{p.name}@{p.version} ({p.kind.value})" for p in args.packages)
                return f"[install_packages] Installed: {names}"

            if call.name == "remove_packages":
                args = _RemoveInput.model_validate(call.arguments)
                for name in args.names:
                    changes.installed = [p for p in changes.installed if p.name != name]
                    if name not in changes.removed:
                        changes.removed.append(name)
                return f"[remove_packages] Removed: {', '.join(args.names)}"

        except ValidationError as exc:
            logger.warning("[coder:%s] Invalid %s arguments: %s", self.project_id, call.name, exc)
            return f"[{call.name}] Invalid arguments: {exc.errors(include_url=False)}"

        return f"[{call.name}] Unknown tool"

    async def _read_files(self, paths: list[str]) -> str:
        sections: list[str] = []
        for path in paths:
            content = await self.cache.get(path)
            if content is None:
                sections.append(f"### {path}\nError reading {path}: File not found")
            else:
                sections.append(f"### {path}\n```\n{content}\n```")
        return "[read_files]\n" + "\n\n".join(sections)
