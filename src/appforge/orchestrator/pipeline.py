"""Entry point that creates versions and drives them through the graph."""

import logging

from appforge.agents.annotator import Annotator, HeuristicAnnotator
from appforge.agents.coder import Coder
from appforge.collaborators.llm import ModelOracle
from appforge.collaborators.object_store import ObjectStore
from appforge.collaborators.sandbox import Sandbox
from appforge.config import Settings
from appforge.models import PipelineResult, Version, VersionProgress
from appforge.orchestrator.graph import build_graph
from appforge.orchestrator.state import VersionState, make_initial_state
from appforge.patcher import FileCache
from appforge.persistence import ProjectDatabase, init_version
from appforge.persistence import repository as repo

logger = logging.getLogger(__name__)

# Graph steps per retry round (generate + retry) plus the linear stages
_STEPS_PER_ROUND = 2
_FIXED_STEPS = 10


class VersionPipeline:
    """Creates versions and moves them forward to ``succeeded``.

    Each ``run`` owns a fresh FileCache and Coder, so concurrent runs for
    different versions share no mutable state.
    """

    def __init__(
        self,
        settings: Settings,
        db: ProjectDatabase,
        store: ObjectStore,
        sandbox: Sandbox,
        oracle: ModelOracle,
        annotator: Annotator | None = None,
    ):
        self.settings = settings
        self.db = db
        self.store = store
        self.sandbox = sandbox
        self.oracle = oracle
        self.annotator = annotator or HeuristicAnnotator(settings.analyzer)

    async def start_version(self, project_id: str, prompt: str) -> Version:
        """Create the next version of a project from its active version.

        A project without an active version (its first version, or one whose
        earlier versions all stopped before ``succeeded``) is seeded from the
        configured boilerplate preset, when one is set.

        Raises:
            RecordNotFoundError: If the project does not exist.
            ObjectNotFoundError: If the boilerplate preset is missing.
        """
        conn = self.db.conn
        repo.get_project(conn, project_id)
        parent = repo.get_active_version(conn, project_id)
        initial_files: dict[str, str] = {}
        if parent is None and self.settings.boilerplate_preset:
            initial_files = await self.store.copy_boilerplate(
                self.settings.boilerplate_preset, project_id
            )
            logger.info(
                "[pipeline:%s] Copied %d boilerplate files from preset %s",
                project_id,
                len(initial_files),
                self.settings.boilerplate_preset,
            )

        with self.db.transaction() as tx:
            return init_version(
                tx,
                project_id,
                prompt,
                parent_version_id=parent.id if parent is not None else None,
                initial_files=initial_files,
            )

    async def run(self, version_id: str) -> PipelineResult:
        """Drive a version from its persisted progress as far as it can go.

        Returns:
            PipelineResult with the progress reached, passed and failed paths
            and any stage errors.
        """
        version = repo.get_version(self.db.conn, version_id)
        if version.is_immutable:
            return self._result(version_id, None)

        tags = {
            record.path: record.version_tag
            for record in repo.list_version_files(self.db.conn, version_id)
        }

        async def load(path: str) -> str | None:
            if path not in tags:
                return None
            return await self.store.read_file(version.project_id, path, tags[path])

        coder = Coder(
            self.oracle,
            FileCache(load),
            project_id=version.project_id,
            max_tool_rounds=self.settings.max_tool_rounds,
            threshold=self.settings.similarity_threshold,
        )
        graph = build_graph(self.settings, self.db, self.store, self.sandbox, coder, self.annotator)
        state = make_initial_state(
            version.project_id,
            version_id,
            version.prompt,
            progress=version.progress,
            max_retries=self.settings.max_retries,
        )
        logger.info(
            "[pipeline:%s] Running version %d from %s",
            version.project_id,
            version.number,
            version.progress.value,
        )
        recursion_limit = _STEPS_PER_ROUND * (state["max_retries"] + 1) + _FIXED_STEPS
        final = await graph.ainvoke(state, config={"recursion_limit": recursion_limit})
        return self._result(version_id, final)

    async def generate(self, project_id: str, prompt: str) -> PipelineResult:
        """Create a version for ``prompt`` and run it."""
        version = await self.start_version(project_id, prompt)
        return await self.run(version.id)

    def _result(self, version_id: str, final: VersionState | None) -> PipelineResult:
        version = repo.get_version(self.db.conn, version_id)
        if version.progress is VersionProgress.SUCCEEDED:
            status = "succeeded"
        elif final is not None and final["aborted"]:
            status = "failed"
        else:
            status = "incomplete"
        return PipelineResult(
            project_id=version.project_id,
            version_id=version.id,
            progress=version.progress,
            passed_paths=version.changed_files,
            failed=version.failed_edits,
            errors=list(final["errors"]) if final is not None else [],
            parse_errors=list(final["parse_errors"]) if final is not None else [],
            status=status,
        )
