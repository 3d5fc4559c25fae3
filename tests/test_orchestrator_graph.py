"""Unit tests for individual pipeline graph nodes and routers."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from appforge.agents.exceptions import GenerationError
from appforge.agents.annotator import HeuristicAnnotator
from appforge.config import Settings
from appforge.models import (
    Edit,
    EditOutcome,
    FailedEdit,
    GenerationResult,
    PackageChanges,
    PackageSpec,
    VersionProgress,
)
from appforge.orchestrator.graph import (
    abort_node,
    build_graph,
    make_commit_node,
    make_decide_fn,
    make_enrich_node,
    make_generate_node,
    make_next_fn,
    make_succeed_node,
    retry_node,
    route_start,
)
from appforge.orchestrator.recovery import RETRY_HEADER
from appforge.orchestrator.state import make_initial_state
from appforge.persistence import init_version
from appforge.persistence import repository as repo


# ---------------------------------------------------------------------------
# Helpers / shared fixtures
# ---------------------------------------------------------------------------

def make_failed(path: str = "src/a.ts") -> FailedEdit:
    return FailedEdit(edit=Edit(path=path, original="x", updated="y"), error="Failed to apply edit")


def make_state(**overrides):
    state = make_initial_state("proj-1", "ver-1", "Build it")
    state.update(overrides)
    return state


@pytest.fixture
def version(db, project):
    with db.transaction() as conn:
        return init_version(conn, project.id, "Build it")


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

class TestRouteStart:
    @pytest.mark.parametrize(
        "progress, expected",
        [
            (VersionProgress.INITIATED, "generate"),
            (VersionProgress.CODED, "deploy"),
            (VersionProgress.DEPLOYED, "enrich"),
            (VersionProgress.ENRICHED, "succeed"),
            (VersionProgress.SUCCEEDED, "done"),
        ],
    )
    def test_resume_point(self, progress, expected):
        assert route_start(make_state(progress=progress.value)) == expected


class TestDecideFn:
    def test_decide_fn_commit_when_clean(self):
        state = make_state(outcome=EditOutcome(passed=[Edit(path="a.ts", original="", updated="x")]))

        assert make_decide_fn()(state) == "commit"

    def test_decide_fn_retry(self):
        state = make_state(outcome=EditOutcome(failed=[make_failed()]), attempts=1)

        assert make_decide_fn()(state) == "retry"

    def test_decide_fn_commit_when_retries_exhausted(self):
        state = make_state(outcome=EditOutcome(failed=[make_failed()]), attempts=3)

        assert make_decide_fn()(state) == "commit"

    def test_decide_fn_abort(self):
        state = make_state(outcome=EditOutcome(failed=[make_failed()]), aborted=True)

        assert make_decide_fn()(state) == "abort"

    def test_next_fn(self):
        next_fn = make_next_fn("deploy_node")

        assert next_fn(make_state()) == "deploy_node"
        assert next_fn(make_state(aborted=True)) == "abort"


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class TestGenerateNode:
    def test_generate_node_folds_result(self, db, version):
        coder = MagicMock()
        coder.generate = AsyncMock(
            return_value=GenerationResult(
                outcome=EditOutcome(failed=[make_failed()]),
                text="reply",
                deleted_files=["src/old.ts"],
                package_changes=PackageChanges(installed=[PackageSpec(name="zod")]),
                parse_errors=["Error parsing edit block: Expected ======="],
            )
        )
        node = make_generate_node(db, coder)

        update = asyncio.run(node(make_state(version_id=version.id)))

        assert update["outcome"].failed_paths == ["src/a.ts"]
        assert update["last_response"] == "reply"
        assert update["deleted_files"] == ["src/old.ts"]
        assert [spec.name for spec in update["package_changes"].installed] == ["zod"]
        assert update["parse_errors"] == ["Error parsing edit block: Expected ======="]
        system, messages, existing = coder.generate.await_args.args
        assert "(empty project)" in system
        assert messages == [{"role": "user", "content": "Build it"}]
        assert existing == []
        assert coder.generate.await_args.kwargs == {"allow_empty": False}

    def test_generate_node_error(self, db, version):
        coder = MagicMock()
        coder.generate = AsyncMock(side_effect=GenerationError("Model returned an empty response"))
        node = make_generate_node(db, coder)

        update = asyncio.run(node(make_state(version_id=version.id)))

        assert update["aborted"] is True
        assert update["errors"] == ["generate_node error: Model returned an empty response"]


class TestRetryNode:
    def test_retry_node_increments_count(self):
        state = make_state(
            outcome=EditOutcome(failed=[make_failed()]),
            last_response="first reply",
            attempts=0,
        )

        update = retry_node(state)

        assert update["attempts"] == 1
        assert update["messages"][-2] == {"role": "assistant", "content": "first reply"}
        assert update["messages"][-1]["content"].startswith(RETRY_HEADER)
        assert len(state["messages"]) == 1


class TestCommitNode:
    def test_commit_node_persists_outcome(self, db, store, version):
        node = make_commit_node(db, store)
        state = make_state(
            project_id=version.project_id,
            version_id=version.id,
            outcome=EditOutcome(
                passed=[Edit(path="src/a.ts", original="", updated="export const a = 1;")],
                failed=[make_failed("src/b.ts")],
            ),
            package_changes=PackageChanges(installed=[PackageSpec(name="zod")]),
        )

        update = asyncio.run(node(state))

        assert update == {"progress": VersionProgress.CODED.value}
        stored = repo.get_version(db.conn, version.id)
        assert stored.progress is VersionProgress.CODED
        assert stored.changed_files == ["src/a.ts"]
        assert [failure.edit.path for failure in stored.failed_edits] == ["src/b.ts"]
        assert [pkg.name for pkg in repo.list_version_packages(db.conn, version.id)] == ["zod"]
        record = repo.list_version_files(db.conn, version.id)[0]
        assert asyncio.run(store.read_file(version.project_id, "src/a.ts", record.version_tag)) == (
            "export const a = 1;"
        )

    def test_commit_node_rejects_wrong_progress(self, db, store, version):
        with db.transaction() as conn:
            repo.update_version(conn, version.id, progress=VersionProgress.CODED)
        node = make_commit_node(db, store)

        update = asyncio.run(node(make_state(version_id=version.id, outcome=EditOutcome())))

        assert update["aborted"] is True
        assert update["errors"][0].startswith("commit_node error: Cannot move version from coded")


class TestLaterStages:
    def test_enrich_node_error(self, db, store, version):
        node = make_enrich_node(db, store, HeuristicAnnotator(), Settings())

        update = asyncio.run(node(make_state(version_id=version.id)))

        assert update["aborted"] is True
        assert update["errors"][0].startswith("enrich_node error:")

    def test_succeed_node_activates(self, db, version):
        with db.transaction() as conn:
            repo.update_version(conn, version.id, progress=VersionProgress.ENRICHED)
        node = make_succeed_node(db)

        update = asyncio.run(node(make_state(project_id=version.project_id, version_id=version.id)))

        assert update == {"progress": VersionProgress.SUCCEEDED.value}
        stored = repo.get_version(db.conn, version.id)
        assert stored.activated
        assert stored.summary["number"] == 1


class TestAbortNode:
    def test_abort_node_writes_summary(self):
        state = make_state(progress=VersionProgress.CODED.value, errors=["deploy_node error: boom"])

        update = abort_node(state)

        assert update == {
            "errors": ["ABORT: pipeline stopped for version ver-1 at progress coded. Errors: 1."]
        }


class TestBuildGraph:
    def test_build_graph_compiles(self, db, store):
        graph = build_graph(Settings(), db, store, AsyncMock(), MagicMock(), HeuristicAnnotator())

        assert hasattr(graph, "ainvoke")
