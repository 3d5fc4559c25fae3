"""LangGraph orchestrator graph for the version pipeline.

Wires the Coder, the object store, the sandbox and the enrichment step into a
StateGraph that moves a version through initiated -> coded -> deployed ->
enriched -> succeeded, with a bounded retry loop for failed edits.
"""

import logging
import posixpath
from typing import Awaitable, Callable

from langgraph.graph import END, START, StateGraph

from appforge.agents.annotator import Annotator
from appforge.agents.coder import Coder
from appforge.agents.prompts import build_coder_system_prompt, build_folder_structure
from appforge.collaborators.exceptions import ObjectNotFoundError
from appforge.collaborators.object_store import ObjectStore
from appforge.collaborators.sandbox import Sandbox
from appforge.config import Settings
from appforge.models import EditOutcome, SandboxFile, Version, VersionProgress
from appforge.orchestrator.enrichment import enrich_version, read_file_record
from appforge.orchestrator.exceptions import GraphBuildError, SandboxCommandError
from appforge.orchestrator.manifest import (
    MANIFEST_PATH,
    merge_manifest,
    parse_manifest,
    render_manifest,
)
from appforge.orchestrator.recovery import (
    build_retry_message,
    merge_deleted_files,
    merge_outcomes,
    merge_package_changes,
    should_retry,
)
from appforge.orchestrator.state import VersionState, check_transition
from appforge.persistence import ProjectDatabase
from appforge.persistence import repository as repo

logger = logging.getLogger(__name__)

AsyncNode = Callable[[VersionState], Awaitable[dict]]

# Constants
READ_MANIFEST_COMMAND = "cat package.json"

# Entry node for each persisted progress value
_RESUME_ROUTES = {
    VersionProgress.INITIATED.value: "generate",
    VersionProgress.CODED.value: "deploy",
    VersionProgress.DEPLOYED.value: "enrich",
    VersionProgress.ENRICHED.value: "succeed",
    VersionProgress.SUCCEEDED.value: "done",
}


def _node_error(node_name: str, state: VersionState, exc: Exception) -> dict:
    logger.error(
        "[pipeline:%s] %s failed at progress %s: %s",
        state["project_id"],
        node_name,
        state["progress"],
        exc,
    )
    return {"errors": [f"{node_name} error: {exc}"], "aborted": True}


def make_generate_node(db: ProjectDatabase, coder: Coder) -> AsyncNode:
    """Factory: returns a node closure that runs one coder round.

    The closure:
    1. Lists the version's files and declarations for the prompt
    2. Calls coder.generate(system, messages, existing_files); an empty
       reply is an error only on the first attempt
    3. Folds the round's outcome, deletions and package changes into state

    On error: returns {"errors": [str], "aborted": True}
    """

    async def generate_node(state: VersionState) -> dict:
        try:
            conn = db.conn
            version_id = state["version_id"]
            existing = [
                record.path
                for record in repo.list_version_files(conn, version_id)
                if record.path not in state["deleted_files"]
            ]
            declarations: dict[str, list[str]] = {}
            for decl in repo.list_version_declarations(conn, version_id):
                declarations.setdefault(decl.file_path, []).append(decl.name)

            system = build_coder_system_prompt(build_folder_structure(existing, declarations))
            result = await coder.generate(
                system, state["messages"], existing, allow_empty=state["attempts"] > 0
            )

            return {
                "outcome": merge_outcomes(state["outcome"], result.outcome),
                "last_response": result.text,
                "deleted_files": merge_deleted_files(state["deleted_files"], result.deleted_files),
                "package_changes": merge_package_changes(
                    state["package_changes"], result.package_changes
                ),
                "parse_errors": result.parse_errors,
            }
        except Exception as exc:
            return _node_error("generate_node", state, exc)

    return generate_node


def retry_node(state: VersionState) -> dict:
    """Feed the remaining failures back to the model as a new user message.

    Returns:
        {"messages": extended, "attempts": attempts + 1}
    """
    outcome = state["outcome"] or EditOutcome()
    attempts = state["attempts"] + 1
    logger.info(
        "[pipeline:%s] Retrying %d failed edits (attempt %d/%d)",
        state["project_id"],
        len(outcome.failed),
        attempts,
        state["max_retries"],
    )
    messages = [
        *state["messages"],
        {"role": "assistant", "content": state["last_response"] or "..."},
        {"role": "user", "content": build_retry_message(outcome)},
    ]
    return {"messages": messages, "attempts": attempts}


def make_commit_node(db: ProjectDatabase, store: ObjectStore) -> AsyncNode:
    """Factory: returns a node closure that persists the coding result.

    Passed files are written to the object store first, then every row
    change and the ``coded`` advance land in one transaction.
    """

    async def commit_node(state: VersionState) -> dict:
        try:
            project_id = state["project_id"]
            version_id = state["version_id"]
            outcome = state["outcome"] or EditOutcome()
            changes = state["package_changes"]
            passed_paths = set(outcome.passed_paths)
            deleted = [path for path in state["deleted_files"] if path not in passed_paths]

            tags: dict[str, str] = {}
            for edit in outcome.passed:
                tags[edit.path] = await store.write_file(project_id, edit.path, edit.updated)
            for path in deleted:
                await store.delete_file(project_id, path)

            with db.transaction() as conn:
                check_transition(repo.get_version(conn, version_id).progress, VersionProgress.CODED)
                for path, tag in tags.items():
                    repo.set_version_file(conn, version_id, repo.upsert_file(conn, project_id, path), tag)
                for path in deleted:
                    repo.remove_version_file(conn, version_id, path)
                for spec in changes.installed:
                    package = repo.upsert_package(conn, project_id, spec)
                    repo.add_version_package(conn, version_id, package.id)
                for name in changes.removed:
                    repo.remove_version_package(conn, version_id, name)
                repo.update_version(
                    conn,
                    version_id,
                    changed_files=list(tags),
                    deleted_files=deleted,
                    failed_edits=outcome.failed,
                    package_changes=changes,
                    progress=VersionProgress.CODED,
                )

            logger.info(
                "[pipeline:%s] Version coded: %d files changed, %d failed, %d deleted",
                project_id,
                len(tags),
                len(outcome.failed),
                len(deleted),
            )
            return {"progress": VersionProgress.CODED.value}
        except Exception as exc:
            return _node_error("commit_node", state, exc)

    return commit_node


async def _base_manifest(
    sandbox: Sandbox,
    version: Version,
    parent: Version | None,
    contents: dict[str, str],
) -> dict:
    """Manifest to merge into: the parent machine's, else the stored one."""
    if parent is not None and parent.machine_id:
        try:
            result = await sandbox.execute_command(
                version.project_id, parent.machine_id, READ_MANIFEST_COMMAND
            )
        except ObjectNotFoundError as exc:
            logger.debug("Parent machine unavailable, using stored manifest: %s", exc)
        else:
            if result.exit_code == 0:
                return parse_manifest(result.stdout)
    return parse_manifest(contents.get(MANIFEST_PATH))


def make_deploy_node(
    db: ProjectDatabase,
    store: ObjectStore,
    sandbox: Sandbox,
    settings: Settings,
) -> AsyncNode:
    """Factory: returns a node closure that reconciles the sandbox.

    The closure:
    1. Reads every file of the version from the object store
    2. Merges package changes into the carried-forward package.json
    3. Creates a machine for the version with every file
    4. Runs the install command; a non-zero exit aborts the run
    5. In one transaction, records the manifest file, the machine id and
       the ``deployed`` progress

    A failed deploy leaves the version rows untouched, so resuming creates
    a fresh machine.
    """

    async def deploy_node(state: VersionState) -> dict:
        try:
            project_id = state["project_id"]
            version_id = state["version_id"]
            version = repo.get_version(db.conn, version_id)
            check_transition(version.progress, VersionProgress.DEPLOYED)
            parent = (
                repo.get_version(db.conn, version.parent_version_id)
                if version.parent_version_id
                else None
            )

            contents: dict[str, str] = {}
            for record in repo.list_version_files(db.conn, version_id):
                contents[record.path] = await read_file_record(store, project_id, record)

            base = await _base_manifest(sandbox, version, parent, contents)
            manifest = merge_manifest(base, version.package_changes)
            manifest_tag = None
            if manifest:
                rendered = render_manifest(manifest)
                if contents.get(MANIFEST_PATH) != rendered:
                    manifest_tag = await store.write_file(project_id, MANIFEST_PATH, rendered)
                    contents[MANIFEST_PATH] = rendered

            files = [
                SandboxFile(guest_path=posixpath.join(settings.sandbox_workdir, path), content=body)
                for path, body in contents.items()
            ]
            machine_id = await sandbox.create(project_id, version_id, files)

            result = await sandbox.execute_command(project_id, machine_id, settings.install_command)
            if result.exit_code != 0:
                raise SandboxCommandError(settings.install_command, result.exit_code, result.stderr)

            with db.transaction() as conn:
                if manifest_tag is not None:
                    file_id = repo.upsert_file(conn, project_id, MANIFEST_PATH)
                    repo.set_version_file(conn, version_id, file_id, manifest_tag)
                repo.update_version(
                    conn, version_id, machine_id=machine_id, progress=VersionProgress.DEPLOYED
                )

            logger.info(
                "[pipeline:%s] Deployed %d files to machine %s", project_id, len(files), machine_id
            )
            return {"progress": VersionProgress.DEPLOYED.value}
        except Exception as exc:
            return _node_error("deploy_node", state, exc)

    return deploy_node


def make_enrich_node(
    db: ProjectDatabase,
    store: ObjectStore,
    annotator: Annotator,
    settings: Settings,
) -> AsyncNode:
    """Factory: returns a node closure that updates the declaration graph."""

    async def enrich_node(state: VersionState) -> dict:
        try:
            await enrich_version(db, store, annotator, state["version_id"], settings.analyzer)
            return {"progress": VersionProgress.ENRICHED.value}
        except Exception as exc:
            return _node_error("enrich_node", state, exc)

    return enrich_node


def make_succeed_node(db: ProjectDatabase) -> AsyncNode:
    """Factory: returns a node closure that finalizes the version.

    Stores the summary artifact, activates the version and advances it to
    ``succeeded``, after which it is immutable.
    """

    async def succeed_node(state: VersionState) -> dict:
        try:
            project_id = state["project_id"]
            version_id = state["version_id"]
            with db.transaction() as conn:
                version = repo.get_version(conn, version_id)
                check_transition(version.progress, VersionProgress.SUCCEEDED)
                summary = {
                    "number": version.number,
                    **repo.version_counts(conn, version_id),
                    "canvas_nodes": repo.count_canvas_nodes(conn, project_id),
                    "changed_files": version.changed_files,
                    "deleted_files": version.deleted_files,
                    "failed_paths": [failure.edit.path for failure in version.failed_edits],
                }
                repo.update_version(
                    conn, version_id, summary=summary, progress=VersionProgress.SUCCEEDED
                )
                repo.activate_version(conn, project_id, version_id)

            logger.info("[pipeline:%s] Version %d succeeded", project_id, version.number)
            return {"progress": VersionProgress.SUCCEEDED.value}
        except Exception as exc:
            return _node_error("succeed_node", state, exc)

    return succeed_node


def abort_node(state: VersionState) -> dict:
    """Write a diagnostic abort summary to the errors list.

    Returns:
        {"errors": [summary]} describing where the run stopped.
    """
    summary = (
        f"ABORT: pipeline stopped for version {state['version_id']} "
        f"at progress {state['progress']}. "
        f"Errors: {len(state['errors'])}."
    )
    return {"errors": [summary]}


def route_start(state: VersionState) -> str:
    """Router for START: resume at the first stage not yet completed."""
    return _RESUME_ROUTES[state["progress"]]


def make_decide_fn() -> Callable[[VersionState], str]:
    """Factory: returns router function for the post-generate conditional edge.

    Decision logic:
    1. node error -> "abort"
    2. failures remain and retries < max_retries -> "retry"
    3. else -> "commit" (remaining failures are stored on the version)

    Returns:
        Callable that returns one of: "commit", "retry", "abort"
    """

    def decide_fn(state: VersionState) -> str:
        if state["aborted"]:
            return "abort"
        if should_retry(state["outcome"], state["attempts"], state["max_retries"]):
            return "retry"
        return "commit"

    return decide_fn


def make_next_fn(next_node: str) -> Callable[[VersionState], str]:
    """Factory: returns a router that continues to ``next_node`` unless aborted."""

    def next_fn(state: VersionState) -> str:
        return "abort" if state["aborted"] else next_node

    return next_fn


def build_graph(
    settings: Settings,
    db: ProjectDatabase,
    store: ObjectStore,
    sandbox: Sandbox,
    coder: Coder,
    annotator: Annotator,
):
    """Build and compile the version pipeline StateGraph.

    Edge topology:
      START -> conditional(route_start) -> {generate, deploy, enrich, succeed, END}
      generate -> conditional(decide_fn) -> {commit, retry, abort}
      retry -> generate
      commit -> deploy -> enrich -> succeed -> END (each may divert to abort)
      abort -> END

    No checkpointer: the persisted ``progress`` is what a later run resumes from.

    Args:
        settings: Runtime settings (sandbox workdir, install command, analyzer).
        db: Connected project database.
        store: Object store for file contents.
        sandbox: Sandbox provisioning client.
        coder: Coder bound to this run's file cache.
        annotator: Annotator for new and updated declarations.

    Returns:
        CompiledStateGraph ready to ainvoke.

    Raises:
        GraphBuildError: If graph construction fails.
    """
    try:
        graph = StateGraph(VersionState)

        # Register nodes
        graph.add_node("generate_node", make_generate_node(db, coder))
        graph.add_node("retry_node", retry_node)
        graph.add_node("commit_node", make_commit_node(db, store))
        graph.add_node("deploy_node", make_deploy_node(db, store, sandbox, settings))
        graph.add_node("enrich_node", make_enrich_node(db, store, annotator, settings))
        graph.add_node("succeed_node", make_succeed_node(db))
        graph.add_node("abort_node", abort_node)

        graph.add_conditional_edges(
            START,
            route_start,
            {
                "generate": "generate_node",
                "deploy": "deploy_node",
                "enrich": "enrich_node",
                "succeed": "succeed_node",
                "done": END,
            },
        )

        # Conditional edge: generate -> {commit, retry, abort}
        graph.add_conditional_edges(
            "generate_node",
            make_decide_fn(),
            {
                "commit": "commit_node",
                "retry": "retry_node",
                "abort": "abort_node",
            },
        )
        graph.add_edge("retry_node", "generate_node")

        # Linear stages, each diverting to abort on error
        for node, next_node in (
            ("commit_node", "deploy_node"),
            ("deploy_node", "enrich_node"),
            ("enrich_node", "succeed_node"),
        ):
            graph.add_conditional_edges(
                node,
                make_next_fn(next_node),
                {next_node: next_node, "abort": "abort_node"},
            )
        graph.add_conditional_edges(
            "succeed_node",
            make_next_fn("done"),
            {"done": END, "abort": "abort_node"},
        )

        graph.add_edge("abort_node", END)

        return graph.compile()

    except Exception as exc:
        raise GraphBuildError(f"Failed to build pipeline graph: {exc}") from exc
