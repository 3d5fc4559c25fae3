"""State definition for the LangGraph version pipeline."""

import operator
from typing import Annotated, TypedDict

from appforge.config import MAX_RETRIES_LIMIT
from appforge.models import EditOutcome, PackageChanges, VersionProgress
from appforge.orchestrator.exceptions import VersionStateError


class VersionState(TypedDict):
    """State for one run of the version pipeline.

    Fields with Annotated[list, operator.add] reducers accumulate across nodes.
    All other fields use default overwrite semantics. ``progress`` mirrors the
    persisted version row, which stays the source of truth for resumption.
    """

    # Input
    project_id: str
    version_id: str
    prompt: str
    max_retries: int

    # Progress
    progress: str

    # Coding
    messages: list[dict[str, str]]
    last_response: str
    outcome: EditOutcome | None
    attempts: int
    deleted_files: list[str]
    package_changes: PackageChanges

    # Diagnostics (accumulating reducers)
    parse_errors: Annotated[list[str], operator.add]
    errors: Annotated[list[str], operator.add]
    aborted: bool


def make_initial_state(
    project_id: str,
    version_id: str,
    prompt: str,
    progress: VersionProgress = VersionProgress.INITIATED,
    max_retries: int = 3,
) -> VersionState:
    """Create the initial state for a pipeline run.

    Args:
        project_id: Project the version belongs to.
        version_id: Version to drive forward.
        prompt: The user's generation request.
        progress: Persisted progress of the version when the run starts.
        max_retries: Retry rounds for failed edits, clamped to
            ``[0, MAX_RETRIES_LIMIT]``.

    Returns:
        VersionState dict with all fields initialised to defaults.
    """
    clamped_retries = max(0, min(max_retries, MAX_RETRIES_LIMIT))
    return {
        "project_id": project_id,
        "version_id": version_id,
        "prompt": prompt,
        "max_retries": clamped_retries,
        "progress": progress.value,
        "messages": [{"role": "user", "content": prompt}],
        "last_response": "",
        "outcome": None,
        "attempts": 0,
        "deleted_files": [],
        "package_changes": PackageChanges(),
        "parse_errors": [],
        "errors": [],
        "aborted": False,
    }


def check_transition(current: VersionProgress, target: VersionProgress) -> None:
    """Ensure ``target`` is the state directly after ``current``.

    Raises:
        VersionStateError: If the transition skips, repeats or reverses a state.
    """
    if current is VersionProgress.SUCCEEDED or current.next() is not target:
        raise VersionStateError(
            f"Cannot move version from {current.value} to {target.value}"
        )
