"""Pure helper functions for the edit retry loop.

All functions are stateless and have no external dependencies.
"""

from appforge.models import EditOutcome, FailedEdit, PackageChanges

RETRY_HEADER = "Some edits failed. Please fix the following issues and try again:"


def merge_outcomes(previous: EditOutcome | None, current: EditOutcome) -> EditOutcome:
    """Fold one retry round into the accumulated outcome.

    The latest round wins per path, except that a failure never displaces an
    earlier pass: the passed content is already in the file cache and is what
    gets committed. Failures of paths not attempted this round are kept.

    Args:
        previous: Outcome accumulated over earlier rounds, or None.
        current: Outcome of the round that just finished.

    Returns:
        A new EditOutcome; each path appears in at most one partition.
    """
    if previous is None:
        return current

    passed = {edit.path: edit for edit in previous.passed}
    for edit in current.passed:
        passed[edit.path] = edit

    failed: dict[str, FailedEdit] = {}
    for failure in previous.failed:
        if failure.edit.path not in passed:
            failed[failure.edit.path] = failure
    for failure in current.failed:
        if failure.edit.path not in passed:
            failed[failure.edit.path] = failure

    return EditOutcome(passed=list(passed.values()), failed=list(failed.values()))


def build_retry_message(outcome: EditOutcome) -> str:
    """Build the user message asking the model to fix failed edits.

    Args:
        outcome: Accumulated outcome with at least one failure.

    Returns:
        Message listing each failed path with its diagnostic and the paths
        that must not be rewritten.
    """
    sections = [RETRY_HEADER, ""]
    for failure in outcome.failed:
        sections.append(f"## {failure.edit.path}")
        sections.append(failure.error.strip())
        sections.append("")

    if outcome.passed:
        sections.append(
            "Important: You MUST NOT rewrite the files that passed: "
            + ", ".join(outcome.passed_paths)
        )
    else:
        sections.append("Important: Only resend SEARCH/REPLACE blocks for the files above.")
    return "\n".join(sections)


def should_retry(outcome: EditOutcome | None, attempts: int, max_retries: int) -> bool:
    """True when failures remain and the retry budget is not used up."""
    return outcome is not None and bool(outcome.failed) and attempts < max_retries


def merge_package_changes(previous: PackageChanges, current: PackageChanges) -> PackageChanges:
    """Fold the package tool calls of one round into the accumulated changes."""
    installed_now = {spec.name for spec in current.installed}
    removed_now = set(current.removed)

    installed = [
        spec
        for spec in previous.installed
        if spec.name not in installed_now and spec.name not in removed_now
    ]
    installed.extend(current.installed)

    removed = [name for name in previous.removed if name not in installed_now]
    removed.extend(name for name in current.removed if name not in removed)
    return PackageChanges(installed=installed, removed=removed)


def merge_deleted_files(previous: list[str], current: list[str]) -> list[str]:
    return [*previous, *(path for path in current if path not in previous)]
