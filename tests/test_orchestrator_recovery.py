"""Tests for the retry fold and package.json merging."""

import pytest

from appforge.models import (
    Edit,
    EditOutcome,
    FailedEdit,
    PackageChanges,
    PackageKind,
    PackageSpec,
)
from appforge.orchestrator.manifest import (
    merge_manifest,
    parse_manifest,
    render_manifest,
)
from appforge.orchestrator.recovery import (
    RETRY_HEADER,
    build_retry_message,
    merge_deleted_files,
    merge_outcomes,
    merge_package_changes,
    should_retry,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_pass(path: str, content: str = "ok") -> Edit:
    return Edit(path=path, original="", updated=content)


def make_fail(path: str, error: str = "Failed to apply edit") -> FailedEdit:
    return FailedEdit(edit=Edit(path=path, original="x", updated="y"), error=error)


# ---------------------------------------------------------------------------
# merge_outcomes
# ---------------------------------------------------------------------------

class TestMergeOutcomes:
    """Tests for folding retry rounds into one outcome."""

    def test_first_round_returned_as_is(self):
        current = EditOutcome(passed=[make_pass("a.ts")])

        assert merge_outcomes(None, current) is current

    def test_retry_pass_replaces_failure(self):
        previous = EditOutcome(passed=[make_pass("a.ts")], failed=[make_fail("b.ts")])
        current = EditOutcome(passed=[make_pass("b.ts", "fixed")])

        merged = merge_outcomes(previous, current)

        assert merged.passed_paths == ["a.ts", "b.ts"]
        assert merged.failed == []
        assert merged.content_for("b.ts") == "fixed"

    def test_failure_never_displaces_pass(self):
        previous = EditOutcome(passed=[make_pass("a.ts", "v1")])
        current = EditOutcome(failed=[make_fail("a.ts")])

        merged = merge_outcomes(previous, current)

        assert merged.passed_paths == ["a.ts"]
        assert merged.failed == []

    def test_later_pass_wins(self):
        previous = EditOutcome(passed=[make_pass("a.ts", "v1")])
        current = EditOutcome(passed=[make_pass("a.ts", "v2")])

        assert merge_outcomes(previous, current).content_for("a.ts") == "v2"

    def test_untouched_failures_kept_and_latest_error_wins(self):
        previous = EditOutcome(failed=[make_fail("a.ts", "old"), make_fail("b.ts", "b")])
        current = EditOutcome(failed=[make_fail("a.ts", "new")])

        merged = merge_outcomes(previous, current)

        assert {f.edit.path: f.error for f in merged.failed} == {"a.ts": "new", "b.ts": "b"}

    def test_each_path_in_one_partition(self):
        previous = EditOutcome(passed=[make_pass("a.ts")], failed=[make_fail("b.ts")])
        current = EditOutcome(passed=[make_pass("b.ts")], failed=[make_fail("c.ts")])

        merged = merge_outcomes(previous, current)

        assert set(merged.passed_paths).isdisjoint(merged.failed_paths)
        assert sorted(merged.passed_paths + merged.failed_paths) == ["a.ts", "b.ts", "c.ts"]


# ---------------------------------------------------------------------------
# Retry message and budget
# ---------------------------------------------------------------------------

class TestRetry:
    def test_message_lists_failures_and_passed_files(self):
        outcome = EditOutcome(
            passed=[make_pass("src/a.ts")],
            failed=[make_fail("src/b.ts", "Failed to apply edit to src/b.ts\n")],
        )

        message = build_retry_message(outcome)

        assert message.startswith(RETRY_HEADER)
        assert "## src/b.ts\nFailed to apply edit to src/b.ts" in message
        assert "You MUST NOT rewrite the files that passed: src/a.ts" in message

    def test_message_without_passed_files(self):
        message = build_retry_message(EditOutcome(failed=[make_fail("src/b.ts")]))

        assert "MUST NOT rewrite" not in message
        assert "Only resend SEARCH/REPLACE blocks" in message

    @pytest.mark.parametrize(
        "failed, attempts, max_retries, expected",
        [
            (True, 0, 3, True),
            (True, 2, 3, True),
            (True, 3, 3, False),
            (True, 0, 0, False),
            (False, 0, 3, False),
        ],
    )
    def test_should_retry(self, failed, attempts, max_retries, expected):
        outcome = EditOutcome(failed=[make_fail("a.ts")] if failed else [])

        assert should_retry(outcome, attempts, max_retries) is expected

    def test_should_retry_without_outcome(self):
        assert should_retry(None, 0, 3) is False


# ---------------------------------------------------------------------------
# Package changes and deletions
# ---------------------------------------------------------------------------

class TestMergePackageChanges:
    def test_reinstall_replaces_spec(self):
        previous = PackageChanges(installed=[PackageSpec(name="zod", version="^3.0.0")])
        current = PackageChanges(installed=[PackageSpec(name="zod", version="^3.23.0")])

        merged = merge_package_changes(previous, current)

        assert merged.installed == [PackageSpec(name="zod", version="^3.23.0")]

    def test_remove_cancels_earlier_install(self):
        previous = PackageChanges(installed=[PackageSpec(name="zod")])
        current = PackageChanges(removed=["zod"])

        merged = merge_package_changes(previous, current)

        assert merged.installed == []
        assert merged.removed == ["zod"]

    def test_install_cancels_earlier_remove(self):
        previous = PackageChanges(removed=["dayjs"])
        current = PackageChanges(installed=[PackageSpec(name="dayjs")])

        merged = merge_package_changes(previous, current)

        assert merged.removed == []
        assert [spec.name for spec in merged.installed] == ["dayjs"]

    def test_merge_deleted_files(self):
        assert merge_deleted_files(["a.ts"], ["b.ts", "a.ts"]) == ["a.ts", "b.ts"]


# ---------------------------------------------------------------------------
# package.json merging
# ---------------------------------------------------------------------------

class TestManifest:
    def test_parse_invalid_manifest(self):
        assert parse_manifest(None) == {}
        assert parse_manifest("{not json") == {}
        assert parse_manifest("[1, 2]") == {}

    def test_render_round_trip(self):
        manifest = {"name": "app", "dependencies": {"next": "15.0.0"}}

        assert parse_manifest(render_manifest(manifest)) == manifest
        assert render_manifest(manifest).endswith("}\n")

    def test_sections_by_kind(self):
        changes = PackageChanges(
            installed=[
                PackageSpec(name="zod", version="^3.23.0"),
                PackageSpec(name="vitest", kind=PackageKind.DEVELOPMENT),
            ]
        )

        merged = merge_manifest({"name": "app"}, changes)

        assert merged["dependencies"] == {"zod": "^3.23.0"}
        assert merged["devDependencies"] == {"vitest": "latest"}

    def test_existing_pin_kept_and_moved(self):
        base = {"devDependencies": {"zod": "3.22.4"}, "dependencies": {"next": "15.0.0"}}
        changes = PackageChanges(installed=[PackageSpec(name="zod"), PackageSpec(name="next")])

        merged = merge_manifest(base, changes)

        assert merged["dependencies"] == {"next": "15.0.0", "zod": "3.22.4"}
        assert merged["devDependencies"] == {}

    def test_removed_from_both_sections(self):
        base = {"dependencies": {"lodash": "4"}, "devDependencies": {"lodash": "4"}}

        merged = merge_manifest(base, PackageChanges(removed=["lodash"]))

        assert merged == {"dependencies": {}, "devDependencies": {}}

    def test_base_not_mutated(self):
        base = {"dependencies": {"next": "15.0.0"}}

        merge_manifest(base, PackageChanges(installed=[PackageSpec(name="zod")]))

        assert base == {"dependencies": {"next": "15.0.0"}}

