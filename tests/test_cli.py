"""Unit tests for the CLI module (appforge.cli.main)."""

from __future__ import annotations

import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from appforge.cli.main import (
    build_parser,
    format_result_json,
    determine_exit_code,
    list_project_files,
    main,
    EXIT_SUCCESS,
    EXIT_INVALID_INPUT,
    EXIT_AGENT_ERROR,
    EXIT_ORCHESTRATOR_ERROR,
    EXIT_GRAPH_ABORT,
    EXIT_UNEXPECTED,
    EXIT_EDITS_FAILED,
    EXIT_KEYBOARD_INTERRUPT,
    ABORT_PREFIX,
)
from appforge.agents.exceptions import GenerationError
from appforge.collaborators.exceptions import ModelOracleError
from appforge.models import Edit, FailedEdit, PipelineResult, VersionProgress
from appforge.orchestrator.exceptions import GraphBuildError
from appforge.persistence import RecordNotFoundError

from conftest import create_block, edit_block


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _result(**overrides) -> PipelineResult:
    """Return a minimal successful pipeline result."""
    base = {
        "project_id": "p",
        "version_id": "v",
        "progress": VersionProgress.SUCCEEDED,
        "passed_paths": ["src/a.ts"],
        "status": "succeeded",
    }
    base.update(overrides)
    return PipelineResult(**base)


def _failure(path: str = "src/b.ts") -> FailedEdit:
    return FailedEdit(edit=Edit(path=path, original="x", updated="y"), error="Failed to apply edit")


_PIPELINE = "appforge.cli.main._run_pipeline"


# ---------------------------------------------------------------------------
# TestBuildParser
# ---------------------------------------------------------------------------

class TestBuildParser:
    def test_parser_patch(self):
        args = build_parser().parse_args(["patch", "edits.txt", "--root", "app", "--write", "--json"])

        assert args.command == "patch"
        assert args.edits == "edits.txt"
        assert args.root == "app"
        assert args.write is True
        assert args.output_json is True

    def test_parser_generate_flags(self):
        args = build_parser().parse_args(
            [
                "generate",
                "Add a login page",
                "--project",
                "p1",
                "--max-retries",
                "5",
                "--llm-provider",
                "openai",
                "--no-boilerplate",
                "--model-annotations",
            ]
        )

        assert args.prompt == "Add a login page"
        assert args.project == "p1"
        assert args.max_retries == 5
        assert args.llm_provider == "openai"
        assert args.no_boilerplate is True
        assert args.model_annotations is True

    def test_parser_defaults(self):
        args = build_parser().parse_args(["resume", "v1"])

        assert args.version_id == "v1"
        assert args.max_retries is None
        assert args.model is None
        assert args.data_dir is None
        assert args.output_json is False

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_generate_requires_project(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["generate", "prompt"])


# ---------------------------------------------------------------------------
# patch and declarations commands
# ---------------------------------------------------------------------------

class TestPatchCommand:
    def test_patch_writes_passed_files(self, tmp_path, capsys):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.ts").write_text("const a = 1;\n")
        edits = tmp_path / "edits.txt"
        edits.write_text(
            edit_block("src/a.ts", "const a = 1;", "const a = 2;")
            + create_block("src/b.ts", "export const b = 1;")
        )

        code = main(["patch", str(edits), "--root", str(tmp_path), "--write"])

        assert code == EXIT_SUCCESS
        assert (tmp_path / "src" / "a.ts").read_text() == "const a = 2;\n"
        assert (tmp_path / "src" / "b.ts").read_text() == "export const b = 1;"
        assert "+ src/a.ts" in capsys.readouterr().out

    def test_patch_json_reports_failures(self, tmp_path, capsys):
        (tmp_path / "a.ts").write_text("const a = 1;\n")
        edits = tmp_path / "edits.txt"
        edits.write_text(edit_block("a.ts", "missing", "x"))

        code = main(["patch", str(edits), "--root", str(tmp_path), "--json"])

        payload = json.loads(capsys.readouterr().out)
        assert code == EXIT_EDITS_FAILED
        assert payload["passed"] == []
        assert payload["failed"][0]["edit"]["path"] == "a.ts"
        assert payload["parse_errors"] == []
        assert (tmp_path / "a.ts").read_text() == "const a = 1;\n"

    def test_patch_diff(self, tmp_path, capsys):
        (tmp_path / "a.ts").write_text("const a = 1;\n")
        edits = tmp_path / "edits.txt"
        edits.write_text(edit_block("a.ts", "const a = 1;", "const a = 2;"))

        main(["patch", str(edits), "--root", str(tmp_path), "--diff"])

        out = capsys.readouterr().out
        assert "-const a = 1;" in out
        assert "+const a = 2;" in out

    def test_patch_missing_edits_file(self, tmp_path):
        assert main(["patch", str(tmp_path / "nope.txt"), "--root", str(tmp_path)]) == EXIT_INVALID_INPUT

    def test_patch_invalid_root(self, tmp_path):
        edits = tmp_path / "edits.txt"
        edits.write_text("")

        assert main(["patch", str(edits), "--root", str(tmp_path / "nope")]) == EXIT_INVALID_INPUT

    def test_list_project_files_skips_ignored_dirs(self, tmp_path):
        (tmp_path / "node_modules" / "x").mkdir(parents=True)
        (tmp_path / "node_modules" / "x" / "index.js").write_text("")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.ts").write_text("")

        assert list_project_files(tmp_path) == ["src/a.ts"]


class TestDeclarationsCommand:
    def test_declarations_json(self, tmp_path, capsys):
        previous = tmp_path / "old.ts"
        previous.write_text("export const a = 1;\nexport const gone = 2;\n")
        current = tmp_path / "new.ts"
        current.write_text("export const a = 2;\nexport function b() {}\n")

        code = main(
            ["declarations", str(current), "--previous", str(previous), "--path", "src/x.ts", "--json"]
        )

        payload = json.loads(capsys.readouterr().out)
        assert code == EXIT_SUCCESS
        assert list(payload["newDeclarations"]) == ["b"]
        assert list(payload["updatedDeclarations"]) == ["a"]
        assert list(payload["deletedDeclarations"]) == ["gone"]

    def test_declarations_human(self, tmp_path, capsys):
        current = tmp_path / "a.ts"
        current.write_text('import { z } from "zod";\nexport const schema = z.string();\n')

        code = main(["declarations", str(current)])

        out = capsys.readouterr().out
        assert code == EXIT_SUCCESS
        assert "New (1):" in out
        assert "external zod: z" in out


# ---------------------------------------------------------------------------
# TestOutputFormatting
# ---------------------------------------------------------------------------

class TestOutputFormatting:
    def test_format_result_json_valid(self):
        parsed = json.loads(format_result_json(_result(failed=[_failure()])))

        assert parsed["progress"] == "succeeded"
        assert parsed["failed"][0]["edit"]["path"] == "src/b.ts"

    def test_format_result_json_plain_dict(self):
        assert json.loads(format_result_json({"a": 1})) == {"a": 1}

    def test_determine_exit_code_success(self):
        assert determine_exit_code(_result()) == EXIT_SUCCESS

    def test_determine_exit_code_abort(self):
        result = _result(status="failed", errors=["deploy_node error: x", f"{ABORT_PREFIX} stopped"])

        assert determine_exit_code(result) == EXIT_GRAPH_ABORT

    def test_determine_exit_code_incomplete(self):
        result = _result(status="incomplete", progress=VersionProgress.CODED)

        assert determine_exit_code(result) == EXIT_ORCHESTRATOR_ERROR

    def test_determine_exit_code_failed_edits(self):
        assert determine_exit_code(_result(failed=[_failure()])) == EXIT_EDITS_FAILED

    def test_determine_exit_code_no_false_abort(self):
        result = _result(errors=[f"note mentioning {ABORT_PREFIX} mid-string"])

        assert determine_exit_code(result) == EXIT_ORCHESTRATOR_ERROR


# ---------------------------------------------------------------------------
# TestErrorHandling
# ---------------------------------------------------------------------------

class TestErrorHandling:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (GenerationError("bad reply"), EXIT_AGENT_ERROR),
            (GraphBuildError("bad graph"), EXIT_ORCHESTRATOR_ERROR),
            (RecordNotFoundError("Version not found: v"), EXIT_INVALID_INPUT),
            (ModelOracleError("No Anthropic or OpenAI API key found"), EXIT_ORCHESTRATOR_ERROR),
            (RuntimeError("boom"), EXIT_UNEXPECTED),
        ],
    )
    def test_main_errors(self, exc, expected):
        with patch(_PIPELINE, AsyncMock(side_effect=exc)):
            assert main(["resume", "v"]) == expected

    def test_main_keyboard_interrupt(self):
        with patch(_PIPELINE, MagicMock()), patch("asyncio.run", side_effect=KeyboardInterrupt):
            assert main(["resume", "v"]) == EXIT_KEYBOARD_INTERRUPT

    def test_main_error_message_on_stderr(self, capsys):
        with patch(_PIPELINE, AsyncMock(side_effect=GenerationError("bad reply"))):
            main(["resume", "v"])

        assert "Agent error: bad reply" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# TestMainHappyPath
# ---------------------------------------------------------------------------

class TestMainHappyPath:
    def test_main_happy_path(self, capsys):
        with patch(_PIPELINE, AsyncMock(return_value=_result())):
            code = main(["generate", "Add a page", "--project", "p"])

        out = capsys.readouterr().out
        assert code == EXIT_SUCCESS
        assert "Status: succeeded" in out
        assert "+ src/a.ts" in out

    def test_main_json_output(self, capsys):
        with patch(_PIPELINE, AsyncMock(return_value=_result())):
            code = main(["generate", "Add a page", "--project", "p", "--json"])

        assert code == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["version_id"] == "v"
