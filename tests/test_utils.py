"""Tests for the diff and parser utilities, settings and logging setup."""

import logging
import os

import pytest

from appforge.config import MAX_RETRIES_LIMIT, Settings, clamp_retries
from appforge.logging_config import get_logger, setup_logging
from appforge.utils import unified_diff
from appforge.utils.ast_parser import (
    contains_jsx,
    get_language_for_file,
    get_parser,
    is_supported_source,
    parse_source,
    string_value,
)


# ---------------------------------------------------------------------------
# text_diff
# ---------------------------------------------------------------------------

class TestUnifiedDiff:
    def test_identical_content(self):
        assert unified_diff("a.ts", "x\n", "x\n") == ""

    def test_modified_file_headers(self):
        diff = unified_diff("src/a.ts", "const a = 1;\n", "const a = 2;\n")

        assert diff.startswith("--- a/src/a.ts\n+++ b/src/a.ts")
        assert "-const a = 1;" in diff
        assert "+const a = 2;" in diff

    def test_created_file(self):
        diff = unified_diff("src/new.ts", "", "export {};\n")

        assert diff.startswith("--- /dev/null\n+++ b/src/new.ts")


# ---------------------------------------------------------------------------
# ast_parser
# ---------------------------------------------------------------------------

class TestAstParser:
    @pytest.mark.parametrize(
        "path, language",
        [
            ("src/a.ts", "typescript"),
            ("src/page.tsx", "tsx"),
            ("lib/index.js", "javascript"),
            ("lib/widget.jsx", "javascript"),
            ("config.mjs", "javascript"),
        ],
    )
    def test_language_for_file(self, path, language):
        assert get_language_for_file(path) == language
        assert is_supported_source(path)

    def test_unsupported_extension(self):
        assert not is_supported_source("package.json")
        with pytest.raises(ValueError, match="Unsupported file extension"):
            get_language_for_file("styles.css")

    def test_unknown_language(self):
        with pytest.raises(ValueError, match="Unsupported language"):
            get_parser("ruby")

    def test_syntax_errors_do_not_raise(self):
        tree = parse_source("export const = ;", "a.ts")

        assert tree.root_node.has_error

    def test_contains_jsx(self):
        tsx = parse_source("export const A = () => <div />;", "a.tsx")
        ts = parse_source("export const a = 1;", "a.ts")

        assert contains_jsx(tsx.root_node)
        assert not contains_jsx(ts.root_node)

    def test_string_value(self):
        tree = parse_source('import x from "zod";', "a.ts")
        source = tree.root_node.children[0].child_by_field_name("source")

        assert string_value(source) == "zod"
        assert string_value(None) == ""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestSettings:
    def test_from_env_reads_prefixed_values(self, monkeypatch, tmp_path):
        monkeypatch.setenv("APPFORGE_MAX_RETRIES", "5")
        monkeypatch.setenv("APPFORGE_INSTALL_COMMAND", "npm install")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

        settings = Settings.from_env(env_file=str(tmp_path / "missing.env"))

        assert settings.max_retries == 5
        assert settings.install_command == "npm install"
        assert settings.anthropic_api_key == "sk-test"

    def test_overrides_win_and_none_ignored(self, monkeypatch, tmp_path):
        monkeypatch.setenv("APPFORGE_MODEL", "from-env")

        settings = Settings.from_env(env_file=str(tmp_path / "missing.env"), model="from-flag", data_dir=None)

        assert settings.model == "from-flag"
        assert settings.data_dir == Settings().data_dir

    def test_from_env_clamps_retries(self, monkeypatch, tmp_path):
        monkeypatch.setenv("APPFORGE_MAX_RETRIES", "99")

        settings = Settings.from_env(env_file=str(tmp_path / "missing.env"))

        assert settings.max_retries == MAX_RETRIES_LIMIT

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("APPFORGE_SANDBOX_WORKDIR", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("APPFORGE_SANDBOX_WORKDIR=/srv\n")

        try:
            settings = Settings.from_env(env_file=str(env_file))
        finally:
            os.environ.pop("APPFORGE_SANDBOX_WORKDIR", None)

        assert settings.sandbox_workdir == "/srv"

    @pytest.mark.parametrize("value, expected", [(-1, 0), (0, 0), (3, 3), (11, MAX_RETRIES_LIMIT)])
    def test_clamp_retries(self, value, expected):
        assert clamp_retries(value) == expected

    def test_resolved_model(self):
        settings = Settings()

        assert settings.resolved_model("anthropic") == settings.model
        assert settings.resolved_model("openai") == "gpt-4o-mini"

    def test_derived_paths(self, tmp_path):
        settings = Settings(data_dir=tmp_path)

        assert settings.database_path == tmp_path / "appforge.db"
        assert settings.object_store_dir == tmp_path / "objects"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class TestLogging:
    @pytest.mark.parametrize(
        "verbose, quiet, level",
        [(False, False, logging.INFO), (True, False, logging.DEBUG), (False, True, logging.ERROR)],
    )
    def test_levels(self, verbose, quiet, level):
        logger = setup_logging(verbose=verbose, quiet=quiet)

        assert logger.name == "appforge"
        assert logger.level == level

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(log_file=str(log_file))

        get_logger("pipeline").info("hello from the pipeline")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "appforge.pipeline - INFO - hello from the pipeline" in log_file.read_text()

    def test_get_logger_namespacing(self):
        assert get_logger().name == "appforge"
        assert get_logger("appforge.cli").name == "appforge.cli"
        assert get_logger("cli").name == "appforge.cli"
