"""CLI entry point for appforge."""
import argparse
import asyncio
import json
import sys
import traceback
from pathlib import Path

from appforge.agents.annotator import HeuristicAnnotator, ModelAnnotator
from appforge.agents.exceptions import AgentError
from appforge.analyzer import process_declarations
from appforge.collaborators import LocalObjectStore, LocalSandbox, build_oracle
from appforge.collaborators.exceptions import CollaboratorError
from appforge.config import DEFAULT_MODEL, Settings
from appforge.logging_config import setup_logging
from appforge.models import EditOutcome, PipelineResult
from appforge.orchestrator.exceptions import OrchestratorError
from appforge.patcher import EditBlockScanner, FileCache, apply_edits
from appforge.persistence import PersistenceError, ProjectDatabase, RecordNotFoundError
from appforge.persistence import repository as repo
from appforge.utils import unified_diff

# Exit codes
EXIT_SUCCESS = 0
EXIT_INVALID_INPUT = 1
EXIT_AGENT_ERROR = 2
EXIT_ORCHESTRATOR_ERROR = 3
EXIT_GRAPH_ABORT = 4
EXIT_UNEXPECTED = 5
EXIT_EDITS_FAILED = 6
EXIT_KEYBOARD_INTERRUPT = 130

# Defaults
DEFAULT_DATA_DIR = "./data"

# Abort detection prefix, must match abort_node output in graph.py
ABORT_PREFIX = "ABORT:"

# Directories never offered to the patcher as existing files
_IGNORED_DIRS = frozenset({".git", "node_modules", ".next", "dist", "build"})


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", dest="output_json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--quiet", action="store_true", help="Only log errors")
    parser.add_argument("--log-file", type=str, default=None, help="Append logs to this file")


def _add_pipeline_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Database, object and machine directory (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"Model ID to use (default: {DEFAULT_MODEL})",
    )
    parser.add_argument(
        "--llm-provider",
        choices=["auto", "anthropic", "openai"],
        default=None,
        help="LLM provider (default: auto)",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Retry rounds for failed edits (default: 3, max: 10)",
    )
    parser.add_argument(
        "--install-command",
        type=str,
        default=None,
        help="Dependency install command run in the sandbox (default: bun i)",
    )
    parser.add_argument(
        "--model-annotations",
        action="store_true",
        help="Ask the model to classify declarations instead of using heuristics",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="appforge",
        description="Versioned code generation engine for Next.js projects",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    patch = subparsers.add_parser("patch", help="Apply SEARCH/REPLACE blocks to a directory")
    patch.add_argument("edits", type=str, help="File with edit blocks ('-' for stdin)")
    patch.add_argument("--root", type=str, default=".", help="Project directory (default: .)")
    patch.add_argument("--write", action="store_true", help="Write passed files to disk")
    patch.add_argument("--diff", action="store_true", help="Print a unified diff per passed file")
    _add_common_options(patch)

    declarations = subparsers.add_parser(
        "declarations", help="Show declaration changes of a source file"
    )
    declarations.add_argument("file", type=str, help="Current version of the file")
    declarations.add_argument(
        "--previous", type=str, default=None, help="Previous version of the file"
    )
    declarations.add_argument(
        "--path",
        type=str,
        default=None,
        help="Project path of the file, e.g. src/app/api/users/route.ts (default: FILE)",
    )
    _add_common_options(declarations)

    generate = subparsers.add_parser("generate", help="Create and run a new project version")
    generate.add_argument("prompt", type=str, help="What to build or change")
    generate.add_argument("--project", type=str, required=True, help="Project id")
    generate.add_argument(
        "--name", type=str, default=None, help="Project name when creating it (default: id)"
    )
    generate.add_argument(
        "--no-boilerplate", action="store_true", help="Start a new project from an empty tree"
    )
    _add_pipeline_options(generate)
    _add_common_options(generate)

    resume = subparsers.add_parser("resume", help="Continue a version from its saved progress")
    resume.add_argument("version_id", type=str, help="Version id")
    _add_pipeline_options(resume)
    _add_common_options(resume)

    return parser


def _read_text(raw_path: str) -> str:
    if raw_path == "-":
        return sys.stdin.read()
    path = Path(raw_path)
    if not path.is_file():
        print(f"Error: '{raw_path}' is not a file.", file=sys.stderr)
        raise SystemExit(EXIT_INVALID_INPUT)
    return path.read_text(encoding="utf-8")


def list_project_files(root: Path) -> list[str]:
    """Relative POSIX paths of every file under ``root``."""
    files: list[str] = []
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if path.is_file() and not _IGNORED_DIRS.intersection(relative.parts):
            files.append(relative.as_posix())
    return files


def format_result_json(result) -> str:
    """Serialize a pydantic result (or dict of them) to a JSON string."""
    if hasattr(result, "model_dump"):
        return json.dumps(result.model_dump(mode="json", by_alias=True), indent=2)
    return json.dumps(result, indent=2, default=str)


async def _run_patch(args: argparse.Namespace) -> int:
    root = Path(args.root).resolve()
    if not root.is_dir():
        print(f"Error: '{args.root}' is not a valid directory.", file=sys.stderr)
        return EXIT_INVALID_INPUT
    text = _read_text(args.edits)

    async def load(path: str) -> str | None:
        target = root / path
        if not target.is_file():
            return None
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    scanner = EditBlockScanner()
    edits = scanner.feed(text)
    edits.extend(scanner.close())
    cache = FileCache(load)
    outcome = await apply_edits(list_project_files(root), edits, cache)

    if args.write:
        for edit in outcome.passed:
            target = root / edit.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(edit.updated, encoding="utf-8")

    if args.output_json:
        payload = outcome.model_dump(mode="json")
        payload["parse_errors"] = scanner.errors
        print(json.dumps(payload, indent=2))
    else:
        print_patch_human(outcome, scanner.errors)
        if args.diff:
            for edit in outcome.passed:
                print(unified_diff(edit.path, cache.baseline(edit.path) or "", edit.updated))

    return EXIT_SUCCESS if not outcome.failed else EXIT_EDITS_FAILED


def print_patch_human(outcome: EditOutcome, parse_errors: list[str]) -> None:
    print(f"\n{'='*60}")
    print("Patch Results")
    print(f"{'='*60}")
    print(f"\nPassed ({len(outcome.passed)}):")
    for path in outcome.passed_paths:
        print(f"  + {path}")
    if outcome.failed:
        print(f"\nFailed ({len(outcome.failed)}):")
        for failure in outcome.failed:
            print(f"  - {failure.edit.path}")
            for line in failure.error.strip().splitlines():
                print(f"      {line}")
    if parse_errors:
        print(f"\nParse errors ({len(parse_errors)}):")
        for err in parse_errors:
            print(f"  - {err}")
    print(f"\n{'='*60}")


def _run_declarations(args: argparse.Namespace) -> int:
    content = _read_text(args.file)
    previous = _read_text(args.previous) if args.previous else None
    changes = process_declarations(content, args.path or args.file, previous)

    if args.output_json:
        print(format_result_json(changes))
        return EXIT_SUCCESS

    for label, mapping in (
        ("New", changes.new_declarations),
        ("Updated", changes.updated_declarations),
        ("Deleted", changes.deleted_declarations),
    ):
        print(f"{label} ({len(mapping)}):")
        for name, dependencies in mapping.items():
            print(f"  {name}")
            for dependency in dependencies:
                names = ", ".join(dependency.depends_on)
                print(f"    {dependency.type} {dependency.from_path}: {names}")
    return EXIT_SUCCESS


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        data_dir=args.data_dir,
        model=args.model,
        llm_provider=args.llm_provider,
        max_retries=args.max_retries,
        install_command=args.install_command,
    )


async def _run_pipeline(args: argparse.Namespace) -> PipelineResult:
    from appforge.orchestrator.pipeline import VersionPipeline

    settings = _settings_from_args(args)
    if getattr(args, "no_boilerplate", False):
        settings.boilerplate_preset = None

    oracle = build_oracle(settings)
    annotator = (
        ModelAnnotator(oracle, HeuristicAnnotator(settings.analyzer))
        if args.model_annotations
        else HeuristicAnnotator(settings.analyzer)
    )

    with ProjectDatabase(settings.database_path) as db:
        pipeline = VersionPipeline(
            settings,
            db,
            LocalObjectStore(settings.object_store_dir, settings.boilerplate_dir),
            LocalSandbox(settings.sandbox_dir, settings.sandbox_workdir),
            oracle,
            annotator,
        )
        if args.command == "resume":
            return await pipeline.run(args.version_id)

        try:
            repo.get_project(db.conn, args.project)
        except RecordNotFoundError:
            with db.transaction() as conn:
                repo.create_project(conn, args.name or args.project, project_id=args.project)
        return await pipeline.generate(args.project, args.prompt)


def print_result_human(result: PipelineResult) -> None:
    """Print a pipeline result in human-readable format."""
    print(f"\n{'='*60}")
    print("appforge Results")
    print(f"{'='*60}")
    print(f"\nVersion: {result.version_id}")
    print(f"Progress: {result.progress.value}")
    print(f"Status: {result.status}")

    print(f"\nFiles changed: {len(result.passed_paths)}")
    for path in result.passed_paths:
        print(f"  + {path}")

    if result.failed:
        print(f"\nFailed edits ({len(result.failed)}):")
        for failure in result.failed:
            print(f"  - {failure.edit.path}")
            for line in failure.error.strip().splitlines():
                print(f"      {line}")

    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for err in result.errors:
            print(f"  - {err}")

    print(f"\n{'='*60}")


def determine_exit_code(result: PipelineResult) -> int:
    """Determine the exit code from a pipeline result."""
    if any(str(err).startswith(ABORT_PREFIX) for err in result.errors):
        return EXIT_GRAPH_ABORT
    if result.errors or result.status != "succeeded":
        return EXIT_ORCHESTRATOR_ERROR
    if result.failed:
        return EXIT_EDITS_FAILED
    return EXIT_SUCCESS


def _handle_error(label: str, exc: BaseException, verbose: bool, exit_code: int) -> int:
    """Print error message to stderr and return the exit code."""
    print(f"{label}: {exc}", file=sys.stderr)
    if verbose:
        traceback.print_exc(file=sys.stderr)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code integer.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        if args.command == "patch":
            return asyncio.run(_run_patch(args))
        if args.command == "declarations":
            return _run_declarations(args)

        result = asyncio.run(_run_pipeline(args))
        if args.output_json:
            print(format_result_json(result))
        else:
            print_result_human(result)
        return determine_exit_code(result)

    except SystemExit as exc:
        return exc.code

    except AgentError as exc:
        return _handle_error("Agent error", exc, args.verbose, EXIT_AGENT_ERROR)

    except OrchestratorError as exc:
        return _handle_error("Orchestrator error", exc, args.verbose, EXIT_ORCHESTRATOR_ERROR)

    except RecordNotFoundError as exc:
        return _handle_error("Not found", exc, args.verbose, EXIT_INVALID_INPUT)

    except (CollaboratorError, PersistenceError) as exc:
        return _handle_error("Collaborator error", exc, args.verbose, EXIT_ORCHESTRATOR_ERROR)

    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_KEYBOARD_INTERRUPT

    except Exception as exc:
        return _handle_error("Unexpected error", exc, args.verbose, EXIT_UNEXPECTED)


if __name__ == "__main__":
    sys.exit(main())
