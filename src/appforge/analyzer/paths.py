"""Path helpers: import resolution, package names and route paths."""

import posixpath
import re

from appforge.analyzer.config import AnalyzerConfig

_KNOWN_EXTENSION = re.compile(r"\.(css|scss|less|json|md|mdx|jsx?|tsx?|mjs|cjs)$")


def to_project_path(path: str) -> str:
    """Return ``path`` rooted at the project, e.g. ``src/a.ts`` -> ``/src/a.ts``."""
    return path if path.startswith("/") else f"/{path}"


def is_internal_specifier(specifier: str, config: AnalyzerConfig) -> bool:
    """True for relative, absolute and aliased specifiers."""
    if specifier.startswith(".") or specifier.startswith("/"):
        return True
    return any(specifier.startswith(alias) for alias in config.path_aliases)


def resolve_import_path(specifier: str, current_file: str, config: AnalyzerConfig) -> str:
    """Resolve an internal import specifier to a project-rooted file path.

    Aliases are expanded, relative specifiers are resolved against the
    importing file's directory, and a default source extension is appended
    when the specifier has none (the file system is never consulted).

    Args:
        specifier: Import specifier as written, e.g. ``"../lib/db"``.
        current_file: Path of the importing file.
        config: Analyzer configuration holding aliases and defaults.

    Returns:
        Project-rooted path such as ``/src/lib/db.ts``.
    """
    resolved = specifier
    for alias, target in config.path_aliases.items():
        if specifier.startswith(alias):
            resolved = target + specifier[len(alias):]
            break
    else:
        if specifier.startswith("."):
            base_dir = posixpath.dirname(to_project_path(current_file))
            resolved = posixpath.normpath(posixpath.join(base_dir, specifier))

    resolved = to_project_path(resolved)
    if not _KNOWN_EXTENSION.search(resolved):
        resolved += config.default_extension
    return resolved


def extract_package_name(specifier: str) -> str:
    """Return the package a specifier belongs to.

    ``@scope/pkg/sub`` -> ``@scope/pkg``; ``pkg/sub`` -> ``pkg``.
    """
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) >= 2:
            return f"{parts[0]}/{parts[1]}"
        return specifier
    return parts[0] or specifier


def _normalize_route_segment(segment: str) -> str | None:
    """Map one routing-convention segment to URL notation; None drops it."""
    if segment.startswith("[[...") and segment.endswith("]]"):
        return "{" + segment[5:-2] + "}"
    if segment.startswith("[...") and segment.endswith("]"):
        return "{" + segment[4:-1] + "}"
    if segment.startswith("[") and segment.endswith("]"):
        return "{" + segment[1:-1] + "}"
    if segment.startswith("(...") and segment.endswith(")"):
        return "{" + segment[4:-1] + "}"
    if segment.startswith("(") and segment.endswith(")"):
        return None  # route group
    return segment


def derive_route_path(file_path: str, config: AnalyzerConfig) -> str:
    """Derive the URL path served by an app-router route file.

    ``/src/app/api/(admin)/users/[id]/route.ts`` -> ``/api/users/{id}``.
    """
    rooted = to_project_path(file_path)
    app_root = posixpath.dirname(config.api_dir)
    prefix = f"/{config.src_dir}/{app_root}/" if app_root else f"/{config.src_dir}/"
    relative = rooted[len(prefix):] if rooted.startswith(prefix) else rooted.lstrip("/")

    segments = relative.split("/")[:-1]  # drop route.ts
    url_segments = [
        normalized
        for normalized in (_normalize_route_segment(segment) for segment in segments)
        if normalized
    ]
    return "/" + "/".join(url_segments)
