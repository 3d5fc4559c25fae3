"""package.json merging for deployments."""

import copy
import json
import logging

from appforge.models import PackageChanges, PackageKind

logger = logging.getLogger(__name__)

MANIFEST_PATH = "package.json"

_SECTIONS = {
    PackageKind.RUNTIME: "dependencies",
    PackageKind.DEVELOPMENT: "devDependencies",
}


def parse_manifest(text: str | None) -> dict:
    """Parse a package.json body; unreadable manifests become ``{}``."""
    if not text or not text.strip():
        return {}
    try:
        manifest = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring unreadable package.json: %s", exc)
        return {}
    if not isinstance(manifest, dict):
        logger.warning("Ignoring package.json that is not a JSON object")
        return {}
    return manifest


def render_manifest(manifest: dict) -> str:
    return json.dumps(manifest, indent=2) + "\n"


def merge_manifest(base: dict, changes: PackageChanges) -> dict:
    """Merge installed and removed packages into a copy of ``base``.

    Runtime packages go to ``dependencies`` and development packages to
    ``devDependencies``. A package already pinned in its section keeps its
    version. Removed packages are dropped from both sections.
    """
    manifest = copy.deepcopy(base)

    for spec in changes.installed:
        section = manifest.setdefault(_SECTIONS[spec.kind], {})
        other = manifest.get(_SECTIONS[_other_kind(spec.kind)])
        if isinstance(other, dict) and spec.name in other:
            section.setdefault(spec.name, other.pop(spec.name))
        section.setdefault(spec.name, spec.version)

    for name in changes.removed:
        for key in _SECTIONS.values():
            section = manifest.get(key)
            if isinstance(section, dict):
                section.pop(name, None)

    return manifest


def _other_kind(kind: PackageKind) -> PackageKind:
    if kind is PackageKind.RUNTIME:
        return PackageKind.DEVELOPMENT
    return PackageKind.RUNTIME
