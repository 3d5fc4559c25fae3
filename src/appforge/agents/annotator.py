"""Annotators turn extracted declarations into tagged specs."""

import json
import logging
import posixpath
import re
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from appforge.agents.exceptions import AnnotationError
from appforge.agents.prompts import ANNOTATOR_SYSTEM_PROMPT, build_annotation_prompt
from appforge.analyzer import AnalyzerConfig, derive_route_path
from appforge.analyzer.paths import to_project_path
from appforge.collaborators.exceptions import ModelOracleError
from appforge.collaborators.llm import ModelOracle, TextDelta
from appforge.models import (
    ComponentSpecs,
    DeclarationSpecs,
    EndpointSpecs,
    ExtractedDeclaration,
    FunctionSpecs,
    ModelSpecs,
    OtherSpecs,
    declaration_name,
)

logger = logging.getLogger(__name__)

_SPECS_ADAPTER: TypeAdapter = TypeAdapter(DeclarationSpecs)
_UTILITY_DIRS = ("/utils/", "/helpers/", "/lib/utils/")
_UTILITY_STEMS = frozenset({"utils", "helpers", "constants", "cn"})
_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class Annotator(Protocol):
    async def annotate(
        self,
        file_path: str,
        content: str,
        declarations: dict[str, ExtractedDeclaration],
    ) -> dict[str, DeclarationSpecs]:
        ...


class HeuristicAnnotator:
    """Derives specs from declaration kind, file location and JSX usage.

    Deterministic and offline; also the fallback for ModelAnnotator.
    """

    def __init__(self, config: AnalyzerConfig | None = None):
        self.config = config or AnalyzerConfig()

    async def annotate(
        self,
        file_path: str,
        content: str,
        declarations: dict[str, ExtractedDeclaration],
    ) -> dict[str, DeclarationSpecs]:
        return {name: self.classify(file_path, decl) for name, decl in declarations.items()}

    def classify(self, file_path: str, declaration: ExtractedDeclaration) -> DeclarationSpecs:
        path = to_project_path(file_path)
        name = declaration.name

        if declaration.kind == "route":
            method, _, route = name.partition(":")
            return EndpointSpecs(subtype="rest", method=method, path=route)
        if declaration.kind == "procedure":
            return EndpointSpecs(subtype="rpc", name=name)

        if self.config.is_schema_file(path) and declaration.kind in ("variable", "interface", "type"):
            return ModelSpecs(name=name)

        stem = posixpath.splitext(posixpath.basename(path))[0]
        if declaration.renders_jsx:
            app_prefix = self.config.under_src(posixpath.dirname(self.config.api_dir) or "app")
            in_app = path.startswith(app_prefix)
            if in_app and stem == "page":
                return ComponentSpecs(
                    subtype="page", name=name, route=derive_route_path(path, self.config)
                )
            if in_app and stem == "layout":
                return ComponentSpecs(subtype="layout", name=name)
            if name.endswith("Provider"):
                return ComponentSpecs(subtype="provider", name=name)
            return ComponentSpecs(subtype="reusable", name=name)

        if declaration.kind in ("function", "variable"):
            is_utility = stem in _UTILITY_STEMS or any(d in path for d in _UTILITY_DIRS)
            return FunctionSpecs(name=name, is_utility=is_utility)

        return OtherSpecs(name=name)


class ModelAnnotator:
    """Asks the model for specs and validates them.

    Any oracle failure, unparseable reply or invalid entry falls back to the
    heuristic for the affected declarations, so annotation never blocks
    enrichment.
    """

    def __init__(self, oracle: ModelOracle, fallback: HeuristicAnnotator | None = None):
        self.oracle = oracle
        self.fallback = fallback or HeuristicAnnotator()

    async def annotate(
        self,
        file_path: str,
        content: str,
        declarations: dict[str, ExtractedDeclaration],
    ) -> dict[str, DeclarationSpecs]:
        if not declarations:
            return {}

        try:
            raw = await self._request(file_path, content, list(declarations))
        except (ModelOracleError, AnnotationError) as exc:
            logger.warning("Annotation of %s failed, using heuristics: %s", file_path, exc)
            return await self.fallback.annotate(file_path, content, declarations)

        specs: dict[str, DeclarationSpecs] = {}
        for name, declaration in declarations.items():
            candidate = raw.get(name)
            try:
                parsed = _SPECS_ADAPTER.validate_python(candidate)
            except ValidationError:
                logger.debug("Invalid specs for %s in %s", name, file_path)
                parsed = None
            if parsed is not None and declaration_name(parsed) != name:
                logger.debug(
                    "Specs for %s in %s derive name %s", name, file_path, declaration_name(parsed)
                )
                parsed = None
            specs[name] = parsed or self.fallback.classify(file_path, declaration)
        return specs

    async def _request(self, file_path: str, content: str, names: list[str]) -> dict:
        parts: list[str] = []
        messages = [{"role": "user", "content": build_annotation_prompt(file_path, content, names)}]
        async for event in self.oracle.stream_text(ANNOTATOR_SYSTEM_PROMPT, messages):
            if isinstance(event, TextDelta):
                parts.append(event.text)
        reply = _JSON_FENCE.sub("", "".join(parts).strip())
        try:
            raw = json.loads(reply)
        except json.JSONDecodeError as exc:
            raise AnnotationError(f"Annotator reply is not JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise AnnotationError("Annotator reply is not a JSON object")
        return raw
