"""LangGraph orchestrator package for the version pipeline."""

from appforge.orchestrator.enrichment import EnrichmentReport, enrich_version
from appforge.orchestrator.exceptions import (
    GraphBuildError,
    OrchestratorError,
    SandboxCommandError,
    VersionStateError,
)
from appforge.orchestrator.graph import build_graph
from appforge.orchestrator.manifest import merge_manifest
from appforge.orchestrator.pipeline import VersionPipeline
from appforge.orchestrator.recovery import build_retry_message, merge_outcomes
from appforge.orchestrator.state import VersionState, make_initial_state

__all__ = [
    "EnrichmentReport",
    "GraphBuildError",
    "OrchestratorError",
    "SandboxCommandError",
    "VersionPipeline",
    "VersionState",
    "VersionStateError",
    "build_graph",
    "build_retry_message",
    "enrich_version",
    "make_initial_state",
    "merge_manifest",
    "merge_outcomes",
]
