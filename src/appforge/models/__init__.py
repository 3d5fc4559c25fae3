"""Data models for appforge."""

from appforge.models.declaration_models import (
    ComponentSpecs,
    Declaration,
    DeclarationChangeSet,
    DeclarationDependency,
    DeclarationSpecs,
    DependencyMap,
    EndpointSpecs,
    ExternalDependency,
    ExtractedDeclaration,
    FunctionSpecs,
    InternalDependency,
    ModelSpecs,
    OtherSpecs,
    declaration_name,
    is_canvas_node,
)
from appforge.models.edit_models import Edit, EditOutcome, FailedEdit
from appforge.models.version_models import (
    PROGRESS_ORDER,
    CanvasNode,
    CommandResult,
    FileRecord,
    GenerationResult,
    PackageChanges,
    PackageKind,
    PackageRecord,
    PackageSpec,
    PipelineResult,
    Project,
    SandboxFile,
    Version,
    VersionProgress,
)

__all__ = [
    "PROGRESS_ORDER",
    "CanvasNode",
    "CommandResult",
    "ComponentSpecs",
    "Declaration",
    "DeclarationChangeSet",
    "DeclarationDependency",
    "DeclarationSpecs",
    "DependencyMap",
    "Edit",
    "EditOutcome",
    "EndpointSpecs",
    "ExternalDependency",
    "ExtractedDeclaration",
    "FailedEdit",
    "FileRecord",
    "FunctionSpecs",
    "GenerationResult",
    "InternalDependency",
    "ModelSpecs",
    "OtherSpecs",
    "PackageChanges",
    "PackageKind",
    "PackageRecord",
    "PackageSpec",
    "PipelineResult",
    "Project",
    "SandboxFile",
    "Version",
    "VersionProgress",
    "declaration_name",
    "is_canvas_node",
]
