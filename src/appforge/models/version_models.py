"""Version snapshot, file, package and pipeline result models."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from appforge.models.edit_models import EditOutcome, FailedEdit


class VersionProgress(str, Enum):
    """Progress of a version through the pipeline, in strict forward order."""

    INITIATED = "initiated"
    CODED = "coded"
    DEPLOYED = "deployed"
    ENRICHED = "enriched"
    SUCCEEDED = "succeeded"

    @property
    def rank(self) -> int:
        return PROGRESS_ORDER.index(self)

    def has_reached(self, other: "VersionProgress") -> bool:
        """Return True when this progress is at or beyond ``other``."""
        return self.rank >= other.rank

    def next(self) -> "VersionProgress":
        """Return the following state.

        Raises:
            ValueError: If called on the terminal state.
        """
        if self is VersionProgress.SUCCEEDED:
            raise ValueError("succeeded is terminal")
        return PROGRESS_ORDER[self.rank + 1]


PROGRESS_ORDER: tuple[VersionProgress, ...] = (
    VersionProgress.INITIATED,
    VersionProgress.CODED,
    VersionProgress.DEPLOYED,
    VersionProgress.ENRICHED,
    VersionProgress.SUCCEEDED,
)


class PackageKind(str, Enum):
    RUNTIME = "runtime"
    DEVELOPMENT = "development"


class PackageSpec(BaseModel):
    """A package the model asked to install."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: PackageKind = PackageKind.RUNTIME
    version: str = "latest"


class PackageChanges(BaseModel):
    """Packages installed and removed during one generation run."""

    model_config = ConfigDict(frozen=False)

    installed: list[PackageSpec] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.installed and not self.removed


class GenerationResult(BaseModel):
    """Everything one model generation round produced."""

    model_config = ConfigDict(frozen=False)

    outcome: EditOutcome = Field(default_factory=EditOutcome)
    deleted_files: list[str] = Field(default_factory=list)
    package_changes: PackageChanges = Field(default_factory=PackageChanges)
    parse_errors: list[str] = Field(default_factory=list)
    text: str = ""


class Project(BaseModel):
    model_config = ConfigDict(frozen=False)

    id: str
    name: str
    active_version_id: str | None = None


class Version(BaseModel):
    """A version snapshot row.

    Files, packages and declarations are owned by the project and referenced
    by the version through association rows.
    """

    model_config = ConfigDict(frozen=False)

    id: str
    project_id: str
    number: int
    progress: VersionProgress = VersionProgress.INITIATED
    prompt: str = ""
    machine_id: str | None = None
    parent_version_id: str | None = None
    changed_files: list[str] = Field(default_factory=list)
    deleted_files: list[str] = Field(default_factory=list)
    failed_edits: list[FailedEdit] = Field(default_factory=list)
    package_changes: PackageChanges = Field(default_factory=PackageChanges)
    summary: dict | None = None
    activated: bool = False

    @property
    def is_immutable(self) -> bool:
        return self.progress is VersionProgress.SUCCEEDED


class FileRecord(BaseModel):
    """A project file row; content lives in the object store under ``version_tag``."""

    model_config = ConfigDict(frozen=False)

    id: str
    project_id: str
    path: str
    version_tag: str


class PackageRecord(BaseModel):
    model_config = ConfigDict(frozen=False)

    id: str
    project_id: str
    name: str
    version: str = "latest"
    kind: PackageKind = PackageKind.RUNTIME


class CanvasNode(BaseModel):
    model_config = ConfigDict(frozen=False)

    id: str
    project_id: str
    declaration_name: str
    node_type: str
    data: dict = Field(default_factory=dict)


class SandboxFile(BaseModel):
    """A file to place on a sandbox machine at ``guest_path``."""

    model_config = ConfigDict(frozen=True)

    guest_path: str
    content: str


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""


class PipelineResult(BaseModel):
    """Version-level outcome of one pipeline run."""

    model_config = ConfigDict(frozen=False)

    project_id: str
    version_id: str
    progress: VersionProgress
    passed_paths: list[str] = Field(default_factory=list)
    failed: list[FailedEdit] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    parse_errors: list[str] = Field(default_factory=list)
    status: Literal["succeeded", "incomplete", "failed"] = "incomplete"

    @property
    def ok(self) -> bool:
        return self.status == "succeeded" and not self.failed and not self.errors
