"""Models for search/replace edits produced by the model."""

from pydantic import BaseModel, ConfigDict, Field


class Edit(BaseModel):
    """A single search/replace instruction targeting one file.

    An empty ``original`` marks a file-creation edit.
    """

    model_config = ConfigDict(frozen=True)

    path: str  # Project-relative path, e.g. "src/util.ts"
    original: str  # SEARCH section (exact existing lines)
    updated: str  # REPLACE section, or final file content once applied

    @property
    def is_creation(self) -> bool:
        return not self.original.strip()


class FailedEdit(BaseModel):
    """An edit that could not be applied, with a human-readable diagnostic."""

    model_config = ConfigDict(frozen=True)

    edit: Edit
    error: str


class EditOutcome(BaseModel):
    """Partition of a batch of edits into passed and failed."""

    model_config = ConfigDict(frozen=True)

    passed: list[Edit] = Field(default_factory=list)
    failed: list[FailedEdit] = Field(default_factory=list)

    @property
    def passed_paths(self) -> list[str]:
        return [edit.path for edit in self.passed]

    @property
    def failed_paths(self) -> list[str]:
        return [failure.edit.path for failure in self.failed]

    def content_for(self, path: str) -> str | None:
        """Return the final content of a passed path, or None."""
        for edit in self.passed:
            if edit.path == path:
                return edit.updated
        return None
