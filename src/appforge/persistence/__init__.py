"""Project database: versions, files, packages, declarations and canvas nodes."""

from appforge.persistence.database import ProjectDatabase
from appforge.persistence.exceptions import (
    PersistenceError,
    RecordNotFoundError,
    VersionImmutableError,
)
from appforge.persistence.repository import init_version

__all__ = [
    "PersistenceError",
    "ProjectDatabase",
    "RecordNotFoundError",
    "VersionImmutableError",
    "init_version",
]
