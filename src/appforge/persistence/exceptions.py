"""Exceptions for persistence operations.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
"""


class PersistenceError(Exception):
    """Base exception for all persistence operations."""


class RecordNotFoundError(PersistenceError):
    """Raised when a requested row does not exist."""


class VersionImmutableError(PersistenceError):
    """Raised when writing to a version that has already succeeded."""
