"""Exceptions raised by external collaborators.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
"""


class CollaboratorError(Exception):
    """Base exception for object store, sandbox and model failures."""


class ObjectNotFoundError(CollaboratorError):
    """Raised when a requested object (boilerplate, machine) does not exist."""


class ModelOracleError(CollaboratorError):
    """Raised when the language model call fails or returns unusable output."""
