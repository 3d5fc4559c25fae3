"""Exceptions for edit patching.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
Failed edits are reported as ``FailedEdit`` values, not raised.
"""


class PatcherError(Exception):
    """Base exception for all patcher operations."""


class EditBlockError(PatcherError):
    """Raised when an edit block in the model output is malformed."""
