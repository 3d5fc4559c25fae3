"""Exceptions for declaration analysis.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
"""


class AnalyzerError(Exception):
    """Base exception for all analyzer operations."""


class UnsupportedSourceError(AnalyzerError):
    """Raised when a file's language cannot be parsed."""
