"""Exceptions for agent operations."""


class AgentError(Exception):
    """Base exception for all agent operations."""


class GenerationError(AgentError):
    """Raised when a code generation round cannot be completed."""


class AnnotationError(AgentError):
    """Raised when declaration specs cannot be produced."""
