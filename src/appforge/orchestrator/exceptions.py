"""Exceptions for orchestrator operations.

Note: Names chosen to avoid collisions with stdlib and framework exceptions.
"""


class OrchestratorError(Exception):
    """Base exception for all orchestrator operations."""


class GraphBuildError(OrchestratorError):
    """Raised when graph construction fails."""


class VersionStateError(OrchestratorError):
    """Raised when a version would skip or repeat a progress state."""


class SandboxCommandError(OrchestratorError):
    """Raised when a sandbox command exits non-zero."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Command '{command}' exited with code {exit_code}{detail}")
