"""Tests for the exception hierarchies of each package."""

import pytest

from appforge.agents.exceptions import AgentError, AnnotationError, GenerationError
from appforge.analyzer.exceptions import AnalyzerError, UnsupportedSourceError
from appforge.collaborators.exceptions import (
    CollaboratorError,
    ModelOracleError,
    ObjectNotFoundError,
)
from appforge.orchestrator.exceptions import (
    GraphBuildError,
    OrchestratorError,
    SandboxCommandError,
    VersionStateError,
)
from appforge.patcher.exceptions import EditBlockError, PatcherError
from appforge.persistence.exceptions import (
    PersistenceError,
    RecordNotFoundError,
    VersionImmutableError,
)


class TestExceptionHierarchy:
    """Each package error inherits from its package base."""

    @pytest.mark.parametrize(
        "exc_cls, base",
        [
            (GenerationError, AgentError),
            (AnnotationError, AgentError),
            (UnsupportedSourceError, AnalyzerError),
            (ObjectNotFoundError, CollaboratorError),
            (ModelOracleError, CollaboratorError),
            (GraphBuildError, OrchestratorError),
            (VersionStateError, OrchestratorError),
            (EditBlockError, PatcherError),
            (RecordNotFoundError, PersistenceError),
            (VersionImmutableError, PersistenceError),
        ],
    )
    def test_inherits_from_base(self, exc_cls, base):
        exc = exc_cls("Something went wrong")

        assert isinstance(exc, base)
        assert isinstance(exc, Exception)
        assert str(exc) == "Something went wrong"

    def test_bases_are_independent(self):
        bases = [AgentError, AnalyzerError, CollaboratorError, OrchestratorError, PatcherError, PersistenceError]

        for base in bases:
            assert [other for other in bases if issubclass(base, other)] == [base]

    def test_exception_can_be_raised_and_caught_as_base(self):
        with pytest.raises(AgentError, match="empty response"):
            raise GenerationError("Model returned an empty response")


class TestSandboxCommandError:
    def test_message_with_stderr(self):
        exc = SandboxCommandError("bun i", 1, "  lockfile is broken\n")

        assert isinstance(exc, OrchestratorError)
        assert str(exc) == "Command 'bun i' exited with code 1: lockfile is broken"
        assert exc.exit_code == 1
        assert exc.command == "bun i"

    def test_message_without_stderr(self):
        assert str(SandboxCommandError("bun i", 2)) == "Command 'bun i' exited with code 2"
