"""Tests for appforge.orchestrator.state."""

import pytest

from appforge.config import MAX_RETRIES_LIMIT
from appforge.models import VersionProgress
from appforge.orchestrator.exceptions import VersionStateError
from appforge.orchestrator.state import check_transition, make_initial_state


class TestVersionState:
    def test_initial_state_defaults(self):
        state = make_initial_state("p", "v", "Build a todo app")

        assert state["progress"] == "initiated"
        assert state["messages"] == [{"role": "user", "content": "Build a todo app"}]
        assert state["outcome"] is None
        assert state["attempts"] == 0
        assert state["errors"] == [] and state["parse_errors"] == []
        assert state["aborted"] is False
        assert len(state) == 14

    def test_resume_progress(self):
        state = make_initial_state("p", "v", "x", progress=VersionProgress.DEPLOYED)

        assert state["progress"] == "deployed"

    @pytest.mark.parametrize(
        "requested, expected",
        [(-2, 0), (0, 0), (5, 5), (MAX_RETRIES_LIMIT + 5, MAX_RETRIES_LIMIT)],
    )
    def test_max_retries_clamped(self, requested, expected):
        assert make_initial_state("p", "v", "x", max_retries=requested)["max_retries"] == expected

    def test_forward_transition_allowed(self):
        check_transition(VersionProgress.INITIATED, VersionProgress.CODED)
        check_transition(VersionProgress.ENRICHED, VersionProgress.SUCCEEDED)

    @pytest.mark.parametrize(
        "current, target",
        [
            (VersionProgress.INITIATED, VersionProgress.DEPLOYED),
            (VersionProgress.CODED, VersionProgress.CODED),
            (VersionProgress.ENRICHED, VersionProgress.CODED),
            (VersionProgress.SUCCEEDED, VersionProgress.SUCCEEDED),
        ],
    )
    def test_invalid_transitions(self, current, target):
        with pytest.raises(VersionStateError):
            check_transition(current, target)
