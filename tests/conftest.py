import pytest

from appforge.collaborators.llm import StreamFinish, TextDelta, ToolCall
from appforge.collaborators.object_store import LocalObjectStore
from appforge.persistence import ProjectDatabase
from appforge.persistence import repository as repo


class ScriptedOracle:
    """ModelOracle that replays one scripted list of events per call."""

    def __init__(self, rounds: list[list]):
        self.rounds = list(rounds)
        self.calls: list[dict] = []

    async def stream_text(self, system, messages, tools=None):
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        if not self.rounds:
            raise AssertionError("ScriptedOracle ran out of rounds")
        for event in self.rounds.pop(0):
            yield event


def text_round(*chunks: str, reason: str = "stop") -> list:
    """Events of one streamed reply made of text chunks."""
    return [*(TextDelta(chunk) for chunk in chunks), StreamFinish(reason)]


def tool_round(*calls: ToolCall, text: str = "") -> list:
    events: list = [TextDelta(text)] if text else []
    return [*events, *calls, StreamFinish("tool_calls")]


def edit_block(path: str, search: str, replace: str) -> str:
    return f"{path}\n<<<<<<< SEARCH\n{search}\n=======\n{replace}\n>>>>>>> REPLACE\n"


def create_block(path: str, content: str) -> str:
    return f"{path}\n<<<<<<< SEARCH\n=======\n{content}\n>>>>>>> REPLACE\n"


@pytest.fixture
def db():
    with ProjectDatabase(":memory:") as database:
        yield database


@pytest.fixture
def project(db):
    with db.transaction() as conn:
        return repo.create_project(conn, "Demo", project_id="proj-1")


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "objects", tmp_path / "boilerplates")


@pytest.fixture
def scripted_oracle():
    """Factory fixture: ``scripted_oracle(round, ...)`` -> ScriptedOracle."""

    def _make(*rounds: list) -> ScriptedOracle:
        return ScriptedOracle(list(rounds))

    return _make
