"""Tests for the heuristic and model-backed declaration annotators."""

import asyncio
import json

import pytest

from appforge.agents.annotator import HeuristicAnnotator, ModelAnnotator
from appforge.collaborators.exceptions import ModelOracleError
from appforge.models import (
    ComponentSpecs,
    EndpointSpecs,
    ExtractedDeclaration,
    FunctionSpecs,
    ModelSpecs,
    OtherSpecs,
)

from conftest import text_round


def make_decl(name: str, kind: str = "function", renders_jsx: bool = False) -> ExtractedDeclaration:
    return ExtractedDeclaration(name=name, kind=kind, source_text=f"/* {name} */", renders_jsx=renders_jsx)


class FailingOracle:
    async def stream_text(self, system, messages, tools=None):
        raise ModelOracleError("rate limited")
        yield  # pragma: no cover


# ---------------------------------------------------------------------------
# HeuristicAnnotator
# ---------------------------------------------------------------------------

class TestHeuristicAnnotator:
    """Tests for offline classification."""

    @pytest.fixture
    def annotator(self):
        return HeuristicAnnotator()

    def test_rest_endpoint(self, annotator):
        specs = annotator.classify(
            "src/app/api/users/[id]/route.ts", make_decl("GET:/api/users/{id}", kind="route")
        )

        assert specs == EndpointSpecs(subtype="rest", method="GET", path="/api/users/{id}")

    def test_rpc_endpoint(self, annotator):
        specs = annotator.classify(
            "src/server/api/routers/post.ts", make_decl("postRouter.list", kind="procedure")
        )

        assert specs == EndpointSpecs(subtype="rpc", name="postRouter.list")

    def test_schema_model(self, annotator):
        specs = annotator.classify("src/server/db/schema/users.ts", make_decl("users", kind="variable"))

        assert specs == ModelSpecs(name="users")

    @pytest.mark.parametrize(
        "path, name, expected",
        [
            ("src/app/users/page.tsx", "UsersPage", ComponentSpecs(subtype="page", name="UsersPage", route="/users")),
            ("src/app/page.tsx", "Home", ComponentSpecs(subtype="page", name="Home", route="/")),
            ("src/app/layout.tsx", "RootLayout", ComponentSpecs(subtype="layout", name="RootLayout")),
            ("src/components/ThemeProvider.tsx", "ThemeProvider", ComponentSpecs(subtype="provider", name="ThemeProvider")),
            ("src/components/Card.tsx", "Card", ComponentSpecs(subtype="reusable", name="Card")),
        ],
    )
    def test_components(self, annotator, path, name, expected):
        assert annotator.classify(path, make_decl(name, renders_jsx=True)) == expected

    def test_utility_function(self, annotator):
        specs = annotator.classify("src/lib/utils.ts", make_decl("cn"))

        assert specs == FunctionSpecs(name="cn", is_utility=True)

    def test_business_function(self, annotator):
        specs = annotator.classify("src/server/users.ts", make_decl("createUser"))

        assert specs == FunctionSpecs(name="createUser", is_utility=False)

    def test_other(self, annotator):
        specs = annotator.classify("src/types.ts", make_decl("User", kind="interface"))

        assert specs == OtherSpecs(name="User")

    def test_annotate_maps_every_name(self, annotator):
        declarations = {"a": make_decl("a"), "B": make_decl("B", kind="class")}

        specs = asyncio.run(annotator.annotate("src/a.ts", "", declarations))

        assert list(specs) == ["a", "B"]


# ---------------------------------------------------------------------------
# ModelAnnotator
# ---------------------------------------------------------------------------

class TestModelAnnotator:
    """Tests for model replies and the heuristic fallback."""

    def test_valid_fenced_reply(self, scripted_oracle):
        reply = {"getUser": {"type": "function", "name": "getUser", "summary": "Loads a user"}}
        oracle = scripted_oracle(text_round("```json\n", json.dumps(reply), "\n```"))
        annotator = ModelAnnotator(oracle)

        specs = asyncio.run(annotator.annotate("src/server/users.ts", "...", {"getUser": make_decl("getUser")}))

        assert specs == {"getUser": FunctionSpecs(name="getUser", summary="Loads a user")}
        assert "- getUser" in oracle.calls[0]["messages"][0]["content"]

    def test_invalid_entries_fall_back_individually(self, scripted_oracle):
        reply = {
            "a": {"type": "widget"},
            "b": {"type": "function", "name": "renamed"},
            "c": {"type": "model", "name": "c"},
        }
        oracle = scripted_oracle(text_round(json.dumps(reply)))
        declarations = {"a": make_decl("a"), "b": make_decl("b"), "c": make_decl("c")}

        specs = asyncio.run(ModelAnnotator(oracle).annotate("src/server/x.ts", "", declarations))

        assert specs["a"] == FunctionSpecs(name="a")
        assert specs["b"] == FunctionSpecs(name="b")
        assert specs["c"] == ModelSpecs(name="c")

    def test_non_json_reply_falls_back(self, scripted_oracle):
        oracle = scripted_oracle(text_round("I think these are functions."))

        specs = asyncio.run(ModelAnnotator(oracle).annotate("src/server/x.ts", "", {"a": make_decl("a")}))

        assert specs == {"a": FunctionSpecs(name="a")}

    def test_non_object_reply_falls_back(self, scripted_oracle):
        oracle = scripted_oracle(text_round("[1, 2]"))

        specs = asyncio.run(ModelAnnotator(oracle).annotate("src/server/x.ts", "", {"a": make_decl("a")}))

        assert specs == {"a": FunctionSpecs(name="a")}

    def test_oracle_failure_falls_back(self):
        specs = asyncio.run(
            ModelAnnotator(FailingOracle()).annotate("src/server/x.ts", "", {"a": make_decl("a")})
        )

        assert specs == {"a": FunctionSpecs(name="a")}

    def test_nothing_to_annotate(self, scripted_oracle):
        oracle = scripted_oracle()

        assert asyncio.run(ModelAnnotator(oracle).annotate("src/a.ts", "", {})) == {}
        assert oracle.calls == []
