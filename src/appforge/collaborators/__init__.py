"""Interfaces and local implementations of external collaborators."""

from appforge.collaborators.exceptions import (
    CollaboratorError,
    ModelOracleError,
    ObjectNotFoundError,
)
from appforge.collaborators.llm import (
    AnthropicOracle,
    ModelOracle,
    OpenAIOracle,
    StreamEvent,
    StreamFinish,
    TextDelta,
    ToolCall,
    build_oracle,
)
from appforge.collaborators.object_store import LocalObjectStore, ObjectStore
from appforge.collaborators.sandbox import LocalSandbox, Sandbox

__all__ = [
    "AnthropicOracle",
    "CollaboratorError",
    "LocalObjectStore",
    "LocalSandbox",
    "ModelOracle",
    "ModelOracleError",
    "ObjectNotFoundError",
    "ObjectStore",
    "OpenAIOracle",
    "Sandbox",
    "StreamEvent",
    "StreamFinish",
    "TextDelta",
    "ToolCall",
    "build_oracle",
]
