"""Model-facing agents: the coder and the declaration annotators."""

from appforge.agents.annotator import Annotator, HeuristicAnnotator, ModelAnnotator
from appforge.agents.coder import Coder, get_tool_schemas
from appforge.agents.exceptions import AgentError, AnnotationError, GenerationError

__all__ = [
    "AgentError",
    "AnnotationError",
    "Annotator",
    "Coder",
    "GenerationError",
    "HeuristicAnnotator",
    "ModelAnnotator",
    "get_tool_schemas",
]
