"""Models for exported declarations, their dependency edges and specs."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class InternalDependency(BaseModel):
    """Identifiers a declaration uses from another project file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["internal"] = "internal"
    from_path: str = Field(alias="from")  # Project-rooted path, e.g. "/src/lib/db.ts"
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")


class ExternalDependency(BaseModel):
    """Identifiers a declaration uses from an external package."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["external"] = "external"
    from_path: str = Field(alias="from")  # Import specifier, e.g. "next/server"
    name: str  # Package name, e.g. "next"
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")


DeclarationDependency = Annotated[
    Union[InternalDependency, ExternalDependency],
    Field(discriminator="type"),
]

DependencyMap = dict[str, list[DeclarationDependency]]


class DeclarationChangeSet(BaseModel):
    """New, updated and deleted declarations of one file between two versions."""

    model_config = ConfigDict(populate_by_name=True)

    new_declarations: DependencyMap = Field(default_factory=dict, alias="newDeclarations")
    updated_declarations: DependencyMap = Field(
        default_factory=dict, alias="updatedDeclarations"
    )
    deleted_declarations: DependencyMap = Field(
        default_factory=dict, alias="deletedDeclarations"
    )

    @property
    def is_empty(self) -> bool:
        return not (
            self.new_declarations
            or self.updated_declarations
            or self.deleted_declarations
        )


class ExtractedDeclaration(BaseModel):
    """A declaration found in one file, with the raw text of its syntax node."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str  # "function", "class", "interface", "type", "enum", "variable",
               # "default", "route", "procedure"
    source_text: str
    dependencies: list[DeclarationDependency] = Field(default_factory=list)
    renders_jsx: bool = False


# ---------------------------------------------------------------------------
# Declaration specs (tagged on ``type``)
# ---------------------------------------------------------------------------


class EndpointSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["endpoint"] = "endpoint"
    subtype: Literal["rest", "rpc"]
    method: str | None = None  # REST only
    path: str | None = None  # REST only
    name: str | None = None  # RPC only, e.g. "userRouter.list"
    summary: str = ""


class ComponentSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["component"] = "component"
    subtype: Literal["page", "layout", "reusable", "provider"]
    name: str
    route: str | None = None
    summary: str = ""


class FunctionSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["function"] = "function"
    name: str
    is_utility: bool = False
    summary: str = ""


class ModelSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["model"] = "model"
    name: str
    summary: str = ""


class OtherSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["other"] = "other"
    name: str
    summary: str = ""


DeclarationSpecs = Annotated[
    Union[EndpointSpecs, ComponentSpecs, FunctionSpecs, ModelSpecs, OtherSpecs],
    Field(discriminator="type"),
]


def declaration_name(specs: DeclarationSpecs) -> str:
    """Derive the stable declaration name from its specs."""
    if isinstance(specs, EndpointSpecs):
        if specs.subtype == "rest":
            return f"{(specs.method or '').upper()}:{specs.path or ''}"
        return specs.name or ""
    if isinstance(specs, (ComponentSpecs, FunctionSpecs, ModelSpecs, OtherSpecs)):
        return specs.name
    raise TypeError(f"Unknown declaration specs: {type(specs).__name__}")


def is_canvas_node(specs: DeclarationSpecs) -> bool:
    """Return True when a declaration is shown as a node on the canvas.

    Endpoints, pages, reusable components, business-logic functions and data
    models are nodes. Layouts, providers, utilities and anything else are not.
    """
    if isinstance(specs, EndpointSpecs):
        return True
    if isinstance(specs, ComponentSpecs):
        return specs.subtype in ("page", "reusable")
    if isinstance(specs, FunctionSpecs):
        return not specs.is_utility
    if isinstance(specs, ModelSpecs):
        return True
    if isinstance(specs, OtherSpecs):
        return False
    raise TypeError(f"Unknown declaration specs: {type(specs).__name__}")


class Declaration(BaseModel):
    """A persisted declaration row."""

    model_config = ConfigDict(frozen=False)

    id: str
    project_id: str
    file_id: str
    file_path: str = ""
    name: str
    type: str  # specs.type
    specs: DeclarationSpecs | None = None
    previous_id: str | None = None
    canvas_node_id: str | None = None
