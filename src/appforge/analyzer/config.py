"""Project-layout conventions used by the declaration analyzer."""

from pydantic import BaseModel, ConfigDict, Field

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})
PROCEDURE_OPERATIONS = frozenset({"query", "mutation"})


class AnalyzerConfig(BaseModel):
    """Where routes, schemas and RPC routers live in the generated project.

    Directory values are project-relative without leading or trailing slashes.
    """

    model_config = ConfigDict(frozen=True)

    src_dir: str = "src"
    schema_dir: str = "server/db/schema"
    rpcs_dir: str = "server/api/routers"
    api_dir: str = "app/api"
    route_file_stem: str = "route"
    path_aliases: dict[str, str] = Field(
        default_factory=lambda: {"@/": "/src/", "~/": "/src/"}
    )
    procedure_identifiers: frozenset[str] = frozenset(
        {"publicProcedure", "protectedProcedure"}
    )
    default_extension: str = ".ts"
    source_extensions: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

    def under_src(self, sub_dir: str) -> str:
        """Return the project-rooted prefix of a directory below ``src_dir``."""
        return f"/{self.src_dir}/{sub_dir}/"

    def is_route_file(self, path: str) -> bool:
        rooted = _rooted(path)
        if not rooted.startswith(self.under_src(self.api_dir)):
            return False
        file_name = rooted.rsplit("/", 1)[-1]
        return file_name.rsplit(".", 1)[0] == self.route_file_stem

    def is_schema_file(self, path: str) -> bool:
        return _rooted(path).startswith(self.under_src(self.schema_dir))

    def is_rpc_file(self, path: str) -> bool:
        return _rooted(path).startswith(self.under_src(self.rpcs_dir))

    def is_procedure_identifier(self, name: str) -> bool:
        return name in self.procedure_identifiers or name.endswith("Procedure")


def _rooted(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"
