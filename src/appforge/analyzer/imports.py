"""Import table construction and identifier-to-source resolution."""

from dataclasses import dataclass, field

from tree_sitter import Node

from appforge.analyzer.config import AnalyzerConfig
from appforge.analyzer.paths import (
    extract_package_name,
    is_internal_specifier,
    resolve_import_path,
)
from appforge.models import DeclarationDependency, ExternalDependency, InternalDependency
from appforge.utils.ast_parser import node_text, string_value, walk


@dataclass(frozen=True)
class ImportBinding:
    """A local name bound by an import statement."""

    local_name: str
    specifier: str
    is_namespace: bool = False


@dataclass
class ImportTable:
    """Everything a file imports or re-exports.

    ``sources`` maps each specifier, in first-seen order, to the names it
    brings in (empty for bare imports and ``export * from``).
    """

    bindings: dict[str, ImportBinding] = field(default_factory=dict)
    sources: dict[str, list[str]] = field(default_factory=dict)

    def add_source(self, specifier: str, names: list[str]) -> None:
        known = self.sources.setdefault(specifier, [])
        known.extend(name for name in names if name not in known)

    @property
    def is_empty(self) -> bool:
        return not self.sources


def _import_clause_bindings(clause: Node, specifier: str) -> list[ImportBinding]:
    bindings: list[ImportBinding] = []
    for child in clause.named_children:
        if child.type == "identifier":
            bindings.append(ImportBinding(node_text(child), specifier))
        elif child.type == "namespace_import":
            for ident in child.named_children:
                if ident.type == "identifier":
                    bindings.append(ImportBinding(node_text(ident), specifier, is_namespace=True))
        elif child.type == "named_imports":
            for spec in child.named_children:
                if spec.type != "import_specifier":
                    continue
                local = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                bindings.append(ImportBinding(node_text(local), specifier))
    return bindings


def _export_clause_names(clause: Node) -> list[str]:
    names: list[str] = []
    for spec in clause.named_children:
        if spec.type == "export_specifier":
            exported = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
            names.append(node_text(exported))
    return names


def collect_imports(root: Node) -> ImportTable:
    """Collect import statements and re-exports of a module's top level."""
    table = ImportTable()
    for statement in root.named_children:
        if statement.type == "import_statement":
            source = statement.child_by_field_name("source")
            if source is None:
                continue
            specifier = string_value(source)
            bindings: list[ImportBinding] = []
            for child in statement.named_children:
                if child.type == "import_clause":
                    bindings.extend(_import_clause_bindings(child, specifier))
            for binding in bindings:
                table.bindings[binding.local_name] = binding
            table.add_source(specifier, [binding.local_name for binding in bindings])

        elif statement.type == "export_statement":
            source = statement.child_by_field_name("source")
            if source is None:
                continue
            names: list[str] = []
            for child in statement.named_children:
                if child.type == "export_clause":
                    names.extend(_export_clause_names(child))
                elif child.type == "namespace_export":
                    names.extend(
                        node_text(ident)
                        for ident in child.named_children
                        if ident.type == "identifier"
                    )
            table.add_source(string_value(source), names)
    return table


def _member_chain(node: Node) -> str | None:
    """Collapse ``a.b.c`` to its dotted text when rooted at an identifier."""
    parts: list[str] = []
    current: Node | None = node
    while current is not None and current.type == "member_expression":
        prop = current.child_by_field_name("property")
        if prop is None or prop.type != "property_identifier":
            return None
        parts.append(node_text(prop))
        current = current.child_by_field_name("object")
    if current is None or current.type != "identifier":
        return None
    parts.append(node_text(current))
    return ".".join(reversed(parts))


def find_used_identifiers(node: Node) -> set[str]:
    """Identifiers referenced anywhere under ``node``.

    Plain identifiers, type identifiers and shorthand properties are collected
    as-is; member-access chains rooted at an identifier are collected both as
    the dotted chain and (through their root) as the bare identifier.
    """
    used: set[str] = set()
    for child in walk(node):
        if child.type in ("identifier", "type_identifier", "shorthand_property_identifier"):
            used.add(node_text(child))
        elif child.type == "member_expression":
            chain = _member_chain(child)
            if chain:
                used.add(chain)
        elif child.type == "nested_type_identifier":
            module = child.child_by_field_name("module")
            name = child.child_by_field_name("name")
            if module is not None and name is not None:
                used.add(f"{node_text(module)}.{node_text(name)}")
    return used


def resolve_dependencies(
    used: set[str],
    imports: ImportTable,
    file_path: str,
    config: AnalyzerConfig,
) -> list[DeclarationDependency]:
    """Group the imported identifiers in ``used`` by their source.

    Internal sources are keyed by resolved file path, external ones by
    specifier. Internal entries come first; both keep import order.
    """
    internal: dict[str, list[str]] = {}
    external: dict[str, list[str]] = {}

    def add(specifier: str, name: str) -> None:
        if is_internal_specifier(specifier, config):
            target = internal.setdefault(resolve_import_path(specifier, file_path, config), [])
        else:
            target = external.setdefault(specifier, [])
        if name not in target:
            target.append(name)

    for binding in imports.bindings.values():
        if binding.is_namespace:
            prefix = f"{binding.local_name}."
            members = sorted(
                {item[len(prefix):].split(".", 1)[0] for item in used if item.startswith(prefix)}
            )
            for member in members:
                add(binding.specifier, member)
        elif binding.local_name in used:
            add(binding.specifier, binding.local_name)

    dependencies: list[DeclarationDependency] = [
        InternalDependency(from_path=path, depends_on=names)
        for path, names in internal.items()
        if names
    ]
    dependencies.extend(
        ExternalDependency(
            from_path=specifier,
            name=extract_package_name(specifier),
            depends_on=names,
        )
        for specifier, names in external.items()
        if names
    )
    return dependencies


def import_edges(
    imports: ImportTable, file_path: str, config: AnalyzerConfig
) -> list[DeclarationDependency]:
    """Every import/re-export of a file as dependency entries."""
    dependencies: list[DeclarationDependency] = []
    external: list[DeclarationDependency] = []
    for specifier, names in imports.sources.items():
        if is_internal_specifier(specifier, config):
            dependencies.append(
                InternalDependency(
                    from_path=resolve_import_path(specifier, file_path, config),
                    depends_on=list(names),
                )
            )
        else:
            external.append(
                ExternalDependency(
                    from_path=specifier,
                    name=extract_package_name(specifier),
                    depends_on=list(names),
                )
            )
    return dependencies + external
