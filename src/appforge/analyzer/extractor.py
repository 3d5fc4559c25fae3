"""Single-file extraction of exported declarations and their dependencies."""

import logging
from dataclasses import dataclass

from tree_sitter import Node

from appforge.analyzer.config import HTTP_METHODS, PROCEDURE_OPERATIONS, AnalyzerConfig
from appforge.analyzer.exceptions import UnsupportedSourceError
from appforge.analyzer.imports import (
    ImportTable,
    collect_imports,
    find_used_identifiers,
    import_edges,
    resolve_dependencies,
)
from appforge.analyzer.paths import derive_route_path, to_project_path
from appforge.models import DependencyMap, ExtractedDeclaration
from appforge.utils.ast_parser import (
    contains_jsx,
    has_child_token,
    node_text,
    parse_source,
    string_value,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_NAME = "default"

_DECLARATION_KINDS = {
    "function_declaration": "function",
    "generator_function_declaration": "function",
    "function_signature": "function",
    "class_declaration": "class",
    "abstract_class_declaration": "class",
    "interface_declaration": "interface",
    "type_alias_declaration": "type",
    "enum_declaration": "enum",
}
_VARIABLE_DECLARATIONS = ("lexical_declaration", "variable_declaration")


@dataclass
class _Binding:
    """A top-level binding and the syntax node that defines it."""

    name: str
    kind: str
    node: Node


def _pattern_names(pattern: Node) -> list[str]:
    """Names bound by a destructuring pattern."""
    if pattern.type == "identifier":
        return [node_text(pattern)]
    names: list[str] = []
    for child in pattern.named_children:
        if child.type in ("shorthand_property_identifier_pattern", "identifier"):
            names.append(node_text(child))
        elif child.type == "pair_pattern":
            value = child.child_by_field_name("value")
            if value is not None:
                names.extend(_pattern_names(value))
        elif child.type in ("object_pattern", "array_pattern", "rest_pattern"):
            names.extend(_pattern_names(child))
        elif child.type in ("object_assignment_pattern", "assignment_pattern"):
            left = child.child_by_field_name("left")
            if left is not None:
                names.extend(_pattern_names(left))
    return names


def _declared_bindings(node: Node) -> list[_Binding]:
    """Bindings introduced by one declaration node."""
    if node.type in _DECLARATION_KINDS:
        name = node.child_by_field_name("name")
        if name is None:
            return []
        return [_Binding(node_text(name), _DECLARATION_KINDS[node.type], node)]

    if node.type in _VARIABLE_DECLARATIONS:
        bindings: list[_Binding] = []
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            name = declarator.child_by_field_name("name")
            if name is None:
                continue
            for bound in _pattern_names(name):
                bindings.append(_Binding(bound, "variable", declarator))
        return bindings

    return []


def _collect_exported_bindings(root: Node) -> list[_Binding]:
    """Top-level exported bindings, in source order, first definition wins."""
    local: dict[str, _Binding] = {}
    exported: dict[str, _Binding] = {}
    exported_refs: list[tuple[str, str]] = []  # (local name, exported name)

    for statement in root.named_children:
        if statement.type != "export_statement":
            for binding in _declared_bindings(statement):
                local.setdefault(binding.name, binding)
            continue

        if statement.child_by_field_name("source") is not None:
            continue  # re-export; recorded as an import edge only

        declaration = statement.child_by_field_name("declaration")
        is_default = has_child_token(statement, "default")
        if declaration is not None:
            bindings = _declared_bindings(declaration)
            if not bindings and is_default:
                bindings = [_Binding(DEFAULT_EXPORT_NAME, "default", declaration)]
            for binding in bindings:
                local.setdefault(binding.name, binding)
                exported.setdefault(binding.name, binding)
            continue

        value = statement.child_by_field_name("value")
        if value is not None and is_default:
            if value.type == "identifier":
                exported_refs.append((node_text(value), node_text(value)))
            else:
                exported.setdefault(
                    DEFAULT_EXPORT_NAME, _Binding(DEFAULT_EXPORT_NAME, "default", value)
                )
            continue

        for clause in statement.named_children:
            if clause.type != "export_clause":
                continue
            for spec in clause.named_children:
                if spec.type != "export_specifier":
                    continue
                name = node_text(spec.child_by_field_name("name"))
                alias = spec.child_by_field_name("alias")
                exported_refs.append((name, node_text(alias) if alias is not None else name))

    for local_name, exported_name in exported_refs:
        binding = local.get(local_name)
        if binding is None or exported_name in exported:
            continue
        exported[exported_name] = _Binding(exported_name, binding.kind, binding.node)

    return list(exported.values())


def _router_object(declarator: Node) -> Node | None:
    """The object literal of ``x = {...}`` or ``x = router({...})``."""
    if declarator.type != "variable_declarator":
        return None
    value = declarator.child_by_field_name("value")
    if value is None:
        return None
    if value.type == "object":
        return value
    if value.type == "call_expression":
        arguments = value.child_by_field_name("arguments")
        if arguments is not None:
            for argument in arguments.named_children:
                if argument.type == "object":
                    return argument
    return None


def _call_chain_identifiers(node: Node) -> list[str]:
    """Identifiers along a call chain like ``p.input(x).mutation(fn)``."""
    identifiers: list[str] = []
    current: Node | None = node
    while current is not None:
        if current.type == "call_expression":
            current = current.child_by_field_name("function")
        elif current.type == "member_expression":
            prop = current.child_by_field_name("property")
            if prop is not None:
                identifiers.append(node_text(prop))
            current = current.child_by_field_name("object")
        elif current.type == "identifier":
            identifiers.append(node_text(current))
            break
        else:
            break
    return identifiers


def _property_name(pair: Node) -> str | None:
    key = pair.child_by_field_name("key")
    if key is None:
        return None
    if key.type in ("property_identifier", "identifier"):
        return node_text(key)
    if key.type == "string":
        return string_value(key)
    return None


def _router_procedures(router: Node, config: AnalyzerConfig) -> list[tuple[str, Node]]:
    """``(property name, pair node)`` for each query/mutation procedure."""
    procedures: list[tuple[str, Node]] = []
    for pair in router.named_children:
        if pair.type != "pair":
            continue
        name = _property_name(pair)
        value = pair.child_by_field_name("value")
        if not name or value is None or value.type != "call_expression":
            continue
        chain = _call_chain_identifiers(value)
        has_procedure = any(config.is_procedure_identifier(ident) for ident in chain)
        has_operation = any(ident in PROCEDURE_OPERATIONS for ident in chain)
        if has_procedure and has_operation:
            procedures.append((name, pair))
    return procedures


def _is_relation(node: Node) -> bool:
    if node.type != "variable_declarator":
        return False
    value = node.child_by_field_name("value")
    if value is None or value.type != "call_expression":
        return False
    function = value.child_by_field_name("function")
    return function is not None and function.type == "identifier" and node_text(function) == "relations"


def _shape_bindings(
    bindings: list[_Binding], file_path: str, config: AnalyzerConfig
) -> list[_Binding]:
    """Apply the route, schema and RPC-router naming rules."""
    if config.is_route_file(file_path):
        route_path = derive_route_path(file_path, config)
        return [
            _Binding(f"{binding.name}:{route_path}", "route", binding.node)
            for binding in bindings
            if binding.name in HTTP_METHODS
        ]

    shaped: list[_Binding] = []
    is_schema = config.is_schema_file(file_path)
    is_rpc = config.is_rpc_file(file_path)
    for binding in bindings:
        if is_schema and _is_relation(binding.node):
            continue
        if is_rpc and binding.kind == "variable":
            router = _router_object(binding.node)
            if router is not None:
                for prop_name, pair in _router_procedures(router, config):
                    shaped.append(_Binding(f"{binding.name}.{prop_name}", "procedure", pair))
                continue
        shaped.append(binding)
    return shaped


def _synthesized_default(
    root: Node, imports: ImportTable, file_path: str, config: AnalyzerConfig
) -> ExtractedDeclaration:
    return ExtractedDeclaration(
        name=DEFAULT_EXPORT_NAME,
        kind="default",
        source_text=node_text(root),
        dependencies=import_edges(imports, file_path, config),
    )


def extract_declarations(
    content: str,
    file_path: str,
    config: AnalyzerConfig | None = None,
) -> dict[str, ExtractedDeclaration]:
    """Extract every exported declaration of one file.

    Args:
        content: Source text.
        file_path: Project path of the file; decides grammar and shaping rules.
        config: Project-layout conventions (defaults apply when omitted).

    Returns:
        Mapping of declaration name to ExtractedDeclaration, in source order.
        A file without declarations but with imports yields a single
        synthesized ``default`` declaration carrying all import edges.

    Raises:
        UnsupportedSourceError: If the file type cannot be parsed.
    """
    config = config or AnalyzerConfig()
    file_path = to_project_path(file_path)
    try:
        tree = parse_source(content, file_path)
    except ValueError as exc:
        raise UnsupportedSourceError(str(exc)) from exc

    root = tree.root_node
    if root.has_error:
        logger.debug("Syntax errors in %s; extracting best-effort declarations", file_path)

    imports = collect_imports(root)
    bindings = _shape_bindings(_collect_exported_bindings(root), file_path, config)

    declarations: dict[str, ExtractedDeclaration] = {}
    for binding in bindings:
        if binding.name in declarations:
            continue
        declarations[binding.name] = ExtractedDeclaration(
            name=binding.name,
            kind=binding.kind,
            source_text=node_text(binding.node),
            dependencies=resolve_dependencies(
                find_used_identifiers(binding.node), imports, file_path, config
            ),
            renders_jsx=contains_jsx(binding.node),
        )

    if not declarations and not imports.is_empty:
        declarations[DEFAULT_EXPORT_NAME] = _synthesized_default(root, imports, file_path, config)

    return declarations


def process_all_declarations(
    content: str,
    file_path: str,
    config: AnalyzerConfig | None = None,
) -> DependencyMap:
    """Map each exported declaration name to its dependency list.

    Raises:
        UnsupportedSourceError: If the file type cannot be parsed.
    """
    return {
        name: declaration.dependencies
        for name, declaration in extract_declarations(content, file_path, config).items()
    }
