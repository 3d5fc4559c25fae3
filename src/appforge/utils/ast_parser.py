"""AST parser utility for JavaScript/TypeScript using tree-sitter."""

from collections.abc import Iterator
from pathlib import PurePosixPath

import tree_sitter_javascript as tsjs
import tree_sitter_typescript as tsts
from tree_sitter import Language, Node, Parser, Tree

# Initialize language objects
JS_LANGUAGE = Language(tsjs.language())
TS_LANGUAGE = Language(tsts.language_typescript())
TSX_LANGUAGE = Language(tsts.language_tsx())

_EXTENSION_LANGUAGES = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}

_LANGUAGES = {
    "javascript": JS_LANGUAGE,
    "typescript": TS_LANGUAGE,
    "tsx": TSX_LANGUAGE,
}

JSX_NODE_TYPES = ("jsx_element", "jsx_self_closing_element", "jsx_fragment")


def is_supported_source(file_path: str) -> bool:
    return PurePosixPath(file_path).suffix in _EXTENSION_LANGUAGES


def get_language_for_file(file_path: str) -> str:
    """Map file extension to tree-sitter language name.

    Args:
        file_path: Path to the file

    Returns:
        Language name ("javascript", "typescript", "tsx")

    Raises:
        ValueError: If file extension is not supported
    """
    ext = PurePosixPath(file_path).suffix
    if ext not in _EXTENSION_LANGUAGES:
        raise ValueError(f"Unsupported file extension: {ext or file_path}")
    return _EXTENSION_LANGUAGES[ext]


def get_parser(language: str) -> Parser:
    """Return a tree-sitter Parser for the given language name.

    Raises:
        ValueError: If the language is unknown
    """
    if language not in _LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    parser = Parser()
    parser.language = _LANGUAGES[language]
    return parser


def parse_source(source: str, file_path: str) -> Tree:
    """Parse in-memory source text, choosing the grammar from ``file_path``.

    Syntax errors do not raise; tree-sitter produces ERROR nodes instead.

    Raises:
        ValueError: If the file extension is not supported
    """
    parser = get_parser(get_language_for_file(file_path))
    return parser.parse(source.encode("utf-8"))


def node_text(node: Node | None) -> str:
    """Decoded source text of a node ("" for None)."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8")


def string_value(node: Node | None) -> str:
    """Content of a string literal node without its quotes."""
    text = node_text(node)
    if len(text) >= 2 and text[0] in "'\"`" and text[-1] == text[0]:
        return text[1:-1]
    return text


def walk(node: Node) -> Iterator[Node]:
    """Yield ``node`` and all of its descendants in source order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def has_child_token(node: Node, token: str) -> bool:
    """True if ``node`` has a direct anonymous child with the given text."""
    return any(not child.is_named and child.type == token for child in node.children)


def contains_jsx(node: Node) -> bool:
    """Return True if a node renders JSX anywhere in its subtree."""
    return any(child.type in JSX_NODE_TYPES for child in walk(node))
