"""Tree-sitter based declaration and import extraction."""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterator, Optional

from context_engine.extractors import (
    MIN_COMMENT_CHARS,
    ExtractorRegistry,
    JavaExtractor,
    LanguageExtractor,
    comment_node,
    make_node,
    ordered_unique,
)
from context_engine.models import ContextNode, NodeKind

try:
    import tree_sitter_languages as tsl

    TREE_SITTER_AVAILABLE = True
except ImportError:
    TREE_SITTER_AVAILABLE = False

logger = logging.getLogger(__name__)

# Extension -> tree-sitter grammar name
LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".go": "go",
}

JS_LANGUAGES = frozenset({"javascript", "typescript", "tsx"})

_JS_DECLARATIONS = {
    "function_declaration": NodeKind.FUNCTION,
    "generator_function_declaration": NodeKind.FUNCTION,
    "class_declaration": NodeKind.CLASS,
    "abstract_class_declaration": NodeKind.CLASS,
}

DECLARATION_TYPES: dict[str, dict[str, NodeKind]] = {
    "python": {"function_definition": NodeKind.FUNCTION, "class_definition": NodeKind.CLASS},
    "javascript": _JS_DECLARATIONS,
    "typescript": _JS_DECLARATIONS,
    "tsx": _JS_DECLARATIONS,
    "java": {
        "class_declaration": NodeKind.CLASS,
        "interface_declaration": NodeKind.CLASS,
        "enum_declaration": NodeKind.CLASS,
        "method_declaration": NodeKind.FUNCTION,
        "constructor_declaration": NodeKind.FUNCTION,
    },
    "go": {"function_declaration": NodeKind.FUNCTION, "method_declaration": NodeKind.FUNCTION},
}

_GO_CLASS_TYPES = frozenset({"struct_type", "interface_type"})
_QUOTES = "'\"`"


def walk(root: Any) -> Iterator[Any]:
    """Every node below ``root`` in document order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def node_text(source: bytes, node: Any) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


class TreeSitterExtractor(LanguageExtractor):
    """Parser-backed extractor for one grammar, with a pattern extractor as fallback.

    Files that fail to parse, parse with errors, or yield no declarations are
    handed to ``fallback`` unchanged.
    """

    def __init__(self, language: str, fallback: LanguageExtractor):
        if language not in DECLARATION_TYPES:
            raise ValueError(f"No tree-sitter declarations for language: {language}")
        self.language = language
        self.fallback = fallback
        self.extensions = tuple(ext for ext, name in LANGUAGE_BY_EXTENSION.items() if name == language)
        self.stats: dict[str, int] = {"parsed": 0, "parse_errors": 0, "invalid_tree": 0, "fallbacks": 0}
        self._stats_lock = threading.Lock()
        self._local = threading.local()

    def _increment_stat(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] = self.stats.get(key, 0) + 1

    def get_parser(self) -> Any:
        """Per-thread parser for this grammar, or ``None`` when unavailable."""
        if not TREE_SITTER_AVAILABLE:
            return None
        if not hasattr(self._local, "parser"):
            try:
                self._local.parser = tsl.get_parser(self.language)
            except Exception as exc:
                logger.debug("Could not get tree-sitter parser for %s: %s", self.language, exc)
                self._local.parser = None
        return self._local.parser

    def parse(self, content: str) -> Optional[tuple[bytes, Any]]:
        """Return ``(source, tree)``, or ``None`` when the fallback should be used.

        The last parse on each thread is reused, since imports and
        declarations are extracted from the same text.
        """
        last = getattr(self._local, "last", None)
        if last is not None and last[0] is content:
            return last[1]

        result = None
        parser = self.get_parser()
        if parser is not None:
            source = content.encode("utf-8", errors="surrogatepass")
            try:
                tree = parser.parse(source)
            except Exception as exc:
                self._increment_stat("parse_errors")
                logger.debug("Tree-sitter parsing failed (%s): %s", self.language, type(exc).__name__)
            else:
                if tree.root_node.has_error:
                    self._increment_stat("invalid_tree")
                else:
                    self._increment_stat("parsed")
                    result = (source, tree)

        self._local.last = (content, result)
        return result

    def extract(self, path: str, content: str) -> list[ContextNode]:
        parsed = self.parse(content)
        nodes = self._declarations(path, content, *parsed) if parsed else []
        if not nodes:
            self._increment_stat("fallbacks")
            return self.fallback.extract(path, content)
        return nodes

    def extract_imports(self, content: str) -> list[str]:
        parsed = self.parse(content)
        if parsed is None:
            return self.fallback.extract_imports(content)
        source, tree = parsed
        found: list[str] = []
        for node in walk(tree.root_node):
            found.extend(self._import_specs(source, node))
        return ordered_unique(found)

    def _declarations(self, path: str, content: str, source: bytes, tree: Any) -> list[ContextNode]:
        lines = content.split("\n")
        nodes: list[ContextNode] = []
        for node in walk(tree.root_node):
            if self.language in JS_LANGUAGES and node.type == "comment":
                text = node_text(source, node)
                if text.startswith("/**") and len(text) > MIN_COMMENT_CHARS:
                    nodes.append(comment_node(path, text, node.start_point[0] + 1))
                continue

            found = self._declaration(source, node)
            if found is None:
                continue
            kind, name, span, prefix = found
            if self.language == "python":
                # Whole lines, so nested bodies keep their indentation.
                body = "\n".join(lines[span.start_point[0] : span.end_point[0] + 1])
            else:
                body = node_text(source, span)
            nodes.append(make_node(kind, path, name, body, span.start_point[0] + 1, prefix=prefix))
        return nodes

    def _declaration(self, source: bytes, node: Any) -> Optional[tuple[NodeKind, str, Any, Optional[str]]]:
        """``(kind, name, span node, id prefix)`` when ``node`` declares something."""
        kind = DECLARATION_TYPES[self.language].get(node.type)
        span = node
        prefix = None

        if kind is None and self.language in JS_LANGUAGES and node.type == "variable_declarator":
            value = node.child_by_field_name("value")
            if value is None or value.type != "arrow_function":
                return None
            kind = NodeKind.FUNCTION
            span = node.parent or node
        elif kind is None and self.language == "go" and node.type == "type_spec":
            type_node = node.child_by_field_name("type")
            if type_node is None or type_node.type not in _GO_CLASS_TYPES:
                return None
            kind = NodeKind.CLASS
            parent = node.parent
            if parent is not None and parent.type == "type_declaration" and len(parent.named_children) == 1:
                span = parent
        elif kind is None:
            return None

        name_node = node.child_by_field_name("name")
        if name_node is None or name_node.type not in ("identifier", "type_identifier", "field_identifier"):
            return None

        if self.language in JS_LANGUAGES and span.parent is not None and span.parent.type == "export_statement":
            span = span.parent
        if self.language == "java" and kind is NodeKind.FUNCTION:
            prefix = "method"
        return kind, node_text(source, name_node), span, prefix

    def _import_specs(self, source: bytes, node: Any) -> list[str]:
        if self.language == "python":
            if node.type == "import_statement":
                specs = []
                for child in node.named_children:
                    if child.type == "aliased_import":
                        child = child.child_by_field_name("name")
                    if child is not None and child.type == "dotted_name":
                        specs.append(node_text(source, child))
                return specs
            if node.type == "import_from_statement":
                module = node.child_by_field_name("module_name")
                return [node_text(source, module)] if module is not None else []
            return []

        if self.language in JS_LANGUAGES:
            if node.type in ("import_statement", "export_statement"):
                spec = node.child_by_field_name("source")
                return [node_text(source, spec).strip(_QUOTES)] if spec is not None else []
            if node.type == "call_expression":
                function = node.child_by_field_name("function")
                arguments = node.child_by_field_name("arguments")
                if function is None or arguments is None or not arguments.named_children:
                    return []
                is_import = function.type == "import" or (
                    function.type == "identifier" and node_text(source, function) == "require"
                )
                first = arguments.named_children[0]
                if is_import and first.type == "string":
                    return [node_text(source, first).strip(_QUOTES)]
            return []

        if self.language == "java":
            if node.type == "import_declaration":
                return JavaExtractor.IMPORT_RE.findall(node_text(source, node))
            return []

        if node.type == "import_spec":
            spec = node.child_by_field_name("path")
            return [node_text(source, spec).strip(_QUOTES)] if spec is not None else []
        return []


def register_tree_sitter(registry: ExtractorRegistry) -> int:
    """Put a tree-sitter extractor in front of each supported extension.

    The extractor already registered for an extension becomes its fallback.
    Returns the number of extensions taken over.
    """
    if not TREE_SITTER_AVAILABLE:
        logger.debug("tree-sitter-languages not available, using pattern extractors")
        return 0

    by_language: dict[str, TreeSitterExtractor] = {}
    for extension, language in LANGUAGE_BY_EXTENSION.items():
        extractor = by_language.get(language)
        if extractor is None:
            extractor = TreeSitterExtractor(language, registry.for_path(f"file{extension}"))
            by_language[language] = extractor
        registry.register(extractor, [extension])
    logger.debug("Tree-sitter extraction enabled for %s", ", ".join(sorted(by_language)))
    return len(LANGUAGE_BY_EXTENSION)


__all__ = [
    "LANGUAGE_BY_EXTENSION",
    "TREE_SITTER_AVAILABLE",
    "TreeSitterExtractor",
    "register_tree_sitter",
    "walk",
]
