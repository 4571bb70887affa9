"""Per-language entity extraction.

Every extractor turns the text of one file into declaration nodes (functions,
classes, doc comments) plus the raw import specifiers of the file. The
:class:`ExtractorRegistry` picks an extractor by file extension and prepends
the file node, so callers always receive ``[file_node, *declarations]``.

The extractors here are pattern based and deliberately lossy. When
tree-sitter-languages is installed, :func:`default_registry` puts the
parser-backed extractors from :mod:`context_engine.parser` in front of them and
keeps these as the fallback.
"""

from __future__ import annotations

import ast
import logging
import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Iterable, Optional

from context_engine.errors import ExtractionError
from context_engine.models import FILE_PREVIEW_CHARS, ContextNode, NodeKind

logger = logging.getLogger(__name__)

MIN_COMMENT_CHARS = 50

_DOC_COMMENT_RE = re.compile(r"/\*\*[\s\S]*?\*/")
_ANY_COMMENT_RE = re.compile(r"/\*\*[\s\S]*?\*/|//.*$", re.MULTILINE)


def line_number(content: str, index: int) -> int:
    """1-based line number of character ``index``."""
    return content.count("\n", 0, index) + 1


def extract_brace_body(content: str, start: int) -> str:
    """Return the text from ``start`` through the matching closing brace.

    Braces inside the parameter list are skipped. A declaration ending in
    ``;`` before any body is returned up to that ``;``. An unterminated body
    runs to the end of the file.
    """
    open_at = -1
    parens = 0
    for index in range(start, len(content)):
        char = content[index]
        if char == "(":
            parens += 1
        elif char == ")":
            parens = max(parens - 1, 0)
        elif parens == 0 and char == "{":
            open_at = index
            break
        elif parens == 0 and char == ";":
            return content[start : index + 1]
    if open_at == -1:
        end = content.find("\n", start)
        return content[start:] if end == -1 else content[start:end]

    depth = 0
    for index in range(open_at, len(content)):
        char = content[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return content[start : index + 1]
    return content[start:]


def extract_indented_body(lines: list[str], start_index: int) -> str:
    """Return the declaration line plus every following line indented deeper."""
    header = lines[start_index]
    indent = len(header) - len(header.lstrip())
    end = start_index + 1
    last_content = start_index
    while end < len(lines):
        line = lines[end]
        if line.strip():
            if len(line) - len(line.lstrip()) <= indent:
                break
            last_content = end
        end += 1
    return "\n".join(lines[start_index : last_content + 1])


def _arrow_body(content: str, start: int) -> str:
    arrow = content.find("=>", start)
    if arrow == -1:
        return extract_brace_body(content, start)
    rest = content[arrow + 2 :].lstrip()
    if rest.startswith("{"):
        return content[start:arrow] + extract_brace_body(content, arrow)
    end = content.find("\n", arrow)
    return content[start:] if end == -1 else content[start:end]


def make_node(
    kind: NodeKind,
    path: str,
    name: str,
    body: str,
    start_line: int,
    *,
    prefix: Optional[str] = None,
) -> ContextNode:
    """Build a declaration node with the canonical ``<kind>:<path>:<name>`` id."""
    return ContextNode(
        id=f"{prefix or kind.value}:{path}:{name}",
        kind=kind,
        path=path,
        name=name,
        content=body,
        start_line=start_line,
        end_line=start_line + body.count("\n"),
    )


def comment_node(path: str, text: str, line: int) -> ContextNode:
    return ContextNode(
        id=f"comment:{path}:{line}",
        kind=NodeKind.COMMENT,
        path=path,
        name=f"Comment at line {line}",
        content=text,
        start_line=line,
        end_line=line + text.count("\n"),
    )


def comment_nodes(path: str, content: str, pattern: re.Pattern = _ANY_COMMENT_RE) -> list[ContextNode]:
    """Comments longer than :data:`MIN_COMMENT_CHARS` become ``comment`` nodes."""
    return [
        comment_node(path, match.group(0), line_number(content, match.start()))
        for match in pattern.finditer(content)
        if len(match.group(0)) > MIN_COMMENT_CHARS
    ]


class LanguageExtractor(ABC):
    """Capability: text of one file -> declaration nodes and import specifiers."""

    language: str = "generic"
    extensions: tuple[str, ...] = ()

    @abstractmethod
    def extract(self, path: str, content: str) -> list[ContextNode]:
        """Return declaration nodes, excluding the file node."""

    def extract_imports(self, content: str) -> list[str]:
        return []


class JavaScriptExtractor(LanguageExtractor):
    """Functions, classes and arrow-function constants in JS/TS sources."""

    language = "javascript"
    extensions = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")

    FUNCTION_RE = re.compile(
        r"(?:export\s+)?(?:default\s+)?(?:async\s+)?\bfunction(?:\s*\*\s*|\s+)(\w+)\s*(?:<[^>(]*>)?\s*\("
    )
    CLASS_RE = re.compile(r"(?:export\s+)?(?:default\s+)?(?:abstract\s+)?\bclass\s+(\w+)")
    ARROW_RE = re.compile(
        r"(?:export\s+)?(?:const|let|var)\s+(\w+)\s*(?::[^=;\n]+)?=\s*(?:async\s+)?"
        r"(?:\([^)]*\)|\w+)\s*(?::\s*[^=;\n]+)?=>"
    )
    IMPORT_FROM_RE = re.compile(r"""import\s+(?:type\s+)?[\w*{}\s,$]+?\s+from\s+['"`]([^'"`]+)['"`]""")
    BARE_IMPORT_RE = re.compile(r"""import\s*\(?\s*['"`]([^'"`]+)['"`]""")
    REQUIRE_RE = re.compile(r"""require\(\s*['"`]([^'"`]+)['"`]\s*\)""")

    def extract(self, path: str, content: str) -> list[ContextNode]:
        nodes: list[ContextNode] = []
        for match in self.FUNCTION_RE.finditer(content):
            body = extract_brace_body(content, match.start())
            nodes.append(make_node(NodeKind.FUNCTION, path, match.group(1), body, line_number(content, match.start())))
        for match in self.CLASS_RE.finditer(content):
            body = extract_brace_body(content, match.start())
            nodes.append(make_node(NodeKind.CLASS, path, match.group(1), body, line_number(content, match.start())))
        for match in self.ARROW_RE.finditer(content):
            body = _arrow_body(content, match.start())
            nodes.append(make_node(NodeKind.FUNCTION, path, match.group(1), body, line_number(content, match.start())))
        nodes.extend(comment_nodes(path, content, _DOC_COMMENT_RE))
        return nodes

    def extract_imports(self, content: str) -> list[str]:
        found: list[tuple[int, str]] = []
        for pattern in (self.IMPORT_FROM_RE, self.BARE_IMPORT_RE, self.REQUIRE_RE):
            found.extend((match.start(), match.group(1)) for match in pattern.finditer(content))
        return ordered_unique(spec for _, spec in sorted(found))


class PythonExtractor(LanguageExtractor):
    """``def``/``class`` declarations located with :mod:`ast`, regex scan as fallback."""

    language = "python"
    extensions = (".py", ".pyi")

    DECL_RE = re.compile(r"^([ \t]*)(?:async\s+)?(def|class)\s+(\w+)", re.MULTILINE)
    FROM_IMPORT_RE = re.compile(r"^[ \t]*from\s+(\.*[\w.]*)\s+import\b", re.MULTILINE)
    IMPORT_RE = re.compile(r"^[ \t]*import\s+([\w.]+(?:\s*,\s*[\w.]+)*)", re.MULTILINE)

    def extract(self, path: str, content: str) -> list[ContextNode]:
        lines = content.split("\n")
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError):
            logger.debug("Falling back to pattern scan for %s", path)
            return self._extract_with_regex(path, content, lines)

        nodes: list[ContextNode] = []
        for node in ast.walk(tree):
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                kind = NodeKind.FUNCTION
            elif isinstance(node, ast.ClassDef):
                kind = NodeKind.CLASS
            else:
                continue
            end = getattr(node, "end_lineno", None) or node.lineno
            body = "\n".join(lines[node.lineno - 1 : end])
            nodes.append(make_node(kind, path, node.name, body, node.lineno))
        nodes.sort(key=lambda item: item.start_line or 0)
        return nodes

    def _extract_with_regex(self, path: str, content: str, lines: list[str]) -> list[ContextNode]:
        nodes = []
        for match in self.DECL_RE.finditer(content):
            start = line_number(content, match.start())
            kind = NodeKind.FUNCTION if match.group(2) == "def" else NodeKind.CLASS
            body = extract_indented_body(lines, start - 1)
            nodes.append(make_node(kind, path, match.group(3), body, start))
        return nodes

    def extract_imports(self, content: str) -> list[str]:
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError):
            found: list[tuple[int, str]] = [
                (match.start(), match.group(1)) for match in self.FROM_IMPORT_RE.finditer(content)
            ]
            for match in self.IMPORT_RE.finditer(content):
                found.extend((match.start(), name.strip()) for name in match.group(1).split(","))
            return ordered_unique(spec for _, spec in sorted(found))

        imports: list[str] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                imports.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                imports.append("." * node.level + (node.module or ""))
        return ordered_unique(imports)


class JavaExtractor(LanguageExtractor):
    """Classes, interfaces, enums and methods in Java sources."""

    language = "java"
    extensions = (".java",)

    CLASS_RE = re.compile(
        r"(?:(?:public|private|protected|abstract|final|static)\s+)*\b(?:class|interface|enum)\s+(\w+)"
    )
    METHOD_RE = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|static|final|abstract|synchronized|native)\s+)*"
        r"(?:[\w<>\[\]?.]+\s+)?(\w+)\s*\([^)]*\)\s*(?:throws\s+[\w.,\s]+?)?\s*\{",
        re.MULTILINE,
    )
    IMPORT_RE = re.compile(r"^\s*import\s+(?:static\s+)?([\w.*]+)\s*;", re.MULTILINE)
    NOT_METHODS = frozenset({"if", "for", "while", "switch", "catch", "synchronized", "return", "new", "else", "try", "do"})

    def extract(self, path: str, content: str) -> list[ContextNode]:
        nodes: list[ContextNode] = []
        for match in self.CLASS_RE.finditer(content):
            body = extract_brace_body(content, match.start())
            nodes.append(make_node(NodeKind.CLASS, path, match.group(1), body, line_number(content, match.start())))
        for match in self.METHOD_RE.finditer(content):
            name = match.group(1)
            if name in self.NOT_METHODS:
                continue
            body = extract_brace_body(content, match.start())
            nodes.append(
                make_node(
                    NodeKind.FUNCTION, path, name, body.strip("\n"), line_number(content, match.start()), prefix="method"
                )
            )
        return nodes

    def extract_imports(self, content: str) -> list[str]:
        return ordered_unique(self.IMPORT_RE.findall(content))


class GoExtractor(LanguageExtractor):
    """Functions (with receivers) and struct/interface types in Go sources."""

    language = "go"
    extensions = (".go",)

    FUNC_RE = re.compile(r"^func\s+(?:\([^)]*\)\s*)?(\w+)\s*(?:\[[^\]]*\])?\s*\(", re.MULTILINE)
    TYPE_RE = re.compile(r"^type\s+(\w+)\s+(?:struct|interface)\b", re.MULTILINE)
    IMPORT_BLOCK_RE = re.compile(r"import\s*\((.*?)\)", re.DOTALL)
    IMPORT_RE = re.compile(r'import\s+(?:\w+\s+)?"([^"]+)"')

    def extract(self, path: str, content: str) -> list[ContextNode]:
        nodes: list[ContextNode] = []
        for match in self.FUNC_RE.finditer(content):
            body = extract_brace_body(content, match.start())
            nodes.append(make_node(NodeKind.FUNCTION, path, match.group(1), body, line_number(content, match.start())))
        for match in self.TYPE_RE.finditer(content):
            body = extract_brace_body(content, match.start())
            nodes.append(make_node(NodeKind.CLASS, path, match.group(1), body, line_number(content, match.start())))
        return nodes

    def extract_imports(self, content: str) -> list[str]:
        imports: list[str] = []
        for block in self.IMPORT_BLOCK_RE.findall(content):
            imports.extend(re.findall(r'"([^"]+)"', block))
        imports.extend(self.IMPORT_RE.findall(content))
        return ordered_unique(imports)


class GenericExtractor(LanguageExtractor):
    """Fallback for unknown file types: long comments only."""

    def extract(self, path: str, content: str) -> list[ContextNode]:
        return comment_nodes(path, content)


def ordered_unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


class ExtractorRegistry:
    """Maps file extensions to :class:`LanguageExtractor` implementations."""

    def __init__(self, fallback: Optional[LanguageExtractor] = None):
        self._by_extension: dict[str, LanguageExtractor] = {}
        self._fallback = fallback or GenericExtractor()

    def register(self, extractor: LanguageExtractor, extensions: Iterable[str] | None = None) -> None:
        for extension in extensions or extractor.extensions:
            self._by_extension[extension.lower()] = extractor

    def for_path(self, path: str) -> LanguageExtractor:
        return self._by_extension.get(PurePosixPath(path).suffix.lower(), self._fallback)

    @property
    def extensions(self) -> list[str]:
        return sorted(self._by_extension)

    def extract(self, path: str, content: str) -> list[ContextNode]:
        """Return ``[file_node, *declarations]`` for one file.

        Raises:
            ExtractionError: if the language extractor fails on this file.
        """
        extractor = self.for_path(path)
        try:
            imports = extractor.extract_imports(content)
            declarations = extractor.extract(path, content)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(path, str(exc) or type(exc).__name__) from exc

        file_node = ContextNode(
            id=f"file:{path}",
            kind=NodeKind.FILE,
            path=path,
            name=PurePosixPath(path).name or path,
            content=content[:FILE_PREVIEW_CHARS],
            start_line=1,
            end_line=content.count("\n") + 1,
            imports=imports,
        )

        nodes = [file_node]
        seen = {file_node.id}
        for node in declarations:
            if node.id in seen:
                # Same name declared twice in one file: disambiguate by line.
                node.id = f"{node.id}:{node.start_line}"
                if node.id in seen:
                    continue
            seen.add(node.id)
            nodes.append(node)
        return nodes


def default_registry(use_tree_sitter: bool = True) -> ExtractorRegistry:
    """Registry with every built-in language extractor.

    Args:
        use_tree_sitter: parse with tree-sitter where it is installed
    """
    registry = ExtractorRegistry()
    for extractor in (JavaScriptExtractor(), PythonExtractor(), JavaExtractor(), GoExtractor()):
        registry.register(extractor)
    if use_tree_sitter:
        # Imported here: the parser module builds on the helpers above.
        from context_engine.parser import register_tree_sitter

        register_tree_sitter(registry)
    return registry


__all__ = [
    "ExtractorRegistry",
    "GenericExtractor",
    "GoExtractor",
    "JavaExtractor",
    "JavaScriptExtractor",
    "LanguageExtractor",
    "PythonExtractor",
    "default_registry",
    "comment_node",
    "comment_nodes",
    "extract_brace_body",
    "extract_indented_body",
    "line_number",
    "make_node",
    "ordered_unique",
]
