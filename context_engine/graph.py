"""Call graph and dependency edge construction.

Calls are matched by identifier name only: any ``name(`` inside a function or
class body counts as a call to every declaration called ``name``. False edges
are possible and accepted.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections import defaultdict
from typing import Iterable, Mapping, Optional

import networkx as nx

from context_engine.models import ContextNode, NodeKind

logger = logging.getLogger(__name__)

_CALL_RE = re.compile(r"\b([A-Za-z_$][\w$]*)\s*\(")

# Control-flow words and operators that look like calls.
CALL_KEYWORDS = frozenset(
    {
        "if",
        "elif",
        "else",
        "for",
        "while",
        "switch",
        "case",
        "catch",
        "return",
        "function",
        "typeof",
        "instanceof",
        "sizeof",
        "new",
        "super",
        "await",
        "async",
        "yield",
        "def",
        "class",
        "with",
        "assert",
        "lambda",
        "not",
        "and",
        "or",
        "in",
        "is",
        "except",
        "try",
        "do",
        "import",
        "require",
        "export",
        "throw",
        "delete",
        "void",
        "func",
        "go",
        "defer",
        "synchronized",
    }
)

_RESOLVABLE_KINDS = (NodeKind.FUNCTION, NodeKind.CLASS)
_SCRIPT_SUFFIXES = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".d.ts")


def extract_calls(content: str, own_name: Optional[str] = None) -> list[str]:
    """Distinct called identifiers in ``content``, in order of first appearance."""
    calls: list[str] = []
    seen: set[str] = set()
    for match in _CALL_RE.finditer(content):
        name = match.group(1)
        if name in CALL_KEYWORDS or name == own_name or name in seen:
            continue
        seen.add(name)
        calls.append(name)
    return calls


class CallGraph:
    """Forward (node id -> called names) and reverse (name -> caller ids) maps."""

    def __init__(self) -> None:
        self.forward: dict[str, set[str]] = defaultdict(set)
        self.reverse: dict[str, set[str]] = defaultdict(set)

    def add_nodes(self, nodes: Iterable[ContextNode]) -> None:
        for node in nodes:
            if node.kind not in _RESOLVABLE_KINDS:
                continue
            for name in extract_calls(node.content, node.name):
                self.forward[node.id].add(name)
                self.reverse[name].add(node.id)

    def calls_of(self, node_id: str) -> set[str]:
        return self.forward.get(node_id, set())

    def callers_of(self, name: str) -> set[str]:
        return self.reverse.get(name, set())

    def out_degree(self, node_id: str) -> int:
        return len(self.forward.get(node_id, ()))

    def remove_callers(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            for name in self.forward.pop(node_id, set()):
                callers = self.reverse.get(name)
                if callers is None:
                    continue
                callers.discard(node_id)
                if not callers:
                    del self.reverse[name]

    def __len__(self) -> int:
        return len(self.forward)


def resolve_import(importer: str, specifier: str, file_paths: set[str]) -> Optional[str]:
    """Map a relative import specifier to an indexed file path, if any."""
    if specifier.startswith(("./", "../")):
        base = posixpath.normpath(posixpath.join(posixpath.dirname(importer), specifier))
        candidates = [base]
        candidates.extend(base + suffix for suffix in _SCRIPT_SUFFIXES)
        candidates.extend(posixpath.join(base, "index" + suffix) for suffix in _SCRIPT_SUFFIXES)
    elif specifier.startswith("."):
        level = len(specifier) - len(specifier.lstrip("."))
        module = specifier[level:]
        directory = posixpath.dirname(importer)
        for _ in range(level - 1):
            directory = posixpath.dirname(directory)
        base = posixpath.join(directory, *module.split(".")) if module else directory
        base = posixpath.normpath(base) if base else ""
        candidates = [posixpath.join(base, "__init__.py")]
        if module:
            candidates.insert(0, f"{base}.py")
    else:
        return None

    for candidate in candidates:
        if candidate in file_paths:
            return candidate
    return None


def link_nodes(
    nodes: Mapping[str, ContextNode],
    call_graph: CallGraph,
    graph: Optional[nx.DiGraph] = None,
) -> nx.DiGraph:
    """Resolve calls and relative imports into symmetric node edges.

    ``dependencies``/``dependents`` of every node are rebuilt from scratch and
    the same edges are mirrored into a ``networkx.DiGraph``.
    """
    graph = graph if graph is not None else nx.DiGraph()
    graph.clear()
    for node in nodes.values():
        node.dependencies.clear()
        node.dependents.clear()
        graph.add_node(node.id, kind=node.kind.value, path=node.path)

    definitions: dict[str, list[str]] = defaultdict(list)
    file_paths: set[str] = set()
    for node in nodes.values():
        if node.kind in _RESOLVABLE_KINDS:
            definitions[node.name].append(node.id)
        elif node.kind is NodeKind.FILE:
            file_paths.add(node.path)

    def connect(source: str, target: str, relation: str) -> None:
        if source == target:
            return
        nodes[source].dependencies.add(target)
        nodes[target].dependents.add(source)
        graph.add_edge(source, target, relation=relation)

    for caller_id, names in call_graph.forward.items():
        if caller_id not in nodes:
            continue
        for name in names:
            for target in definitions.get(name, ()):
                connect(caller_id, target, "calls")

    for node in nodes.values():
        if node.kind is not NodeKind.FILE:
            continue
        for specifier in node.imports:
            target_path = resolve_import(node.path, specifier, file_paths)
            if target_path is not None:
                connect(node.id, f"file:{target_path}", "imports")

    logger.debug(
        "Linked %d nodes with %d dependency edges", graph.number_of_nodes(), graph.number_of_edges()
    )
    return graph


def rank_files(graph: nx.DiGraph) -> dict[str, float]:
    """PageRank over the dependency graph, summed per file path."""
    if graph.number_of_nodes() == 0:
        return {}
    try:
        scores = nx.pagerank(graph, alpha=0.85)
    except nx.PowerIterationFailedConvergence:
        logger.warning("PageRank did not converge; falling back to in-degree ranking")
        total = max(graph.number_of_nodes() - 1, 1)
        scores = {node: graph.in_degree(node) / total for node in graph.nodes}

    per_file: dict[str, float] = defaultdict(float)
    for node_id, score in scores.items():
        per_file[graph.nodes[node_id].get("path", node_id)] += score
    return dict(per_file)


__all__ = ["CALL_KEYWORDS", "CallGraph", "extract_calls", "link_nodes", "rank_files", "resolve_import"]
