"""Index construction: extraction, call graph, dependency edges, embeddings."""

from __future__ import annotations

import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterator, Optional

import networkx as nx
import numpy as np

from context_engine.embeddings import Embedder, HashingEmbedder
from context_engine.errors import ExtractionError
from context_engine.extractors import ExtractorRegistry, default_registry
from context_engine.graph import CallGraph, link_nodes, rank_files
from context_engine.models import ContextNode, FileMap, normalize_files

logger = logging.getLogger(__name__)


def content_digest(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8", "surrogatepass")).hexdigest()


def fingerprint(files: FileMap) -> dict[str, str]:
    """Digest of every indexable file, keyed by path."""
    return {
        path: content_digest(entry.content or "")
        for path, entry in normalize_files(files).items()
        if entry.is_indexable
    }


class CodeIndex:
    """One built snapshot of a codebase.

    Readers only touch node telemetry (scores, access counters); everything
    else is fixed once :class:`Indexer` returns it.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, ContextNode] = {}
        self.call_graph = CallGraph()
        self.graph: nx.DiGraph = nx.DiGraph()
        self.files: dict[str, str] = {}
        self.built_at: float = time.time()
        self.build_seconds: float = 0.0
        self._matrix: Optional[tuple[list[str], np.ndarray]] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[ContextNode]:
        return iter(self.nodes.values())

    def get(self, node_id: str) -> Optional[ContextNode]:
        return self.nodes.get(node_id)

    @property
    def file_count(self) -> int:
        return len(self.files)

    def nodes_for_file(self, path: str) -> list[ContextNode]:
        return [node for node in self.nodes.values() if node.path == path]

    def add_nodes(self, nodes: list[ContextNode]) -> None:
        for node in nodes:
            self.nodes[node.id] = node
        self.call_graph.add_nodes(nodes)
        self._matrix = None

    def link(self) -> None:
        link_nodes(self.nodes, self.call_graph, self.graph)

    def remove_file(self, path: str) -> int:
        """Drop every node of ``path`` and prune all edges pointing at them."""
        removed = {node.id for node in self.nodes.values() if node.path == path}
        if not removed:
            return 0

        for node_id in removed:
            del self.nodes[node_id]
        for node in self.nodes.values():
            node.dependencies -= removed
            node.dependents -= removed
        self.call_graph.remove_callers(removed)
        self.graph.remove_nodes_from(removed)
        self.files.pop(path, None)
        self._matrix = None
        logger.debug("Removed %d nodes for %s", len(removed), path)
        return len(removed)

    def embedding_matrix(self) -> tuple[list[str], np.ndarray]:
        """Node ids and their stacked embeddings (rows aligned with ids)."""
        cached = self._matrix
        if cached is None:
            ids = [node_id for node_id, node in self.nodes.items() if node.embedding is not None]
            if ids:
                matrix = np.vstack([self.nodes[node_id].embedding for node_id in ids])
            else:
                matrix = np.zeros((0, 0))
            # Ids and rows are published together for concurrent readers.
            cached = self._matrix = (ids, matrix)
        return cached

    def centrality(self, node: ContextNode) -> float:
        """(calls made + callers of the node's name) / total node count."""
        if not self.nodes:
            return 0.0
        degree = self.call_graph.out_degree(node.id) + len(self.call_graph.callers_of(node.name))
        return degree / len(self.nodes)

    def callers(self, node: ContextNode) -> set[str]:
        return {caller for caller in self.call_graph.callers_of(node.name) if caller in self.nodes}

    def rank_files(self) -> dict[str, float]:
        return rank_files(self.graph)

    def summary(self) -> dict[str, int]:
        kinds: dict[str, int] = {}
        for node in self.nodes.values():
            kinds[node.kind.value] = kinds.get(node.kind.value, 0) + 1
        return {
            "files": self.file_count,
            "nodes": len(self.nodes),
            "edges": self.graph.number_of_edges(),
            "callers": len(self.call_graph),
            **{f"{kind}_nodes": count for kind, count in sorted(kinds.items())},
        }


class Indexer:
    """Builds a fresh :class:`CodeIndex` from a file corpus."""

    def __init__(
        self,
        registry: Optional[ExtractorRegistry] = None,
        embedder: Optional[Embedder] = None,
        max_workers: int = 1,
    ):
        self.registry = registry or default_registry()
        self.embedder = embedder or HashingEmbedder()
        self.max_workers = max(1, int(max_workers))

    def _extract(self, path: str, content: str) -> list[ContextNode]:
        return self.registry.extract(path, content)

    def _extract_all(self, entries: list[tuple[str, str]]) -> dict[str, list[ContextNode]]:
        results: dict[str, list[ContextNode]] = {}

        def record(path: str, extract) -> None:
            try:
                results[path] = extract()
            except ExtractionError as exc:
                logger.warning("%s", exc)

        if self.max_workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self._extract, path, content): path for path, content in entries
                }
                for future in as_completed(futures):
                    record(futures[future], future.result)
        else:
            for path, content in entries:
                record(path, lambda: self._extract(path, content))
        return results

    def index_codebase(self, files: FileMap) -> CodeIndex:
        """Build an index that reflects exactly ``files``.

        Folders and empty files are skipped; a file whose extraction fails is
        logged and left out.
        """
        start = time.perf_counter()
        index = CodeIndex()
        entries = sorted(
            (path, entry.content or "")
            for path, entry in normalize_files(files).items()
            if entry.is_indexable
        )

        extracted = self._extract_all(entries)
        for path, content in entries:
            nodes = extracted.get(path)
            if nodes is None:
                continue
            index.add_nodes(nodes)
            index.files[path] = content_digest(content)

        index.link()

        all_nodes = list(index.nodes.values())
        if all_nodes:
            vectors = self.embedder.embed_many([node.content for node in all_nodes])
            for node, vector in zip(all_nodes, vectors):
                node.embedding = vector

        index.build_seconds = time.perf_counter() - start
        index.built_at = time.time()
        logger.info(
            "Indexing completed: %d nodes from %d files in %.1fms",
            len(index),
            index.file_count,
            index.build_seconds * 1000,
        )
        return index


__all__ = ["CodeIndex", "Indexer", "content_digest", "fingerprint"]
