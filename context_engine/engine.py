"""The indexing -> intent -> retrieval -> compression pipeline over one index."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields, replace
from typing import Any, Iterable, Optional

from context_engine.compression import Compressor
from context_engine.config import EngineOptions
from context_engine.embeddings import Embedder, create_embedder
from context_engine.extractors import ExtractorRegistry
from context_engine.indexer import CodeIndex, Indexer
from context_engine.intent import IntentAnalyzer
from context_engine.models import CompressionResult, ContextNode, FileMap, QueryIntent
from context_engine.retrieval import Retriever
from context_engine.tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Context string produced for one request, with what it was built from."""

    context: str
    intent: QueryIntent
    nodes: list[ContextNode] = field(default_factory=list)
    compression: Optional[CompressionResult] = None
    total_indexed_nodes: int = 0
    indexed_files: int = 0

    def metadata(self) -> dict[str, Any]:
        return {
            "intent": self.intent.to_dict(),
            "nodes_retrieved": len(self.nodes),
            "compression": self.compression.to_dict() if self.compression else None,
            "total_indexed_nodes": self.total_indexed_nodes,
            "indexed_files": self.indexed_files,
        }


class ContextEngine:
    """Runs the pipeline against the most recently built :class:`CodeIndex`.

    Rebuilding produces a new snapshot that replaces the current one under a
    lock; a request already in flight keeps the snapshot it started with.
    """

    def __init__(
        self,
        options: Optional[EngineOptions] = None,
        *,
        embedder: Optional[Embedder] = None,
        registry: Optional[ExtractorRegistry] = None,
    ):
        self.options = options or EngineOptions()
        self.embedder = embedder or create_embedder(self.options.embedding_method)
        self.indexer = Indexer(registry=registry, embedder=self.embedder, max_workers=self.options.max_workers)
        self.analyzer = IntentAnalyzer(self.embedder)
        self.compressor = Compressor()
        self.retriever = self._build_retriever()
        self._lock = threading.Lock()
        self._index = CodeIndex()

    def _build_retriever(self) -> Retriever:
        return Retriever(
            self.options.max_retrieved_nodes,
            closure_depth=self.options.closure_depth,
        )

    @property
    def index(self) -> CodeIndex:
        with self._lock:
            return self._index

    def update_options(self, **changes: Any) -> EngineOptions:
        """Apply option changes; unknown names raise ``TypeError``."""
        known = {item.name for item in fields(EngineOptions)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown engine options: {', '.join(sorted(unknown))}")
        previous_method = self.options.embedding_method
        self.options = replace(self.options, **changes)
        self.retriever = self._build_retriever()
        self.indexer.max_workers = max(1, self.options.max_workers)
        if self.options.embedding_method != previous_method:
            # Vectors from different embedders are not comparable.
            self.embedder = create_embedder(self.options.embedding_method)
            self.indexer.embedder = self.embedder
            self.analyzer.embedder = self.embedder
            with self._lock:
                self._index = CodeIndex()
        return self.options

    def index_codebase(self, files: FileMap) -> CodeIndex:
        """Build a fresh index from ``files`` and make it current."""
        index = self.indexer.index_codebase(files)
        with self._lock:
            self._index = index
        return index

    def analyze_intent(self, messages: Iterable[Any]) -> QueryIntent:
        return self.analyzer.analyze_intent(messages)

    def retrieve_context(self, intent: QueryIntent, index: Optional[CodeIndex] = None) -> list[ContextNode]:
        return self.retriever.retrieve_context(index if index is not None else self.index, intent)

    def compress_context(
        self, nodes: list[ContextNode], target_tokens: Optional[int] = None
    ) -> CompressionResult:
        """Compress ``nodes``; without a target, keep ``compression_target`` of the original."""
        if target_tokens is None:
            original = estimate_tokens("\n\n".join(node.content for node in nodes))
            target_tokens = max(1, int(original * self.options.compression_target))
        return self.compressor.compress_context(nodes, target_tokens)

    def optimize_context(
        self,
        messages: Iterable[Any],
        files: Optional[FileMap] = None,
        max_tokens: Optional[int] = None,
    ) -> PipelineResult:
        """Run intent analysis, retrieval and compression for the latest request.

        ``files`` triggers a rebuild first; otherwise the current index is used.
        """
        index = self.index_codebase(files) if files is not None else self.index
        budget = self.options.max_context_tokens if max_tokens is None else max_tokens

        intent = self.analyze_intent(messages)
        nodes = self.retrieve_context(intent, index)
        compression = self.compress_context(nodes, budget)

        logger.info(
            "Context pipeline completed: %d -> %d tokens (%.1f%%), %d nodes retrieved",
            compression.original_tokens,
            compression.compressed_tokens,
            compression.ratio * 100,
            len(nodes),
        )
        return PipelineResult(
            context=compression.compressed,
            intent=intent,
            nodes=nodes,
            compression=compression,
            total_indexed_nodes=len(index),
            indexed_files=index.file_count,
        )


__all__ = ["ContextEngine", "PipelineResult"]
