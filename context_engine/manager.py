"""Request-level façade: decides when and how to run the context pipeline."""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import fields, replace
from typing import Any, Callable, Iterable, Mapping, Optional

from context_engine.config import EngineOptions, ManagerOptions
from context_engine.engine import ContextEngine
from context_engine.errors import UnknownStrategyError
from context_engine.indexer import fingerprint
from context_engine.logger import get_correlation_id, set_correlation_id
from context_engine.model_registry import get_context_window
from context_engine.models import (
    ContextNode,
    FileEntry,
    Message,
    NodeKind,
    OptimizationResult,
    Strategy,
    normalize_files,
    normalize_messages,
)
from context_engine.tokens import count_message_tokens, estimate_tokens

logger = logging.getLogger(__name__)

HYBRID_RETRIEVAL_FACTOR = 1.5
QUALITY_FILE_THRESHOLD = 20
RETRIEVAL_FILE_THRESHOLD = 10


class ContextManager:
    """Budgets a request against the model window and optimises context when needed.

    Failures never propagate: any error yields an empty context with strategy
    ``none`` and the error message, so callers can send the original messages.
    """

    def __init__(
        self,
        options: Optional[ManagerOptions] = None,
        *,
        engine: Optional[ContextEngine] = None,
        engine_options: Optional[EngineOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.options = options or ManagerOptions()
        self.engine = engine or ContextEngine(self.options.engine_options(engine_options))
        self._clock = clock
        self._digests: dict[str, str] = {}
        self._last_index_time: float = 0.0

    # ------------------------------------------------------------------
    # Budget and policy
    # ------------------------------------------------------------------

    def usable_tokens(self, model: str) -> int:
        return math.floor(get_context_window(model) * self.options.max_context_ratio)

    @staticmethod
    def file_count(files: Mapping[str, FileEntry]) -> int:
        return sum(1 for entry in files.values() if entry.kind == "file")

    def should_optimize_for_quality(self, files: Mapping[str, FileEntry]) -> bool:
        """Large codebases may be worth retrieval even when under budget."""
        return (
            self.file_count(files) > QUALITY_FILE_THRESHOLD
            and self.options.force_smart_retrieval
            and self.options.enable_smart_retrieval
        )

    def determine_strategy(self, current_tokens: int, max_tokens: int, file_count: int) -> Strategy:
        overage = current_tokens / max_tokens if max_tokens > 0 else math.inf
        smart = self.options.enable_smart_retrieval

        if file_count > RETRIEVAL_FILE_THRESHOLD and overage < 1.5 and smart:
            return Strategy.SEMANTIC_RETRIEVAL
        if overage > 1.5 and self.options.enable_compression:
            return Strategy.COMPRESSION
        if file_count > QUALITY_FILE_THRESHOLD and overage > 1.2:
            return Strategy.HYBRID
        return Strategy.SEMANTIC_RETRIEVAL if smart else Strategy.COMPRESSION

    def ensure_index_up_to_date(self, files: Mapping[str, Any]) -> bool:
        """Rebuild the index when the corpus changed or the index is too old."""
        now = self._clock()
        digests = fingerprint(files)
        stale_reason = None
        if digests != self._digests:
            stale_reason = "corpus changed"
        elif now - self._last_index_time > self.options.reindex_interval:
            stale_reason = "index expired"

        if stale_reason is None:
            return False

        logger.info("Reindexing codebase (%s)...", stale_reason)
        self.engine.index_codebase(files)
        self._digests = digests
        self._last_index_time = now
        return True

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _semantic_retrieval(self, messages: list[Message], max_tokens: int) -> tuple[str, dict[str, Any]]:
        result = self.engine.optimize_context(messages, max_tokens=max_tokens)
        return result.context, result.metadata()

    def _compression(self, files: Mapping[str, FileEntry], max_tokens: int) -> tuple[str, dict[str, Any]]:
        nodes = [
            ContextNode(
                id=f"file:{path}",
                kind=NodeKind.FILE,
                path=path,
                name=path.rsplit("/", 1)[-1] or path,
                content=entry.content or "",
                relevance_score=1.0,
            )
            for path, entry in files.items()
            if entry.kind == "file"
        ]
        compression = self.engine.compress_context(nodes, max_tokens)
        return compression.compressed, {
            "intent": None,
            "nodes_retrieved": len(nodes),
            "compression": compression.to_dict(),
            "indexed_files": len(nodes),
        }

    def _hybrid(self, messages: list[Message], max_tokens: int) -> tuple[str, dict[str, Any]]:
        retrieval_budget = math.floor(max_tokens * HYBRID_RETRIEVAL_FACTOR)
        result = self.engine.optimize_context(messages, max_tokens=retrieval_budget)
        metadata = result.metadata()
        if estimate_tokens(result.context) <= max_tokens:
            return result.context, metadata

        compression = self.engine.compress_context(result.nodes, max_tokens)
        metadata["compression"] = compression.to_dict()
        return compression.compressed, metadata

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def optimize_context(
        self,
        messages: Iterable[Any],
        files: Mapping[str, Any],
        model: str,
        system_prompt: Optional[str] = None,
    ) -> OptimizationResult:
        """Return optimised context for a request; an empty context means "send as is"."""
        start = time.perf_counter()
        previous_id = get_correlation_id()
        set_correlation_id(uuid.uuid4().hex[:12])

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start) * 1000, 3)

        try:
            history = normalize_messages(messages)
            corpus = normalize_files(files)

            max_tokens = self.usable_tokens(model)
            current = estimate_tokens(system_prompt) + count_message_tokens(m.content for m in history)
            logger.info("Context optimization: %d/%d tokens (%s)", current, max_tokens, model)

            if current <= max_tokens and not self.should_optimize_for_quality(corpus):
                return OptimizationResult(
                    optimized_context="",
                    original_tokens=current,
                    optimized_tokens=current,
                    compression_ratio=1.0,
                    strategy=Strategy.NONE,
                    metadata={
                        "intent": None,
                        "nodes_retrieved": 0,
                        "indexed_files": 0,
                        "processing_time": elapsed_ms(),
                    },
                )

            self.ensure_index_up_to_date(corpus)
            strategy = self.determine_strategy(current, max_tokens, self.file_count(corpus))

            if strategy is Strategy.SEMANTIC_RETRIEVAL:
                context, metadata = self._semantic_retrieval(history, max_tokens)
            elif strategy is Strategy.COMPRESSION:
                context, metadata = self._compression(corpus, max_tokens)
            elif strategy is Strategy.HYBRID:
                context, metadata = self._hybrid(history, max_tokens)
            else:
                raise UnknownStrategyError(f"Unknown optimization strategy: {strategy}")

            optimized = estimate_tokens(context)
            ratio = optimized / current if current else 1.0
            metadata.update(
                {
                    "strategy": strategy.value,
                    "original_tokens": current,
                    "optimized_tokens": optimized,
                    "compression_ratio": ratio,
                    "processing_time": elapsed_ms(),
                }
            )
            logger.info(
                "Context optimization completed: %s, %d -> %d tokens (%.1f%%)",
                strategy.value,
                current,
                optimized,
                ratio * 100,
            )
            return OptimizationResult(
                optimized_context=context,
                original_tokens=current,
                optimized_tokens=optimized,
                compression_ratio=ratio,
                strategy=strategy,
                metadata=metadata,
            )
        except Exception as exc:
            logger.exception("Context optimization failed")
            return OptimizationResult(
                optimized_context="",
                original_tokens=0,
                optimized_tokens=0,
                compression_ratio=1.0,
                strategy=Strategy.NONE,
                metadata={
                    "intent": None,
                    "nodes_retrieved": 0,
                    "indexed_files": 0,
                    "processing_time": elapsed_ms(),
                },
                error=str(exc) or type(exc).__name__,
            )
        finally:
            set_correlation_id(previous_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        index = self.engine.index
        return {
            "indexed_nodes": len(index),
            "indexed_files": index.file_count,
            "last_index_time": self._last_index_time,
            "cache_size": len(self._digests),
            "embedding_cache_size": getattr(self.engine.embedder, "cache_size", 0),
            "enable_memory": self.engine.options.enable_memory,
            "memory_retention_days": self.engine.options.memory_retention_days,
        }

    def clear_cache(self) -> None:
        """Forget corpus digests and cached embeddings.

        The next optimised request rebuilds the index.
        """
        self._digests.clear()
        self._last_index_time = 0.0
        clear_embeddings = getattr(self.engine.embedder, "clear_cache", None)
        if callable(clear_embeddings):
            clear_embeddings()

    def update_options(self, **changes: Any) -> ManagerOptions:
        """Apply option changes; unknown names raise ``TypeError``."""
        known = {item.name for item in fields(ManagerOptions)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown manager options: {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **changes)

        engine_changes = {
            key: changes[key] for key in ("semantic_threshold", "max_retrieved_nodes") if key in changes
        }
        if engine_changes:
            self.engine.update_options(**engine_changes)
        return self.options


__all__ = ["ContextManager"]
