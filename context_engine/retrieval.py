"""Relevance scoring, top-N selection and dependency closure."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Optional

from context_engine.embeddings import similarities
from context_engine.indexer import CodeIndex
from context_engine.models import ContextNode, QueryIntent

logger = logging.getLogger(__name__)

_telemetry_lock = threading.Lock()


@dataclass(frozen=True)
class ScoreWeights:
    semantic: float = 0.4
    keyword: float = 0.3
    entity: float = 0.2
    structural: float = 0.1


def overlap(terms: list[str], text: str) -> float:
    """Fraction of ``terms`` found (case-insensitively) in lowercase ``text``."""
    if not terms:
        return 0.0
    found = sum(1 for term in terms if term.lower() in text)
    return found / len(terms)


class Retriever:
    """Scores every node of an index against an intent and selects the best."""

    def __init__(
        self,
        max_retrieved_nodes: int = 50,
        *,
        closure_depth: int = 1,
        min_score: float = 0.1,
        closure_threshold: float = 0.7,
        weights: Optional[ScoreWeights] = None,
    ):
        self.max_retrieved_nodes = max_retrieved_nodes
        self.closure_depth = max(0, closure_depth)
        self.min_score = min_score
        self.closure_threshold = closure_threshold
        self.weights = weights or ScoreWeights()

    def score_nodes(self, index: CodeIndex, intent: QueryIntent) -> dict[str, float]:
        """Score every node of ``index`` for this request.

        The index is shared between requests, so scores are returned rather
        than written onto its nodes.
        """
        ids, matrix = index.embedding_matrix()
        cosines = dict(zip(ids, similarities(intent.vector, matrix).tolist()))
        weights = self.weights

        scores: dict[str, float] = {}
        for node in index:
            text = node.search_text
            score = (
                weights.semantic * cosines.get(node.id, 0.0)
                + weights.keyword * overlap(intent.keywords, text)
                + weights.entity * overlap(intent.entities, text)
                + weights.structural * index.centrality(node)
            )
            scores[node.id] = min(score, 1.0)
        return scores

    def _closure(self, index: CodeIndex, seeds: list[ContextNode], selected: set[str]) -> list[ContextNode]:
        added: list[ContextNode] = []
        queue = deque((node, 0) for node in seeds)
        while queue:
            node, depth = queue.popleft()
            if depth >= self.closure_depth:
                continue
            for neighbour_id in sorted(node.dependencies | index.callers(node)):
                if neighbour_id in selected:
                    continue
                neighbour = index.get(neighbour_id)
                if neighbour is None:
                    continue
                selected.add(neighbour_id)
                added.append(neighbour)
                queue.append((neighbour, depth + 1))
        return added

    def retrieve_context(self, index: CodeIndex, intent: QueryIntent) -> list[ContextNode]:
        """Return the most relevant nodes of ``index``, followed by their closure.

        Returned nodes are copies carrying this request's ``relevance_score``.
        Access telemetry is recorded on the index nodes themselves.
        """
        scores = self.score_nodes(index, intent)
        ranked = sorted(
            (node_id for node_id, score in scores.items() if score > self.min_score),
            key=lambda node_id: (-scores[node_id], node_id),
        )[: self.max_retrieved_nodes]

        selected_nodes = [index.nodes[node_id] for node_id in ranked]
        selected = set(ranked)
        seeds = [node for node in selected_nodes if scores[node.id] > self.closure_threshold]
        closure = self._closure(index, seeds, selected)

        now = time.time()
        result = []
        with _telemetry_lock:
            for node in selected_nodes + closure:
                node.last_accessed = now
                node.access_count += 1
                result.append(replace(node, relevance_score=scores[node.id]))

        logger.debug(
            "Retrieved %d nodes (%d ranked, %d via closure) from %d",
            len(result),
            len(selected_nodes),
            len(closure),
            len(index),
        )
        return result


__all__ = ["Retriever", "ScoreWeights", "overlap"]
