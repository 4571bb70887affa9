"""Intent analysis for the latest user request."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Optional

from context_engine.embeddings import Embedder, HashingEmbedder
from context_engine.errors import IntentError
from context_engine.keywords import extract_entities, extract_keywords
from context_engine.models import IntentKind, QueryIntent, normalize_messages

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

# Leading "[Model: gpt-4o]" style annotations added by chat front ends.
_ANNOTATION_RE = re.compile(r"^\s*(?:\[[^\]\n]*\]\s*)+")

# Evaluated in order; the first rule that matches wins.
INTENT_RULES: tuple[tuple[IntentKind, re.Pattern[str]], ...] = (
    (IntentKind.CREATE, re.compile(r"\b(creat\w*|generat\w*|build\w*|add|adds|added|adding)\b")),
    (IntentKind.MODIFY, re.compile(r"\b(modif\w*|chang\w*|updat\w*)\b")),
    (IntentKind.DEBUG, re.compile(r"\b(debug\w*|fix\w*|error\w*|bug|bugs)\b")),
    (IntentKind.UNDERSTAND, re.compile(r"\b(understand\w*|explain\w*|how)\b")),
    (IntentKind.REFACTOR, re.compile(r"\b(refactor\w*|optimi[sz]\w*|improv\w*)\b")),
    (IntentKind.TEST, re.compile(r"\b(test\w*|spec|specs)\b")),
)


def strip_annotations(text: str) -> str:
    """Remove leading bracketed annotations from a message body."""
    return _ANNOTATION_RE.sub("", text, count=1).strip()


def classify_intent(query: str) -> IntentKind:
    lowered = query.lower()
    for kind, pattern in INTENT_RULES:
        if pattern.search(lowered):
            return kind
    return IntentKind.UNDERSTAND


class IntentAnalyzer:
    """Derive a :class:`QueryIntent` from the trailing user message."""

    def __init__(self, embedder: Optional[Embedder] = None, default_confidence: float = DEFAULT_CONFIDENCE):
        self.embedder = embedder or HashingEmbedder()
        self.default_confidence = default_confidence

    def estimate_confidence(self, query: str, kind: IntentKind) -> float:
        """Confidence in ``kind`` for ``query``; subclasses may do better."""
        return self.default_confidence

    def analyze_intent(self, messages: Iterable[Any]) -> QueryIntent:
        """Analyze the last message, which must be user-authored.

        Raises:
            IntentError: when there are no messages or the last one is not from the user.
        """
        history = normalize_messages(messages)
        if not history or history[-1].role != "user":
            raise IntentError("No user message found for intent analysis")

        query = strip_annotations(history[-1].text)
        kind = classify_intent(query)
        confidence = min(max(self.estimate_confidence(query, kind), 0.0), 1.0)
        intent = QueryIntent(
            kind=kind,
            entities=extract_entities(query),
            keywords=extract_keywords(query),
            vector=self.embedder.embed(query),
            confidence=confidence,
            query=query,
        )
        logger.debug(
            "Intent %s (entities=%s, keywords=%s)", intent.kind.value, intent.entities, intent.keywords
        )
        return intent


__all__ = ["INTENT_RULES", "IntentAnalyzer", "classify_intent", "strip_annotations"]
