"""Utility functions for extracting query keywords and entity names."""

from __future__ import annotations

import re
import string
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

_ALPHA_PATTERN = re.compile(r"^[a-z]+$")
_ENTITY_PATTERN = re.compile(r"^[A-Z][a-zA-Z]*$")
_STRIP_CHARS = string.punctuation + "“”‘’"
_BASE_STOPWORDS = {
    "the",
    "a",
    "an",
    "and",
    "or",
    "but",
    "in",
    "on",
    "at",
    "to",
    "for",
    "of",
    "with",
    "by",
    "this",
    "that",
    "these",
    "those",
    "is",
    "are",
    "was",
    "were",
    "be",
    "been",
    "please",
}


def _tokens(text: str) -> list[str]:
    return [token.strip(_STRIP_CHARS) for token in text.split()]


def extract_keywords(
    text: str,
    *,
    limit: int | None = None,
    extra_stopwords: Iterable[str] | None = None,
) -> list[str]:
    """Return lowercase alphabetic words longer than two characters, minus stop words."""
    if not text:
        return []

    stops: set[str] = set(_BASE_STOPWORDS)
    if extra_stopwords:
        stops.update(word.lower() for word in extra_stopwords)

    keywords: list[str] = []
    seen: set[str] = set()
    for token in _tokens(text.lower()):
        if len(token) <= 2 or token in stops or token in seen:
            continue
        if not _ALPHA_PATTERN.match(token):
            continue
        keywords.append(token)
        seen.add(token)
        if limit is not None and len(keywords) >= limit:
            break
    return keywords


def extract_entities(text: str) -> list[str]:
    """Return capitalised words (``Header``, ``UserProfile``) in order of appearance."""
    if not text:
        return []

    entities: list[str] = []
    for token in _tokens(text):
        if len(token) > 2 and _ENTITY_PATTERN.match(token) and token not in entities:
            entities.append(token)
    return entities


__all__ = ["extract_entities", "extract_keywords"]
