"""Token estimation shared by every budget computation."""

from __future__ import annotations

import math
from typing import Any, Iterable

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Approximate token count as ``ceil(len(text) / 4)``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def content_to_text(content: Any) -> str:
    """Flatten message content (string or list of parts) into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text") or ""))
            else:
                parts.append(str(getattr(part, "text", "") or ""))
        return " ".join(parts)
    return str(content)


def count_message_tokens(contents: Iterable[Any]) -> int:
    """Sum the estimated tokens of several message contents."""
    return sum(estimate_tokens(content_to_text(content)) for content in contents)


__all__ = ["CHARS_PER_TOKEN", "content_to_text", "count_message_tokens", "estimate_tokens"]
