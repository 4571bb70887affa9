"""Three-stage, budget-driven context compression.

Stages run in order and each works on the previous stage's output:

1. syntactic: comments and redundant whitespace removed, one header per node
2. semantic: only structurally significant lines kept
3. conceptual: only declaration lines kept, capped by the budget

Compression stops at the first stage whose output fits the budget.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Sequence

from context_engine.models import CompressionResult, ContextNode, NodeKind
from context_engine.tokens import CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)

NODE_SEPARATOR = "\n\n"
LINES_PER_TOKEN_BUDGET = 20

_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//.*$", re.MULTILINE)
_HASH_COMMENT_RE = re.compile(r"^[ \t]*#(?!!).*$", re.MULTILINE)
_HORIZONTAL_SPACE_RE = re.compile(r"[ \t\f\v]+")

SIGNIFICANT_MARKERS = ("function ", "class ", "interface ", "export ", "import ", "def ")
DECLARATION_MARKERS = ("class ", "function ", "interface ")
_MIN_COMMENT_LINE = 20


def strip_comments(text: str) -> str:
    text = _BLOCK_COMMENT_RE.sub("", text)
    text = _LINE_COMMENT_RE.sub("", text)
    return _HASH_COMMENT_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    lines = (_HORIZONTAL_SPACE_RE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def syntactic_pass(nodes: Sequence[ContextNode]) -> str:
    """Stage 1: comments stripped, whitespace collapsed, one header per node."""
    blocks = []
    for node in nodes:
        body = collapse_whitespace(strip_comments(node.content))
        blocks.append(f"{node.header()}\n{body}" if body else node.header())
    return NODE_SEPARATOR.join(blocks)


def _is_significant(line: str) -> bool:
    if any(marker in line for marker in SIGNIFICANT_MARKERS):
        return True
    return line.strip().startswith("//") and len(line) > _MIN_COMMENT_LINE


def semantic_pass(text: str) -> str:
    """Stage 2: keep declarations, imports/exports and longer comments."""
    return "\n".join(line for line in text.split("\n") if _is_significant(line))


def _is_declaration(line: str) -> bool:
    stripped = line.strip()
    if stripped.startswith("//"):
        return False
    if stripped.startswith(("def ", "async def ")):
        return True
    return any(marker in line for marker in DECLARATION_MARKERS)


def conceptual_pass(text: str, target_tokens: int) -> str:
    """Stage 3: declaration lines only, at most ``target_tokens // 20`` of them.

    Lines are added only while the result stays within ``target_tokens``.
    """
    limit = target_tokens // LINES_PER_TOKEN_BUDGET
    kept: list[str] = []
    used_chars = 0
    for line in text.split("\n"):
        if len(kept) >= limit:
            break
        if not _is_declaration(line):
            continue
        line = line.strip()
        candidate = used_chars + len(line) + (1 if kept else 0)
        if math.ceil(candidate / CHARS_PER_TOKEN) > target_tokens:
            break
        kept.append(line)
        used_chars = candidate
    return "\n".join(kept)


def preserved_concepts(nodes: Sequence[ContextNode], text: str) -> tuple[str, ...]:
    """Names of function/class nodes still mentioned in ``text``."""
    names: list[str] = []
    for node in nodes:
        if node.kind in (NodeKind.FUNCTION, NodeKind.CLASS) and node.name in text and node.name not in names:
            names.append(node.name)
    return tuple(names)


class Compressor:
    """Shrinks a node selection to a token budget."""

    def compress_context(self, nodes: Sequence[ContextNode], target_tokens: int) -> CompressionResult:
        original = NODE_SEPARATOR.join(node.content for node in nodes)
        original_tokens = estimate_tokens(original)

        def result(text: str, stage: int) -> CompressionResult:
            tokens = estimate_tokens(text)
            ratio = tokens / original_tokens if original_tokens else 1.0
            return CompressionResult(
                original=original,
                compressed=text,
                original_tokens=original_tokens,
                compressed_tokens=tokens,
                ratio=ratio,
                preserved_concepts=preserved_concepts(nodes, text),
                stage=stage,
            )

        if target_tokens <= 0:
            return result("", 3 if original else 0)

        if original_tokens <= target_tokens:
            return result(original, 0)

        compressed = syntactic_pass(nodes)
        stage = 1
        if estimate_tokens(compressed) > target_tokens:
            compressed = semantic_pass(compressed)
            stage = 2
        if estimate_tokens(compressed) > target_tokens:
            compressed = conceptual_pass(compressed, target_tokens)
            stage = 3

        outcome = result(compressed, stage)
        logger.debug(
            "Compressed %d -> %d tokens at stage %d (target %d)",
            original_tokens,
            outcome.compressed_tokens,
            stage,
            target_tokens,
        )
        return outcome


__all__ = [
    "Compressor",
    "collapse_whitespace",
    "conceptual_pass",
    "preserved_concepts",
    "semantic_pass",
    "strip_comments",
    "syntactic_pass",
]
