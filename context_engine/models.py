"""Domain models shared by the indexing, retrieval and compression stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from context_engine.tokens import content_to_text

FILE_PREVIEW_CHARS = 1000


class NodeKind(str, Enum):
    """Kinds of semantic units tracked by the index."""

    FILE = "file"
    FUNCTION = "function"
    CLASS = "class"
    VARIABLE = "variable"
    IMPORT = "import"
    COMMENT = "comment"


class IntentKind(str, Enum):
    """Classified purpose of a user request."""

    CREATE = "create"
    MODIFY = "modify"
    DEBUG = "debug"
    UNDERSTAND = "understand"
    REFACTOR = "refactor"
    TEST = "test"


class Strategy(str, Enum):
    """Optimization path chosen by the manager."""

    NONE = "none"
    SEMANTIC_RETRIEVAL = "semantic-retrieval"
    COMPRESSION = "compression"
    HYBRID = "hybrid"


@dataclass(eq=False)
class ContextNode:
    """A semantic unit of code: a file, a declaration or a comment block."""

    id: str
    kind: NodeKind
    path: str
    name: str
    content: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    embedding: Optional[np.ndarray] = None
    imports: list[str] = field(default_factory=list)
    dependencies: set[str] = field(default_factory=set)
    dependents: set[str] = field(default_factory=set)
    relevance_score: float = 0.0
    last_accessed: Optional[float] = None
    access_count: int = 0

    @property
    def search_text(self) -> str:
        """Lowercased text used for keyword and entity matching."""
        return f"{self.name} {self.content}".lower()

    def header(self) -> str:
        """One-line traceability header used by the compressor."""
        return f"// {self.kind.value}: {self.name} ({self.path})"


@dataclass
class QueryIntent:
    """What a request is asking for, derived from the latest user message."""

    kind: IntentKind
    entities: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    vector: Optional[np.ndarray] = None
    confidence: float = 0.0
    query: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entities": list(self.entities),
            "keywords": list(self.keywords),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class CompressionResult:
    """Outcome of compressing a node selection to a token budget."""

    original: str
    compressed: str
    original_tokens: int
    compressed_tokens: int
    ratio: float
    preserved_concepts: tuple[str, ...] = ()
    stage: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_tokens": self.original_tokens,
            "compressed_tokens": self.compressed_tokens,
            "ratio": self.ratio,
            "preserved_concepts": list(self.preserved_concepts),
            "stage": self.stage,
        }


@dataclass(frozen=True)
class FileEntry:
    """One entry of the file corpus handed over by the editor store."""

    kind: str = "file"
    content: Optional[str] = None

    @property
    def is_indexable(self) -> bool:
        return self.kind == "file" and bool(self.content)

    @classmethod
    def coerce(cls, value: Any) -> "FileEntry":
        """Accept a FileEntry, a ``{"type"|"kind", "content"}`` mapping or raw text."""
        if isinstance(value, FileEntry):
            return value
        if value is None:
            return cls(kind="folder")
        if isinstance(value, str):
            return cls(kind="file", content=value)
        if isinstance(value, Mapping):
            kind = value.get("kind") or value.get("type") or "file"
            return cls(kind=str(kind), content=value.get("content"))
        raise TypeError(f"Unsupported file entry: {type(value).__name__}")


FileMap = Mapping[str, Any]


def normalize_files(files: FileMap) -> dict[str, FileEntry]:
    """Coerce every corpus entry into a :class:`FileEntry`."""
    return {path: FileEntry.coerce(entry) for path, entry in files.items()}


@dataclass(frozen=True)
class Message:
    """A chat message; only ``user`` messages drive intent analysis."""

    role: str
    content: Any = ""

    @property
    def text(self) -> str:
        return content_to_text(self.content)

    @classmethod
    def coerce(cls, value: Any) -> "Message":
        if isinstance(value, Message):
            return value
        if isinstance(value, Mapping):
            return cls(role=str(value.get("role", "")), content=value.get("content", ""))
        return cls(role=str(getattr(value, "role", "")), content=getattr(value, "content", ""))


def normalize_messages(messages: Iterable[Any]) -> list[Message]:
    return [Message.coerce(message) for message in messages]


@dataclass
class OptimizationResult:
    """What the manager hands to the prompt assembler."""

    optimized_context: str
    original_tokens: int
    optimized_tokens: int
    compression_ratio: float
    strategy: Strategy
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "optimized_context": self.optimized_context,
            "original_tokens": self.original_tokens,
            "optimized_tokens": self.optimized_tokens,
            "compression_ratio": self.compression_ratio,
            "strategy": self.strategy.value,
            "metadata": self.metadata,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


__all__ = [
    "FILE_PREVIEW_CHARS",
    "CompressionResult",
    "ContextNode",
    "FileEntry",
    "FileMap",
    "IntentKind",
    "Message",
    "NodeKind",
    "OptimizationResult",
    "QueryIntent",
    "Strategy",
    "normalize_files",
    "normalize_messages",
]
