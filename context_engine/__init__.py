"""Semantic code-context retrieval for token-budgeted LLM prompts."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from context_engine.compression import Compressor
from context_engine.config import EngineOptions, ManagerOptions, Settings, load_settings
from context_engine.embeddings import HashingEmbedder, create_embedder
from context_engine.engine import ContextEngine, PipelineResult
from context_engine.errors import ContextEngineError, ExtractionError, IntentError
from context_engine.extractors import ExtractorRegistry, LanguageExtractor, default_registry
from context_engine.indexer import CodeIndex, Indexer
from context_engine.intent import IntentAnalyzer
from context_engine.manager import ContextManager
from context_engine.models import (
    CompressionResult,
    ContextNode,
    FileEntry,
    IntentKind,
    Message,
    NodeKind,
    OptimizationResult,
    QueryIntent,
    Strategy,
)
from context_engine.retrieval import Retriever

try:
    __version__ = version("context-engine")
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.1.0"

__all__ = [
    "CodeIndex",
    "CompressionResult",
    "Compressor",
    "ContextEngine",
    "ContextEngineError",
    "ContextManager",
    "ContextNode",
    "EngineOptions",
    "ExtractionError",
    "ExtractorRegistry",
    "FileEntry",
    "HashingEmbedder",
    "Indexer",
    "IntentAnalyzer",
    "IntentError",
    "IntentKind",
    "LanguageExtractor",
    "ManagerOptions",
    "Message",
    "NodeKind",
    "OptimizationResult",
    "PipelineResult",
    "QueryIntent",
    "Retriever",
    "Settings",
    "Strategy",
    "__version__",
    "create_embedder",
    "default_registry",
    "load_settings",
]
