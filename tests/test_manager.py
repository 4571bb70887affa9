"""Tests for the request-level context manager."""

from unittest.mock import MagicMock

import pytest

from context_engine.config import EngineOptions, ManagerOptions
from context_engine.logger import get_correlation_id, set_correlation_id
from context_engine.manager import ContextManager
from context_engine.models import FileEntry, Strategy

from .conftest import HEADER_QUERY

SMALL_MODEL = "gpt-3.5-turbo"  # usable budget: floor(4096 * 0.7) = 2867 tokens
COMPONENT_QUERY = "explain how the Component renders"


def _history(filler_tokens: int, query: str = HEADER_QUERY):
    return [
        {"role": "user", "content": "x" * (filler_tokens * 4)},
        {"role": "assistant", "content": "ok"},
        {"role": "user", "content": query},
    ]


@pytest.fixture
def manager():
    return ContextManager()


class TestBudget:
    def test_usable_tokens(self, manager):
        assert manager.usable_tokens("gpt-4") == 5734
        assert manager.usable_tokens(SMALL_MODEL) == 2867
        assert manager.usable_tokens("some-unknown-model") == 2867

    def test_file_count_ignores_folders(self, manager, header_files):
        corpus = {path: FileEntry.coerce(entry) for path, entry in header_files.items()}

        assert manager.file_count(corpus) == 4

    def test_engine_inherits_manager_options(self, manager):
        options = manager.engine.options

        assert options.compression_target == 0.6
        assert options.max_retrieved_nodes == 30
        assert options.semantic_threshold == 0.7

    def test_engine_options_override(self):
        manager = ContextManager(engine_options=EngineOptions(closure_depth=2, compression_target=0.3))

        assert manager.engine.options.closure_depth == 2
        assert manager.engine.options.compression_target == 0.3
        assert manager.engine.options.max_retrieved_nodes == 30


@pytest.mark.parametrize(
    "current, file_count, options, expected",
    [
        (1200, 15, {}, Strategy.SEMANTIC_RETRIEVAL),
        (2000, 15, {}, Strategy.COMPRESSION),
        (2000, 25, {"enable_compression": False}, Strategy.HYBRID),
        (1300, 25, {"enable_smart_retrieval": False}, Strategy.HYBRID),
        (1100, 25, {"enable_smart_retrieval": False}, Strategy.COMPRESSION),
        (1100, 5, {}, Strategy.SEMANTIC_RETRIEVAL),
        (2000, 5, {"enable_compression": False}, Strategy.SEMANTIC_RETRIEVAL),
    ],
)
def test_determine_strategy(current, file_count, options, expected):
    manager = ContextManager(ManagerOptions(**options))

    assert manager.determine_strategy(current, 1000, file_count) is expected


class TestOptimizeContext:
    def test_under_budget_is_left_alone(self, manager, header_messages, header_files):
        result = manager.optimize_context(header_messages, header_files, "gpt-4o")

        assert result.strategy is Strategy.NONE
        assert result.optimized_context == ""
        assert result.compression_ratio == 1.0
        assert result.original_tokens == result.optimized_tokens > 0
        assert result.metadata["nodes_retrieved"] == 0
        assert result.metadata["intent"] is None
        assert result.metadata["processing_time"] >= 0
        assert result.error is None
        assert len(manager.engine.index) == 0

    def test_system_prompt_counts_against_budget(self, manager, header_files):
        messages = [{"role": "user", "content": HEADER_QUERY}]

        result = manager.optimize_context(messages, header_files, "gpt-4o", system_prompt="y" * 400)

        assert result.original_tokens == 100 + 11

    def test_large_codebase_under_budget_without_force(self, manager, component_files):
        messages = [{"role": "user", "content": COMPONENT_QUERY}]

        result = manager.optimize_context(messages, component_files, "gpt-4o")

        assert result.strategy is Strategy.NONE

    def test_large_codebase_with_forced_retrieval(self, component_files):
        manager = ContextManager(ManagerOptions(force_smart_retrieval=True))
        messages = [{"role": "user", "content": COMPONENT_QUERY}]

        result = manager.optimize_context(messages, component_files, "gpt-4o")

        assert result.strategy is Strategy.SEMANTIC_RETRIEVAL
        assert result.metadata["nodes_retrieved"] > 0
        assert result.metadata["indexed_files"] == 25
        assert result.optimized_context

    def test_semantic_retrieval_over_budget(self, manager, header_files):
        result = manager.optimize_context(_history(3000), header_files, SMALL_MODEL)

        assert result.error is None
        assert result.strategy is Strategy.SEMANTIC_RETRIEVAL
        assert 0 < result.optimized_tokens <= 2867
        assert result.metadata["intent"]["kind"] == "create"
        assert result.metadata["nodes_retrieved"] > 0
        assert result.metadata["strategy"] == "semantic-retrieval"
        assert "export function Header" in result.optimized_context

    def test_compression_when_far_over_budget(self, manager, header_files):
        result = manager.optimize_context(_history(5000), header_files, SMALL_MODEL)

        assert result.strategy is Strategy.COMPRESSION
        assert result.optimized_tokens <= 2867
        assert result.metadata["nodes_retrieved"] == 4
        assert result.metadata["intent"] is None
        assert result.compression_ratio < 1.0

    def test_hybrid(self, component_files):
        manager = ContextManager(ManagerOptions(enable_compression=False))

        result = manager.optimize_context(_history(5000, COMPONENT_QUERY), component_files, SMALL_MODEL)

        assert result.strategy is Strategy.HYBRID
        assert result.optimized_tokens <= 2867
        assert result.metadata["nodes_retrieved"] > 0

    def test_failures_fall_back(self, header_files):
        engine = MagicMock()
        engine.index_codebase.side_effect = RuntimeError("index exploded")
        manager = ContextManager(engine=engine)

        result = manager.optimize_context(_history(3000), header_files, SMALL_MODEL)

        assert result.strategy is Strategy.NONE
        assert result.optimized_context == ""
        assert result.error == "index exploded"
        assert result.metadata["nodes_retrieved"] == 0

    def test_missing_user_message_falls_back(self, manager, header_files):
        messages = [{"role": "user", "content": "x" * 12_000}, {"role": "assistant", "content": "done"}]

        result = manager.optimize_context(messages, header_files, SMALL_MODEL)

        assert result.strategy is Strategy.NONE
        assert result.error == "No user message found for intent analysis"

    def test_correlation_id_is_restored(self, manager, header_messages, header_files):
        set_correlation_id("outer")
        try:
            manager.optimize_context(header_messages, header_files, "gpt-4o")
            assert get_correlation_id() == "outer"
        finally:
            set_correlation_id(None)


class TestIndexFreshness:
    def test_reindexes_on_change_and_expiry(self, header_files):
        now = [1000.0]
        engine = MagicMock()
        manager = ContextManager(ManagerOptions(reindex_interval=10), engine=engine, clock=lambda: now[0])

        assert manager.ensure_index_up_to_date(header_files) is True
        assert manager.ensure_index_up_to_date(header_files) is False

        changed = dict(header_files)
        changed["src/utils/api.ts"] = {"type": "file", "content": "export const x = 1;\n"}
        assert manager.ensure_index_up_to_date(changed) is True

        now[0] += 11
        assert manager.ensure_index_up_to_date(changed) is True
        assert engine.index_codebase.call_count == 3

    def test_clear_cache_forces_rebuild(self, header_files):
        engine = MagicMock()
        manager = ContextManager(engine=engine)
        manager.ensure_index_up_to_date(header_files)

        manager.clear_cache()

        assert manager.ensure_index_up_to_date(header_files) is True
        assert engine.index_codebase.call_count == 2
        engine.embedder.clear_cache.assert_called_once_with()


class TestHousekeeping:
    def test_statistics(self, manager, header_files):
        manager.optimize_context(_history(3000), header_files, SMALL_MODEL)

        stats = manager.get_statistics()

        assert stats["indexed_files"] == 4
        assert stats["indexed_nodes"] == len(manager.engine.index)
        assert stats["last_index_time"] > 0
        assert stats["cache_size"] == 4
        assert stats["embedding_cache_size"] > 0
        assert stats["enable_memory"] is True
        assert stats["memory_retention_days"] == 30

    def test_clear_cache_empties_embedding_cache(self, manager, header_files):
        manager.optimize_context(_history(3000), header_files, SMALL_MODEL)
        assert manager.engine.embedder.cache_size > 0

        manager.clear_cache()

        assert manager.engine.embedder.cache_size == 0
        assert manager.get_statistics()["cache_size"] == 0

    def test_update_options_forwards_retrieval_knobs(self, manager):
        options = manager.update_options(max_retrieved_nodes=5, enable_compression=False)

        assert options.enable_compression is False
        assert manager.engine.options.max_retrieved_nodes == 5
        assert manager.engine.retriever.max_retrieved_nodes == 5

    def test_update_options_rejects_unknown(self, manager):
        with pytest.raises(TypeError, match="max_context"):
            manager.update_options(max_context=3)
