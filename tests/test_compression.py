"""Tests for the three-stage compressor."""

import pytest

from context_engine.compression import (
    Compressor,
    collapse_whitespace,
    conceptual_pass,
    semantic_pass,
    strip_comments,
    syntactic_pass,
)
from context_engine.indexer import Indexer
from context_engine.models import ContextNode, NodeKind
from context_engine.tokens import estimate_tokens


def _node(name, content, kind=NodeKind.FUNCTION, path="src/app.js"):
    return ContextNode(id=f"{kind.value}:{path}:{name}", kind=kind, path=path, name=name, content=content)


@pytest.fixture
def compressor():
    return Compressor()


@pytest.fixture
def header_nodes(header_files):
    return list(Indexer().index_codebase(header_files))


class TestPasses:
    def test_strip_comments(self):
        text = "#!/usr/bin/env python\n# note\nx = 1  # trailing\n/* block\n comment */y = 2 // tail\n"

        stripped = strip_comments(text)

        assert "#!/usr/bin/env python" in stripped
        assert "note" not in stripped
        assert "# trailing" in stripped
        assert "block" not in stripped and "tail" not in stripped
        assert "y = 2" in stripped

    def test_collapse_whitespace_keeps_line_structure(self):
        assert collapse_whitespace("a   b\n\n\t c\t d \n") == "a b\nc d"

    def test_syntactic_pass_adds_one_header_per_node(self):
        nodes = [
            _node("a", "function a() {\n    // explain\n    return 1;\n}"),
            _node("Thing", "class Thing {}", kind=NodeKind.CLASS),
        ]

        text = syntactic_pass(nodes)

        assert text == (
            "// function: a (src/app.js)\nfunction a() {\nreturn 1;\n}"
            "\n\n// class: Thing (src/app.js)\nclass Thing {}"
        )

    def test_semantic_pass(self):
        text = "import x from 'x';\nconst y = 1;\n// a comment that is long enough\n// short\nexport function f() {"

        assert semantic_pass(text) == "import x from 'x';\n// a comment that is long enough\nexport function f() {"

    def test_conceptual_pass_caps_line_count(self):
        text = "class A {\nfoo();\nfunction b() {\nfunction c() {\n// function d"

        assert conceptual_pass(text, 40) == "class A {\nfunction b() {"
        assert conceptual_pass(text, 19) == ""

    def test_conceptual_pass_respects_budget(self):
        text = "\n".join(f"function handler{i}WithAVeryLongDescriptiveName() {{" for i in range(10))

        result = conceptual_pass(text, 20)

        assert estimate_tokens(result) <= 20


class TestCompressor:
    def test_fits_without_compression(self, compressor):
        nodes = [_node("a", "function a() {}"), _node("b", "function b() {}")]

        result = compressor.compress_context(nodes, 1000)

        assert result.stage == 0
        assert result.compressed == "function a() {}\n\nfunction b() {}"
        assert result.ratio == 1.0
        assert result.preserved_concepts == ("a", "b")

    def test_empty_selection(self, compressor):
        result = compressor.compress_context([], 100)

        assert result.compressed == ""
        assert result.original_tokens == 0
        assert result.stage == 0
        assert result.ratio == 1.0

    def test_zero_target(self, compressor, header_nodes):
        result = compressor.compress_context(header_nodes, 0)

        assert result.compressed == ""
        assert result.compressed_tokens == 0
        assert result.stage == 3

    def test_stage_one_strips_comments(self, compressor):
        content = "// " + "narrative " * 10 + "\n"
        node = _node("a", content * 20 + "function a() {\n    return 1;\n}\n")

        result = compressor.compress_context([node], 50)

        assert result.stage == 1
        assert result.compressed.startswith("// function: a (src/app.js)\n")
        assert "narrative" not in result.compressed
        assert result.compressed_tokens <= 50
        assert result.ratio < 1.0

    def test_stage_three_keeps_declarations(self, compressor, header_nodes):
        result = compressor.compress_context(header_nodes, 60)

        assert result.stage == 3
        lines = result.compressed.split("\n")
        assert 0 < len(lines) <= 60 // 20
        assert all("function " in line or "class " in line or "interface " in line for line in lines)

    @pytest.mark.parametrize("target", [1, 5, 20, 60, 150, 400, 1000, 5000])
    def test_never_exceeds_budget(self, compressor, header_nodes, target):
        result = compressor.compress_context(header_nodes, target)

        assert result.compressed_tokens <= target
        assert result.compressed_tokens == estimate_tokens(result.compressed)

    def test_larger_budget_never_yields_less(self, compressor, header_nodes):
        targets = [1, 5, 20, 40, 60, 100, 150, 250, 400, 700, 1000, 2000, 5000]

        sizes = [compressor.compress_context(header_nodes, target).compressed_tokens for target in targets]

        assert sizes == sorted(sizes)
