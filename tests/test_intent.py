"""Tests for intent classification of the latest user request."""

import numpy as np
import pytest

from context_engine.errors import IntentError
from context_engine.intent import IntentAnalyzer, classify_intent, strip_annotations
from context_engine.models import IntentKind

from .conftest import HEADER_QUERY


@pytest.fixture
def analyzer():
    return IntentAnalyzer()


@pytest.mark.parametrize(
    "query, expected",
    [
        ("Create a login form", IntentKind.CREATE),
        ("generate the API client", IntentKind.CREATE),
        ("add a search input to the Header component", IntentKind.CREATE),
        ("change the button colour", IntentKind.MODIFY),
        ("update and fix the parser", IntentKind.MODIFY),
        ("fix the crash on startup", IntentKind.DEBUG),
        ("why does this throw an error", IntentKind.DEBUG),
        ("explain the retry loop", IntentKind.UNDERSTAND),
        ("refactor the session store", IntentKind.REFACTOR),
        ("write tests for the cache", IntentKind.TEST),
        ("look at the sidebar", IntentKind.UNDERSTAND),
    ],
)
def test_classify_intent(query, expected):
    assert classify_intent(query) is expected


def test_add_only_matches_whole_words():
    assert classify_intent("read the address book loader") is IntentKind.UNDERSTAND
    assert classify_intent("padding looks off, improve it") is IntentKind.REFACTOR


def test_strip_annotations():
    text = "[Model: gpt-4o]\n\n[Provider: OpenAI]\n\nadd a [beta] flag"

    assert strip_annotations(text) == "add a [beta] flag"


class TestIntentAnalyzer:
    def test_header_request(self, analyzer, header_messages):
        intent = analyzer.analyze_intent(header_messages)

        assert intent.kind is IntentKind.CREATE
        assert intent.entities == ["Header"]
        assert intent.keywords == ["add", "search", "input", "header", "component"]
        assert intent.query == HEADER_QUERY
        assert intent.confidence == pytest.approx(0.8)
        assert intent.vector.shape == (analyzer.embedder.dimension,)

    def test_uses_only_the_last_message(self, analyzer):
        messages = [
            {"role": "user", "content": "fix the Parser"},
            {"role": "assistant", "content": "Done."},
            {"role": "user", "content": "now explain the Lexer"},
        ]

        intent = analyzer.analyze_intent(messages)

        assert intent.kind is IntentKind.UNDERSTAND
        assert intent.entities == ["Lexer"]

    def test_list_content_parts(self, analyzer):
        messages = [{"role": "user", "content": [{"type": "text", "text": "debug the"}, "Scheduler loop"]}]

        intent = analyzer.analyze_intent(messages)

        assert intent.kind is IntentKind.DEBUG
        assert intent.entities == ["Scheduler"]

    @pytest.mark.parametrize(
        "messages",
        [
            [],
            [{"role": "assistant", "content": "hello"}],
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        ],
    )
    def test_requires_trailing_user_message(self, analyzer, messages):
        with pytest.raises(IntentError, match="No user message found"):
            analyzer.analyze_intent(messages)

    def test_confidence_hook_is_clamped(self):
        class Overconfident(IntentAnalyzer):
            def estimate_confidence(self, query, kind):
                return 3.0

        intent = Overconfident().analyze_intent([{"role": "user", "content": "add things"}])

        assert intent.confidence == 1.0

    def test_vector_is_deterministic(self, analyzer, header_messages):
        first = analyzer.analyze_intent(header_messages).vector
        second = IntentAnalyzer().analyze_intent(header_messages).vector

        assert np.array_equal(first, second)
