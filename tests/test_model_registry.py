"""Tests for model context-window lookup."""

import pytest

from context_engine import model_registry
from context_engine.model_registry import (
    DEFAULT_CONTEXT_WINDOW,
    ModelSpec,
    get_context_window,
    get_model_spec,
    list_models,
    register_model,
)


@pytest.mark.parametrize(
    "model, window",
    [
        ("gpt-4o", 128_000),
        ("GPT-4o ", 128_000),
        ("gpt-4o-2024-08-06", 128_000),
        ("gpt-4o-mini-2024-07-18", 128_000),
        ("gpt-4", 8_192),
        ("gpt-4-0613", 8_192),
        ("gpt-3.5-turbo-0125", 4_096),
        ("claude-3-5-sonnet-20241022", 200_000),
        ("gemini-1.5-pro-latest", 2_000_000),
    ],
)
def test_known_models(model, window):
    assert get_context_window(model) == window


def test_unknown_model_uses_default(caplog):
    spec = get_model_spec("llama-local")

    assert spec.context_window == DEFAULT_CONTEXT_WINDOW
    assert spec.provider is None
    assert "not in registry" in caplog.text


def test_unknown_model_strict():
    with pytest.raises(ValueError, match="Unknown model 'llama-local'"):
        get_model_spec("llama-local", strict=True)


def test_register_model(monkeypatch):
    monkeypatch.setattr(model_registry, "MODEL_REGISTRY", dict(model_registry.MODEL_REGISTRY))

    register_model("local-coder", ModelSpec(65_536, "local"))

    assert get_context_window("local-coder") == 65_536
    assert list_models("local") == ["local-coder"]


def test_list_models_by_provider():
    anthropic = list_models("anthropic")

    assert anthropic == sorted(anthropic)
    assert all(name.startswith("claude") for name in anthropic)
    assert set(list_models()) >= set(anthropic)


def test_usable_tokens():
    assert ModelSpec(4_096).usable_tokens(0.7) == 2867
