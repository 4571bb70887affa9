"""
Model registry for context-window aware token budgeting.

The manager sizes its usable budget from the context window of the model a
request is addressed to. Unknown models fall back to a deliberately small
window so an unrecognised model never receives an oversized prompt.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Default fallback for unknown models - conservative estimate
DEFAULT_CONTEXT_WINDOW = 4_096


@dataclass(frozen=True)
class ModelSpec:
    """Specification for an LLM model's context limits.

    Attributes:
        context_window: Total context window size in tokens
        provider: Provider name (e.g., "openai", "anthropic", "google")
    """

    context_window: int
    provider: Optional[str] = None

    def usable_tokens(self, ratio: float) -> int:
        """Share of the window available for prompt context."""
        return int(self.context_window * ratio)


OPENAI_MODELS: dict[str, ModelSpec] = {
    "gpt-4o": ModelSpec(128_000, "openai"),
    "gpt-4o-mini": ModelSpec(128_000, "openai"),
    "gpt-4": ModelSpec(8_192, "openai"),
    "gpt-4-32k": ModelSpec(32_768, "openai"),
    "gpt-3.5-turbo": ModelSpec(4_096, "openai"),
    "gpt-3.5-turbo-16k": ModelSpec(16_384, "openai"),
}

ANTHROPIC_MODELS: dict[str, ModelSpec] = {
    "claude-3-5-sonnet-20241022": ModelSpec(200_000, "anthropic"),
    "claude-3-5-haiku-20241022": ModelSpec(200_000, "anthropic"),
    "claude-3-opus-20240229": ModelSpec(200_000, "anthropic"),
}

GOOGLE_MODELS: dict[str, ModelSpec] = {
    "gemini-1.5-pro-latest": ModelSpec(2_000_000, "google"),
    "gemini-1.5-flash-latest": ModelSpec(1_000_000, "google"),
}

# Combine all into master registry
MODEL_REGISTRY: dict[str, ModelSpec] = {}
MODEL_REGISTRY.update(OPENAI_MODELS)
MODEL_REGISTRY.update(ANTHROPIC_MODELS)
MODEL_REGISTRY.update(GOOGLE_MODELS)


def _base_model(model: str) -> str:
    # "gpt-4o-mini-2024-07-18" -> "gpt-4o-mini"
    return "-".join(model.split("-")[:3])


def get_model_spec(model: str, strict: bool = False) -> ModelSpec:
    """Get model specification with fuzzy matching for model variants.

    Args:
        model: Model identifier (e.g., "gpt-4o", "claude-3-5-sonnet-20241022")
        strict: If True, raise ValueError for unknown models. If False, return
                a default spec with a conservative window.

    Returns:
        ModelSpec for the requested model

    Raises:
        ValueError: If strict=True and model is not found in registry

    Examples:
        >>> get_model_spec("gpt-4o").context_window
        128000
        >>> get_model_spec("gpt-4o-2024-08-06").context_window
        128000
    """
    # Exact match
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]

    # Normalize model name (lowercase, strip whitespace)
    normalized = model.lower().strip()
    if normalized in MODEL_REGISTRY:
        return MODEL_REGISTRY[normalized]

    base = _base_model(normalized)
    if base in MODEL_REGISTRY:
        return MODEL_REGISTRY[base]

    # Prefer the most specific key when several match
    if normalized:
        for key in sorted(MODEL_REGISTRY.keys(), key=len, reverse=True):
            if normalized.startswith(key) or key in normalized:
                logger.debug("Fuzzy matched model '%s' to registry key '%s'", model, key)
                return MODEL_REGISTRY[key]

    if strict:
        available = ", ".join(sorted(MODEL_REGISTRY.keys()))
        raise ValueError(f"Unknown model '{model}'. Registered models: {available}")

    logger.warning(
        "Model '%s' not in registry, using default context window (%d tokens)",
        model,
        DEFAULT_CONTEXT_WINDOW,
    )
    return ModelSpec(context_window=DEFAULT_CONTEXT_WINDOW)


def get_context_window(model: str) -> int:
    """Total context window, in tokens, for ``model``."""
    return get_model_spec(model).context_window


def register_model(name: str, spec: ModelSpec) -> None:
    """Register a custom model specification.

    Args:
        name: Model identifier
        spec: Model specification
    """
    MODEL_REGISTRY[name] = spec
    logger.info("Registered custom model '%s' with context window %d", name, spec.context_window)


def list_models(provider: Optional[str] = None) -> list[str]:
    """List all registered model names, optionally filtered by provider."""
    if provider:
        return sorted(name for name, spec in MODEL_REGISTRY.items() if spec.provider == provider)
    return sorted(MODEL_REGISTRY.keys())


__all__ = [
    "DEFAULT_CONTEXT_WINDOW",
    "MODEL_REGISTRY",
    "ModelSpec",
    "get_context_window",
    "get_model_spec",
    "list_models",
    "register_model",
]
