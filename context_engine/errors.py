"""Exception hierarchy for the context engine."""

from __future__ import annotations


class ContextEngineError(Exception):
    """Base exception for context engine errors."""

    pass


class ExtractionError(ContextEngineError):
    """Raised when a single file cannot be turned into context nodes."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to extract entities from {path}: {reason}")
        self.path = path
        self.reason = reason


class IntentError(ContextEngineError):
    """Raised when no user message is available for intent analysis."""

    pass


class UnknownStrategyError(ContextEngineError):
    """Raised when the manager is asked to run a strategy it does not know."""

    pass


__all__ = ["ContextEngineError", "ExtractionError", "IntentError", "UnknownStrategyError"]
