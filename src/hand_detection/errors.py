from __future__ import annotations


class HandDetectionError(RuntimeError):
    """Base class for errors raised by the hand detection pipeline."""


class NotInitializedError(HandDetectionError):
    """Raised when detection is requested before `initialize()` or after `dispose()`."""


class ModelLoadError(HandDetectionError):
    """Raised when a model asset is missing or the engine cannot load it."""
