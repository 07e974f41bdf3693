"""
Exception types raised by the verification core.

Both concrete errors subclass ValueError so callers that already guard
numeric input with ``except ValueError`` keep working.
"""


class BiometricsError(Exception):
    """Base class for all errors raised by the biometrics package."""


class EmbeddingError(BiometricsError, ValueError):
    """An embedding (or embedding pair) cannot be compared."""


class ImageValidationError(BiometricsError, ValueError):
    """An image array is empty or does not have an RGB/RGBA layout."""
