"""
Matching Interfaces Module

This module defines the common contract for the embedding comparison
algorithms and the result types they return.

Every algorithm turns a pair of face embeddings into:
1. A similarity score on a 0-100 scale
2. A boolean match decision
3. A qualitative confidence label ("high", "medium", "low")

plus algorithm-specific diagnostics (Euclidean distance, angle, cosine).
Results are immutable dataclasses, one variant per algorithm, sharing the
AlgorithmResult base.

A stub algorithm with a fixed outcome is provided for exercising the
ensemble fusion logic in isolation.

Usage:
    from biometrics.matching.interfaces import MetricAlgorithm, AlgorithmResult

    class MyMetric(MetricAlgorithm):
        name = "my_metric"

        def compare(self, embedding_a, embedding_b) -> AlgorithmResult:
            ...
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from biometrics.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

EmbeddingLike = Union[np.ndarray, Sequence[float]]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def sigmoid(x: float) -> float:
    """Logistic function 1 / (1 + e^-x), saturating to 0 or 1 for large |x|."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def as_embedding(embedding: EmbeddingLike, name: str = "embedding") -> np.ndarray:
    """
    Convert an embedding to a flat float64 vector.

    Args:
        embedding: Any array-like of numbers. Shapes such as (1, D) are flattened.
        name: Label used in error messages.

    Returns:
        1-D float64 numpy array.

    Raises:
        EmbeddingError: If the embedding is None, empty or contains NaN/inf.
    """
    if embedding is None:
        raise EmbeddingError(f"{name} is None")

    try:
        vector = np.asarray(embedding, dtype=np.float64).ravel()
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"{name} is not numeric: {e}") from e

    if vector.size == 0:
        raise EmbeddingError(f"{name} is empty")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingError(f"{name} contains NaN or infinite values")

    return vector


def validate_pair(
    embedding_a: EmbeddingLike, embedding_b: EmbeddingLike
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate and convert an embedding pair for comparison.

    Raises:
        EmbeddingError: If either embedding is invalid or the lengths differ.
    """
    a = as_embedding(embedding_a, "embedding_a")
    b = as_embedding(embedding_b, "embedding_b")

    if a.shape[0] != b.shape[0]:
        raise EmbeddingError(
            f"Embedding dimension mismatch: embedding_a={a.shape[0]}, "
            f"embedding_b={b.shape[0]}"
        )

    return a, b


def l2_normalize(embedding: EmbeddingLike) -> np.ndarray:
    """
    Scale an embedding to unit Euclidean length.

    A zero vector is returned unchanged (divisor treated as 1).
    """
    vector = np.asarray(embedding, dtype=np.float64)
    norm = float(np.linalg.norm(vector))

    if norm == 0.0:
        logger.warning("Zero-norm embedding left unnormalized")
        return vector.copy()

    return vector / norm


def classify_confidence(value: float, high: float, medium: float, lower_is_better: bool = False) -> str:
    """
    Map a metric to a confidence label using two strict cut-offs.

    Args:
        value: The metric (a cosine or a distance).
        high: Cut-off for "high".
        medium: Cut-off for "medium".
        lower_is_better: True for distances (value < cut-off),
                         False for similarities (value > cut-off).
    """
    if lower_is_better:
        if value < high:
            return HIGH
        if value < medium:
            return MEDIUM
        return LOW

    if value > high:
        return HIGH
    if value > medium:
        return MEDIUM
    return LOW


# ============================================================
# Result types
# ============================================================


@dataclass(frozen=True)
class AlgorithmResult:
    """
    Result of a single algorithm comparison.

    Attributes:
        similarity: Similarity on a 0-100 scale (higher = more similar).
        matched: True if the algorithm on its own decides "same person".
        confidence: "high", "medium" or "low".
    """

    algorithm: ClassVar[str] = "base"

    similarity: float
    matched: bool
    confidence: str

    @property
    def score(self) -> int:
        """Similarity rounded to the nearest integer."""
        return round_half_up(self.similarity)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation including the diagnostic fields."""
        data = {
            "algorithm": self.algorithm,
            "score": self.score,
        }
        for f in fields(self):
            data[f.name] = getattr(self, f.name)
        return data


@dataclass(frozen=True)
class TripletResult(AlgorithmResult):
    """TripletLoss result. distance is the raw Euclidean distance."""

    algorithm: ClassVar[str] = "triplet"

    distance: float


@dataclass(frozen=True)
class ArcFaceResult(AlgorithmResult):
    """ArcFace result. angle_degrees is the unmargined angle between embeddings."""

    algorithm: ClassVar[str] = "arcface"

    angle_degrees: float
    cosine: float

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["angle"] = round_half_up(self.angle_degrees)
        return data


@dataclass(frozen=True)
class CosFaceResult(AlgorithmResult):
    algorithm: ClassVar[str] = "cosface"

    cosine: float


@dataclass(frozen=True)
class SphereFaceResult(AlgorithmResult):
    algorithm: ClassVar[str] = "sphereface"

    cosine: float


# ============================================================
# Algorithm contract
# ============================================================


class MetricAlgorithm(ABC):
    """
    Abstract base class for embedding comparison algorithms.

    Implementations must be deterministic and must not keep state between
    calls. Embeddings are validated by the implementation (see
    validate_pair), so a dimension mismatch raises EmbeddingError instead of
    silently comparing a prefix.
    """

    name: str = "base"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(type(self).__module__)

    @abstractmethod
    def compare(
        self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike
    ) -> AlgorithmResult:
        """
        Compare two face embeddings.

        Args:
            embedding_a: Embedding of the captured face, shape (D,).
            embedding_b: Embedding of the reference (document) face, shape (D,).

        Returns:
            AlgorithmResult variant for this algorithm.

        Raises:
            EmbeddingError: On empty, non-finite or mismatched embeddings.
        """
        pass


class StubMetricAlgorithm(MetricAlgorithm):
    """
    Placeholder algorithm that returns a fixed outcome for any input.

    Useful for testing ensemble fusion (weights, votes, confidence gates)
    independently of the real geometry.
    """

    def __init__(
        self,
        similarity: float = 50.0,
        matched: bool = True,
        confidence: str = MEDIUM,
        name: str = "stub",
    ):
        super().__init__()
        self.similarity = similarity
        self.matched = matched
        self.confidence = confidence
        self.name = name

    def compare(
        self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike
    ) -> AlgorithmResult:
        """Return the fixed outcome."""
        return AlgorithmResult(
            similarity=self.similarity,
            matched=self.matched,
            confidence=self.confidence,
        )
