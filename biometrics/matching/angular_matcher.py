"""
Angular Matchers: Compare L2-normalized face embeddings on the hypersphere.

Three margin-based decision geometries from the face recognition
literature, each applied to the cosine between two unit embeddings:

  - ArcFaceLoss:    additive angular margin       cos(theta + m)
  - CosFaceLoss:    additive cosine margin        cos(theta) - m
  - SphereFaceLoss: multiplicative angular margin cos(m * theta)

The margin-adjusted cosine is scaled into a logit and squashed with a
sigmoid to give a 0-100 similarity. The match decision compares the
unmargined cosine against a threshold derived from the margin.

References:
  - ArcFace:    https://arxiv.org/abs/1801.07698
  - CosFace:    https://arxiv.org/abs/1801.09414
  - SphereFace: https://arxiv.org/abs/1704.08063
"""

import logging
import math
from typing import Any, Dict, NamedTuple, Optional

import numpy as np

from biometrics.matching.interfaces import (
    ArcFaceResult,
    CosFaceResult,
    EmbeddingLike,
    MetricAlgorithm,
    SphereFaceResult,
    classify_confidence,
    l2_normalize,
    sigmoid,
    validate_pair,
)


class Angle(NamedTuple):
    """Angle between two embeddings."""

    radians: float
    degrees: float
    cosine: float


class AngularMarginMatcher(MetricAlgorithm):
    """
    Shared machinery for the margin-based matchers.

    Args:
        scale: Logit scale s (default 64).
        margin: Margin m; its meaning depends on the subclass.
        logger: Optional logger; defaults to this module's logger.
    """

    default_scale = 64.0
    default_margin = 0.0

    def __init__(
        self,
        scale: Optional[float] = None,
        margin: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger)
        self.scale = self.default_scale if scale is None else scale
        self.margin = self.default_margin if margin is None else margin

    @classmethod
    def from_config(cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None):
        """Build from the matching.<algorithm> config section."""
        return cls(scale=config.get("scale"), margin=config.get("margin"), logger=logger)

    def cosine(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> float:
        """Dot product of the two L2-normalized embeddings (not clamped)."""
        a, b = validate_pair(embedding_a, embedding_b)
        return float(np.dot(l2_normalize(a), l2_normalize(b)))

    def similarity_from_margin_cosine(self, cosine_with_margin: float) -> float:
        """Map a margin-adjusted cosine to 0-100 via sigmoid(s * cos / 10)."""
        logit = self.scale * cosine_with_margin
        return sigmoid(logit / 10) * 100

    def _log(self, cosine: float, similarity: float, matched: bool) -> None:
        self.logger.debug(
            f"{self.name}: cosine={cosine:.4f} similarity={similarity:.2f} matched={matched}"
        )


class ArcFaceLoss(AngularMarginMatcher):
    """
    Additive angular margin: similarity from cos(theta + m).

    matched = cosine > cos(1.5 * m)
    """

    name = "arcface"
    default_margin = 0.5  # radians

    @property
    def threshold(self) -> float:
        return math.cos(self.margin * 1.5)

    def calculate_angle(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> Angle:
        """Angle between embeddings, with the cosine clamped to [-1, 1]."""
        cosine = max(-1.0, min(1.0, self.cosine(embedding_a, embedding_b)))
        angle = math.acos(cosine)
        return Angle(radians=angle, degrees=math.degrees(angle), cosine=cosine)

    def compare(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> ArcFaceResult:
        angle = self.calculate_angle(embedding_a, embedding_b)

        similarity = self.similarity_from_margin_cosine(math.cos(angle.radians + self.margin))
        matched = angle.cosine > self.threshold

        self._log(angle.cosine, similarity, matched)
        return ArcFaceResult(
            similarity=similarity,
            matched=matched,
            confidence=classify_confidence(angle.cosine, 0.85, 0.70),
            angle_degrees=angle.degrees,
            cosine=angle.cosine,
        )


class CosFaceLoss(AngularMarginMatcher):
    """
    Additive cosine margin: similarity from cos(theta) - m.

    matched = cosine > 0.5 + m
    """

    name = "cosface"
    default_margin = 0.35

    @property
    def threshold(self) -> float:
        return 0.5 + self.margin

    def compare(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> CosFaceResult:
        cosine = self.cosine(embedding_a, embedding_b)

        similarity = self.similarity_from_margin_cosine(cosine - self.margin)
        matched = cosine > self.threshold

        self._log(cosine, similarity, matched)
        return CosFaceResult(
            similarity=similarity,
            matched=matched,
            confidence=classify_confidence(cosine, 0.90, 0.75),
            cosine=cosine,
        )


class SphereFaceLoss(AngularMarginMatcher):
    """
    Multiplicative angular margin: similarity from cos(m * theta).

    matched = cosine > cos(pi / 4 * m)
    """

    name = "sphereface"
    default_margin = 1.35

    @property
    def threshold(self) -> float:
        return math.cos(math.pi / 4 * self.margin)

    def compare(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> SphereFaceResult:
        cosine = self.cosine(embedding_a, embedding_b)
        angle = math.acos(max(-1.0, min(1.0, cosine)))

        similarity = self.similarity_from_margin_cosine(math.cos(angle * self.margin))
        matched = cosine > self.threshold

        self._log(cosine, similarity, matched)
        return SphereFaceResult(
            similarity=similarity,
            matched=matched,
            confidence=classify_confidence(cosine, 0.85, 0.70),
            cosine=cosine,
        )
