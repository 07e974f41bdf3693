"""
Triplet Matcher: Compare raw face embeddings by Euclidean distance.

FaceNet-style decision geometry: embeddings trained with a triplet loss
place the same identity within a margin in Euclidean space. The distance
is converted to a 0-100 similarity with an exponential decay, and the
match decision accepts distances below twice the training margin.

Embeddings are compared unnormalized.

Reference: FaceNet, https://arxiv.org/abs/1503.03832
"""

import logging
import math
from typing import Any, Dict, Optional

import numpy as np

from biometrics.matching.interfaces import (
    EmbeddingLike,
    MetricAlgorithm,
    TripletResult,
    classify_confidence,
    validate_pair,
)

HIGH_CONFIDENCE_DISTANCE = 0.30
MEDIUM_CONFIDENCE_DISTANCE = 0.50


class TripletLoss(MetricAlgorithm):
    """
    Euclidean distance matcher with exponential similarity decay.

    similarity = exp(-distance * decay_factor) * 100
    matched = distance < 2 * margin

    Args:
        margin: Triplet margin used at training time (default 0.2).
        decay_factor: Steepness of the distance-to-similarity decay (default 2.5).
        logger: Optional logger; defaults to this module's logger.
    """

    name = "triplet"

    def __init__(
        self,
        margin: float = 0.2,
        decay_factor: float = 2.5,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger)
        self.margin = margin
        self.decay_factor = decay_factor

    @classmethod
    def from_config(cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None) -> "TripletLoss":
        """Build from the matching.triplet config section."""
        return cls(
            margin=config.get("margin", 0.2),
            decay_factor=config.get("decay_factor", 2.5),
            logger=logger,
        )

    @property
    def threshold(self) -> float:
        """Maximum distance accepted as a match."""
        return self.margin * 2

    def euclidean_distance(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> float:
        """Euclidean distance between two raw embeddings."""
        a, b = validate_pair(embedding_a, embedding_b)
        return float(np.linalg.norm(a - b))

    def compare(self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike) -> TripletResult:
        distance = self.euclidean_distance(embedding_a, embedding_b)
        similarity = math.exp(-distance * self.decay_factor) * 100

        result = TripletResult(
            similarity=similarity,
            matched=distance < self.threshold,
            confidence=classify_confidence(
                distance,
                HIGH_CONFIDENCE_DISTANCE,
                MEDIUM_CONFIDENCE_DISTANCE,
                lower_is_better=True,
            ),
            distance=distance,
        )

        self.logger.debug(
            f"triplet: distance={distance:.4f} similarity={similarity:.2f} "
            f"matched={result.matched}"
        )
        return result
