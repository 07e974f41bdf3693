"""
Ensemble Verification: Fuse the four metric algorithms into one decision.

The verifier runs TripletLoss, ArcFace, CosFace and SphereFace on the same
embedding pair and combines them in three stages:

  1. Weighted score:  weighted_score = sum(weight_i * similarity_i)
  2. Agreement:       votes = number of algorithms that matched on their own,
                      std_dev = spread of the similarities around weighted_score
  3. Decision:        confidence gate -> adaptive threshold ->
                      passed = weighted_score >= threshold
                               and votes >= 2
                               and confidence != "low"

Weights start at the default profile and can be switched to a profile that
leans harder on ArcFace when the input images are of poor quality.

Usage:
    from biometrics.matching.ensemble import EnsembleVerifier

    verifier = EnsembleVerifier()
    verifier.adjust_weights_for_quality(selfie_quality, document_quality)
    result = verifier.compare(selfie_embedding, document_embedding)
    if result.passed:
        ...
"""

import logging
import math
import warnings
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

import numpy as np

from biometrics.matching.angular_matcher import ArcFaceLoss, CosFaceLoss, SphereFaceLoss
from biometrics.matching.interfaces import (
    HIGH,
    LOW,
    MEDIUM,
    AlgorithmResult,
    EmbeddingLike,
    MetricAlgorithm,
    round_half_up,
    validate_pair,
)
from biometrics.matching.triplet_matcher import TripletLoss


ALGORITHM_NAMES = ("triplet", "arcface", "cosface", "sphereface")

# Confidence gates, evaluated in order
HIGH_MAX_STD_DEV = 8.0
HIGH_MIN_SCORE = 75.0
HIGH_MIN_VOTES = 3
MEDIUM_MAX_STD_DEV = 15.0
MEDIUM_MIN_SCORE = 60.0
MEDIUM_MIN_VOTES = 2

ADAPTIVE_THRESHOLDS = {HIGH: 70, MEDIUM: 60, LOW: 50}
MIN_VOTES_TO_PASS = 2


@dataclass(frozen=True)
class EnsembleWeights:
    """
    Per-algorithm fusion weights. Components should sum to 1.0.

    Use from_mapping() to build from config; it normalizes (with a
    warning) when the weights do not sum to 1.0.
    """

    triplet: float
    arcface: float
    cosface: float
    sphereface: float

    @property
    def total(self) -> float:
        return self.triplet + self.arcface + self.cosface + self.sphereface

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    def __getitem__(self, name: str) -> float:
        if name not in ALGORITHM_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float]) -> "EnsembleWeights":
        """
        Build weights from a {algorithm: weight} mapping.

        Raises:
            KeyError: If an algorithm weight is missing.
            ValueError: If a weight is negative or all weights are zero.
        """
        values = {name: float(mapping[name]) for name in ALGORITHM_NAMES}

        if any(v < 0 for v in values.values()):
            raise ValueError(f"Ensemble weights must be non-negative: {values}")

        total = sum(values.values())
        if total <= 0:
            raise ValueError("Ensemble weights sum to zero")

        if abs(total - 1.0) > 0.01:
            warnings.warn(
                f"Ensemble weights sum to {total:.3f}, not 1.0. Normalizing."
            )
            values = {name: v / total for name, v in values.items()}

        return cls(**values)


DEFAULT_WEIGHTS = EnsembleWeights(triplet=0.20, arcface=0.40, cosface=0.25, sphereface=0.15)
MEDIUM_QUALITY_WEIGHTS = EnsembleWeights(triplet=0.18, arcface=0.45, cosface=0.25, sphereface=0.12)
LOW_QUALITY_WEIGHTS = EnsembleWeights(triplet=0.15, arcface=0.55, cosface=0.20, sphereface=0.10)


@dataclass(frozen=True)
class EnsembleStats:
    """
    Fusion diagnostics.

    Attributes:
        weighted_score: Weighted average of the four similarities (0-100).
        votes: Number of algorithms that matched individually (0-4).
        variance: Mean squared deviation of the similarities from weighted_score.
        std_dev: Square root of variance.
        threshold: Adaptive score threshold applied to weighted_score.
    """

    weighted_score: float
    votes: int
    variance: float
    std_dev: float
    threshold: int

    @property
    def agreement_count(self) -> int:
        return self.votes

    @property
    def adaptive_threshold(self) -> int:
        return self.threshold


@dataclass(frozen=True)
class EnsembleResult:
    """
    Final verdict of the ensemble.

    Attributes:
        passed: True if the two embeddings are accepted as the same person.
        score: weighted_score rounded to an integer.
        confidence: "high", "medium" or "low".
        algorithms: Per-algorithm results keyed by algorithm name.
        stats: Fusion diagnostics.
        weights: The weights used for this comparison.
    """

    passed: bool
    score: int
    confidence: str
    algorithms: Dict[str, AlgorithmResult]
    stats: EnsembleStats
    weights: EnsembleWeights = field(default=DEFAULT_WEIGHTS)

    def to_dict(self) -> Dict[str, Any]:
        """Rounded, JSON-friendly representation for display layers."""
        return {
            "passed": self.passed,
            "score": self.score,
            "confidence": self.confidence,
            "algorithms": {name: r.to_dict() for name, r in self.algorithms.items()},
            "stats": {
                "weighted_score": round_half_up(self.stats.weighted_score),
                "votes": self.stats.votes,
                "variance": round_half_up(self.stats.variance),
                "std_dev": round_half_up(self.stats.std_dev),
                "threshold": self.stats.threshold,
                "agreement_count": self.stats.agreement_count,
                "adaptive_threshold": self.stats.adaptive_threshold,
            },
            "weights": self.weights.as_dict(),
        }


def classify_ensemble_confidence(std_dev: float, weighted_score: float, votes: int) -> str:
    """First matching gate wins: high, then medium, else low."""
    if std_dev < HIGH_MAX_STD_DEV and weighted_score > HIGH_MIN_SCORE and votes >= HIGH_MIN_VOTES:
        return HIGH
    if std_dev < MEDIUM_MAX_STD_DEV and weighted_score > MEDIUM_MIN_SCORE and votes >= MEDIUM_MIN_VOTES:
        return MEDIUM
    return LOW


def adaptive_threshold(confidence: str) -> int:
    """Score threshold for a confidence level (70 / 60 / 50)."""
    return ADAPTIVE_THRESHOLDS[confidence]


class EnsembleVerifier:
    """
    Weighted, vote-gated ensemble over the four metric algorithms.

    Each instance owns its weight vector. Use separate instances (or the
    weights argument of compare()) when comparisons with different quality
    profiles may run concurrently.

    Args:
        triplet, arcface, cosface, sphereface: Algorithm instances. Defaults
            are built with the standard parameters.
        weights: Initial weights (default profile if omitted).
        quality_profiles: Optional {"default", "medium_quality", "low_quality"}
            weight overrides used by adjust_weights_for_quality().
        low_quality_below: Average quality under which the low profile applies.
        medium_quality_below: Average quality under which the medium profile applies.
        logger: Optional logger; defaults to this module's logger.
    """

    def __init__(
        self,
        triplet: Optional[MetricAlgorithm] = None,
        arcface: Optional[MetricAlgorithm] = None,
        cosface: Optional[MetricAlgorithm] = None,
        sphereface: Optional[MetricAlgorithm] = None,
        weights: Optional[EnsembleWeights] = None,
        quality_profiles: Optional[Mapping[str, EnsembleWeights]] = None,
        low_quality_below: float = 40,
        medium_quality_below: float = 70,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.algorithms: Dict[str, MetricAlgorithm] = {
            "triplet": triplet or TripletLoss(0.2, 2.5, logger=logger),
            "arcface": arcface or ArcFaceLoss(64, 0.5, logger=logger),
            "cosface": cosface or CosFaceLoss(64, 0.35, logger=logger),
            "sphereface": sphereface or SphereFaceLoss(64, 1.35, logger=logger),
        }

        profiles = dict(quality_profiles or {})
        self.default_weights = profiles.get("default", DEFAULT_WEIGHTS)
        self.medium_quality_weights = profiles.get("medium_quality", MEDIUM_QUALITY_WEIGHTS)
        self.low_quality_weights = profiles.get("low_quality", LOW_QUALITY_WEIGHTS)
        self.low_quality_below = low_quality_below
        self.medium_quality_below = medium_quality_below

        self.weights = weights or self.default_weights

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None
    ) -> "EnsembleVerifier":
        """
        Build a verifier from a full configuration dict.

        Reads the "matching" section for algorithm parameters and the
        "ensemble" section for weight profiles and quality breakpoints.
        Missing sections fall back to the built-in defaults.
        """
        matching = config.get("matching", {})
        ensemble = config.get("ensemble", {})

        profiles = {
            name: EnsembleWeights.from_mapping(mapping)
            for name, mapping in ensemble.get("weights", {}).items()
        }

        return cls(
            triplet=TripletLoss.from_config(matching.get("triplet", {}), logger=logger),
            arcface=ArcFaceLoss.from_config(matching.get("arcface", {}), logger=logger),
            cosface=CosFaceLoss.from_config(matching.get("cosface", {}), logger=logger),
            sphereface=SphereFaceLoss.from_config(matching.get("sphereface", {}), logger=logger),
            quality_profiles=profiles,
            low_quality_below=ensemble.get("low_quality_below", 40),
            medium_quality_below=ensemble.get("medium_quality_below", 70),
            logger=logger,
        )

    def adjust_weights_for_quality(
        self, quality: float, document_quality: Optional[float] = None
    ) -> EnsembleWeights:
        """
        Select the weight profile for the given image quality (0-100).

        With both qualities supplied the average is used. Poor images lean
        harder on ArcFace.

        Returns:
            The weights now held by the verifier.
        """
        if document_quality is not None:
            avg_quality = (quality + document_quality) / 2
        else:
            avg_quality = quality

        if avg_quality < self.low_quality_below:
            self.weights = self.low_quality_weights
        elif avg_quality < self.medium_quality_below:
            self.weights = self.medium_quality_weights
        else:
            self.weights = self.default_weights

        self.logger.info(f"Weights adjusted for quality {avg_quality:.1f}: {self.weights.as_dict()}")
        return self.weights

    def compare(
        self,
        embedding_a: EmbeddingLike,
        embedding_b: EmbeddingLike,
        weights: Optional[EnsembleWeights] = None,
    ) -> EnsembleResult:
        """
        Run all four algorithms and fuse them into one verdict.

        Args:
            embedding_a: Captured face embedding, shape (D,).
            embedding_b: Reference (document) face embedding, shape (D,).
            weights: Optional weights for this call only. The verifier's own
                     weights are left untouched.

        Returns:
            EnsembleResult with the verdict and full per-algorithm breakdown.

        Raises:
            EmbeddingError: On empty, non-finite or mismatched embeddings.
        """
        a, b = validate_pair(embedding_a, embedding_b)
        weights = weights or self.weights

        results = {name: algo.compare(a, b) for name, algo in self.algorithms.items()}

        similarities = np.array([results[name].similarity for name in ALGORITHM_NAMES])
        weight_vector = np.array([weights[name] for name in ALGORITHM_NAMES])

        weighted_score = float(np.dot(similarities, weight_vector))
        votes = sum(1 for r in results.values() if r.matched)

        # Spread is measured around the weighted score, not the plain mean
        variance = float(np.mean((similarities - weighted_score) ** 2))
        std_dev = math.sqrt(variance)

        confidence = classify_ensemble_confidence(std_dev, weighted_score, votes)
        threshold = adaptive_threshold(confidence)

        passed = (
            weighted_score >= threshold
            and votes >= MIN_VOTES_TO_PASS
            and confidence != LOW
        )

        self.logger.debug(
            "Individual scores: "
            + ", ".join(f"{name}={results[name].similarity:.2f}" for name in ALGORITHM_NAMES)
        )
        self.logger.debug(
            f"Weighted score: {weighted_score:.2f}, votes: {votes}/4, "
            f"variance: {variance:.2f}, threshold: {threshold}"
        )

        return EnsembleResult(
            passed=passed,
            score=round_half_up(weighted_score),
            confidence=confidence,
            algorithms=results,
            stats=EnsembleStats(
                weighted_score=weighted_score,
                votes=votes,
                variance=variance,
                std_dev=std_dev,
                threshold=threshold,
            ),
            weights=weights,
        )

    def compare_detailed(
        self, embedding_a: EmbeddingLike, embedding_b: EmbeddingLike
    ) -> Dict[str, EnsembleResult]:
        """Compare and wrap the result as {"ensemble": result} for analysis tooling."""
        return {"ensemble": self.compare(embedding_a, embedding_b)}

    def verify_normalization(self, embedding: EmbeddingLike) -> float:
        """
        Euclidean norm of an embedding.

        Extractors that L2-normalize their output should give ~1.0.
        """
        norm = float(np.linalg.norm(np.asarray(embedding, dtype=np.float64)))
        self.logger.debug(f"Embedding norm: {norm:.6f}")
        return norm


def get_ensemble_verifier(
    config: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> EnsembleVerifier:
    """
    Factory function returning a new, independently weighted verifier.

    Args:
        config: Optional full config dict. If None, loads config.yaml and
                falls back to built-in defaults when no config file exists.
        logger: Optional logger injected into the verifier and algorithms.
    """
    if config is None:
        try:
            from biometrics.config import get_config
            config = get_config()
        except FileNotFoundError as e:
            logging.getLogger(__name__).warning(f"{e} Using built-in ensemble defaults.")
            config = {}

    return EnsembleVerifier.from_config(config, logger=logger)
