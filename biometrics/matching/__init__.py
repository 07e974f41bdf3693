"""
Matching Module for Face Verification

This package contains the embedding comparison algorithms and the
ensemble that fuses them into a single decision.

Components:
    - interfaces: Result types and the MetricAlgorithm base class
    - triplet_matcher: Euclidean distance (FaceNet triplet margin)
    - angular_matcher: ArcFace, CosFace and SphereFace angular margins
    - ensemble: Weighted, vote-gated fusion with adaptive thresholds

Usage:
    from biometrics.matching import EnsembleVerifier
    result = EnsembleVerifier().compare(selfie_embedding, document_embedding)
"""

from biometrics.matching.interfaces import (
    AlgorithmResult,
    TripletResult,
    ArcFaceResult,
    CosFaceResult,
    SphereFaceResult,
    MetricAlgorithm,
    StubMetricAlgorithm,
    l2_normalize,
)
from biometrics.matching.triplet_matcher import TripletLoss
from biometrics.matching.angular_matcher import ArcFaceLoss, CosFaceLoss, SphereFaceLoss
from biometrics.matching.ensemble import (
    EnsembleWeights,
    EnsembleStats,
    EnsembleResult,
    EnsembleVerifier,
    DEFAULT_WEIGHTS,
    MEDIUM_QUALITY_WEIGHTS,
    LOW_QUALITY_WEIGHTS,
    get_ensemble_verifier,
)

__all__ = [
    # Result types
    "AlgorithmResult",
    "TripletResult",
    "ArcFaceResult",
    "CosFaceResult",
    "SphereFaceResult",
    # Algorithm contract
    "MetricAlgorithm",
    "StubMetricAlgorithm",
    "l2_normalize",
    # Algorithms
    "TripletLoss",
    "ArcFaceLoss",
    "CosFaceLoss",
    "SphereFaceLoss",
    # Ensemble
    "EnsembleWeights",
    "EnsembleStats",
    "EnsembleResult",
    "EnsembleVerifier",
    "DEFAULT_WEIGHTS",
    "MEDIUM_QUALITY_WEIGHTS",
    "LOW_QUALITY_WEIGHTS",
    "get_ensemble_verifier",
]
