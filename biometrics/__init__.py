"""
Ensemble Face Verification Core

This package compares face embeddings with four metric-learning decision
geometries and fuses them into one verdict, plus the image preprocessing
applied to captures before (external) embedding extraction.

Main components:
    - config: Configuration loading
    - preprocessing: CLAHE, glare removal, sharpening
    - image_quality: Capture quality scoring
    - matching: Metric algorithms and the ensemble verifier

Usage:
    from biometrics import EnsembleVerifier, preprocess_image
"""

from biometrics.config import (
    get_config,
    get_section,
    get_preprocessing_config,
    get_matching_config,
    get_ensemble_config,
    get_quality_config,
    get_logging_config,
)

from biometrics.exceptions import (
    BiometricsError,
    EmbeddingError,
    ImageValidationError,
)

from biometrics.preprocessing import (
    CLAHENormalizer,
    FaceBox,
    clahe_normalize,
    remove_glare,
    sharpen,
    preprocess_image,
    preprocess_selfie,
    preprocess_document,
    adaptive_histogram_equalization,
    normalize_illumination,
    enhance_contrast,
    bilateral_filter,
    create_face_crop,
    load_image,
    save_image,
)

from biometrics.image_quality import ImageQualityMetrics, analyze_image_quality

from biometrics.matching import (
    TripletLoss,
    ArcFaceLoss,
    CosFaceLoss,
    SphereFaceLoss,
    EnsembleWeights,
    EnsembleResult,
    EnsembleVerifier,
    get_ensemble_verifier,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_preprocessing_config",
    "get_matching_config",
    "get_ensemble_config",
    "get_quality_config",
    "get_logging_config",
    # Errors
    "BiometricsError",
    "EmbeddingError",
    "ImageValidationError",
    # Preprocessing
    "CLAHENormalizer",
    "FaceBox",
    "clahe_normalize",
    "remove_glare",
    "sharpen",
    "preprocess_image",
    "preprocess_selfie",
    "preprocess_document",
    "adaptive_histogram_equalization",
    "normalize_illumination",
    "enhance_contrast",
    "bilateral_filter",
    "create_face_crop",
    "load_image",
    "save_image",
    # Quality
    "ImageQualityMetrics",
    "analyze_image_quality",
    # Matching
    "TripletLoss",
    "ArcFaceLoss",
    "CosFaceLoss",
    "SphereFaceLoss",
    "EnsembleWeights",
    "EnsembleResult",
    "EnsembleVerifier",
    "get_ensemble_verifier",
]
