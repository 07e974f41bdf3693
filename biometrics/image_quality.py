"""
Image Quality Module

Scores a captured image on brightness, contrast and sharpness and
combines them into an overall 0-100 quality value. The overall value is
what EnsembleVerifier.adjust_weights_for_quality() expects.

Usage:
    from biometrics.image_quality import analyze_image_quality

    selfie_q = analyze_image_quality(selfie)
    document_q = analyze_image_quality(document)
    verifier.adjust_weights_for_quality(selfie_q.overall_quality, document_q.overall_quality)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from biometrics.preprocessing import luminance, validate_image


@dataclass
class ImageQualityMetrics:
    """
    Quality metrics for one image.

    Attributes:
        brightness: Mean luminance / 255 (0 = black, 1 = white).
        contrast: Luminance standard deviation / 80, capped at 1.
        sharpness: Normalized mean absolute Laplacian of the red channel, capped at 1.
        overall_quality: Weighted combination on a 0-100 scale.
        issues: Human-readable problems found.
        suggestions: One capture suggestion per issue.
    """

    brightness: float
    contrast: float
    sharpness: float
    overall_quality: float
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


DEFAULT_THRESHOLDS: Dict[str, float] = {
    "dark_luminance": 50,
    "bright_luminance": 200,
    "min_brightness": 0.3,
    "max_brightness": 0.7,
    "max_extreme_ratio": 0.3,
    "min_sharpness": 0.3,
}


def _laplacian_sharpness(channel: np.ndarray) -> float:
    """
    Sum of |4c - left - right - top - bottom| over interior pixels,
    normalized by (total pixels * 50) and capped at 1.
    """
    height, width = channel.shape
    if height < 3 or width < 3:
        return 0.0

    laplacian = cv2.Laplacian(channel.astype(np.float64), cv2.CV_64F, ksize=1)
    interior = np.abs(laplacian[1:-1, 1:-1])
    return min(float(interior.sum()) / (channel.size * 50), 1.0)


def analyze_image_quality(
    image: np.ndarray, config: Optional[Dict[str, Any]] = None
) -> ImageQualityMetrics:
    """
    Analyze the capture quality of an RGB/RGBA image.

    Args:
        image: RGB/RGBA array (H, W, 3|4).
        config: Optional "image_quality" config section overriding the
                thresholds in DEFAULT_THRESHOLDS.

    Returns:
        ImageQualityMetrics.

    Raises:
        ImageValidationError: If the image is malformed.
    """
    thresholds = dict(DEFAULT_THRESHOLDS)
    thresholds.update(config or {})

    image = validate_image(image)
    luma = luminance(image)
    pixel_count = luma.size

    issues: List[str] = []
    suggestions: List[str] = []

    # 1. Brightness
    brightness = float(luma.mean()) / 255
    dark_ratio = float((luma < thresholds["dark_luminance"]).sum()) / pixel_count
    bright_ratio = float((luma > thresholds["bright_luminance"]).sum()) / pixel_count

    if brightness < thresholds["min_brightness"]:
        issues.append("Image too dark")
        suggestions.append("Increase the ambient lighting")
    elif brightness > thresholds["max_brightness"]:
        issues.append("Image too bright")
        suggestions.append("Reduce direct lighting")

    if dark_ratio > thresholds["max_extreme_ratio"] or bright_ratio > thresholds["max_extreme_ratio"]:
        issues.append("Uneven lighting")
        suggestions.append("Use even, diffuse lighting")

    # 2. Contrast (population std of luminance)
    contrast = min(float(luma.std()) / 80, 1.0)

    # 3. Sharpness
    sharpness = _laplacian_sharpness(image[..., 0])
    if sharpness < thresholds["min_sharpness"]:
        issues.append("Image is blurry")
        suggestions.append("Hold the device steady")

    brightness_score = 1 - abs(brightness - 0.5) * 2
    overall = brightness_score * 30 + contrast * 35 + sharpness * 35

    return ImageQualityMetrics(
        brightness=brightness,
        contrast=contrast,
        sharpness=sharpness,
        overall_quality=min(100.0, max(0.0, overall)),
        issues=issues,
        suggestions=suggestions,
    )
