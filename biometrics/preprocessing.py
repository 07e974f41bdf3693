"""
Image Preprocessing Module

Pixel-level normalization applied to captured face and document images
before embedding extraction, so that comparisons are more robust to
lighting and glare artifacts.

Pipeline:
1. Glare removal (documents only): suppress bright, low-saturation hot spots
2. CLAHE: tile-local, contrast-limited histogram equalization of luminance
3. Sharpening (documents only): light unsharp mask for printed photos

Extended pipelines (preprocess_selfie / preprocess_document) add global
equalization, illumination normalization, a per-channel contrast stretch
and, for documents, bilateral denoising. create_face_crop() cuts a padded
square face crop for embedding models.

Images are RGB or RGBA numpy arrays of shape (H, W, 3|4). Outputs are
uint8; alpha is carried through untouched. Channel writes clamp to
[0, 255] and round to nearest, like an 8-bit canvas buffer.

Usage:
    from biometrics.preprocessing import load_image, preprocess_image

    selfie = preprocess_image(load_image("selfie.jpg"))
    document = preprocess_image(load_image("id_card.jpg"), is_document=True)
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Sequence, Union

import cv2
import numpy as np

from biometrics.exceptions import ImageValidationError

logger = logging.getLogger(__name__)

# Rec. 601 luma coefficients
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def validate_image(image: np.ndarray) -> np.ndarray:
    """
    Check that an image is a non-empty RGB/RGBA array.

    Returns:
        The image as a numpy array.

    Raises:
        ImageValidationError: If the image is None, not (H, W, 3|4), empty,
                              or not numeric.
    """
    if image is None:
        raise ImageValidationError("Image is None")

    image = np.asarray(image)

    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ImageValidationError(
            f"Expected an (H, W, 3) or (H, W, 4) image, got shape {image.shape}"
        )
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ImageValidationError(f"Image has zero size: {image.shape}")
    if not np.issubdtype(image.dtype, np.number):
        raise ImageValidationError(f"Image dtype must be numeric, got {image.dtype}")

    return image


def to_uint8(values: np.ndarray) -> np.ndarray:
    """Clamp to [0, 255] and round to nearest (ties to even)."""
    return np.rint(np.clip(values, 0, 255)).astype(np.uint8)


def _as_pixels(image: np.ndarray) -> np.ndarray:
    """Validated uint8 copy of the image."""
    image = validate_image(image)
    if image.dtype == np.uint8:
        return image.copy()
    return to_uint8(image)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """Per-pixel luminance 0.299R + 0.587G + 0.114B as float64."""
    return rgb[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def gray_levels(rgb: np.ndarray) -> np.ndarray:
    """Luminance rounded half up to integer bins 0..255."""
    levels = np.floor(luminance(rgb) + 0.5).astype(np.intp)
    return np.clip(levels, 0, 255)


# ============================================================
# CLAHE
# ============================================================


class CLAHENormalizer:
    """
    Contrast Limited Adaptive Histogram Equalization on luminance.

    Each tile_size x tile_size tile (edge tiles truncated) is equalized
    independently. Histogram bins above clip_limit * tile_pixels / 256
    are clipped and the clipped mass is spread over all 256 bins before
    building the CDF. RGB channels are scaled by new/old luminance, so
    hue is preserved while contrast changes.

    Args:
        clip_limit: Contrast limit (2.0 for selfies, 2.5 for documents).
        tile_size: Tile edge length in pixels (default 8).
    """

    def __init__(self, clip_limit: float = 2.5, tile_size: int = 8):
        if tile_size < 1:
            raise ValueError(f"tile_size must be >= 1, got {tile_size}")
        self.clip_limit = clip_limit
        self.tile_size = tile_size

    def normalize(self, image: np.ndarray) -> np.ndarray:
        """
        Equalize an image tile by tile.

        Args:
            image: RGB/RGBA array (H, W, 3|4).

        Returns:
            New uint8 image, channel values in [0, 255].
        """
        pixels = _as_pixels(image)
        height, width = pixels.shape[:2]
        size = self.tile_size

        for y0 in range(0, height, size):
            for x0 in range(0, width, size):
                tile = pixels[y0:y0 + size, x0:x0 + size, :3]
                tile[...] = self._equalize_tile(tile)

        return pixels

    def _equalize_tile(self, tile: np.ndarray) -> np.ndarray:
        gray = gray_levels(tile)
        new_gray = _equalized_levels(gray, self.clip_limit)

        if new_gray is None:
            # Flat CDF: nothing to stretch
            return tile

        ratio = new_gray / np.where(gray == 0, 1, gray)
        return to_uint8(tile.astype(np.float64) * ratio[..., np.newaxis])


def _equalized_levels(gray: np.ndarray, clip_limit: float) -> Optional[np.ndarray]:
    """
    Contrast-limited equalization of integer gray levels.

    Bins above clip_limit * n / 256 are clipped and the clipped mass is
    spread evenly over all 256 bins before building the CDF.

    Returns:
        New gray level per pixel, or None when the CDF is flat.
    """
    histogram = np.bincount(gray.ravel(), minlength=256).astype(np.float64)

    clip_height = clip_limit * gray.size / 256
    excess = histogram - clip_height
    clipped = float(excess[excess > 0].sum())
    histogram = np.minimum(histogram, clip_height) + clipped / 256

    cdf = np.cumsum(histogram)
    positive = cdf[cdf > 0]
    cdf_min = float(positive[0]) if positive.size else 0.0
    cdf_max = float(cdf[255])

    if cdf_max - cdf_min <= 0:
        return None

    return np.floor((cdf[gray] - cdf_min) / (cdf_max - cdf_min) * 255 + 0.5)


def clahe_normalize(image: np.ndarray, clip_limit: float = 2.5, tile_size: int = 8) -> np.ndarray:
    """Functional form of CLAHENormalizer(clip_limit, tile_size).normalize(image)."""
    return CLAHENormalizer(clip_limit, tile_size).normalize(image)


# ============================================================
# Glare removal and sharpening
# ============================================================


def remove_glare(
    image: np.ndarray,
    brightness_threshold: float = 230,
    saturation_threshold: float = 30,
    target_brightness: float = 200,
) -> np.ndarray:
    """
    Suppress specular highlights (typical on laminated documents).

    A pixel is glare when max(R, G, B) > brightness_threshold and the
    channel spread max - min < saturation_threshold. Glare pixels are
    scaled by target_brightness / max; all other pixels are untouched.

    Returns:
        New uint8 image.
    """
    pixels = _as_pixels(image)
    rgb = pixels[..., :3].astype(np.float64)

    channel_max = rgb.max(axis=2)
    channel_min = rgb.min(axis=2)
    glare = (channel_max > brightness_threshold) & (
        (channel_max - channel_min) < saturation_threshold
    )

    if glare.any():
        rgb[glare] *= (target_brightness / channel_max[glare])[:, np.newaxis]
        pixels[..., :3] = to_uint8(rgb)

    logger.debug(f"Glare removal: {int(glare.sum())} of {glare.size} pixels adjusted")
    return pixels


def sharpen(image: np.ndarray, amount: float = 0.3) -> np.ndarray:
    """
    Sharpen with a 3x3 unsharp-mask kernel.

    Kernel: centre 1 + 4 * amount, orthogonal neighbours -amount, corners 0.
    Applied per RGB channel; the one-pixel border is left unchanged.

    Returns:
        New uint8 image.
    """
    pixels = _as_pixels(image)
    height, width = pixels.shape[:2]

    if height < 3 or width < 3:
        return pixels

    kernel = np.array(
        [
            [0.0, -amount, 0.0],
            [-amount, 1.0 + 4.0 * amount, -amount],
            [0.0, -amount, 0.0],
        ],
        dtype=np.float64,
    )

    rgb = pixels[..., :3].astype(np.float64)
    filtered = cv2.filter2D(rgb, cv2.CV_64F, kernel, borderType=cv2.BORDER_REPLICATE)

    pixels[1:-1, 1:-1, :3] = to_uint8(filtered[1:-1, 1:-1])
    return pixels


# ============================================================
# Global enhancement
# ============================================================


def adaptive_histogram_equalization(image: np.ndarray, clip_limit: float = 2.0) -> np.ndarray:
    """
    Contrast-limited histogram equalization over the whole image.

    Uses one histogram for all pixels instead of per tile. The per-pixel
    channel ratio new/old luminance is limited to [0.5, 2.0]; pixels with
    gray level 0 are left unchanged.

    Returns:
        New uint8 image.
    """
    pixels = _as_pixels(image)
    gray = gray_levels(pixels)
    new_gray = _equalized_levels(gray, clip_limit)

    if new_gray is None:
        return pixels

    ratio = np.where(gray > 0, new_gray / np.where(gray == 0, 1, gray), 1.0)
    ratio = np.clip(ratio, 0.5, 2.0)
    pixels[..., :3] = to_uint8(pixels[..., :3].astype(np.float64) * ratio[..., np.newaxis])
    return pixels


def normalize_illumination(
    image: np.ndarray,
    target_brightness: float = 130,
    min_factor: float = 0.6,
    max_factor: float = 1.8,
) -> np.ndarray:
    """
    Scale all channels so the face region reaches a target brightness.

    The face region is the central block spanning 25-75% of the width and
    20-80% of the height. The scale factor target / mean luminance is
    clamped to [min_factor, max_factor].

    Returns:
        New uint8 image.
    """
    pixels = _as_pixels(image)
    height, width = pixels.shape[:2]

    region = pixels[int(height * 0.2):int(height * 0.8), int(width * 0.25):int(width * 0.75)]
    if region.size == 0:
        region = pixels

    mean_brightness = float(luminance(region).mean())
    if mean_brightness > 0:
        factor = target_brightness / mean_brightness
    else:
        factor = max_factor
    factor = min(max(factor, min_factor), max_factor)

    pixels[..., :3] = to_uint8(pixels[..., :3].astype(np.float64) * factor)
    logger.debug(f"Illumination: centre brightness {mean_brightness:.1f}, factor {factor:.2f}")
    return pixels


def enhance_contrast(image: np.ndarray, factor: float = 1.2) -> np.ndarray:
    """Stretch each RGB channel around its own mean by factor."""
    pixels = _as_pixels(image)
    rgb = pixels[..., :3].astype(np.float64)
    means = rgb.reshape(-1, 3).mean(axis=0)

    pixels[..., :3] = to_uint8(means + (rgb - means) * factor)
    return pixels


def bilateral_filter(
    image: np.ndarray, sigma_space: float = 3, sigma_color: float = 30
) -> np.ndarray:
    """
    Edge-preserving denoising with OpenCV's bilateral filter.

    The window radius is ceil(2 * sigma_space). Pixels closer than the
    radius to the border are left unchanged.

    Returns:
        New uint8 image.
    """
    pixels = _as_pixels(image)
    height, width = pixels.shape[:2]
    radius = int(math.ceil(sigma_space * 2))

    if radius < 1 or height <= 2 * radius or width <= 2 * radius:
        return pixels

    rgb = np.ascontiguousarray(pixels[..., :3])
    filtered = cv2.bilateralFilter(
        rgb, 2 * radius + 1, sigma_color, sigma_space, borderType=cv2.BORDER_REPLICATE
    )

    pixels[radius:-radius, radius:-radius, :3] = filtered[radius:-radius, radius:-radius]
    return pixels


# ============================================================
# Face crop
# ============================================================


class FaceBox(NamedTuple):
    """Face bounding box in pixels, top-left corner plus size."""

    x: float
    y: float
    width: float
    height: float


def create_face_crop(
    image: np.ndarray,
    face_box: Union[FaceBox, Sequence[float]],
    padding: float = 0.3,
    output_size: int = 224,
) -> np.ndarray:
    """
    Crop a padded square around a face and resize it.

    The box is grown by padding * width (height) on each side and clipped
    at the top-left image corner. The square side is the larger of the
    clipped width and height; parts of the square outside the image are
    filled with zeros.

    Args:
        image: RGB/RGBA array (H, W, 3|4).
        face_box: FaceBox or (x, y, width, height).
        padding: Fraction of the box size added on each side.
        output_size: Edge length of the square output.

    Returns:
        uint8 image of shape (output_size, output_size, C).

    Raises:
        ValueError: If the box has no area or output_size < 1.
    """
    pixels = _as_pixels(image)
    height, width = pixels.shape[:2]
    box = FaceBox(*face_box)

    if box.width <= 0 or box.height <= 0:
        raise ValueError(f"Face box must have positive size, got {box}")
    if output_size < 1:
        raise ValueError(f"output_size must be >= 1, got {output_size}")

    pad_x = box.width * padding
    pad_y = box.height * padding
    crop_x = max(0.0, box.x - pad_x)
    crop_y = max(0.0, box.y - pad_y)
    crop_width = min(width - crop_x, box.width + pad_x * 2)
    crop_height = min(height - crop_y, box.height + pad_y * 2)

    x0 = int(round(crop_x))
    y0 = int(round(crop_y))
    size = max(1, int(round(max(crop_width, crop_height))))

    square = np.zeros((size, size, pixels.shape[2]), dtype=np.uint8)
    patch = pixels[y0:y0 + size, x0:x0 + size]
    square[:patch.shape[0], :patch.shape[1]] = patch

    interpolation = cv2.INTER_AREA if size > output_size else cv2.INTER_LINEAR
    return cv2.resize(square, (output_size, output_size), interpolation=interpolation)


# ============================================================
# Pipeline
# ============================================================


def preprocess_image(
    image: np.ndarray,
    is_document: bool = False,
    config: Optional[Dict[str, Any]] = None,
) -> np.ndarray:
    """
    Run the full preprocessing pipeline.

    Documents: glare removal -> CLAHE (clip 2.5) -> sharpen (0.3).
    Selfies:   CLAHE (clip 2.0).

    Args:
        image: RGB/RGBA array (H, W, 3|4).
        is_document: True for photos of identity documents.
        config: Optional "preprocessing" config section overriding the
                clip limits, tile size, sharpen amount and glare thresholds.

    Returns:
        Processed uint8 image.
    """
    config = config or {}
    tile_size = config.get("tile_size", 8)
    processed = validate_image(image)

    if is_document:
        glare = config.get("glare", {})
        processed = remove_glare(
            processed,
            brightness_threshold=glare.get("brightness_threshold", 230),
            saturation_threshold=glare.get("saturation_threshold", 30),
            target_brightness=glare.get("target_brightness", 200),
        )
        clip_limit = config.get("document_clip_limit", 2.5)
    else:
        clip_limit = config.get("selfie_clip_limit", 2.0)

    processed = CLAHENormalizer(clip_limit, tile_size).normalize(processed)

    if is_document:
        processed = sharpen(processed, config.get("sharpen_amount", 0.3))

    logger.debug(
        f"Preprocessed {'document' if is_document else 'selfie'} image "
        f"{processed.shape[1]}x{processed.shape[0]} (clip_limit={clip_limit})"
    )
    return processed


def _enhanced_settings(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    config = config or {}
    settings = dict(config.get("enhanced", {}))
    settings.setdefault("illumination", {})
    settings.setdefault("bilateral", {})
    return settings


def _apply_illumination(image: np.ndarray, settings: Dict[str, Any]) -> np.ndarray:
    illumination = settings["illumination"]
    return normalize_illumination(
        image,
        target_brightness=illumination.get("target_brightness", 130),
        min_factor=illumination.get("min_factor", 0.6),
        max_factor=illumination.get("max_factor", 1.8),
    )


def preprocess_selfie(image: np.ndarray, config: Optional[Dict[str, Any]] = None) -> np.ndarray:
    """
    Extended selfie pipeline.

    Global equalization (clip 2.0) -> illumination normalization ->
    contrast stretch (1.15).

    Args:
        image: RGB/RGBA array (H, W, 3|4).
        config: Optional "preprocessing" config section; values are read
                from its "enhanced" subsection.
    """
    settings = _enhanced_settings(config)

    processed = adaptive_histogram_equalization(image, settings.get("selfie_clip_limit", 2.0))
    processed = _apply_illumination(processed, settings)
    return enhance_contrast(processed, settings.get("selfie_contrast", 1.15))


def preprocess_document(image: np.ndarray, config: Optional[Dict[str, Any]] = None) -> np.ndarray:
    """
    Extended document pipeline, more aggressive than the selfie one.

    Glare removal -> bilateral filter (sigma_space 2, sigma_color 25) ->
    global equalization (clip 2.5) -> illumination normalization ->
    contrast stretch (1.3) -> sharpen (0.3).

    Glare thresholds and the sharpen amount come from the top level of the
    "preprocessing" section, the rest from its "enhanced" subsection.
    """
    config = config or {}
    settings = _enhanced_settings(config)
    glare = config.get("glare", {})
    bilateral = settings["bilateral"]

    processed = remove_glare(
        image,
        brightness_threshold=glare.get("brightness_threshold", 230),
        saturation_threshold=glare.get("saturation_threshold", 30),
        target_brightness=glare.get("target_brightness", 200),
    )
    processed = bilateral_filter(
        processed,
        sigma_space=bilateral.get("sigma_space", 2),
        sigma_color=bilateral.get("sigma_color", 25),
    )
    processed = adaptive_histogram_equalization(processed, settings.get("document_clip_limit", 2.5))
    processed = _apply_illumination(processed, settings)
    processed = enhance_contrast(processed, settings.get("document_contrast", 1.3))
    processed = sharpen(processed, config.get("sharpen_amount", 0.3))

    logger.debug(f"Extended document pipeline: {processed.shape[1]}x{processed.shape[0]}")
    return processed


# ============================================================
# Image I/O
# ============================================================


def load_image(path: Union[str, Path]) -> np.ndarray:
    """
    Read an image file as an RGB uint8 array.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ImageValidationError: If OpenCV cannot decode the file.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if bgr is None:
        raise ImageValidationError(f"Could not decode image: {path}")

    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def save_image(path: Union[str, Path], image: np.ndarray) -> None:
    """
    Write an RGB/RGBA image to disk; the format follows the file extension.

    Raises:
        OSError: If OpenCV fails to write the file.
    """
    pixels = _as_pixels(image)
    if pixels.shape[2] == 4:
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)
    else:
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)

    if not cv2.imwrite(str(path), bgr):
        raise OSError(f"Failed to write image: {path}")
