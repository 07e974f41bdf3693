"""
Tests for the Image Preprocessing Module

These tests verify that:
1. CLAHE keeps channel values in [0, 255] and stretches low-contrast tiles
2. Glare removal only touches bright, low-saturation pixels
3. Sharpening leaves the border and flat regions unchanged
4. The document and selfie pipelines chain the steps in order
5. Malformed images raise ImageValidationError

Run with: pytest tests/test_preprocessing.py -v
"""

import numpy as np
import pytest

from biometrics.exceptions import ImageValidationError
from biometrics.preprocessing import (
    CLAHENormalizer,
    FaceBox,
    adaptive_histogram_equalization,
    bilateral_filter,
    clahe_normalize,
    create_face_crop,
    enhance_contrast,
    gray_levels,
    load_image,
    luminance,
    normalize_illumination,
    preprocess_document,
    preprocess_image,
    preprocess_selfie,
    remove_glare,
    save_image,
    sharpen,
    validate_image,
)


# ============================================================
# Test Fixtures
# ============================================================


@pytest.fixture
def random_image():
    """A 37x45 random RGB image (dimensions not multiples of the tile size)."""
    np.random.seed(42)
    return np.random.randint(0, 256, (37, 45, 3), dtype=np.uint8)


@pytest.fixture
def low_contrast_image():
    """A 32x32 image with values confined to [100, 110]."""
    np.random.seed(0)
    gray = np.random.randint(100, 111, (32, 32), dtype=np.uint8)
    return np.stack([gray, gray, gray], axis=2)


@pytest.fixture
def mid_gray_image():
    return np.full((16, 16, 3), 128, dtype=np.uint8)


# ============================================================
# Validation Tests
# ============================================================


class TestValidateImage:
    """Tests for input validation."""

    def test_accepts_rgb_and_rgba(self):
        validate_image(np.zeros((4, 4, 3), dtype=np.uint8))
        validate_image(np.zeros((4, 4, 4), dtype=np.uint8))

    @pytest.mark.parametrize(
        "image",
        [
            None,
            np.zeros((4, 4), dtype=np.uint8),
            np.zeros((4, 4, 2), dtype=np.uint8),
            np.zeros((0, 4, 3), dtype=np.uint8),
            np.zeros((4, 0, 3), dtype=np.uint8),
            np.array([[["a", "b", "c"]]]),
        ],
    )
    def test_rejects_malformed(self, image):
        with pytest.raises(ImageValidationError):
            validate_image(image)

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            preprocess_image(np.zeros((0, 0, 3)))


# ============================================================
# CLAHE Tests
# ============================================================


class TestCLAHE:
    """Tests for tile-wise contrast limited histogram equalization."""

    def test_output_range_and_dtype(self, random_image):
        result = CLAHENormalizer(clip_limit=2.0, tile_size=8).normalize(random_image)

        assert result.dtype == np.uint8
        assert result.shape == random_image.shape
        assert result.min() >= 0 and result.max() <= 255

    def test_out_of_range_float_input_is_clamped(self):
        np.random.seed(1)
        image = np.random.uniform(-50, 300, (20, 20, 3))
        result = clahe_normalize(image, clip_limit=2.5, tile_size=8)

        assert result.dtype == np.uint8
        assert result.shape == (20, 20, 3)

    def test_does_not_modify_input(self, random_image):
        original = random_image.copy()
        clahe_normalize(random_image)
        np.testing.assert_array_equal(random_image, original)

    def test_uniform_tile_stays_uniform(self):
        """A flat tile maps every pixel to the same new value."""
        image = np.full((8, 8, 3), 100, dtype=np.uint8)
        result = clahe_normalize(image, clip_limit=2.0, tile_size=8)

        assert np.all(result == result[0, 0])
        # clip 0.5, spread 63.5 over 256 bins: cdf maps 100 -> 101
        assert result[0, 0, 0] == 101

    def test_increases_contrast(self, low_contrast_image):
        result = clahe_normalize(low_contrast_image, clip_limit=2.0, tile_size=8)
        assert luminance(result).std() > luminance(low_contrast_image).std()

    def test_tiles_are_independent(self):
        """Changing one tile does not affect pixels of another tile."""
        np.random.seed(3)
        image = np.random.randint(0, 256, (16, 16, 3), dtype=np.uint8)
        modified = image.copy()
        modified[8:, 8:] = 255

        a = clahe_normalize(image, tile_size=8)
        b = clahe_normalize(modified, tile_size=8)
        np.testing.assert_array_equal(a[:8, :8], b[:8, :8])

    def test_alpha_channel_preserved(self, random_image):
        alpha = np.full(random_image.shape[:2] + (1,), 77, dtype=np.uint8)
        rgba = np.concatenate([random_image, alpha], axis=2)

        result = clahe_normalize(rgba)
        assert result.shape[2] == 4
        assert np.all(result[..., 3] == 77)

    def test_black_image_stays_black(self):
        image = np.zeros((8, 8, 3), dtype=np.uint8)
        result = clahe_normalize(image, clip_limit=2.0)
        assert np.all(result == 0)

    def test_invalid_tile_size(self):
        with pytest.raises(ValueError):
            CLAHENormalizer(tile_size=0)

    def test_gray_levels_round_half_up(self):
        # 0.299*1 + 0.587*1 + 0.114*0 = 0.886 -> 1
        pixel = np.array([[[1, 1, 0]]], dtype=np.uint8)
        assert gray_levels(pixel)[0, 0] == 1


# ============================================================
# Glare Removal Tests
# ============================================================


class TestRemoveGlare:
    """Tests for specular highlight suppression."""

    def test_mid_gray_unchanged(self, mid_gray_image):
        result = remove_glare(mid_gray_image)
        np.testing.assert_array_equal(result, mid_gray_image)

    def test_dark_pixels_untouched(self, random_image):
        """Pixels with max channel <= 230 are never modified."""
        image = np.clip(random_image, 0, 230).astype(np.uint8)
        np.testing.assert_array_equal(remove_glare(image), image)

    def test_white_glare_scaled_to_200(self):
        image = np.full((2, 2, 3), 240, dtype=np.uint8)
        result = remove_glare(image)
        assert np.all(result == 200)

    def test_scaling_preserves_ratios(self):
        image = np.array([[[250, 235, 240]]], dtype=np.uint8)
        result = remove_glare(image)
        np.testing.assert_array_equal(result[0, 0], [200, 188, 192])

    def test_saturated_bright_pixel_untouched(self):
        """A bright but strongly coloured pixel is not glare."""
        image = np.array([[[250, 100, 100]]], dtype=np.uint8)
        np.testing.assert_array_equal(remove_glare(image), image)

    def test_threshold_is_strict(self):
        image = np.full((1, 1, 3), 230, dtype=np.uint8)
        np.testing.assert_array_equal(remove_glare(image), image)

    def test_only_glare_pixels_change(self):
        image = np.full((3, 3, 3), 120, dtype=np.uint8)
        image[1, 1] = [245, 240, 238]
        result = remove_glare(image)

        assert np.all(result[1, 1] <= 200)
        mask = np.ones((3, 3), dtype=bool)
        mask[1, 1] = False
        np.testing.assert_array_equal(result[mask], image[mask])


# ============================================================
# Sharpening Tests
# ============================================================


class TestSharpen:
    """Tests for the 3x3 unsharp mask."""

    def test_flat_image_unchanged(self, mid_gray_image):
        """The kernel sums to 1, so flat regions keep their value."""
        np.testing.assert_array_equal(sharpen(mid_gray_image, 0.3), mid_gray_image)

    def test_border_unchanged(self, random_image):
        result = sharpen(random_image, 0.5)

        np.testing.assert_array_equal(result[0], random_image[0])
        np.testing.assert_array_equal(result[-1], random_image[-1])
        np.testing.assert_array_equal(result[:, 0], random_image[:, 0])
        np.testing.assert_array_equal(result[:, -1], random_image[:, -1])

    def test_kernel_weights(self):
        """Centre weight 1 + 4a, orthogonal neighbours -a, corners 0."""
        image = np.zeros((5, 5, 3), dtype=np.uint8)
        image[2, 2] = 100
        result = sharpen(image, 0.3)

        assert np.all(result[2, 2] == 220)
        # -30 clamps to 0
        assert np.all(result[1, 2] == 0)
        assert np.all(result[1, 1] == 0)

    def test_corner_neighbours_ignored(self):
        image = np.full((5, 5, 3), 50, dtype=np.uint8)
        image[1, 1] = 200  # diagonal neighbour of (2, 2)
        result = sharpen(image, 0.3)
        assert np.all(result[2, 2] == 50)

    def test_output_clamped(self, random_image):
        result = sharpen(random_image, 2.0)
        assert result.dtype == np.uint8
        assert result.min() >= 0 and result.max() <= 255

    def test_tiny_image_returned_unchanged(self):
        image = np.full((2, 2, 3), 90, dtype=np.uint8)
        np.testing.assert_array_equal(sharpen(image), image)


# ============================================================
# Pipeline Tests
# ============================================================


class TestPreprocessImage:
    """Tests for the full pipeline."""

    def test_selfie_pipeline_is_clahe_only(self, random_image):
        expected = clahe_normalize(random_image, clip_limit=2.0, tile_size=8)
        np.testing.assert_array_equal(preprocess_image(random_image), expected)

    def test_document_pipeline_order(self, random_image):
        expected = sharpen(clahe_normalize(remove_glare(random_image), 2.5, 8), 0.3)
        result = preprocess_image(random_image, is_document=True)
        np.testing.assert_array_equal(result, expected)

    def test_config_overrides(self, random_image):
        config = {"tile_size": 16, "selfie_clip_limit": 3.0}
        expected = clahe_normalize(random_image, clip_limit=3.0, tile_size=16)
        np.testing.assert_array_equal(preprocess_image(random_image, config=config), expected)

    def test_output_range(self, random_image):
        for is_document in (False, True):
            result = preprocess_image(random_image, is_document=is_document)
            assert result.dtype == np.uint8
            assert result.shape == random_image.shape



# ============================================================
# Extended Enhancement Tests
# ============================================================


class TestAdaptiveHistogramEqualization:
    """Tests for whole-image contrast limited equalization."""

    def test_output_range_and_alpha(self, random_image):
        alpha = np.full(random_image.shape[:2] + (1,), 9, dtype=np.uint8)
        result = adaptive_histogram_equalization(np.concatenate([random_image, alpha], axis=2))

        assert result.dtype == np.uint8
        assert result.shape == (37, 45, 4)
        assert np.all(result[..., 3] == 9)

    def test_uniform_image(self):
        """Same mapping as a single CLAHE tile: 100 -> 101 at clip 2.0."""
        image = np.full((16, 16, 3), 100, dtype=np.uint8)
        assert np.all(adaptive_histogram_equalization(image, 2.0) == 101)

    def test_ratio_is_limited(self, low_contrast_image):
        """Channels change by at most a factor of two either way."""
        result = adaptive_histogram_equalization(low_contrast_image, 2.0).astype(np.int64)
        original = low_contrast_image.astype(np.int64)

        assert np.all(result >= np.floor(original * 0.5))
        assert np.all(result <= np.minimum(255, original * 2))
        assert luminance(result).std() > luminance(original).std()

    def test_zero_gray_pixels_unchanged(self, random_image):
        image = random_image.copy()
        image[0, 0] = [1, 0, 0]  # luminance 0.299 rounds to gray level 0
        result = adaptive_histogram_equalization(image)
        np.testing.assert_array_equal(result[0, 0], [1, 0, 0])

    def test_black_image_stays_black(self):
        image = np.zeros((8, 8, 3), dtype=np.uint8)
        assert np.all(adaptive_histogram_equalization(image) == 0)


class TestNormalizeIllumination:
    """Tests for centre-weighted brightness correction."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (100, 130),  # factor 1.3
            (65, 117),   # factor 2.0 clamped to 1.8
            (250, 150),  # factor 0.52 clamped to 0.6
            (0, 0),
        ],
    )
    def test_uniform_images(self, value, expected):
        image = np.full((10, 10, 3), value, dtype=np.uint8)
        result = normalize_illumination(image)
        assert np.all(result == expected)

    def test_factor_from_centre_region(self):
        """Only the centre block sets the factor; the whole image is scaled."""
        image = np.full((10, 20, 3), 200, dtype=np.uint8)
        image[2:8, 5:15] = 65
        result = normalize_illumination(image)

        assert np.all(result[2:8, 5:15] == 117)
        assert np.all(result[0, 0] == 255)

    def test_custom_limits(self):
        image = np.full((10, 10, 3), 100, dtype=np.uint8)
        result = normalize_illumination(image, target_brightness=130, min_factor=1.0, max_factor=1.1)
        assert np.all(result == 110)

    def test_alpha_preserved(self):
        image = np.full((10, 10, 4), 100, dtype=np.uint8)
        image[..., 3] = 33
        result = normalize_illumination(image)
        assert np.all(result[..., 3] == 33)


class TestEnhanceContrast:
    """Tests for the per-channel mean stretch."""

    def test_stretch_around_channel_mean(self):
        image = np.zeros((2, 2, 3), dtype=np.uint8)
        image[0, :, 0] = 100
        image[1, :, 0] = 200
        image[..., 1] = 50
        image[..., 2] = 250

        result = enhance_contrast(image, 1.2)

        assert np.all(result[0, :, 0] == 90)
        assert np.all(result[1, :, 0] == 210)
        assert np.all(result[..., 1] == 50)
        assert np.all(result[..., 2] == 250)

    def test_factor_one_is_identity(self, random_image):
        np.testing.assert_array_equal(enhance_contrast(random_image, 1.0), random_image)

    def test_output_clamped(self, random_image):
        result = enhance_contrast(random_image, 3.0)
        assert result.min() == 0 and result.max() == 255


class TestBilateralFilter:
    """Tests for edge-preserving denoising."""

    def test_flat_image_unchanged(self):
        image = np.full((20, 20, 3), 77, dtype=np.uint8)
        np.testing.assert_array_equal(bilateral_filter(image, 2, 25), image)

    def test_border_unchanged(self, random_image):
        """sigma_space 2 gives a radius of 4 pixels."""
        result = bilateral_filter(random_image, 2, 25)

        np.testing.assert_array_equal(result[:4], random_image[:4])
        np.testing.assert_array_equal(result[-4:], random_image[-4:])
        np.testing.assert_array_equal(result[:, :4], random_image[:, :4])
        np.testing.assert_array_equal(result[:, -4:], random_image[:, -4:])

    def test_reduces_noise(self):
        np.random.seed(5)
        noise = np.random.normal(0, 6, (32, 32, 1))
        image = np.clip(128 + noise, 0, 255).astype(np.uint8).repeat(3, axis=2)

        result = bilateral_filter(image, 2, 25)
        assert result[4:-4, 4:-4].std() < image[4:-4, 4:-4].std()

    def test_small_image_returned_unchanged(self):
        np.random.seed(6)
        image = np.random.randint(0, 256, (8, 8, 3), dtype=np.uint8)
        np.testing.assert_array_equal(bilateral_filter(image, 2, 25), image)

    def test_alpha_preserved(self, random_image):
        alpha = np.full(random_image.shape[:2] + (1,), 200, dtype=np.uint8)
        result = bilateral_filter(np.concatenate([random_image, alpha], axis=2), 2, 25)
        assert np.all(result[..., 3] == 200)


# ============================================================
# Face Crop Tests
# ============================================================


class TestCreateFaceCrop:
    """Tests for padded square face crops."""

    @pytest.fixture
    def image(self):
        np.random.seed(8)
        return np.random.randint(0, 256, (100, 100, 3), dtype=np.uint8)

    def test_default_output_size(self, image):
        result = create_face_crop(image, FaceBox(30, 30, 40, 40))
        assert result.shape == (224, 224, 3)
        assert result.dtype == np.uint8

    def test_padded_region(self, image):
        """Padding 0.25 on a 40 px box adds 10 px on every side."""
        result = create_face_crop(image, FaceBox(30, 30, 40, 40), padding=0.25, output_size=60)
        np.testing.assert_array_equal(result, image[20:80, 20:80])

    def test_clipped_at_top_left(self, image):
        result = create_face_crop(image, (0, 0, 20, 20), padding=0.5, output_size=40)
        np.testing.assert_array_equal(result, image[0:40, 0:40])

    def test_outside_image_is_zero(self):
        np.random.seed(2)
        image = np.random.randint(1, 256, (50, 50, 3), dtype=np.uint8)
        result = create_face_crop(image, FaceBox(30, 40, 20, 10), padding=0.0, output_size=20)

        np.testing.assert_array_equal(result[:10], image[40:50, 30:50])
        assert np.all(result[10:] == 0)

    def test_rgba(self):
        image = np.full((40, 40, 4), 120, dtype=np.uint8)
        result = create_face_crop(image, FaceBox(10, 10, 20, 20), output_size=32)
        assert result.shape == (32, 32, 4)
        assert np.all(result == 120)

    @pytest.mark.parametrize("box", [FaceBox(0, 0, 0, 10), FaceBox(0, 0, 10, -5)])
    def test_invalid_box(self, image, box):
        with pytest.raises(ValueError):
            create_face_crop(image, box)


# ============================================================
# Extended Pipeline Tests
# ============================================================


class TestExtendedPipelines:
    """Tests for preprocess_selfie and preprocess_document."""

    def test_selfie_chain(self, random_image):
        expected = enhance_contrast(
            normalize_illumination(adaptive_histogram_equalization(random_image, 2.0)), 1.15
        )
        np.testing.assert_array_equal(preprocess_selfie(random_image), expected)

    def test_document_chain(self, random_image):
        expected = remove_glare(random_image)
        expected = bilateral_filter(expected, 2, 25)
        expected = adaptive_histogram_equalization(expected, 2.5)
        expected = normalize_illumination(expected)
        expected = enhance_contrast(expected, 1.3)
        expected = sharpen(expected, 0.3)

        np.testing.assert_array_equal(preprocess_document(random_image), expected)

    def test_config_overrides(self, random_image):
        config = {
            "enhanced": {
                "selfie_clip_limit": 3.0,
                "selfie_contrast": 1.0,
                "illumination": {"min_factor": 1.0, "max_factor": 1.0},
            }
        }
        expected = adaptive_histogram_equalization(random_image, 3.0)
        np.testing.assert_array_equal(preprocess_selfie(random_image, config), expected)

    def test_project_config_matches_defaults(self, random_image):
        from biometrics.config import load_config

        config = load_config()["preprocessing"]
        np.testing.assert_array_equal(
            preprocess_document(random_image, config), preprocess_document(random_image)
        )

    def test_rejects_malformed(self):
        with pytest.raises(ImageValidationError):
            preprocess_selfie(np.zeros((4, 4)))
        with pytest.raises(ImageValidationError):
            preprocess_document(np.zeros((4, 4, 2)))


# ============================================================
# Image I/O Tests
# ============================================================


class TestImageIO:
    """Tests for loading and saving images through OpenCV."""

    def test_save_and_load_png(self, tmp_path, random_image):
        path = tmp_path / "face.png"
        save_image(path, random_image)
        loaded = load_image(path)

        np.testing.assert_array_equal(loaded, random_image)

    def test_load_returns_rgb(self, tmp_path):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[..., 0] = 255  # pure red in RGB
        path = tmp_path / "red.png"
        save_image(path, image)

        loaded = load_image(path)
        assert np.all(loaded[..., 0] == 255)
        assert np.all(loaded[..., 2] == 0)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_image(tmp_path / "missing.jpg")

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not an image")
        with pytest.raises(ImageValidationError):
            load_image(path)
