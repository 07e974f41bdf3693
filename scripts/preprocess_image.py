"""
Run the preprocessing pipeline on an image file.

Usage:
  # Selfie: CLAHE only
  python scripts/preprocess_image.py selfie.jpg selfie_clean.png

  # Document photo: glare removal + CLAHE + sharpening
  python scripts/preprocess_image.py id_card.jpg id_card_clean.png --document

  # Extended pipeline plus a 224x224 face crop
  python scripts/preprocess_image.py selfie.jpg face.png --enhanced --crop 120 80 200 240

  # Report capture quality before and after
  python scripts/preprocess_image.py id_card.jpg out.png --document --quality
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from biometrics.config import (  # noqa: E402
    get_logging_config,
    get_preprocessing_config,
    get_quality_config,
)
from biometrics.exceptions import ImageValidationError  # noqa: E402
from biometrics.image_quality import ImageQualityMetrics, analyze_image_quality  # noqa: E402
from biometrics.preprocessing import (  # noqa: E402
    FaceBox,
    create_face_crop,
    load_image,
    preprocess_document,
    preprocess_image,
    preprocess_selfie,
    save_image,
)

logger = logging.getLogger(__name__)


def format_quality(label: str, metrics: ImageQualityMetrics) -> str:
    """One-line summary of quality metrics."""
    line = (
        f"{label}: quality={metrics.overall_quality:.1f} "
        f"brightness={metrics.brightness:.2f} contrast={metrics.contrast:.2f} "
        f"sharpness={metrics.sharpness:.2f}"
    )
    if metrics.issues:
        line += f" issues={', '.join(metrics.issues)}"
    return line


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Face/document image preprocessing")
    parser.add_argument("input", type=Path, help="Input image")
    parser.add_argument("output", type=Path, help="Output image (format from extension)")
    parser.add_argument("--document", action="store_true",
                        help="Apply the document pipeline (glare removal + sharpening)")
    parser.add_argument("--enhanced", action="store_true",
                        help="Use the extended pipeline (illumination, contrast, denoising)")
    parser.add_argument("--crop", type=float, nargs=4, metavar=("X", "Y", "W", "H"),
                        help="Face box to crop to after preprocessing")
    parser.add_argument("--quality", action="store_true",
                        help="Print quality metrics before and after")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _optional_section(loader, name: str) -> dict:
    try:
        return loader()
    except (KeyError, FileNotFoundError):
        logger.info(f"No {name} config found, using defaults")
        return {}


def main(argv=None) -> int:
    args = parse_args(argv)

    log_config = get_logging_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else log_config["level"],
        format=log_config["format"],
    )

    preprocessing_config = _optional_section(get_preprocessing_config, "preprocessing")
    quality_config = _optional_section(get_quality_config, "image_quality")

    try:
        image = load_image(args.input)
    except (FileNotFoundError, ImageValidationError) as e:
        logger.error(str(e))
        return 2

    if args.enhanced:
        pipeline = preprocess_document if args.document else preprocess_selfie
        processed = pipeline(image, config=preprocessing_config)
    else:
        processed = preprocess_image(image, is_document=args.document, config=preprocessing_config)

    if args.crop:
        crop_config = preprocessing_config.get("face_crop", {})
        try:
            processed = create_face_crop(
                processed,
                FaceBox(*args.crop),
                padding=crop_config.get("padding", 0.3),
                output_size=crop_config.get("output_size", 224),
            )
        except ValueError as e:
            logger.error(f"Invalid face box: {e}")
            return 2

    if args.quality:
        print(format_quality("before", analyze_image_quality(image, quality_config)))
        print(format_quality("after ", analyze_image_quality(processed, quality_config)))

    args.output.parent.mkdir(parents=True, exist_ok=True)
    save_image(args.output, processed)
    logger.info(f"Saved {'document' if args.document else 'selfie'} image to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
