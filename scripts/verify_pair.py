"""
Verify a pair of face embeddings with the ensemble verifier.

Loads two embeddings saved with numpy (.npy, or a key inside an .npz),
optionally adjusts the ensemble weights for the capture quality, and
prints the verdict as JSON.

Usage:
  python scripts/verify_pair.py selfie.npy document.npy

  # Embeddings stored inside .npz templates
  python scripts/verify_pair.py selfie.npz document.npz --key face_embedding

  # Weight profile chosen from image quality (0-100)
  python scripts/verify_pair.py selfie.npy document.npy --quality 55 --document-quality 35

Exit code is 0 when the pair is accepted, 1 when rejected, 2 on input errors.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import numpy as np

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from biometrics.config import get_logging_config  # noqa: E402
from biometrics.exceptions import EmbeddingError  # noqa: E402
from biometrics.matching.ensemble import get_ensemble_verifier  # noqa: E402

logger = logging.getLogger(__name__)


def load_embedding(path: Path, key: Optional[str] = None) -> np.ndarray:
    """
    Load an embedding vector from .npy or .npz.

    Args:
        path: File to read.
        key: Array name inside an .npz archive. Defaults to the first array.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        KeyError: If key is not present in the .npz archive.
        ValueError: If the .npz archive holds no arrays.
    """
    if not path.exists():
        raise FileNotFoundError(f"Embedding file not found: {path}")

    if path.suffix == ".npz":
        with np.load(path, allow_pickle=False) as data:
            if not data.files:
                raise ValueError(f"No arrays stored in {path.name}")
            name = key or data.files[0]
            if name not in data.files:
                raise KeyError(f"'{name}' not found in {path.name}; available: {data.files}")
            return np.asarray(data[name], dtype=np.float32).ravel()

    return np.asarray(np.load(path, allow_pickle=False), dtype=np.float32).ravel()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ensemble face embedding verification")
    parser.add_argument("embedding_a", type=Path, help="Captured face embedding (.npy/.npz)")
    parser.add_argument("embedding_b", type=Path, help="Reference face embedding (.npy/.npz)")
    parser.add_argument("--key", default=None, help="Array name inside .npz files")
    parser.add_argument("--quality", type=float, default=None,
                        help="Capture image quality 0-100")
    parser.add_argument("--document-quality", type=float, default=None,
                        help="Document image quality 0-100")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    log_config = get_logging_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else log_config["level"],
        format=log_config["format"],
    )

    try:
        embedding_a = load_embedding(args.embedding_a, args.key)
        embedding_b = load_embedding(args.embedding_b, args.key)
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error(f"Could not load embeddings: {e}")
        return 2

    verifier = get_ensemble_verifier()
    if args.quality is not None:
        verifier.adjust_weights_for_quality(args.quality, args.document_quality)
    elif args.document_quality is not None:
        verifier.adjust_weights_for_quality(args.document_quality)

    try:
        result = verifier.compare(embedding_a, embedding_b)
    except EmbeddingError as e:
        logger.error(f"Verification failed: {e}")
        return 2

    print(json.dumps(result.to_dict(), indent=2))
    logger.info(
        f"Verdict: {'PASSED' if result.passed else 'REJECTED'} "
        f"(score={result.score}, confidence={result.confidence}, votes={result.stats.votes}/4)"
    )
    return 0 if result.passed else 1


if __name__ == "__main__":
    sys.exit(main())
