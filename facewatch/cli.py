"""Command line front end: recognize faces in one image, or exercise the database watcher."""

from __future__ import annotations

import argparse
import time

from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from facewatch import config
from facewatch.face.extractor import BACKENDS, ExtractorConfig
from facewatch.face.recognizer import FaceRecognition
from facewatch.utils.log import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face recognition against a persons database folder")
    parser.add_argument("--image", "-i", default="./media/testdata/IMG.jpg", help="input image path")
    parser.add_argument("--db", "-d", default="./media/db", help="persons database folder (one sub-folder per person)")
    parser.add_argument("--output", "-o", default="./media/result.jpg", help="annotated output image path")
    parser.add_argument("--threshold", type=float, default=config.DEFAULT_RUN_THRESHOLD, help="match threshold")
    parser.add_argument("--backend", choices=sorted(BACKENDS), default="insightface", help="vision backend")
    parser.add_argument("--fd-model", default=config.FD_MODEL_PATH, help="YuNet model (sface backend)")
    parser.add_argument("--fr-model", default=config.FR_MODEL_PATH, help="SFace model (sface backend)")
    parser.add_argument("--max-size", type=int, default=config.DEFAULT_MAX_SIZE, help="detector frame size bound")
    parser.add_argument("--test-mode", "-t", action="store_true", help="exercise the database update watcher")
    return parser


def simple(recognizer: FaceRecognition, image_path: Path, db_path: Path, output: Path, threshold: float) -> int:
    """Recognize all faces in one image and save the annotated result."""
    frame = cv2.imread(str(image_path))
    if frame is None:
        logger.error(f"Could not load image {image_path}")
        return 1
    recognizer.load_persons_db(db_path)
    results = recognizer.run(frame, threshold=threshold, visualize=True)
    if not results:
        logger.warning("No faces found")

    output.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(output), frame)
    logger.info(f"Result image saved to: {output}")
    return 0


def run_test_mode(
    recognizer: FaceRecognition,
    image_path: Path,
    db_path: Path,
    threshold: float,
    check_interval: float = 2,
    settle_seconds: float = 3,
    reload_wait_seconds: float = 10,
) -> int:
    """Load, watch, add a file under the database and check that recognition keeps working."""
    logger.info("=== Face Recognition Async Database Test ===")

    logger.info(f"1. Loading initial persons database from: {db_path}")
    recognizer.load_persons_db(db_path)

    logger.info(f"2. Starting database watcher (check interval: {check_interval:g} seconds)...")
    recognizer.start_watching(check_interval)

    frame = cv2.imread(str(image_path))
    if frame is None:
        logger.error(f"Could not load image {image_path}")
        recognizer.stop_watching()
        return 1

    logger.info("3. Running face recognition on test image...")
    result = recognizer.run_one_face(frame, threshold=threshold)
    logger.info(f"Found name: {result}")

    logger.info(f"4. Waiting {settle_seconds:g} seconds...")
    time.sleep(settle_seconds)

    subfolder = db_path / "misterx"
    test_file = subfolder / "testme.jpg"
    logger.info(f"5. Triggering database change by writing {test_file}")
    subfolder.mkdir(exist_ok=True)
    cv2.imwrite(str(test_file), np.full((400, 400, 3), 255, dtype=np.uint8))
    if not test_file.exists():
        logger.warning("Could not create test file")

    try:
        logger.info(f"6. Waiting {reload_wait_seconds:g} seconds for the watcher to reload...")
        deadline = time.monotonic() + reload_wait_seconds
        while time.monotonic() < deadline and "misterx" not in recognizer.registry:
            time.sleep(0.2)
        if "misterx" in recognizer.registry:
            logger.info("   Database reload detected")
        else:
            logger.warning("   Database was not reloaded in time")

        logger.info("7. Running face recognition again after database reload...")
        result = recognizer.run_one_face(cv2.imread(str(image_path)), threshold=threshold)
        logger.info(f"Found name: {result}")
    finally:
        logger.info("8. Cleaning up test file...")
        try:
            test_file.unlink()
            subfolder.rmdir()
        except OSError as e:
            logger.error(f"Error removing test file: {e}")

        logger.info("9. Stopping database watcher...")
        recognizer.stop_watching()

    logger.info("=== Test completed ===")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    image_path = Path(args.image)
    db_path = Path(args.db)
    if not image_path.is_file():
        logger.error(f"Image not found: {image_path}")
        return 2
    if not db_path.is_dir():
        logger.error(f"Database folder not found: {db_path}")
        return 2

    extractor_config = ExtractorConfig(
        max_size=int(args.max_size),
        fd_model_path=str(args.fd_model),
        fr_model_path=str(args.fr_model),
    )
    with FaceRecognition(backend=args.backend, extractor_config=extractor_config) as recognizer:
        if args.test_mode:
            return run_test_mode(recognizer, image_path, db_path, float(args.threshold))
        return simple(recognizer, image_path, db_path, Path(args.output), float(args.threshold))


if __name__ == "__main__":
    raise SystemExit(main())
