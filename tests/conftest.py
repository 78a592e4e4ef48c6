from __future__ import annotations

import sys
import threading
import time

from pathlib import Path
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
import pytest

# Ensure repo root is on sys.path so tests run from a plain checkout.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facewatch.face.extractor import DetectedFace, ExtractorConfig, FaceExtractor
from facewatch.utils.math import cosine_similarity

Color = Tuple[int, int, int]


class DummyExtractor(FaceExtractor):
    """Vision stand-in: a solid-color image region is one face, its BGR color the embedding.

    - all-black images have no face
    - images whose left and right halves differ hold two faces
    """

    def __init__(self, delay: float = 0.0, fail_on: Optional[Color] = None):
        super().__init__(ExtractorConfig(max_size=0))
        self.delay = float(delay)
        self.fail_on = fail_on
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def extract(self, frame: np.ndarray) -> List[DetectedFace]:
        with self._count_lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return super().extract(frame)
        finally:
            with self._count_lock:
                self.active -= 1

    def _extract(self, frame: np.ndarray) -> List[DetectedFace]:
        if not frame.any():
            return []
        h, w = frame.shape[:2]
        left = tuple(int(v) for v in frame[0, 0])
        right = tuple(int(v) for v in frame[0, w - 1])
        if self.fail_on is not None and left == tuple(self.fail_on):
            raise RuntimeError("model exploded")

        regions = [(left, (0, 0, w, h))]
        if right != left:
            regions = [(left, (0, 0, w // 2, h)), (right, (w // 2, 0, w, h))]
        return [
            DetectedFace(bbox=bbox, embedding=np.asarray(color, dtype=np.float32), det_score=0.99)
            for color, bbox in regions
        ]

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_similarity(a, b)


def solid(color: Color, size: Tuple[int, int] = (32, 32)) -> np.ndarray:
    h, w = size
    return np.full((h, w, 3), color, dtype=np.uint8)


def split(left: Color, right: Color, size: Tuple[int, int] = (32, 64)) -> np.ndarray:
    img = solid(left, size)
    img[:, size[1] // 2 :] = right
    return img


def write_image(path: Path, image: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), image), f"Failed to write {path}"
    return path


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, step: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


ALICE = (200, 10, 10)
BOB = (10, 200, 10)
CAROL = (10, 10, 200)


@pytest.fixture
def dummy_extractor() -> DummyExtractor:
    return DummyExtractor()


@pytest.fixture
def persons_db(tmp_path: Path) -> Path:
    """db/alice (2 images), db/bob (1 image), both PNG."""
    db = tmp_path / "db"
    write_image(db / "alice" / "01.png", solid(ALICE))
    write_image(db / "alice" / "02.png", solid((190, 20, 10)))
    write_image(db / "bob" / "01.png", solid(BOB))
    return db
