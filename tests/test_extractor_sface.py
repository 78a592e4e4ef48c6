from __future__ import annotations

import threading

import cv2
import numpy as np

from facewatch.face.extractor import ExtractorConfig, FaceExtractor, SFaceExtractor


class _DummyRecognizer:
    def __init__(self, lock: threading.Lock):
        self._lock = lock
        self.held = []

    def match(self, a, b, dis_type):
        self.held.append(self._lock.locked())
        assert dis_type == cv2.FaceRecognizerSF_FR_COSINE
        assert a.shape == (1, 3) and b.shape == (1, 3)
        return 0.75


def _bare_sface() -> SFaceExtractor:
    # Skip model loading; only the recognizer handle is needed for matching.
    ext = SFaceExtractor.__new__(SFaceExtractor)
    FaceExtractor.__init__(ext, ExtractorConfig())
    ext._recognizer = _DummyRecognizer(ext._infer_lock)
    return ext


def test_similarity_holds_the_inference_lock():
    ext = _bare_sface()

    score = ext.similarity(np.ones(3), np.array([1, 2, 3]))

    assert score == 0.75
    assert ext._recognizer.held == [True]
    assert not ext._infer_lock.locked()
