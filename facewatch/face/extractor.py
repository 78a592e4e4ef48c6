"""Vision backends: detect faces in a BGR frame and embed each aligned crop.

Two backends are available:

- ``InsightFaceExtractor``: InsightFace ``FaceAnalysis`` (detection + ArcFace
  recognition), CPU or CUDA via onnxruntime providers.
- ``SFaceExtractor``: OpenCV zoo models, YuNet for detection and SFace for
  alignment/embedding, compared with ``FaceRecognizerSF.match``.

Both return ``DetectedFace`` objects whose boxes and landmarks are in the
coordinates of the frame that was passed in, even when the frame was scaled
down internally.
"""

from __future__ import annotations

import io
import threading

from abc import ABC, abstractmethod
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from facewatch import config
from facewatch.utils.log import get_logger, suppress_fds
from facewatch.utils.math import cosine_similarity, fit_scale, l2_normalize, scale_bbox

logger = get_logger(__name__)

# Model instances are expensive to build; share them per process.
_FACEAPP_CACHE: Dict[Tuple, Any] = {}


@dataclass
class DetectedFace:
    # xyxy box in caller frame pixels
    bbox: Tuple[int, int, int, int]
    embedding: np.ndarray
    det_score: float = 0.0
    # (5, 2) eyes, nose tip, mouth corners
    landmarks: Optional[np.ndarray] = None
    name: str = config.UNKNOWN_LABEL


@dataclass
class ExtractorConfig:
    # Larger side of the frame fed to the detector; <= 0 keeps the original size.
    max_size: int = config.DEFAULT_MAX_SIZE
    # 'auto' picks CUDA when available (InsightFace only).
    device: str = "auto"
    insightface_model: str = config.INSIGHTFACE_MODEL
    det_size: int = 640
    fd_model_path: str = config.FD_MODEL_PATH
    fr_model_path: str = config.FR_MODEL_PATH
    score_threshold: float = config.DET_SCORE_THRESHOLD
    nms_threshold: float = config.DET_NMS_THRESHOLD
    top_k: int = config.DET_TOP_K


class FaceExtractor(ABC):
    """Detection + embedding capability consumed by the registry and the recognizer."""

    def __init__(self, cfg: ExtractorConfig):
        self.config = cfg
        # Native inference sessions are shared by the caller and the watcher thread.
        self._infer_lock = threading.Lock()

    def _prepare(self, frame: np.ndarray) -> Tuple[Optional[np.ndarray], float]:
        if frame is None or getattr(frame, "size", 0) == 0:
            logger.error("Frame is empty or invalid")
            return None, 1.0
        h, w = frame.shape[:2]
        scale = fit_scale(w, h, int(self.config.max_size))
        if scale >= 1.0:
            return frame, 1.0
        small = cv2.resize(frame, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=cv2.INTER_AREA)
        logger.debug(f"Frame size: {small.shape[1]} x {small.shape[0]}")
        return small, scale

    def extract(self, frame: np.ndarray) -> List[DetectedFace]:
        """Detect faces in `frame` (BGR). Returns an empty list when nothing is found."""
        small, scale = self._prepare(frame)
        if small is None:
            return []
        with self._infer_lock:
            faces = self._extract(small)
        if not faces:
            logger.warning("Cannot find any faces")
            return []
        if scale != 1.0:
            inv = 1.0 / scale
            for face in faces:
                face.bbox = scale_bbox(face.bbox, inv)
                if face.landmarks is not None:
                    face.landmarks = face.landmarks * inv
        return faces

    @abstractmethod
    def _extract(self, frame: np.ndarray) -> List[DetectedFace]:
        """Run detection and embedding on an already scaled frame."""

    @abstractmethod
    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        """Higher means more alike."""


def _pick_providers(device: str) -> Tuple[List[str], int]:
    if device == "auto":
        try:
            import torch

            device = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            device = "cpu"
    if device == "gpu":
        return ["CUDAExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


class InsightFaceExtractor(FaceExtractor):
    def __init__(self, cfg: Optional[ExtractorConfig] = None):
        super().__init__(cfg or ExtractorConfig())
        providers, ctx_id = _pick_providers(self.config.device)
        det_size = (int(self.config.det_size), int(self.config.det_size))
        key = (str(self.config.insightface_model), tuple(providers), int(ctx_id), det_size)

        app = _FACEAPP_CACHE.get(key)
        if app is None:
            # Deferred so the SFace backend and the tests do not pay for the import.
            from insightface.app import FaceAnalysis

            try:
                with suppress_fds():
                    app = FaceAnalysis(
                        name=self.config.insightface_model,
                        providers=providers,
                        allowed_modules=["detection", "recognition"],
                    )
                buf = io.StringIO()
                with redirect_stdout(buf), redirect_stderr(buf):
                    app.prepare(ctx_id=ctx_id, det_size=det_size)
            except Exception as e:
                logger.error(f"Failed to initialize InsightFace model {self.config.insightface_model}: {e}")
                raise
            _FACEAPP_CACHE[key] = app
            logger.info(f"Loaded InsightFace model: {self.config.insightface_model} ({providers[0]})")
        self._app = app

    def _extract(self, frame: np.ndarray) -> List[DetectedFace]:
        out: List[DetectedFace] = []
        for face in self._app.get(frame) or []:
            if face.embedding is None:
                continue
            kps = getattr(face, "kps", None)
            out.append(
                DetectedFace(
                    bbox=scale_bbox(face.bbox[:4], 1.0),
                    embedding=l2_normalize(face.embedding),
                    det_score=float(getattr(face, "det_score", 0.0)),
                    landmarks=np.asarray(kps, dtype=np.float32) if kps is not None else None,
                )
            )
        return out

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_similarity(a, b)


class SFaceExtractor(FaceExtractor):
    def __init__(self, cfg: Optional[ExtractorConfig] = None):
        super().__init__(cfg or ExtractorConfig())
        for label, path in (
            ("face detection", self.config.fd_model_path),
            ("face recognition", self.config.fr_model_path),
        ):
            logger.debug(f"Testing {label} model file exists: {path}")
            if not Path(path).is_file():
                raise FileNotFoundError(f"{label} model not found: {path}")

        self._detector = cv2.FaceDetectorYN.create(
            str(self.config.fd_model_path),
            "",
            config.DET_INPUT_SIZE,
            float(self.config.score_threshold),
            float(self.config.nms_threshold),
            int(self.config.top_k),
        )
        self._recognizer = cv2.FaceRecognizerSF.create(str(self.config.fr_model_path), "")
        logger.info("Loaded YuNet/SFace models")

    def _extract(self, frame: np.ndarray) -> List[DetectedFace]:
        h, w = frame.shape[:2]
        self._detector.setInputSize((w, h))
        _, faces = self._detector.detect(frame)
        if faces is None:
            return []

        out: List[DetectedFace] = []
        for row in faces:
            aligned = self._recognizer.alignCrop(frame, row)
            feature = self._recognizer.feature(aligned)
            x, y, bw, bh = [float(v) for v in row[:4]]
            out.append(
                DetectedFace(
                    bbox=scale_bbox((x, y, x + bw, y + bh), 1.0),
                    embedding=np.asarray(feature, dtype=np.float32).reshape(-1).copy(),
                    det_score=float(row[14]),
                    landmarks=np.asarray(row[4:14], dtype=np.float32).reshape(5, 2),
                )
            )
        return out

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        fa = np.asarray(a, dtype=np.float32).reshape(1, -1)
        fb = np.asarray(b, dtype=np.float32).reshape(1, -1)
        with self._infer_lock:
            return float(self._recognizer.match(fa, fb, cv2.FaceRecognizerSF_FR_COSINE))


BACKENDS = {
    "insightface": InsightFaceExtractor,
    "sface": SFaceExtractor,
}


def create_extractor(backend: str = "insightface", cfg: Optional[ExtractorConfig] = None) -> FaceExtractor:
    try:
        cls = BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown backend {backend!r}, expected one of {sorted(BACKENDS)}") from None
    return cls(cfg)
