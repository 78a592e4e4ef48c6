from __future__ import annotations

from typing import Tuple

import numpy as np


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """Flatten and L2-normalize a vector; near-zero vectors are returned unscaled."""
    arr = np.asarray(vec, dtype=np.float32).reshape(-1)
    denom = float(np.linalg.norm(arr))
    if denom < eps:
        return arr
    return arr / denom


def cosine_similarity(a: np.ndarray, b: np.ndarray, eps: float = 1e-12) -> float:
    va = np.asarray(a, dtype=np.float32).reshape(-1)
    vb = np.asarray(b, dtype=np.float32).reshape(-1)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding size mismatch: {va.shape[0]} vs {vb.shape[0]}")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na < eps or nb < eps:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def fit_scale(width: int, height: int, max_size: int) -> float:
    """Scale factor that brings the larger side down to `max_size` (never upscales)."""
    if max_size <= 0:
        return 1.0
    longest = max(int(width), int(height))
    if longest <= max_size:
        return 1.0
    return float(max_size) / float(longest)


def scale_bbox(bbox: Tuple[float, float, float, float], factor: float) -> Tuple[int, int, int, int]:
    """Scale an xyxy box and round it to integer pixels."""
    x1, y1, x2, y2 = [float(v) * factor for v in bbox]
    return int(round(x1)), int(round(y1)), int(round(x2)), int(round(y2))
