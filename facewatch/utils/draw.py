from __future__ import annotations

from functools import lru_cache
from typing import Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facewatch.config import FONT_LIST
from facewatch.utils.log import get_logger

logger = get_logger(__name__)

BOX_COLOR = (0, 255, 0)
# right eye, left eye, nose tip, right mouth corner, left mouth corner (BGR)
LANDMARK_COLORS = [
    (255, 0, 0),
    (0, 0, 255),
    (0, 255, 0),
    (255, 0, 255),
    (0, 255, 255),
]


@lru_cache(maxsize=64)
def _get_font(font_size: int) -> ImageFont.ImageFont:
    for p in FONT_LIST:
        try:
            return ImageFont.truetype(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw unicode texts onto a BGR frame in place with one PIL round-trip.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y) top-left, font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    try:
        pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(pil_img)
        for text, org, font_size, bgr in items:
            rgb = (int(bgr[2]), int(bgr[1]), int(bgr[0]))
            draw.text(tuple(org), str(text), font=_get_font(int(font_size)), fill=rgb)
        img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)
    except Exception:
        # ASCII-only fallback
        for text, org, font_size, bgr in items:
            x, y = org
            font_scale = max(0.3, int(font_size) / 24.0)
            _, h = measure_text(str(text), int(font_size))
            cv2.putText(img, str(text), (int(x), int(y) + h), cv2.FONT_HERSHEY_SIMPLEX, font_scale, bgr, 1, cv2.LINE_AA)


@lru_cache(maxsize=4096)
def measure_text(text: str, font_size: int = 18) -> Tuple[int, int]:
    """Pixel (width, height) of `text` at `font_size`."""
    try:
        draw = ImageDraw.Draw(Image.new("RGB", (10, 10)))
        x1, y1, x2, y2 = draw.textbbox((0, 0), text, font=_get_font(int(font_size)))
        return int(x2 - x1), int(y2 - y1)
    except Exception:
        font_scale = max(0.3, float(font_size) / 24.0)
        (w, h), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
        return int(w), int(h)


def draw_face_box(img: np.ndarray, face, thickness: int = 2) -> None:
    x1, y1, x2, y2 = [int(v) for v in face.bbox]
    logger.debug(
        f"Face top-left: ({x1}, {y1}), box width: {x2 - x1}, box height: {y2 - y1}, score: {face.det_score:.2f}"
    )
    cv2.rectangle(img, (x1, y1), (x2, y2), BOX_COLOR, thickness)
    if face.landmarks is not None:
        for (x, y), color in zip(np.asarray(face.landmarks).reshape(-1, 2), LANDMARK_COLORS):
            cv2.circle(img, (int(x), int(y)), 2, color, thickness)


def draw_name(img: np.ndarray, face, font_size: int = 18) -> None:
    """White name on a black label centered above the face box."""
    x1, y1, x2, _ = [int(v) for v in face.bbox]
    name = str(face.name)
    text_w, text_h = measure_text(name, font_size)
    text_x = x1 + ((x2 - x1) - text_w) // 2
    text_y = max(y1 - text_h - 5, 0)

    cv2.rectangle(img, (text_x - 2, text_y - 2), (text_x + text_w + 2, text_y + text_h + 2), (0, 0, 0), -1)
    draw_texts(img, [(name, (text_x, text_y), font_size, (255, 255, 255))])


def annotate_faces(img: np.ndarray, faces, with_names: bool = True, thickness: int = 2) -> None:
    for face in faces:
        draw_face_box(img, face, thickness=thickness)
        if with_names:
            draw_name(img, face)
