from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from faceauth.config import QualityConfig
from faceauth.core.models import Detection

log = logging.getLogger(__name__)


class QualityKey:
    NO_FACE = "NO_FACE"
    FACE_TOO_SMALL = "FACE_TOO_SMALL"
    YAW_TOO_LARGE = "YAW_TOO_LARGE"
    PITCH_TOO_LARGE = "PITCH_TOO_LARGE"
    TOO_BLURRY = "TOO_BLURRY"
    TOO_DARK = "TOO_DARK"
    TOO_BRIGHT = "TOO_BRIGHT"


@dataclass(frozen=True)
class QualityResult:
    passed: bool
    message_key: str = ""
    blur_score: Optional[float] = None
    brightness: Optional[float] = None


class QualityGate:
    """
    Stateless per-frame quality check. Checks run in a fixed order and the
    first failure wins: presence, size, yaw, pitch, blur, brightness.
    """

    def __init__(self, cfg: QualityConfig):
        self.cfg = cfg

    def check(self, image: Optional[np.ndarray], face: Optional[Detection], frame_w: int, frame_h: int) -> QualityResult:
        cfg = self.cfg

        if face is None:
            return QualityResult(False, QualityKey.NO_FACE)

        frame_area = float(frame_w) * float(frame_h)
        ratio = face.bbox.area / frame_area if frame_area > 0 else 0.0
        if ratio < cfg.bbox_ratio_min:
            return QualityResult(False, QualityKey.FACE_TOO_SMALL)

        if abs(float(face.yaw)) > cfg.yaw_max_deg:
            return QualityResult(False, QualityKey.YAW_TOO_LARGE)
        if abs(float(face.pitch)) > cfg.pitch_max_deg:
            return QualityResult(False, QualityKey.PITCH_TOO_LARGE)

        gray = to_gray(image, cfg.color_order)

        blur = blur_score(gray, cfg.blur_window)
        if blur < cfg.blur_min:
            return QualityResult(False, QualityKey.TOO_BLURRY, blur_score=blur)

        brightness = mean_brightness(gray, cfg.brightness_window)
        if brightness < cfg.brightness_min:
            return QualityResult(False, QualityKey.TOO_DARK, blur, brightness)
        if brightness > cfg.brightness_max:
            return QualityResult(False, QualityKey.TOO_BRIGHT, blur, brightness)

        return QualityResult(True, "", blur, brightness)


def to_gray(image: Optional[np.ndarray], color_order: str = "BGR") -> Optional[np.ndarray]:
    """Luminance plane (0.299 R + 0.587 G + 0.114 B) as float64, or None for unusable input."""
    if image is None:
        return None
    arr = np.asarray(image)
    if arr.ndim == 2:
        return arr.astype(np.float64)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        log.debug("Unsupported image shape for quality check: %s", arr.shape)
        return None

    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)

    rgb_first = (color_order or "BGR").upper().startswith("RGB")
    if arr.shape[2] == 4:
        code = cv2.COLOR_RGBA2GRAY if rgb_first else cv2.COLOR_BGRA2GRAY
    else:
        code = cv2.COLOR_RGB2GRAY if rgb_first else cv2.COLOR_BGR2GRAY
    return cv2.cvtColor(arr, code).astype(np.float64)


def blur_score(gray: Optional[np.ndarray], window: int = 320) -> float:
    """
    Variance of the 4-neighbour Laplacian over the top-left window x window
    region, interior pixels only. Lower means blurrier; 0 for unusable input.
    """
    if gray is None or gray.ndim != 2:
        return 0.0
    roi = gray[: min(gray.shape[0], window), : min(gray.shape[1], window)]
    if roi.shape[0] < 3 or roi.shape[1] < 3:
        return 0.0
    lap = cv2.Laplacian(roi, cv2.CV_64F, ksize=1)[1:-1, 1:-1]
    return float(lap.var())


def mean_brightness(gray: Optional[np.ndarray], window: int = 160) -> float:
    """Mean luminance (0..255) of the top-left window x window region."""
    if gray is None or gray.ndim != 2 or gray.size == 0:
        return 0.0
    roi = gray[: min(gray.shape[0], window), : min(gray.shape[1], window)]
    return float(roi.mean()) if roi.size else 0.0
