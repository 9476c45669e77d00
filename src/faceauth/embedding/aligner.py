from typing import Optional

import cv2
import numpy as np

from faceauth.core.models import Detection


class BBoxCropAligner:
    """
    Square crop around the detection box, resized to the embedder input.

    `margin` grows the box by that fraction on every side. Output is RGB when
    the source is BGR (OpenCV capture order).
    """

    def __init__(self, margin: float = 0.1, input_color: str = "BGR"):
        self.margin = float(margin)
        self.input_color = (input_color or "BGR").upper()

    def align(self, image: Optional[np.ndarray], face: Detection, size: int) -> np.ndarray:
        if image is None:
            raise ValueError("no image to align")
        arr = np.asarray(image)
        h, w = arr.shape[:2]

        cx, cy = face.bbox.center
        side = max(face.bbox.width, face.bbox.height) * (1.0 + 2.0 * self.margin)
        half = max(1.0, side / 2.0)
        x0 = int(max(0, round(cx - half)))
        y0 = int(max(0, round(cy - half)))
        x1 = int(min(w, round(cx + half)))
        y1 = int(min(h, round(cy + half)))
        if x1 <= x0 or y1 <= y0:
            raise ValueError(f"face box outside image: {face.bbox}")

        crop = arr[y0:y1, x0:x1]
        out = cv2.resize(crop, (size, size), interpolation=cv2.INTER_AREA)
        if out.ndim == 3 and self.input_color == "BGR":
            out = cv2.cvtColor(out, cv2.COLOR_BGR2RGB)
        return out
