from typing import Optional, Sequence

from faceauth.core.models import EMPTY_SNAPSHOT, Detection, FrameSnapshot
from faceauth.geometry.guide import GuideLayout


def build_snapshot(
    detections: Optional[Sequence[Detection]],
    image_w: int,
    image_h: int,
    layout: GuideLayout,
) -> FrameSnapshot:
    """
    Reduce one frame's detections to a single selected candidate.

    Only faces inside the guide compete; the largest bbox wins and ties keep the
    first one seen. Yaw is copied from the selected detection without smoothing.
    """
    if not detections:
        return EMPTY_SNAPSHOT

    frame_area = float(image_w) * float(image_h)
    best: Optional[Detection] = None
    best_area = 0.0
    inside_count = 0

    for det in detections:
        if not layout.contains(det.bbox, image_w, image_h):
            continue
        inside_count += 1
        area = det.bbox.area
        if area > best_area:
            best_area = area
            best = det

    if best is None:
        return FrameSnapshot(len(detections), 0, None, 0.0, 0.0, False, None)

    ratio = best_area / frame_area if frame_area > 0 else 0.0
    return FrameSnapshot(
        faces_count=len(detections),
        roi_candidate_count=inside_count,
        selected_tracking_id=best.tracking_id,
        bbox_area_ratio=ratio,
        used_yaw=float(best.yaw),
        inside_guide=True,
        selected_face=best,
    )
