from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from faceauth.config import GuideConfig, GuidePreset
from faceauth.core.models import BBox


@dataclass(frozen=True)
class GuideCircle:
    """Capture circle in view (screen) coordinates."""
    cx: float
    cy: float
    r: float


@dataclass(frozen=True)
class GuideLayout:
    """
    Everything needed to decide region membership for one session.

    view_w/view_h of 0 mean the view is not laid out yet; membership then falls
    back to the legacy normalized circle.
    """
    view_w: int = 0
    view_h: int = 0
    circle: Optional[GuideCircle] = None
    inner_margin_ratio: float = 0.92
    legacy_radius_ratio: float = 0.35

    @property
    def uses_view_space(self) -> bool:
        return self.view_w > 0 and self.view_h > 0 and self.circle is not None and self.circle.r > 0

    def contains(self, bbox: Optional[BBox], image_w: int, image_h: int) -> bool:
        if self.uses_view_space:
            return is_inside_guide(
                bbox, image_w, image_h, self.view_w, self.view_h, self.circle, self.inner_margin_ratio
            )
        return is_inside_guide_legacy(bbox, image_w, image_h, self.legacy_radius_ratio)

    @classmethod
    def for_view(cls, view_w: int, view_h: int, cfg: GuideConfig, smallest_width_dp: int = 0) -> "GuideLayout":
        preset = cfg.preset_for_view(view_w, view_h, smallest_width_dp)
        return cls(
            view_w=int(view_w),
            view_h=int(view_h),
            circle=compute_circle_in_view(view_w, view_h, preset),
            inner_margin_ratio=cfg.inner_margin_ratio,
            legacy_radius_ratio=cfg.circle_radius_ratio,
        )

    @classmethod
    def legacy(cls, cfg: GuideConfig) -> "GuideLayout":
        return cls(inner_margin_ratio=cfg.inner_margin_ratio, legacy_radius_ratio=cfg.circle_radius_ratio)


def compute_circle_in_view(view_w: int, view_h: int, preset: GuidePreset) -> GuideCircle:
    """
    diameter = min(w, h) * ratio, centred horizontally and shifted vertically by
    min(w, h) * center_y_offset_ratio (negative moves it up).
    """
    short = float(min(view_w, view_h))
    r = short * float(preset.diameter_ratio) * 0.5
    cx = float(view_w) * 0.5
    cy = float(view_h) * 0.5 + short * float(preset.center_y_offset_ratio)
    return GuideCircle(cx, cy, r)


def is_inside_guide(
    bbox: Optional[BBox],
    image_w: int,
    image_h: int,
    view_w: int,
    view_h: int,
    circle: GuideCircle,
    inner_margin_ratio: float,
) -> bool:
    """Map the bbox centre image->view with aspect-fit letterboxing and test it against the shrunk circle."""
    if bbox is None or image_w <= 0 or image_h <= 0 or circle is None or circle.r <= 0:
        return False

    fx, fy = bbox.center
    scale = min(float(view_w) / image_w, float(view_h) / image_h)
    offset_x = (view_w - image_w * scale) * 0.5
    offset_y = (view_h - image_h * scale) * 0.5

    dx = offset_x + fx * scale - circle.cx
    dy = offset_y + fy * scale - circle.cy
    effective_r = circle.r * float(inner_margin_ratio)
    return dx * dx + dy * dy <= effective_r * effective_r


def is_inside_guide_legacy(bbox: Optional[BBox], image_w: int, image_h: int, radius_ratio: float) -> bool:
    """Normalized image space: circle at (0.5, 0.5) with radius `radius_ratio`."""
    if bbox is None or image_w <= 0 or image_h <= 0 or radius_ratio <= 0:
        return False
    cx, cy = bbox.center
    dx = cx / image_w - 0.5
    dy = cy / image_h - 0.5
    return dx * dx + dy * dy <= radius_ratio * radius_ratio
