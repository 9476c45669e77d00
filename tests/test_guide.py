import pytest

from faceauth.config import GuideConfig, GuidePreset
from faceauth.core.models import BBox
from faceauth.geometry.guide import (
    GuideCircle,
    GuideLayout,
    compute_circle_in_view,
    is_inside_guide,
    is_inside_guide_legacy,
)


def _box_at(cx, cy, half=20.0):
    return BBox(cx - half, cy - half, cx + half, cy + half)


def test_phone_portrait_circle():
    circle = compute_circle_in_view(1080, 1920, GuidePreset(0.80, -0.06))
    assert circle.cx == pytest.approx(540.0)
    assert circle.cy == pytest.approx(895.2)
    assert circle.r == pytest.approx(432.0)


def test_preset_selection():
    g = GuideConfig()
    assert g.preset_for_view(1080, 1920, 360) == g.phone_portrait
    assert g.preset_for_view(1920, 1080, 360) == g.phone_landscape
    assert g.preset_for_view(1200, 1920, 800) == g.tablet_portrait
    assert g.preset_for_view(1920, 1200, 800) == g.tablet_landscape


def test_image_centre_is_inside_letterboxed_view():
    circle = compute_circle_in_view(1080, 1920, GuidePreset(0.80, -0.06))
    # 640x480 in 1080x1920: scale 1.6875, vertical offset 555 -> centre maps to (540, 960)
    assert is_inside_guide(_box_at(320, 240), 640, 480, 1080, 1920, circle, 0.92)


def test_inner_margin_shrinks_circle():
    circle = GuideCircle(500.0, 500.0, 100.0)
    # maps 1:1; centre 95px right of the circle centre
    box = _box_at(595, 500)
    assert is_inside_guide(box, 1000, 1000, 1000, 1000, circle, 1.0)
    assert not is_inside_guide(box, 1000, 1000, 1000, 1000, circle, 0.92)


def test_boundary_counts_as_inside():
    circle = GuideCircle(500.0, 500.0, 100.0)
    assert is_inside_guide(_box_at(600, 500), 1000, 1000, 1000, 1000, circle, 1.0)


def test_invalid_inputs_are_outside():
    circle = GuideCircle(500.0, 500.0, 100.0)
    assert not is_inside_guide(None, 1000, 1000, 1000, 1000, circle, 1.0)
    assert not is_inside_guide(_box_at(500, 500), 0, 1000, 1000, 1000, circle, 1.0)
    assert not is_inside_guide(_box_at(500, 500), 1000, 1000, 1000, 1000, GuideCircle(500, 500, 0), 1.0)


def test_legacy_circle():
    assert is_inside_guide_legacy(_box_at(320, 240), 640, 480, 0.35)
    assert not is_inside_guide_legacy(_box_at(20, 20), 640, 480, 0.35)
    assert not is_inside_guide_legacy(_box_at(320, 240), 640, 480, 0.0)


def test_layout_falls_back_to_legacy_before_view_is_known():
    layout = GuideLayout.legacy(GuideConfig())
    assert not layout.uses_view_space
    assert layout.contains(_box_at(320, 240), 640, 480)
    assert not layout.contains(_box_at(10, 10), 640, 480)


def test_layout_for_view_uses_view_space():
    layout = GuideLayout.for_view(1080, 1920, GuideConfig(), smallest_width_dp=360)
    assert layout.uses_view_space
    assert layout.circle.r == pytest.approx(432.0)
    assert layout.contains(_box_at(320, 240), 640, 480)
    assert not layout.contains(_box_at(5, 5), 640, 480)
