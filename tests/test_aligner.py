import numpy as np
import pytest

from conftest import make_detection
from faceauth.embedding.aligner import BBoxCropAligner
from faceauth.presentation.messages import GUIDE_TEXT, guide_text


def test_crop_is_resized_and_converted_to_rgb():
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    image[:, :, 0] = 255  # blue in BGR
    out = BBoxCropAligner().align(image, make_detection(), 112)
    assert out.shape == (112, 112, 3)
    assert out[..., 2].min() == 255
    assert out[..., 0].max() == 0


def test_rgb_input_is_not_swapped():
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    image[:, :, 0] = 200
    out = BBoxCropAligner(input_color="RGB").align(image, make_detection(), 16)
    assert out[..., 0].min() == 200


def test_box_clipped_to_image():
    image = np.full((100, 100, 3), 50, dtype=np.uint8)
    out = BBoxCropAligner().align(image, make_detection(cx=5, cy=5, size=60), 32)
    assert out.shape == (32, 32, 3)


def test_box_outside_image_raises():
    with pytest.raises(ValueError):
        BBoxCropAligner().align(np.zeros((50, 50, 3), dtype=np.uint8), make_detection(cx=500, cy=500, size=10), 8)
    with pytest.raises(ValueError):
        BBoxCropAligner().align(None, make_detection(), 8)


def test_guide_text_lookup():
    assert guide_text("TOO_DARK") == GUIDE_TEXT["TOO_DARK"]
    assert guide_text("SOMETHING_NEW") == "SOMETHING_NEW"
    assert guide_text(None, "idle") == "idle"
