from concurrent.futures import Executor, Future
from dataclasses import replace

import numpy as np
import pytest

from faceauth.config import FaceAuthConfig
from faceauth.core.models import BBox, Detection, Frame, ProfileRecord, ProfileType

FRAME_W, FRAME_H = 640, 480


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, sec: float) -> None:
        self.t += sec


class FakeEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = None if vector is None else np.asarray(vector, dtype=np.float32)
        self.error = error
        self.calls = 0

    def embed(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.vector


class FakeAligner:
    def __init__(self):
        self.calls = 0

    def align(self, image, face, size):
        self.calls += 1
        return image


class FakeStore:
    def __init__(self, gallery=None, save_result=1, load_error=None, save_error=None):
        self.gallery = list(gallery or [])
        self.save_result = save_result
        self.load_error = load_error
        self.save_error = save_error
        self.saved = []
        self.audits = []

    def load_active(self):
        if self.load_error is not None:
            raise self.load_error
        return list(self.gallery)

    def save(self, user_id, profile_type, embedding, quality_score):
        if self.save_error is not None:
            raise self.save_error
        self.saved.append((user_id, profile_type, np.asarray(embedding), quality_score))
        return self.save_result

    def save_audit(self, result, matched_user, score, debug_json=None):
        self.audits.append((result, matched_user, score, debug_json))
        return len(self.audits)


class ManualExecutor(Executor):
    """Holds submitted jobs until run_all() so tests control completion timing."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        self.jobs.append((fut, fn, args, kwargs))
        return fut

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for fut, fn, args, kwargs in jobs:
            try:
                fut.set_result(fn(*args, **kwargs))
            except Exception as e:
                fut.set_exception(e)


def make_detection(tid=1, cx=320.0, cy=240.0, size=260.0, yaw=0.0, pitch=0.0, left_eye=None, right_eye=None):
    half = size / 2.0
    return Detection(
        bbox=BBox(cx - half, cy - half, cx + half, cy + half),
        tracking_id=tid,
        yaw=yaw,
        pitch=pitch,
        left_eye_open=left_eye,
        right_eye_open=right_eye,
    )


def make_record(pid, user_id, vector, profile_type=ProfileType.NORMAL):
    return ProfileRecord(
        id=pid,
        user_id=user_id,
        profile_type=profile_type,
        embedding=np.asarray(vector, dtype=np.float32),
    )


def unit_at(cos: float) -> np.ndarray:
    """3-d unit vector whose cosine with e0 is `cos`."""
    return np.array([cos, np.sqrt(max(0.0, 1.0 - cos * cos)), 0.0], dtype=np.float32)


@pytest.fixture
def cfg():
    return FaceAuthConfig()


@pytest.fixture
def small_dim_cfg():
    c = FaceAuthConfig()
    return replace(c, embedding=replace(c.embedding, dim=3))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def textured_image():
    rng = np.random.default_rng(0)
    return rng.integers(60, 200, size=(FRAME_H, FRAME_W, 3), dtype=np.uint8)


@pytest.fixture
def frame_factory(textured_image):
    def make(*detections, image=None):
        return Frame(
            width=FRAME_W,
            height=FRAME_H,
            detections=tuple(detections),
            image=textured_image if image is None else image,
        )
    return make
