from conftest import make_detection
from faceauth.core.models import EMPTY_SNAPSHOT, FrameSnapshot
from faceauth.core.stability import StabilityTracker


def _snap(tid):
    face = make_detection(tid=tid)
    return FrameSnapshot(1, 1, tid, 0.2, 0.0, True, face)


def test_counts_consecutive_frames_of_same_id():
    tracker = StabilityTracker(3)
    assert tracker.update(_snap(4)) == 1
    assert tracker.update(_snap(4)) == 2
    assert not tracker.is_stable
    assert tracker.update(_snap(4)) == 3
    assert tracker.is_stable


def test_id_change_restarts_count():
    tracker = StabilityTracker(3)
    tracker.update(_snap(4))
    tracker.update(_snap(4))
    assert tracker.update(_snap(9)) == 1
    assert tracker.last_tracking_id == 9


def test_lost_selection_clears_count():
    tracker = StabilityTracker(2)
    tracker.update(_snap(4))
    assert tracker.update(EMPTY_SNAPSHOT) == 0
    assert tracker.last_tracking_id is None
    assert tracker.update(EMPTY_SNAPSHOT) == 0


def test_selection_without_tracking_id_never_accumulates():
    tracker = StabilityTracker(2)
    assert tracker.update(_snap(None)) == 1
    assert tracker.update(_snap(None)) == 1
    assert not tracker.is_stable


def test_reset():
    tracker = StabilityTracker(1)
    tracker.update(_snap(1))
    tracker.reset()
    assert tracker.count == 0
    assert tracker.last_tracking_id is None
