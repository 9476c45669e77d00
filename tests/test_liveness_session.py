from dataclasses import replace

import pytest

from conftest import make_detection
from faceauth.core.models import FailureReason, ResultStatus
from faceauth.liveness.blink import BlinkChallenge, BlinkReason
from faceauth.liveness.head_turn import HeadTurnReason
from faceauth.sessions.liveness import LivenessSession


def _blink_cfg(cfg):
    return replace(cfg, liveness=replace(cfg.liveness, policy="blink"))


def _session(cfg, clock, left=True):
    s = LivenessSession(cfg, clock=clock, rng=lambda: 0.1 if left else 0.9)
    events = []
    s.add_listener(events.append)
    return s, events


def test_head_turn_left_passes(cfg, clock, frame_factory):
    s, events = _session(cfg, clock)
    assert s.state == "WAIT_CENTER"

    for yaw in (0.0, -30.0, -30.0, -30.0):
        s.submit_frame(frame_factory(make_detection(yaw=yaw)))

    res = s.result.result(timeout=0)
    assert res.status is ResultStatus.SUCCESS
    assert res.message == "LIVENESS_PASSED"
    assert events[0].reason == "TURN_LEFT"
    assert events[-1].state == "PASSED"


def test_head_turn_timeout(cfg, clock, frame_factory):
    s, _ = _session(cfg, clock)
    s.submit_frame(frame_factory(make_detection(yaw=0.0)))
    clock.advance(61.0)
    s.submit_frame(frame_factory(make_detection(yaw=0.0)))

    res = s.result.result(timeout=0)
    assert res.status is ResultStatus.FAILED
    assert res.failure_reason is FailureReason.FAIL_LIVENESS
    assert res.message == HeadTurnReason.TIMEOUT


def test_missing_face_emits_no_face(cfg, clock, frame_factory):
    s, events = _session(cfg, clock)
    s.submit_frame(frame_factory())
    assert events[-1].reason == "NO_FACE"
    assert not s.result.done()


def test_wrong_direction_does_not_pass(cfg, clock, frame_factory):
    s, _ = _session(cfg, clock, left=False)
    for yaw in (0.0, -30.0, -30.0, -30.0, -30.0):
        s.submit_frame(frame_factory(make_detection(yaw=yaw)))
    assert not s.result.done()
    assert s.state == "TURN"


def test_detector_failure_reports_yaw_unavailable(cfg, clock, frame_factory):
    class Broken:
        def detect(self, image):
            raise RuntimeError("landmarker died")

    s = LivenessSession(cfg, detector=Broken(), clock=clock, rng=lambda: 0.1)
    s.submit_frame(frame_factory())
    res = s.result.result(timeout=0)
    assert res.failure_reason is FailureReason.FAIL_LIVENESS
    assert res.message == HeadTurnReason.YAW_UNAVAILABLE


def test_blink_policy(cfg, clock, frame_factory):
    s, _ = _session(_blink_cfg(cfg), clock)
    assert isinstance(s.challenge, BlinkChallenge)
    for p in (0.95, 0.1, 0.95, 0.1, 0.95):
        s.submit_frame(frame_factory(make_detection(left_eye=p, right_eye=p)))
    assert s.result.result(timeout=0).status is ResultStatus.SUCCESS


def test_blink_window_expires(cfg, clock, frame_factory):
    s, _ = _session(_blink_cfg(cfg), clock)
    clock.advance(5.0)
    s.submit_frame(frame_factory(make_detection(left_eye=0.95, right_eye=0.95)))
    res = s.result.result(timeout=0)
    assert res.failure_reason is FailureReason.FAIL_LIVENESS
    assert res.message == BlinkReason.TIMEOUT
    assert s.challenge.failure_reason == BlinkReason.TIMEOUT


@pytest.mark.parametrize("policy", ["head_turn", "blink"])
def test_closed_session_ignores_frames(cfg, clock, frame_factory, policy):
    c = replace(cfg, liveness=replace(cfg.liveness, policy=policy))
    s, events = _session(c, clock)
    s.close()
    s.submit_frame(frame_factory(make_detection()))
    assert events == []
    assert s.result.cancelled()


def test_blink_detector_failure_reports_detection_fail(cfg, clock, frame_factory):
    class Broken:
        def detect(self, image):
            raise RuntimeError("landmarker died")

    s = LivenessSession(_blink_cfg(cfg), detector=Broken(), clock=clock)
    s.submit_frame(frame_factory())
    res = s.result.result(timeout=0)
    assert res.failure_reason is FailureReason.FAIL_LIVENESS
    assert res.message == BlinkReason.DETECTION_FAIL
    assert s.state == "FAILED"


def test_finished_session_does_not_run_detector(cfg, clock, frame_factory):
    class Counting:
        calls = 0

        def detect(self, image):
            Counting.calls += 1
            return [make_detection(yaw=0.0)]

    s = LivenessSession(cfg, detector=Counting(), clock=clock, rng=lambda: 0.1)
    s.submit_frame(frame_factory())
    clock.advance(61.0)
    s.submit_frame(frame_factory())
    assert s.result.done()
    s.submit_frame(frame_factory())
    assert Counting.calls == 2
