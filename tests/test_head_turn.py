from dataclasses import replace

import pytest

from conftest import FakeClock
from faceauth.config import HeadTurnConfig
from faceauth.liveness.head_turn import HeadTurnChallenge, HeadTurnReason, HeadTurnState


@pytest.fixture
def raw_cfg():
    return replace(HeadTurnConfig(), smoothing_frames=1)


def _challenge(cfg, left=True, clock=None):
    return HeadTurnChallenge(cfg, clock=clock or FakeClock(), rng=lambda: 0.1 if left else 0.9)


def test_direction_follows_random_draw(raw_cfg):
    left = _challenge(raw_cfg, left=True)
    left.start()
    right = _challenge(raw_cfg, left=False)
    right.start()
    assert left.direction == "LEFT"
    assert right.direction == "RIGHT"


def test_must_centre_before_turning(raw_cfg):
    ch = _challenge(raw_cfg)
    ch.start()
    for _ in range(5):
        assert ch.process(-30.0) is HeadTurnState.WAIT_CENTER
    assert ch.process(0.0) is HeadTurnState.TURN


def test_k_minus_one_frames_then_miss_does_not_pass(raw_cfg):
    ch = _challenge(raw_cfg)
    ch.start()
    ch.process(0.0)
    ch.process(-20.0)
    ch.process(-20.0)
    assert ch.consecutive == 2
    assert ch.process(0.0) is HeadTurnState.TURN
    assert ch.consecutive == 0
    ch.process(-20.0)
    ch.process(-20.0)
    assert ch.process(-20.0) is HeadTurnState.PASSED


def test_right_turn(raw_cfg):
    ch = _challenge(raw_cfg, left=False)
    ch.start()
    ch.process(0.0)
    ch.process(-20.0)
    assert ch.consecutive == 0
    for _ in range(3):
        st = ch.process(20.0)
    assert st is HeadTurnState.PASSED


def test_smoothing_delays_the_turn():
    ch = _challenge(HeadTurnConfig())
    ch.start()
    ch.process(0.0)
    assert ch.process(-30.0) is HeadTurnState.TURN
    assert ch.smoothed_yaw == pytest.approx(-15.0)
    assert ch.process(-30.0) is HeadTurnState.TURN
    assert ch.process(-30.0) is HeadTurnState.PASSED
    assert ch.smoothed_yaw == pytest.approx(-22.5)


def test_missing_yaw_keeps_state(raw_cfg):
    ch = _challenge(raw_cfg)
    ch.start()
    ch.process(0.0)
    ch.process(-20.0)
    assert ch.process(None) is HeadTurnState.TURN
    assert ch.consecutive == 1


def test_timeout(raw_cfg):
    clock = FakeClock()
    ch = _challenge(raw_cfg, clock=clock)
    ch.start()
    clock.advance(60.0)
    assert ch.process(0.0) is HeadTurnState.TURN
    clock.advance(0.5)
    assert ch.process(-20.0) is HeadTurnState.FAILED
    assert ch.failure_reason == HeadTurnReason.TIMEOUT


def test_terminal_state_is_sticky(raw_cfg):
    ch = _challenge(raw_cfg)
    ch.start()
    ch.fail(HeadTurnReason.YAW_UNAVAILABLE)
    assert ch.process(0.0) is HeadTurnState.FAILED
    assert ch.fail(HeadTurnReason.TIMEOUT) is HeadTurnState.FAILED
    assert ch.failure_reason == HeadTurnReason.YAW_UNAVAILABLE


def test_process_starts_lazily(raw_cfg):
    ch = _challenge(raw_cfg)
    assert ch.process(0.0) is HeadTurnState.TURN
    assert ch.elapsed() == 0.0


def test_smoothing_window_drops_old_samples():
    ch = _challenge(replace(HeadTurnConfig(), smoothing_frames=2))
    ch.start()
    ch.process(0.0)
    ch.process(-30.0)
    assert ch.smoothed_yaw == pytest.approx(-15.0)
    ch.process(-30.0)
    assert ch.smoothed_yaw == pytest.approx(-30.0)
