from __future__ import annotations

import logging
import random
import time
from collections import deque
from enum import Enum
from typing import Callable, Optional

from faceauth.config import HeadTurnConfig

log = logging.getLogger(__name__)


class HeadTurnState(str, Enum):
    WAIT_CENTER = "WAIT_CENTER"
    TURN = "TURN"
    PASSED = "PASSED"
    FAILED = "FAILED"


class HeadTurnReason:
    TIMEOUT = "TIMEOUT"
    YAW_UNAVAILABLE = "YAW_UNAVAILABLE"


class HeadTurnChallenge:
    """
    Look straight, then turn towards a randomly chosen side.

    Yaw is averaged over the last few frames. The turn only counts after the
    smoothed yaw has met the side threshold for `consecutive_required` frames
    in a row; any miss sets the streak back to zero.
    """

    def __init__(
        self,
        cfg: HeadTurnConfig,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.cfg = cfg
        self._clock = clock
        self._rng = rng
        self._yaw_window: deque = deque(maxlen=max(1, int(cfg.smoothing_frames)))

        self.state = HeadTurnState.WAIT_CENTER
        self.challenge_left = True
        self.consecutive = 0
        self.smoothed_yaw = 0.0
        self.failure_reason: Optional[str] = None
        self._start_time: Optional[float] = None

    @property
    def direction(self) -> str:
        return "LEFT" if self.challenge_left else "RIGHT"

    @property
    def is_terminal(self) -> bool:
        return self.state in (HeadTurnState.PASSED, HeadTurnState.FAILED)

    def start(self) -> None:
        self.challenge_left = self._rng() < 0.5
        self._start_time = self._clock()
        self._reset_state()
        log.info("auth_liveness_start challenge=%s timeout_sec=%.1f", self.direction, self.cfg.timeout_sec)

    def _reset_state(self) -> None:
        self.state = HeadTurnState.WAIT_CENTER
        self.consecutive = 0
        self.smoothed_yaw = 0.0
        self.failure_reason = None
        self._yaw_window.clear()

    def elapsed(self) -> float:
        return 0.0 if self._start_time is None else self._clock() - self._start_time

    def process(self, yaw: Optional[float]) -> HeadTurnState:
        """Feed one frame's yaw (None when no face was found). Returns the state after the frame."""
        if self.is_terminal:
            return self.state
        if self._start_time is None:
            self.start()

        if self.elapsed() > self.cfg.timeout_sec:
            return self.fail(HeadTurnReason.TIMEOUT)

        if yaw is None:
            return self.state

        self._yaw_window.append(float(yaw))
        smoothed = sum(self._yaw_window) / len(self._yaw_window)
        self.smoothed_yaw = smoothed

        if self.state is HeadTurnState.WAIT_CENTER:
            if abs(smoothed) <= self.cfg.center_max_abs_deg:
                self.state = HeadTurnState.TURN
                self.consecutive = 0
        elif self.state is HeadTurnState.TURN:
            if self._turn_ok(smoothed):
                self.consecutive += 1
                if self.consecutive >= self.cfg.consecutive_required:
                    self.state = HeadTurnState.PASSED
                    log.info("auth_liveness_passed challenge=%s elapsed=%.2fs", self.direction, self.elapsed())
            else:
                self.consecutive = 0

        log.debug(
            "auth_liveness_progress yaw=%.1f state=%s streak=%d", smoothed, self.state.value, self.consecutive
        )
        return self.state

    def _turn_ok(self, smoothed: float) -> bool:
        if self.challenge_left:
            return smoothed <= self.cfg.left_max_deg
        return smoothed >= self.cfg.right_min_deg

    def fail(self, reason: str) -> HeadTurnState:
        if self.state is HeadTurnState.FAILED:
            return self.state
        self.state = HeadTurnState.FAILED
        self.failure_reason = reason
        log.info("auth_liveness_failed reason=%s elapsed=%.2fs", reason, self.elapsed())
        return self.state
