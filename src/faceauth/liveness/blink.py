from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from faceauth.config import BlinkConfig

log = logging.getLogger(__name__)


class BlinkState(str, Enum):
    ONGOING = "ONGOING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class BlinkReason:
    TIMEOUT = "TIMEOUT"
    DETECTION_FAIL = "DETECTION_FAIL"


class BlinkChallenge:
    """
    Counts blinks from per-eye open probabilities.

    Eyes count as closed when the average open probability drops below
    1 - ear_open_threshold and as open again above 1 - ear_close_threshold;
    the gap between the two is the hysteresis band. Each closed->open
    transition is one blink.
    """

    def __init__(self, cfg: BlinkConfig, clock: Callable[[], float] = time.monotonic):
        self.cfg = cfg
        self._clock = clock
        self.blink_count = 0
        self.eyes_closed = False
        self.state = BlinkState.ONGOING
        self.failure_reason: Optional[str] = None
        self._start_time: Optional[float] = None

    @property
    def is_started(self) -> bool:
        return self._start_time is not None

    def start(self) -> None:
        self.blink_count = 0
        self.eyes_closed = False
        self.state = BlinkState.ONGOING
        self.failure_reason = None
        self._start_time = self._clock()

    def process(self, left_open: Optional[float], right_open: Optional[float]) -> BlinkState:
        if self._start_time is None or self.state is not BlinkState.ONGOING:
            return self.state

        if self._clock() - self._start_time > self.cfg.window_sec:
            return self.fail(BlinkReason.TIMEOUT)

        if left_open is None or right_open is None:
            return self.state

        avg_open = (float(left_open) + float(right_open)) / 2.0
        is_closed = avg_open < 1.0 - self.cfg.ear_open_threshold
        is_open = avg_open > 1.0 - self.cfg.ear_close_threshold

        if is_closed and not self.eyes_closed:
            self.eyes_closed = True
        elif is_open and self.eyes_closed:
            self.eyes_closed = False
            self.blink_count += 1
            log.debug("blink %d/%d", self.blink_count, self.cfg.blink_count)
            if self.blink_count >= self.cfg.blink_count:
                self.state = BlinkState.PASSED

        return self.state

    def fail(self, reason: str) -> BlinkState:
        if self.state is BlinkState.ONGOING:
            self.state = BlinkState.FAILED
            self.failure_reason = reason
            log.info("auth_liveness_failed reason=%s blinks=%d", reason, self.blink_count)
        return self.state
