from __future__ import annotations

import logging
import random
import time
from concurrent.futures import Executor
from typing import Any, Callable, Optional, Sequence

from faceauth.config import FaceAuthConfig
from faceauth.core.errors import DetectionError
from faceauth.core.models import AuthResult, Detection, FailureReason, Frame, ResultStatus
from faceauth.liveness.blink import BlinkChallenge, BlinkReason, BlinkState
from faceauth.liveness.head_turn import HeadTurnChallenge, HeadTurnReason, HeadTurnState
from faceauth.services.auth_logger import log_auth_error
from faceauth.sessions.base import Session
from faceauth.sessions.worker import SessionWorker

log = logging.getLogger(__name__)


class LivenessSession(Session):
    """
    Runs the configured liveness policy (head turn or blink count) over the
    first detected face of each frame.
    """

    name = "liveness"

    def __init__(
        self,
        cfg: FaceAuthConfig,
        worker: Optional[SessionWorker] = None,
        executor: Optional[Executor] = None,
        detector: Any = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.cfg = cfg
        self.policy = cfg.liveness.policy
        if self.policy == "blink":
            self.challenge = BlinkChallenge(cfg.liveness.blink, clock=clock)
        else:
            self.challenge = HeadTurnChallenge(cfg.liveness.head_turn, clock=clock, rng=rng)
        self.challenge.start()
        self.state = self.challenge.state.value

        super().__init__(worker=worker, executor=executor, detector=detector)
        self._emit(self.state, self._prompt())

    def _prompt(self) -> str:
        if isinstance(self.challenge, BlinkChallenge):
            return "BLINK"
        if self.challenge.state is HeadTurnState.WAIT_CENTER:
            return "LOOK_CENTER"
        return "TURN_LEFT" if self.challenge.challenge_left else "TURN_RIGHT"

    @property
    def is_done(self) -> bool:
        return self.result.done()

    def wants_frames(self) -> bool:
        return not self.is_done

    def on_frame(self, frame: Frame, detections: Sequence[Detection]) -> None:
        if self.is_done:
            return
        face = detections[0] if detections else None

        if isinstance(self.challenge, BlinkChallenge):
            st = self.challenge.process(
                face.left_eye_open if face is not None else None,
                face.right_eye_open if face is not None else None,
            )
            passed, failed = st is BlinkState.PASSED, st is BlinkState.FAILED
        else:
            st = self.challenge.process(face.yaw if face is not None else None)
            passed, failed = st is HeadTurnState.PASSED, st is HeadTurnState.FAILED
        reason = self.challenge.failure_reason

        if st.value != self.state or face is None:
            self.state = st.value
            self._emit(self.state, None if (passed or failed) else ("NO_FACE" if face is None else self._prompt()))

        if passed or failed:
            log.info("liveness_result policy=%s state=%s reason=%s", self.policy, self.state, reason)
        if passed:
            self._finish(AuthResult(ResultStatus.SUCCESS, message="LIVENESS_PASSED"))
        elif failed:
            self._finish(AuthResult(ResultStatus.FAILED, failure_reason=FailureReason.FAIL_LIVENESS, message=reason))

    def on_detection_error(self, exc: DetectionError) -> None:
        if self.is_done:
            return
        log_auth_error(exc, "LivenessSession.detect", {"screen": "liveness", "state": self.state})
        if isinstance(self.challenge, HeadTurnChallenge):
            reason = HeadTurnReason.YAW_UNAVAILABLE
        else:
            reason = BlinkReason.DETECTION_FAIL
        self.challenge.fail(reason)
        self.state = self.challenge.state.value
        self._emit(self.state, reason)
        self._finish(AuthResult(ResultStatus.FAILED, failure_reason=FailureReason.FAIL_LIVENESS, message=reason))
