from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np

from faceauth.config import FaceAuthConfig
from faceauth.core.errors import DetectionError, EmbeddingError, StorageError
from faceauth.core.frame_snapshot import build_snapshot
from faceauth.core.models import Detection, EnrollmentResult, Frame, FrameSnapshot, ResultStatus
from faceauth.geometry.guide import GuideLayout
from faceauth.services.auth_logger import log_auth_error
from faceauth.sessions.base import Session
from faceauth.sessions.worker import SessionWorker

log = logging.getLogger(__name__)


class EnrollState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"
    CAPTURING = "CAPTURING"
    COMMITTING = "COMMITTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class EnrollReason:
    NO_ROI_CANDIDATE = "NO_ROI_CANDIDATE"
    OUTSIDE_GUIDE = "OUTSIDE_GUIDE"
    TARGET_UNSTABLE = "TARGET_UNSTABLE"
    FACE_TOO_SMALL = "FACE_TOO_SMALL"
    YAW_TOO_LARGE = "YAW_TOO_LARGE"
    UNKNOWN = "UNKNOWN"
    EXTRACT_FAIL = "EXTRACT_FAIL"
    PERSIST_FAIL = "PERSIST_FAIL"
    DETECTION_FAIL = "DETECTION_FAIL"


_SKIP_STATES = (EnrollState.IDLE, EnrollState.COMMITTING, EnrollState.SUCCESS, EnrollState.FAILED)


class EnrollmentSession(Session):
    """
    IDLE -> ARMED -> CAPTURING -> COMMITTING -> SUCCESS | FAILED.

    A capture run locks onto one tracking id; losing it (or any framing
    condition) drops back to ARMED with the counters cleared. Once enough
    stable frames are seen, the last frame is aligned, embedded and stored in
    the background while frame analysis is suspended.
    """

    name = "enrollment"

    def __init__(
        self,
        user_id: str,
        cfg: FaceAuthConfig,
        embedder: Any,
        aligner: Any,
        store: Any,
        layout: Optional[GuideLayout] = None,
        worker: Optional[SessionWorker] = None,
        executor: Optional[Executor] = None,
        detector: Any = None,
        auto_start: bool = True,
    ):
        self.user_id = str(user_id)
        self.cfg = cfg
        self.embedder = embedder
        self.aligner = aligner
        self.store = store
        self.layout = layout or GuideLayout.legacy(cfg.guide)
        self.auto_start = auto_start

        self.state = EnrollState.IDLE
        self.stable_frames = 0
        self.locked_tracking_id: Optional[int] = None
        self.failed_reason: Optional[str] = None
        self.last_snapshot: Optional[FrameSnapshot] = None
        self._commit_guard = threading.Lock()

        super().__init__(worker=worker, executor=executor, detector=detector)

    # ----- lifecycle --------------------------------------------------

    def start(self) -> None:
        """User pressed start (or the camera came up with auto_start)."""
        self._post(self._arm)

    def camera_ready(self) -> None:
        if self.auto_start:
            self.start()

    def set_layout(self, layout: GuideLayout) -> None:
        """View geometry is known only after layout; swap it in on the session thread."""
        def apply() -> None:
            self.layout = layout
        self._post(apply)

    def reset(self) -> None:
        self._post(self._reset)

    def _arm(self) -> None:
        if self.state is not EnrollState.IDLE:
            log.debug("enroll start ignored in state %s", self.state.value)
            return
        self._generation += 1
        self._reset_counters()
        self._set_state(EnrollState.ARMED)
        log.info("auth_register_armed user=%s required=%d", self.user_id, self.cfg.enrollment.required_stable_frames)

    def _reset(self) -> None:
        self._generation += 1
        self._reset_counters()
        self.failed_reason = None
        self._release_guard()
        if self.result.done():
            self.result = Future()
        self._set_state(EnrollState.IDLE)

    def _reset_counters(self) -> None:
        self.stable_frames = 0
        self.locked_tracking_id = None

    # ----- per-frame --------------------------------------------------

    def wants_frames(self) -> bool:
        return self.state not in _SKIP_STATES

    def on_frame(self, frame: Frame, detections: Sequence[Detection]) -> None:
        if not self.wants_frames():
            return

        snap = build_snapshot(detections, frame.width, frame.height, self.layout)
        self.last_snapshot = snap

        if self.state is EnrollState.ARMED:
            self._on_armed(snap)
        elif self.state is EnrollState.CAPTURING:
            self._on_capturing(snap)

        if self.state is EnrollState.COMMITTING and snap.selected_face is not None:
            if self._commit_guard.acquire(blocking=False):
                self._start_commit(frame, snap.selected_face)

    def _yaw_ok(self, snap: FrameSnapshot) -> bool:
        limit = self.cfg.enrollment.max_abs_yaw
        return limit <= 0 or abs(snap.used_yaw) <= limit

    def _on_armed(self, snap: FrameSnapshot) -> None:
        ecfg = self.cfg.enrollment
        if (
            snap.roi_candidate_count >= 1
            and snap.inside_guide
            and snap.selected_tracking_id is not None
            and snap.bbox_area_ratio >= ecfg.min_face_area_ratio
            and self._yaw_ok(snap)
        ):
            self.stable_frames = 1
            self.locked_tracking_id = snap.selected_tracking_id
            self._set_state(EnrollState.CAPTURING, detail=self.stable_frames)
            if self.stable_frames >= ecfg.required_stable_frames:
                self._enter_committing()
            return

        reason = self._reason_blocked(snap)
        self._log_blocked(reason, snap, self.stable_frames)
        self._emit(self.state.value, reason, snap)

    def _on_capturing(self, snap: FrameSnapshot) -> None:
        ecfg = self.cfg.enrollment
        same_id = snap.selected_tracking_id is not None and snap.selected_tracking_id == self.locked_tracking_id
        ratio_ok = snap.bbox_area_ratio >= ecfg.min_face_area_ratio
        inside_ok = snap.inside_guide
        yaw_ok = self._yaw_ok(snap)

        if same_id and ratio_ok and inside_ok and yaw_ok:
            self.stable_frames += 1
            log.debug("auth_register_stable_progress stable=%d required=%d", self.stable_frames, ecfg.required_stable_frames)
            if self.stable_frames >= ecfg.required_stable_frames:
                self._enter_committing()
            else:
                self._emit(self.state.value, None, self.stable_frames)
            return

        prev = self.stable_frames
        self._reset_counters()
        reason = self._reason_unstable(same_id, ratio_ok, inside_ok, yaw_ok)
        self._log_blocked(reason, snap, prev)
        self._set_state(EnrollState.ARMED, reason)

    def _enter_committing(self) -> None:
        log.info("auth_register_captured stable=%d", self.stable_frames)
        self._set_state(EnrollState.COMMITTING)

    def _reason_blocked(self, snap: FrameSnapshot) -> str:
        ecfg = self.cfg.enrollment
        if snap.roi_candidate_count < 1:
            return EnrollReason.NO_ROI_CANDIDATE
        if not snap.inside_guide:
            return EnrollReason.OUTSIDE_GUIDE
        if snap.selected_tracking_id is None:
            return EnrollReason.TARGET_UNSTABLE
        if snap.bbox_area_ratio < ecfg.min_face_area_ratio:
            return EnrollReason.FACE_TOO_SMALL
        if not self._yaw_ok(snap):
            return EnrollReason.YAW_TOO_LARGE
        return EnrollReason.UNKNOWN

    @staticmethod
    def _reason_unstable(same_id: bool, ratio_ok: bool, inside_ok: bool, yaw_ok: bool) -> str:
        if not same_id:
            return EnrollReason.TARGET_UNSTABLE
        if not ratio_ok:
            return EnrollReason.FACE_TOO_SMALL
        if not inside_ok:
            return EnrollReason.OUTSIDE_GUIDE
        if not yaw_ok:
            return EnrollReason.YAW_TOO_LARGE
        return EnrollReason.UNKNOWN

    def _log_blocked(self, reason: str, snap: FrameSnapshot, stable: int) -> None:
        log.debug(
            "auth_register_blocked reason=%s yaw=%.1f ratio=%.3f stable=%d tid=%s roi=%d",
            reason, snap.used_yaw, snap.bbox_area_ratio, stable, snap.selected_tracking_id, snap.roi_candidate_count,
        )

    def on_detection_error(self, exc: DetectionError) -> None:
        if not self.wants_frames():
            return
        log_auth_error(exc, "EnrollmentSession.on_frame", {"screen": "enrollment", "state": self.state.value})
        self._fail(EnrollReason.DETECTION_FAIL)

    # ----- commit -----------------------------------------------------

    def _start_commit(self, frame: Frame, face: Detection) -> None:
        image = frame.image
        user_id = self.user_id
        profile_type = self.cfg.enrollment.profile_type
        size = self.cfg.embedding.input_size

        def job() -> int:
            if image is None:
                raise ValueError("frame has no image to enroll from")
            aligned = self.aligner.align(image, face, size)
            embedding = np.asarray(self.embedder.embed(aligned), dtype=np.float32)
            return self.store.save(user_id, profile_type, embedding, 1.0)

        self._run_background(job, self._on_commit_done)

    def _on_commit_done(self, fut: Future) -> None:
        try:
            profile_id = fut.result()
        except EmbeddingError as e:
            log_auth_error(e, "EnrollmentSession.commit", {"screen": "enrollment", "state": "COMMITTING", "errorCode": e.service_code})
            self._fail(e.service_code)
            return
        except StorageError as e:
            log_auth_error(e, "EnrollmentSession.commit", {"screen": "enrollment", "state": "COMMITTING"})
            self._fail(EnrollReason.PERSIST_FAIL)
            return
        except Exception as e:
            log_auth_error(e, "EnrollmentSession.commit", {"screen": "enrollment", "state": "COMMITTING"})
            self._fail(EnrollReason.EXTRACT_FAIL)
            return

        if profile_id is None or int(profile_id) < 0:
            log.warning("auth_register_failed reason=%s", EnrollReason.PERSIST_FAIL)
            self._fail(EnrollReason.PERSIST_FAIL)
            return

        log.info("auth_register_persisted user=%s profile_id=%s", self.user_id, profile_id)
        self._release_guard()
        self._set_state(EnrollState.SUCCESS, detail=int(profile_id))
        self._finish(EnrollmentResult(self.user_id, ResultStatus.SUCCESS, profile_id=int(profile_id)))

    def _fail(self, reason: str) -> None:
        self.failed_reason = reason
        self._release_guard()
        log.info("auth_register_failed reason=%s", reason)
        self._set_state(EnrollState.FAILED, reason)
        self._finish(EnrollmentResult(self.user_id, ResultStatus.FAILED, reason=reason))

    def _release_guard(self) -> None:
        if self._commit_guard.locked():
            self._commit_guard.release()

    def _set_state(self, state: EnrollState, reason: Optional[str] = None, detail: Any = None) -> None:
        self.state = state
        self._emit(state.value, reason, detail)
