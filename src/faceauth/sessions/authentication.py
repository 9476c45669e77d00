from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Executor, Future
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from faceauth.config import FaceAuthConfig
from faceauth.core.errors import DetectionError
from faceauth.core.frame_snapshot import build_snapshot
from faceauth.core.models import (
    AuthResult,
    Detection,
    FailureReason,
    Frame,
    FrameSnapshot,
    ProfileRecord,
    ProfileType,
    ResultStatus,
)
from faceauth.core.stability import StabilityTracker
from faceauth.geometry.guide import GuideLayout
from faceauth.matching.embedding_matcher import EmbeddingMatcher
from faceauth.matching.secondary_verifier import SecondaryDecision, SecondaryVerifier
from faceauth.matching.template_cache import TemplateCache
from faceauth.quality.quality_gate import QualityGate, QualityKey
from faceauth.services.auth_logger import log_auth_error
from faceauth.sessions.base import Session
from faceauth.sessions.worker import SessionWorker

log = logging.getLogger(__name__)


class AuthState(str, Enum):
    LOADING_GALLERY = "LOADING_GALLERY"
    WAITING_FACE = "WAITING_FACE"
    STABILIZING = "STABILIZING"
    FIRST_VERIFY = "FIRST_VERIFY"
    SECONDARY_VERIFY = "SECONDARY_VERIFY"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AuthGuide:
    NO_FACE = QualityKey.NO_FACE
    OUTSIDE_GUIDE = "OUTSIDE_GUIDE"
    YAW_TOO_LARGE = QualityKey.YAW_TOO_LARGE
    TARGET_UNSTABLE = "TARGET_UNSTABLE"
    NO_REGISTERED_FACES = "NO_REGISTERED_FACES"
    RETRY = "FAIL_MATCH"
    LOW_MARGIN = "FAIL_LOW_MARGIN"


class AuthenticationSession(Session):
    """
    Gallery load, framing gates, stability, quality gate, then embed and match.

    A miss below the threshold restarts stability and tries again until the
    wall-clock budget runs out; any internal fault ends the session at once.
    With `secondary.enabled`, a Top-1 score in the gray zone is adjudicated
    by the centroid verifier instead of being rejected outright.
    """

    name = "authentication"

    def __init__(
        self,
        cfg: FaceAuthConfig,
        embedder: Any,
        aligner: Any,
        store: Any,
        layout: Optional[GuideLayout] = None,
        worker: Optional[SessionWorker] = None,
        executor: Optional[Executor] = None,
        detector: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg
        self.embedder = embedder
        self.aligner = aligner
        self.store = store
        self.layout = layout or GuideLayout.legacy(cfg.guide)
        self._clock = clock

        self.quality_gate = QualityGate(cfg.quality)
        self.stability = StabilityTracker(cfg.authentication.stable_frames_required)
        self.matcher = EmbeddingMatcher()
        self.cache = TemplateCache(cfg.embedding.dim)
        self.verifier = SecondaryVerifier(cfg.secondary)

        self.state = AuthState.LOADING_GALLERY
        self.gate_db_loaded = False
        self.attempts = 0
        self.last_snapshot: Optional[FrameSnapshot] = None
        self.last_guide: Optional[str] = None
        self._last_uncertain = False
        self._start_time = self._clock()

        super().__init__(worker=worker, executor=executor, detector=detector)

        log.info("auth_run_start max_wait_sec=%.1f threshold=%.2f", cfg.authentication.run_max_sec, cfg.matching.match_threshold)
        self._run_background(self.store.load_active, self._on_gallery_loaded)

    # ----- gallery ----------------------------------------------------

    def _on_gallery_loaded(self, fut: Future) -> None:
        if self.is_done:
            return
        try:
            gallery: List[ProfileRecord] = list(fut.result() or [])
        except Exception as e:
            log_auth_error(e, "AuthenticationSession.load_gallery", {"screen": "authentication"})
            self._deliver_failure(FailureReason.FAIL_INTERNAL, 0.0, FailureReason.FAIL_INTERNAL.value)
            return

        if not gallery:
            log.warning("auth_db_loaded enrolled=0")
            self._deliver_failure(FailureReason.FAIL_INTERNAL, 0.0, AuthGuide.NO_REGISTERED_FACES)
            return

        self.matcher.build_matrix(gallery)
        self.cache.set_profiles(gallery)
        self.gate_db_loaded = True
        log.info("auth_db_loaded enrolled=%d ids_first3=%s", len(gallery), [g.user_id for g in gallery[:3]])
        self._set_state(AuthState.WAITING_FACE)

    # ----- per-frame --------------------------------------------------

    @property
    def is_done(self) -> bool:
        return self.state in (AuthState.SUCCESS, AuthState.FAILED)

    def set_layout(self, layout: GuideLayout) -> None:
        def apply() -> None:
            self.layout = layout
        self._post(apply)

    def elapsed(self) -> float:
        return self._clock() - self._start_time

    def wants_frames(self) -> bool:
        return self.gate_db_loaded and not self.is_done

    def on_frame(self, frame: Frame, detections: Sequence[Detection]) -> None:
        if self.is_done or not self.gate_db_loaded:
            return
        try:
            self._analyze(frame, detections)
        except Exception as e:
            log_auth_error(e, "AuthenticationSession.on_frame", self._error_context())
            self._deliver_failure(FailureReason.FAIL_INTERNAL, 0.0, FailureReason.FAIL_INTERNAL.value)

    def on_detection_error(self, exc: DetectionError) -> None:
        if self.is_done:
            return
        log_auth_error(exc, "AuthenticationSession.detect", self._error_context())
        self._deliver_failure(FailureReason.FAIL_INTERNAL, 0.0, FailureReason.FAIL_INTERNAL.value)

    def _analyze(self, frame: Frame, detections: Sequence[Detection]) -> None:
        if not detections:
            self._guide(AuthState.WAITING_FACE, AuthGuide.NO_FACE)
            return

        acfg = self.cfg.authentication
        snap = build_snapshot(detections, frame.width, frame.height, self.layout)
        self.last_snapshot = snap

        gate_face_ready = (
            snap.roi_candidate_count >= 1
            and snap.inside_guide
            and snap.bbox_area_ratio >= acfg.min_face_area_ratio
        )
        gate_yaw_ok = abs(snap.used_yaw) <= acfg.max_abs_yaw
        self.stability.update(snap)
        gate_stable_ready = self.stability.is_stable

        log.debug(
            "auth_gate_status face_ready=%s yaw_ok=%s stable_ready=%s db_loaded=%s stable=%d/%d tid=%s roi=%d ratio=%.4f",
            gate_face_ready, gate_yaw_ok, gate_stable_ready, self.gate_db_loaded,
            self.stability.count, self.stability.required_frames, snap.selected_tracking_id,
            snap.roi_candidate_count, snap.bbox_area_ratio,
        )

        if snap.roi_candidate_count == 0:
            self._guide(AuthState.WAITING_FACE, AuthGuide.NO_FACE)
            return
        if not gate_face_ready:
            self._guide(AuthState.WAITING_FACE, AuthGuide.OUTSIDE_GUIDE)
            return
        if not gate_yaw_ok:
            self._guide(AuthState.WAITING_FACE, AuthGuide.YAW_TOO_LARGE)
            return
        if not gate_stable_ready:
            self._guide(AuthState.STABILIZING, AuthGuide.TARGET_UNSTABLE)
            return

        face = snap.selected_face
        qr = self.quality_gate.check(frame.image, face, frame.width, frame.height)
        if not qr.passed:
            self._guide(AuthState.STABILIZING, qr.message_key)
            return

        self._match(frame, face, snap)

    def _match(self, frame: Frame, face: Detection, snap: FrameSnapshot) -> None:
        threshold = self.cfg.matching.match_threshold
        self.attempts += 1
        self._set_state(AuthState.FIRST_VERIFY)
        log.info(
            "auth_match_attempt attempt=%d yaw=%.2f ratio=%.4f tid=%s enrolled=%d threshold=%.4f",
            self.attempts, snap.used_yaw, snap.bbox_area_ratio, snap.selected_tracking_id, len(self.matcher), threshold,
        )

        aligned = self.aligner.align(frame.image, face, self.cfg.embedding.input_size)
        live = np.asarray(self.embedder.embed(aligned), dtype=np.float32)

        match = self.matcher.find_top_match_with_logging(live, threshold, tag="auth")
        best_id = match.best_profile.user_id if match.best_profile is not None else None
        score = float(match.match_score)
        accepted = match.best_profile is not None and score >= threshold
        self._last_uncertain = False

        if not accepted and self._in_gray_zone(match.best_profile, score):
            accepted, best_id, score = self._secondary(live)

        log.info(
            "auth_match_result best_id=%s best_score=%.4f threshold=%.4f decision=%s",
            best_id or "", score, threshold, "MATCH" if accepted else "NO_MATCH",
        )
        self._audit("SUCCESS" if accepted else "FAIL_MATCH", best_id, score)

        if accepted:
            self._set_state(AuthState.SUCCESS, detail=best_id)
            self._finish(AuthResult(ResultStatus.SUCCESS, matched_user_id=best_id, score=score, message="AUTH_SUCCESS"))
            return

        elapsed = self.elapsed()
        reason = FailureReason.FAIL_LOW_MARGIN if self._last_uncertain else FailureReason.FAIL_MATCH
        if elapsed < self.cfg.authentication.run_max_sec:
            self.stability.reset()
            log.info("auth_no_match_retry elapsed=%.2fs max=%.1fs best_score=%.4f", elapsed, self.cfg.authentication.run_max_sec, score)
            self._guide(AuthState.WAITING_FACE, reason.value)
            return

        self._deliver_failure(reason, score, reason.value)

    def _in_gray_zone(self, best: Optional[ProfileRecord], score: float) -> bool:
        scfg = self.cfg.secondary
        return scfg.enabled and best is not None and scfg.gray_zone_min <= score < self.cfg.matching.match_threshold

    def _secondary(self, live: np.ndarray):
        self._set_state(AuthState.SECONDARY_VERIFY)
        top = self.matcher.find_top_two_users_with_margin(live)
        profile_type = top.best_profile_for_top1.profile_type if top.best_profile_for_top1 is not None else ProfileType.NORMAL
        res = self.verifier.verify(live, top.top1_user_id, profile_type, self.cache, top.margin)
        log.info(
            "auth_secondary_verify top1=%s top1_score=%.4f top2=%s top2_score=%.4f margin=%.4f centroid_score=%.4f decision=%s",
            top.top1_user_id, top.top1_score, top.top2_user_id, top.top2_score, top.margin, res.centroid_score, res.decision.value,
        )
        self._last_uncertain = res.decision is SecondaryDecision.UNCERTAIN
        return res.decision is SecondaryDecision.ACCEPT, top.top1_user_id, float(top.top1_score)

    # ----- outcome ----------------------------------------------------

    def _audit(self, result: str, best_id: Optional[str], score: float) -> None:
        debug_json = json.dumps({"score": round(score, 6)}) if self.cfg.storage.poc_mode else None
        self.store.save_audit(result, best_id, score, debug_json)

    def _deliver_failure(self, reason: FailureReason, score: float, message: str) -> None:
        if self.is_done:
            return
        log.info("auth_result status=FAILED reason=%s score=%.4f", reason.value, score)
        self._set_state(AuthState.FAILED, reason.value)
        self._finish(AuthResult(ResultStatus.FAILED, score=score, failure_reason=reason, message=message))

    def _guide(self, state: AuthState, key: str) -> None:
        self.last_guide = key
        self._set_state(state, key)

    def _set_state(self, state: AuthState, reason: Optional[str] = None, detail: Any = None) -> None:
        self.state = state
        self._emit(state.value, reason, detail)

    def _error_context(self) -> dict:
        snap = self.last_snapshot
        ctx = {"screen": "authentication", "state": self.state.value, "attempts": self.attempts}
        if snap is not None:
            ctx.update(
                trackingId=snap.selected_tracking_id,
                facesCount=snap.faces_count,
                roiCandidateCount=snap.roi_candidate_count,
                bboxAreaRatio=round(snap.bbox_area_ratio, 4),
                usedYaw=round(snap.used_yaw, 2),
            )
        return ctx
