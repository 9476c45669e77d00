from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from faceauth.config import DEFAULT_CONFIG_PATH, FaceAuthConfig, load_faceauth_config
from faceauth.embedding.aligner import BBoxCropAligner
from faceauth.embedding.face_embedder import FaceEmbedder
from faceauth.geometry.guide import GuideLayout
from faceauth.infrastructure.database import FaceAuthDatabase
from faceauth.infrastructure.profile_store import ProfileRepository
from faceauth.sessions.authentication import AuthenticationSession
from faceauth.sessions.enrollment import EnrollmentSession
from faceauth.sessions.liveness import LivenessSession
from faceauth.sessions.worker import SessionWorker

log = logging.getLogger(__name__)


class FaceAuthEngine:
    """
    Owns the configuration, the profile store and the shared background pool,
    and hands out sessions. Construct one and pass it to whoever needs it.
    """

    def __init__(
        self,
        cfg: FaceAuthConfig,
        store: Optional[ProfileRepository] = None,
        embedder: Any = None,
        aligner: Any = None,
        detector: Any = None,
        background_workers: int = 1,
    ):
        self.cfg = cfg
        self.store = store or ProfileRepository(
            FaceAuthDatabase(cfg.storage.database_file),
            model_version=cfg.embedding.model_version,
            poc_mode=cfg.storage.poc_mode,
        )
        self.embedder = embedder
        self.aligner = aligner or BBoxCropAligner(input_color=cfg.quality.color_order)
        self.detector = detector
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(background_workers)), thread_name_prefix="faceauth-io")

    @classmethod
    def from_config_file(cls, path: str = DEFAULT_CONFIG_PATH, **kwargs) -> "FaceAuthEngine":
        return cls(load_faceauth_config(path), **kwargs)

    def _require_embedder(self) -> Any:
        if self.embedder is None:
            self.embedder = FaceEmbedder(self.cfg.embedding)
        return self.embedder

    def layout_for_view(self, view_w: int, view_h: int, smallest_width_dp: int = 0) -> GuideLayout:
        return GuideLayout.for_view(view_w, view_h, self.cfg.guide, smallest_width_dp)

    # ----- sessions ---------------------------------------------------

    def new_enrollment(self, user_id: str, layout: Optional[GuideLayout] = None, auto_start: bool = True) -> EnrollmentSession:
        session = EnrollmentSession(
            user_id,
            self.cfg,
            embedder=self._require_embedder(),
            aligner=self.aligner,
            store=self.store,
            layout=layout,
            worker=SessionWorker(f"enroll-{user_id}"),
            executor=self._executor,
            detector=self.detector,
            auto_start=auto_start,
        )
        if auto_start:
            session.camera_ready()
        return session

    def new_authentication(self, layout: Optional[GuideLayout] = None) -> AuthenticationSession:
        return AuthenticationSession(
            self.cfg,
            embedder=self._require_embedder(),
            aligner=self.aligner,
            store=self.store,
            layout=layout,
            worker=SessionWorker("authenticate"),
            executor=self._executor,
            detector=self.detector,
        )

    def new_liveness(self) -> LivenessSession:
        return LivenessSession(self.cfg, worker=SessionWorker("liveness"), detector=self.detector)

    # ----- admin ------------------------------------------------------

    def list_users(self) -> List[Dict[str, Any]]:
        return [{"user_id": uid, **self.store.profile_counts(uid)} for uid in self.store.list_enrolled_users()]

    def delete_user(self, user_id: str) -> None:
        self.store.logical_delete(user_id)

    def reset_all(self) -> None:
        self.store.reset_all()

    def export_text(self) -> str:
        return self.store.export_text()

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        if self.embedder is not None and hasattr(self.embedder, "close"):
            self.embedder.close()
        self.store.db.close()
