import logging
import sqlite3
import time
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from faceauth.core.errors import StorageError
from faceauth.core.models import ProfileRecord, ProfileType
from faceauth.infrastructure.database import FaceAuthDatabase

log = logging.getLogger(__name__)


class ProfileRepository:
    """
    Enrolled templates and the authentication audit trail.

    Embeddings are stored as raw float32 blobs. Deletes are logical
    (is_active = 0) except reset_all, which wipes both tables.
    """

    def __init__(self, db: FaceAuthDatabase, model_version: str = "", poc_mode: bool = False):
        self.db = db
        self.model_version = model_version
        self.poc_mode = poc_mode

    # --- PROFILE METHODS ---
    def save(self, user_id: str, profile_type, embedding: np.ndarray, quality_score: float) -> int:
        emb = np.asarray(embedding, dtype=np.float32).ravel()
        ptype = profile_type.value if isinstance(profile_type, ProfileType) else str(profile_type)
        try:
            rowid = self.db.execute(
                """
                INSERT INTO face_profile
                (user_id, profile_type, embedding, embedding_dim, quality_score, created_at, model_version, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (str(user_id), ptype, emb.tobytes(), int(emb.shape[0]), float(quality_score), time.time(), self.model_version),
            )
        except sqlite3.Error as e:
            raise StorageError(f"failed to save profile for {user_id}: {e}", where="ProfileRepository.save") from e
        log.info("Profile saved: id=%s user=%s type=%s dim=%d", rowid, user_id, ptype, emb.shape[0])
        return int(rowid)

    def load_active(self) -> List[ProfileRecord]:
        try:
            rows = self.db.execute(
                """
                SELECT profile_id, user_id, profile_type, embedding, embedding_dim, quality_score, created_at, model_version
                FROM face_profile
                WHERE is_active = 1
                ORDER BY profile_id
                """,
                fetch=True,
            ) or []
        except sqlite3.Error as e:
            raise StorageError(f"failed to load profiles: {e}", where="ProfileRepository.load_active") from e

        records = []
        for pid, uid, ptype, blob, dim, quality, created, version in rows:
            emb = np.frombuffer(blob, dtype=np.float32)
            if emb.shape[0] != int(dim):
                log.warning("Skipping profile %s: stored dim %s != decoded %d", pid, dim, emb.shape[0])
                continue
            try:
                pt = ProfileType(ptype)
            except ValueError:
                log.warning("Skipping profile %s: unknown profile_type %r", pid, ptype)
                continue
            records.append(
                ProfileRecord(
                    id=int(pid),
                    user_id=str(uid),
                    profile_type=pt,
                    embedding=emb.copy(),
                    quality_score=float(quality or 0.0),
                    created_at=datetime.fromtimestamp(float(created)),
                    model_version=version or "",
                    active=True,
                )
            )
        log.info("Loaded %d active profile(s)", len(records))
        return records

    def logical_delete(self, user_id: str) -> None:
        try:
            self.db.execute("UPDATE face_profile SET is_active = 0 WHERE user_id = ?", (str(user_id),))
        except sqlite3.Error as e:
            raise StorageError(f"failed to delete {user_id}: {e}", where="ProfileRepository.logical_delete") from e
        log.info("Profiles deactivated for user=%s", user_id)

    def reset_all(self) -> None:
        try:
            self.db.execute("DELETE FROM face_profile")
            self.db.execute("DELETE FROM auth_audit")
        except sqlite3.Error as e:
            raise StorageError(f"failed to reset storage: {e}", where="ProfileRepository.reset_all") from e
        log.warning("All profiles and audit records deleted")

    def list_enrolled_users(self) -> List[str]:
        rows = self.db.execute(
            "SELECT DISTINCT user_id FROM face_profile WHERE is_active = 1 ORDER BY user_id",
            fetch=True,
        ) or []
        return [str(r[0]) for r in rows]

    def profile_counts(self, user_id: str) -> Dict[str, int]:
        rows = self.db.execute(
            """
            SELECT profile_type, COUNT(*) FROM face_profile
            WHERE user_id = ? AND is_active = 1
            GROUP BY profile_type
            """,
            (str(user_id),),
            fetch=True,
        ) or []
        counts = OrderedDict((t.value, 0) for t in ProfileType)
        for ptype, n in rows:
            if ptype in counts:
                counts[ptype] = int(n)
        return dict(counts)

    def export_text(self) -> str:
        """Tab-separated dump of active profiles. Embeddings are never exported."""
        rows = self.db.execute(
            """
            SELECT profile_id, user_id, profile_type, embedding_dim, quality_score, created_at, model_version
            FROM face_profile
            WHERE is_active = 1
            ORDER BY user_id, profile_id
            """,
            fetch=True,
        ) or []

        lines = [
            "# FaceAuth enrolled profiles export",
            f"# exported_at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "profile_id\tuser_id\tprofile_type\tembedding_dim\tquality_score\tcreated_at\tmodel_version",
        ]
        for pid, uid, ptype, dim, quality, created, version in rows:
            created_str = datetime.fromtimestamp(float(created)).strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"{pid}\t{uid}\t{ptype}\t{dim}\t{float(quality or 0.0):.3f}\t{created_str}\t{version or ''}")
        return "\n".join(lines) + "\n"

    # --- AUDIT METHODS ---
    def save_audit(self, result: str, matched_user: Optional[str], match_score: float, debug_json: Optional[str] = None) -> int:
        try:
            rowid = self.db.execute(
                """
                INSERT INTO auth_audit (ts, result, matched_user, match_score, debug_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (time.time(), str(result), matched_user, float(match_score), debug_json if self.poc_mode else None),
            )
        except sqlite3.Error as e:
            raise StorageError(f"failed to write audit record: {e}", where="ProfileRepository.save_audit") from e
        return int(rowid)

    def recent_audits(self, limit: int = 20) -> list:
        return self.db.execute(
            "SELECT id, ts, result, matched_user, match_score, debug_json FROM auth_audit ORDER BY id DESC LIMIT ?",
            (int(limit),),
            fetch=True,
        ) or []
