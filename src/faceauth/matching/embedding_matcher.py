from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from faceauth.core.models import MatchResult, ProfileRecord, TopTwoResult

log = logging.getLogger(__name__)

NORM_EPS = 1e-10
BEST_PROFILE_TOL = 1e-5


def cosine_similarity_norm(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity mapped to [0, 1]: (cos + 1) / 2.

    Always normalises both sides, so pre-normalised and raw vectors score the
    same. Degenerate (near-zero) vectors score 0.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimension mismatch: {a.shape[0]} vs {b.shape[0]}")

    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na < NORM_EPS or nb < NORM_EPS:
        return 0.0

    cos = float(np.clip(np.dot(a, b) / (na * nb), -1.0, 1.0))
    return (cos + 1.0) / 2.0


class EmbeddingMatcher:
    """
    Scores a live embedding against a fixed gallery.

    The gallery matrix is built once per gallery snapshot; records whose
    dimension differs from the query are skipped at query time.
    """

    def __init__(self, records: Optional[Sequence[ProfileRecord]] = None):
        self.records: List[ProfileRecord] = []
        self._by_dim: Dict[int, Tuple[List[ProfileRecord], np.ndarray, np.ndarray]] = {}
        self.build_matrix(records or [])

    def build_matrix(self, records: Sequence[ProfileRecord]) -> None:
        """Group records by embedding dimension and stack each group into a matrix."""
        self.records = [r for r in records if r.embedding is not None]
        groups: Dict[int, List[ProfileRecord]] = {}
        for r in self.records:
            groups.setdefault(r.dim, []).append(r)

        self._by_dim = {}
        for dim, members in groups.items():
            mat = np.stack([np.asarray(m.embedding, dtype=np.float64).ravel() for m in members], axis=0)
            norms = np.linalg.norm(mat, axis=1)
            self._by_dim[dim] = (members, mat, norms)

    def __len__(self) -> int:
        return len(self.records)

    def score_all(self, query: np.ndarray) -> Tuple[List[ProfileRecord], np.ndarray]:
        """Scores for every dimension-compatible record, in gallery order."""
        q = np.asarray(query, dtype=np.float64).ravel()
        entry = self._by_dim.get(q.shape[0])
        if entry is None:
            return [], np.zeros(0, dtype=np.float64)

        members, mat, norms = entry
        qn = float(np.linalg.norm(q))
        if qn < NORM_EPS:
            return list(members), np.zeros(len(members), dtype=np.float64)

        denom = norms * qn
        valid = norms >= NORM_EPS
        cos = np.zeros(len(members), dtype=np.float64)
        cos[valid] = (mat[valid] @ q) / denom[valid]
        scores = (np.clip(cos, -1.0, 1.0) + 1.0) / 2.0
        scores[~valid] = 0.0
        return list(members), scores

    def find_top_match(self, query: np.ndarray) -> MatchResult:
        members, scores = self.score_all(query)
        if not members:
            return MatchResult(None, 0.0)
        i = int(np.argmax(scores))  # first maximal entry wins ties
        return MatchResult(members[i], float(scores[i]))

    def find_top_two_users_with_margin(self, query: np.ndarray) -> TopTwoResult:
        members, scores = self.score_all(query)
        if not members:
            return TopTwoResult(None, 0.0, None, 0.0, 0.0, None)

        # per-user max, insertion ordered so equal scores keep gallery order
        by_user: Dict[str, float] = {}
        for rec, s in zip(members, scores):
            s = float(s)
            cur = by_user.get(rec.user_id)
            if cur is None or s > cur:
                by_user[rec.user_id] = s

        ranked = sorted(by_user.items(), key=lambda kv: kv[1], reverse=True)
        top1_id, top1_score = ranked[0]
        top2_id, top2_score = ranked[1] if len(ranked) > 1 else (None, 0.0)

        best_profile = None
        for rec, s in zip(members, scores):
            if rec.user_id == top1_id and abs(float(s) - top1_score) < BEST_PROFILE_TOL:
                best_profile = rec
                break

        return TopTwoResult(
            top1_user_id=top1_id,
            top1_score=top1_score,
            top2_user_id=top2_id,
            top2_score=top2_score,
            margin=top1_score - top2_score,
            best_profile_for_top1=best_profile,
        )

    def find_top_match_with_logging(self, query: np.ndarray, threshold: float, tag: str = "match") -> MatchResult:
        """find_top_match plus one log line of norms and one line per candidate."""
        result = self.find_top_match(query)
        if not self.records:
            return result

        q = np.asarray(query, dtype=np.float64).ravel()
        norms = [float(np.linalg.norm(r.embedding)) for r in self.records]
        log.info(
            "%s auth_match_embedding_stats query_norm=%.4f enrolled_norm_min=%.4f enrolled_norm_max=%.4f dim=%d",
            tag, float(np.linalg.norm(q)), min(norms), max(norms), q.shape[0],
        )

        members, scores = self.score_all(q)
        best_so_far = -1.0
        for rec, s in zip(members, scores):
            rank_candidate = float(s) > best_so_far
            if rank_candidate:
                best_so_far = float(s)
            log.debug("%s auth_match_candidate enrolled_id=%s score=%.4f rank_candidate=%s", tag, rec.user_id, s, rank_candidate)

        best_id = result.best_profile.user_id if result.best_profile is not None else ""
        decision = "MATCH" if result.best_profile is not None and result.match_score >= threshold else "NO_MATCH"
        log.info(
            "%s auth_match_best best_id=%s best_score=%.4f threshold=%.4f decision=%s",
            tag, best_id, result.match_score, threshold, decision,
        )
        return result


def find_top_match(query: np.ndarray, records: Sequence[ProfileRecord]) -> MatchResult:
    return EmbeddingMatcher(records).find_top_match(query)


def find_top_two_users_with_margin(query: np.ndarray, records: Sequence[ProfileRecord]) -> TopTwoResult:
    return EmbeddingMatcher(records).find_top_two_users_with_margin(query)
