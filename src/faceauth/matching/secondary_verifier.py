from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from faceauth.config import SecondaryConfig
from faceauth.matching.embedding_matcher import cosine_similarity_norm
from faceauth.matching.template_cache import TemplateCache


class SecondaryDecision(str, Enum):
    ACCEPT = "ACCEPT"
    UNCERTAIN = "UNCERTAIN"
    SECONDARY_FAIL = "SECONDARY_FAIL"


@dataclass(frozen=True)
class SecondaryResult:
    decision: SecondaryDecision
    centroid_score: float  # NaN when no centroid could be scored

    @property
    def computed(self) -> bool:
        return not math.isnan(self.centroid_score)


def verify(
    query: Optional[np.ndarray],
    top1_user_id: Optional[str],
    profile_type,
    cache: Optional[TemplateCache],
    t2: float,
    m2: float,
    m_ambiguous: float,
    margin: float,
) -> SecondaryResult:
    """
    Centroid-based adjudication for gray-zone matches.

    The ambiguity check runs before the accept check: when two users are too
    close, no centroid score can force an accept.
    """
    if query is None or cache is None or top1_user_id is None:
        return SecondaryResult(SecondaryDecision.SECONDARY_FAIL, float("nan"))

    q = np.asarray(query).ravel()
    centroid = cache.get_centroid(profile_type, top1_user_id)
    if centroid is None or centroid.shape[0] != q.shape[0]:
        return SecondaryResult(SecondaryDecision.SECONDARY_FAIL, float("nan"))

    score = cosine_similarity_norm(q, centroid)

    if margin < m_ambiguous:
        return SecondaryResult(SecondaryDecision.UNCERTAIN, score)
    if score >= t2 and margin >= m2:
        return SecondaryResult(SecondaryDecision.ACCEPT, score)
    return SecondaryResult(SecondaryDecision.SECONDARY_FAIL, score)


class SecondaryVerifier:
    """verify() bound to configured thresholds."""

    def __init__(self, cfg: SecondaryConfig):
        self.cfg = cfg

    def verify(self, query, top1_user_id, profile_type, cache, margin: float) -> SecondaryResult:
        return verify(query, top1_user_id, profile_type, cache, self.cfg.t2, self.cfg.m2, self.cfg.m_ambiguous, margin)
