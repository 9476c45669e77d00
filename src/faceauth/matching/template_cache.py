from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from faceauth.core.models import ProfileRecord, ProfileType

log = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


def _key(profile_type, user_id) -> CacheKey:
    t = profile_type.value if isinstance(profile_type, ProfileType) else str(profile_type or "")
    return t, str(user_id or "")


class TemplateCache:
    """
    Gallery templates grouped by (profile type, user) with lazily computed
    centroids. The whole cache is rebuilt by set_profiles; nothing is updated
    incrementally.
    """

    def __init__(self, embedding_dim: int):
        self.embedding_dim = int(embedding_dim)
        self._templates: Dict[CacheKey, List[ProfileRecord]] = {}
        self._centroids: Dict[CacheKey, np.ndarray] = {}

    def set_profiles(self, profiles: Optional[Sequence[ProfileRecord]]) -> None:
        self._templates.clear()
        self._centroids.clear()
        skipped = 0
        for p in profiles or []:
            if p is None or p.embedding is None or p.dim != self.embedding_dim:
                skipped += 1
                continue
            self._templates.setdefault(_key(p.profile_type, p.user_id), []).append(p)
        if skipped:
            log.warning("TemplateCache skipped %d profile(s) with dim != %d", skipped, self.embedding_dim)

    def get_templates(self, profile_type, user_id) -> List[ProfileRecord]:
        return list(self._templates.get(_key(profile_type, user_id), []))

    def get_centroid(self, profile_type, user_id) -> Optional[np.ndarray]:
        k = _key(profile_type, user_id)
        cached = self._centroids.get(k)
        if cached is not None:
            return cached

        members = self._templates.get(k)
        if not members:
            return None

        centroid = np.mean(np.stack([np.asarray(m.embedding, dtype=np.float32) for m in members]), axis=0)
        centroid.setflags(write=False)
        self._centroids[k] = centroid
        return centroid

    def keys(self) -> List[CacheKey]:
        return list(self._templates.keys())
