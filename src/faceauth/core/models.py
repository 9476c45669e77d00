from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np


class ProfileType(str, Enum):
    NORMAL = "NORMAL"
    HELMET = "HELMET"


class ErrorCode(str, Enum):
    DETECTION_FAIL = "DETECTION_FAIL"
    EMBEDDING_FAIL = "EMBEDDING_FAIL"
    STORAGE_FAIL = "STORAGE_FAIL"
    CRYPTO_FAIL = "CRYPTO_FAIL"
    LIVENESS_FAIL = "LIVENESS_FAIL"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


class FailureReason(str, Enum):
    """User-facing authentication outcomes."""
    FAIL_QUALITY = "FAIL_QUALITY"
    FAIL_LIVENESS = "FAIL_LIVENESS"
    FAIL_MATCH = "FAIL_MATCH"
    FAIL_LOW_MARGIN = "FAIL_LOW_MARGIN"
    FAIL_CAMERA = "FAIL_CAMERA"
    FAIL_INTERNAL = "FAIL_INTERNAL"


class ResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class BBox:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return max(0.0, float(self.right) - float(self.left))

    @property
    def height(self) -> float:
        return max(0.0, float(self.bottom) - float(self.top))

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (float(self.left) + float(self.right)) / 2.0, (float(self.top) + float(self.bottom)) / 2.0


@dataclass(frozen=True)
class Detection:
    """One face as reported by the detector for a single frame."""
    bbox: BBox
    tracking_id: Optional[int] = None
    yaw: float = 0.0
    pitch: float = 0.0
    left_eye_open: Optional[float] = None
    right_eye_open: Optional[float] = None
    landmarks: Tuple[Tuple[float, float], ...] = ()


@dataclass(frozen=True, eq=False)
class Frame:
    """A decoded camera frame plus the detector output for it."""
    width: int
    height: int
    detections: Tuple[Detection, ...] = ()
    image: Optional[np.ndarray] = None
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class FrameSnapshot:
    faces_count: int
    roi_candidate_count: int
    selected_tracking_id: Optional[int]
    bbox_area_ratio: float
    used_yaw: float
    inside_guide: bool
    selected_face: Optional[Detection]

    @property
    def has_selection(self) -> bool:
        return self.selected_face is not None


EMPTY_SNAPSHOT = FrameSnapshot(0, 0, None, 0.0, 0.0, False, None)


@dataclass(frozen=True, eq=False)
class ProfileRecord:
    id: int
    user_id: str
    profile_type: ProfileType
    embedding: np.ndarray
    quality_score: float = 1.0
    created_at: datetime = field(default_factory=datetime.now)
    model_version: str = ""
    active: bool = True

    @property
    def dim(self) -> int:
        return int(self.embedding.shape[0])

    def __repr__(self) -> str:
        return f"ProfileRecord(id={self.id}, user_id={self.user_id}, type={self.profile_type.value}, dim={self.dim})"


@dataclass(frozen=True)
class MatchResult:
    best_profile: Optional[ProfileRecord]
    match_score: float


@dataclass(frozen=True)
class TopTwoResult:
    top1_user_id: Optional[str]
    top1_score: float
    top2_user_id: Optional[str]
    top2_score: float
    margin: float
    best_profile_for_top1: Optional[ProfileRecord]


@dataclass(frozen=True)
class AuthResult:
    status: ResultStatus
    matched_user_id: Optional[str] = None
    score: float = 0.0
    failure_reason: Optional[FailureReason] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is ResultStatus.SUCCESS


@dataclass(frozen=True)
class EnrollmentResult:
    user_id: str
    status: ResultStatus
    profile_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ResultStatus.SUCCESS


@dataclass(frozen=True)
class SessionEvent:
    """Immutable notification handed to session listeners on each state change."""
    state: str
    reason: Optional[str] = None
    detail: Any = None
