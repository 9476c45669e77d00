from __future__ import annotations

from typing import Optional

from faceauth.core.models import ErrorCode


class FaceAuthError(Exception):
    """Base for every failure raised by the engine and its collaborators."""

    error_code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, where: Optional[str] = None, error_code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.where = where
        if error_code is not None:
            self.error_code = error_code

    def __str__(self) -> str:
        if self.where:
            return f"[{self.error_code.value}] {self.message} (at {self.where})"
        return f"[{self.error_code.value}] {self.message}"


class DetectionError(FaceAuthError):
    error_code = ErrorCode.DETECTION_FAIL


class EmbeddingError(FaceAuthError):
    """
    Raised by the embedding service. `service_code` narrows the failure:
    PRECHECK_FAIL, INPUT_SHAPE_MISMATCH, INFER_FAIL or EMBEDDER_CLOSED.
    """
    error_code = ErrorCode.EMBEDDING_FAIL

    PRECHECK_FAIL = "PRECHECK_FAIL"
    INPUT_SHAPE_MISMATCH = "INPUT_SHAPE_MISMATCH"
    INFER_FAIL = "INFER_FAIL"
    EMBEDDER_CLOSED = "EMBEDDER_CLOSED"

    def __init__(self, message: str, service_code: str = INFER_FAIL, where: Optional[str] = None):
        super().__init__(message, where=where)
        self.service_code = service_code or self.INFER_FAIL


class StorageError(FaceAuthError):
    error_code = ErrorCode.STORAGE_FAIL


class CryptoError(FaceAuthError):
    error_code = ErrorCode.CRYPTO_FAIL


class LivenessError(FaceAuthError):
    error_code = ErrorCode.LIVENESS_FAIL


def map_error(exc: Optional[BaseException]) -> ErrorCode:
    """Map any exception to an ErrorCode, following the __cause__ chain."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, FaceAuthError):
            return exc.error_code
        seen.add(id(exc))
        exc = exc.__cause__
    return ErrorCode.UNKNOWN
