import json
import logging
import re
from typing import Any, Dict, Optional

from faceauth.core.errors import FaceAuthError, map_error

log = logging.getLogger(__name__)

_FLOAT_ARRAY = re.compile(r"\[-?\d+\.\d+(,\s*-?\d+\.\d+)+\]")
MASK = "[EMBEDDING_MASKED]"


def mask_embeddings(text: str) -> str:
    return _FLOAT_ARRAY.sub(MASK, text)


class EmbeddingMaskFilter(logging.Filter):
    """Rewrites records so float arrays never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        masked = mask_embeddings(msg)
        if masked != msg:
            record.msg = masked
            record.args = ()
        return True


def install_embedding_mask(logger: Optional[logging.Logger] = None) -> None:
    """Attach the mask to every handler of `logger` (root by default)."""
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, EmbeddingMaskFilter) for f in handler.filters):
            handler.addFilter(EmbeddingMaskFilter())


def log_auth_error(exc: BaseException, where: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Emit one `auth_error` record for a failure. Returns the payload that was
    logged; raising or failing the session stays with the caller.
    """
    code = map_error(exc)
    payload: Dict[str, Any] = {
        "event": "auth_error",
        "errorCode": code.value,
        "message": str(getattr(exc, "message", "") or exc) or type(exc).__name__,
    }
    for k, v in (context or {}).items():
        if v is not None:
            payload[k] = v
    if where:
        payload["where"] = where
    if isinstance(exc, FaceAuthError) and exc.where:
        payload["where"] = exc.where

    log.error(json.dumps(payload, default=str))
    return payload
