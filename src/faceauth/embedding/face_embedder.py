from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import numpy as np
import torch

from faceauth.config import EmbeddingConfig
from faceauth.core.errors import EmbeddingError

log = logging.getLogger(__name__)


class FaceEmbedder:
    """
    Maps an aligned input_size x input_size RGB face to a `dim` float32 vector.

    The network is either passed in (any torch.nn.Module taking NCHW float
    input) or loaded as TorchScript from `cfg.model_path`.
    """

    def __init__(self, cfg: EmbeddingConfig, model: Optional[torch.nn.Module] = None, device: Optional[torch.device] = None):
        self.cfg = cfg
        self.device = device or torch.device("cuda:0" if torch.cuda.is_available() else "cpu")
        self._lock = threading.Lock()
        self._closed = False

        if model is None:
            if not cfg.model_path:
                raise EmbeddingError("no embedding model configured", EmbeddingError.PRECHECK_FAIL, where="FaceEmbedder.__init__")
            try:
                model = torch.jit.load(cfg.model_path, map_location=self.device)
            except (RuntimeError, OSError, ValueError) as e:
                raise EmbeddingError(f"failed to load model: {e}", EmbeddingError.PRECHECK_FAIL, where="FaceEmbedder.__init__") from e
            log.info("Embedding model loaded: %s (%s)", cfg.model_path, cfg.model_version)

        self.model = model.eval().to(self.device)

    @property
    def model_version(self) -> str:
        return self.cfg.model_version

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self.model = None

    def _precheck(self, image: Any) -> np.ndarray:
        if image is None:
            raise EmbeddingError("input image is None", EmbeddingError.PRECHECK_FAIL, where="FaceEmbedder.embed")
        arr = np.asarray(image)
        size = self.cfg.input_size
        if arr.ndim != 3 or arr.shape[0] != size or arr.shape[1] != size or arr.shape[2] < 3:
            raise EmbeddingError(
                f"expected {size}x{size}x3 input, got {tuple(arr.shape)}",
                EmbeddingError.INPUT_SHAPE_MISMATCH,
                where="FaceEmbedder.embed",
            )
        return arr[:, :, :3]

    def _to_tensor(self, arr: np.ndarray) -> torch.Tensor:
        x = (arr.astype(np.float32) - float(self.cfg.input_mean)) / float(self.cfg.input_std)
        # HWC -> NCHW
        return torch.from_numpy(np.ascontiguousarray(x.transpose(2, 0, 1))).unsqueeze(0).to(self.device)

    @torch.inference_mode()
    def embed(self, image: Any) -> np.ndarray:
        with self._lock:
            if self._closed or self.model is None:
                raise EmbeddingError("embedder is closed", EmbeddingError.EMBEDDER_CLOSED, where="FaceEmbedder.embed")

            x = self._to_tensor(self._precheck(image))
            try:
                out = self.model(x)
            except (RuntimeError, ValueError, TypeError) as e:
                raise EmbeddingError(f"inference failed: {e}", EmbeddingError.INFER_FAIL, where="FaceEmbedder.embed") from e

        emb = out.reshape(-1).detach().cpu().numpy().astype(np.float32)
        if emb.shape[0] != self.cfg.dim:
            raise EmbeddingError(
                f"model output dim {emb.shape[0]} != {self.cfg.dim}",
                EmbeddingError.INPUT_SHAPE_MISMATCH,
                where="FaceEmbedder.embed",
            )
        if not np.all(np.isfinite(emb)):
            raise EmbeddingError("model produced non-finite values", EmbeddingError.INFER_FAIL, where="FaceEmbedder.embed")

        if not self.cfg.output_is_normalized:
            emb = emb / (np.linalg.norm(emb) + 1e-8)
        return emb
