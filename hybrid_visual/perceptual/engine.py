"""Perceptual comparator: CNN embeddings + cosine similarity.

Lifecycle:
    - Construction is cheap; nothing is loaded
    - initialize() / is_available() / compare() trigger a one-time load
      through the loader tiers (OnceCell: concurrent first callers wait for
      a single load)
    - If every tier fails the engine stays unavailable for its lifetime;
      compare() then returns PerceptualResult.failure(...) without retrying
    - close() drops the model; the engine is unavailable afterwards

Errors never escape compare() except for invalid arguments and undecodable
inputs: load failures and inference errors come back as structured results.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from ..errors import ModelLoadError
from ..raster import ImageSource, RasterImage, as_raster
from ..results import PerceptualResult
from ..utils import hashing, profiler
from ..utils.once import OnceCell
from ..utils.validators import PerceptualConfig
from .loaders import ModelLoader, build_default_loaders, build_feature_extractor
from .pipeline import build_transform, cosine_similarity, to_batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ModelState:
    model: Optional[nn.Module]
    loader: Optional[str]
    error: Optional[str]


class PerceptualEngine:
    """Embedding-based image similarity.

    Parameters
    ----------
    config : PerceptualConfig, optional
        Loader tiers, preprocessing constants and default threshold
    loaders : iterable of ModelLoader, optional
        Replaces the default tiers (tests, custom model sources)
    """

    def __init__(self, config: Optional[PerceptualConfig] = None, loaders: Optional[Iterable[ModelLoader]] = None):
        self.config = config or PerceptualConfig()
        self._loaders: List[ModelLoader] = (
            list(loaders) if loaders is not None else build_default_loaders(self.config)
        )
        self._transform = build_transform(self.config.input_size, self.config.mean, self.config.std)
        self._device = torch.device(self.config.device)
        self._state: OnceCell[_ModelState] = OnceCell()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _load(self) -> _ModelState:
        errors = []
        for loader in self._loaders:
            try:
                with profiler.timer(f"perceptual.load.{loader.name}") as sw:
                    model = build_feature_extractor(loader.load(), str(self._device))
            except ModelLoadError as e:
                logger.info("Model loader '%s' unavailable: %s", loader.name, e)
                errors.append(f"{loader.name}: {e}")
                continue
            except Exception as e:
                # Corrupt checkpoints and injected loaders fail in arbitrary ways
                logger.warning("Model loader '%s' failed: %s: %s", loader.name, type(e).__name__, e)
                errors.append(f"{loader.name}: {type(e).__name__}: {e}")
                continue
            logger.info("Perceptual model loaded via '%s' in %.2f s", loader.name, sw.elapsed)
            return _ModelState(model=model, loader=loader.name, error=None)

        if errors:
            error = "No perceptual model available (" + "; ".join(errors) + ")"
        else:
            error = "No perceptual model loaders configured"
        logger.warning("%s. AI comparison disabled; pixel decisions only.", error)
        return _ModelState(model=None, loader=None, error=error)

    def _current(self) -> _ModelState:
        if self._closed:
            return _ModelState(model=None, loader=None, error="Perceptual engine is closed")
        return self._state.get_or_init(self._load)

    def initialize(self) -> bool:
        """Load the model once. Returns availability; safe to call repeatedly."""
        return self._current().model is not None

    def is_available(self) -> bool:
        return self.initialize()

    @property
    def init_error(self) -> Optional[str]:
        """Why the engine is unavailable, None when loaded or not yet initialized."""
        if self._closed:
            return "Perceptual engine is closed"
        state = self._state.get()
        return state.error if state is not None else None

    @property
    def loader_name(self) -> Optional[str]:
        state = self._state.get()
        return state.loader if state is not None else None

    def close(self) -> None:
        """Release the model. Idempotent."""
        self._closed = True
        state = self._state.take()
        if state is not None and state.model is not None:
            logger.debug("Releasing perceptual model (%s)", state.loader)
            if self._device.type == "cuda":
                torch.cuda.empty_cache()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def embed(self, images: Iterable[RasterImage]) -> np.ndarray:
        """Embeddings for a batch of images, (N, D) float32.

        Raises
        ------
        ModelLoadError
            Engine unavailable
        """
        state = self._current()
        if state.model is None:
            raise ModelLoadError(state.error or "Perceptual model unavailable")
        batch = to_batch(list(images), self._transform).to(self._device)
        with torch.inference_mode():
            features = state.model(batch)
        return features.reshape(features.shape[0], -1).float().cpu().numpy()

    def _embed_pair(self, baseline: RasterImage, actual: RasterImage) -> Tuple[np.ndarray, np.ndarray]:
        features = self.embed([baseline, actual])
        return features[0], features[1]

    def compare(
        self,
        baseline: ImageSource,
        actual: ImageSource,
        threshold: Optional[float] = None,
    ) -> PerceptualResult:
        """Cosine similarity of the two embeddings.

        Parameters
        ----------
        baseline, actual : ImageSource
            Any size; both are resized to input_size
        threshold : float, optional
            matched = similarity >= threshold; default config.similarity_threshold

        Returns
        -------
        PerceptualResult
            error is set when the engine is unavailable or inference failed

        Raises
        ------
        ValueError
            threshold outside [-1, 1]
        ImageDecodeError
            Input bytes cannot be decoded
        """
        thr = self.config.similarity_threshold if threshold is None else threshold
        if not -1.0 <= thr <= 1.0:
            raise ValueError(f"threshold must be in [-1, 1], got {thr}")

        state = self._current()
        if state.model is None:
            return PerceptualResult.failure(thr, state.error or "Perceptual model unavailable")

        base_img = as_raster(baseline)
        act_img = as_raster(actual)

        try:
            with profiler.timer("perceptual.compare") as sw:
                emb_base, emb_act = self._embed_pair(base_img, act_img)
                similarity = cosine_similarity(emb_base, emb_act)
        except (RuntimeError, ValueError, ModelLoadError) as e:
            logger.error("Perceptual comparison failed: %s", e)
            return PerceptualResult.failure(thr, f"{type(e).__name__}: {e}")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Embeddings: baseline=%s actual=%s (%.1f ms)",
                hashing.short_digest(hashing.sha256_array(emb_base)),
                hashing.short_digest(hashing.sha256_array(emb_act)),
                sw.elapsed_ms,
            )

        result = PerceptualResult(
            similarity=similarity,
            matched=similarity >= thr,
            threshold=thr,
            embedding_size=int(emb_base.size),
        )
        logger.info("%s", result.summary())
        return result

    def __repr__(self) -> str:
        status = "closed" if self._closed else (self.loader_name or ("failed" if self.init_error else "lazy"))
        return f"PerceptualEngine({status}, threshold={self.config.similarity_threshold})"
