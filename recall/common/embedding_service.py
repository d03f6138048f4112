"""
Embedding Service

On-device embedding generation using fastembed, plus the numpy cosine
helpers shared by the fragment store.

The model is loaded lazily on first use. Any failure to load or embed is
reported to the caller, which treats it as "no embedding" and falls back to
keyword retrieval.
"""

import logging
import threading
from typing import List, Optional
import numpy as np

logger = logging.getLogger("recall.embedding")

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Cosine similarity between two vectors.

    Zero vectors have similarity 0.0.

    Raises:
        ValueError: On dimension mismatch
    """
    v1 = np.asarray(vec1, dtype=np.float64)
    v2 = np.asarray(vec2, dtype=np.float64)
    if v1.shape != v2.shape:
        raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

    denom = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(v1, v2) / denom, -1.0, 1.0))


def batch_cosine_similarity(query_vec: List[float], vectors: List[List[float]]) -> List[float]:
    """
    Cosine similarity between a query and each row of ``vectors``.

    Args:
        query_vec: Query embedding vector
        vectors: Embedding vectors to compare against (same dimension)

    Returns:
        List of similarity scores in [-1.0, 1.0]
    """
    if not vectors:
        return []
    if len(vectors) == 1:
        return [cosine_similarity(query_vec, vectors[0])]

    query =np.asarray(query_vec, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Vector dimension mismatch: {matrix.shape} vs {query.shape}")

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(norms > 0, dots / norms, 0.0)

    return np.clip(similarities, -1.0, 1.0).tolist()


class EmbeddingService:
    """
    Query/fragment embedding adapter.

    Only the ``femb`` (fastembed) mode is supported; other modes leave the
    service unavailable, which callers handle as "no embedding".
    """

    def __init__(self, mode: str = "femb", model: str = DEFAULT_MODEL):
        self._mode = mode
        self._model_name = model
        self._model = None
        self._load_failed = False
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def is_available(self) -> bool:
        """Check if the backend can be (or has been) loaded"""
        return self._mode == "femb" and not self._load_failed

    def _load(self):
        with self._lock:
            if self._model is not None:
                return self._model
            if not self.is_available:
                raise RuntimeError(f"Embedding mode '{self._mode}' is not available")
            try:
                from fastembed import TextEmbedding
                self._model = TextEmbedding(model_name=self._model_name)
                logger.info("Loaded embedding model %s", self._model_name)
            except Exception as e:
                self._load_failed = True
                logger.warning("Could not load embedding model %s: %s", self._model_name, e)
                raise RuntimeError(f"Embedding model unavailable: {e}") from e
            return self._model

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors
        """
        if not texts:
            return []

        model = self._load()
        return [np.asarray(vec, dtype=np.float32).tolist() for vec in model.embed(texts)]

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Raises:
            ValueError: If text is empty
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        return self.embed([text])[0]


# Module-level singleton getter
_service_instance: Optional[EmbeddingService] = None


def get_embedding_service(mode: str = "femb", model: str = DEFAULT_MODEL) -> EmbeddingService:
    """Get the shared EmbeddingService instance."""
    global _service_instance

    if _service_instance is None:
        _service_instance = EmbeddingService(mode=mode, model=model)

    return _service_instance
