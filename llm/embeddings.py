"""Text embedding backends."""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import numpy as np

from memory.stores.vector_store import DEFAULT_DIM

logger = logging.getLogger("ame.llm.embeddings")

_TOKEN_RE = re.compile(r"[a-z0-9_]+")


class BaseEmbedder(ABC):
    """Maps texts to fixed-dimension, L2-normalized float32 vectors."""

    dim: int = DEFAULT_DIM

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return an array of shape (len(texts), dim)."""

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class HashingEmbedder(BaseEmbedder):
    """Deterministic feature-hashing embedder that runs fully offline.

    Unigrams and adjacent-word bigrams are hashed into signed buckets, so
    texts sharing vocabulary land close together.
    """

    def __init__(self, dim: int = DEFAULT_DIM) -> None:
        self.dim = dim

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.md5(feature.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "little") % self.dim
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def _vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dim, dtype=np.float32)
        tokens = _TOKEN_RE.findall(text.lower())
        features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]
        for feature in features:
            index, sign = self._bucket(feature)
            vec[index] += sign
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm else vec

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dim), dtype=np.float32)
        return np.vstack([self._vector(text) for text in texts]).astype(np.float32)


class SentenceTransformerEmbedder(BaseEmbedder):
    """sentence-transformers backend, loaded on first use."""

    def __init__(self, model_name: str = "BAAI/bge-small-en-v1.5", dim: int = DEFAULT_DIM) -> None:
        self.model_name = model_name
        self.dim = dim
        self._model: Any = None

    def _load(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
            model_dim = self._model.get_sentence_embedding_dimension()
            if model_dim != self.dim:
                raise ValueError(
                    f"Embedding model {self.model_name} has dimension {model_dim}, store expects {self.dim}"
                )
        return self._model

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dim), dtype=np.float32)
        model = self._load()
        vectors = model.encode(list(texts), convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(vectors, dtype=np.float32)


def build_embedder(config: dict[str, Any]) -> BaseEmbedder:
    """Build the configured embedding backend, defaulting to feature hashing."""
    emb_cfg = config.get("models", {}).get("embedding", {})
    backend = emb_cfg.get("backend", "hashing")
    dim = int(emb_cfg.get("dim", DEFAULT_DIM))
    if backend == "sentence-transformers":
        return SentenceTransformerEmbedder(
            model_name=emb_cfg.get("model", "BAAI/bge-small-en-v1.5"), dim=dim
        )
    return HashingEmbedder(dim=dim)
