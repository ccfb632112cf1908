"""
Embedding Service

Wraps the Embedding Provider behind an async interface.
Uses fastembed by default for on-device embedding generation; the OpenAI
embeddings API is available as a remote provider.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

import numpy as np

from .errors import InternalInconsistency, ProviderUnavailable

logger = logging.getLogger("sqlguard.common.embedding_service")


class EmbeddingService:
    """
    Embedding provider for the knowledge retriever.

    One instance per process, constructed explicitly and injected where it is
    needed. The vector dimension is learned from the first successful call
    (or given up front) and every later vector is checked against it.
    """

    def __init__(
        self,
        mode: str = "femb",
        model: str = "sentence-transformers/all-MiniLM-L6-v2",
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        self._mode = (mode or "femb").lower()
        self._model = model
        self._dimension = dimension
        self._backend = None
        self._init_backend(api_key)

    def _init_backend(self, api_key: Optional[str]) -> None:
        """Initialize the underlying provider client"""
        if self._mode == "femb":
            try:
                from fastembed import TextEmbedding

                self._backend = TextEmbedding(model_name=self._model)
                logger.info("Initialized fastembed with model=%s", self._model)
            except ImportError:
                logger.warning("fastembed package not installed, embeddings unavailable")
            except Exception as e:
                logger.warning("Failed to initialize fastembed model %s: %s", self._model, e)
            return

        if self._mode == "openai":
            if not api_key:
                logger.info("OpenAI API key not provided, embeddings unavailable")
                return
            try:
                from openai import AsyncOpenAI

                self._backend = AsyncOpenAI(api_key=api_key)
                logger.info("Initialized OpenAI embeddings with model=%s", self._model)
            except ImportError:
                logger.warning("openai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize OpenAI embeddings: %s", e)
            return

        logger.warning("Unsupported embedding mode: %s", self._mode)

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._backend is not None

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> Optional[int]:
        """Vector dimension, once known"""
        return self._dimension

    async def _embed_raw(self, texts: List[str]) -> List[List[float]]:
        if self._mode == "femb":
            # fastembed is CPU-bound and synchronous
            vectors = await asyncio.to_thread(lambda: list(self._backend.embed(texts)))
            return [np.asarray(v, dtype=float).tolist() for v in vectors]

        response = await self._backend.embeddings.create(model=self._model, input=texts)
        return [item.embedding for item in response.data]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors, all of the provider's fixed dimension

        Raises:
            ProviderUnavailable: no provider is configured
            InternalInconsistency: the provider returned a vector of the wrong size
        """
        if not self.is_available:
            raise ProviderUnavailable("Embedding provider not initialized")

        if not texts:
            return []

        embeddings = await self._embed_raw(texts)
        if len(embeddings) != len(texts):
            raise InternalInconsistency(
                f"Provider returned {len(embeddings)} vectors for {len(texts)} texts"
            )

        for vector in embeddings:
            self._check_dimension(len(vector))
        return embeddings

    async def embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        if not text:
            raise ValueError("Cannot embed empty text")

        embeddings = await self.embed([text])
        return embeddings[0]

    def _check_dimension(self, size: int) -> None:
        if self._dimension is None:
            self._dimension = size
        elif size != self._dimension:
            raise InternalInconsistency(
                f"Embedding dimension mismatch: expected {self._dimension}, got {size}"
            )


def batch_cosine_similarity(
    query_vec: Sequence[float],
    matrix: np.ndarray,
) -> np.ndarray:
    """
    Cosine similarity between a query and every row of a matrix.

    Rows with zero norm score 0.0. Scores are clamped to 0.0 .. 1.0.

    Raises:
        InternalInconsistency: the query and matrix dimensions differ
    """
    query = np.asarray(query_vec, dtype=float)
    if matrix.size == 0:
        return np.zeros(0)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise InternalInconsistency(
            f"Vector dimension mismatch: query {query.shape[0]} vs matrix {matrix.shape}"
        )

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(norms > 0, dots / np.where(norms > 0, norms, 1.0), 0.0)

    return np.clip(similarities, 0.0, 1.0)
