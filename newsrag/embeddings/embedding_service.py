"""
Embedding Service

Generates text embeddings through Ollama (via langchain-ollama) and falls
back to a deterministic, hash-derived pseudo-embedding when the provider
cannot produce a usable vector.

Fallback vectors carry no semantic meaning, but identical text always maps
to the identical vector.
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from langchain_ollama import OllamaEmbeddings

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingStats:
    """Counters for remote calls versus local fallbacks."""
    remote_calls: int = 0
    fallbacks: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


def _hash_text(text: str) -> int:
    """32-bit signed rolling hash (h = h * 31 + code point, wrapped)."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


class EmbeddingService:
    """
    Embedding provider adapter with a deterministic local fallback.

    Failures are logged and never raised: every call returns vectors of the
    configured dimension.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: Optional[str] = "http://localhost:11434",
        dimension: int = 768,
        timeout: Optional[float] = None,
        client: Optional[Any] = None
    ):
        """
        Initialize the embedding service.

        Args:
            model: Ollama embedding model name
            base_url: Ollama base URL; None or empty disables the remote provider
            dimension: Length of every returned vector
            timeout: Seconds before an Ollama request is abandoned (None: no limit)
            client: Pre-built embeddings client exposing ``aembed_query`` and
                ``aembed_documents`` (default: OllamaEmbeddings)
        """
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")

        self.model = model
        self.base_url = base_url or None
        self.dimension = dimension
        self.stats = EmbeddingStats()

        if client is not None:
            self._client = client
        elif self.base_url:
            self._client = OllamaEmbeddings(
                model=model,
                base_url=self.base_url,
                client_kwargs={'timeout': timeout}
            )
        else:
            self._client = None
            logger.warning("No embedding provider configured, using local embeddings only")

    @property
    def is_remote_enabled(self) -> bool:
        """Whether a remote embedding provider is configured."""
        return self._client is not None

    def local_embedding(self, text: str) -> List[float]:
        """
        Deterministic pseudo-embedding derived from a hash of the text.

        Args:
            text: Input text

        Returns:
            Vector of ``dimension`` floats in [-0.1, 0.1]
        """
        h = _hash_text(text)
        return [math.sin(h + i) * 0.1 for i in range(self.dimension)]

    def _is_valid(self, vector: Any) -> bool:
        try:
            return len(vector) == self.dimension
        except TypeError:
            return False

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector (remote when possible, local otherwise)
        """
        if self._client is None:
            self.stats.fallbacks += 1
            return self.local_embedding(text)

        try:
            vector = await self._client.aembed_query(text)
            self.stats.remote_calls += 1
        except Exception as e:
            logger.warning(f"Embedding provider failed, using local embedding: {e}")
            self.stats.fallbacks += 1
            return self.local_embedding(text)

        if not self._is_valid(vector):
            logger.warning(
                f"Embedding provider returned a malformed vector "
                f"(expected {self.dimension} dimensions), using local embedding"
            )
            self.stats.fallbacks += 1
            return self.local_embedding(text)

        return [float(x) for x in vector]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed several texts in one provider call.

        A failed batch falls back to local embeddings for every text; a
        malformed vector inside an otherwise good batch is replaced on its own.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in order
        """
        if not texts:
            return []

        if self._client is None:
            self.stats.fallbacks += len(texts)
            return [self.local_embedding(text) for text in texts]

        try:
            vectors = await self._client.aembed_documents(list(texts))
            self.stats.remote_calls += 1
        except Exception as e:
            logger.warning(
                f"Batch embedding failed for {len(texts)} texts, using local embeddings: {e}"
            )
            self.stats.fallbacks += len(texts)
            return [self.local_embedding(text) for text in texts]

        if vectors is None or len(vectors) != len(texts):
            logger.warning("Embedding provider returned the wrong number of vectors, using local embeddings")
            self.stats.fallbacks += len(texts)
            return [self.local_embedding(text) for text in texts]

        results = []
        for text, vector in zip(texts, vectors):
            if self._is_valid(vector):
                results.append([float(x) for x in vector])
            else:
                self.stats.fallbacks += 1
                results.append(self.local_embedding(text))
        return results

    def __repr__(self) -> str:
        return (
            f"EmbeddingService(model={self.model!r}, "
            f"remote={self.is_remote_enabled}, dimension={self.dimension})"
        )
