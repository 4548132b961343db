"""
Vector Index

Async adapter over a vector backend (FAISS or ChromaDB). Tracks whether the
backend is reachable with an explicit state machine, converts distances into
similarity scores, and substitutes a fallback result on the read path so the
query pipeline keeps answering when the index is down or empty.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from ..embeddings.embedding_service import EmbeddingService
from ..models import ChunkMetadata, DocumentChunk, SearchResult

logger = logging.getLogger(__name__)


class IndexState(Enum):
    """Reachability of the vector backend."""
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class IndexUnavailableError(Exception):
    """Raised when a write is attempted while the vector index is unreachable."""
    pass


def distance_to_score(distance: float) -> float:
    """Convert a cosine distance into a similarity score clamped to [0, 1]."""
    return max(0.0, min(1.0, 1.0 - distance))


class VectorIndex:
    """
    Vector index adapter.

    Features:
    - Lazy, idempotent initialization serialized on an asyncio lock
    - Fallback search result instead of errors on the read path
    - Blocking backend calls run in worker threads
    """

    def __init__(
        self,
        backend: Any,
        embedding_service: EmbeddingService,
        dimension: int = 768,
        default_top_k: int = 5
    ):
        """
        Initialize the adapter.

        Args:
            backend: Object implementing connect/add/query/count/reset/describe
            embedding_service: Service used to embed query text
            dimension: Required embedding length for stored chunks
            default_top_k: Results returned when ``search`` gets no top_k
        """
        self.backend = backend
        self.embedding_service = embedding_service
        self.dimension = dimension
        self.default_top_k = default_top_k

        self._state = IndexState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is IndexState.READY

    async def initialize(self) -> bool:
        """
        Connect to the backend unless already connected.

        Returns:
            True if the index is ready, False if it is unavailable
        """
        if self._state is IndexState.READY:
            return True

        async with self._init_lock:
            # Another caller may have finished while we waited
            if self._state is IndexState.READY:
                return True

            try:
                await asyncio.to_thread(self.backend.connect)
            except Exception as e:
                self._state = IndexState.UNAVAILABLE
                logger.error(f"Vector index unavailable: {e}")
                return False

            self._state = IndexState.READY
            logger.info("Vector index initialized")
            return True

    async def _ensure_writable(self) -> None:
        if not await self.initialize():
            raise IndexUnavailableError("Vector index is unavailable")

    def _validate_chunks(self, chunks: List[DocumentChunk]) -> None:
        seen = set()
        for chunk in chunks:
            if chunk.embedding is None or len(chunk.embedding) != self.dimension:
                got = 0 if chunk.embedding is None else len(chunk.embedding)
                raise ValueError(
                    f"Chunk {chunk.id} has embedding dimension {got}, "
                    f"expected {self.dimension}"
                )
            if chunk.id in seen:
                raise ValueError(f"Duplicate chunk id in batch: {chunk.id}")
            seen.add(chunk.id)

    async def add_one(self, chunk: DocumentChunk) -> None:
        """
        Store a single chunk.

        Raises:
            IndexUnavailableError: If the index cannot be reached
            ValueError: If the chunk is malformed or its id already exists
        """
        await self.add_batch([chunk])

    async def add_batch(self, chunks: List[DocumentChunk]) -> None:
        """
        Store several chunks in one backend call.

        Args:
            chunks: Chunks carrying embeddings of the configured dimension

        Raises:
            IndexUnavailableError: If the index cannot be reached
            ValueError: If a chunk is malformed or an id is duplicated
        """
        if not chunks:
            return

        await self._ensure_writable()
        self._validate_chunks(chunks)

        ids = [chunk.id for chunk in chunks]
        embeddings = [list(chunk.embedding) for chunk in chunks]
        texts = [chunk.text for chunk in chunks]
        metadatas = []
        for chunk in chunks:
            metadata = chunk.metadata.to_dict()
            metadata['article_id'] = chunk.article_id
            metadatas.append(metadata)

        try:
            await asyncio.to_thread(self.backend.add, ids, embeddings, texts, metadatas)
        except ValueError:
            raise
        except Exception as e:
            self._state = IndexState.UNAVAILABLE
            logger.error(f"Failed to add {len(chunks)} chunks: {e}")
            raise

        logger.debug(f"Added {len(chunks)} chunks to vector index")

    async def search(self, query_text: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """
        Retrieve the passages most similar to ``query_text``.

        Never raises: when the index is unavailable, empty, or fails mid-query
        a single fallback result is returned instead.

        Args:
            query_text: Natural-language query
            top_k: Maximum number of results (default: ``default_top_k``)

        Returns:
            Results ordered by decreasing score
        """
        if top_k is None:
            top_k = self.default_top_k

        if not await self.initialize():
            logger.warning("Vector index not ready, returning fallback result")
            return [SearchResult.fallback()]

        try:
            if await asyncio.to_thread(self.backend.count) == 0:
                logger.warning("Vector index is empty, returning fallback result")
                return [SearchResult.fallback()]

            embedding = await self.embedding_service.embed(query_text)
            matches = await asyncio.to_thread(self.backend.query, embedding, top_k)
        except Exception as e:
            self._state = IndexState.UNAVAILABLE
            logger.error(f"Vector search failed, returning fallback result: {e}")
            return [SearchResult.fallback()]

        results = []
        for chunk_id, text, distance, metadata in matches:
            metadata = dict(metadata or {})
            article_id = metadata.pop('article_id', None) or chunk_id
            results.append(SearchResult(
                article_id=article_id,
                text=text,
                score=distance_to_score(distance),
                metadata=ChunkMetadata.from_dict(metadata),
            ))

        results.sort(key=lambda result: result.score, reverse=True)
        logger.debug(f"Retrieved {len(results)} results for query")
        return results

    async def count(self) -> int:
        """
        Number of stored chunks; 0 when the index is unreachable.
        """
        if not await self.initialize():
            return 0

        try:
            return await asyncio.to_thread(self.backend.count)
        except Exception as e:
            self._state = IndexState.UNAVAILABLE
            logger.error(f"Failed to count vector index documents: {e}")
            return 0

    async def clear(self) -> None:
        """
        Remove every stored chunk.

        Raises:
            IndexUnavailableError: If the index cannot be reached
        """
        await self._ensure_writable()
        try:
            await asyncio.to_thread(self.backend.reset)
        except Exception as e:
            self._state = IndexState.UNAVAILABLE
            logger.error(f"Failed to clear vector index: {e}")
            raise
        self._state = IndexState.READY
        logger.info("Vector index cleared")

    async def get_stats(self) -> Dict[str, Any]:
        """Backend description plus state and document count."""
        documents = await self.count()
        stats = dict(self.backend.describe())
        stats.update({
            'state': self._state.value,
            'documents_count': documents,
        })
        return stats

    def __repr__(self) -> str:
        return f"VectorIndex(backend={type(self.backend).__name__}, state={self._state.value})"
