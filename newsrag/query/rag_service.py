"""
RAG Service for Question Answering with Context Retrieval

Orchestrates the retrieval-augmented pipeline:
1. Mint the assistant message id
2. Context retrieval from the vector index
3. Grounded generation (complete or streamed)
4. Response assembly with sources
"""

import logging
import time
from typing import Any, Dict, List, Union

from ..models import QueryRequest, QueryResponse, SearchResult, new_id
from ..storage.vector_store import VectorIndex
from .generation import GenerationProvider

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Raised when retrieval or generation fails for a query."""
    pass


class StreamSink:
    """
    Receiver for streaming pipeline output.

    Subclasses override the hooks they care about. Hook failures are logged
    and never interrupt the pipeline.
    """

    async def on_start(self, message_id: str) -> None:
        pass

    async def on_sources(self, sources: List[SearchResult]) -> None:
        pass

    async def on_chunk(self, text: str) -> None:
        pass


class RAGService:
    """
    RAG (Retrieval-Augmented Generation) service for news question answering.

    Combines semantic search over article chunks with resilient LLM
    generation. Every call retrieves and generates afresh.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        generator: GenerationProvider,
        top_k: int = 5
    ):
        """
        Initialize the RAG service.

        Args:
            vector_index: Vector index used for retrieval
            generator: Generation provider used for answers
            top_k: Number of passages retrieved per query
        """
        self.vector_index = vector_index
        self.generator = generator
        self.top_k = top_k

    @staticmethod
    def _to_request(query: Union[QueryRequest, str]) -> QueryRequest:
        if isinstance(query, QueryRequest):
            return query
        return QueryRequest(message=query)

    async def _retrieve(self, message: str) -> List[SearchResult]:
        sources = await self.vector_index.search(message, self.top_k)
        logger.debug(f"Retrieved {len(sources)} passages")
        return sources

    @staticmethod
    async def _notify(hook, *args) -> None:
        try:
            await hook(*args)
        except Exception as e:
            logger.warning(f"Stream sink {getattr(hook, '__name__', 'hook')} failed: {e}")

    async def answer(self, query: Union[QueryRequest, str]) -> QueryResponse:
        """
        Answer a question in one piece.

        Args:
            query: Question, optionally with its session id

        Returns:
            QueryResponse with answer text, sources and a fresh message id

        Raises:
            PipelineError: If retrieval or generation fails
        """
        request = self._to_request(query)
        message_id = new_id()
        start_time = time.time()

        try:
            sources = await self._retrieve(request.message)
            text = await self.generator.generate(request.message, sources)
        except Exception as e:
            logger.error(f"Failed to answer query: {e}")
            raise PipelineError(f"Failed to answer query: {e}") from e

        logger.info(f"Answered query in {time.time() - start_time:.2f}s with {len(sources)} sources")
        return QueryResponse(
            session_id=request.session_id or "",
            text=text,
            sources=sources,
            message_id=message_id,
        )

    async def answer_streaming(
        self,
        query: Union[QueryRequest, str],
        sink: StreamSink
    ) -> QueryResponse:
        """
        Answer a question, streaming progress to ``sink``.

        The sink sees ``on_start`` then ``on_sources`` once retrieval is done,
        then one ``on_chunk`` per generated fragment.

        Args:
            query: Question, optionally with its session id
            sink: Receiver for start, sources and text fragments

        Returns:
            QueryResponse with the full answer text

        Raises:
            PipelineError: If retrieval or generation fails
        """
        request = self._to_request(query)
        message_id = new_id()
        start_time = time.time()

        try:
            sources = await self._retrieve(request.message)
            await self._notify(sink.on_start, message_id)
            await self._notify(sink.on_sources, sources)
            text = await self.generator.generate_streaming(
                request.message,
                sources,
                sink.on_chunk
            )
        except Exception as e:
            logger.error(f"Failed to stream answer: {e}")
            raise PipelineError(f"Failed to stream answer: {e}") from e

        logger.info(f"Streamed answer in {time.time() - start_time:.2f}s with {len(sources)} sources")
        return QueryResponse(
            session_id=request.session_id or "",
            text=text,
            sources=sources,
            message_id=message_id,
        )

    async def get_relevant_context(self, query: str, top_k: int = 3) -> List[SearchResult]:
        """
        Retrieval only, without generation.

        Args:
            query: Search text
            top_k: Number of passages to return

        Returns:
            Matching passages (or the fallback result)
        """
        return await self.vector_index.search(query, top_k)

    async def health(self) -> Dict[str, Any]:
        """
        Report on the index and the generation models.

        Returns:
            Dict with vector_store, generation, documents_count, current_model
        """
        vector_ready = await self.vector_index.initialize()
        documents_count = await self.vector_index.count()
        generation_ok = await self.generator.test_connection()

        return {
            'vector_store': vector_ready,
            'generation': generation_ok,
            'documents_count': documents_count,
            'current_model': self.generator.current_model,
        }
