"""
Main Pipeline System

Builds every component once from configuration and wires them together:
- Embedding service
- Vector index (FAISS or ChromaDB backend)
- Generation provider
- RAG service, session store and chat handler
- News ingestion
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .config import Config, get_config
from .embeddings.embedding_service import EmbeddingService
from .ingestion.article_extractor import ArticleExtractor
from .ingestion.feed_reader import FeedReader
from .ingestion.news_ingestion import NewsIngestionService
from .query.generation import GenerationProvider
from .query.handler import ChatHandler, StreamEvent
from .query.rag_service import RAGService
from .query.session_store import SessionStore
from .storage.faiss_backend import FaissBackend
from .storage.vector_store import VectorIndex

logger = logging.getLogger(__name__)


def create_backend(config: Config):
    """
    Build the vector backend named by ``config.vector_backend``.

    Args:
        config: System configuration

    Returns:
        FaissBackend or ChromaBackend (not yet connected)
    """
    storage = config.get_storage_config()
    if storage['vector_backend'] == 'chroma':
        from .storage.chroma_backend import ChromaBackend

        return ChromaBackend(
            collection_name=storage['chroma_collection'],
            url=storage['chroma_url'],
            host=storage['chroma_host'],
            port=storage['chroma_port'],
        )

    return FaissBackend(
        dimension=storage['embedding_dimension'],
        index_path=storage['faiss_index_path'],
    )


class NewsChatSystem:
    """
    Main system object integrating all components.

    Provides high-level methods for:
    - News ingestion (with optional clear)
    - Chat questions (batch and streaming) with sessions
    - Semantic search
    - Statistics and health checks
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        embedding_service: Optional[EmbeddingService] = None,
        vector_index: Optional[VectorIndex] = None,
        generator: Optional[GenerationProvider] = None,
        session_store: Optional[SessionStore] = None,
        ingestion_service: Optional[NewsIngestionService] = None
    ):
        """
        Initialize the system.

        Args:
            config: Configuration (default: global config)
            embedding_service: EmbeddingService instance (or None for default)
            vector_index: VectorIndex instance (or None for default)
            generator: GenerationProvider instance (or None for default)
            session_store: SessionStore instance (or None for default)
            ingestion_service: NewsIngestionService instance (or None for default)
        """
        self.config = config or get_config()
        config = self.config

        # Initialize components (dependency injection or defaults)
        self.embedding_service = embedding_service or EmbeddingService(
            model=config.embedding_model,
            base_url=config.embedding_base_url,
            dimension=config.embedding_dimension,
            timeout=config.ollama_timeout,
        )
        self.vector_index = vector_index or VectorIndex(
            backend=create_backend(config),
            embedding_service=self.embedding_service,
            dimension=config.embedding_dimension,
            default_top_k=config.top_k_default,
        )
        self.generator = generator or GenerationProvider(
            base_url=config.ollama_base_url,
            **config.get_generation_config()
        )
        self.session_store = session_store or SessionStore(
            ttl_seconds=config.session_ttl,
            max_messages=config.max_history_messages,
        )

        self.rag_service = RAGService(
            vector_index=self.vector_index,
            generator=self.generator,
            top_k=config.top_k_default,
        )
        self.chat_handler = ChatHandler(
            rag_service=self.rag_service,
            session_store=self.session_store,
            max_message_length=config.max_message_length,
            expose_error_details=config.expose_error_details,
        )
        self.ingestion_service = ingestion_service or NewsIngestionService(
            vector_index=self.vector_index,
            embedding_service=self.embedding_service,
            rss_urls=config.news_rss_urls,
            feed_reader=FeedReader(timeout=config.article_timeout),
            article_extractor=ArticleExtractor(
                timeout=config.article_timeout,
                max_length=config.article_max_length,
                min_text_length=config.article_min_text_length,
            ),
            max_articles=config.max_articles,
            batch_size=config.ingestion_batch_size,
            batch_delay=config.ingestion_batch_delay,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            min_content_length=config.article_min_text_length,
        )

        logger.info("NewsChatSystem initialized successfully")

    async def initialize(self) -> bool:
        """
        Connect to the vector index.

        Returns:
            True if the index is ready
        """
        return await self.vector_index.initialize()

    async def ingest(self, clear: bool = False, show_progress: bool = False) -> Dict[str, Any]:
        """
        Ingest news from the configured feeds.

        Args:
            clear: Empty the index before ingesting
            show_progress: Show a progress bar

        Returns:
            Dictionary with ingestion results
        """
        if clear:
            report = await self.ingestion_service.clear_and_reingest(show_progress=show_progress)
        else:
            report = await self.ingestion_service.ingest(show_progress=show_progress)
        return report.to_dict()

    async def ask(self, question: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Ask a question and get an answer with sources.

        Returns:
            Chat handler result dictionary
        """
        return await self.chat_handler.send_message(question, session_id)

    async def ask_streaming(
        self,
        question: str,
        session_id: Optional[str],
        emit: Callable[[StreamEvent], Any]
    ) -> None:
        """Ask a question, passing stream events to ``emit``."""
        await self.chat_handler.stream_message(question, session_id, emit)

    async def search(self, query: str, top_k: int = 5) -> List[Dict[str, Any]]:
        """
        Perform semantic search over indexed news.

        Returns:
            List of search result dictionaries
        """
        if not query:
            return []
        results = await self.rag_service.get_relevant_context(query, top_k)
        return [result.to_dict() for result in results]

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get system statistics.

        Returns:
            Dictionary with index, model and session statistics
        """
        return {
            'vector_index': await self.vector_index.get_stats(),
            'generation': {
                'current_model': self.generator.current_model,
                'available_models': self.generator.available_models,
            },
            'embeddings': {
                'model': self.embedding_service.model,
                'remote_enabled': self.embedding_service.is_remote_enabled,
                **self.embedding_service.stats.to_dict(),
            },
            'active_sessions': len(self.session_store.list_sessions()),
        }

    async def health(self) -> Dict[str, Any]:
        """Check the vector index and the generation models."""
        return await self.rag_service.health()

    async def clear(self) -> None:
        """
        Remove all indexed news.

        Raises:
            IndexUnavailableError: If the index cannot be reached
        """
        await self.vector_index.clear()
        self.ingestion_service.processed_links.clear()

    def __repr__(self) -> str:
        return (
            f"NewsChatSystem(backend={self.config.vector_backend}, "
            f"model={self.generator.current_model})"
        )
