"""
Integration Tests for the Main Pipeline System

Tests cover:
- Backend selection from configuration
- System initialization and component injection
- End-to-end ask, streaming and search over an in-memory index
- Statistics, health and clearing
"""

import os
import pytest
from unittest.mock import AsyncMock, Mock, patch

from newsrag.config import Config, reset_config
from newsrag.embeddings.embedding_service import EmbeddingService
from newsrag.ingestion.news_ingestion import IngestionReport, NewsIngestionService
from newsrag.main_pipeline import NewsChatSystem, create_backend
from newsrag.query.generation import GenerationProvider
from newsrag.query.handler import ChatHandler
from newsrag.storage.chroma_backend import ChromaBackend
from newsrag.storage.faiss_backend import FaissBackend
from newsrag.storage.vector_store import VectorIndex

from conftest import ScriptedLLM, make_chunk


@pytest.fixture(autouse=True)
def clean_env():
    with patch.dict(os.environ, {}, clear=True):
        reset_config()
        yield
        reset_config()


@pytest.fixture
def config(tmp_path):
    return Config(faiss_index_path=str(tmp_path / "articles.index"), embedding_dimension=8)


@pytest.fixture
def system(config, vector_index, embedding_service):
    """System over an in-memory index and a scripted model."""
    generator = GenerationProvider(
        models=['m1'],
        llm_factory=lambda name: ScriptedLLM("The incumbent won narrowly."),
        base_delay=0,
        max_jitter=0,
    )
    return NewsChatSystem(
        config=config,
        embedding_service=embedding_service,
        vector_index=vector_index,
        generator=generator,
    )


class TestBackendSelection:
    """Test choosing the vector backend."""

    def test_faiss_by_default(self, config):
        backend = create_backend(config)

        assert isinstance(backend, FaissBackend)
        assert backend.dimension == 8
        assert backend.index_path == config.faiss_index_path

    def test_chroma(self, config):
        config.vector_backend = 'chroma'
        config.chroma_url = "http://chroma:9000"
        config.chroma_collection = "headlines"

        backend = create_backend(config)

        assert isinstance(backend, ChromaBackend)
        assert backend.collection_name == "headlines"
        assert (backend.host, backend.port) == ("chroma", 9000)


class TestSystemInitialization:
    """Test system initialization and component setup."""

    def test_default_initialization(self, config):
        system = NewsChatSystem(config=config)

        assert isinstance(system.embedding_service, EmbeddingService)
        assert isinstance(system.vector_index, VectorIndex)
        assert isinstance(system.generator, GenerationProvider)
        assert isinstance(system.ingestion_service, NewsIngestionService)
        assert isinstance(system.chat_handler, ChatHandler)
        assert system.generator.available_models == config.generation_models
        assert system.ingestion_service.rss_urls == config.news_rss_urls

    def test_ollama_timeout_reaches_both_clients(self, config):
        config.ollama_timeout = 45
        config.generation_max_retries = 5

        with patch('newsrag.embeddings.embedding_service.OllamaEmbeddings') as mock_embeddings:
            system = NewsChatSystem(config=config)

        assert mock_embeddings.call_args.kwargs['client_kwargs'] == {'timeout': 45}
        assert system.generator.timeout == 45
        assert system.generator.max_retries == 5

    def test_custom_component_injection(self, config):
        embedding_service = Mock()
        vector_index = Mock()
        generator = Mock()
        ingestion_service = Mock()

        system = NewsChatSystem(
            config=config,
            embedding_service=embedding_service,
            vector_index=vector_index,
            generator=generator,
            ingestion_service=ingestion_service,
        )

        assert system.embedding_service is embedding_service
        assert system.vector_index is vector_index
        assert system.generator is generator
        assert system.ingestion_service is ingestion_service
        assert system.rag_service.vector_index is vector_index


class TestQueryPipeline:
    """Test asking and searching end to end."""

    @pytest.mark.asyncio
    async def test_ask_with_follow_up(self, system, vector_index):
        await vector_index.add_one(make_chunk("c1", title="Election Results"))

        first = await system.ask("What happened in the election?")
        second = await system.ask("Who won?", session_id=first['session_id'])

        assert first['success'] and second['success']
        assert first['answer'] == "The incumbent won narrowly."
        assert first['sources'][0]['metadata']['title'] == "Election Results"
        assert second['session_id'] == first['session_id']

    @pytest.mark.asyncio
    async def test_ask_streaming(self, system):
        events = []

        await system.ask_streaming("Any news?", None, events.append)

        assert events[0].type == 'session'
        assert events[-1].type == 'complete'

    @pytest.mark.asyncio
    async def test_search(self, system, vector_index):
        await vector_index.add_batch([make_chunk("c1", title="A"), make_chunk("c2", title="B")])

        results = await system.search("news", top_k=1)

        assert len(results) == 1
        assert set(results[0].keys()) >= {'article_id', 'text', 'score', 'metadata'}

    @pytest.mark.asyncio
    async def test_empty_query(self, system):
        assert await system.search("") == []

    @pytest.mark.asyncio
    async def test_search_empty_index_returns_fallback(self, system):
        results = await system.search("news")

        assert len(results) == 1
        assert results[0]['score'] == 0.0
        assert results[0]['metadata']['source'] == "System Message"


class TestIngestionAndMaintenance:
    """Test ingestion delegation, stats, health and clearing."""

    @pytest.mark.asyncio
    async def test_ingest_delegates(self, config):
        ingestion_service = Mock()
        ingestion_service.ingest = AsyncMock(return_value=IngestionReport(articles_fetched=2, chunks_stored=5))
        ingestion_service.clear_and_reingest = AsyncMock(return_value=IngestionReport())
        system = NewsChatSystem(config=config, ingestion_service=ingestion_service)

        result = await system.ingest()
        await system.ingest(clear=True)

        assert result['articles_fetched'] == 2
        assert result['chunks_stored'] == 5
        ingestion_service.ingest.assert_awaited_once_with(show_progress=False)
        ingestion_service.clear_and_reingest.assert_awaited_once_with(show_progress=False)

    @pytest.mark.asyncio
    async def test_get_stats(self, system, vector_index):
        await vector_index.add_one(make_chunk("c1"))
        await system.ask("hello")

        stats = await system.get_stats()

        assert set(stats.keys()) == {'vector_index', 'generation', 'embeddings', 'active_sessions'}
        assert stats['vector_index']['documents_count'] == 1
        assert stats['vector_index']['state'] == 'ready'
        assert stats['generation']['current_model'] == 'm1'
        assert stats['active_sessions'] == 1

    @pytest.mark.asyncio
    async def test_health(self, system):
        health = await system.health()

        assert health['vector_store'] is True
        assert health['generation'] is True

    @pytest.mark.asyncio
    async def test_clear(self, system, vector_index):
        await vector_index.add_one(make_chunk("c1"))
        system.ingestion_service.processed_links.add("https://example.com/c1")

        await system.clear()

        assert await vector_index.count() == 0
        assert system.ingestion_service.processed_links == set()
