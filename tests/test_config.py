"""
Tests for Configuration Module

Tests cover:
- Default values
- Configuration loading from environment variables
- Validation
- Configuration updates with rollback
- Singleton accessor
"""

import os
import pytest
from unittest.mock import patch

from newsrag.config import Config, ConfigValidationError, get_config, reset_config


@pytest.fixture(autouse=True)
def clean_env():
    """Run every test against an empty environment."""
    with patch.dict(os.environ, {}, clear=True):
        reset_config()
        yield
        reset_config()


class TestConfigurationDefaults:
    """Test default configuration values."""

    def test_default_ollama_settings(self):
        """Test default Ollama configuration."""
        config = Config()

        assert config.ollama_base_url == "http://localhost:11434"
        assert config.ollama_timeout == 30

    def test_default_embedding_settings(self):
        """Embedding provider defaults to the Ollama URL."""
        config = Config()

        assert config.embedding_model == "nomic-embed-text"
        assert config.embedding_base_url == config.ollama_base_url
        assert config.embedding_dimension == 768

    def test_default_generation_settings(self):
        """Test default generation configuration."""
        config = Config()

        assert config.generation_models == ['llama3.1:latest', 'llama3.2:latest', 'mistral:latest']
        assert config.generation_max_retries == 3
        assert config.generation_base_delay == 1.0
        assert config.generation_max_jitter == 1.0
        assert config.top_k_default == 5

    def test_default_storage_settings(self):
        """Test default vector index configuration."""
        config = Config()

        assert config.vector_backend == "faiss"
        assert config.faiss_index_path == "data/embeddings/articles.index"
        assert config.chroma_collection == "news_articles"
        assert config.chroma_url is None

    def test_default_chat_and_ingestion_settings(self):
        """Test default session and ingestion configuration."""
        config = Config()

        assert config.session_ttl == 3600
        assert config.max_history_messages == 100
        assert config.max_message_length == 1000
        assert config.expose_error_details is False
        assert config.max_articles == 50
        assert config.ingestion_batch_size == 5
        assert config.article_max_length == 5000
        assert len(config.news_rss_urls) == 2


class TestConfigurationFromEnvironment:
    """Test configuration loading from environment variables."""

    def test_load_ollama_from_env(self):
        """Test loading Ollama settings from environment."""
        with patch.dict(os.environ, {
            'OLLAMA_BASE_URL': 'http://custom:8080',
            'OLLAMA_TIMEOUT': '60'
        }):
            config = Config()

        assert config.ollama_base_url == 'http://custom:8080'
        assert config.ollama_timeout == 60
        assert config.embedding_base_url == 'http://custom:8080'

    def test_empty_embedding_url_disables_remote(self):
        """An empty EMBEDDING_BASE_URL turns the remote provider off."""
        with patch.dict(os.environ, {'EMBEDDING_BASE_URL': ''}):
            config = Config()

        assert not config.embedding_base_url

    def test_load_lists_from_env(self):
        """Comma-separated values become lists with blanks dropped."""
        with patch.dict(os.environ, {
            'GENERATION_MODELS': 'a:latest, b:latest,,',
            'NEWS_RSS_URLS': 'https://feeds.example.com/rss.xml'
        }):
            config = Config()

        assert config.generation_models == ['a:latest', 'b:latest']
        assert config.news_rss_urls == ['https://feeds.example.com/rss.xml']

    def test_load_numbers_and_booleans(self):
        """Test typed parsing of floats, ints and booleans."""
        with patch.dict(os.environ, {
            'GENERATION_BASE_DELAY': '0.25',
            'SESSION_TTL': '120',
            'EXPOSE_ERROR_DETAILS': 'yes',
            'VECTOR_BACKEND': 'CHROMA'
        }):
            config = Config()

        assert config.generation_base_delay == 0.25
        assert config.session_ttl == 120
        assert config.expose_error_details is True
        assert config.vector_backend == 'chroma'

    def test_path_expansion(self):
        """Home directory in paths is expanded."""
        with patch.dict(os.environ, {'FAISS_INDEX_PATH': '~/news.index'}):
            config = Config()

        assert config.faiss_index_path == os.path.expanduser('~/news.index')

    def test_invalid_integer_raises(self):
        """Non-numeric integer values are rejected."""
        with patch.dict(os.environ, {'OLLAMA_TIMEOUT': 'soon'}):
            with pytest.raises(ConfigValidationError, match="OLLAMA_TIMEOUT"):
                Config()

    def test_invalid_float_raises(self):
        """Non-numeric float values are rejected."""
        with patch.dict(os.environ, {'LLM_TEMPERATURE': 'warm'}):
            with pytest.raises(ConfigValidationError, match="LLM_TEMPERATURE"):
                Config()


class TestConfigurationValidation:
    """Test configuration validation."""

    @pytest.mark.parametrize("key,value", [
        ('TOP_K_DEFAULT', '0'),
        ('EMBEDDING_DIMENSION', '-1'),
        ('MAX_MESSAGE_LENGTH', '0'),
        ('GENERATION_MAX_RETRIES', '-1'),
        ('INGESTION_BATCH_DELAY', '-0.5'),
        ('LLM_TEMPERATURE', '3'),
        ('VECTOR_BACKEND', 'pinecone'),
        ('LOG_LEVEL', 'CHATTY'),
        ('OLLAMA_BASE_URL', 'not-a-url'),
        ('CHROMA_URL', 'localhost'),
        ('GENERATION_MODELS', ' , '),
    ])
    def test_invalid_values_rejected(self, key, value):
        """Each invalid setting raises ConfigValidationError."""
        with patch.dict(os.environ, {key: value}):
            with pytest.raises(ConfigValidationError):
                Config()

    def test_chunk_overlap_must_be_smaller_than_chunk_size(self):
        """Overlap must stay below chunk size."""
        with patch.dict(os.environ, {'CHUNK_SIZE': '100', 'CHUNK_OVERLAP': '100'}):
            with pytest.raises(ConfigValidationError, match="chunk_overlap"):
                Config()


class TestConfigurationUpdate:
    """Test runtime configuration updates."""

    def test_update_valid_value(self):
        """Valid updates are applied."""
        config = Config()
        config.update(top_k_default=10)
        assert config.top_k_default == 10

    def test_update_rolls_back_on_failure(self):
        """A failing update leaves the config unchanged."""
        config = Config()
        with pytest.raises(ConfigValidationError):
            config.update(top_k_default=7, session_ttl=0)

        assert config.top_k_default == 5
        assert config.session_ttl == 3600

    def test_update_unknown_parameter(self):
        """Unknown parameters are rejected."""
        config = Config()
        with pytest.raises(ConfigValidationError, match="Unknown"):
            config.update(not_a_setting=1)

    def test_grouped_accessors(self):
        """Grouped accessors expose the related settings."""
        config = Config()

        assert config.get_generation_config()['models'] == config.generation_models
        assert config.get_generation_config()['timeout'] == config.ollama_timeout
        assert config.get_storage_config()['vector_backend'] == 'faiss'
        assert 'session_ttl' in config.to_dict()


class TestConfigSingleton:
    """Test the global configuration accessor."""

    def test_get_config_returns_same_instance(self):
        assert get_config() is get_config()

    def test_reset_config_creates_new_instance(self):
        first = get_config()
        reset_config()
        assert get_config() is not first
