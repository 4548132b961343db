"""
Centralized Configuration Module

Provides a single source of truth for all system configuration parameters.
Loads settings from environment variables with sensible defaults and validation.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional
from urllib.parse import urlparse
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


DEFAULT_RSS_URLS = [
    'https://feeds.bbci.co.uk/news/rss.xml',
    'http://rss.cnn.com/rss/edition.rss',
]

DEFAULT_GENERATION_MODELS = [
    'llama3.1:latest',
    'llama3.2:latest',
    'mistral:latest',
]

VECTOR_BACKENDS = ('faiss', 'chroma')

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

_UNSET = object()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class Config:
    """
    Centralized configuration for the news RAG chat backend.

    All configuration parameters are loaded from environment variables
    with sensible defaults. Validation is performed on initialization.
    """

    # Ollama Settings
    ollama_base_url: str = field(default="http://localhost:11434")
    ollama_timeout: int = field(default=30)

    # Embedding Provider
    embedding_model: str = field(default="nomic-embed-text")
    embedding_base_url: Optional[str] = field(default=None)
    embedding_dimension: int = field(default=768)

    # Generation Provider
    generation_models: List[str] = field(default_factory=lambda: list(DEFAULT_GENERATION_MODELS))
    llm_temperature: float = field(default=0.7)
    llm_max_tokens: int = field(default=1000)
    generation_max_retries: int = field(default=3)
    generation_base_delay: float = field(default=1.0)
    generation_max_jitter: float = field(default=1.0)

    # Retrieval
    top_k_default: int = field(default=5)

    # Vector Index
    vector_backend: str = field(default="faiss")
    faiss_index_path: str = field(default="data/embeddings/articles.index")
    chroma_url: Optional[str] = field(default=None)
    chroma_host: str = field(default="localhost")
    chroma_port: int = field(default=8000)
    chroma_collection: str = field(default="news_articles")

    # Sessions and Chat
    session_ttl: int = field(default=3600)
    max_history_messages: int = field(default=100)
    max_message_length: int = field(default=1000)
    expose_error_details: bool = field(default=False)

    # News Ingestion
    news_rss_urls: List[str] = field(default_factory=lambda: list(DEFAULT_RSS_URLS))
    max_articles: int = field(default=50)
    ingestion_batch_size: int = field(default=5)
    ingestion_batch_delay: float = field(default=1.0)
    chunk_size: int = field(default=1000)
    chunk_overlap: int = field(default=200)
    article_timeout: int = field(default=10)
    article_max_length: int = field(default=5000)
    article_min_text_length: int = field(default=100)

    # Logging
    log_level: str = field(default="INFO")

    def __post_init__(self):
        """Load configuration from environment and validate."""
        self._load_from_environment()
        self._validate()

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        # Ollama Settings
        self.ollama_base_url = self._get_env_str('OLLAMA_BASE_URL', self.ollama_base_url)
        self.ollama_timeout = self._get_env_int('OLLAMA_TIMEOUT', self.ollama_timeout)

        # Embedding Provider (an empty EMBEDDING_BASE_URL disables the remote provider)
        self.embedding_model = self._get_env_str('EMBEDDING_MODEL', self.embedding_model)
        if self.embedding_base_url is None:
            self.embedding_base_url = self.ollama_base_url
        self.embedding_base_url = self._get_env_str('EMBEDDING_BASE_URL', self.embedding_base_url)
        self.embedding_dimension = self._get_env_int('EMBEDDING_DIMENSION', self.embedding_dimension)

        # Generation Provider
        self.generation_models = self._get_env_list('GENERATION_MODELS', self.generation_models)
        self.llm_temperature = self._get_env_float('LLM_TEMPERATURE', self.llm_temperature)
        self.llm_max_tokens = self._get_env_int('LLM_MAX_TOKENS', self.llm_max_tokens)
        self.generation_max_retries = self._get_env_int('GENERATION_MAX_RETRIES', self.generation_max_retries)
        self.generation_base_delay = self._get_env_float('GENERATION_BASE_DELAY', self.generation_base_delay)
        self.generation_max_jitter = self._get_env_float('GENERATION_MAX_JITTER', self.generation_max_jitter)

        # Retrieval
        self.top_k_default = self._get_env_int('TOP_K_DEFAULT', self.top_k_default)

        # Vector Index
        self.vector_backend = self._get_env_str('VECTOR_BACKEND', self.vector_backend).lower()
        self.faiss_index_path = self._get_env_path('FAISS_INDEX_PATH', self.faiss_index_path)
        self.chroma_url = self._get_env_str('CHROMA_URL', self.chroma_url) or None
        self.chroma_host = self._get_env_str('CHROMA_HOST', self.chroma_host)
        self.chroma_port = self._get_env_int('CHROMA_PORT', self.chroma_port)
        self.chroma_collection = self._get_env_str('CHROMA_COLLECTION', self.chroma_collection)

        # Sessions and Chat
        self.session_ttl = self._get_env_int('SESSION_TTL', self.session_ttl)
        self.max_history_messages = self._get_env_int('MAX_HISTORY_MESSAGES', self.max_history_messages)
        self.max_message_length = self._get_env_int('MAX_MESSAGE_LENGTH', self.max_message_length)
        self.expose_error_details = self._get_env_bool('EXPOSE_ERROR_DETAILS', self.expose_error_details)

        # News Ingestion
        self.news_rss_urls = self._get_env_list('NEWS_RSS_URLS', self.news_rss_urls)
        self.max_articles = self._get_env_int('MAX_ARTICLES_TO_INGEST', self.max_articles)
        self.ingestion_batch_size = self._get_env_int('INGESTION_BATCH_SIZE', self.ingestion_batch_size)
        self.ingestion_batch_delay = self._get_env_float('INGESTION_BATCH_DELAY', self.ingestion_batch_delay)
        self.chunk_size = self._get_env_int('CHUNK_SIZE', self.chunk_size)
        self.chunk_overlap = self._get_env_int('CHUNK_OVERLAP', self.chunk_overlap)
        self.article_timeout = self._get_env_int('ARTICLE_TIMEOUT', self.article_timeout)
        self.article_max_length = self._get_env_int('ARTICLE_MAX_LENGTH', self.article_max_length)
        self.article_min_text_length = self._get_env_int('ARTICLE_MIN_TEXT_LENGTH', self.article_min_text_length)

        # Logging
        self.log_level = self._get_env_str('LOG_LEVEL', self.log_level).upper()

    def _get_env_str(self, key: str, default: Optional[str]) -> Optional[str]:
        """Get string value from environment."""
        value = os.getenv(key, default)
        if isinstance(value, str):
            value = value.strip()
        return value

    def _get_env_int(self, key: str, default: int) -> int:
        """Get integer value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigValidationError(
                f"Invalid integer value for {key}: '{value}'"
            )

    def _get_env_float(self, key: str, default: float) -> float:
        """Get float value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigValidationError(
                f"Invalid number value for {key}: '{value}'"
            )

    def _get_env_bool(self, key: str, default: bool) -> bool:
        """Get boolean value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        value = value.lower().strip()
        if value in ('true', '1', 'yes', 'on'):
            return True
        elif value in ('false', '0', 'no', 'off'):
            return False
        else:
            return default

    def _get_env_list(self, key: str, default: List[str]) -> List[str]:
        """Get comma-separated list value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        return [item.strip() for item in value.split(',') if item.strip()]

    def _get_env_path(self, key: str, default: str) -> str:
        """Get path value from environment with expansion."""
        value = os.getenv(key, default)
        if isinstance(value, str):
            value = value.strip()
            # Expand ~ to home directory
            value = os.path.expanduser(value)
        return value

    @staticmethod
    def _is_valid_url(url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        return bool(parsed.scheme and parsed.netloc)

    def _validate(self):
        """Validate configuration parameters."""
        # Validate non-empty strings
        if not self.embedding_model:
            raise ConfigValidationError("embedding_model cannot be empty")
        if not self.generation_models:
            raise ConfigValidationError("generation_models must name at least one model")
        if not self.chroma_collection:
            raise ConfigValidationError("chroma_collection cannot be empty")

        # Validate positive integers
        positive_int_fields = [
            ('embedding_dimension', self.embedding_dimension),
            ('llm_max_tokens', self.llm_max_tokens),
            ('top_k_default', self.top_k_default),
            ('chroma_port', self.chroma_port),
            ('session_ttl', self.session_ttl),
            ('max_history_messages', self.max_history_messages),
            ('max_message_length', self.max_message_length),
            ('max_articles', self.max_articles),
            ('ingestion_batch_size', self.ingestion_batch_size),
            ('chunk_size', self.chunk_size),
            ('article_max_length', self.article_max_length),
            ('article_min_text_length', self.article_min_text_length),
        ]

        for field_name, value in positive_int_fields:
            if value <= 0:
                raise ConfigValidationError(
                    f"{field_name} must be positive, got {value}"
                )

        # Validate non-negative values
        non_negative_fields = [
            ('generation_max_retries', self.generation_max_retries),
            ('generation_base_delay', self.generation_base_delay),
            ('generation_max_jitter', self.generation_max_jitter),
            ('ingestion_batch_delay', self.ingestion_batch_delay),
            ('chunk_overlap', self.chunk_overlap),
        ]

        for field_name, value in non_negative_fields:
            if value < 0:
                raise ConfigValidationError(
                    f"{field_name} must not be negative, got {value}"
                )

        # Validate timeouts (at least 1 second)
        if self.ollama_timeout < 1:
            raise ConfigValidationError(
                f"ollama_timeout must be at least 1, got {self.ollama_timeout}"
            )
        if self.article_timeout < 1:
            raise ConfigValidationError(
                f"article_timeout must be at least 1, got {self.article_timeout}"
            )

        # Validate chunk overlap < chunk size
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigValidationError(
                f"chunk_overlap must be less than chunk_size"
            )

        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ConfigValidationError(
                f"llm_temperature must be between 0 and 2, got {self.llm_temperature}"
            )

        if self.vector_backend not in VECTOR_BACKENDS:
            raise ConfigValidationError(
                f"vector_backend must be one of {VECTOR_BACKENDS}, got '{self.vector_backend}'"
            )

        if self.log_level not in LOG_LEVELS:
            raise ConfigValidationError(f"Unknown log_level: {self.log_level}")

        # Validate URL format
        if not self._is_valid_url(self.ollama_base_url):
            raise ConfigValidationError(
                f"Invalid URL for ollama_base_url: {self.ollama_base_url}"
            )
        if self.embedding_base_url and not self._is_valid_url(self.embedding_base_url):
            raise ConfigValidationError(
                f"Invalid URL for embedding_base_url: {self.embedding_base_url}"
            )
        if self.chroma_url and not self._is_valid_url(self.chroma_url):
            raise ConfigValidationError(
                f"Invalid URL for chroma_url: {self.chroma_url}"
            )
        for rss_url in self.news_rss_urls:
            if not self._is_valid_url(rss_url):
                raise ConfigValidationError(f"Invalid RSS feed URL: {rss_url}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    def __repr__(self) -> str:
        """String representation of configuration."""
        items = []
        for key, value in self.to_dict().items():
            items.append(f"{key}={value!r}")
        return f"Config({', '.join(items)})"

    def update(self, **kwargs):
        """
        Update configuration values with validation.

        Args:
            **kwargs: Configuration parameters to update

        Raises:
            ConfigValidationError: If validation fails
        """
        # Store original values for rollback
        original_values = {}

        try:
            # Update values
            for key, value in kwargs.items():
                if not hasattr(self, key):
                    raise ConfigValidationError(f"Unknown configuration parameter: {key}")
                original_values[key] = getattr(self, key)
                setattr(self, key, value)

            # Validate new configuration
            self._validate()

        except Exception:
            # Rollback on validation failure
            for key, value in original_values.items():
                setattr(self, key, value)
            raise

    def get_generation_config(self) -> Dict[str, Any]:
        """Get generation-related configuration."""
        return {
            'models': list(self.generation_models),
            'temperature': self.llm_temperature,
            'max_tokens': self.llm_max_tokens,
            'max_retries': self.generation_max_retries,
            'base_delay': self.generation_base_delay,
            'max_jitter': self.generation_max_jitter,
            'timeout': self.ollama_timeout,
        }

    def get_storage_config(self) -> Dict[str, Any]:
        """Get vector-index-related configuration."""
        return {
            'vector_backend': self.vector_backend,
            'faiss_index_path': self.faiss_index_path,
            'chroma_url': self.chroma_url,
            'chroma_host': self.chroma_host,
            'chroma_port': self.chroma_port,
            'chroma_collection': self.chroma_collection,
            'embedding_dimension': self.embedding_dimension,
        }


# Singleton instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance (singleton pattern).

    Returns:
        Config: Global configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config():
    """Reset the global configuration instance."""
    global _config_instance
    _config_instance = None
