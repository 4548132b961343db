"""
Data Model

Plain dataclasses shared by the ingestion pipeline, the vector index, the
query pipeline and the chat handler.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


FALLBACK_ARTICLE_ID = "system-fallback"
FALLBACK_TEXT = (
    "I apologize, but I currently don't have access to recent news articles. "
    "The news database is temporarily unavailable. Please try again in a few "
    "moments, or ask a general question I can answer without news context."
)


def new_id() -> str:
    """Return a fresh UUID4 string."""
    return str(uuid.uuid4())


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChunkMetadata:
    """
    Metadata attached to every stored chunk.

    The named fields are the ones the pipeline understands. Anything else a
    caller supplies is kept in ``extra`` and passed through unchanged.
    """

    title: Optional[str] = None
    url: Optional[str] = None
    published_at: Optional[str] = None
    source: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = ('title', 'url', 'published_at', 'source')

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a dict, dropping unset fields."""
        data = dict(self.extra)
        for name in self._FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ChunkMetadata':
        """Build metadata from a flat dict; unknown keys go to ``extra``."""
        data = dict(data or {})
        known = {name: data.pop(name, None) for name in cls._FIELDS}
        return cls(extra=data, **known)


@dataclass
class DocumentChunk:
    """A piece of article text together with its embedding."""

    id: str
    article_id: str
    text: str
    embedding: List[float]
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'article_id': self.article_id,
            'text': self.text,
            'metadata': self.metadata.to_dict(),
        }


@dataclass
class SearchResult:
    """A retrieved passage with its similarity score in [0, 1]."""

    article_id: str
    text: str
    score: float
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @classmethod
    def fallback(cls) -> 'SearchResult':
        """
        Result returned in place of real passages when the index cannot serve.

        Returns:
            SearchResult explaining that news context is unavailable
        """
        return cls(
            article_id=FALLBACK_ARTICLE_ID,
            text=FALLBACK_TEXT,
            score=0.0,
            metadata=ChunkMetadata(
                title="Context Unavailable",
                source="System Message",
                published_at=utc_now(),
            ),
        )

    @property
    def is_fallback(self) -> bool:
        return self.article_id == FALLBACK_ARTICLE_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            'article_id': self.article_id,
            'text': self.text,
            'score': self.score,
            'metadata': self.metadata.to_dict(),
        }


class Role(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """One turn of a conversation."""

    session_id: str
    role: Role
    text: str
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'session_id': self.session_id,
            'role': self.role.value,
            'text': self.text,
            'timestamp': self.timestamp,
        }


@dataclass
class QueryRequest:
    """A user question, optionally bound to a chat session."""

    message: str
    session_id: Optional[str] = None


@dataclass
class QueryResponse:
    """Answer produced by the query pipeline."""

    session_id: str
    text: str
    sources: List[SearchResult]
    message_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'text': self.text,
            'sources': [source.to_dict() for source in self.sources],
            'message_id': self.message_id,
        }


@dataclass
class NewsArticle:
    """An article fetched by the ingestion pipeline."""

    id: str
    title: str
    content: str
    url: str
    published_at: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'url': self.url,
            'published_at': self.published_at,
            'source': self.source,
        }
