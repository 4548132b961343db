"""
Shared fixtures for the newsrag test suite.

Network services (Ollama, ChromaDB, news sites) are always faked. The FAISS
backend runs for real, in memory or against temp directories.
"""

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from newsrag.embeddings.embedding_service import EmbeddingService
from newsrag.models import ChunkMetadata, DocumentChunk
from newsrag.storage.faiss_backend import FaissBackend
from newsrag.storage.vector_store import VectorIndex

DIM = 8


class ConstantEmbeddings:
    """Embeddings client returning the same unit vector for every text."""

    def __init__(self, dimension: int = DIM):
        self.vector = [1.0] + [0.0] * (dimension - 1)
        self.query_calls = []
        self.document_calls = []

    async def aembed_query(self, text):
        self.query_calls.append(text)
        return list(self.vector)

    async def aembed_documents(self, texts):
        self.document_calls.append(list(texts))
        return [list(self.vector) for _ in texts]


class ScriptedLLM:
    """
    Chat model double.

    ``script`` items are consumed per call: a string is returned (or streamed
    word by word), an exception is raised. The last item repeats forever.
    """

    def __init__(self, *script, fail_after_chunks=None):
        self.script = list(script)
        self.calls = 0
        self.fail_after_chunks = fail_after_chunks

    def _next(self):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        return item

    async def ainvoke(self, prompt):
        item = self._next()
        if isinstance(item, BaseException):
            raise item
        return AIMessage(content=item)

    async def astream(self, prompt):
        item = self._next()
        if isinstance(item, BaseException):
            raise item
        words = item.split(" ")
        for i, word in enumerate(words):
            if self.fail_after_chunks is not None and i == self.fail_after_chunks:
                raise ConnectionError("stream broke")
            yield AIMessageChunk(content=word if i == 0 else " " + word)


class StatusError(Exception):
    """Error carrying an HTTP status code."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def make_chunk(chunk_id, text="Some news text", embedding=None, title=None, **extra):
    """Build a DocumentChunk with a unit embedding by default."""
    return DocumentChunk(
        id=chunk_id,
        article_id=f"article-{chunk_id}",
        text=text,
        embedding=embedding or [1.0] + [0.0] * (DIM - 1),
        metadata=ChunkMetadata(title=title, url=f"https://example.com/{chunk_id}", extra=extra),
    )


@pytest.fixture
def embedding_service():
    """Embedding service backed by a constant-vector client."""
    return EmbeddingService(dimension=DIM, client=ConstantEmbeddings())


@pytest.fixture
def faiss_backend():
    """In-memory FAISS backend."""
    return FaissBackend(dimension=DIM)


@pytest.fixture
def vector_index(faiss_backend, embedding_service):
    """Vector index over an in-memory FAISS backend."""
    return VectorIndex(faiss_backend, embedding_service, dimension=DIM, default_top_k=5)
