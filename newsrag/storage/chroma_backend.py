"""ChromaDB vector backend."""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values and stringify anything Chroma cannot store."""
    cleaned = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


class ChromaBackend:
    """
    Vector backend over a remote ChromaDB collection using cosine distance.

    Calls are blocking; the async adapter runs them in worker threads.
    """

    def __init__(
        self,
        collection_name: str = "news_articles",
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 8000,
        client: Optional[Any] = None
    ):
        """
        Initialize the backend (no network I/O until ``connect``).

        Args:
            collection_name: Name of the Chroma collection
            url: Full server URL; takes precedence over host/port
            host: ChromaDB host address
            port: ChromaDB port number
            client: Pre-built Chroma client (mainly for tests)
        """
        self.collection_name = collection_name
        self.ssl = False
        if url:
            parsed = urlparse(url)
            host = parsed.hostname or host
            self.ssl = parsed.scheme == "https"
            port = parsed.port or (443 if self.ssl else port)
        self.host = host
        self.port = port

        self._client = client
        self._collection = None

    def _get_client(self):
        if self._client is None:
            import chromadb

            self._client = chromadb.HttpClient(host=self.host, port=self.port, ssl=self.ssl)
        return self._client

    def _get_or_create_collection(self):
        return self._get_client().get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def connect(self) -> None:
        """
        Heartbeat the server and open (or create) the collection.

        Raises:
            ConnectionError: If ChromaDB cannot be reached
        """
        try:
            client = self._get_client()
            client.heartbeat()
            self._collection = self._get_or_create_collection()
        except Exception as e:
            self._collection = None
            raise ConnectionError(
                f"Cannot connect to ChromaDB at {self.host}:{self.port}. "
                f"Ensure ChromaDB is running. Error: {e}"
            ) from e
        logger.info(f"Connected to ChromaDB at {self.host}:{self.port}, collection '{self.collection_name}'")

    def _require_collection(self):
        if self._collection is None:
            raise RuntimeError("ChromaDB backend is not connected")
        return self._collection

    def add(
        self,
        ids: List[str],
        embeddings: List[List[float]],
        texts: List[str],
        metadatas: List[Dict[str, Any]]
    ) -> None:
        """
        Add documents to the collection.

        Raises:
            ValueError: If any id is already stored
        """
        if not ids:
            return
        collection = self._require_collection()

        existing = collection.get(ids=list(ids), include=[])
        if existing and existing.get("ids"):
            raise ValueError(f"Duplicate chunk ids: {existing['ids']}")

        collection.add(
            ids=list(ids),
            embeddings=[list(map(float, e)) for e in embeddings],
            documents=list(texts),
            metadatas=[_clean_metadata(m) for m in metadatas],
        )

    def query(
        self,
        embedding: List[float],
        k: int
    ) -> List[Tuple[str, str, float, Dict[str, Any]]]:
        if k <= 0:
            return []
        collection = self._require_collection()

        response = collection.query(
            query_embeddings=[list(map(float, embedding))],
            n_results=k,
            include=["documents", "metadatas", "distances"],
        )

        ids = (response.get("ids") or [[]])[0]
        documents = (response.get("documents") or [[]])[0]
        distances = (response.get("distances") or [[]])[0]
        metadatas = (response.get("metadatas") or [[]])[0]

        results = []
        for i, chunk_id in enumerate(ids):
            results.append((
                chunk_id,
                documents[i] if i < len(documents) and documents[i] is not None else "",
                float(distances[i]),
                dict(metadatas[i] or {}) if i < len(metadatas) else {},
            ))
        return results

    def count(self) -> int:
        return self._require_collection().count()

    def reset(self) -> None:
        """Delete the collection and recreate it empty."""
        client = self._get_client()
        try:
            client.delete_collection(name=self.collection_name)
        except Exception as e:
            logger.warning(f"Could not delete collection '{self.collection_name}': {e}")
        self._collection = self._get_or_create_collection()
        logger.info(f"Collection '{self.collection_name}' reset")

    def describe(self) -> Dict[str, Any]:
        return {
            'backend': 'chroma',
            'host': self.host,
            'port': self.port,
            'collection': self.collection_name,
            'metric': 'cosine',
        }
