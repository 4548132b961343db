"""
FAISS HNSW Vector Backend

Local vector backend using a FAISS HNSW (Hierarchical Navigable Small World)
graph for fast approximate nearest neighbor search on chunk embeddings.

Vectors are L2-normalized and compared by inner product, so the reported
distance is ``1 - cosine_similarity``. Chunk ids, texts and metadata live in
lists kept in lockstep with the index and are persisted next to it.
"""

import logging
import os
import pickle
import threading
from typing import Any, Dict, List, Optional, Tuple

import faiss
import numpy as np

logger = logging.getLogger(__name__)


class FaissBackend:
    """
    Vector backend over a FAISS ``IndexHNSWFlat`` with inner-product metric.

    All public methods are blocking and thread-safe; the async adapter calls
    them from worker threads.
    """

    def __init__(
        self,
        dimension: int = 768,
        index_path: Optional[str] = None,
        M: int = 32,
        efConstruction: int = 200,
        efSearch: int = 128
    ):
        """
        Initialize the backend (no I/O happens until ``connect``).

        Args:
            dimension: Dimension of embedding vectors
            index_path: File to persist the index to; None keeps it in memory
            M: Number of connections per node in the HNSW graph
                Higher M = better recall, more memory. 32 is optimal for 768-dim.
            efConstruction: Search depth during index construction
            efSearch: Search depth during queries
                Higher = better recall, slower search.
        """
        self.dimension = dimension
        self.index_path = index_path
        self.M = M
        self.efConstruction = efConstruction
        self.efSearch = efSearch

        self._lock = threading.Lock()
        self.index = None
        self.ids: List[str] = []
        self.texts: List[str] = []
        self.metadatas: List[Dict[str, Any]] = []

    def _new_index(self):
        """Create an empty HNSW index with the configured parameters."""
        index = faiss.IndexHNSWFlat(self.dimension, self.M, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = self.efConstruction
        index.hnsw.efSearch = self.efSearch
        return index

    @property
    def _metadata_path(self) -> str:
        return self.index_path + '.metadata'

    def _normalize(self, vectors: List[List[float]]) -> np.ndarray:
        array = np.array(vectors, dtype=np.float32)
        if array.ndim != 2 or array.shape[1] != self.dimension:
            got = array.shape[-1] if array.ndim else 0
            raise ValueError(
                f"Embedding dimension ({got}) must match "
                f"index dimension ({self.dimension})"
            )
        norms = np.linalg.norm(array, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return array / norms

    def connect(self) -> None:
        """
        Load the persisted index if there is one, else start empty.

        Raises:
            ValueError: If the persisted files are corrupt or inconsistent
        """
        with self._lock:
            if self.index_path and os.path.exists(self.index_path):
                self._load()
                logger.info(f"Loaded FAISS index with {self.index.ntotal} vectors from {self.index_path}")
            else:
                self.index = self._new_index()
                self.ids, self.texts, self.metadatas = [], [], []
                logger.info("Created empty FAISS index")

    def _load(self) -> None:
        loaded_index = faiss.read_index(self.index_path)

        if not isinstance(loaded_index, faiss.IndexHNSWFlat):
            raise ValueError(
                f"Loaded index is not IndexHNSWFlat, got {type(loaded_index)}"
            )
        if loaded_index.d != self.dimension:
            raise ValueError(
                f"Loaded index has dimension {loaded_index.d}, expected {self.dimension}"
            )

        if os.path.exists(self._metadata_path):
            with open(self._metadata_path, 'rb') as f:
                payload = pickle.load(f)
        else:
            payload = {'ids': [], 'texts': [], 'metadatas': []}

        ids = payload['ids']
        texts = payload['texts']
        metadatas = payload['metadatas']

        # Verify synchronization
        if not (loaded_index.ntotal == len(ids) == len(texts) == len(metadatas)):
            raise ValueError(
                f"Index has {loaded_index.ntotal} vectors but "
                f"metadata has {len(ids)} entries"
            )

        loaded_index.hnsw.efSearch = self.efSearch
        self.index = loaded_index
        self.ids, self.texts, self.metadatas = list(ids), list(texts), list(metadatas)

    def _persist(self) -> None:
        """Write index and sidecar atomically (temp file + rename)."""
        if not self.index_path:
            return

        directory = os.path.dirname(self.index_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        temp_index_path = self.index_path + '.tmp'
        temp_metadata_path = self._metadata_path + '.tmp'
        payload = {'ids': self.ids, 'texts': self.texts, 'metadatas': self.metadatas}

        try:
            faiss.write_index(self.index, temp_index_path)
            with open(temp_metadata_path, 'wb') as f:
                pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)

            os.replace(temp_index_path, self.index_path)
            os.replace(temp_metadata_path, self._metadata_path)
        except Exception:
            # Clean up temp files on error
            for path in (temp_index_path, temp_metadata_path):
                if os.path.exists(path):
                    os.remove(path)
            raise

    def _require_connected(self) -> None:
        if self.index is None:
            raise RuntimeError("FAISS backend is not connected")

    def add(
        self,
        ids: List[str],
        embeddings: List[List[float]],
        texts: List[str],
        metadatas: List[Dict[str, Any]]
    ) -> None:
        """
        Add vectors with their ids, texts and metadata.

        Raises:
            ValueError: On length mismatch, wrong dimension, or duplicate ids
        """
        if not ids:
            return

        if not (len(ids) == len(embeddings) == len(texts) == len(metadatas)):
            raise ValueError(
                f"ids ({len(ids)}), embeddings ({len(embeddings)}), texts ({len(texts)}) "
                f"and metadatas ({len(metadatas)}) must have the same length"
            )

        vectors = self._normalize(embeddings)

        with self._lock:
            self._require_connected()

            existing = set(self.ids)
            duplicates = [chunk_id for chunk_id in ids if chunk_id in existing]
            if duplicates or len(set(ids)) != len(ids):
                raise ValueError(f"Duplicate chunk ids: {duplicates or ids}")

            # Add in batches; HNSW construction is memory-intensive for large batches
            batch_size = 1000
            for i in range(0, len(vectors), batch_size):
                self.index.add(vectors[i:i + batch_size])

            self.ids.extend(ids)
            self.texts.extend(texts)
            self.metadatas.extend(dict(m) for m in metadatas)

            assert self.index.ntotal == len(self.ids), \
                "CRITICAL: Metadata out of sync with index"

            self._persist()

    def query(
        self,
        embedding: List[float],
        k: int
    ) -> List[Tuple[str, str, float, Dict[str, Any]]]:
        """
        Find the ``k`` nearest stored vectors.

        Returns:
            List of (id, text, distance, metadata) ordered by increasing distance
        """
        if k <= 0:
            return []

        query_vector = self._normalize([embedding])

        with self._lock:
            self._require_connected()
            if self.index.ntotal == 0:
                return []

            actual_k = min(k, self.index.ntotal)
            similarities, indices = self.index.search(query_vector, actual_k)

            results = []
            for similarity, idx in zip(similarities[0], indices[0]):
                if 0 <= idx < len(self.ids):
                    results.append((
                        self.ids[idx],
                        self.texts[idx],
                        1.0 - float(similarity),
                        dict(self.metadatas[idx]),
                    ))
            return results

    def count(self) -> int:
        with self._lock:
            self._require_connected()
            return self.index.ntotal

    def reset(self) -> None:
        """Delete every vector by recreating the index (HNSW cannot delete)."""
        with self._lock:
            self.index = self._new_index()
            self.ids, self.texts, self.metadatas = [], [], []
            self._persist()
            logger.info("FAISS index reset")

    def describe(self) -> Dict[str, Any]:
        return {
            'backend': 'faiss',
            'index_type': 'IndexHNSWFlat',
            'metric': 'inner_product',
            'index_path': self.index_path,
            'dimension': self.dimension,
            'total_vectors': self.index.ntotal if self.index is not None else 0,
            'M': self.M,
            'efConstruction': self.efConstruction,
            'efSearch': self.efSearch,
        }

    def __repr__(self) -> str:
        total = self.index.ntotal if self.index is not None else 0
        return (
            f"FaissBackend(vectors={total}, "
            f"dimension={self.dimension}, "
            f"M={self.M}, "
            f"efSearch={self.efSearch})"
        )
