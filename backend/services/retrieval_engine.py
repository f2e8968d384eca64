"""Retrieval engine: vector search with a local lexical fallback."""
import hashlib
import logging
import re
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from models.chunk import Chunk, ScoredChunk
from services.vector_store import VectorStore
from services.embedding_model import EmbeddingModel
from config import SIMILARITY_FLOOR

logger = logging.getLogger(__name__)

PSEUDO_EMBEDDING_DIM = 64
JACCARD_WEIGHT = 0.7
PSEUDO_EMBEDDING_WEIGHT = 0.3
CONTEXT_ITEM_OVERHEAD = 50  # characters of formatting per rendered passage

_WORD_PATTERN = re.compile(r"\w+")


def _words(text: str) -> List[str]:
    return _WORD_PATTERN.findall(text.lower())


def jaccard_similarity(query_text: str, chunk_text: str) -> float:
    """Word-set overlap between query and chunk."""
    query_words = set(_words(query_text))
    chunk_words = set(_words(chunk_text))
    union = query_words | chunk_words
    if not union:
        return 0.0
    return len(query_words & chunk_words) / len(union)


def pseudo_embedding(text: str, dim: int = PSEUDO_EMBEDDING_DIM) -> np.ndarray:
    """
    Deterministic hash-derived bag-of-words vector.

    Each word is hashed with md5 (stable across processes, unlike hash())
    to a bucket and a sign. Carries no semantic meaning; it only lets
    identical vocabularies line up when no real embedding is available.
    """
    vector = np.zeros(dim, dtype=float)
    for word in _words(text):
        digest = hashlib.md5(word.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "big") % dim
        sign = 1.0 if digest[4] % 2 == 0 else -1.0
        vector[bucket] += sign

    norm = np.linalg.norm(vector)
    return vector / norm if norm > 0 else vector


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched or zero vectors."""
    a = np.asarray(vec_a, dtype=float)
    b = np.asarray(vec_b, dtype=float)
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def rank_results(results: List[ScoredChunk], k: int) -> List[ScoredChunk]:
    """Clamp scores to [0, 1], order by descending similarity then chunk_index, keep k."""
    clamped = [
        ScoredChunk(chunk=r.chunk, similarity=max(0.0, min(1.0, float(r.similarity))))
        for r in results
    ]
    clamped.sort(key=lambda r: (-r.similarity, r.chunk.chunk_index))
    return clamped[:k]


def truncate_context(results: List[ScoredChunk], max_chars: int = 4000) -> List[ScoredChunk]:
    """
    Greedily keep ranked results while the rendered context fits in max_chars.

    Each result costs its text length plus a fixed formatting overhead.
    Stops at the first result that would overflow; never includes a partial chunk.
    """
    kept: List[ScoredChunk] = []
    total_length = 0
    for result in results:
        item_length = len(result.chunk.text) + CONTEXT_ITEM_OVERHEAD
        if total_length + item_length > max_chars:
            break
        kept.append(result)
        total_length += item_length
    return kept


class RetrievalEngine:
    """Rank a document's chunks against a query, degrading instead of failing."""

    def __init__(
        self,
        vector_store: Optional[VectorStore],
        embedding_model: Optional[EmbeddingModel],
        similarity_floor: float = SIMILARITY_FLOOR
    ):
        """
        Initialize the retrieval engine.

        Args:
            vector_store: VectorStore for similarity search and chunk listing (None disables it)
            embedding_model: EmbeddingModel for query embedding (None forces the fallback path)
            similarity_floor: Minimum similarity a vector match must clear
        """
        self.vector_store = vector_store
        self.embedding_model = embedding_model
        self.similarity_floor = similarity_floor
        self._local_chunks: Dict[str, List[Chunk]] = {}
        self._local_lock = threading.Lock()
        logger.info("Initialized RetrievalEngine")

    def register_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        """Keep a local copy of a document's chunks for the fallback path."""
        with self._local_lock:
            self._local_chunks[document_id] = sorted(chunks, key=lambda c: c.chunk_index)

    def retrieve(self, document_id: str, query_text: str, k: int = 5) -> List[ScoredChunk]:
        """
        Retrieve up to k chunks of a document most relevant to the query.

        1. Embed the query with the embedding provider
        2. Search the vector index restricted to document_id
        3. On any provider error, score locally available chunk text instead

        Args:
            document_id: Document whose chunks are searched
            query_text: Sanitized user question
            k: Maximum number of results (>= 1)

        Returns:
            At most k ScoredChunks, descending similarity, ties by chunk_index

        Raises:
            ValueError: If k < 1
        """
        if k < 1:
            raise ValueError("k must be at least 1")

        # Handle empty query strings gracefully
        if not query_text or not query_text.strip():
            logger.warning("Empty query string provided, returning empty results")
            return []

        try:
            results = self._vector_search(document_id, query_text, k)
            logger.info(
                f"Vector search returned {len(results)} chunks for document {document_id}"
            )
            return rank_results(results, k)
        except Exception as e:
            logger.warning(
                f"Vector search unavailable for document {document_id}, using fallback: {e}"
            )

        return rank_results(self._fallback_search(document_id, query_text), k)

    def _vector_search(self, document_id: str, query_text: str, k: int) -> List[ScoredChunk]:
        if self.embedding_model is None or self.vector_store is None:
            raise RuntimeError("vector search is not configured")

        logger.debug(f"Embedding query: {query_text[:100]}...")
        query_embedding = self.embedding_model.embed_text(query_text)
        return self.vector_store.search(
            document_id, query_embedding, top_k=k, similarity_floor=self.similarity_floor
        )

    def _fallback_search(self, document_id: str, query_text: str) -> List[ScoredChunk]:
        """Score every available chunk with Jaccard overlap plus a pseudo-embedding cosine."""
        chunks = self._available_chunks(document_id)
        if not chunks:
            logger.warning(f"No chunks available for fallback search of document {document_id}")
            return []

        query_vector = pseudo_embedding(query_text)
        scored = []
        for chunk in chunks:
            lexical = jaccard_similarity(query_text, chunk.text)
            hashed = max(0.0, cosine_similarity(query_vector, pseudo_embedding(chunk.text)))
            scored.append(ScoredChunk(
                chunk=chunk,
                similarity=JACCARD_WEIGHT * lexical + PSEUDO_EMBEDDING_WEIGHT * hashed
            ))

        logger.info(f"Fallback search scored {len(scored)} chunks for document {document_id}")
        return scored

    def _available_chunks(self, document_id: str) -> List[Chunk]:
        """Chunks from the document store if reachable, else the local copy."""
        if self.vector_store is not None:
            try:
                chunks = self.vector_store.list_chunks(document_id)
                if chunks:
                    self.register_chunks(document_id, chunks)
                    return chunks
            except Exception as e:
                logger.warning(f"Could not list chunks for document {document_id}: {e}")

        with self._local_lock:
            return list(self._local_chunks.get(document_id, []))
