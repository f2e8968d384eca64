"""Chunk, embed and store a document so it can be chatted with."""
import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from models.chunk import Chunk
from services.chunking_engine import ChunkingEngine, clean_text_for_embedding
from services.embedding_model import EmbeddingModel
from services.vector_store import VectorStore
from services.retrieval_engine import RetrievalEngine
from exceptions import EmbeddingUnavailableError

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 10


@dataclass
class IngestionReport:
    """Summary of one ingested document."""
    document_id: str
    total_pages: int
    chunks_created: int
    chunks_embedded: int
    estimation_method: Optional[str]
    total_chars: int
    avg_chunk_size: int


class DocumentIngestor:
    """Runs the ingestion pipeline for extracted document text."""

    def __init__(
        self,
        chunking_engine: ChunkingEngine,
        embedding_model: Optional[EmbeddingModel],
        vector_store: VectorStore,
        retrieval_engine: Optional[RetrievalEngine] = None,
        batch_size: int = EMBEDDING_BATCH_SIZE
    ):
        self.chunking_engine = chunking_engine
        self.embedding_model = embedding_model
        self.vector_store = vector_store
        self.retrieval_engine = retrieval_engine
        self.batch_size = batch_size

    def ingest(self, document_id: str, text: str, total_pages: Optional[int] = None) -> IngestionReport:
        """
        Chunk, embed and store one document.

        Embedding failures are tolerated: chunks are stored without vectors
        and remain reachable through the retriever's lexical fallback.

        Raises:
            VectorStoreError: If the chunks cannot be stored
        """
        chunks = self.chunking_engine.chunk_text(document_id, text, total_pages)
        if not chunks:
            logger.warning(f"No valid chunks produced for document {document_id}")
            return self._report(document_id, total_pages, [], 0)

        chunks, embedded = self._embed(chunks)
        self.vector_store.add_chunks(document_id, chunks)

        if self.retrieval_engine is not None:
            self.retrieval_engine.register_chunks(document_id, chunks)

        report = self._report(document_id, total_pages, chunks, embedded)
        logger.info(
            f"Ingested document {document_id}: {report.chunks_created} chunks, "
            f"{report.chunks_embedded} embedded"
        )
        return report

    def _embed(self, chunks: List[Chunk]):
        if self.embedding_model is None:
            return chunks, 0

        embedded_chunks: List[Chunk] = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            texts = [clean_text_for_embedding(chunk.text) for chunk in batch]
            try:
                vectors = self.embedding_model.embed_batch(texts)
            except (EmbeddingUnavailableError, ValueError) as e:
                logger.warning(f"Embedding unavailable, storing chunks without vectors: {e}")
                return chunks, 0
            embedded_chunks.extend(
                replace(chunk, embedding=vector) for chunk, vector in zip(batch, vectors)
            )
            logger.debug(f"Embedded batch {start // self.batch_size + 1} ({len(batch)} chunks)")

        return embedded_chunks, len(embedded_chunks)

    @staticmethod
    def _report(document_id: str, total_pages: Optional[int], chunks: List[Chunk], embedded: int) -> IngestionReport:
        total_chars = sum(len(chunk.text) for chunk in chunks)
        return IngestionReport(
            document_id=document_id,
            total_pages=total_pages or 1,
            chunks_created=len(chunks),
            chunks_embedded=embedded,
            estimation_method=chunks[0].estimation_method if chunks else None,
            total_chars=total_chars,
            avg_chunk_size=round(total_chars / len(chunks)) if chunks else 0,
        )
