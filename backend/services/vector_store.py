"""Vector store implementation using Supabase pgvector."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from supabase import create_client, Client

from models.chunk import Chunk, ScoredChunk, DISTRIBUTION_BASED, CONFIDENCE_MEDIUM
from config import SUPABASE_URL, SUPABASE_KEY, SIMILARITY_FLOOR
from exceptions import VectorStoreError

logger = logging.getLogger(__name__)


class VectorStore:
    """Store chunk embeddings and run per-document similarity search using Supabase pgvector."""

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = "pdf_chunks",
        match_function: str = "search_pdf_chunks"
    ):
        """
        Initialize the vector store with Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the table holding chunks
            match_function: Name of the pgvector similarity RPC

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.table_name = table_name
        self.match_function = match_function

        # Initialize Supabase client
        self.client: Client = create_client(supabase_url, supabase_key)

        logger.info(f"Initialized VectorStore with table: {table_name}")

    def add_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        """
        Insert chunks (with embeddings when present) for a document.

        The integer `page` column holds the first page; the full label,
        including multi-page ranges, lives in the JSON metadata column.

        Raises:
            ValueError: If chunks list is empty
            VectorStoreError: If database operation fails
        """
        if not chunks:
            raise ValueError("Chunks list cannot be empty")

        created_at = datetime.now(timezone.utc).isoformat()
        records = []
        for chunk in chunks:
            records.append({
                "pdf_id": document_id,
                "chunk_index": chunk.chunk_index,
                "page": chunk.page_start,
                "text": chunk.text,
                "embedding": chunk.embedding,
                "created_at": created_at,
                "metadata": json.dumps({
                    "pageRange": chunk.page_label,
                    "estimationMethod": chunk.estimation_method,
                    "confidence": chunk.confidence,
                    "startChar": chunk.start_char,
                    "endChar": chunk.end_char,
                }),
            })

        try:
            self.client.table(self.table_name).insert(records).execute()
        except Exception as e:
            error_msg = f"Failed to add chunks for {document_id}: {str(e)}"
            logger.error(error_msg)
            raise VectorStoreError(error_msg) from e

        logger.info(f"Stored {len(records)} chunks for document {document_id}")

    def search(
        self,
        document_id: str,
        query_embedding: List[float],
        top_k: int = 5,
        similarity_floor: float = SIMILARITY_FLOOR
    ) -> List[ScoredChunk]:
        """
        Find the chunks of one document most similar to the query vector.

        Args:
            document_id: Document to search within
            query_embedding: Embedding vector for user query
            top_k: Number of chunks to retrieve
            similarity_floor: Minimum cosine similarity a match must clear

        Returns:
            ScoredChunk list with similarity clamped to [0, 1]

        Raises:
            ValueError: If query_embedding is empty or top_k is invalid
            VectorStoreError: If database operation fails
        """
        if not query_embedding:
            raise ValueError("Query embedding cannot be empty")

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        try:
            response = self.client.rpc(
                self.match_function,
                {
                    "query_embedding": query_embedding,
                    "pdf_id_filter": document_id,
                    "match_threshold": similarity_floor,
                    "match_count": top_k
                }
            ).execute()
        except Exception as e:
            error_msg = f"Failed to search vector store: {str(e)}"
            logger.error(error_msg)
            raise VectorStoreError(error_msg) from e

        scored_chunks = []
        for row in response.data or []:
            similarity = max(0.0, min(1.0, float(row.get("similarity") or 0.0)))
            scored_chunks.append(ScoredChunk(
                chunk=self._row_to_chunk(document_id, row),
                similarity=similarity
            ))

        logger.debug(f"Found {len(scored_chunks)} chunks for document {document_id}")
        return scored_chunks

    def list_chunks(self, document_id: str) -> List[Chunk]:
        """
        List every chunk of a document ordered by chunk_index.

        Raises:
            VectorStoreError: If database operation fails
        """
        try:
            response = (
                self.client.table(self.table_name)
                .select("id, pdf_id, page, text, chunk_index, metadata")
                .eq("pdf_id", document_id)
                .order("chunk_index")
                .execute()
            )
        except Exception as e:
            error_msg = f"Failed to list chunks for {document_id}: {str(e)}"
            logger.error(error_msg)
            raise VectorStoreError(error_msg) from e

        return [self._row_to_chunk(document_id, row) for row in response.data or []]

    def delete_chunks(self, document_id: str) -> None:
        """
        Delete every chunk of a document.

        Raises:
            VectorStoreError: If database operation fails
        """
        try:
            self.client.table(self.table_name).delete().eq("pdf_id", document_id).execute()
            logger.info(f"Deleted all chunks for document {document_id}")
        except Exception as e:
            error_msg = f"Failed to delete chunks for {document_id}: {str(e)}"
            logger.error(error_msg)
            raise VectorStoreError(error_msg) from e

    def count(self, document_id: str) -> int:
        """
        Get the number of chunks stored for a document.

        Raises:
            VectorStoreError: If database operation fails
        """
        try:
            response = (
                self.client.table(self.table_name)
                .select("id", count="exact")
                .eq("pdf_id", document_id)
                .execute()
            )
            return response.count if response.count is not None else 0
        except Exception as e:
            error_msg = f"Failed to count chunks for {document_id}: {str(e)}"
            logger.error(error_msg)
            raise VectorStoreError(error_msg) from e

    @staticmethod
    def _row_to_chunk(document_id: str, row: Dict[str, Any]) -> Chunk:
        """Rebuild a Chunk from a pdf_chunks row, preferring the stored page range label."""
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except (ValueError, RecursionError):
                metadata = {}
        if not isinstance(metadata, dict):
            metadata = {}

        page = metadata.get("pageRange") or row.get("page") or 1
        if isinstance(page, str) and page.isdigit():
            page = int(page)

        text = row.get("text") or ""
        start_char = metadata.get("startChar") or 0
        return Chunk(
            document_id=row.get("pdf_id") or document_id,
            chunk_index=int(row.get("chunk_index") or 0),
            text=text,
            page=page,
            start_char=start_char,
            end_char=metadata.get("endChar") or start_char + len(text),
            estimation_method=metadata.get("estimationMethod") or DISTRIBUTION_BASED,
            confidence=metadata.get("confidence") or CONFIDENCE_MEDIUM,
        )
