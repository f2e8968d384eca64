"""
Document Ingestion Script for the PDF Study Assistant.

This script:
1. Loads all PDFs from a directory
2. Optionally deletes each document's existing chunks
3. Chunks the text with page attribution
4. Generates embeddings (chunks are stored without them if the provider is down)
5. Stores everything in Supabase pgvector

Usage:
    python ingest_documents.py --docs uploads [--replace]
"""
import sys
import argparse
import logging
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from services.document_loader import DocumentLoader
from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingModel
from services.vector_store import VectorStore
from services.ingestion import DocumentIngestor
from logger import setup_logging
from config import LOG_LEVEL

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest PDFs into the chunk store")
    parser.add_argument("--docs", default="uploads", help="Directory containing PDF files")
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Delete each document's existing chunks before storing new ones"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main ingestion process. Returns a process exit code."""
    args = parse_args(argv)
    setup_logging(LOG_LEVEL)

    try:
        logger.info("Starting document ingestion")

        embedding_model = EmbeddingModel()
        vector_store = VectorStore()
        ingestor = DocumentIngestor(ChunkingEngine(), embedding_model, vector_store)

        documents = DocumentLoader(docs_directory=args.docs).load_documents()
        if not documents:
            logger.error(f"No documents found in {args.docs}")
            return 1

        for document in documents:
            document_id = Path(document.filename).stem
            if args.replace:
                vector_store.delete_chunks(document_id)

            report = ingestor.ingest(document_id, document.text, document.total_pages)
            logger.info(
                f"{document.filename}: {report.chunks_created} chunks "
                f"({report.chunks_embedded} embedded, pages via {report.estimation_method})"
            )

        logger.info(f"Ingestion complete: {len(documents)} documents processed")
        return 0

    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Ingestion failed: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
