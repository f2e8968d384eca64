"""Document loading service for PDF text extraction."""
import logging
import os
from typing import List
import fitz  # PyMuPDF

from models.document import ExtractedDocument

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\f"


class DocumentLoader:
    """Loads PDF files and extracts their text with form feeds between pages."""

    def __init__(self, docs_directory: str = "uploads"):
        """
        Initialize DocumentLoader.

        Args:
            docs_directory: Path to directory containing PDF files
        """
        self.docs_directory = docs_directory

    def load_documents(self) -> List[ExtractedDocument]:
        """
        Load all PDF files from the documents directory.

        Corrupted files are logged and skipped.
        """
        documents = []

        if not os.path.exists(self.docs_directory):
            logger.error(f"Documents directory not found: {self.docs_directory}")
            return documents

        pdf_files = [f for f in os.listdir(self.docs_directory) if f.lower().endswith('.pdf')]
        logger.info(f"Found {len(pdf_files)} PDF files in {self.docs_directory}")

        for filename in sorted(pdf_files):
            filepath = os.path.join(self.docs_directory, filename)

            try:
                document = self.load_pdf(filepath)
                documents.append(document)
                logger.info(f"Loaded {filename}: {document.total_pages} pages")
            except Exception as e:
                logger.error(f"Error loading {filename}: {str(e)}", exc_info=True)
                continue

        logger.info(f"Successfully loaded {len(documents)} documents")
        return documents

    def load_pdf(self, filepath: str) -> ExtractedDocument:
        """
        Extract the text of one PDF.

        Pages are joined with form feeds so the chunker can attribute
        pages from explicit boundaries instead of estimating them.
        """
        filename = os.path.basename(filepath)
        try:
            with fitz.open(filepath) as pdf_document:
                pages = [page.get_text() for page in pdf_document]
        except Exception as e:
            logger.error(f"Failed to load PDF {filename}: {str(e)}")
            raise

        return ExtractedDocument(
            filename=filename,
            text=PAGE_SEPARATOR.join(pages),
            total_pages=len(pages)
        )
