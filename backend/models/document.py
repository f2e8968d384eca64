"""Document data models."""
from dataclasses import dataclass


@dataclass
class ExtractedDocument:
    """Raw text extracted from a PDF, pages separated by form feeds."""
    filename: str
    text: str
    total_pages: int
