"""Chunking engine with best-effort page attribution."""
import bisect
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from models.chunk import (
    Chunk,
    PATTERN_BASED,
    DISTRIBUTION_BASED,
    SINGLE_PAGE,
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
)
from config import CHUNK_SIZE, CHUNK_OVERLAP, MIN_CHUNK_SIZE

logger = logging.getLogger(__name__)

# Chunk quality bounds
MIN_VALID_LENGTH = 50
MAX_VALID_LENGTH = 8000
MIN_UNIQUE_WORD_RATIO = 0.3

SENTENCE_ENDERS = ".!?"
SNAP_DISTANCE = 50

# "Page 3", "page 3 of 10", "- 3 -" on a line of their own
PAGE_MARKER_PATTERN = re.compile(
    r"^[ \t]*(?:page[ \t]+(\d{1,5})(?:[ \t]+of[ \t]+\d{1,5})?|-[ \t]*(\d{1,5})[ \t]*-)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
CAPITALIZED_NEXT_WORD = re.compile(r"\s+[\"'(\[]?[A-Z]")


@dataclass
class PageMap:
    """Sorted page start offsets for one document."""
    starts: List[Tuple[int, int]]  # (offset where page begins, page number)
    estimation_method: str
    confidence: str

    def page_at(self, offset: int) -> int:
        offsets = [start for start, _ in self.starts]
        index = bisect.bisect_right(offsets, offset) - 1
        return self.starts[max(index, 0)][1]

    def label_for(self, start: int, end: int) -> Union[int, str]:
        first = self.page_at(start)
        last = self.page_at(max(start, end - 1))
        if first == last:
            return first
        return f"{first}-{last}"


def validate_chunk(text: str) -> bool:
    """
    Check a chunk against the quality invariants.

    Rejects chunks that are too short or too long, that contain no letters,
    or whose unique-word ratio falls below 0.3 (highly repetitive text).
    """
    if not text or not isinstance(text, str):
        return False

    trimmed = text.strip()
    if len(trimmed) < MIN_VALID_LENGTH or len(trimmed) > MAX_VALID_LENGTH:
        return False

    if not any(char.isalpha() for char in trimmed):
        return False

    words = trimmed.lower().split()
    if len(set(words)) < len(words) * MIN_UNIQUE_WORD_RATIO:
        return False

    return True


def clean_text_for_embedding(text: str) -> str:
    """Normalize whitespace, quotes and control characters before embedding."""
    if not text or not isinstance(text, str):
        return ""

    cleaned = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", " ", text)
    cleaned = re.sub(r"\.{3,}", "...", cleaned)
    cleaned = cleaned.replace("“", '"').replace("”", '"')
    cleaned = cleaned.replace("‘", "'").replace("’", "'")
    return re.sub(r"\s+", " ", cleaned).strip()


class ChunkingEngine:
    """Splits extracted document text into overlapping, page-labeled chunks."""

    def __init__(
        self,
        max_chunk_size: int = CHUNK_SIZE,
        overlap_size: int = CHUNK_OVERLAP,
        min_chunk_size: int = MIN_CHUNK_SIZE,
        search_window: int = 200,
    ):
        """
        Initialize ChunkingEngine.

        Args:
            max_chunk_size: Maximum characters per chunk window
            overlap_size: Characters shared between consecutive windows
            min_chunk_size: Minimum distance the window start advances each step
            search_window: Trailing region searched for sentence and word breaks
        """
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if min_chunk_size <= 0 or min_chunk_size > max_chunk_size:
            raise ValueError("min_chunk_size must be between 1 and max_chunk_size")
        if overlap_size < 0:
            raise ValueError("overlap_size must be non-negative")

        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size
        self.min_chunk_size = min_chunk_size
        self.search_window = search_window

    def chunk_text(self, document_id: str, text: str, total_pages: Optional[int] = None) -> List[Chunk]:
        """
        Chunk raw document text with page attribution.

        Args:
            document_id: Owning document
            text: Raw extracted text (pages may be separated by form feeds)
            total_pages: Page count reported by the extractor, if known

        Returns:
            Validated chunks with dense, increasing chunk indexes
        """
        if not text or not text.strip():
            return []

        windows = self._merge_short_tail(text, self._split_windows(text))
        page_map = self._build_page_map(text, total_pages)

        chunks: List[Chunk] = []
        dropped = 0
        for start, end in windows:
            window_text = text[start:end]
            if not validate_chunk(window_text):
                dropped += 1
                continue

            chunks.append(Chunk(
                document_id=document_id,
                chunk_index=len(chunks),
                text=window_text,
                page=page_map.label_for(start, end),
                start_char=start,
                end_char=end,
                estimation_method=page_map.estimation_method,
                confidence=page_map.confidence,
            ))

        logger.info(
            f"Chunked document {document_id}: {len(chunks)} chunks "
            f"({dropped} dropped, pages via {page_map.estimation_method})"
        )
        return chunks

    def _split_windows(self, text: str) -> List[Tuple[int, int]]:
        """Slide a window over the text and return trimmed (start, end) offsets."""
        windows: List[Tuple[int, int]] = []
        length = len(text)
        cursor = 0

        while cursor < length:
            window_end = cursor + self.max_chunk_size

            if window_end >= length:
                self._append_trimmed(windows, text, cursor, length)
                break

            break_point = self._find_break_point(text, cursor, window_end)
            self._append_trimmed(windows, text, cursor, break_point)

            # Always advance by at least min_chunk_size so the loop terminates
            next_cursor = max(break_point - self.overlap_size, cursor + self.min_chunk_size)
            cursor = self._snap_to_word_start(text, next_cursor, break_point)

        return windows

    def _find_break_point(self, text: str, cursor: int, window_end: int) -> int:
        """Pick where the current window ends: paragraph, sentence, word, else hard cut."""
        search_start = max(cursor + self.min_chunk_size, window_end - self.search_window)

        # Paragraph breaks are preferred anywhere past the minimum chunk size
        paragraph_break = text.rfind("\n\n", cursor + self.min_chunk_size, window_end)
        if paragraph_break > cursor + self.min_chunk_size:
            return paragraph_break + 2

        sentence_break = self._find_sentence_break(text, search_start, window_end)
        if sentence_break > search_start:
            return sentence_break

        for index in range(window_end, search_start, -1):
            if text[index].isspace():
                return index

        return window_end

    @staticmethod
    def _find_sentence_break(text: str, start: int, end: int) -> int:
        """Find the last sentence terminator in [start, end) followed by a capitalized word."""
        for index in range(end - 1, start - 1, -1):
            if text[index] not in SENTENCE_ENDERS:
                continue
            if index == len(text) - 1:
                return index + 1
            if CAPITALIZED_NEXT_WORD.match(text, index + 1):
                return index + 1
        return -1

    @staticmethod
    def _snap_to_word_start(text: str, position: int, limit: int) -> int:
        """Move a window start forward off a partial word, never past limit."""
        if position <= 0 or text[position - 1].isspace():
            return position
        for index in range(position, limit):
            if text[index].isspace():
                return index + 1
        return position

    @staticmethod
    def _append_trimmed(windows: List[Tuple[int, int]], text: str, start: int, end: int) -> None:
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if end > start:
            windows.append((start, end))

    @staticmethod
    def _merge_short_tail(text: str, windows: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
        """Fold a trailing fragment too short to survive validation into its predecessor."""
        if len(windows) < 2:
            return windows
        last_start, last_end = windows[-1]
        prev_start, prev_end = windows[-2]
        if last_end - last_start < MIN_VALID_LENGTH and last_end - prev_start <= MAX_VALID_LENGTH:
            return windows[:-2] + [(prev_start, last_end)]
        return windows

    def _build_page_map(self, text: str, total_pages: Optional[int]) -> PageMap:
        """Detect explicit page boundaries, else distribute pages by character offset."""
        content_end = len(text.rstrip())

        form_feed_starts = [
            match.end() for match in re.finditer("\f", text)
            if 0 < match.end() < content_end
        ]
        if self._is_consistent(len(form_feed_starts), total_pages, per_page=False):
            starts = [(0, 1)] + [(offset, page) for page, offset in enumerate(form_feed_starts, start=2)]
            return PageMap(self._clamp(starts, total_pages), PATTERN_BASED, CONFIDENCE_HIGH)

        marker_starts = self._marker_page_starts(text)
        if marker_starts and self._is_consistent(len(marker_starts), total_pages, per_page=True):
            return PageMap(self._clamp(marker_starts, total_pages), PATTERN_BASED, CONFIDENCE_HIGH)

        if total_pages and total_pages > 1:
            average = len(text) / total_pages
            starts = [(0, 1)]
            for page in range(2, total_pages + 1):
                target = int(round((page - 1) * average))
                offset = self._snap_to_whitespace(text, target)
                if offset > starts[-1][0]:
                    starts.append((offset, page))
            return PageMap(starts, DISTRIBUTION_BASED, CONFIDENCE_MEDIUM)

        return PageMap([(0, 1)], SINGLE_PAGE, CONFIDENCE_HIGH)

    @staticmethod
    def _is_consistent(count: int, total_pages: Optional[int], per_page: bool) -> bool:
        """
        Decide whether detected markers agree with the expected page count.

        Form feeds separate pages (expect total_pages - 1); page-number lines
        label pages (expect total_pages). One marker of slack either way.
        """
        if count == 0:
            return False
        if not total_pages:
            return count >= (2 if per_page else 1)
        expected = total_pages if per_page else total_pages - 1
        return abs(count - expected) <= 1

    @staticmethod
    def _marker_page_starts(text: str) -> List[Tuple[int, int]]:
        """
        Turn "Page N" lines into page start offsets.

        A first marker close to the top of the text is read as a header
        (page N starts at the marker); otherwise markers are footers and
        page N + 1 starts after the marker line.
        """
        markers: List[Tuple[int, int, int]] = []
        for match in PAGE_MARKER_PATTERN.finditer(text):
            number = int(match.group(1) or match.group(2))
            if markers and number <= markers[-1][2]:
                continue
            markers.append((match.start(), match.end(), number))

        if not markers:
            return []

        average_page = len(text) / len(markers)
        is_header = markers[0][0] < average_page / 2

        starts: List[Tuple[int, int]] = []
        if is_header:
            first_page = max(1, markers[0][2] - 1) if markers[0][0] > 0 else markers[0][2]
            starts.append((0, first_page))
            for start, _, number in markers:
                if start > 0 and number > starts[-1][1]:
                    starts.append((start, number))
        else:
            starts.append((0, markers[0][2]))
            for _, end, number in markers:
                if end < len(text) and number + 1 > starts[-1][1]:
                    starts.append((end, number + 1))
        return starts

    @staticmethod
    def _clamp(starts: List[Tuple[int, int]], total_pages: Optional[int]) -> List[Tuple[int, int]]:
        if not total_pages:
            return starts
        return [(offset, min(page, total_pages)) for offset, page in starts]

    @staticmethod
    def _snap_to_whitespace(text: str, target: int) -> int:
        """Move a proportional boundary to the nearest whitespace within SNAP_DISTANCE."""
        target = max(0, min(target, len(text) - 1))
        for distance in range(SNAP_DISTANCE + 1):
            for candidate in (target + distance, target - distance):
                if 0 < candidate < len(text) and text[candidate - 1].isspace():
                    return candidate
        return target
