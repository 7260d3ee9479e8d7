"""Chunking engine producing overlapping fixed-size character windows."""
import logging
import re
from typing import List

from config import CHUNK_SIZE, CHUNK_OVERLAP
from errors import InvalidInput

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim the ends."""
    return _WHITESPACE.sub(" ", text or "").strip()


def validate_window(size: int, overlap: int) -> None:
    """
    Check chunk parameters.

    Raises:
        InvalidInput: If size is not positive, overlap is negative, or
            overlap >= size (the window would never advance)
    """
    if size <= 0:
        raise InvalidInput("Chunk size must be positive", {"size": size})
    if overlap < 0:
        raise InvalidInput("Chunk overlap cannot be negative", {"overlap": overlap})
    if overlap >= size:
        raise InvalidInput(
            "Chunk overlap must be smaller than chunk size",
            {"size": size, "overlap": overlap}
        )


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """
    Split text into overlapping windows over its whitespace-normalized form.

    Window i covers [i * step, i * step + size) with step = size - overlap,
    clipped to the text length. Splitting stops at the first window that
    reaches the end of the text.

    Args:
        text: Raw document text
        size: Window size in characters
        overlap: Characters shared by consecutive windows

    Returns:
        Ordered passage texts, empty for empty or whitespace-only input

    Raises:
        InvalidInput: If the window parameters are degenerate
    """
    validate_window(size, overlap)

    clean = normalize_whitespace(text)
    if not clean:
        return []

    step = size - overlap
    passages = []
    start = 0

    while True:
        end = min(start + size, len(clean))
        passages.append(clean[start:end])
        if end == len(clean):
            break
        start += step

    return passages


class ChunkingEngine:
    """Segments document text into retrievable passages."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP):
        """
        Initialize ChunkingEngine.

        Args:
            chunk_size: Window size in characters
            chunk_overlap: Overlap between consecutive windows in characters

        Raises:
            InvalidInput: If overlap >= size or either value is out of range
        """
        validate_window(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk(self, text: str) -> List[str]:
        """Chunk text with the configured window."""
        passages = chunk_text(text, self.chunk_size, self.chunk_overlap)
        logger.debug(
            f"Chunked {len(text or '')} chars into {len(passages)} passages "
            f"(size={self.chunk_size}, overlap={self.chunk_overlap})"
        )
        return passages
