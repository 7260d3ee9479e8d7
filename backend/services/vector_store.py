"""In-memory similarity index over passage fingerprints."""
import logging
from typing import List, Optional
import numpy as np

from errors import DimensionMismatch, InvalidInput
from models.document import Document
from models.passage import Fingerprint, Passage, ScoredPassage

logger = logging.getLogger(__name__)


def cosine(a: Fingerprint, b: Fingerprint) -> float:
    """
    Cosine similarity of two fingerprints using their precomputed magnitudes.

    Raises:
        DimensionMismatch: If the vectors differ in size
    """
    if a.dimension != b.dimension:
        raise DimensionMismatch(a.dimension, b.dimension)
    return float(np.dot(a.vector, b.vector) / (a.magnitude * b.magnitude))


class SimilarityIndex:
    """Stores passages with their fingerprints and ranks them against a query."""

    def __init__(self):
        self._passages: List[Passage] = []
        self._vectors: List[np.ndarray] = []
        self._magnitudes: List[float] = []
        self._dimension: Optional[int] = None
        # Stacked matrix, rebuilt lazily after adds
        self._matrix: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self._passages)

    @property
    def dimension(self) -> Optional[int]:
        """Dimension shared by every fingerprint, None while the index is empty."""
        return self._dimension

    def add(self, passage: Passage, fingerprint: Fingerprint) -> None:
        """
        Add a passage; the first fingerprint fixes the index dimension.

        Raises:
            DimensionMismatch: If the fingerprint does not match the index dimension
        """
        if self._dimension is None:
            self._dimension = fingerprint.dimension
        elif fingerprint.dimension != self._dimension:
            raise DimensionMismatch(self._dimension, fingerprint.dimension)

        self._passages.append(passage)
        self._vectors.append(fingerprint.vector)
        self._magnitudes.append(fingerprint.magnitude)
        self._matrix = None

    def add_document(self, document: Document) -> None:
        """
        Add every passage of a document.

        The whole document is checked before anything is added so a dimension
        mismatch never leaves part of it indexed.
        """
        expected = self._dimension
        for passage in document.passages:
            if expected is None:
                expected = passage.fingerprint.dimension
            elif passage.fingerprint.dimension != expected:
                raise DimensionMismatch(expected, passage.fingerprint.dimension)

        for passage in document.passages:
            self.add(passage, passage.fingerprint)

        logger.debug(
            f"Indexed {document.passage_count} passages from {document.name} "
            f"(index size: {len(self)})"
        )

    def rank(self, query: Fingerprint, k: int) -> List[ScoredPassage]:
        """
        Rank stored passages by cosine similarity to the query.

        Args:
            query: Query fingerprint
            k: Maximum number of results

        Returns:
            min(k, len(self)) scored passages, highest score first; equal
            scores keep insertion order

        Raises:
            InvalidInput: If k is not positive
            DimensionMismatch: If the query dimension differs from the index
        """
        if k <= 0:
            raise InvalidInput("k must be positive", {"k": k})

        if not self._passages:
            return []

        if query.dimension != self._dimension:
            raise DimensionMismatch(self._dimension, query.dimension)

        if self._matrix is None:
            self._matrix = np.vstack(self._vectors)

        dots = self._matrix @ query.vector
        scores = dots / (np.asarray(self._magnitudes) * query.magnitude)

        # Stable sort on negated scores keeps insertion order among ties
        order = np.argsort(-scores, kind="stable")[:k]

        return [
            ScoredPassage(passage=self._passages[i], score=float(scores[i]))
            for i in order
        ]
