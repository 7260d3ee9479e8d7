"""Passage and fingerprint data models."""
from dataclasses import dataclass
import numpy as np


@dataclass(frozen=True, eq=False)
class Fingerprint:
    """Fixed-dimensionality embedding vector with its precomputed magnitude."""
    vector: np.ndarray
    magnitude: float

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


@dataclass(frozen=True, eq=False)
class Passage:
    """A normalized slice of a document's text, fingerprinted for retrieval."""
    text: str
    fingerprint: Fingerprint
    document_id: str
    document_name: str
    index: int  # position within the owning document


@dataclass(frozen=True, eq=False)
class ScoredPassage:
    """Passage with its cosine similarity to a query."""
    passage: Passage
    score: float  # -1.0 to 1.0

    @property
    def document_name(self) -> str:
        return self.passage.document_name
