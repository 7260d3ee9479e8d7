"""Document data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple

from .passage import Passage


@dataclass(frozen=True, eq=False)
class Document:
    """An ingested document; immutable once built."""
    document_id: str
    name: str
    passages: Tuple[Passage, ...]
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def passage_count(self) -> int:
        return len(self.passages)
