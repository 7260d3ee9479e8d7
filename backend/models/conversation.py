"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, TYPE_CHECKING

from .document import Document

if TYPE_CHECKING:
    from services.vector_store import SimilarityIndex

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


@dataclass(frozen=True)
class DialogueTurn:
    """Represents a single message in a conversation."""
    role: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown dialogue role: {self.role}")


@dataclass
class Conversation:
    """Represents a multi-turn conversation with its uploaded documents."""
    conversation_id: str
    index: "SimilarityIndex"
    turns: List[DialogueTurn] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    last_active: datetime = field(default_factory=datetime.now)
