"""Conversation manager holding per-conversation documents, index and history."""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from errors import ConversationNotFound
from models.conversation import Conversation, DialogueTurn
from models.document import Document
from services.vector_store import SimilarityIndex

logger = logging.getLogger(__name__)


class ConversationManager:
    """
    In-memory conversation store.

    Each conversation has its own asyncio.Lock. Mutations (adding a document,
    appending turns) take only that lock and do no I/O while holding it, so
    unrelated conversations never wait on each other and the critical section
    stays short. Reads return copies or immutable snapshots.
    """

    def __init__(self):
        """Initialize an empty store."""
        self._conversations: Dict[str, Conversation] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        logger.info("ConversationManager initialized (in-memory)")

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def create(self) -> str:
        """
        Create a new, empty conversation.

        Returns:
            Fresh conversation ID
        """
        conversation_id = self._generate_conversation_id()
        while conversation_id in self._conversations:
            conversation_id = self._generate_conversation_id()

        self._conversations[conversation_id] = Conversation(
            conversation_id=conversation_id,
            index=SimilarityIndex()
        )
        self._locks[conversation_id] = asyncio.Lock()

        logger.info(f"Created new conversation: {conversation_id}")
        return conversation_id

    def get(self, conversation_id: Optional[str]) -> Conversation:
        """
        Look up a conversation.

        Raises:
            ConversationNotFound: If the ID was never created or has been evicted
        """
        conversation = self._conversations.get(conversation_id) if conversation_id else None
        if conversation is None:
            raise ConversationNotFound(str(conversation_id))
        return conversation

    async def add_document(self, conversation_id: str, document: Document) -> None:
        """
        Publish a fully built document into a conversation.

        The document list and the similarity index are updated in the same
        critical section, so readers see either all of the document or none.
        """
        async with self._lock_for(conversation_id):
            conversation = self.get(conversation_id)
            conversation.index.add_document(document)
            conversation.documents.append(document)
            conversation.last_active = datetime.now()

        logger.info(
            f"Added document {document.name} ({document.passage_count} passages) "
            f"to conversation {conversation_id}",
            extra={"conversation_id": conversation_id}
        )

    async def append_turns(self, conversation_id: str, turns: Sequence[DialogueTurn]) -> None:
        """
        Append dialogue turns, in order, to the live conversation record.

        All turns of one call land contiguously.
        """
        async with self._lock_for(conversation_id):
            conversation = self.get(conversation_id)
            conversation.turns.extend(turns)
            conversation.last_active = datetime.now()

        logger.debug(
            f"Appended {len(turns)} turns to conversation {conversation_id}",
            extra={"conversation_id": conversation_id}
        )

    def history(self, conversation_id: str, max_turns: Optional[int] = None) -> List[DialogueTurn]:
        """
        Get dialogue turns in creation order.

        Args:
            conversation_id: ID of the conversation
            max_turns: Keep only the most recent N turns (oldest dropped first)

        Returns:
            Copy of the turn list
        """
        turns = list(self.get(conversation_id).turns)
        if max_turns is not None:
            turns = turns[-max_turns:] if max_turns > 0 else []
        return turns

    def documents(self, conversation_id: str) -> Tuple[Document, ...]:
        """Snapshot of the documents published so far."""
        return tuple(self.get(conversation_id).documents)

    def index(self, conversation_id: str) -> SimilarityIndex:
        """The conversation's similarity index."""
        return self.get(conversation_id).index

    def evict(self, conversation_id: str) -> None:
        """
        Remove a conversation.

        Raises:
            ConversationNotFound: If the ID is unknown
        """
        self.get(conversation_id)
        del self._conversations[conversation_id]
        del self._locks[conversation_id]
        logger.info(f"Evicted conversation: {conversation_id}")

    def purge_idle(self, max_idle_seconds: float, now: Optional[datetime] = None) -> List[str]:
        """
        Evict conversations idle longer than max_idle_seconds.

        Conversations whose lock is currently held are skipped.

        Returns:
            IDs of evicted conversations
        """
        now = now or datetime.now()
        cutoff = now - timedelta(seconds=max_idle_seconds)

        expired = [
            cid for cid, conversation in self._conversations.items()
            if conversation.last_active < cutoff and not self._locks[cid].locked()
        ]
        for cid in expired:
            self.evict(cid)

        if expired:
            logger.info(f"Purged {len(expired)} idle conversations")
        return expired

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            raise ConversationNotFound(str(conversation_id))
        return lock

    def _generate_conversation_id(self) -> str:
        """
        Generate a unique conversation ID.

        Returns:
            Unique conversation ID string
        """
        return f"conv_{uuid.uuid4().hex}"
