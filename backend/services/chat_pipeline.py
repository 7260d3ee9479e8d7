"""Ingest and chat orchestration over the conversation store."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from config import HISTORY_MAX_TURNS
from errors import InvalidInput, ProviderUnavailable
from models.conversation import DialogueTurn, USER, ASSISTANT
from models.document import Document
from models.passage import ScoredPassage
from services.conversation_manager import ConversationManager
from services.document_loader import DocumentLoader
from services.language_detector import LanguageDetector
from services.llm_client import GenerationProvider
from services.prompt_builder import PromptAssembler
from services.retrieval_engine import RetrievalEngine, RetrievalResult
from services.safety_filter import REFUSAL_MESSAGE, SafetyFilter, UnsafeContentClassifier

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = (
    "Sorry, the language engine is unavailable right now. Please try again in a moment."
)


@dataclass
class ChatReply:
    """Outcome of one chat request."""
    reply: str
    target_language: str
    detected_language: Optional[str] = None
    sources: List[ScoredPassage] = field(default_factory=list)
    flagged: bool = False  # reply replaced by the refusal message
    degraded: bool = False  # provider failure, fallback message returned
    prompt_tokens: int = 0


class ChatPipeline:
    """
    Runs ingest and chat requests.

    Provider calls (extraction, embedding, generation) happen before the
    conversation lock is taken; the store is only touched to publish a
    finished document or to append a finished exchange.
    """

    def __init__(
        self,
        conversation_manager: ConversationManager,
        retrieval_engine: RetrievalEngine,
        generation_provider: GenerationProvider,
        document_loader: Optional[DocumentLoader] = None,
        prompt_assembler: Optional[PromptAssembler] = None,
        language_detector: Optional[LanguageDetector] = None,
        safety_filter: Optional[UnsafeContentClassifier] = None,
        history_max_turns: int = HISTORY_MAX_TURNS
    ):
        self.conversation_manager = conversation_manager
        self.retrieval_engine = retrieval_engine
        self.generation_provider = generation_provider
        self.document_loader = document_loader or DocumentLoader()
        self.prompt_assembler = prompt_assembler or PromptAssembler(max_history_turns=history_max_turns)
        self.language_detector = language_detector or LanguageDetector(generation_provider)
        self.safety_filter = safety_filter or SafetyFilter()
        self.history_max_turns = history_max_turns

    async def ingest(self, conversation_id: str, filename: str, data: bytes) -> Document:
        """
        Extract, chunk and fingerprint a file, then publish it to the conversation.

        Raises:
            ConversationNotFound: Unknown conversation (checked before any work)
            IngestFailed: No usable text
            ProviderUnavailable: Embedding backend failure; nothing is published
        """
        self.conversation_manager.get(conversation_id)

        start_time = time.time()
        text = await asyncio.to_thread(self.document_loader.extract, data, filename)
        document = await self.retrieval_engine.build_document(filename, text)
        await self.conversation_manager.add_document(conversation_id, document)

        logger.info(
            f"Ingested {filename} into {conversation_id}: {document.passage_count} passages "
            f"in {time.time() - start_time:.2f}s",
            extra={"conversation_id": conversation_id}
        )
        return document

    async def reply(self, conversation_id: Optional[str], message: Optional[str], language: Optional[str] = None) -> ChatReply:
        """
        Answer a user message grounded in the conversation's documents.

        Provider failures yield FALLBACK_MESSAGE and leave history untouched.
        Unsafe generated text is replaced by REFUSAL_MESSAGE, and the refusal is
        what gets stored.

        Raises:
            InvalidInput: Missing conversation id or empty message
            ConversationNotFound: Unknown conversation
        """
        if not conversation_id:
            raise InvalidInput("conversationId is required")
        if not message or not message.strip():
            raise InvalidInput("message is required and cannot be empty")

        self.conversation_manager.get(conversation_id)
        message = message.strip()

        detected, target_language = await self.language_detector.resolve(message, language)

        try:
            retrieval = await self._retrieve(conversation_id, message)
            has_documents = bool(self.conversation_manager.documents(conversation_id))
            history = self.conversation_manager.history(conversation_id, self.history_max_turns)

            instruction = self.prompt_assembler.assemble(
                history=history,
                passages=retrieval.passages,
                user_message=message,
                target_language=target_language,
                has_documents=has_documents,
                weak=retrieval.weak
            )
            prompt_tokens = self.prompt_assembler.count_tokens(instruction)
            logger.debug(f"Prompt assembled: {prompt_tokens} tokens")

            response = await self.generation_provider.generate(instruction.system, instruction.messages)
        except ProviderUnavailable as e:
            logger.error(
                f"Provider unavailable, returning fallback reply: {e.message}",
                extra={"conversation_id": conversation_id, "error_code": e.code}
            )
            return ChatReply(
                reply=FALLBACK_MESSAGE,
                target_language=target_language,
                detected_language=detected,
                degraded=True
            )

        reply_text = response.text
        flagged = self.safety_filter.is_unsafe(reply_text)
        if flagged:
            logger.warning(
                "Generated reply flagged unsafe, replaced with refusal",
                extra={"conversation_id": conversation_id}
            )
            reply_text = REFUSAL_MESSAGE

        await self.conversation_manager.append_turns(conversation_id, [
            DialogueTurn(role=USER, text=message),
            DialogueTurn(role=ASSISTANT, text=reply_text),
        ])

        return ChatReply(
            reply=reply_text,
            target_language=target_language,
            detected_language=detected,
            sources=retrieval.passages,
            flagged=flagged,
            prompt_tokens=prompt_tokens
        )

    async def _retrieve(self, conversation_id: str, message: str) -> RetrievalResult:
        index = self.conversation_manager.index(conversation_id)
        return await self.retrieval_engine.retrieve(message, index)
