"""Prompt assembly: safety directive, dialogue history and retrieved context."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import tiktoken

from config import HISTORY_MAX_TURNS
from errors import InvalidInput
from models.conversation import DialogueTurn, USER
from models.passage import ScoredPassage
from services.language_detector import is_language_name

logger = logging.getLogger(__name__)

ASSISTANT_NAME = "Niglen"

SAFETY_RULES = """STRICT SAFETY RULES:
- Never generate offensive, hateful, sexual, violent, or illegal content.
- If the user asks for unsafe or inappropriate content, politely refuse.
- Provide helpful, educational, and respectful responses only.
- Always answer in: {language}
- Never mix languages."""

GROUNDED_RULES = """- Base your answer strictly on the document context provided with the question.
- If the context does not contain the answer, say that you don't know.
- Keep answers clear and concise."""

WEAK_CONTEXT_NOTE = (
    "- The document excerpts below matched the question poorly and may not be "
    "relevant. If they do not answer it, say that you don't know."
)

NO_DOCUMENT_RULES = """- No document has been attached to this conversation.
- You may answer from general knowledge.
- Mention that the user can attach a document if they want answers based on it.
- Keep answers clear and concise."""

NO_CONTEXT = "No document context available."


@dataclass
class Instruction:
    """System directive plus ordered chat messages for the generation provider."""
    system: str
    messages: List[Dict[str, str]] = field(default_factory=list)

    def as_text(self) -> str:
        return "\n\n".join([self.system] + [m["content"] for m in self.messages])


class PromptAssembler:
    """Builds the instruction set sent to the generation provider."""

    def __init__(self, max_history_turns: int = HISTORY_MAX_TURNS, encoding_name: str = "o200k_base"):
        """
        Args:
            max_history_turns: Most recent turns kept in the prompt
            encoding_name: tiktoken encoding used for prompt token estimates
        """
        self.max_history_turns = max_history_turns
        self.encoding_name = encoding_name
        self._encoder = None

    def assemble(
        self,
        history: Sequence[DialogueTurn],
        passages: Sequence[ScoredPassage],
        user_message: str,
        target_language: str,
        has_documents: Optional[bool] = None,
        weak: bool = False
    ) -> Instruction:
        """
        Assemble system directive and messages.

        Args:
            history: Dialogue turns in creation order
            passages: Retrieved passages, best first
            user_message: The current question
            target_language: Language the reply must be written in
            has_documents: Whether the conversation holds any document;
                defaults to whether passages were retrieved
            weak: Retrieval found no passage with positive similarity

        Returns:
            Instruction with the safety directive and the message list
        """
        if has_documents is None:
            has_documents = bool(passages)

        system = self.build_system_directive(target_language, has_documents, weak and bool(passages))

        messages = [
            {"role": turn.role, "content": turn.text}
            for turn in self.truncate_history(history)
        ]
        messages.append({
            "role": USER,
            "content": self.build_user_message(user_message, passages)
        })

        return Instruction(system=system, messages=messages)

    @staticmethod
    def build_system_directive(target_language: str, has_documents: bool, weak: bool = False) -> str:
        """
        The non-overridable directive; only the language and mode vary.

        Raises:
            InvalidInput: If target_language is not a plain language name
        """
        if not is_language_name(target_language):
            raise InvalidInput("Target language must be a plain language name")
        parts = [
            f"You are {ASSISTANT_NAME}, a safe and responsible multilingual AI assistant.",
            "",
            SAFETY_RULES.format(language=target_language),
        ]
        if has_documents:
            parts.append(GROUNDED_RULES)
            if weak:
                parts.append(WEAK_CONTEXT_NOTE)
        else:
            parts.append(NO_DOCUMENT_RULES)
        return "\n".join(parts)

    @staticmethod
    def build_user_message(user_message: str, passages: Sequence[ScoredPassage]) -> str:
        if passages:
            context = "\n\n".join(
                f"[{p.passage.document_name}] {p.passage.text}" for p in passages
            )
        else:
            context = NO_CONTEXT

        return f"""User question:
{user_message}

Document context:
{context}"""

    def truncate_history(self, history: Sequence[DialogueTurn]) -> List[DialogueTurn]:
        """Keep the most recent turns, dropping the oldest first."""
        if self.max_history_turns <= 0:
            return []
        return list(history)[-self.max_history_turns:]

    def count_tokens(self, instruction: Instruction) -> int:
        """Estimate the instruction's token volume."""
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(self.encoding_name)
        return len(self._encoder.encode(instruction.as_text()))
