"""Reply language resolution."""
import logging
import re
from typing import Optional, Tuple

from config import DEFAULT_LANGUAGE
from errors import InvalidInput, ProviderUnavailable
from services.llm_client import GenerationProvider

logger = logging.getLogger(__name__)

AUTO = "auto"

MAX_LANGUAGE_CHARS = 40
# One line of letters, words separated by a single space or hyphen
_LANGUAGE_NAME = re.compile(r"[^\W\d_]+(?:[ -][^\W\d_]+)*")


def is_language_name(value: Optional[str]) -> bool:
    """Whether value is safe to place in the system directive as a language name."""
    return (
        isinstance(value, str)
        and len(value) <= MAX_LANGUAGE_CHARS
        and _LANGUAGE_NAME.fullmatch(value) is not None
    )


DETECTOR_DIRECTIVE = "You are a precise language detector."

DETECT_PROMPT = """Identify the language of the following text.
Respond with ONLY the language name in English.

Text:
{text}"""


class LanguageDetector:
    """Decides which language a reply must be written in."""

    def __init__(self, provider: GenerationProvider, default_language: str = DEFAULT_LANGUAGE):
        self.provider = provider
        self.default_language = default_language

    async def detect(self, text: str) -> Optional[str]:
        """
        Ask the generation provider to name the language of text.

        Returns:
            Language name, or None when detection fails or the answer is unusable
        """
        try:
            response = await self.provider.generate(
                DETECTOR_DIRECTIVE,
                [{"role": "user", "content": DETECT_PROMPT.format(text=text)}]
            )
        except ProviderUnavailable as e:
            logger.warning(f"Language detection failed: {e.message}")
            return None

        answer = response.text.strip().strip(".").strip()
        # A detector that rambles is not answering the question
        if not is_language_name(answer) or len(answer.split()) > 3:
            logger.warning(f"Unusable language detection answer: {answer[:50]!r}")
            return None
        return answer

    async def resolve(self, message: str, requested: Optional[str]) -> Tuple[Optional[str], str]:
        """
        Pick the target language for a reply.

        Args:
            message: The user message
            requested: Language asked for by the client, or "auto"/None

        Returns:
            (detected language or None, target language)

        Raises:
            InvalidInput: If the requested language is not a plain language name
        """
        if requested and requested.strip() and requested.strip().lower() != AUTO:
            language = requested.strip()
            if not is_language_name(language):
                raise InvalidInput(
                    "language must be a language name such as \"English\" or \"auto\"",
                    {"max_chars": MAX_LANGUAGE_CHARS}
                )
            return None, language

        detected = await self.detect(message)
        return detected, detected or self.default_language

