"""Keyword safety filter applied to generated replies."""
import re
from typing import Dict, List, Mapping, Pattern, Protocol, Sequence

REFUSAL_MESSAGE = (
    "I'm here to provide safe and helpful information, "
    "so I can't assist with that request."
)

# Category -> keywords. Extend by passing a different mapping to SafetyFilter.
DEFAULT_CATEGORIES: Dict[str, List[str]] = {
    "violence": ["kill", "bomb", "terror", "violence"],
    "self_harm": ["suicide"],
    "sexual": ["porn", "rape", "nude", "sex"],
    "hate": ["hate", "racist"],
}


class UnsafeContentClassifier(Protocol):
    """Anything the chat pipeline can ask whether a reply is unsafe."""

    def is_unsafe(self, text: str) -> bool:
        ...


class SafetyFilter:
    """
    Flags text containing any keyword of any configured category.

    Keywords match case-insensitively at the start of a word, so "kill"
    catches "killing" but not "skill".
    """

    def __init__(self, categories: Mapping[str, Sequence[str]] = DEFAULT_CATEGORIES):
        self.categories = {name: list(words) for name, words in categories.items()}
        self._patterns: Dict[str, Pattern] = {
            name: re.compile(
                r"\b(?:" + "|".join(re.escape(w.lower()) for w in words) + r")",
                re.IGNORECASE
            )
            for name, words in self.categories.items()
            if words
        }

    def matched_categories(self, text: str) -> List[str]:
        """Names of the categories whose keywords occur in text."""
        if not text:
            return []
        return [name for name, pattern in self._patterns.items() if pattern.search(text)]

    def is_unsafe(self, text: str) -> bool:
        return bool(self.matched_categories(text))
