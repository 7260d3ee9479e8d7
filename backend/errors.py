"""Error taxonomy shared by the RAG core and the HTTP layer."""
from typing import Any, Dict, Optional


class RagError(Exception):
    """Base error with a structured code, message and details."""

    code = "RAG_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class NotFound(RagError):
    """Unknown conversation or document id."""
    code = "NOT_FOUND"


class ConversationNotFound(NotFound):
    code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation not found: {conversation_id}",
            {"conversation_id": conversation_id}
        )


class ProviderUnavailable(RagError):
    """Embedding or generation backend unreachable, timed out or errored."""
    code = "PROVIDER_UNAVAILABLE"


class IngestFailed(RagError):
    """Extraction or chunking produced no usable text."""
    code = "INGEST_FAILED"


class InvalidInput(RagError):
    """Request rejected before any state mutation."""
    code = "INVALID_INPUT"


class DimensionMismatch(ValueError):
    """Fingerprints of different dimensionality were compared or indexed together."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Fingerprint dimension mismatch: expected {expected}, got {actual}"
        )
