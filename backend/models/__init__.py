"""Data models for Niglen document chat."""
from .passage import Fingerprint, Passage, ScoredPassage
from .document import Document
from .conversation import Conversation, DialogueTurn, USER, ASSISTANT
from .api import ChatRequest, ChatResponse, SessionResponse, UploadResponse, SourceInfo

__all__ = [
    "Fingerprint",
    "Passage",
    "ScoredPassage",
    "Document",
    "Conversation",
    "DialogueTurn",
    "USER",
    "ASSISTANT",
    "ChatRequest",
    "ChatResponse",
    "SessionResponse",
    "UploadResponse",
    "SourceInfo",
]
