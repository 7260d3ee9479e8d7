"""Request and response models for the HTTP API."""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(_CamelModel):
    """Body of POST /chat."""
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: Optional[str] = None
    language: Optional[str] = "auto"


class SourceInfo(_CamelModel):
    """A retrieved passage reported back to the client."""
    document: str
    score: float
    excerpt: str


class ChatResponse(_CamelModel):
    """Body returned by POST /chat."""
    reply: str
    detected_lang: Optional[str] = Field(default=None, alias="detectedLang")
    target_lang: Optional[str] = Field(default=None, alias="targetLang")
    sources: List[SourceInfo] = Field(default_factory=list)
    flagged: bool = False
    degraded: bool = False
    prompt_tokens: int = Field(default=0, alias="promptTokens")


class SessionResponse(_CamelModel):
    """Body returned by POST /session."""
    conversation_id: str = Field(alias="conversationId")


class DocumentInfo(_CamelModel):
    document_id: str = Field(alias="documentId")
    name: str
    chunks: int


class TurnInfo(_CamelModel):
    role: str
    text: str


class SessionDetail(_CamelModel):
    """Body returned by GET /session/{id}."""
    conversation_id: str = Field(alias="conversationId")
    documents: List[DocumentInfo]
    history: List[TurnInfo]


class UploadResponse(_CamelModel):
    """Body returned by POST /upload."""
    success: bool = True
    document_id: str = Field(alias="documentId")
    name: str
    chunks: int
