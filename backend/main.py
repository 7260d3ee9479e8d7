"""Main entry point for the Niglen document chat API."""
import asyncio
import logging
from typing import Optional
import httpx
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from config import (
    PORT,
    LOG_LEVEL,
    LOG_FORMAT,
    CORS_ORIGINS,
    EMBEDDING_BACKEND,
    PROVIDER_TIMEOUT,
    GENERATION_BACKEND,
    CONVERSATION_TTL_SECONDS,
    MAX_UPLOAD_BYTES,
)
from errors import RagError, NotFound, InvalidInput, IngestFailed, ProviderUnavailable
from logger import setup_logging
from models.api import (
    ChatRequest,
    ChatResponse,
    DocumentInfo,
    SessionDetail,
    SessionResponse,
    SourceInfo,
    TurnInfo,
    UploadResponse,
)
from services.chat_pipeline import ChatPipeline
from services.chunking_engine import ChunkingEngine
from services.conversation_manager import ConversationManager
from services.embedding_model import Fingerprinter, create_embedding_provider
from services.llm_client import create_generation_provider
from services.retrieval_engine import RetrievalEngine

# Initialize logging
logger = logging.getLogger(__name__)

EXCERPT_CHARS = 200

# Initialize FastAPI app
app = FastAPI(
    title="Niglen Document Chat",
    description="Multilingual chat grounded in uploaded documents",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
conversation_manager: ConversationManager = None
chat_pipeline: ChatPipeline = None
purge_task: Optional[asyncio.Task] = None
http_client: Optional[httpx.AsyncClient] = None


def build_pipeline(manager: ConversationManager, client: Optional[httpx.AsyncClient] = None) -> ChatPipeline:
    """Wire the configured providers into a ChatPipeline sharing one HTTP client."""
    fingerprinter = Fingerprinter(create_embedding_provider(EMBEDDING_BACKEND, client))
    retrieval_engine = RetrievalEngine(ChunkingEngine(), fingerprinter)
    generation_provider = create_generation_provider(GENERATION_BACKEND, client)
    return ChatPipeline(manager, retrieval_engine, generation_provider)


async def purge_idle_conversations(ttl_seconds: int) -> None:
    """Periodically evict conversations idle longer than ttl_seconds."""
    interval = max(1, ttl_seconds // 4)
    while True:
        await asyncio.sleep(interval)
        conversation_manager.purge_idle(ttl_seconds)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global conversation_manager, chat_pipeline, purge_task, http_client

    setup_logging(LOG_LEVEL, LOG_FORMAT)
    logger.info("Initializing Niglen document chat services...")

    try:
        http_client = httpx.AsyncClient(timeout=PROVIDER_TIMEOUT)
        conversation_manager = ConversationManager()
        chat_pipeline = build_pipeline(conversation_manager, http_client)
        logger.info(
            f"Initialized ChatPipeline (embedding={EMBEDDING_BACKEND}, generation={GENERATION_BACKEND})"
        )
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    if CONVERSATION_TTL_SECONDS > 0:
        purge_task = asyncio.create_task(purge_idle_conversations(CONVERSATION_TTL_SECONDS))
        logger.info(f"Idle conversation expiry enabled ({CONVERSATION_TTL_SECONDS}s)")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background work and release the shared HTTP client."""
    if purge_task is not None:
        purge_task.cancel()
    if http_client is not None:
        await http_client.aclose()
        logger.info("Closed shared HTTP client")


def _http_error(error: RagError) -> HTTPException:
    """Map the error taxonomy onto HTTP status codes."""
    if isinstance(error, InvalidInput):
        status_code = 400
    elif isinstance(error, NotFound):
        status_code = 404
    elif isinstance(error, IngestFailed):
        status_code = 422
    elif isinstance(error, ProviderUnavailable):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail={"error": error.to_dict()})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "niglen-document-chat",
        "version": "1.0.0",
        "conversations": len(conversation_manager) if conversation_manager else 0
    }


@app.post("/session", response_model=SessionResponse)
async def create_session() -> SessionResponse:
    """Create a new conversation."""
    return SessionResponse(conversation_id=conversation_manager.create())


@app.get("/session/{conversation_id}", response_model=SessionDetail)
async def get_session(conversation_id: str) -> SessionDetail:
    """Documents and dialogue history of a conversation."""
    try:
        documents = conversation_manager.documents(conversation_id)
        history = conversation_manager.history(conversation_id)
    except NotFound as e:
        raise _http_error(e)

    return SessionDetail(
        conversation_id=conversation_id,
        documents=[
            DocumentInfo(document_id=d.document_id, name=d.name, chunks=d.passage_count)
            for d in documents
        ],
        history=[TurnInfo(role=t.role, text=t.text) for t in history]
    )


@app.delete("/session/{conversation_id}")
async def delete_session(conversation_id: str):
    """Evict a conversation."""
    try:
        conversation_manager.evict(conversation_id)
    except NotFound as e:
        raise _http_error(e)
    return {"success": True}


@app.post("/upload", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    conversationId: Optional[str] = Form(None)
) -> UploadResponse:
    """
    Upload a PDF or text document into a conversation.

    The document becomes visible to chat only once every passage has been
    fingerprinted.
    """
    try:
        if not conversationId:
            raise InvalidInput("conversationId is required")

        data = await file.read()
        if len(data) > MAX_UPLOAD_BYTES:
            raise InvalidInput(
                "Uploaded file is too large",
                {"max_bytes": MAX_UPLOAD_BYTES, "size": len(data)}
            )

        filename = file.filename or "document"
        logger.info(f"Processing upload: {filename} ({len(data)} bytes)")
        document = await chat_pipeline.ingest(conversationId, filename, data)
    except RagError as e:
        logger.warning(f"Upload rejected: {e.message}", extra={"error_code": e.code})
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error processing upload: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Document processing failed")

    return UploadResponse(
        document_id=document.document_id,
        name=document.name,
        chunks=document.passage_count
    )


@app.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Main chat endpoint.

    Retrieves the best passages across all documents of the conversation,
    asks the generation provider for a grounded answer, and filters it.
    """
    try:
        result = await chat_pipeline.reply(
            request.conversation_id,
            request.message,
            request.language
        )
    except RagError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error processing chat: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return ChatResponse(
        reply=result.reply,
        detected_lang=result.detected_language,
        target_lang=result.target_language,
        sources=[
            SourceInfo(
                document=s.document_name,
                score=s.score,
                excerpt=s.passage.text[:EXCERPT_CHARS]
            )
            for s in result.sources
        ],
        flagged=result.flagged,
        degraded=result.degraded,
        prompt_tokens=result.prompt_tokens
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Niglen document chat API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
