"""Configuration management for Niglen document chat."""
import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "text"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000"
).split(",")

# Provider Configuration
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
EMBEDDING_BACKEND = os.getenv("EMBEDDING_BACKEND", "ollama")  # "ollama" or "huggingface"
EMBED_MODEL = os.getenv("EMBED_MODEL", "nomic-embed-text")
GENERATION_BACKEND = os.getenv("GENERATION_BACKEND", "ollama")  # "ollama" or "groq"
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", "60"))  # seconds
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "4"))
EMBEDDING_DIMENSION = _optional_int("EMBEDDING_DIMENSION")

# Chunking Configuration
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))  # characters
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))  # characters

# Retrieval Configuration
TOP_K = int(os.getenv("TOP_K", "5"))
RETRIEVAL_POLICY = os.getenv("RETRIEVAL_POLICY", "fallback")  # "fallback" or "threshold"
RELEVANCE_THRESHOLD = float(os.getenv("RELEVANCE_THRESHOLD", "0.0"))

# Conversation Configuration
HISTORY_MAX_TURNS = int(os.getenv("HISTORY_MAX_TURNS", "6"))
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "English")
CONVERSATION_TTL_SECONDS = int(os.getenv("CONVERSATION_TTL_SECONDS", "0"))  # 0 disables expiry
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
