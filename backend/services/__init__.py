"""Services for Niglen document chat."""
from .document_loader import DocumentLoader
from .chunking_engine import ChunkingEngine, chunk_text, normalize_whitespace
from .embedding_model import Fingerprinter, OllamaEmbeddingProvider, HuggingFaceEmbeddingProvider
from .vector_store import SimilarityIndex, cosine
from .retrieval_engine import RetrievalEngine, RetrievalResult, SelectionPolicy, select_passages
from .conversation_manager import ConversationManager
from .prompt_builder import PromptAssembler, Instruction
from .safety_filter import SafetyFilter, REFUSAL_MESSAGE
from .llm_client import OllamaChatClient, GroqChatClient, LLMResponse
from .language_detector import LanguageDetector
from .chat_pipeline import ChatPipeline, ChatReply, FALLBACK_MESSAGE

__all__ = ['DocumentLoader', 'ChunkingEngine', 'chunk_text', 'normalize_whitespace', 'Fingerprinter', 'OllamaEmbeddingProvider', 'HuggingFaceEmbeddingProvider', 'SimilarityIndex', 'cosine', 'RetrievalEngine', 'RetrievalResult', 'SelectionPolicy', 'select_passages', 'ConversationManager', 'PromptAssembler', 'Instruction', 'SafetyFilter', 'REFUSAL_MESSAGE', 'OllamaChatClient', 'GroqChatClient', 'LLMResponse', 'LanguageDetector', 'ChatPipeline', 'ChatReply', 'FALLBACK_MESSAGE']
