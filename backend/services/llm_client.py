"""Generation providers: Ollama chat API and Groq."""
import time
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol
import httpx
from groq import AsyncGroq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError

from config import OLLAMA_URL, CHAT_MODEL, GROQ_API_KEY, GROQ_MODEL, PROVIDER_TIMEOUT
from errors import ProviderUnavailable

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


class GenerationProvider(Protocol):
    """Non-streaming chat completion."""

    async def generate(self, system_directive: str, messages: List[Dict[str, str]]) -> LLMResponse:
        ...


def _chat_messages(system_directive: str, messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    return [{"role": "system", "content": system_directive}] + list(messages)


class OllamaChatClient:
    """Client for a local Ollama server (/api/chat, stream disabled)."""

    def __init__(
        self,
        base_url: str = OLLAMA_URL,
        model: str = CHAT_MODEL,
        timeout: float = PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.client = client
        logger.info(f"OllamaChatClient initialized with model: {model}")

    async def generate(self, system_directive: str, messages: List[Dict[str, str]]) -> LLMResponse:
        """
        Generate a reply.

        Raises:
            ProviderUnavailable: On timeout, network error, non-200 status or
                a malformed payload
        """
        start_time = time.time()
        payload = {
            "model": self.model,
            "stream": False,
            "messages": _chat_messages(system_directive, messages)
        }
        client = self.client if self.client is not None else httpx.AsyncClient(timeout=self.timeout)

        try:
            response = await client.post(f"{self.base_url}/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise self._error("TIMEOUT_ERROR", "Request timed out. Please try again.", start_time, e) from e
        except httpx.RequestError as e:
            raise self._error("NETWORK_ERROR", f"Could not reach Ollama: {str(e)}", start_time, e) from e
        finally:
            if self.client is None:
                await client.aclose()

        if response.status_code != 200:
            raise self._error(
                "API_ERROR",
                f"Ollama returned status {response.status_code}",
                start_time
            )

        try:
            data = response.json()
        except ValueError as e:
            raise self._error("API_ERROR", "Ollama returned invalid JSON", start_time, e) from e

        text = (data.get("message") or {}).get("content") or ""
        latency_ms = int((time.time() - start_time) * 1000)
        tokens_input = data.get("prompt_eval_count", 0)
        tokens_output = data.get("eval_count", 0)

        logger.info(
            f"Generated response: model={self.model}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            text=text,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=self.model
        )

    def _error(self, code: str, message: str, start_time: float, original: Exception = None) -> ProviderUnavailable:
        latency_ms = int((time.time() - start_time) * 1000)
        details = {
            "error_code": code,
            "provider": "ollama",
            "model": self.model,
            "latency_ms": latency_ms,
        }
        if original is not None:
            details["original_error"] = str(original)
        logger.error(
            f"Generation error: model={self.model}, latency={latency_ms}ms, error={message}",
            extra={"error_code": code}
        )
        return ProviderUnavailable(message, details)


class GroqChatClient:
    """Client for interfacing with Groq API for text generation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GROQ_MODEL,
        max_tokens: int = 500,
        timeout: float = PROVIDER_TIMEOUT
    ):
        """
        Initialize Groq client.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            model: Groq model name
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.model = model
        self.max_tokens = max_tokens
        self.client = AsyncGroq(api_key=self.api_key, timeout=timeout)
        logger.info("GroqChatClient initialized successfully")

    async def generate(self, system_directive: str, messages: List[Dict[str, str]]) -> LLMResponse:
        """
        Generate a reply.

        Raises:
            ProviderUnavailable: Structured error with the Groq failure code in details
        """
        start_time = time.time()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=_chat_messages(system_directive, messages),
                max_tokens=self.max_tokens,
                temperature=0.7
            )
        except RateLimitError as e:
            raise self._error("RATE_LIMIT_ERROR", "Rate limit exceeded. Please try again in a few moments.", start_time, e) from e
        except AuthenticationError as e:
            raise self._error("AUTHENTICATION_ERROR", "Authentication failed. Please check your API key.", start_time, e) from e
        except APITimeoutError as e:
            raise self._error("TIMEOUT_ERROR", "Request timed out. Please try again.", start_time, e) from e
        except APIError as e:
            raise self._error("API_ERROR", f"Groq API error: {str(e)}", start_time, e) from e

        if not response.choices:
            raise self._error(
                "API_ERROR",
                "Groq returned no choices",
                start_time,
                ValueError("empty choices list")
            )

        latency_ms = int((time.time() - start_time) * 1000)
        text = response.choices[0].message.content or ""
        tokens_input = response.usage.prompt_tokens
        tokens_output = response.usage.completion_tokens

        logger.info(
            f"Generated response: model={self.model}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            text=text,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=self.model
        )

    def _error(self, code: str, message: str, start_time: float, original: Exception) -> ProviderUnavailable:
        latency_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Generation error: model={self.model}, latency={latency_ms}ms, error={original}",
            exc_info=True,
            extra={"error_code": code}
        )
        return ProviderUnavailable(message, {
            "error_code": code,
            "provider": "groq",
            "model": self.model,
            "latency_ms": latency_ms,
            "original_error": str(original)
        })


def create_generation_provider(backend: str, client: Optional[httpx.AsyncClient] = None) -> GenerationProvider:
    """Build the configured generation backend ("ollama" or "groq")."""
    if backend == "ollama":
        return OllamaChatClient(client=client)
    if backend == "groq":
        return GroqChatClient()
    raise ValueError(f"Unknown generation backend: {backend}")
