"""Embedding providers and the fingerprinter that normalizes their output."""
import asyncio
import time
import logging
from typing import List, Optional, Protocol, Sequence
import httpx
import numpy as np

from config import (
    OLLAMA_URL,
    EMBED_MODEL,
    HUGGINGFACE_API_KEY,
    PROVIDER_TIMEOUT,
    EMBED_CONCURRENCY,
    EMBEDDING_DIMENSION,
)
from errors import ProviderUnavailable, DimensionMismatch
from models.passage import Fingerprint

logger = logging.getLogger(__name__)

# Substituted for the magnitude of an all-zero vector
MAGNITUDE_FLOOR = 1e-9


class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector of floats."""

    async def embed(self, text: str) -> List[float]:
        ...


def magnitude(vector: np.ndarray) -> float:
    """Euclidean norm, floored for the zero vector."""
    n = float(np.sqrt(np.dot(vector, vector)))
    return n if n > 0 else MAGNITUDE_FLOOR


def _post_client(client: Optional[httpx.AsyncClient], timeout: float) -> httpx.AsyncClient:
    return client if client is not None else httpx.AsyncClient(timeout=timeout)


class OllamaEmbeddingProvider:
    """Embeddings from a local Ollama server (/api/embeddings)."""

    def __init__(
        self,
        base_url: str = OLLAMA_URL,
        model_name: str = EMBED_MODEL,
        timeout: float = PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.client = client
        logger.info(f"Initialized OllamaEmbeddingProvider with model: {model_name}")

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Raises:
            ProviderUnavailable: On network errors, non-200 responses or a
                payload without an embedding
        """
        payload = {"model": self.model_name, "prompt": text}
        client = _post_client(self.client, self.timeout)

        try:
            response = await client.post(f"{self.base_url}/api/embeddings", json=payload)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(
                f"Embedding request timed out after {self.timeout}s",
                {"provider": "ollama", "original_error": str(e)}
            ) from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(
                f"Network error: {str(e)}",
                {"provider": "ollama", "original_error": str(e)}
            ) from e
        finally:
            if self.client is None:
                await client.aclose()

        if response.status_code != 200:
            raise ProviderUnavailable(
                f"Embedding request failed with status {response.status_code}",
                {"provider": "ollama", "status_code": response.status_code, "body": response.text[:200]}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailable(
                "Embedding response was not valid JSON",
                {"provider": "ollama"}
            ) from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise ProviderUnavailable("Embedding response contained no vector", {"provider": "ollama"})

        return embedding


class HuggingFaceEmbeddingProvider:
    """Wrapper for Hugging Face Inference API embedding model."""

    def __init__(
        self,
        api_key: Optional[str] = HUGGINGFACE_API_KEY,
        model_name: str = "sentence-transformers/all-mpnet-base-v2",
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier
            max_retries: Maximum number of retry attempts for 503 and network errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
            client: Optional shared httpx client
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.client = client
        self.api_url = f"https://api-inference.huggingface.co/models/{model_name}"

        logger.info(f"Initialized HuggingFaceEmbeddingProvider with model: {model_name}")

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding, retrying with exponential backoff.

        HF free tier models "sleep" and take 15-20s to load on first query,
        answering 503 until they are ready.

        Raises:
            ProviderUnavailable: If the request fails after all retries
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "inputs": [text],
            "options": {"wait_for_model": True}
        }

        delay = self.initial_delay
        last_error = None
        client = _post_client(self.client, self.timeout)

        try:
            for attempt in range(self.max_retries):
                try:
                    start_time = time.time()
                    response = await client.post(self.api_url, headers=headers, json=payload)
                    elapsed = time.time() - start_time
                except httpx.TimeoutException:
                    last_error = f"Request timeout after {self.timeout}s"
                    logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")
                except httpx.RequestError as e:
                    last_error = f"Network error: {str(e)}"
                    logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")
                else:
                    if response.status_code == 503:
                        last_error = "Model loading (503)"
                        logger.warning(
                            f"Model loading (503) on attempt {attempt + 1}/{self.max_retries}. "
                            f"Retrying in {delay}s..."
                        )
                    elif response.status_code == 429:
                        raise ProviderUnavailable(
                            "Rate limit exceeded. Please try again later.",
                            {"provider": "huggingface", "status_code": 429}
                        )
                    elif response.status_code == 401:
                        raise ProviderUnavailable(
                            "Invalid API key",
                            {"provider": "huggingface", "status_code": 401}
                        )
                    elif response.status_code != 200:
                        raise ProviderUnavailable(
                            f"API request failed with status {response.status_code}",
                            {"provider": "huggingface", "status_code": response.status_code}
                        )
                    else:
                        logger.debug(f"Generated embedding in {elapsed:.2f}s")
                        return self._first_vector(response)

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60.0)  # Exponential backoff, max 60s
        finally:
            if self.client is None:
                await client.aclose()

        raise ProviderUnavailable(
            f"Failed to generate embeddings after {self.max_retries} attempts. Last error: {last_error}",
            {"provider": "huggingface", "attempts": self.max_retries}
        )

    @staticmethod
    def _first_vector(response: httpx.Response) -> List[float]:
        try:
            embeddings = response.json()
        except ValueError as e:
            raise ProviderUnavailable(
                "Embedding response was not valid JSON",
                {"provider": "huggingface", "body": response.text[:200]}
            ) from e

        # An error dict such as {"error": "..."} can come back with status 200
        vector = embeddings[0] if isinstance(embeddings, list) and embeddings else None
        if not isinstance(vector, list) or not vector:
            raise ProviderUnavailable(
                "Embedding response contained no vector",
                {"provider": "huggingface", "body": response.text[:200]}
            )
        return vector


class Fingerprinter:
    """Turns text into normalized fingerprints using an embedding provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        timeout: float = PROVIDER_TIMEOUT,
        dimension: Optional[int] = EMBEDDING_DIMENSION,
        concurrency: int = EMBED_CONCURRENCY
    ):
        """
        Args:
            provider: Embedding backend
            timeout: Upper bound in seconds for a single embedding call
            dimension: Expected vector size, or None to accept the provider's
            concurrency: Maximum simultaneous provider calls in fingerprint_many
        """
        self.provider = provider
        self.timeout = timeout
        self.dimension = dimension
        self.concurrency = max(1, concurrency)

    async def fingerprint(self, text: str) -> Fingerprint:
        """
        Embed text and precompute its magnitude.

        Raises:
            ProviderUnavailable: If the provider fails, times out or returns
                a vector with non-finite values
            DimensionMismatch: If a fixed dimension is configured and the
                vector does not have it
        """
        try:
            raw = await asyncio.wait_for(self.provider.embed(text), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(
                f"Embedding provider did not answer within {self.timeout}s",
                {"timeout": self.timeout}
            ) from e

        try:
            vector = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ProviderUnavailable(
                "Embedding provider returned a non-numeric vector",
                {"original_error": str(e)}
            ) from e
        if vector.ndim != 1 or vector.size == 0:
            raise ProviderUnavailable("Embedding provider returned an empty vector")
        if not np.all(np.isfinite(vector)):
            raise ProviderUnavailable("Embedding provider returned non-finite values")
        if self.dimension is not None and vector.size != self.dimension:
            raise DimensionMismatch(self.dimension, int(vector.size))

        vector.setflags(write=False)
        return Fingerprint(vector=vector, magnitude=magnitude(vector))

    async def fingerprint_many(self, texts: Sequence[str]) -> List[Fingerprint]:
        """
        Fingerprint several texts with bounded concurrency, preserving order.

        Any failure fails the whole batch.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(text: str) -> Fingerprint:
            async with semaphore:
                return await self.fingerprint(text)

        start_time = time.time()
        fingerprints = await asyncio.gather(*(_one(t) for t in texts))
        logger.debug(
            f"Fingerprinted {len(texts)} passages in {time.time() - start_time:.2f}s"
        )
        return list(fingerprints)


def create_embedding_provider(backend: str, client: Optional[httpx.AsyncClient] = None) -> EmbeddingProvider:
    """Build the configured embedding backend ("ollama" or "huggingface")."""
    if backend == "ollama":
        return OllamaEmbeddingProvider(client=client)
    if backend == "huggingface":
        return HuggingFaceEmbeddingProvider(client=client)
    raise ValueError(f"Unknown embedding backend: {backend}")

