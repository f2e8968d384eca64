"""Embedding provider client for an OpenAI-compatible embeddings endpoint."""
import time
import logging
from typing import List, Optional
import httpx

from config import EMBEDDING_API_KEY, EMBEDDING_API_URL, EMBEDDING_MODEL
from exceptions import EmbeddingUnavailableError

logger = logging.getLogger(__name__)


class EmbeddingModel:
    """Wrapper around the remote embedding model.

    Calls are made exactly once; retries belong to the transport layer.
    Every failure (auth, rate limit, timeout, malformed payload) surfaces as
    EmbeddingUnavailableError so callers can degrade uniformly.
    """

    def __init__(
        self,
        api_key: Optional[str] = EMBEDDING_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        api_url: str = EMBEDDING_API_URL,
        timeout: float = 30.0
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Embedding provider API key
            model_name: Model identifier
            api_url: Full URL of the embeddings endpoint
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("EMBEDDING_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.api_url = api_url
        self.timeout = timeout

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            EmbeddingUnavailableError: If the provider call fails
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return self._request([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Args:
            texts: List of non-empty texts to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            ValueError: If texts list is empty or contains empty strings
            EmbeddingUnavailableError: If the provider call fails
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        if any(not t or not t.strip() for t in texts):
            raise ValueError("Texts in batch cannot be empty")

        return self._request(texts)

    def _request(self, texts: List[str]) -> List[List[float]]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {"model": self.model_name, "input": texts}

        start_time = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.api_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Embedding request timed out after {self.timeout}s")
            raise EmbeddingUnavailableError(f"Request timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.warning(f"Embedding request network error: {e}")
            raise EmbeddingUnavailableError(f"Network error: {e}") from e

        elapsed = time.time() - start_time

        if response.status_code == 429:
            raise EmbeddingUnavailableError("Rate limit exceeded")
        if response.status_code in (401, 403):
            raise EmbeddingUnavailableError("Invalid API key")
        if response.status_code != 200:
            raise EmbeddingUnavailableError(
                f"API request failed with status {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()["data"]
            embeddings = [item["embedding"] for item in sorted(data, key=lambda item: item.get("index", 0))]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingUnavailableError(f"Malformed embedding response: {e}") from e

        if len(embeddings) != len(texts) or any(not vector for vector in embeddings):
            raise EmbeddingUnavailableError(
                f"Expected {len(texts)} embeddings, received {len(embeddings)}"
            )

        logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")
        return embeddings
