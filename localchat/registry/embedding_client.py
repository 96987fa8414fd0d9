"""
Client for the local embedding service.

Turns text into a fixed-length vector using the model service's
``/api/embeddings`` endpoint (request ``{model, prompt}``, response
``{embedding: [...]}``).
"""
import logging
from typing import Any, List, Optional

import httpx

from localchat.config import settings
from localchat.exceptions import EmbeddingError
from localchat.utils.http import bearer_headers, create_http_client
from localchat.utils.validation import ValidationError, validate_embedding_vector

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """
    Client for generating text embeddings.

    Malformed or empty responses produce an empty vector; only connectivity
    and HTTP status failures raise EmbeddingError.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize embedding client.

        Args:
            base_url: Override the model service base URL
            model: Override the embedding model name
            api_token: Override the bearer token
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.EMBEDDING_MODEL
        self.api_token = api_token or settings.OLLAMA_API_TOKEN
        self.timeout = timeout or settings.EMBEDDING_TIMEOUT
        self.dimension = settings.EMBEDDING_DIMENSION

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_url}/api/embeddings"

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, or an empty list when the service returned
            nothing usable

        Raises:
            EmbeddingError: If the service is unreachable or answers with an error status
        """
        payload = {"model": self.model, "prompt": text}

        async with create_http_client(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    self.endpoint_url,
                    json=payload,
                    headers=bearer_headers(self.api_token),
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise EmbeddingError(
                    f"Embedding service at {self.endpoint_url} returned "
                    f"{e.response.status_code}"
                ) from e
            except httpx.HTTPError as e:
                raise EmbeddingError(
                    f"Failed to connect to embedding service at {self.endpoint_url}: {e}"
                ) from e

        try:
            data = response.json()
        except ValueError:
            logger.debug("Embedding response was not JSON")
            return []

        return self._extract_embedding(data)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts one request at a time, preserving order."""
        embeddings = []
        for text in texts:
            embeddings.append(await self.embed_text(text))
        return embeddings

    def _extract_embedding(self, data: Any) -> List[float]:
        """Pull the float vector out of a response; any invalid entry voids it."""
        if not isinstance(data, dict):
            return []

        raw = data.get("embedding")
        if not isinstance(raw, list):
            return []

        try:
            vector = validate_embedding_vector(raw, len(raw))
        except ValidationError as e:
            logger.warning(f"Discarding malformed embedding: {e}")
            return []
        if vector and len(vector) != self.dimension:
            logger.warning(
                f"Embedding has dimension {len(vector)}, expected {self.dimension}"
            )
        return vector

    async def health_check(self) -> bool:
        """
        Check if the embedding service is available.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return bool(await self.embed_text("health check"))
        except EmbeddingError:
            return False
