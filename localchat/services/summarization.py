"""
Summarization service for compressing older conversation history.

Asks a small local model for a short summary first and falls back to an
extractive summary built from the conversation's own sentences.
"""

import logging
import math
import re
from typing import Iterable, List, Optional

import httpx

from localchat.config import settings
from localchat.schemas.chat import Message
from localchat.utils.http import bearer_headers, create_http_client

logger = logging.getLogger(__name__)

# Most tokenizers average ~4 characters per token for English text
CHARS_PER_TOKEN = 4

MIN_SENTENCE_CHARS = 20
_SENTENCE_SPLIT = re.compile(r"[.!?]")

SUMMARY_PROMPT = (
    "Summarize the following conversation in 2-3 concise sentences, "
    "focusing on key topics and decisions:\n\n{text}"
)


def estimate_tokens(text: str) -> int:
    """
    Estimate token count for a string.

    Uses a character-to-token ratio rounded up, so any non-empty text
    costs at least one token.

    Args:
        text: The text to estimate tokens for

    Returns:
        Estimated token count
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def extractive_summary(text: str, max_chars: int = 200) -> str:
    """
    Build a summary from the highest-scoring sentences of ``text``.

    Sentences shorter than the minimum length are ignored. Each remaining
    sentence scores ``1 - 0.5 * index / total`` for position plus
    ``min(len / 100, 1)`` for length; sentences are taken best-first and
    joined with ". " until the next one would overflow ``max_chars``.
    When no sentence qualifies the raw text is truncated instead.
    """
    if not text or max_chars <= 0:
        return ""

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text)]
    sentences = [s for s in sentences if len(s) > MIN_SENTENCE_CHARS]
    if not sentences:
        return text[:max_chars]

    total = len(sentences)
    scored = [
        (1.0 - (i / total) * 0.5 + min(len(s) / 100.0, 1.0), s)
        for i, s in enumerate(sentences)
    ]
    scored.sort(key=lambda item: item[0], reverse=True)

    summary = ""
    for _, sentence in scored:
        if len(summary) + len(sentence) + 2 > max_chars:
            break
        summary = f"{summary}. {sentence}" if summary else sentence

    return summary or text[:max_chars]


def render_conversation(messages: Iterable[Message]) -> str:
    """Flatten messages into ``role: text`` lines."""
    return "\n".join(f"{m.role}: {m.text}" for m in messages)


class SummarizationService:
    """
    Service for summarizing conversation history via the local model service.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_input_chars: int | None = None,
        summary_max_chars: int | None = None,
        enabled: bool | None = None,
    ):
        """
        Initialize the summarization service.

        Args:
            base_url: Model service URL (defaults to settings)
            api_token: Optional bearer token (defaults to settings)
            model: Model to use for summarization (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            max_input_chars: Input cap for the model request
            summary_max_chars: Character budget of the extractive fallback
            enabled: Whether the model-assisted path is tried at all
        """
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.OLLAMA_API_TOKEN
        self.model = model or settings.SUMMARIZATION_MODEL
        self.timeout = timeout or settings.SUMMARIZATION_TIMEOUT
        self.max_input_chars = max_input_chars or settings.SUMMARIZATION_MAX_INPUT_CHARS
        self.summary_max_chars = summary_max_chars or settings.SUMMARY_MAX_CHARS
        self.enabled = settings.SUMMARIZATION_ENABLED if enabled is None else enabled
        self.logger = logging.getLogger(__name__)

    async def ai_summarize(self, text: str) -> str:
        """
        Summarize text with the lightweight summarization model.

        Args:
            text: Conversation text

        Returns:
            Trimmed summary text

        Raises:
            RuntimeError: If the request fails or the response has no summary
        """
        payload = {
            "model": self.model,
            "prompt": SUMMARY_PROMPT.format(text=text[:self.max_input_chars]),
            "stream": False,
            "options": {
                "temperature": 0.3,
                "top_p": 0.8,
                "num_ctx": 2048,
            },
        }

        try:
            async with create_http_client(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    headers=bearer_headers(self.api_token),
                )

                if response.status_code != 200:
                    raise RuntimeError(f"Summarization request failed: {response.status_code}")

                data = response.json()

        except httpx.HTTPError as e:
            raise RuntimeError(f"Summarization HTTP error: {e}")
        except ValueError as e:
            raise RuntimeError(f"Summarization returned invalid JSON: {e}")

        summary = data.get("response") if isinstance(data, dict) else None
        if not isinstance(summary, str):
            raise RuntimeError("No response in summarization result")
        return summary.strip()

    async def summarize_messages(self, messages: List[Message]) -> str:
        """
        Summarize a run of messages.

        Never raises: any failure of the model-assisted path, or an empty
        answer, falls back to the extractive summary.
        """
        if not messages:
            return ""

        text = render_conversation(messages)

        if self.enabled:
            try:
                summary = await self.ai_summarize(text)
                if summary:
                    self.logger.info("Model-assisted summarization succeeded")
                    return summary
                self.logger.info("Summarization model returned an empty summary")
            except RuntimeError as e:
                self.logger.warning(f"Summarization failed, using extractive fallback: {e}")

        return extractive_summary(text, self.summary_max_chars)


def create_summarization_service(config=None) -> SummarizationService:
    """Build a summarization service from settings."""
    config = config or settings
    return SummarizationService(
        base_url=config.OLLAMA_BASE_URL,
        api_token=config.OLLAMA_API_TOKEN,
        model=config.SUMMARIZATION_MODEL,
        timeout=config.SUMMARIZATION_TIMEOUT,
        max_input_chars=config.SUMMARIZATION_MAX_INPUT_CHARS,
        summary_max_chars=config.SUMMARY_MAX_CHARS,
        enabled=config.SUMMARIZATION_ENABLED,
    )
