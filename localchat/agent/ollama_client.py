"""
Client for the local model service (Ollama protocol).

``/api/chat`` streams newline-delimited JSON frames carrying incremental
``message.content``, an optional ``message.tool_calls`` request and a
final ``done`` flag. ``/api/tags`` lists the installed models and doubles
as a liveness check.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from localchat.agent.ndjson import iter_ndjson
from localchat.config import settings
from localchat.exceptions import ModelServiceError, ModelServiceUnavailable
from localchat.schemas.chat import ToolCall
from localchat.utils.http import bearer_headers, create_http_client

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_CHARS = 2000


@dataclass
class ChatFrame:
    """One decoded frame of a streamed chat response."""

    content: str = ""
    tool_call: Optional[ToolCall] = None
    done: bool = False


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """
    Normalise tool-call arguments to a dict.

    Some models send the arguments as a JSON-encoded string; anything that
    does not decode to an object becomes an empty dict.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else {}
        except ValueError:
            logger.debug(f"Tool-call arguments are not valid JSON: {raw[:200]!r}")
            return {}
    return raw if isinstance(raw, dict) else {}


def parse_chat_frame(frame: Dict[str, Any]) -> ChatFrame:
    """Extract content, the first tool call and the done flag from a frame."""
    message = frame.get("message")
    if not isinstance(message, dict):
        message = {}

    content = message.get("content")
    if not isinstance(content, str):
        content = ""

    tool_call = None
    calls = message.get("tool_calls")
    if isinstance(calls, list) and calls and isinstance(calls[0], dict):
        function = calls[0].get("function") or {}
        name = function.get("name") if isinstance(function, dict) else None
        if isinstance(name, str) and name:
            tool_call = ToolCall(name=name, arguments=parse_tool_arguments(function.get("arguments")))

    return ChatFrame(content=content, tool_call=tool_call, done=frame.get("done") is True)


class OllamaClient:
    """
    Streaming chat client for the model service.

    Args:
        base_url: Model service base URL
        api_token: Optional bearer token
        timeout: Wall-clock limit for a request in seconds
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.OLLAMA_API_TOKEN
        self.timeout = timeout or settings.CHAT_TIMEOUT

    def _headers(self) -> Dict[str, str]:
        return bearer_headers(self.api_token)

    async def stream_chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ChatFrame]:
        """
        Stream a chat completion.

        Yields frames until one carries ``done``; malformed lines are skipped.

        Raises:
            ModelServiceUnavailable: If the service cannot be reached
            ModelServiceError: If the service answers with an error status
        """
        payload: Dict[str, Any] = {"model": model, "stream": True, "messages": messages}
        if tools:
            payload["tools"] = tools

        url = f"{self.base_url}/api/chat"
        try:
            async with create_http_client(timeout=self.timeout) as client:
                async with client.stream("POST", url, json=payload, headers=self._headers()) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise ModelServiceError(response.status_code, body[:MAX_ERROR_BODY_CHARS])

                    async for raw in iter_ndjson(response.aiter_bytes()):
                        frame = parse_chat_frame(raw)
                        yield frame
                        if frame.done:
                            return
        except httpx.TimeoutException as e:
            raise ModelServiceUnavailable(f"Model service timed out after {self.timeout:g}s: {e}") from e
        except httpx.HTTPError as e:
            raise ModelServiceUnavailable(f"Failed to connect to model service at {self.base_url}: {e}") from e

    async def list_models(self) -> List[str]:
        """
        Names of the models installed in the model service.

        Raises:
            ModelServiceUnavailable: If the service cannot be reached
            ModelServiceError: If the service answers with an error status
        """
        try:
            async with create_http_client(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/api/tags", headers=self._headers())
        except httpx.HTTPError as e:
            raise ModelServiceUnavailable(f"Failed to connect to model service at {self.base_url}: {e}") from e

        if response.status_code >= 400:
            raise ModelServiceError(response.status_code, response.text[:MAX_ERROR_BODY_CHARS])

        try:
            data = response.json()
        except ValueError:
            return []

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    async def ping(self) -> bool:
        """True when the model service answers its tag endpoint."""
        try:
            async with create_http_client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags", headers=self._headers())
                return response.is_success
        except httpx.HTTPError:
            return False
