"""Pytest configuration and fixtures for test suite."""
import copy
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from localchat.agent.ollama_client import ChatFrame
from localchat.config import Settings
from localchat.runtime import Runtime, build_runtime


@pytest.fixture
def workspace(tmp_path):
    """Empty sandbox directory for file and shell tools."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(workspace):
    """Override settings for testing."""
    return Settings(
        OLLAMA_BASE_URL="http://test-ollama:11434",
        WORKSPACE_DIR=str(workspace),
        EMBEDDING_DIMENSION=4,
        VECTOR_STORE_AUTO_START=False,
        SUMMARIZATION_ENABLED=False,
        API_KEY=None,
        DEBUG=True,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], Callable[..., httpx.AsyncClient]]:
    """
    Build a drop-in for ``create_http_client`` backed by a request handler.

    Usage:
        with patch("localchat.x.create_http_client", mock_http(handler)):
            ...
    """
    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        def create_http_client(timeout: float = 30.0, **kwargs) -> httpx.AsyncClient:
            return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)
        return create_http_client
    return factory


class ScriptedModelClient:
    """
    Model client replaying one list of frames per chat request.

    Every request's message list is deep-copied into ``requests`` so tests
    can inspect what the model was sent at each round.
    """

    base_url = "http://scripted-model"

    def __init__(self, rounds: List[List[ChatFrame]], error: Optional[Exception] = None):
        self.rounds = list(rounds)
        self.error = error
        self.requests: List[Dict[str, Any]] = []
        self.ping = AsyncMock(return_value=True)
        self.list_models = AsyncMock(return_value=["llama3", "qwen2.5:0.5b"])

    async def stream_chat(self, model, messages, tools=None):
        self.requests.append({
            "model": model,
            "messages": copy.deepcopy(messages),
            "tools": tools,
        })
        if self.error is not None:
            raise self.error
        frames = self.rounds.pop(0) if self.rounds else [ChatFrame(done=True)]
        for frame in frames:
            yield frame


@pytest.fixture
def scripted_client():
    """Factory for a ScriptedModelClient."""
    return ScriptedModelClient


@pytest.fixture
def runtime(test_settings) -> Runtime:
    """Runtime wired from test settings with a scripted model client."""
    rt = build_runtime(test_settings)
    client = ScriptedModelClient([[ChatFrame(content="Hello", done=True)]])
    rt.model_client = client
    rt.orchestrator.client = client
    rt.supervisor.is_running = AsyncMock(return_value=True)
    return rt
