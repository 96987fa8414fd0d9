"""Tests for NDJSON framing and the model service client."""
import json

import httpx
import pytest
from unittest.mock import patch

from localchat.agent.events import CHAT_END, CHAT_TOKEN, QueueEventSink
from localchat.agent.ndjson import NDJSONDecoder, iter_ndjson
from localchat.agent.ollama_client import OllamaClient, parse_chat_frame, parse_tool_arguments
from localchat.exceptions import ModelServiceError, ModelServiceUnavailable


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class TestNDJSONDecoder:
    """Incremental decoding of newline-delimited frames."""

    def test_frame_split_across_chunks(self):
        decoder = NDJSONDecoder()

        assert decoder.feed(b'{"message": {"con') == []
        assert decoder.feed(b'tent": "Hi"}}\n{"done"') == [{"message": {"content": "Hi"}}]
        assert decoder.feed(b': true}\n') == [{"done": True}]

    def test_several_frames_in_one_chunk(self):
        decoder = NDJSONDecoder()

        assert decoder.feed(b'{"a": 1}\n{"b": 2}\n\n{"c": 3}\n') == [{"a": 1}, {"b": 2}, {"c": 3}]

    def test_malformed_and_non_object_lines_are_skipped(self):
        decoder = NDJSONDecoder()

        assert decoder.feed(b'not json\n[1, 2]\n{"ok": true}\n') == [{"ok": True}]

    def test_flush_without_trailing_newline(self):
        decoder = NDJSONDecoder()
        decoder.feed(b'{"done": true}')

        assert decoder.flush() == [{"done": True}]
        assert decoder.flush() == []

    def test_multibyte_character_split(self):
        decoder = NDJSONDecoder()
        encoded = '{"message": {"content": "héllo"}}\n'.encode("utf-8")
        split = encoded.index("é".encode("utf-8")) + 1

        assert decoder.feed(encoded[:split]) == []
        assert decoder.feed(encoded[split:]) == [{"message": {"content": "héllo"}}]

    @pytest.mark.asyncio
    async def test_iter_ndjson(self):
        frames = [f async for f in iter_ndjson(_chunks(b'{"a"', b': 1}\n{"b": 2}'))]

        assert frames == [{"a": 1}, {"b": 2}]


class TestParseFrames:
    def test_string_arguments_are_decoded(self):
        """A tool call whose arguments arrive as a JSON string is dispatched as an object."""
        frame = parse_chat_frame({
            "message": {
                "content": "",
                "tool_calls": [{"function": {"name": "file_read", "arguments": "{\"path\":\"a.txt\"}"}}],
            },
        })

        assert frame.tool_call.name == "file_read"
        assert frame.tool_call.arguments == {"path": "a.txt"}

    def test_object_arguments(self):
        frame = parse_chat_frame({
            "message": {"tool_calls": [{"function": {"name": "web_search", "arguments": {"query": "x"}}}]},
        })

        assert frame.tool_call.arguments == {"query": "x"}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "", None, 42])
    def test_unusable_arguments_become_empty(self, raw):
        assert parse_tool_arguments(raw) == {}

    def test_content_and_done(self):
        frame = parse_chat_frame({"message": {"content": "Hel"}, "done": False})

        assert frame.content == "Hel"
        assert frame.tool_call is None
        assert frame.done is False
        assert parse_chat_frame({"done": True}).done is True

    def test_only_first_tool_call_is_used(self):
        frame = parse_chat_frame({
            "message": {"tool_calls": [
                {"function": {"name": "first", "arguments": {}}},
                {"function": {"name": "second", "arguments": {}}},
            ]},
        })

        assert frame.tool_call.name == "first"

    def test_nameless_tool_call_is_ignored(self):
        frame = parse_chat_frame({"message": {"tool_calls": [{"function": {"arguments": {}}}]}})

        assert frame.tool_call is None


class TestOllamaClient:
    """Streaming chat against the model service."""

    @pytest.mark.asyncio
    async def test_stream_chat(self, mock_http):
        seen = {}
        body = (
            b'{"message": {"role": "assistant", "content": "Hel"}, "done": false}\n'
            b'{"message": {"role": "assistant", "content": "lo"}, "done": false}\n'
            b'{"message": {"role": "assistant", "content": ""}, "done": true}\n'
        )

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=body)

        client = OllamaClient(base_url="http://ollama.test", api_token=None)
        tools = [{"type": "function", "function": {"name": "x", "description": "", "parameters": {}}}]

        with patch("localchat.agent.ollama_client.create_http_client", mock_http(handler)):
            frames = [f async for f in client.stream_chat("llama3", [{"role": "user", "content": "hi"}], tools)]

        assert [f.content for f in frames] == ["Hel", "lo", ""]
        assert frames[-1].done is True
        assert seen["url"] == "http://ollama.test/api/chat"
        assert seen["body"] == {
            "model": "llama3",
            "stream": True,
            "messages": [{"role": "user", "content": "hi"}],
            "tools": tools,
        }

    @pytest.mark.asyncio
    async def test_tools_omitted_when_empty(self, mock_http):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b'{"done": true}\n')

        client = OllamaClient(base_url="http://ollama.test")

        with patch("localchat.agent.ollama_client.create_http_client", mock_http(handler)):
            [f async for f in client.stream_chat("llama3", [], None)]

        assert "tools" not in seen["body"]

    @pytest.mark.asyncio
    async def test_error_status(self, mock_http):
        handler = lambda request: httpx.Response(404, text='{"error": "model \'nope\' not found"}')
        client = OllamaClient(base_url="http://ollama.test")

        with patch("localchat.agent.ollama_client.create_http_client", mock_http(handler)):
            with pytest.raises(ModelServiceError) as exc_info:
                [f async for f in client.stream_chat("nope", [])]

        assert exc_info.value.status_code == 404
        assert "not found" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_unreachable(self, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = OllamaClient(base_url="http://ollama.test")

        with patch("localchat.agent.ollama_client.create_http_client", mock_http(handler)):
            with pytest.raises(ModelServiceUnavailable, match="Failed to connect"):
                [f async for f in client.stream_chat("llama3", [])]

    @pytest.mark.asyncio
    async def test_list_models(self, mock_http):
        handler = lambda request: httpx.Response(200, json={
            "models": [{"name": "llama3:8b"}, {"name": "qwen2.5:0.5b"}, {"size": 1}],
        })
        client = OllamaClient(base_url="http://ollama.test")

        with patch("localchat.agent.ollama_client.create_http_client", mock_http(handler)):
            assert await client.list_models() == ["llama3:8b", "qwen2.5:0.5b"]

    @pytest.mark.asyncio
    async def test_ping(self, mock_http):
        client = OllamaClient(base_url="http://ollama.test")

        with patch("localchat.agent.ollama_client.create_http_client",
                   mock_http(lambda request: httpx.Response(200, json={"models": []}))):
            assert await client.ping() is True

        with patch("localchat.agent.ollama_client.create_http_client",
                   mock_http(lambda request: httpx.Response(500))):
            assert await client.ping() is False


class TestQueueEventSink:
    @pytest.mark.asyncio
    async def test_events_until_closed(self):
        sink = QueueEventSink()
        sink.token("Hi")
        sink.turn_complete()
        sink.close()
        sink.token("dropped")

        events = [e async for e in sink.events()]

        assert events == [
            {"event": CHAT_TOKEN, "data": "Hi"},
            {"event": CHAT_END, "data": None},
        ]
