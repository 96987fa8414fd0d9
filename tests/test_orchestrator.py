"""Tests for the agent orchestration loop."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from localchat.agent.events import CHAT_END, CHAT_TOKEN, TOOL_MESSAGE, EventSink
from localchat.agent.ollama_client import ChatFrame, parse_chat_frame
from localchat.agent.orchestrator import RAG_PREAMBLE, SANDBOX_DISCLAIMER, AgentOrchestrator
from localchat.exceptions import ModelServiceUnavailable, NeedPermission, ToolLoopExceeded
from localchat.registry.tool_registry import ToolRegistry
from localchat.schemas.chat import ConversationRequest, Message, ThreadSettings, ToolCall
from localchat.services.thread_settings import ThreadSettingsStore
from localchat.tools.executor import ToolExecutor
from localchat.tools.implementations import FileReadTool, FileWriteTool


class RecordingSink(EventSink):
    def __init__(self):
        self.events = []

    def emit(self, event, data):
        self.events.append((event, data))


@pytest.fixture
def registry(workspace):
    return ToolRegistry([
        FileReadTool(workspace_root=str(workspace)),
        FileWriteTool(workspace_root=str(workspace)),
    ])


def _orchestrator(client, registry, **kwargs) -> AgentOrchestrator:
    return AgentOrchestrator(client=client, registry=registry, executor=ToolExecutor(registry), **kwargs)


def _request(**overrides) -> ConversationRequest:
    data = {"thread_id": "t1", "model": "llama3", "prompt": "hello"}
    data.update(overrides)
    return ConversationRequest(**data)


def _tool_frame(name: str, arguments) -> ChatFrame:
    return ChatFrame(tool_call=ToolCall(name=name, arguments=arguments))


class TestPermissions:
    @pytest.mark.asyncio
    async def test_need_permission_before_any_request(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="never", done=True)]])
        orchestrator = _orchestrator(client, registry)
        request = _request(enabled_tools=["file_read", "file_write"], allowed_tools=["file_read"])

        with pytest.raises(NeedPermission) as exc_info:
            await orchestrator.run_turn(request)

        assert exc_info.value.tool == "file_write"
        assert exc_info.value.to_dict() == {
            "code": "NeedPermission",
            "message": "Tool 'file_write' requires permission",
            "tool": "file_write",
        }
        assert client.requests == []

    def test_allowed_tools_may_exceed_enabled(self):
        AgentOrchestrator.check_permissions(
            _request(enabled_tools=["file_read"], allowed_tools=["file_read", "shell_exec"])
        )


class TestSystemPrompt:
    def test_no_tools_no_context(self, scripted_client, registry):
        orchestrator = _orchestrator(scripted_client([]), registry)

        assert orchestrator.build_system_prompt([]) == ""

    def test_catalogue_and_disclaimer(self, scripted_client, registry):
        orchestrator = _orchestrator(scripted_client([]), registry)

        prompt = orchestrator.build_system_prompt(["file_read"])

        assert prompt.startswith("| tool | description |\n| --- | --- |\n| file_read |")
        assert prompt.endswith(SANDBOX_DISCLAIMER)
        catalogue = prompt[:-len(SANDBOX_DISCLAIMER)]
        assert "| file_write |" not in catalogue
        assert catalogue.count("\n| file_") == 1

    def test_unknown_tools_give_no_catalogue(self, scripted_client, registry):
        orchestrator = _orchestrator(scripted_client([]), registry)

        assert orchestrator.build_system_prompt(["teleport"]) == ""

    def test_context_follows_catalogue(self, scripted_client, registry):
        orchestrator = _orchestrator(scripted_client([]), registry)

        prompt = orchestrator.build_system_prompt(["file_read"], "[Document | weight 1.00 | score 0.900]\nx\n")

        assert prompt.index(SANDBOX_DISCLAIMER) < prompt.index(RAG_PREAMBLE)
        assert prompt.endswith(RAG_PREAMBLE + "[Document | weight 1.00 | score 0.900]\nx\n")


class TestRunTurn:
    """The streaming tool loop."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="Hel"), ChatFrame(content="lo!", done=True)]])
        orchestrator = _orchestrator(client, registry)
        sink = RecordingSink()

        result = await orchestrator.run_turn(_request(), sink=sink)

        assert result.final_text == "Hello!"
        assert result.rounds == 1
        assert result.tool_calls == []
        assert sink.events == [(CHAT_TOKEN, "Hel"), (CHAT_TOKEN, "lo!"), (CHAT_END, None)]
        assert client.requests[0]["messages"] == [{"role": "user", "content": "hello"}]
        assert client.requests[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_tool_call_with_string_arguments(self, scripted_client, registry, workspace):
        """A tool call whose arguments arrive as a JSON string reads the file."""
        (workspace / "a.txt").write_text("file contents", encoding="utf-8")
        raw = {"message": {"content": "", "tool_calls": [
            {"function": {"name": "file_read", "arguments": "{\"path\":\"a.txt\"}"}},
        ]}, "done": True}
        client = scripted_client([
            [parse_chat_frame(raw)],
            [ChatFrame(content="The file says: file contents", done=True)],
        ])
        orchestrator = _orchestrator(client, registry)
        sink = RecordingSink()
        request = _request(prompt="read a.txt", enabled_tools=["file_read"], allowed_tools=["file_read"])

        result = await orchestrator.run_turn(request, sink=sink)

        assert result.tool_calls == [ToolCall(name="file_read", arguments={"path": "a.txt"})]
        assert (TOOL_MESSAGE, {"name": "file_read", "content": "file contents"}) in sink.events
        assert result.final_text == "The file says: file contents"
        assert result.rounds == 2

        second = client.requests[1]["messages"]
        assert second[0]["role"] == "system"
        assert second[1] == {"role": "user", "content": "read a.txt"}
        assert second[2] == {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "file_read", "arguments": {"path": "a.txt"}}}],
        }
        assert second[3] == {"role": "tool", "name": "file_read", "content": "file contents"}
        assert client.requests[0]["tools"][0]["function"]["name"] == "file_read"

    @pytest.mark.asyncio
    async def test_unknown_tool_result_goes_back_to_model(self, scripted_client, registry):
        client = scripted_client([
            [_tool_frame("x", {})],
            [ChatFrame(content="Sorry.", done=True)],
        ])
        orchestrator = _orchestrator(client, registry)

        result = await orchestrator.run_turn(_request())

        tool_message = client.requests[1]["messages"][-1]
        assert tool_message == {"role": "tool", "name": "x", "content": "⚠️ unknown tool: x"}
        assert result.final_text == "Sorry."

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_abort_turn(self, scripted_client, registry):
        client = scripted_client([
            [_tool_frame("file_read", {"path": "../../etc/passwd"})],
            [ChatFrame(content="I cannot read that.", done=True)],
        ])
        orchestrator = _orchestrator(client, registry)

        result = await orchestrator.run_turn(_request(enabled_tools=["file_read"], allowed_tools=["file_read"]))

        assert client.requests[1]["messages"][-1]["content"] == "⚠️ Path traversal detected"
        assert result.final_text == "I cannot read that."

    @pytest.mark.asyncio
    async def test_tool_loop_cap(self, scripted_client, registry):
        rounds = [[_tool_frame("file_read", {"path": "a.txt"})] for _ in range(5)]
        client = scripted_client(rounds)
        orchestrator = _orchestrator(client, registry, max_tool_rounds=3)

        with pytest.raises(ToolLoopExceeded, match="more than 3 tool calls"):
            await orchestrator.run_turn(_request())

        # Three calls executed, the fourth request is refused
        assert len(client.requests) == 4
        assert len(orchestrator.executor.audit_log.for_thread("t1")) == 3

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, scripted_client, registry):
        client = scripted_client([], error=ModelServiceUnavailable("Failed to connect to model service"))
        orchestrator = _orchestrator(client, registry)
        sink = RecordingSink()

        with pytest.raises(ModelServiceUnavailable):
            await orchestrator.run_turn(_request(), sink=sink)

        assert (CHAT_END, None) not in sink.events

    @pytest.mark.asyncio
    async def test_history_is_fitted_before_prompt(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="ok", done=True)]])
        orchestrator = _orchestrator(client, registry)
        history = [
            Message(role="user", text="earlier question"),
            Message(role="tool", text="tool output", name="file_read"),
            Message(role="assistant", text="earlier answer"),
        ]

        await orchestrator.run_turn(_request(prompt="next"), history=history)

        assert client.requests[0]["messages"] == [
            {"role": "user", "content": "earlier question"},
            {"role": "assistant", "content": "earlier answer"},
            {"role": "user", "content": "next"},
        ]


class TestRetrievalContext:
    @pytest.mark.asyncio
    async def test_rag_context_uses_thread_settings(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="ok", done=True)]])
        retrieval = MagicMock()
        retrieval.retrieve = AsyncMock(return_value="[Document | weight 1.00 | score 0.900]\nfact\n")
        thread_settings = ThreadSettingsStore()
        thread_settings.set("t1", ThreadSettings(top_k=7, context_tokens=300))
        orchestrator = _orchestrator(client, registry, retrieval=retrieval, thread_settings=thread_settings)

        await orchestrator.run_turn(_request(rag_enabled=True, project_id="p1"))

        retrieval.retrieve.assert_awaited_once_with(
            "hello", thread_id="t1", project_id="p1", top_k=7, ctx_token_budget=300,
        )
        system = client.requests[0]["messages"][0]
        assert system["role"] == "system"
        assert system["content"] == RAG_PREAMBLE + "[Document | weight 1.00 | score 0.900]\nfact\n"

    @pytest.mark.asyncio
    async def test_rag_disabled(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="ok", done=True)]])
        retrieval = MagicMock()
        retrieval.retrieve = AsyncMock()
        orchestrator = _orchestrator(client, registry, retrieval=retrieval)

        await orchestrator.run_turn(_request(rag_enabled=False))

        retrieval.retrieve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_context_adds_no_system_message(self, scripted_client, registry):
        client = scripted_client([[ChatFrame(content="ok", done=True)]])
        retrieval = MagicMock()
        retrieval.retrieve = AsyncMock(return_value="")
        orchestrator = _orchestrator(client, registry, retrieval=retrieval)

        await orchestrator.run_turn(_request(rag_enabled=True))

        assert client.requests[0]["messages"] == [{"role": "user", "content": "hello"}]


class TestTracing:
    @pytest.mark.asyncio
    async def test_turn_span_is_ended(self, scripted_client, registry):
        client = scripted_client([
            [_tool_frame("file_read", {"path": "a.txt"})],
            [ChatFrame(content="done", done=True)],
        ])
        orchestrator = _orchestrator(client, registry)
        span = MagicMock()

        with patch("localchat.agent.orchestrator.create_span", return_value=span) as mock_create, \
             patch("localchat.agent.orchestrator.add_span_event") as mock_event:
            await orchestrator.run_turn(_request())

        assert mock_create.call_args.kwargs["name"] == "agent.turn"
        assert mock_create.call_args.kwargs["attributes"]["model"] == "llama3"
        mock_event.assert_called_once_with("tool.dispatched", {"tool": "file_read", "round": 1})
        span.set_attribute.assert_any_call("turn.rounds", 2)
        span.end.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_turn_marks_span(self, scripted_client, registry):
        client = scripted_client([], error=ModelServiceUnavailable("Failed to connect to model service"))
        orchestrator = _orchestrator(client, registry)
        span = MagicMock()

        with patch("localchat.agent.orchestrator.create_span", return_value=span):
            with pytest.raises(ModelServiceUnavailable):
                await orchestrator.run_turn(_request())

        span.set_attribute.assert_any_call("turn.success", False)
        span.set_attribute.assert_any_call("error.type", "ModelServiceUnavailable")
        span.end.assert_called_once()
