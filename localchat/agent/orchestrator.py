"""
Agent orchestration loop.

Drives one user turn: checks tool permissions, gathers retrieval context,
fits history into the model's context window, streams the model's answer
and, whenever the model asks for a tool, runs it and feeds the result back
before asking again.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from localchat.agent.events import EventSink, NullEventSink
from localchat.agent.ollama_client import OllamaClient
from localchat.exceptions import NeedPermission, ToolLoopExceeded
from localchat.observability import add_span_attributes, add_span_event, create_span, record_model_request
from localchat.registry.tool_registry import ToolRegistry
from localchat.schemas.chat import ConversationRequest, Message, ToolCall, TurnResult
from localchat.services.context_manager import ContextManager
from localchat.services.rag import RetrievalEngine
from localchat.services.summarization import SummarizationService
from localchat.services.thread_settings import ThreadSettingsStore
from localchat.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

SANDBOX_DISCLAIMER = (
    "The workspace directory is a sandbox. Use file_write only for plain-text.\n"
    "NEVER overwrite binary files.\n"
)
RAG_PREAMBLE = "Use the following context to answer the user:\n"


class AgentOrchestrator:
    """
    Turn driver wired to explicit collaborators.

    Args:
        client: Model service client
        registry: Tools the model may be offered
        executor: Runs tool calls and records them
        retrieval: Retrieval engine; RAG is skipped when None
        thread_settings: Per-thread retrieval settings
        summarizer: Summarizer used when history must be compressed
        max_tool_rounds: Tool calls allowed in one turn
    """

    def __init__(
        self,
        client: OllamaClient,
        registry: ToolRegistry,
        executor: ToolExecutor,
        retrieval: Optional[RetrievalEngine] = None,
        thread_settings: Optional[ThreadSettingsStore] = None,
        summarizer: Optional[SummarizationService] = None,
        max_tool_rounds: int = 8,
    ):
        self.client = client
        self.registry = registry
        self.executor = executor
        self.retrieval = retrieval
        self.thread_settings = thread_settings or ThreadSettingsStore()
        self.summarizer = summarizer
        self.max_tool_rounds = max_tool_rounds

    @staticmethod
    def check_permissions(request: ConversationRequest) -> None:
        """
        Raises:
            NeedPermission: For the first enabled tool that is not allowed
        """
        allowed = set(request.allowed_tools)
        for tool in request.enabled_tools:
            if tool not in allowed:
                raise NeedPermission(tool)

    def build_system_prompt(self, enabled_tools: List[str], rag_context: str = "") -> str:
        """
        Tool catalogue and sandbox disclaimer when tools are offered, then
        retrieved context when there is any. Empty when neither applies.
        """
        prompt = ""
        if self.registry.specs_for(enabled_tools):
            prompt += self.registry.render_catalogue(enabled_tools)
            prompt += SANDBOX_DISCLAIMER
        if rag_context:
            prompt += RAG_PREAMBLE + rag_context
        return prompt

    async def _rag_context(self, request: ConversationRequest) -> str:
        if not request.rag_enabled or self.retrieval is None:
            return ""
        thread = self.thread_settings.get(request.thread_id)
        return await self.retrieval.retrieve(
            request.prompt,
            thread_id=request.thread_id,
            project_id=request.project_id,
            top_k=thread.top_k,
            ctx_token_budget=thread.context_tokens,
        )

    async def build_messages(
        self,
        request: ConversationRequest,
        history: List[Message],
        system_prompt: str,
    ) -> List[Dict[str, Any]]:
        """System message, admitted history, then the new user message."""
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if history:
            manager = ContextManager(request.model, summarizer=self.summarizer)
            messages.extend(await manager.optimize(history, system_prompt))
        messages.append({"role": "user", "content": request.prompt})
        return messages

    async def run_turn(
        self,
        request: ConversationRequest,
        history: Optional[List[Message]] = None,
        sink: Optional[EventSink] = None,
    ) -> TurnResult:
        """
        Run one user turn to completion.

        Raises:
            NeedPermission: Before any network call, if a tool is not allowed
            ToolLoopExceeded: If the model asks for more tools than allowed
            ModelServiceUnavailable: If the model service cannot be reached
            ModelServiceError: If the model service returns an error status
        """
        self.check_permissions(request)
        sink = sink or NullEventSink()
        start_time = time.time()
        rounds = 0

        span = create_span(
            name="agent.turn",
            attributes={
                "thread_id": request.thread_id,
                "model": request.model,
                "rag_enabled": request.rag_enabled,
                "enabled_tools": ",".join(request.enabled_tools),
            },
        )
        try:
            rag_context = await self._rag_context(request)
            system_prompt = self.build_system_prompt(request.enabled_tools, rag_context)
            messages = await self.build_messages(request, history or [], system_prompt)
            tools = [spec.to_model_tool() for spec in self.registry.specs_for(request.enabled_tools)]

            tool_calls: List[ToolCall] = []
            while True:
                rounds += 1
                text = ""
                call: Optional[ToolCall] = None
                async for frame in self.client.stream_chat(request.model, messages, tools or None):
                    if frame.content:
                        text += frame.content
                        sink.token(frame.content)
                    if frame.tool_call is not None:
                        call = frame.tool_call

                if call is None:
                    messages.append({"role": "assistant", "content": text})
                    break

                if len(tool_calls) >= self.max_tool_rounds:
                    raise ToolLoopExceeded(self.max_tool_rounds)
                tool_calls.append(call)

                add_span_event("tool.dispatched", {"tool": call.name, "round": rounds})
                result = await self.executor.execute(call, request.thread_id, sink=sink)
                sink.tool_message(call.name, result.content)
                messages.append({
                    "role": "assistant",
                    "content": text,
                    "tool_calls": [{"function": {"name": call.name, "arguments": call.arguments}}],
                })
                messages.append({"role": "tool", "name": call.name, "content": result.content})

        except Exception as e:
            record_model_request(request.model, rounds, time.time() - start_time, success=False)
            span.set_attribute("turn.success", False)
            span.set_attribute("error.type", type(e).__name__)
            add_span_event("turn.failed", {"error": str(e), "error_type": type(e).__name__})
            raise
        finally:
            span.set_attribute("turn.rounds", rounds)
            span.end()

        record_model_request(request.model, rounds, time.time() - start_time, success=True)
        add_span_attributes({"turn.tool_calls": len(tool_calls)})
        sink.turn_complete()
        logger.info(
            f"Turn finished for thread {request.thread_id}: "
            f"{rounds} model request(s), {len(tool_calls)} tool call(s)"
        )
        return TurnResult(
            thread_id=request.thread_id,
            final_text=text,
            tool_calls=tool_calls,
            messages=messages,
            rounds=rounds,
        )
