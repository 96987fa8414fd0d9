"""
Chat API endpoints.

- POST /chat - Run one turn, streamed as NDJSON events
- GET /chat/models - Models installed in the model service
- GET /chat/tools - Tools the model can be offered
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from localchat.agent.events import QueueEventSink
from localchat.agent.orchestrator import AgentOrchestrator
from localchat.api.dependencies import get_runtime
from localchat.exceptions import LocalChatError
from localchat.middleware.auth import require_auth
from localchat.runtime import Runtime
from localchat.schemas.admin import ChatRequest
from localchat.schemas.chat import ToolSpec

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


async def stream_turn(orchestrator: AgentOrchestrator, request: ChatRequest) -> AsyncIterator[str]:
    """
    Run a turn in the background and relay its events as NDJSON lines.

    The stream ends with ``chat-end`` on success or a single ``chat-error``
    carrying ``{code, message}`` on failure.
    """
    sink = QueueEventSink()

    async def drive() -> None:
        try:
            await orchestrator.run_turn(request, request.history, sink)
        except LocalChatError as e:
            logger.warning(f"Turn failed for thread {request.thread_id}: {e}")
            sink.turn_failed(e.to_dict())
        except Exception as e:
            logger.exception(f"Unexpected error in turn for thread {request.thread_id}")
            sink.turn_failed({"code": "InternalError", "message": str(e)})
        finally:
            sink.close()

    task = asyncio.create_task(drive())
    try:
        async for event in sink.events():
            yield json.dumps(event, ensure_ascii=False) + "\n"
    finally:
        if not task.done():
            task.cancel()


@router.post(
    "",
    summary="Run a chat turn",
    description="Streams chat-token, tool-message, tool-stream and chat-end/chat-error events as NDJSON.",
    responses={403: {"description": "A tool was enabled without permission"}},
)
async def chat(
    request: ChatRequest,
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> StreamingResponse:
    """
    Start a turn.

    Tool permissions are checked before anything is streamed, so a
    ``NeedPermission`` failure is a plain 403 response.
    """
    runtime.orchestrator.check_permissions(request)
    return StreamingResponse(
        stream_turn(runtime.orchestrator, request),
        media_type=NDJSON_MEDIA_TYPE,
    )


@router.get("/models", summary="List installed models")
async def list_models(
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> Dict[str, Any]:
    models = await runtime.model_client.list_models()
    return {"models": models}


@router.get("/tools", response_model=List[ToolSpec], summary="List available tools")
async def list_tools(
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> List[ToolSpec]:
    return runtime.registry.list_specs()
