"""
Admin API endpoints.

Vector store lifecycle:
- GET /admin/vector-store/status - Current status and launch method
- POST /admin/vector-store/start - Ensure the store is running
- POST /admin/vector-store/stop - Stop a supervised store
- PUT /admin/vector-store/config - Replace the launch configuration

Threads:
- GET|PUT /admin/threads/{thread_id}/settings - Retrieval settings
- GET /admin/threads/{thread_id}/audit - Tool invocations
- POST /admin/threads/{thread_id}/messages - Index saved messages in the background
- POST /admin/threads/{thread_id}/documents - Ingest extracted document text
- POST /admin/threads/{thread_id}/related - Related conversations elsewhere

Points:
- PUT /admin/points/{collection}/{point_id}/weight - Curation weight
"""
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from localchat.api.dependencies import get_runtime
from localchat.middleware.auth import require_auth
from localchat.runtime import Runtime
from localchat.schemas.admin import (
    AuditEntry,
    IndexMessagesRequest,
    IngestDocumentRequest,
    IngestDocumentResponse,
    RelatedConversationsRequest,
    ServiceStatus,
    VectorStoreConfig,
    WeightUpdateRequest,
)
from localchat.schemas.chat import ConversationRef, ThreadSettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/vector-store/status",
    response_model=ServiceStatus,
    summary="Vector store status",
)
async def vector_store_status(
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> ServiceStatus:
    return await runtime.supervisor.status()


@router.post(
    "/vector-store/start",
    response_model=ServiceStatus,
    summary="Start the vector store",
    description="Launches the store when it is down and auto-start is enabled.",
)
async def start_vector_store(
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> ServiceStatus:
    await runtime.supervisor.ensure_running()
    return await runtime.supervisor.status()


@router.post(
    "/vector-store/stop",
    response_model=ServiceStatus,
    summary="Stop the vector store",
)
async def stop_vector_store(
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> ServiceStatus:
    await runtime.supervisor.stop()
    return await runtime.supervisor.status()


@router.put(
    "/vector-store/config",
    response_model=VectorStoreConfig,
    summary="Reconfigure the vector store supervisor",
)
async def configure_vector_store(
    config: VectorStoreConfig,
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> VectorStoreConfig:
    return await runtime.supervisor.reconfigure(config)


@router.get(
    "/threads/{thread_id}/settings",
    response_model=ThreadSettings,
    summary="Get thread retrieval settings",
)
async def get_thread_settings(
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> ThreadSettings:
    return runtime.thread_settings.get(thread_id)


@router.put(
    "/threads/{thread_id}/settings",
    response_model=ThreadSettings,
    summary="Set thread retrieval settings",
)
async def set_thread_settings(
    value: ThreadSettings,
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> ThreadSettings:
    return runtime.thread_settings.set(thread_id, value)


@router.get(
    "/threads/{thread_id}/audit",
    response_model=List[AuditEntry],
    summary="Tool invocations of a thread",
)
async def get_thread_audit(
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> List[AuditEntry]:
    return runtime.audit_log.for_thread(thread_id)


@router.post(
    "/threads/{thread_id}/messages",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Index saved messages",
    description="Schedules vectorisation of the messages and returns immediately.",
)
async def index_thread_messages(
    request: IndexMessagesRequest,
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> Dict[str, Any]:
    runtime.retrieval.schedule_indexing(thread_id, request.messages, request.project_id)
    return {"thread_id": thread_id, "scheduled": len(request.messages)}


@router.post(
    "/threads/{thread_id}/documents",
    response_model=IngestDocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest document text",
)
async def ingest_document(
    request: IngestDocumentRequest,
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> IngestDocumentResponse:
    if not request.text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Document text is empty",
        )

    chunks = await runtime.retrieval.ingest_document(thread_id, request.file_name, request.text)
    return IngestDocumentResponse(thread_id=thread_id, file_name=request.file_name, chunks=chunks)


@router.post(
    "/threads/{thread_id}/related",
    response_model=List[ConversationRef],
    summary="Find related conversations",
)
async def related_conversations(
    request: RelatedConversationsRequest,
    thread_id: str = Path(..., description="Thread ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> List[ConversationRef]:
    return await runtime.retrieval.find_related_conversations(
        request.messages,
        thread_id=thread_id,
        project_id=request.project_id,
        limit=request.limit,
    )


@router.put(
    "/points/{collection}/{point_id}/weight",
    summary="Set a point's curation weight",
)
async def set_point_weight(
    request: WeightUpdateRequest,
    collection: str = Path(..., description="Collection name"),
    point_id: str = Path(..., description="Point ID"),
    runtime: Runtime = Depends(get_runtime),
    api_key: str = Depends(require_auth),
) -> Dict[str, Any]:
    await runtime.retrieval.set_weight(collection, point_id, request.weight)
    logger.info(f"Set weight of {collection}/{point_id} to {request.weight}")
    return {"collection": collection, "point_id": point_id, "weight": request.weight}
