"""Pydantic schemas for the chat and admin HTTP endpoints."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from localchat.schemas.chat import ConversationRequest, Message


class ChatRequest(ConversationRequest):
    """Request body for POST /chat."""

    history: List[Message] = Field(default_factory=list)


class ServiceStatus(BaseModel):
    """Live view of the supervised vector store."""

    running: bool
    port: int
    launch_method: str
    auto_start: bool


class VectorStoreConfig(BaseModel):
    """Launch configuration of the vector store supervisor."""

    auto_start: bool = True
    host: str = "127.0.0.1"
    port: int = Field(6333, ge=1, le=65535)
    use_docker: bool = True
    data_path: Optional[str] = None
    container_name: str = "localchat-qdrant"
    image: str = "qdrant/qdrant"
    binary: str = "qdrant"


class AuditEntry(BaseModel):
    """A recorded tool invocation."""

    when: datetime
    thread_id: str
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    ok: bool


class IndexMessagesRequest(BaseModel):
    """Messages saved to a thread, to be vectorised in the background."""

    messages: List[Message]
    project_id: Optional[str] = None


class IngestDocumentRequest(BaseModel):
    """Already-extracted document text to index for a thread."""

    file_name: str = Field(..., min_length=1)
    text: str
    mime: str = "text/plain"


class IngestDocumentResponse(BaseModel):
    thread_id: str
    file_name: str
    chunks: int


class WeightUpdateRequest(BaseModel):
    weight: float = Field(..., ge=0.0)


class RelatedConversationsRequest(BaseModel):
    messages: List[Message]
    project_id: Optional[str] = None
    limit: int = Field(5, ge=1, le=50)


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    model_service: bool
    vector_store: bool


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
