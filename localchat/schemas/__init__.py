"""Pydantic schemas for the runtime's data model and HTTP API."""

from localchat.schemas.chat import (
    Message,
    ConversationRequest,
    ToolSpec,
    ToolCall,
    ContextBudget,
    RetrievedChunk,
    ConversationRef,
    ThreadSettings,
    TurnResult,
)
from localchat.schemas.admin import (
    ChatRequest,
    ServiceStatus,
    VectorStoreConfig,
    AuditEntry,
    IndexMessagesRequest,
    IngestDocumentRequest,
    IngestDocumentResponse,
    WeightUpdateRequest,
    RelatedConversationsRequest,
    HealthCheckResponse,
    ErrorResponse,
)

__all__ = [
    "Message",
    "ConversationRequest",
    "ToolSpec",
    "ToolCall",
    "ContextBudget",
    "RetrievedChunk",
    "ConversationRef",
    "ThreadSettings",
    "TurnResult",
    "ChatRequest",
    "ServiceStatus",
    "VectorStoreConfig",
    "AuditEntry",
    "IndexMessagesRequest",
    "IngestDocumentRequest",
    "IngestDocumentResponse",
    "WeightUpdateRequest",
    "RelatedConversationsRequest",
    "HealthCheckResponse",
    "ErrorResponse",
]
