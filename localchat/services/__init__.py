"""Services module."""
from localchat.services.audit import AuditLog
from localchat.services.context_manager import ContextManager
from localchat.services.rag import RetrievalEngine, chunk_text, format_context, rank_chunks
from localchat.services.summarization import (
    SummarizationService,
    create_summarization_service,
    estimate_tokens,
    extractive_summary,
)
from localchat.services.thread_settings import ThreadSettingsStore
from localchat.services.vector_supervisor import (
    SupervisorState,
    VectorStoreSupervisor,
    get_vector_store_supervisor,
    init_vector_store_supervisor,
)

__all__ = [
    "AuditLog",
    "ContextManager",
    "RetrievalEngine",
    "chunk_text",
    "format_context",
    "rank_chunks",
    "SummarizationService",
    "create_summarization_service",
    "estimate_tokens",
    "extractive_summary",
    "ThreadSettingsStore",
    "SupervisorState",
    "VectorStoreSupervisor",
    "get_vector_store_supervisor",
    "init_vector_store_supervisor",
]
