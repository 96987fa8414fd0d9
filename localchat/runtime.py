"""
Service container.

Every long-lived collaborator of a turn is constructed once here and
passed explicitly to whoever needs it; the API layer keeps the container
on ``app.state``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from localchat.agent.ollama_client import OllamaClient
from localchat.agent.orchestrator import AgentOrchestrator
from localchat.config import Settings, settings as default_settings
from localchat.registry.embedding_client import EmbeddingClient
from localchat.registry.tool_registry import ToolRegistry, create_default_registry
from localchat.registry.vector_store import VectorStore
from localchat.services.audit import AuditLog
from localchat.services.rag import RetrievalEngine
from localchat.services.summarization import SummarizationService, create_summarization_service
from localchat.services.thread_settings import ThreadSettingsStore
from localchat.services.vector_supervisor import (
    VectorStoreSupervisor,
    init_vector_store_supervisor,
)
from localchat.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    model_client: OllamaClient
    registry: ToolRegistry
    audit_log: AuditLog
    executor: ToolExecutor
    supervisor: VectorStoreSupervisor
    vector_store: VectorStore
    embedder: EmbeddingClient
    retrieval: RetrievalEngine
    summarizer: SummarizationService
    thread_settings: ThreadSettingsStore
    orchestrator: AgentOrchestrator


def build_runtime(
    config: Optional[Settings] = None,
    registry: Optional[ToolRegistry] = None,
) -> Runtime:
    """Wire the runtime from settings."""
    config = config or default_settings

    model_client = OllamaClient(
        base_url=config.OLLAMA_BASE_URL,
        api_token=config.OLLAMA_API_TOKEN,
        timeout=config.CHAT_TIMEOUT,
    )
    registry = registry or create_default_registry(config)
    audit_log = AuditLog()
    executor = ToolExecutor(registry, audit_log)

    supervisor = init_vector_store_supervisor(config)
    vector_store = VectorStore(
        vector_dimension=config.EMBEDDING_DIMENSION,
        timeout=config.VECTOR_STORE_TIMEOUT,
        supervisor=supervisor,
    )
    embedder = EmbeddingClient(
        base_url=config.OLLAMA_BASE_URL,
        model=config.EMBEDDING_MODEL,
        api_token=config.OLLAMA_API_TOKEN,
        timeout=config.EMBEDDING_TIMEOUT,
    )
    retrieval = RetrievalEngine(embedder, vector_store, config)
    summarizer = create_summarization_service(config)
    thread_settings = ThreadSettingsStore(config)

    orchestrator = AgentOrchestrator(
        client=model_client,
        registry=registry,
        executor=executor,
        retrieval=retrieval,
        thread_settings=thread_settings,
        summarizer=summarizer,
        max_tool_rounds=config.MAX_TOOL_ROUNDS,
    )

    logger.info(f"Runtime ready with tools: {', '.join(registry.names())}")
    return Runtime(
        settings=config,
        model_client=model_client,
        registry=registry,
        audit_log=audit_log,
        executor=executor,
        supervisor=supervisor,
        vector_store=vector_store,
        embedder=embedder,
        retrieval=retrieval,
        summarizer=summarizer,
        thread_settings=thread_settings,
        orchestrator=orchestrator,
    )
