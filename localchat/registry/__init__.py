"""Tool registry and vector search components."""

from localchat.registry.tool_registry import ToolRegistry, create_default_registry
from localchat.registry.vector_store import VectorStore
from localchat.registry.embedding_client import EmbeddingClient

__all__ = [
    "ToolRegistry",
    "create_default_registry",
    "VectorStore",
    "EmbeddingClient",
]
