"""
Retrieval engine (RAG).

Two retrieval surfaces share one vector store: document chunks ingested
into a thread, and saved conversation messages tagged with their thread
and project. Retrieval embeds the query, searches the surfaces in scope,
re-ranks every hit by ``similarity * weight`` and renders the best chunks
into a context block bounded by a token budget.

Retrieval is best-effort: any failure produces an empty context.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Set

from localchat.config import Settings, settings as default_settings
from localchat.exceptions import EmbeddingError, LocalChatError
from localchat.observability import add_span_event, create_span, record_retrieval
from localchat.registry.embedding_client import EmbeddingClient
from localchat.registry.vector_store import ScoredPoint, VectorStore, build_filter
from localchat.schemas.chat import ConversationRef, Message, RetrievedChunk
from localchat.services.summarization import estimate_tokens

logger = logging.getLogger(__name__)

RELATED_QUERY_MESSAGES = 3


def chunk_text(text: str, max_tokens: int) -> List[str]:
    """
    Split text into line-aligned chunks of at most ``max_tokens`` estimated tokens.

    A single line longer than the budget becomes its own chunk.
    """
    chunks: List[str] = []
    current = ""
    for line in text.splitlines():
        if current and estimate_tokens(current + line) > max_tokens:
            chunks.append(current.strip())
            current = ""
        current += line + "\n"
    if current.strip():
        chunks.append(current.strip())
    return [c for c in chunks if c]


def rank_chunks(chunks: List[RetrievedChunk], top_k: int) -> List[RetrievedChunk]:
    """Sort by effective score, highest first, and keep ``top_k``."""
    ranked = sorted(chunks, key=lambda c: c.effective_score, reverse=True)
    return ranked[:max(top_k, 0)]


def format_chunk(chunk: RetrievedChunk) -> str:
    """Render one chunk as a weight-annotated block."""
    return (
        f"[{chunk.label} | weight {chunk.weight:.2f} | score {chunk.effective_score:.3f}]\n"
        f"{chunk.text}\n"
    )


def format_context(chunks: List[RetrievedChunk], ctx_token_budget: int) -> str:
    """
    Concatenate formatted chunks in order while the running token estimate
    stays within ``ctx_token_budget``; the chunk that would overflow and
    everything after it are left out.
    """
    parts: List[str] = []
    used = 0
    for chunk in chunks:
        block = format_chunk(chunk)
        cost = estimate_tokens(block)
        if used + cost > ctx_token_budget:
            break
        parts.append(block)
        used += cost
    return "\n".join(parts)


def _document_chunk(point: ScoredPoint) -> Optional[RetrievedChunk]:
    text = point.payload.get("text")
    if not isinstance(text, str) or not text:
        return None
    file_name = point.payload.get("file_name")
    return RetrievedChunk(
        text=text,
        similarity_score=point.score,
        weight=point.weight,
        source_id=point.id,
        label=f"Document {file_name}" if file_name else "Document",
    )


def _conversation_chunk(point: ScoredPoint) -> Optional[RetrievedChunk]:
    content = point.payload.get("content")
    role = point.payload.get("role")
    thread_id = point.payload.get("thread_id")
    if not isinstance(content, str) or not content or not role or not thread_id:
        return None
    return RetrievedChunk(
        text=f"{role}: {content}",
        similarity_score=point.score,
        weight=point.weight,
        source_id=point.id,
        label=f"Previous conversation {str(thread_id)[:8]}",
    )


class RetrievalEngine:
    """
    Retrieval and indexing over the documents and conversations collections.

    Args:
        embedder: Embedding client
        store: Vector store client
        config: Settings supplying collection names and defaults
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.embedder = embedder
        self.store = store
        self.documents_collection = config.DOCUMENTS_COLLECTION
        self.conversations_collection = config.CONVERSATIONS_COLLECTION
        self.cross_thread_enabled = config.RAG_CROSS_THREAD_ENABLED
        self.chunk_max_tokens = config.CHUNK_MAX_TOKENS
        self._background: Set[asyncio.Task] = set()

    async def embed(self, text: str) -> List[float]:
        """Embed text; an unreachable service yields an empty vector."""
        try:
            return await self.embedder.embed_text(text)
        except EmbeddingError as e:
            logger.warning(f"Embedding failed: {e}")
            return []

    async def search_chunks(
        self,
        vector: List[float],
        thread_id: str,
        project_id: Optional[str],
        top_k: int,
        query_length: int = 0,
    ) -> List[RetrievedChunk]:
        """
        Search every surface in scope and return ranked chunks.

        Documents are limited to the current thread. Conversations are only
        searched when a project is given, limited to that project and
        excluding the current thread.
        """
        chunks: List[RetrievedChunk] = []

        start = time.time()
        points = await self.store.search(
            self.documents_collection,
            vector,
            top_k,
            build_filter(must={"thread_id": thread_id}),
        )
        chunks.extend(c for c in map(_document_chunk, points) if c is not None)
        record_retrieval("documents", len(points), time.time() - start, query_length)

        if project_id and self.cross_thread_enabled:
            start = time.time()
            points = await self.store.search(
                self.conversations_collection,
                vector,
                top_k,
                build_filter(must={"project_id": project_id}, must_not={"thread_id": thread_id}),
            )
            chunks.extend(c for c in map(_conversation_chunk, points) if c is not None)
            record_retrieval("conversations", len(points), time.time() - start, query_length)

        return rank_chunks(chunks, top_k)

    async def retrieve(
        self,
        query: str,
        thread_id: str,
        project_id: Optional[str] = None,
        top_k: int = 4,
        ctx_token_budget: int = 1024,
    ) -> str:
        """
        Build the context block for a query.

        Returns:
            Formatted context, or an empty string when nothing relevant was
            found or retrieval failed
        """
        if not query or not query.strip():
            return ""

        span = create_span(
            name="rag.retrieve",
            attributes={"thread_id": thread_id, "top_k": top_k, "query_length": len(query)},
        )
        try:
            vector = await self.embed(query)
            if not vector:
                return ""
            chunks = await self.search_chunks(vector, thread_id, project_id, top_k, len(query))
        except LocalChatError as e:
            logger.warning(f"Retrieval degraded to empty context: {e}")
            add_span_event("retrieval.degraded", {"error": str(e), "error_type": type(e).__name__})
            return ""
        finally:
            span.end()

        context = format_context(chunks, ctx_token_budget)
        logger.info(
            f"Retrieved {len(chunks)} chunks for thread {thread_id} "
            f"(~{estimate_tokens(context)} tokens of context)"
        )
        return context

    async def index_messages(
        self,
        thread_id: str,
        messages: List[Message],
        project_id: Optional[str] = None,
    ) -> int:
        """
        Upsert saved messages into the conversations collection.

        Tool messages and empty messages are skipped, as are messages the
        embedding service returns nothing for.

        Returns:
            Number of messages indexed
        """
        indexed = 0
        for message in messages:
            if message.role == "tool" or not message.text.strip():
                continue
            vector = await self.embedder.embed_text(message.text)
            if not vector:
                logger.warning(f"No embedding for message {message.id}, skipping")
                continue
            payload: Dict[str, Any] = {
                "content": message.text,
                "role": message.role,
                "thread_id": thread_id,
                "project_id": project_id,
                "message_id": message.id,
                "weight": 1.0,
            }
            await self.store.upsert(
                self.conversations_collection,
                _point_id(message.id),
                vector,
                payload,
            )
            indexed += 1
        return indexed

    def schedule_indexing(
        self,
        thread_id: str,
        messages: List[Message],
        project_id: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Index messages in a detached task.

        Failures are logged and never reach the caller.
        """
        task = asyncio.create_task(self._index_detached(thread_id, messages, project_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _index_detached(
        self,
        thread_id: str,
        messages: List[Message],
        project_id: Optional[str],
    ) -> None:
        try:
            count = await self.index_messages(thread_id, messages, project_id)
            logger.info(f"Indexed {count} messages for thread {thread_id}")
        except Exception as e:
            logger.warning(f"Background indexing failed for thread {thread_id}: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for outstanding background indexing tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def ingest_document(self, thread_id: str, file_name: str, text: str) -> int:
        """
        Chunk, embed and upsert a document's text into the documents collection.

        Returns:
            Number of chunks stored

        Raises:
            EmbeddingError: If a chunk cannot be embedded
            VectorStoreError: If the store rejects an upsert
        """
        chunks = chunk_text(text, self.chunk_max_tokens)
        total = len(chunks)
        for index, chunk in enumerate(chunks):
            vector = await self.embedder.embed_text(chunk)
            if not vector:
                raise EmbeddingError(f"No embedding returned for chunk {index} of {file_name}")
            await self.store.upsert(
                self.documents_collection,
                str(uuid.uuid4()),
                vector,
                {
                    "text": chunk,
                    "file_name": file_name,
                    "chunk_index": index,
                    "total_chunks": total,
                    "thread_id": thread_id,
                    "weight": 1.0,
                },
            )
        logger.info(f"Ingested {file_name} into thread {thread_id} as {total} chunks")
        return total

    async def set_weight(self, collection: str, point_id: str, weight: float) -> None:
        await self.store.set_weight(collection, point_id, weight)

    async def find_related_conversations(
        self,
        messages: List[Message],
        thread_id: str,
        project_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[ConversationRef]:
        """
        Find saved conversation messages from other threads similar to the
        latest messages of this one.

        The query is built from the last three messages, ignoring tool
        messages. Other threads of the current project are excluded when a
        project is given, so results come from elsewhere.
        """
        recent = [m.text for m in messages[-RELATED_QUERY_MESSAGES:] if m.role != "tool"]
        query = " ".join(reversed(recent)).strip()
        if not query:
            return []

        vector = await self.embed(query)
        if not vector:
            return []

        must_not: Dict[str, Any] = {"thread_id": thread_id}
        query_filter = build_filter(must_not=must_not)
        if project_id:
            query_filter["must_not"].append({"key": "project_id", "match": {"value": project_id}})

        points = await self.store.search_weighted(
            self.conversations_collection, vector, limit, query_filter
        )

        refs = []
        for i, point in enumerate(points):
            content = point.payload.get("content")
            role = point.payload.get("role")
            if not isinstance(content, str) or not role:
                continue
            other_project = point.payload.get("project_id")
            refs.append(
                ConversationRef(
                    id=point.id,
                    title=f"Related conversation #{len(refs) + 1}",
                    snippet=f"{role}: {content}",
                    relevance_score=point.score,
                    project_id=other_project if isinstance(other_project, str) else None,
                )
            )
        return refs


def _point_id(message_id: str) -> str:
    """Stable UUID point id for a message id, so re-saving a message replaces it."""
    try:
        return str(uuid.UUID(message_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, message_id))
