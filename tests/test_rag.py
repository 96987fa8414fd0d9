"""Tests for the retrieval engine."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from localchat.config import Settings
from localchat.exceptions import EmbeddingError, VectorStoreError
from localchat.registry.vector_store import ScoredPoint, rerank_weighted
from localchat.schemas.chat import Message, RetrievedChunk
from localchat.services.rag import (
    RetrievalEngine,
    chunk_text,
    format_chunk,
    format_context,
    rank_chunks,
)
from localchat.services.summarization import estimate_tokens


@pytest.fixture
def embedder():
    mock = MagicMock()
    mock.embed_text = AsyncMock(return_value=[0.1, 0.2, 0.3, 0.4])
    return mock


@pytest.fixture
def store():
    mock = MagicMock()
    mock.search = AsyncMock(return_value=[])
    mock.upsert = AsyncMock()
    mock.set_weight = AsyncMock()
    mock.search_weighted = AsyncMock(side_effect=lambda c, v, k, f=None: rerank_weighted([], k))
    return mock


@pytest.fixture
def engine(embedder, store):
    return RetrievalEngine(embedder, store, Settings())


def _chunk(text: str, score: float, weight: float = 1.0) -> RetrievedChunk:
    return RetrievedChunk(text=text, similarity_score=score, weight=weight, source_id=text)


class TestChunkText:
    def test_splits_on_line_boundaries(self):
        text = "\n".join(["line %02d " % i + "x" * 30 for i in range(20)])

        chunks = chunk_text(text, max_tokens=30)

        assert len(chunks) > 1
        assert "\n".join(chunks).split("\n") == text.split("\n")
        for chunk in chunks:
            assert estimate_tokens(chunk) <= 30

    def test_long_line_is_its_own_chunk(self):
        text = "short\n" + "y" * 400 + "\nshort again"

        chunks = chunk_text(text, max_tokens=20)

        assert "y" * 400 in chunks

    def test_blank_text(self):
        assert chunk_text("\n\n   \n", max_tokens=10) == []


class TestRanking:
    def test_rank_chunks_uses_weight(self):
        chunks = [_chunk("a", 0.9, 1.0), _chunk("b", 0.8, 1.5), _chunk("c", 0.95, 0.5)]

        ranked = rank_chunks(chunks, top_k=2)

        assert [c.text for c in ranked] == ["b", "a"]

    def test_format_chunk(self):
        chunk = RetrievedChunk(text="Paris is the capital.", similarity_score=0.8, weight=1.5,
                               source_id="p1", label="Document notes.txt")

        assert format_chunk(chunk) == (
            "[Document notes.txt | weight 1.50 | score 1.200]\nParis is the capital.\n"
        )

    def test_format_context_stops_at_budget(self):
        chunks = [_chunk("a" * 200, 0.9), _chunk("b" * 200, 0.8), _chunk("c" * 20, 0.7)]

        context = format_context(chunks, ctx_token_budget=100)

        assert "a" * 200 in context
        assert "b" * 200 not in context
        # Everything after the overflowing chunk is left out too
        assert "c" * 20 not in context
        assert estimate_tokens(context) <= 100

    def test_format_context_zero_budget(self):
        assert format_context([_chunk("a", 0.9)], ctx_token_budget=0) == ""


class TestRetrieve:
    """Query-time retrieval."""

    @pytest.mark.asyncio
    async def test_documents_scoped_to_thread(self, engine, store):
        store.search.return_value = [
            ScoredPoint(id="1", score=0.9, payload={"text": "The sky is blue.", "file_name": "sky.md"}),
        ]

        context = await engine.retrieve("What colour is the sky?", thread_id="t1", top_k=3)

        assert "[Document sky.md | weight 1.00 | score 0.900]" in context
        assert "The sky is blue." in context
        store.search.assert_awaited_once()
        collection, _, limit, query_filter = store.search.await_args.args
        assert collection == "chat"
        assert limit == 3
        assert query_filter == {"must": [{"key": "thread_id", "match": {"value": "t1"}}]}

    @pytest.mark.asyncio
    async def test_conversations_need_project(self, engine, store):
        await engine.retrieve("query", thread_id="t1", project_id=None)

        assert store.search.await_count == 1

    @pytest.mark.asyncio
    async def test_conversations_scoped_to_project_excluding_thread(self, engine, store):
        async def search(collection, vector, limit, query_filter=None):
            if collection == "conversations":
                return [ScoredPoint(id="2", score=0.7, payload={
                    "content": "Use blue-green deploys", "role": "assistant",
                    "thread_id": "other-thread-id", "project_id": "p1",
                })]
            return [ScoredPoint(id="1", score=0.6, payload={"text": "doc text"})]

        store.search.side_effect = search

        context = await engine.retrieve("deploys", thread_id="t1", project_id="p1", top_k=4)

        conversation_call = store.search.await_args_list[1]
        assert conversation_call.args[0] == "conversations"
        assert conversation_call.args[3] == {
            "must": [{"key": "project_id", "match": {"value": "p1"}}],
            "must_not": [{"key": "thread_id", "match": {"value": "t1"}}],
        }
        assert "[Previous conversation other-th | weight 1.00 | score 0.700]" in context
        assert "assistant: Use blue-green deploys" in context
        # Higher effective score first
        assert context.index("blue-green") < context.index("doc text")

    @pytest.mark.asyncio
    async def test_cross_thread_disabled(self, embedder, store):
        engine = RetrievalEngine(embedder, store, Settings(RAG_CROSS_THREAD_ENABLED=False))

        await engine.retrieve("query", thread_id="t1", project_id="p1")

        assert [c.args[0] for c in store.search.await_args_list] == ["chat"]

    @pytest.mark.asyncio
    async def test_embedding_failure_gives_empty_context(self, engine, embedder, store):
        embedder.embed_text.side_effect = EmbeddingError("embedding service down")

        assert await engine.retrieve("query", thread_id="t1") == ""
        store.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_vector_gives_empty_context(self, engine, embedder, store):
        embedder.embed_text.return_value = []

        assert await engine.retrieve("query", thread_id="t1") == ""
        store.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_gives_empty_context(self, engine, store):
        store.search.side_effect = VectorStoreError("store down")

        assert await engine.retrieve("query", thread_id="t1") == ""

    @pytest.mark.asyncio
    async def test_degraded_retrieval_is_traced(self, engine, store):
        store.search.side_effect = VectorStoreError("store down")
        span = MagicMock()

        with patch("localchat.services.rag.create_span", return_value=span) as mock_create, \
             patch("localchat.services.rag.add_span_event") as mock_event:
            await engine.retrieve("query", thread_id="t1", top_k=3)

        assert mock_create.call_args.kwargs["attributes"] == {"thread_id": "t1", "top_k": 3, "query_length": 5}
        mock_event.assert_called_once_with(
            "retrieval.degraded", {"error": "store down", "error_type": "VectorStoreError"}
        )
        span.end.assert_called_once()

    @pytest.mark.asyncio
    async def test_blank_query(self, engine, embedder):
        assert await engine.retrieve("   ", thread_id="t1") == ""
        embedder.embed_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payload_without_text_is_skipped(self, engine, store):
        store.search.return_value = [ScoredPoint(id="1", score=0.9, payload={"weight": 1.0})]

        assert await engine.retrieve("query", thread_id="t1") == ""


class TestIndexing:
    """Conversation indexing and document ingestion."""

    @pytest.mark.asyncio
    async def test_index_messages_skips_tool_and_empty(self, engine, store):
        messages = [
            Message(id="3f0c9a64-1f3e-4c59-9b1e-2f4f5b0d6a11", role="user", text="How do I deploy?"),
            Message(role="tool", text="a.txt", name="shell_exec"),
            Message(role="assistant", text="   "),
            Message(id="m-42", role="assistant", text="Use the deploy script."),
        ]

        count = await engine.index_messages("t1", messages, project_id="p1")

        assert count == 2
        first, second = store.upsert.await_args_list
        collection, point_id, _, payload = first.args
        assert collection == "conversations"
        assert point_id == "3f0c9a64-1f3e-4c59-9b1e-2f4f5b0d6a11"
        assert payload == {
            "content": "How do I deploy?",
            "role": "user",
            "thread_id": "t1",
            "project_id": "p1",
            "message_id": "3f0c9a64-1f3e-4c59-9b1e-2f4f5b0d6a11",
            "weight": 1.0,
        }
        # Non-UUID message ids map to a stable UUID
        assert second.args[1] != "m-42"
        assert len(second.args[1]) == 36

    @pytest.mark.asyncio
    async def test_schedule_indexing_never_raises(self, engine, embedder):
        embedder.embed_text.side_effect = EmbeddingError("down")

        task = engine.schedule_indexing("t1", [Message(role="user", text="hello there")])
        await engine.drain()

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_ingest_document(self, embedder, store):
        engine = RetrievalEngine(embedder, store, Settings(CHUNK_MAX_TOKENS=10))
        text = "first line of the document\nsecond line of the document\nthird line"

        chunks = await engine.ingest_document("t1", "notes.txt", text)

        assert chunks == store.upsert.await_count
        assert chunks > 1
        payloads = [c.args[3] for c in store.upsert.await_args_list]
        assert [p["chunk_index"] for p in payloads] == list(range(chunks))
        assert all(p["total_chunks"] == chunks for p in payloads)
        assert all(p["file_name"] == "notes.txt" and p["thread_id"] == "t1" for p in payloads)
        assert all(c.args[0] == "chat" for c in store.upsert.await_args_list)

    @pytest.mark.asyncio
    async def test_ingest_document_requires_embedding(self, engine, embedder):
        embedder.embed_text.return_value = []

        with pytest.raises(EmbeddingError, match="No embedding returned for chunk 0"):
            await engine.ingest_document("t1", "notes.txt", "some text")


class TestRelatedConversations:
    @pytest.mark.asyncio
    async def test_query_and_filter(self, engine, embedder, store):
        store.search_weighted.side_effect = None
        store.search_weighted.return_value = [
            ScoredPoint(id="9", score=0.8, payload={
                "content": "We chose Postgres", "role": "assistant", "project_id": "p2",
            }),
        ]
        messages = [
            Message(role="user", text="one"),
            Message(role="user", text="two"),
            Message(role="tool", text="ignored"),
            Message(role="assistant", text="three"),
        ]

        refs = await engine.find_related_conversations(messages, thread_id="t1", project_id="p1", limit=3)

        embedder.embed_text.assert_awaited_once_with("three two")
        collection, _, limit, query_filter = store.search_weighted.await_args.args
        assert collection == "conversations"
        assert limit == 3
        assert query_filter == {"must_not": [
            {"key": "thread_id", "match": {"value": "t1"}},
            {"key": "project_id", "match": {"value": "p1"}},
        ]}
        assert len(refs) == 1
        assert refs[0].snippet == "assistant: We chose Postgres"
        assert refs[0].relevance_score == 0.8
        assert refs[0].project_id == "p2"

    @pytest.mark.asyncio
    async def test_no_messages(self, engine, embedder):
        assert await engine.find_related_conversations([], thread_id="t1") == []
        embedder.embed_text.assert_not_awaited()
