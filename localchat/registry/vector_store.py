"""
Vector store client for the Qdrant HTTP API.

Provides collection bootstrap, point upsert, payload updates and scoped
similarity search. Weighted re-ranking lives here too so every caller
ranks search hits the same way.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from localchat.config import settings
from localchat.exceptions import VectorStoreError
from localchat.utils.http import create_http_client
from localchat.utils.validation import validate_weight

logger = logging.getLogger(__name__)


@dataclass
class ScoredPoint:
    """A search hit returned by the vector store."""

    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def weight(self) -> float:
        """Curation weight from the payload; 1.0 when absent or invalid."""
        raw = self.payload.get("weight")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return 1.0
        return max(float(raw), 0.0)


def build_filter(
    must: Optional[Dict[str, Any]] = None,
    must_not: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Build a Qdrant payload filter from exact-match conditions.

    Args:
        must: Payload key/value pairs every hit must match
        must_not: Payload key/value pairs no hit may match

    Returns:
        Filter object, or None when there are no conditions
    """
    result: Dict[str, Any] = {}
    if must:
        result["must"] = [
            {"key": key, "match": {"value": value}} for key, value in must.items()
        ]
    if must_not:
        result["must_not"] = [
            {"key": key, "match": {"value": value}} for key, value in must_not.items()
        ]
    return result or None


def rerank_weighted(points: List[ScoredPoint], top_k: int) -> List[ScoredPoint]:
    """
    Re-rank hits by ``score * weight``, highest first, keeping ``top_k``.

    The returned points carry the effective score; the raw similarity is
    preserved in ``payload["_similarity"]``.
    """
    ranked = []
    for point in points:
        payload = dict(point.payload)
        payload["_similarity"] = point.score
        ranked.append(ScoredPoint(id=point.id, score=point.score * point.weight, payload=payload))
    ranked.sort(key=lambda p: p.score, reverse=True)
    return ranked[:max(top_k, 0)]


class VectorStore:
    """
    Typed operations against the vector store's collections.

    Collections are created on first use with cosine distance and the
    configured embedding dimension.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        vector_dimension: Optional[int] = None,
        timeout: Optional[float] = None,
        supervisor=None,
    ):
        """
        Initialize vector store client.

        Args:
            base_url: Override the store URL (defaults to host/port settings)
            vector_dimension: Override the embedding dimension
            timeout: Request timeout in seconds
            supervisor: Optional VectorStoreSupervisor asked to ensure the
                store is running before each operation
        """
        self._base_url = base_url.rstrip("/") if base_url else None
        self.vector_dimension = vector_dimension or settings.EMBEDDING_DIMENSION
        self.timeout = timeout or settings.VECTOR_STORE_TIMEOUT
        self.supervisor = supervisor
        # (base_url, collection) pairs known to exist
        self._known_collections: set[tuple[str, str]] = set()

    @property
    def base_url(self) -> str:
        """Explicit URL, else the supervisor's current address, else settings."""
        if self._base_url:
            return self._base_url
        if self.supervisor is not None:
            return self.supervisor.base_url
        return f"http://{settings.VECTOR_STORE_HOST}:{settings.VECTOR_STORE_PORT}"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self.supervisor is not None:
            await self.supervisor.ensure_running()

        url = f"{self.base_url}{path}"
        async with create_http_client(timeout=self.timeout) as client:
            try:
                response = await client.request(method, url, json=json, params=params)
            except httpx.HTTPError as e:
                raise VectorStoreError(f"Vector store unreachable at {self.base_url}: {e}") from e

        if response.status_code >= 400:
            raise VectorStoreError(
                f"Vector store {method} {path} failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise VectorStoreError(f"Vector store returned invalid JSON for {path}") from e
        if not isinstance(data, dict):
            raise VectorStoreError(f"Vector store returned an unexpected response for {path}")
        return data

    async def _exists(self, collection: str) -> bool:
        path = f"/collections/{collection}/exists"
        result = (await self._request("GET", path)).get("result") or {}
        if not isinstance(result, dict):
            raise VectorStoreError(f"Vector store returned an unexpected response for {path}")
        return bool(result.get("exists"))

    async def ensure_collection(self, collection: str) -> None:
        """Create the collection if it does not exist yet."""
        key = (self.base_url, collection)
        if key in self._known_collections:
            return

        if not await self._exists(collection):
            logger.info(f"Creating collection '{collection}' (dim={self.vector_dimension})")
            await self._request(
                "PUT",
                f"/collections/{collection}",
                json={"vectors": {"size": self.vector_dimension, "distance": "Cosine"}},
            )
        self._known_collections.add(key)

    async def collection_exists(self, collection: str) -> bool:
        """Check whether a collection exists without creating it."""
        if (self.base_url, collection) in self._known_collections:
            return True
        return await self._exists(collection)

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: List[float],
        payload: Dict[str, Any],
    ) -> None:
        """
        Insert or replace a point.

        Args:
            collection: Target collection
            point_id: UUID string identifying the point
            vector: Embedding vector
            payload: JSON payload stored with the point
        """
        path = f"/collections/{collection}/points"
        body = {"points": [{"id": point_id, "vector": vector, "payload": payload}]}
        await self.ensure_collection(collection)
        try:
            await self._request("PUT", path, params={"wait": "true"}, json=body)
        except VectorStoreError as e:
            if e.extra.get("status_code") != 404:
                raise
            # The store lost the collection, e.g. a restarted container without a data volume
            logger.warning(f"Collection '{collection}' missing at {self.base_url}, recreating")
            self._known_collections.discard((self.base_url, collection))
            await self.ensure_collection(collection)
            await self._request("PUT", path, params={"wait": "true"}, json=body)

    async def set_weight(self, collection: str, point_id: str, weight: float) -> None:
        """Overwrite the curation weight stored in a point's payload."""
        weight = validate_weight(weight)
        await self._request(
            "POST",
            f"/collections/{collection}/points/payload",
            params={"wait": "true"},
            json={"payload": {"weight": weight}, "points": [point_id]},
        )

    async def search(
        self,
        collection: str,
        vector: List[float],
        limit: int,
        query_filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredPoint]:
        """
        Similarity search in a collection.

        Returns an empty list when the collection does not exist.
        """
        if not await self.collection_exists(collection):
            return []

        body: Dict[str, Any] = {"vector": vector, "limit": limit, "with_payload": True}
        if query_filter:
            body["filter"] = query_filter

        path = f"/collections/{collection}/points/search"
        data = await self._request("POST", path, json=body)
        hits = data.get("result") or []
        if not isinstance(hits, list):
            raise VectorStoreError(f"Vector store returned an unexpected response for {path}")

        points = []
        for hit in hits:
            try:
                points.append(
                    ScoredPoint(
                        id=str(hit["id"]),
                        score=float(hit["score"]),
                        payload=hit.get("payload") or {},
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise VectorStoreError(f"Vector store returned a malformed hit for {path}: {hit!r}") from e
        return points

    async def search_weighted(
        self,
        collection: str,
        vector: List[float],
        top_k: int,
        query_filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredPoint]:
        """Search and re-rank by ``similarity * weight``."""
        points = await self.search(collection, vector, top_k, query_filter)
        return rerank_weighted(points, top_k)
