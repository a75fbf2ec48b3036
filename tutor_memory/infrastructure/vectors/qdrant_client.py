# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Qdrant vector database client for fact similarity search.

Every user gets their own collections, named user_{user_id}_{collection}.
Long-term memory facts live in user_{user_id}_memory_facts; the point id is
the fact id, so search hits join straight back to the memory store.

Example:
    from tutor_memory.infrastructure.vectors import init_qdrant, get_qdrant

    await init_qdrant(settings)
    qdrant = get_qdrant()

    results = await qdrant.search_for_user(
        "user-1",
        MEMORY_FACTS_COLLECTION,
        query_vector=embedding,
        limit=10,
    )
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

if TYPE_CHECKING:
    from tutor_memory.core.config.settings import Settings

MEMORY_FACTS_COLLECTION = "memory_facts"

QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException)

# Module-level state
_qdrant_client: Optional["QdrantVectorClient"] = None


class QdrantError(Exception):
    """Exception raised for Qdrant operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Qdrant error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


@dataclass
class SearchResult:
    """Result from a vector similarity search.

    Attributes:
        id: Point ID in Qdrant.
        score: Similarity score.
        payload: Associated metadata.
    """

    id: str
    score: float
    payload: dict[str, Any]


class QdrantVectorClient:
    """Async Qdrant client with per-user collection naming.

    Example:
        client = QdrantVectorClient(settings)
        await client.connect()
        await client.ensure_user_collection("user-1", MEMORY_FACTS_COLLECTION, 768)
        results = await client.search_for_user("user-1", MEMORY_FACTS_COLLECTION, vector)
        await client.close()
    """

    def __init__(self, settings: "Settings") -> None:
        self._settings = settings
        self._client: Optional[AsyncQdrantClient] = None

    async def connect(self) -> None:
        """Create the Qdrant client connection.

        Raises:
            QdrantError: If connection fails.
        """
        qdrant_settings = self._settings.qdrant
        api_key = (
            qdrant_settings.api_key.get_secret_value()
            if qdrant_settings.api_key
            else None
        )

        try:
            self._client = AsyncQdrantClient(
                host=qdrant_settings.host,
                port=qdrant_settings.http_port,
                grpc_port=qdrant_settings.grpc_port,
                api_key=api_key,
                prefer_grpc=qdrant_settings.prefer_grpc,
                timeout=qdrant_settings.timeout,
            )
            await self._client.get_collections()
        except Exception as e:
            raise QdrantError("Failed to connect to Qdrant", e) from e

    async def close(self) -> None:
        """Close the Qdrant client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _ensure_connected(self) -> AsyncQdrantClient:
        if self._client is None:
            raise QdrantError("Qdrant client not connected. Call connect() first.")
        return self._client

    @staticmethod
    def user_collection_name(user_id: str, collection: str) -> str:
        """Build a user-scoped collection name."""
        return f"user_{user_id}_{collection}"

    # ========== Collection management ==========

    async def create_collection(
        self,
        collection_name: str,
        vector_size: int,
        distance: str = "Cosine",
        on_disk: bool = True,
    ) -> None:
        """Create a new collection.

        Args:
            collection_name: Name of the collection.
            vector_size: Dimension of the vectors.
            distance: Distance metric (Cosine, Euclid, Dot).
            on_disk: Whether to store vectors on disk.

        Raises:
            QdrantError: If collection creation fails.
        """
        client = self._ensure_connected()

        distance_map = {
            "Cosine": models.Distance.COSINE,
            "Euclid": models.Distance.EUCLID,
            "Dot": models.Distance.DOT,
        }

        try:
            await client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=vector_size,
                    distance=distance_map.get(distance, models.Distance.COSINE),
                    on_disk=on_disk,
                ),
            )
        except QDRANT_ERRORS as e:
            raise QdrantError(f"Failed to create collection: {collection_name}", e) from e

    async def collection_exists(self, collection_name: str) -> bool:
        """Check if a collection exists.

        Raises:
            QdrantError: If the check fails.
        """
        client = self._ensure_connected()
        try:
            return await client.collection_exists(collection_name)
        except QDRANT_ERRORS as e:
            raise QdrantError(f"Failed to check collection: {collection_name}", e) from e

    async def ensure_user_collection(
        self,
        user_id: str,
        collection: str,
        vector_size: int,
    ) -> str:
        """Create the user's collection if it does not exist yet.

        Returns:
            The full collection name.

        Raises:
            QdrantError: If the check or creation fails.
        """
        collection_name = self.user_collection_name(user_id, collection)
        if not await self.collection_exists(collection_name):
            await self.create_collection(collection_name, vector_size)
        return collection_name

    # ========== Vector operations ==========

    async def upsert(
        self,
        collection_name: str,
        points: list[dict[str, Any]],
    ) -> None:
        """Upsert points into a collection.

        Args:
            collection_name: Name of the collection.
            points: Points shaped {"id": str, "vector": list[float], "payload": dict}.

        Raises:
            QdrantError: If upsert fails.
        """
        client = self._ensure_connected()

        try:
            qdrant_points = [
                models.PointStruct(
                    id=p["id"],
                    vector=p["vector"],
                    payload=p.get("payload", {}),
                )
                for p in points
            ]
            await client.upsert(collection_name=collection_name, points=qdrant_points)
        except QDRANT_ERRORS as e:
            raise QdrantError(f"Failed to upsert points to: {collection_name}", e) from e

    # ========== Search operations ==========

    async def search(
        self,
        collection_name: str,
        query_vector: list[float],
        limit: int = 5,
        score_threshold: Optional[float] = None,
        filter_conditions: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Search for similar vectors in a collection.

        Uses the query_points API.

        Args:
            collection_name: Name of the collection.
            query_vector: The query embedding vector.
            limit: Maximum number of results.
            score_threshold: Minimum similarity score.
            filter_conditions: Exact-match payload conditions.

        Returns:
            List of SearchResult objects, best match first.

        Raises:
            QdrantError: If search fails.
        """
        client = self._ensure_connected()

        query_filter = None
        if filter_conditions:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(key=key, match=models.MatchValue(value=value))
                    for key, value in filter_conditions.items()
                ]
            )

        try:
            response = await client.query_points(
                collection_name=collection_name,
                query=query_vector,
                limit=limit,
                score_threshold=score_threshold,
                query_filter=query_filter,
                with_payload=True,
            )
            return [
                SearchResult(
                    id=str(point.id),
                    score=point.score,
                    payload=point.payload or {},
                )
                for point in response.points
            ]
        except QDRANT_ERRORS as e:
            raise QdrantError(f"Failed to search in: {collection_name}", e) from e

    async def search_for_user(
        self,
        user_id: str,
        collection: str,
        query_vector: list[float],
        limit: int = 5,
        score_threshold: Optional[float] = None,
        filter_conditions: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Search in a user-scoped collection.

        A user without a collection yet has no indexed facts; that is an
        empty result, not an error.
        """
        collection_name = self.user_collection_name(user_id, collection)
        if not await self.collection_exists(collection_name):
            return []
        return await self.search(
            collection_name,
            query_vector,
            limit,
            score_threshold,
            filter_conditions,
        )


async def init_qdrant(settings: "Settings") -> QdrantVectorClient:
    """Initialize the global Qdrant client.

    Raises:
        QdrantError: If connection fails.
    """
    global _qdrant_client

    if _qdrant_client is None:
        client = QdrantVectorClient(settings)
        await client.connect()
        _qdrant_client = client
    return _qdrant_client


def get_qdrant() -> QdrantVectorClient:
    """Get the global Qdrant client.

    Raises:
        QdrantError: If Qdrant has not been initialized.
    """
    if _qdrant_client is None:
        raise QdrantError("Qdrant not initialized. Call init_qdrant() first.")
    return _qdrant_client


async def close_qdrant() -> None:
    """Close the global Qdrant client."""
    global _qdrant_client

    if _qdrant_client is not None:
        await _qdrant_client.close()
        _qdrant_client = None
