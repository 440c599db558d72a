"""
Vector Store Infrastructure
============================

Milvus vector store implementation for embedding storage and nearest
neighbour search.

Collections are created with the COSINE metric. Milvus reports cosine
similarity in the ``distance`` field of a hit; this module converts it to a
cosine distance (1 - similarity) so callers compare distances everywhere.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from pymilvus import MilvusClient

from ticketdedup.config import settings
from ticketdedup.core import VectorStoreException
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class VectorRecord:
    """A vector with its primary key and scalar metadata."""
    id: str
    vector: List[float]
    metadata: dict = field(default_factory=dict)


@dataclass
class SearchResult:
    """Result from vector search."""
    id: str
    distance: float
    metadata: dict = field(default_factory=dict)


class MilvusVectorStore:
    """
    Zilliz Cloud (Managed Milvus) vector store for one collection.

    The cluster's Public Endpoint from the Zilliz Cloud Console goes in
    ZILLIZ_URI, e.g.
    https://inxxxxxxxxxxxxxxxxx.aws-us-west-2.vectordb-uat3.zillizcloud.com
    """

    def __init__(
        self,
        collection_name: str,
        uri: Optional[str] = None,
        api_key: Optional[str] = None,
        dimension: Optional[int] = None
    ):
        self._collection_name = collection_name
        self._uri = uri or settings.zilliz_uri
        self._api_key = api_key if api_key is not None else settings.zilliz_api_key
        self._dimension = dimension or settings.embedding_dimension
        self._client: Optional[MilvusClient] = None
        self._initialized = False

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def dimension(self) -> int:
        return self._dimension

    async def initialize(self) -> None:
        """
        Connect and create the collection if it does not exist.

        Raises:
            VectorStoreException: If Milvus is unreachable or misconfigured
        """
        if self._initialized:
            return

        if not self._uri:
            raise VectorStoreException("ZILLIZ_URI not configured")

        try:
            self._client = MilvusClient(uri=self._uri, token=self._api_key or "")
            exists = await asyncio.to_thread(self._client.has_collection, self._collection_name)
            if not exists:
                await asyncio.to_thread(
                    self._client.create_collection,
                    collection_name=self._collection_name,
                    dimension=self._dimension,
                    primary_field_name="id",
                    id_type="string",
                    max_length=64,
                    vector_field_name="vector",
                    metric_type="COSINE",
                    auto_id=False
                )
                logger.info(
                    "Created Milvus collection",
                    extra={"collection": self._collection_name, "dimension": self._dimension}
                )
            self._initialized = True
        except Exception as e:
            raise VectorStoreException(f"Failed to initialize Milvus: {str(e)}")

    async def upsert(self, records: List[VectorRecord]) -> None:
        """
        Insert or replace vectors by primary key.

        Raises:
            VectorStoreException: If the write fails
        """
        if not records:
            return
        if not self._initialized:
            await self.initialize()

        data = [{"id": r.id, "vector": r.vector, **r.metadata} for r in records]
        try:
            await asyncio.to_thread(
                self._client.upsert,
                collection_name=self._collection_name,
                data=data
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to upsert vectors: {str(e)}")

    async def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        output_fields: Optional[List[str]] = None
    ) -> List[SearchResult]:
        """
        Search for the nearest vectors.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return
            output_fields: Scalar fields to return with each hit

        Returns:
            List of SearchResult ordered by ascending cosine distance

        Raises:
            VectorStoreException: If search fails
        """
        if not self._initialized:
            await self.initialize()

        try:
            results = await asyncio.to_thread(
                self._client.search,
                collection_name=self._collection_name,
                data=[query_embedding],
                limit=top_k,
                output_fields=output_fields or [],
                search_params={"metric_type": "COSINE"}
            )
        except Exception as e:
            raise VectorStoreException(f"Search failed: {str(e)}")

        hits = results[0] if results else []
        formatted = [
            SearchResult(
                id=str(hit.get("id")),
                distance=1.0 - float(hit["distance"]),
                metadata=dict(hit.get("entity") or {})
            )
            for hit in hits
        ]
        formatted.sort(key=lambda r: r.distance)
        return formatted
