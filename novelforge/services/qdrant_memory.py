"""
Qdrant Vector Index for NovelForge
Project-scoped storage and similarity search of content embeddings.

Two collections are used by the orchestrator: project content (chapters,
settings, notes) and agent knowledge, where the agent key takes the place
of the project id.
"""

import logging
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from qdrant_client import QdrantClient
from qdrant_client.http import models as qdrant_models
from qdrant_client.http.models import Distance, VectorParams

from ..core.errors import InvalidInputError, UpstreamError
from ..models import Document

logger = logging.getLogger("novelforge.qdrant")

ProjectKey = Union[int, str]

COLLECTION_PROJECT_CONTENT = "novelforge_project_content"
COLLECTION_AGENT_KNOWLEDGE = "novelforge_agent_knowledge"


def _project_filter(project_id: ProjectKey) -> qdrant_models.Filter:
    return qdrant_models.Filter(
        must=[
            qdrant_models.FieldCondition(
                key="project_id",
                match=qdrant_models.MatchValue(value=str(project_id)),
            )
        ]
    )


class QdrantVectorIndex:
    """One Qdrant collection exposed as a project-scoped vector index."""

    def __init__(
        self,
        collection: str = COLLECTION_PROJECT_CONTENT,
        vector_size: int = 1536,
        url: Optional[str] = "http://localhost:6333",
        api_key: Optional[str] = None,
        location: Optional[str] = None,
        client: Optional[QdrantClient] = None,
    ):
        self.collection = collection
        self.vector_size = vector_size
        self.url = url
        self.api_key = api_key
        self.location = location
        self._client: Optional[QdrantClient] = client

    async def connect(self) -> None:
        """Create the client if needed and make sure the collection exists."""
        if self._client is None:
            if self.location is not None:
                self._client = QdrantClient(location=self.location)
            else:
                self._client = QdrantClient(url=self.url, api_key=self.api_key)
        await self._ensure_collection()

    @property
    def client(self) -> QdrantClient:
        if self._client is None:
            raise RuntimeError("Qdrant client not connected. Call connect() first.")
        return self._client

    async def _ensure_collection(self) -> None:
        try:
            existing = {c.name for c in self.client.get_collections().collections}
            if self.collection not in existing:
                self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e

    def _check_vector(self, vector: List[float]) -> None:
        if len(vector) != self.vector_size:
            raise InvalidInputError(
                f"Vector has dimension {len(vector)}, collection expects {self.vector_size}"
            )

    async def add(
        self,
        project_id: ProjectKey,
        content: str,
        vector: List[float],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Store one document. Returns its id."""
        self._check_vector(vector)
        point_id = str(uuid4())
        try:
            self.client.upsert(
                collection_name=self.collection,
                points=[
                    qdrant_models.PointStruct(
                        id=point_id,
                        vector=vector,
                        payload={
                            "project_id": str(project_id),
                            "content": content,
                            "metadata": metadata or {},
                        },
                    )
                ],
            )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e
        return point_id

    async def search(self, project_id: ProjectKey, vector: List[float], top_k: int = 5) -> List[Document]:
        """Documents of one project ordered by decreasing similarity in [0, 1]."""
        self._check_vector(vector)
        try:
            response = self.client.query_points(
                collection_name=self.collection,
                query=vector,
                query_filter=_project_filter(project_id),
                limit=top_k,
                with_payload=True,
            )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e

        documents = [
            Document(
                id=str(point.id),
                content=(point.payload or {}).get("content", ""),
                metadata=(point.payload or {}).get("metadata", {}),
                score=min(1.0, max(0.0, float(point.score))),
            )
            for point in response.points
        ]
        return sorted(documents, key=lambda d: d.score, reverse=True)

    async def delete(self, document_id: str) -> None:
        try:
            self.client.delete(
                collection_name=self.collection,
                points_selector=qdrant_models.PointIdsList(points=[document_id]),
            )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e

    async def delete_project(self, project_id: ProjectKey) -> None:
        """Delete all vectors for a project."""
        try:
            self.client.delete(
                collection_name=self.collection,
                points_selector=qdrant_models.FilterSelector(filter=_project_filter(project_id)),
            )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e

    async def count(self, project_id: ProjectKey) -> int:
        try:
            result = self.client.count(
                collection_name=self.collection,
                count_filter=_project_filter(project_id),
                exact=True,
            )
        except Exception as e:
            raise UpstreamError("vector_index", str(e)) from e
        return result.count
