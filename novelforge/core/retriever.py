"""
Retriever for NovelForge
Embeds a query, searches the vector index for one project and formats the
hits as a numbered context block.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Union

from ..models import Document
from .context import CancellationToken
from .errors import InvalidInputError, NovelForgeError, UpstreamError

if TYPE_CHECKING:
    from ..agents.base import ModelEndpoint

logger = logging.getLogger("novelforge.retriever")

ProjectKey = Union[int, str]


class VectorIndex(Protocol):
    async def search(self, project_id: ProjectKey, vector: List[float], top_k: int) -> List[Document]:
        ...


class Retriever:
    """Query embedding plus project-scoped vector search."""

    def __init__(self, endpoint: "ModelEndpoint", index: VectorIndex, default_top_k: int = 5):
        self.endpoint = endpoint
        self.index = index
        self.default_top_k = default_top_k
        self._stats: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def _record(self, agent_id: Optional[str], documents: int, failed: bool) -> None:
        key = agent_id or "anonymous"
        with self._lock:
            stats = self._stats.setdefault(key, {"calls": 0, "failures": 0, "documents": 0})
            stats["calls"] += 1
            stats["documents"] += documents
            if failed:
                stats["failures"] += 1

    async def _embed(self, query: str, token: Optional[CancellationToken]) -> List[float]:
        try:
            call = self.endpoint.embed([query])
            vectors = await (token.guard(call) if token else call)
        except NovelForgeError:
            raise
        except Exception as e:
            raise UpstreamError("embedding", str(e)) from e
        if not vectors:
            raise UpstreamError("embedding", "endpoint returned no vectors")
        return vectors[0]

    async def retrieve(
        self,
        project_id: ProjectKey,
        query: str,
        top_k: Optional[int] = None,
        agent_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Document]:
        """Top-k documents for `query`, best first.

        Errors from the embedding endpoint or the vector index propagate;
        callers treat retrieval as advisory and may fall back to no context.

        Raises:
            InvalidInputError: top_k below 1
        """
        if top_k is None:
            top_k = self.default_top_k
        if top_k < 1:
            raise InvalidInputError(f"top_k must be at least 1, got {top_k}")
        try:
            vector = await self._embed(query, token)
            try:
                call = self.index.search(project_id, vector, top_k)
                documents = await (token.guard(call) if token else call)
            except NovelForgeError:
                raise
            except Exception as e:
                raise UpstreamError("vector_index", str(e)) from e
        except Exception:
            self._record(agent_id, 0, failed=True)
            raise

        documents = sorted(documents, key=lambda d: d.score, reverse=True)[:top_k]
        self._record(agent_id, len(documents), failed=False)
        logger.debug(f"[retrieve] project={project_id} agent={agent_id} hits={len(documents)}")
        return documents

    @staticmethod
    def build_context(documents: List[Document]) -> str:
        if not documents:
            return ""
        blocks = [
            f"[{i}] relevance: {doc.score:.2f}\n{doc.content}"
            for i, doc in enumerate(documents, 1)
        ]
        return "\n\n---\n\n".join(blocks)

    def stats(self, agent_id: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if agent_id is not None:
                return dict(self._stats.get(agent_id, {"calls": 0, "failures": 0, "documents": 0}))
            return {key: dict(value) for key, value in self._stats.items()}
