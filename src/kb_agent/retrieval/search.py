"""Hybrid (keyword + vector) search against an Azure AI Search index."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from azure.core.exceptions import AzureError
from azure.search.documents.models import VectorizedQuery

from kb_agent.config import RetrievalConfig
from kb_agent.errors import SearchError
from kb_agent.obs.tracing import Timer
from kb_agent.runtime import CancellationToken, check_cancelled
from kb_agent.types import SearchCandidate

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    """The `SearchClient.search` call shape used by `HybridSearchClient`."""

    def search(self, search_text: str | None, **kwargs: Any) -> Iterable[Mapping[str, Any]]:
        """Run one query and yield result documents with `@search.score`."""


class HybridSearchClient:
    """Supplies the keyword and vector signals; the engine fuses and ranks.

    The returned order is the engine's fused order. Nothing is re-ranked here.
    """

    def __init__(self, backend: SearchBackend, config: RetrievalConfig | None = None) -> None:
        self.backend = backend
        self.config = config or RetrievalConfig()

    def search(
        self,
        query_text: str,
        query_vector: list[float],
        top_k: int | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[SearchCandidate]:
        check_cancelled(cancel, "hybrid search")
        k = top_k or self.config.top_k
        request = self._build_request(query_vector, k)

        try:
            with Timer() as timer:
                results = self.backend.search(query_text, **request)
                candidates = [_to_candidate(document) for document in results]
        except AzureError as exc:
            raise SearchError(
                f"Hybrid search failed: {exc.message or exc}",
                details={"index": self.config.index_name, "query_length": len(query_text)},
            ) from exc
        except (OSError, ValueError, TypeError) as exc:
            raise SearchError(
                f"Hybrid search failed: {exc}",
                details={"index": self.config.index_name, "query_length": len(query_text)},
            ) from exc

        logger.info(
            "hybrid search returned %d candidates",
            len(candidates),
            extra={
                "index": self.config.index_name,
                "query_length": len(query_text),
                "vector_dimensions": len(query_vector),
                "knn": k,
                "result_count": len(candidates),
                "latency_ms": round(timer.elapsed_ms, 2),
            },
        )
        return candidates

    def _build_request(self, query_vector: list[float], k: int) -> dict[str, Any]:
        request: dict[str, Any] = {
            "search_fields": list(self.config.search_fields),
            "select": list(self.config.select_fields),
            "vector_queries": [
                VectorizedQuery(
                    vector=query_vector,
                    k_nearest_neighbors=k,
                    fields=self.config.vector_field,
                )
            ],
            "top": k,
        }
        if self.config.vector_filter_mode:
            request["vector_filter_mode"] = self.config.vector_filter_mode
        return request


def _to_candidate(document: Mapping[str, Any]) -> SearchCandidate:
    chunk_index = document.get("chunkindex", document.get("chunkIndex"))
    return SearchCandidate(
        document_id=str(document.get("id") or document.get("docId") or ""),
        filename=str(document.get("filename") or ""),
        file_url=str(document.get("fileUrl") or ""),
        description=str(document.get("description") or ""),
        chunk_index=_as_int(chunk_index),
        total_chunks=_as_int(document.get("totalChunks")),
        relevance_score=float(document.get("@search.score") or 0.0),
    )


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def create_azure_search_backend(*, endpoint: str, index_name: str, api_key: str) -> Any:
    from azure.core.credentials import AzureKeyCredential
    from azure.search.documents import SearchClient

    return SearchClient(
        endpoint=endpoint,
        index_name=index_name,
        credential=AzureKeyCredential(api_key),
    )
