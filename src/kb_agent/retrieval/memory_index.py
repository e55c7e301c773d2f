"""In-process hybrid index that mimics the search engine's fused ranking.

Used for local development without an Azure AI Search service and by the
integration tests. It answers the same `search(search_text, **kwargs)` call
that `HybridSearchClient` sends to Azure, so the client code path is identical.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from math import sqrt
from typing import Any

from kb_agent.config import RetrievalConfig


@dataclass(slots=True)
class _StoredDocument:
    fields: dict[str, Any]
    embedding: list[float]


class InMemoryHybridIndex:
    """Keyword and k-NN legs fused with Reciprocal Rank Fusion."""

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()
        self._store: dict[str, _StoredDocument] = {}

    def __len__(self) -> int:
        return len(self._store)

    def upsert(self, documents: list[dict[str, Any]], embeddings: list[list[float]]) -> None:
        if len(documents) != len(embeddings):
            raise ValueError("documents and embeddings must have the same length")
        for document, embedding in zip(documents, embeddings, strict=True):
            doc_id = str(document.get("id") or "")
            if not doc_id:
                raise ValueError("every document needs an 'id'")
            self._store[doc_id] = _StoredDocument(fields=dict(document), embedding=embedding)

    def search(self, search_text: str | None, **kwargs: Any) -> list[dict[str, Any]]:
        top = int(kwargs.get("top") or self.config.top_k)
        search_fields = kwargs.get("search_fields") or self.config.search_fields
        select = kwargs.get("select")

        routes: list[list[str]] = []
        if search_text:
            routes.append(self._keyword_route(search_text, search_fields))
        for vector_query in kwargs.get("vector_queries") or []:
            routes.append(
                self._vector_route(
                    list(vector_query.vector),
                    int(vector_query.k_nearest_neighbors or top),
                )
            )

        fused = self._rrf(routes)
        ranked = sorted(fused.items(), key=lambda item: item[1], reverse=True)[:top]
        return [self._project(doc_id, score, select) for doc_id, score in ranked]

    def _keyword_route(self, search_text: str, search_fields: list[str]) -> list[str]:
        query_terms = set(search_text.lower().split())
        scored: list[tuple[str, float]] = []
        for doc_id, stored in self._store.items():
            text = " ".join(str(stored.fields.get(name) or "") for name in search_fields)
            overlap = len(query_terms & set(text.lower().split()))
            if overlap:
                scored.append((doc_id, overlap / max(1, len(query_terms))))
        scored.sort(key=lambda item: item[1], reverse=True)
        return [doc_id for doc_id, _ in scored]

    def _vector_route(self, query_vector: list[float], k: int) -> list[str]:
        scored = [
            (doc_id, _cosine_similarity(query_vector, stored.embedding))
            for doc_id, stored in self._store.items()
        ]
        scored = [item for item in scored if item[1] > 0.0]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [doc_id for doc_id, _ in scored[:k]]

    def _rrf(self, routes: list[list[str]]) -> dict[str, float]:
        scores: dict[str, float] = {}
        for ranked_ids in routes:
            for rank, doc_id in enumerate(ranked_ids, start=1):
                scores[doc_id] = scores.get(doc_id, 0.0) + 1.0 / (self.config.rrf_k + rank)
        return scores

    def _project(self, doc_id: str, score: float, select: list[str] | None) -> dict[str, Any]:
        fields: Mapping[str, Any] = self._store[doc_id].fields
        if select:
            projected = {name: fields.get(name) for name in select}
        else:
            projected = dict(fields)
        projected["id"] = doc_id
        projected["@search.score"] = score
        return projected


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
