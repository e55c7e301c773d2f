"""Query embedding through a LangChain `Embeddings` backend."""

from __future__ import annotations

import logging
from hashlib import blake2b
from math import sqrt
from typing import Any

from langchain_core.embeddings import Embeddings

from kb_agent.errors import EmbeddingError
from kb_agent.obs.tracing import Timer
from kb_agent.runtime import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Turns one query into one vector. No caching, no retries.

    Callers short-circuit empty queries before reaching this client.
    """

    def __init__(self, embeddings: Embeddings, *, deployment_name: str = "") -> None:
        self.embeddings = embeddings
        self.deployment_name = deployment_name

    def embed(self, text: str, *, cancel: CancellationToken | None = None) -> list[float]:
        check_cancelled(cancel, "embedding")
        try:
            with Timer() as timer:
                vector = self.embeddings.embed_query(text)
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding service call failed: {exc}",
                details={"deployment": self.deployment_name, "text_length": len(text)},
            ) from exc

        if not vector:
            raise EmbeddingError(
                "Embedding service returned no vector",
                details={"deployment": self.deployment_name, "text_length": len(text)},
            )

        logger.debug(
            "embedded query",
            extra={
                "deployment": self.deployment_name,
                "text_length": len(text),
                "vector_dimensions": len(vector),
                "latency_ms": round(timer.elapsed_ms, 2),
            },
        )
        return [float(value) for value in vector]


class HashingEmbeddings(Embeddings):
    """Deterministic signed-hash bag-of-words embeddings.

    Used by the in-memory index for local development and tests; no external
    model is called.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += -1.0 if digest[4] % 2 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def create_azure_embeddings(
    *,
    endpoint: str,
    api_key: str,
    deployment: str,
    api_version: str,
) -> Any:
    from langchain_openai import AzureOpenAIEmbeddings

    return AzureOpenAIEmbeddings(
        azure_endpoint=endpoint,
        api_key=api_key,
        azure_deployment=deployment,
        api_version=api_version,
    )
