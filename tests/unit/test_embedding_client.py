import pytest

from kb_agent.errors import EmbeddingError, OperationCancelled
from kb_agent.retrieval.embedding import EmbeddingClient, HashingEmbeddings
from kb_agent.runtime import CancellationToken


class _FixedEmbeddings(HashingEmbeddings):
    def __init__(self, vector: list[float]) -> None:
        super().__init__()
        self.vector = vector
        self.calls: list[str] = []

    def embed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        return self.vector


class _FailingEmbeddings(HashingEmbeddings):
    def embed_query(self, text: str) -> list[float]:
        raise ConnectionError("service unavailable")


def test_embed_returns_vector_from_backend() -> None:
    backend = _FixedEmbeddings([0.1, 0.2, 0.3])
    client = EmbeddingClient(backend, deployment_name="text-embedding-3-large")

    assert client.embed("reset password") == [0.1, 0.2, 0.3]
    assert backend.calls == ["reset password"]


def test_backend_failure_becomes_embedding_error() -> None:
    client = EmbeddingClient(_FailingEmbeddings(), deployment_name="emb")

    with pytest.raises(EmbeddingError) as exc_info:
        client.embed("anything")

    assert exc_info.value.details["deployment"] == "emb"


def test_empty_vector_is_an_error() -> None:
    with pytest.raises(EmbeddingError):
        EmbeddingClient(_FixedEmbeddings([])).embed("anything")


def test_cancelled_token_skips_backend_call() -> None:
    backend = _FixedEmbeddings([1.0])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelled):
        EmbeddingClient(backend).embed("anything", cancel=token)
    assert backend.calls == []


def test_hashing_embeddings_are_deterministic_and_normalised() -> None:
    embeddings = HashingEmbeddings(dimension=64)

    first = embeddings.embed_query("encrypt customer data")
    second = embeddings.embed_documents(["encrypt customer data"])[0]

    assert first == second
    assert len(first) == 64
    assert abs(sum(value * value for value in first) - 1.0) < 1e-9
