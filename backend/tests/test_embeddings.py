"""Tests for embedding utilities."""

from types import SimpleNamespace

import pytest

from vault_sync.core.config import Settings
from vault_sync.ingest.embeddings import EmbeddingModel, OpenAIEmbedder, build_embedder


def test_embedding_model_placeholder() -> None:
    model = EmbeddingModel.get("dummy-model")
    vectors = model.encode(["hello", "world"]).vectors
    assert len(vectors) == 2
    assert all(len(vec) == model.dim for vec in vectors)
    assert abs(sum(value * value for value in vectors[0]) - 1.0) < 1e-6


def test_embedding_model_is_deterministic() -> None:
    first = EmbeddingModel(dim=32).encode(["same text"]).vectors[0]
    second = EmbeddingModel(dim=32).encode(["same text"]).vectors[0]
    assert first == second


def test_build_embedder_defaults_to_hashed() -> None:
    embedder = build_embedder(Settings())
    assert isinstance(embedder, EmbeddingModel)
    assert embedder is EmbeddingModel.get()


def test_build_embedder_openai_requires_key() -> None:
    with pytest.raises(ValueError):
        build_embedder(Settings(embedding_backend="openai"))


class _FakeEmbeddings:
    def __init__(self) -> None:
        self.calls = []

    async def create(self, model, input):
        self.calls.append((model, input))
        # Returned out of order on purpose; the embedder sorts by index.
        data = [SimpleNamespace(index=i, embedding=[float(i)] * 3) for i in range(len(input))]
        return SimpleNamespace(data=list(reversed(data)))


@pytest.mark.asyncio
async def test_openai_embedder_orders_by_index() -> None:
    fake = _FakeEmbeddings()
    embedder = OpenAIEmbedder(api_key="sk-test", dim=3, client=SimpleNamespace(embeddings=fake))
    batch = await embedder.embed(["a", "b", "c"])
    assert batch.vectors == [[0.0] * 3, [1.0] * 3, [2.0] * 3]
    assert batch.backend == "openai"
    assert fake.calls == [("text-embedding-ada-002", ["a", "b", "c"])]


@pytest.mark.asyncio
async def test_openai_embedder_skips_empty_input() -> None:
    fake = _FakeEmbeddings()
    embedder = OpenAIEmbedder(api_key="sk-test", client=SimpleNamespace(embeddings=fake))
    batch = await embedder.embed([])
    assert batch.vectors == []
    assert fake.calls == []
