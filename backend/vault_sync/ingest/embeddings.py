"""Embedding backends."""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from typing import Iterable, Protocol

from openai import AsyncOpenAI

from vault_sync.core.config import Settings
from vault_sync.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str


class Embedder(Protocol):
    @property
    def dim(self) -> int: ...

    async def embed(self, texts: list[str]) -> EmbeddingBatch: ...


class EmbeddingModel:
    """Lightweight hashed embedding model with deterministic output.

    Works offline, which makes it the default and the one tests use.
    """

    _instances: dict[str, "EmbeddingModel"] = {}

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim

    @classmethod
    def get(cls, model_name: str = "hashed") -> "EmbeddingModel":
        key = model_name or "hashed"
        if key not in cls._instances:
            cls._instances[key] = EmbeddingModel(model_name=key)
        return cls._instances[key]

    @property
    def dim(self) -> int:
        return self._dim

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend="hashed")

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        return self.encode(texts)


class OpenAIEmbedder:
    """Remote embeddings through the OpenAI API."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-ada-002",
        dim: int = 1536,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._dim = dim
        self._client = client or AsyncOpenAI(api_key=api_key)

    @property
    def dim(self) -> int:
        return self._dim

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        if not texts:
            return EmbeddingBatch(vectors=[], model=self.model, dim=self._dim, backend="openai")
        response = await self._client.embeddings.create(model=self.model, input=texts)
        vectors = [item.embedding for item in sorted(response.data, key=lambda item: item.index)]
        logger.debug("Embedded %d texts with %s", len(texts), self.model)
        return EmbeddingBatch(vectors=vectors, model=self.model, dim=self._dim, backend="openai")


def build_embedder(settings: Settings) -> Embedder:
    if settings.embedding_backend == "openai":
        if not settings.openai_api_key:
            raise ValueError("openai embedding backend requires an API key")
        return OpenAIEmbedder(api_key=settings.openai_api_key, model=settings.embedding_model)
    return EmbeddingModel.get()


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["Embedder", "EmbeddingModel", "EmbeddingBatch", "OpenAIEmbedder", "build_embedder"]
