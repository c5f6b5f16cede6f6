"""Embedding providers for message vectors."""

from __future__ import annotations

import hashlib
import logging
import math
from array import array
from dataclasses import dataclass
from typing import Protocol

import httpx

from chat_enrichment.config import EmbeddingSettings

logger = logging.getLogger(__name__)

Vector = list[float]
MAX_INPUT_CHARS = 8000


class EmbeddingError(RuntimeError):
    """Embedding provider call failed."""


class Embedder(Protocol):
    """Embedding backend interface."""

    model_name: str

    def embed(self, texts: list[str]) -> list[Vector]:
        """Encode texts into vectors."""
        raise NotImplementedError


class OpenAIEmbeddingClient:
    """OpenAI-compatible ``/embeddings`` client with explicit timeout."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str,
        model_name: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model_name = model_name
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def embed(self, texts: list[str]) -> list[Vector]:
        if not texts:
            return []
        body = {"model": self.model_name, "input": [text[:MAX_INPUT_CHARS] for text in texts]}
        try:
            response = self._client.post("/embeddings", json=body)
        except httpx.HTTPError as error:
            raise EmbeddingError(f"Embedding request failed: {error}") from error
        if not response.is_success:
            raise EmbeddingError(f"Embedding error: {response.status_code}")
        try:
            items = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(value) for value in item["embedding"]] for item in items]
        except (ValueError, KeyError, TypeError) as error:
            raise EmbeddingError("Malformed embedding response") from error
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding response size mismatch: expected {len(texts)}, got {len(vectors)}",
            )
        return vectors

    def close(self) -> None:
        self._client.close()


@dataclass(slots=True)
class HashingEmbedder:
    """CPU-friendly offline embedder based on hashed character n-grams."""

    model_name: str
    dimensions: int = 384
    ngram_size: int = 3

    def embed(self, texts: list[str]) -> list[Vector]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> Vector:
        normalized = (text or "").lower().strip()[:MAX_INPUT_CHARS]
        vector = array("f", [0.0]) * self.dimensions
        if not normalized:
            return list(vector)

        if len(normalized) < self.ngram_size:
            normalized = normalized + " " * (self.ngram_size - len(normalized))

        for index in range(len(normalized) - self.ngram_size + 1):
            ngram = normalized[index : index + self.ngram_size]
            digest = hashlib.sha1(ngram.encode("utf-8"), usedforsecurity=False).digest()  # noqa: S324
            bucket = int.from_bytes(digest[:4], byteorder="little") % self.dimensions
            vector[bucket] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm > 0:
            vector = array("f", (value / norm for value in vector))
        return list(vector)


def build_embedder(settings: EmbeddingSettings) -> Embedder:
    """Build the configured embedder.

    Without an API key the hashing fallback is used only when explicitly
    allowed, to avoid silently storing low-quality vectors.
    """

    if settings.api_key:
        return OpenAIEmbeddingClient(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model_name=settings.model_name,
            timeout_seconds=settings.timeout_seconds,
        )
    if settings.allow_fallback:
        logger.warning("No embedding API key configured, using hashing embedder fallback")
        return HashingEmbedder(model_name=f"hashing:{settings.model_name}")
    raise RuntimeError(
        "No embedding API key configured. Set CHAT_ENRICHMENT_EMBEDDING_API_KEY "
        "(or OPENAI_API_KEY) or CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK=true.",
    )


def cosine_similarity(left: Vector, right: Vector) -> float:
    if len(left) != len(right):
        raise ValueError("Vectors must have the same size")

    dot = sum(l_value * r_value for l_value, r_value in zip(left, right, strict=True))
    left_norm = math.sqrt(sum(value * value for value in left))
    right_norm = math.sqrt(sum(value * value for value in right))
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (left_norm * right_norm)))
