"""Narrow contracts consumed by the orchestrator and stage handlers."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import Protocol

from chat_enrichment.llm.router import RouterResult
from chat_enrichment.pipeline.models import (
    AnnotationWrite,
    IntentResult,
    JobCreate,
    JobStatus,
    JobType,
    JobView,
    MessageView,
    NormalizedText,
)


class JobStore(Protocol):
    """Persistent, lockable job queue."""

    def claim(
        self,
        job_types: Sequence[JobType | str],
        limit: int,
        worker_id: str,
    ) -> list[JobView]:
        """Hand each pending job to exactly one caller."""

    def complete(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        *,
        worker_id: str | None = None,
    ) -> bool:
        """Move a claimed job to COMPLETED or FAILED."""

    def enqueue(self, job: JobCreate) -> JobView:
        """Create a pending job; rejects unknown job types."""

    def recover_stale_claims(self, *, stale_after: timedelta) -> int:
        """Return abandoned claims to PENDING; report how many were reset."""


class IntentCache(Protocol):
    """Content-hash keyed classification memo."""

    def lookup(self, text_hash: str) -> IntentResult | None:
        """Return a cached classification or ``None``."""

    def has_intent(self, text_hash: str) -> bool:
        """Report whether a usable entry exists without counting a hit."""

    def upsert(  # noqa: PLR0913
        self,
        text_hash: str,
        normalized_text: str,
        intent: str,
        stage: str,
        model_used: str,
        confidence: float,
        *,
        degraded: bool = False,
    ) -> None:
        """Insert or overwrite the entry for ``text_hash``."""


class EnrichmentStore(IntentCache, Protocol):
    """Messages and enrichment artifacts keyed by natural keys."""

    def get_message(self, message_id: str) -> MessageView | None: ...

    def upsert_normalized(self, normalized: NormalizedText) -> None: ...

    def get_normalized(self, message_id: str) -> NormalizedText | None: ...

    def has_embedding(self, *, entity_type: str, entity_id: str, model_name: str) -> bool: ...

    def insert_embedding(
        self,
        *,
        entity_type: str,
        entity_id: str,
        model_name: str,
        vector: list[float],
    ) -> bool: ...

    def get_embeddings(
        self,
        *,
        entity_type: str,
        entity_ids: list[str],
        model_name: str,
    ) -> dict[str, list[float]]: ...

    def upsert_annotation(self, annotation: AnnotationWrite) -> None: ...


class Classifier(Protocol):
    """Model router contract."""

    def classify(
        self,
        task: str,
        messages: list[dict[str, str]],
        override_max_tokens: int | None = None,
    ) -> RouterResult:
        """Return raw model content (expected JSON) and the model used."""
