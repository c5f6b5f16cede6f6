"""SQLModel ORM tables for the enrichment pipeline."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, LargeBinary, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"  # type: ignore[bad-override]

    message_id: str = Field(primary_key=True)
    organization_id: str = Field(index=True)
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ProcessingJob(SQLModel, table=True):
    __tablename__ = "processing_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_processing_jobs_queue", "status", "job_type", "priority", "created_at"),
        Index("idx_processing_jobs_entity", "entity_type", "entity_id"),
    )

    job_id: str = Field(primary_key=True)
    organization_id: str = Field(index=True)
    job_type: str
    entity_type: str
    entity_id: str
    status: str
    priority: int = 100
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    worker_id: str | None = None
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    attempts: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    claimed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class ProcessingJobEvent(SQLModel, table=True):
    __tablename__ = "processing_job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_processing_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(foreign_key="processing_jobs.job_id")
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class MessageNormalized(SQLModel, table=True):
    __tablename__ = "messages_normalized"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    message_id: str = Field(unique=True)
    normalized_text: str = Field(sa_column=Column(Text, nullable=False))
    text_hash: str = Field(index=True)
    language: str
    tokens_count: int
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EmbeddingRecord(SQLModel, table=True):
    __tablename__ = "embeddings_registry"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "model_name",
            name="uq_embeddings_registry_entity_model",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    entity_type: str
    entity_id: str = Field(index=True)
    model_name: str
    embedding_dim: int
    embedding_blob: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class IntentCacheEntry(SQLModel, table=True):
    __tablename__ = "intent_cache"  # type: ignore[bad-override]

    text_hash: str = Field(primary_key=True)
    normalized_text: str = Field(sa_column=Column(Text, nullable=False))
    intent: str
    stage: str
    model_used: str
    confidence: float
    degraded: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
    )
    hit_count: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiAnnotation(SQLModel, table=True):
    __tablename__ = "ai_annotations"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "annotation_type",
            "version",
            name="uq_ai_annotations_entity_type_version",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    organization_id: str = Field(index=True)
    entity_type: str
    entity_id: str = Field(index=True)
    annotation_type: str
    version: int = 1
    value_json: str = Field(sa_column=Column(Text, nullable=False))
    model_used: str
    confidence: float
    degraded: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
