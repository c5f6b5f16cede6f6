"""Enrichment pipeline baseline: job queue, messages, enrichment artifacts."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "chat_messages",
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("message_id"),
    )
    op.create_index(
        "ix_chat_messages_organization_id",
        "chat_messages",
        ["organization_id"],
    )

    op.create_table(
        "processing_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "ix_processing_jobs_organization_id",
        "processing_jobs",
        ["organization_id"],
    )
    op.create_index(
        "idx_processing_jobs_queue",
        "processing_jobs",
        ["status", "job_type", "priority", "created_at"],
    )
    op.create_index(
        "idx_processing_jobs_entity",
        "processing_jobs",
        ["entity_type", "entity_id"],
    )

    op.create_table(
        "processing_job_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["processing_jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_processing_job_events_job_time",
        "processing_job_events",
        ["job_id", "created_at"],
    )

    op.create_table(
        "messages_normalized",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("normalized_text", sa.Text(), nullable=False),
        sa.Column("text_hash", sa.String(), nullable=False),
        sa.Column("language", sa.String(), nullable=False),
        sa.Column("tokens_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id"),
    )
    op.create_index(
        "ix_messages_normalized_text_hash",
        "messages_normalized",
        ["text_hash"],
    )

    op.create_table(
        "embeddings_registry",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("model_name", sa.String(), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column("embedding_blob", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_type",
            "entity_id",
            "model_name",
            name="uq_embeddings_registry_entity_model",
        ),
    )
    op.create_index(
        "ix_embeddings_registry_entity_id",
        "embeddings_registry",
        ["entity_id"],
    )

    op.create_table(
        "intent_cache",
        sa.Column("text_hash", sa.String(), nullable=False),
        sa.Column("normalized_text", sa.Text(), nullable=False),
        sa.Column("intent", sa.String(), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("model_used", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("degraded", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("text_hash"),
    )

    op.create_table(
        "ai_annotations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("annotation_type", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("model_used", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("degraded", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_type",
            "entity_id",
            "annotation_type",
            "version",
            name="uq_ai_annotations_entity_type_version",
        ),
    )
    op.create_index(
        "ix_ai_annotations_organization_id",
        "ai_annotations",
        ["organization_id"],
    )
    op.create_index(
        "ix_ai_annotations_entity_id",
        "ai_annotations",
        ["entity_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_ai_annotations_entity_id", table_name="ai_annotations")
    op.drop_index("ix_ai_annotations_organization_id", table_name="ai_annotations")
    op.drop_table("ai_annotations")
    op.drop_table("intent_cache")
    op.drop_index("ix_embeddings_registry_entity_id", table_name="embeddings_registry")
    op.drop_table("embeddings_registry")
    op.drop_index("ix_messages_normalized_text_hash", table_name="messages_normalized")
    op.drop_table("messages_normalized")
    op.drop_index("idx_processing_job_events_job_time", table_name="processing_job_events")
    op.drop_table("processing_job_events")
    op.drop_index("idx_processing_jobs_entity", table_name="processing_jobs")
    op.drop_index("idx_processing_jobs_queue", table_name="processing_jobs")
    op.drop_index("ix_processing_jobs_organization_id", table_name="processing_jobs")
    op.drop_table("processing_jobs")
    op.drop_index("ix_chat_messages_organization_id", table_name="chat_messages")
    op.drop_table("chat_messages")
