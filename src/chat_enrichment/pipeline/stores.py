"""SQLModel-backed storage for messages and enrichment artifacts."""

from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from chat_enrichment.pipeline.models import (
    ANNOTATION_VERSION,
    CACHE_CONFIDENCE,
    CACHE_MODEL_NAME,
    AnnotationView,
    AnnotationWrite,
    IntentResult,
    MessageView,
    NormalizedText,
)
from chat_enrichment.storage.common import (
    build_sqlite_engine,
    pack_vector,
    to_utc_aware_datetime,
    unpack_vector,
    utc_now,
)
from chat_enrichment.storage.sqlmodel_models import (
    AiAnnotation,
    ChatMessage,
    EmbeddingRecord,
    IntentCacheEntry,
    MessageNormalized,
)


class EnrichmentRepository:
    """Durable store for messages, normalized text, embeddings, annotations and intent cache.

    Every write targets a natural unique key with upsert semantics so that two
    handlers racing on the same entity (after a stale reclaim, for example)
    never produce duplicates or integrity errors.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def add_message(
        self,
        *,
        organization_id: str,
        content: str | None,
        message_id: str | None = None,
    ) -> MessageView:
        """Store one chat message (stand-in for the external message store)."""

        row = ChatMessage(
            message_id=message_id or str(uuid4()),
            organization_id=organization_id,
            content=content,
            created_at=utc_now(),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return MessageView(
                message_id=row.message_id,
                organization_id=row.organization_id,
                content=row.content,
            )

    def get_message(self, message_id: str) -> MessageView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ChatMessage).where(ChatMessage.message_id == message_id),
            ).one_or_none()
        if row is None:
            return None
        return MessageView(
            message_id=row.message_id,
            organization_id=row.organization_id,
            content=row.content,
        )

    def upsert_normalized(self, normalized: NormalizedText) -> None:
        values = {
            "message_id": normalized.message_id,
            "normalized_text": normalized.normalized_text,
            "text_hash": normalized.text_hash,
            "language": normalized.language,
            "tokens_count": normalized.tokens_count,
            "updated_at": utc_now(),
        }
        statement = sqlite_insert(MessageNormalized).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["message_id"],
            set_={key: value for key, value in values.items() if key != "message_id"},
        )
        with Session(self.engine) as session:
            session.exec(statement)
            session.commit()

    def get_normalized(self, message_id: str) -> NormalizedText | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(MessageNormalized).where(MessageNormalized.message_id == message_id),
            ).one_or_none()
        if row is None:
            return None
        return NormalizedText(
            message_id=row.message_id,
            normalized_text=row.normalized_text,
            text_hash=row.text_hash,
            language=row.language,
            tokens_count=row.tokens_count,
        )

    def has_embedding(self, *, entity_type: str, entity_id: str, model_name: str) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(EmbeddingRecord.id).where(
                    EmbeddingRecord.entity_type == entity_type,
                    EmbeddingRecord.entity_id == entity_id,
                    EmbeddingRecord.model_name == model_name,
                ),
            ).first()
        return row is not None

    def insert_embedding(
        self,
        *,
        entity_type: str,
        entity_id: str,
        model_name: str,
        vector: list[float],
    ) -> bool:
        """Persist a vector once per key; returns ``False`` if one already existed."""

        statement = (
            sqlite_insert(EmbeddingRecord)
            .values(
                entity_type=entity_type,
                entity_id=entity_id,
                model_name=model_name,
                embedding_dim=len(vector),
                embedding_blob=pack_vector(vector),
                created_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["entity_type", "entity_id", "model_name"])
        )
        with Session(self.engine) as session:
            result = session.exec(statement)
            session.commit()
            return result.rowcount == 1

    def get_embeddings(
        self,
        *,
        entity_type: str,
        entity_ids: list[str],
        model_name: str,
    ) -> dict[str, list[float]]:
        if not entity_ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(EmbeddingRecord).where(
                    EmbeddingRecord.entity_type == entity_type,
                    EmbeddingRecord.model_name == model_name,
                    col(EmbeddingRecord.entity_id).in_(entity_ids),
                ),
            ).all()
        return {row.entity_id: unpack_vector(row.embedding_blob, row.embedding_dim) for row in rows}

    def count_embeddings(self, *, entity_type: str, entity_id: str) -> int:
        with Session(self.engine) as session:
            return len(
                session.exec(
                    select(EmbeddingRecord.id).where(
                        EmbeddingRecord.entity_type == entity_type,
                        EmbeddingRecord.entity_id == entity_id,
                    ),
                ).all(),
            )

    def lookup(self, text_hash: str) -> IntentResult | None:
        """Return the cached classification for ``text_hash``.

        Degraded entries count as misses so the text is classified again.
        """

        with Session(self.engine) as session:
            row = session.exec(
                select(IntentCacheEntry).where(IntentCacheEntry.text_hash == text_hash),
            ).one_or_none()
            if row is None or row.degraded:
                return None
            session.exec(
                sa_update(IntentCacheEntry)
                .where(col(IntentCacheEntry.text_hash) == text_hash)
                .values(hit_count=col(IntentCacheEntry.hit_count) + 1),
            )
            session.commit()
            return IntentResult(
                intent=row.intent,
                stage=row.stage or "unknown",
                model_used=CACHE_MODEL_NAME,
                confidence=CACHE_CONFIDENCE,
            )

    def has_intent(self, text_hash: str) -> bool:
        """Read-only check for a usable cache entry; does not count as a hit."""

        with Session(self.engine) as session:
            degraded = session.exec(
                select(IntentCacheEntry.degraded).where(IntentCacheEntry.text_hash == text_hash),
            ).one_or_none()
        return degraded is not None and not degraded

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
        now = utc_now()
        values = {
            "text_hash": text_hash,
            "normalized_text": normalized_text,
            "intent": intent,
            "stage": stage,
            "model_used": model_used,
            "confidence": confidence,
            "degraded": degraded,
            "hit_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        statement = sqlite_insert(IntentCacheEntry).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["text_hash"],
            set_={
                "normalized_text": normalized_text,
                "intent": intent,
                "stage": stage,
                "model_used": model_used,
                "confidence": confidence,
                "degraded": degraded,
                "updated_at": now,
            },
        )
        with Session(self.engine) as session:
            session.exec(statement)
            session.commit()

    def get_cache_entry(self, text_hash: str) -> IntentCacheEntry | None:
        with Session(self.engine) as session:
            return session.exec(
                select(IntentCacheEntry).where(IntentCacheEntry.text_hash == text_hash),
            ).one_or_none()

    def upsert_annotation(self, annotation: AnnotationWrite) -> None:
        values = {
            "organization_id": annotation.organization_id,
            "entity_type": annotation.entity_type,
            "entity_id": annotation.entity_id,
            "annotation_type": annotation.annotation_type,
            "version": annotation.version,
            "value_json": json.dumps(annotation.value, ensure_ascii=False, sort_keys=True),
            "model_used": annotation.model_used,
            "confidence": annotation.confidence,
            "degraded": annotation.degraded,
            "updated_at": utc_now(),
        }
        key_columns = ["entity_type", "entity_id", "annotation_type", "version"]
        statement = sqlite_insert(AiAnnotation).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=key_columns,
            set_={key: value for key, value in values.items() if key not in key_columns},
        )
        with Session(self.engine) as session:
            session.exec(statement)
            session.commit()

    def get_annotation(
        self,
        *,
        entity_type: str,
        entity_id: str,
        annotation_type: str,
        version: int = ANNOTATION_VERSION,
    ) -> AnnotationView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AiAnnotation).where(
                    AiAnnotation.entity_type == entity_type,
                    AiAnnotation.entity_id == entity_id,
                    AiAnnotation.annotation_type == annotation_type,
                    AiAnnotation.version == version,
                ),
            ).one_or_none()
        return _to_annotation_view(row) if row is not None else None

    def list_annotations(
        self,
        *,
        annotation_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[AnnotationView]:
        with Session(self.engine) as session:
            statement = select(AiAnnotation)
            if annotation_type is not None:
                statement = statement.where(AiAnnotation.annotation_type == annotation_type)
            if entity_id is not None:
                statement = statement.where(AiAnnotation.entity_id == entity_id)
            statement = statement.order_by(col(AiAnnotation.updated_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_annotation_view(row) for row in rows]


def _to_annotation_view(row: AiAnnotation) -> AnnotationView:
    value = json.loads(row.value_json) if row.value_json else {}
    return AnnotationView(
        organization_id=row.organization_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        annotation_type=row.annotation_type,
        version=row.version,
        value=value if isinstance(value, dict) else {},
        model_used=row.model_used,
        confidence=row.confidence,
        degraded=row.degraded,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
