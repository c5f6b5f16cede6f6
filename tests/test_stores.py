from __future__ import annotations

import allure
import pytest

from chat_enrichment.pipeline.models import AnnotationWrite, IntentResult
from chat_enrichment.pipeline.stores import EnrichmentRepository
from chat_enrichment.pipeline.text import build_normalized

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("Enrichment Storage"),
]


def test_normalized_text_upsert_overwrites_by_message_id(store: EnrichmentRepository) -> None:
    message = store.add_message(organization_id="org-1", content="Hello there")
    store.upsert_normalized(build_normalized(message.message_id, "Hello there"))
    store.upsert_normalized(build_normalized(message.message_id, "Hello again!"))

    normalized = store.get_normalized(message.message_id)
    assert normalized is not None
    assert normalized.normalized_text == "hello again"
    assert normalized.language == "en"
    assert normalized.tokens_count == 3


def test_insert_embedding_is_idempotent_per_key(store: EnrichmentRepository) -> None:
    assert store.insert_embedding(
        entity_type="message",
        entity_id="m-1",
        model_name="model-a",
        vector=[0.5, 0.25],
    )
    assert not store.insert_embedding(
        entity_type="message",
        entity_id="m-1",
        model_name="model-a",
        vector=[9.0, 9.0],
    )
    assert store.insert_embedding(
        entity_type="message",
        entity_id="m-1",
        model_name="model-b",
        vector=[1.0, 0.0],
    )

    assert store.count_embeddings(entity_type="message", entity_id="m-1") == 2
    assert store.has_embedding(entity_type="message", entity_id="m-1", model_name="model-a")
    assert store.get_embeddings(
        entity_type="message",
        entity_ids=["m-1", "m-missing"],
        model_name="model-a",
    ) == {"m-1": [0.5, 0.25]}


def test_intent_cache_lookup_counts_hits_and_skips_degraded(store: EnrichmentRepository) -> None:
    assert store.lookup("hash-1") is None

    store.upsert("hash-1", "how much", "pricing", "discovery", "gpt-4o-mini", 0.8)
    first = store.lookup("hash-1")
    second = store.lookup("hash-1")

    assert first is not None
    assert first.intent == "pricing"
    assert first.stage == "discovery"
    assert first.model_used == "cache"
    assert first.confidence == 0.95
    assert second == first
    entry = store.get_cache_entry("hash-1")
    assert entry is not None
    assert entry.hit_count == 2

    store.upsert("hash-2", "garbled", "unknown", "unknown", "gpt-4o-mini", 0.8, degraded=True)
    assert store.lookup("hash-2") is None
    store.upsert("hash-2", "garbled", "booking", "decision", "gpt-4o-mini", 0.8)
    repaired = store.lookup("hash-2")
    assert repaired is not None
    assert repaired.intent == "booking"


def test_annotation_upsert_keeps_single_row_per_key(store: EnrichmentRepository) -> None:
    for intent in ("pricing", "booking"):
        store.upsert_annotation(
            AnnotationWrite(
                organization_id="org-1",
                entity_type="message",
                entity_id="m-1",
                annotation_type="intent",
                value={"intent": intent, "stage": "discovery"},
                model_used="cache",
                confidence=0.95,
            ),
        )

    annotations = store.list_annotations(entity_id="m-1")
    assert len(annotations) == 1
    assert annotations[0].value == {"intent": "booking", "stage": "discovery"}
    assert annotations[0].version == 1
    assert annotations[0].degraded is False
    assert store.get_annotation(entity_type="message", entity_id="m-1", annotation_type="intent")


def test_has_intent_is_read_only_and_ignores_degraded(store: EnrichmentRepository) -> None:
    assert store.has_intent("hash-1") is False

    store.upsert("hash-1", "how much", "pricing", "discovery", "gpt-4o-mini", 0.8)
    store.upsert("hash-2", "garbled", "unknown", "unknown", "gpt-4o-mini", 0.8, degraded=True)

    assert store.has_intent("hash-1") is True
    assert store.has_intent("hash-2") is False
    entry = store.get_cache_entry("hash-1")
    assert entry is not None
    assert entry.hit_count == 0


def test_intent_result_requires_model_and_confidence() -> None:
    with pytest.raises(TypeError):
        IntentResult(intent="pricing", stage="discovery")  # type: ignore[call-arg]

    result = IntentResult(intent="pricing", stage="discovery", model_used="m", confidence=0.8)
    assert (result.model_used, result.confidence, result.degraded) == ("m", 0.8, False)
