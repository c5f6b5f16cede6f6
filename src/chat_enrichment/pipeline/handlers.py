"""Stage handlers: one function per job type, dispatched through ``HANDLERS``."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from chat_enrichment.config import EnrichmentSettings
from chat_enrichment.llm.embeddings import Embedder
from chat_enrichment.llm.router import ModelRouterError
from chat_enrichment.pipeline.clustering import cluster_embeddings
from chat_enrichment.pipeline.models import (
    CLUSTER_ANNOTATION_TYPE,
    INTENT_ANNOTATION_TYPE,
    MESSAGE_ENTITY_TYPE,
    MODEL_CONFIDENCE,
    UNKNOWN_LABEL,
    AnnotationWrite,
    IntentResult,
    JobCreate,
    JobType,
    JobView,
    NormalizedText,
)
from chat_enrichment.pipeline.ports import Classifier, EnrichmentStore, JobStore
from chat_enrichment.pipeline.text import build_normalized

logger = logging.getLogger(__name__)

CLASSIFICATION_TASK = "batch_classification"
BATCH_ANNOTATE_MAX_TOKENS = 1000
UNAVAILABLE_MODEL = "unavailable"
_SINGLE_PROMPT = (
    "Classify the intent and conversation stage of the client message. "
    'Return JSON: {"intent":"...","stage":"..."}'
)
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(slots=True)
class HandlerContext:
    """Collaborators injected into every stage handler."""

    store: EnrichmentStore
    jobs: JobStore
    classifier: Classifier
    embedder: Embedder
    settings: EnrichmentSettings


Handler = Callable[[HandlerContext, JobView], None]


def normalize_message(context: HandlerContext, job: JobView) -> None:
    message = context.store.get_message(job.entity_id)
    if message is None or not message.content:
        logger.debug("Message %s has no content, nothing to normalize", job.entity_id)
        return
    context.store.upsert_normalized(build_normalized(message.message_id, message.content))


def embed_message(context: HandlerContext, job: JobView) -> None:
    embed_entity(context, job.entity_id)


def embed_entity(context: HandlerContext, entity_id: str) -> None:
    """Embed one message's normalized text unless the work is already done.

    Skipped when a vector exists for the same key, or when the intent for
    this exact text is already cached (annotation will not need the vector).
    """

    model_name = context.embedder.model_name
    if context.store.has_embedding(
        entity_type=MESSAGE_ENTITY_TYPE,
        entity_id=entity_id,
        model_name=model_name,
    ):
        return

    normalized = context.store.get_normalized(entity_id)
    if normalized is None or not normalized.normalized_text:
        return

    if context.store.has_intent(normalized.text_hash):
        logger.debug("Intent cached for %s, skipping embedding", entity_id)
        return

    [vector] = context.embedder.embed([normalized.normalized_text])
    context.store.insert_embedding(
        entity_type=MESSAGE_ENTITY_TYPE,
        entity_id=entity_id,
        model_name=model_name,
        vector=vector,
    )


def annotate_message(context: HandlerContext, job: JobView) -> None:
    normalized = context.store.get_normalized(job.entity_id)
    if normalized is None or not normalized.normalized_text:
        return

    result = context.store.lookup(normalized.text_hash)
    if result is None:
        result = _classify_single(context.classifier, normalized)
        context.store.upsert(
            normalized.text_hash,
            normalized.normalized_text,
            result.intent,
            result.stage,
            result.model_used,
            result.confidence,
            degraded=result.degraded,
        )

    context.store.upsert_annotation(
        _intent_annotation(job.organization_id, job.entity_id, result),
    )


def batch_embed(context: HandlerContext, job: JobView) -> None:
    for entity_id in payload_entity_ids(job):
        embed_entity(context, entity_id)


def batch_annotate(context: HandlerContext, job: JobView) -> None:
    """Classify up to ``batch_annotate_limit`` messages with a single model call.

    Results are aligned by position. Ids whose position is missing from the
    returned array are not annotated in this run; they are re-enqueued as
    individual ``annotate_message`` jobs when ``requeue_batch_stragglers`` is on.
    """

    entity_ids = payload_entity_ids(job)[: context.settings.batch_annotate_limit]
    texts: list[NormalizedText] = []
    for entity_id in entity_ids:
        normalized = context.store.get_normalized(entity_id)
        if normalized is not None and normalized.normalized_text:
            texts.append(normalized)
    if not texts:
        return

    items = _classify_batch(context.classifier, texts)
    model_used = items.model
    stragglers: list[str] = []
    for index, normalized in enumerate(texts):
        item = items.values[index] if index < len(items.values) else None
        if not isinstance(item, dict):
            stragglers.append(normalized.message_id)
            continue
        result = IntentResult(
            intent=_label(item.get("intent")),
            stage=_label(item.get("stage")),
            model_used=model_used,
            confidence=MODEL_CONFIDENCE,
        )
        context.store.upsert(
            normalized.text_hash,
            normalized.normalized_text,
            result.intent,
            result.stage,
            result.model_used,
            result.confidence,
        )
        context.store.upsert_annotation(
            _intent_annotation(job.organization_id, normalized.message_id, result),
        )

    if not stragglers:
        return
    logger.warning(
        "Batch job %s left %d of %d message(s) unannotated",
        job.job_id,
        len(stragglers),
        len(texts),
    )
    if context.settings.requeue_batch_stragglers:
        for entity_id in stragglers:
            context.jobs.enqueue(
                JobCreate(
                    organization_id=job.organization_id,
                    job_type=JobType.ANNOTATE_MESSAGE,
                    entity_type=MESSAGE_ENTITY_TYPE,
                    entity_id=entity_id,
                    priority=job.priority,
                ),
            )


def cluster_semantic(context: HandlerContext, job: JobView) -> None:
    entity_ids = payload_entity_ids(job)
    if not entity_ids:
        return
    model_name = context.embedder.model_name
    embeddings = context.store.get_embeddings(
        entity_type=MESSAGE_ENTITY_TYPE,
        entity_ids=entity_ids,
        model_name=model_name,
    )
    clusters = cluster_embeddings(entity_ids, embeddings, context.settings.cluster_threshold)
    for cluster in clusters:
        for member in cluster.members:
            context.store.upsert_annotation(
                AnnotationWrite(
                    organization_id=job.organization_id,
                    entity_type=MESSAGE_ENTITY_TYPE,
                    entity_id=member.entity_id,
                    annotation_type=CLUSTER_ANNOTATION_TYPE,
                    value={
                        "cluster_id": cluster.cluster_id,
                        "size": len(cluster.members),
                        "representative_id": cluster.representative_id,
                        "similarity": round(member.similarity_to_representative, 6),
                    },
                    model_used=model_name,
                    confidence=max(0.0, member.similarity_to_representative),
                ),
            )


def payload_entity_ids(job: JobView) -> list[str]:
    raw = job.payload.get("entity_ids")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"payload.entity_ids must be a list, got {type(raw).__name__}")
    return [str(item) for item in raw if item is not None and str(item).strip()]


HANDLERS: dict[JobType, Handler] = {
    JobType.NORMALIZE_MESSAGE: normalize_message,
    JobType.EMBED_MESSAGE: embed_message,
    JobType.ANNOTATE_MESSAGE: annotate_message,
    JobType.BATCH_EMBED: batch_embed,
    JobType.BATCH_ANNOTATE: batch_annotate,
    JobType.CLUSTER_SEMANTIC: cluster_semantic,
}

_unhandled = [job_type.value for job_type in JobType if job_type not in HANDLERS]
if _unhandled:
    raise RuntimeError(f"No stage handler registered for: {', '.join(_unhandled)}")


@dataclass(slots=True)
class _BatchItems:
    values: list[Any]
    model: str


def _classify_single(classifier: Classifier, normalized: NormalizedText) -> IntentResult:
    try:
        response = classifier.classify(
            CLASSIFICATION_TASK,
            [
                {"role": "system", "content": _SINGLE_PROMPT},
                {"role": "user", "content": normalized.normalized_text},
            ],
        )
    except ModelRouterError as error:
        logger.warning("Classification failed for %s: %s", normalized.message_id, error)
        return _degraded(UNAVAILABLE_MODEL)

    parsed = parse_model_json(response.content)
    if not isinstance(parsed, dict):
        logger.warning("Unparsable classification for %s", normalized.message_id)
        return _degraded(response.model)
    return IntentResult(
        intent=_label(parsed.get("intent")),
        stage=_label(parsed.get("stage")),
        model_used=response.model,
        confidence=MODEL_CONFIDENCE,
    )


def _classify_batch(classifier: Classifier, texts: list[NormalizedText]) -> _BatchItems:
    prompt = (
        f"Classify intents for {len(texts)} messages. "
        "Return a JSON array with one object per message in input order: "
        '[{"id":0,"intent":"...","stage":"..."}]'
    )
    try:
        response = classifier.classify(
            CLASSIFICATION_TASK,
            [
                {"role": "system", "content": prompt},
                {
                    "role": "user",
                    "content": "\n".join(
                        f"[{index}] {item.normalized_text}" for index, item in enumerate(texts)
                    ),
                },
            ],
            override_max_tokens=BATCH_ANNOTATE_MAX_TOKENS,
        )
    except ModelRouterError as error:
        logger.warning("Batch classification failed: %s", error)
        return _BatchItems(values=[], model=UNAVAILABLE_MODEL)

    parsed = parse_model_json(response.content)
    if not isinstance(parsed, list):
        logger.error("Batch classification returned no JSON array")
        return _BatchItems(values=[], model=response.model)
    return _BatchItems(values=parsed, model=response.model)


def parse_model_json(content: str) -> Any:
    """Parse model output as JSON, tolerating code fences; ``None`` when garbled."""

    cleaned = _CODE_FENCE_RE.sub("", (content or "").strip())
    try:
        return json.loads(cleaned)
    except (TypeError, ValueError):
        return None


def _label(value: object) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return UNKNOWN_LABEL


def _degraded(model_used: str) -> IntentResult:
    return IntentResult(
        intent=UNKNOWN_LABEL,
        stage=UNKNOWN_LABEL,
        model_used=model_used,
        confidence=MODEL_CONFIDENCE,
        degraded=True,
    )


def _intent_annotation(
    organization_id: str,
    entity_id: str,
    result: IntentResult,
) -> AnnotationWrite:
    return AnnotationWrite(
        organization_id=organization_id,
        entity_type=MESSAGE_ENTITY_TYPE,
        entity_id=entity_id,
        annotation_type=INTENT_ANNOTATION_TYPE,
        value=result.to_value(),
        model_used=result.model_used,
        confidence=result.confidence,
        degraded=result.degraded,
    )
