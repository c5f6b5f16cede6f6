"""Wiring of stores, model clients and the worker for CLI and HTTP entrypoints."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass

from chat_enrichment.config import Settings
from chat_enrichment.llm.embeddings import Embedder, build_embedder
from chat_enrichment.llm.router import ModelRouter
from chat_enrichment.pipeline.handlers import HandlerContext
from chat_enrichment.pipeline.models import JobCreate, JobType, JobView, MessageView
from chat_enrichment.pipeline.repository import JobRepository
from chat_enrichment.pipeline.stores import EnrichmentRepository
from chat_enrichment.pipeline.worker import PipelineWorker


@dataclass(slots=True)
class PipelineRuntime:
    """Live collaborators sharing one SQLite database."""

    settings: Settings
    jobs: JobRepository
    store: EnrichmentRepository
    router: ModelRouter
    embedder: Embedder
    worker: PipelineWorker


def ingest_message(
    store: EnrichmentRepository,
    jobs: JobRepository,
    *,
    organization_id: str,
    content: str,
) -> tuple[MessageView, JobView]:
    """Store an inbound message and enqueue its first pipeline stage."""

    message = store.add_message(organization_id=organization_id, content=content)
    job = jobs.enqueue(
        JobCreate(
            organization_id=organization_id,
            job_type=JobType.NORMALIZE_MESSAGE,
            entity_id=message.message_id,
        ),
    )
    return message, job


@contextmanager
def open_repositories(settings: Settings) -> Iterator[tuple[JobRepository, EnrichmentRepository]]:
    """Migrate the database and yield job and enrichment repositories."""

    jobs = JobRepository(db_path=settings.db_path)
    jobs.init_schema()
    store = EnrichmentRepository(db_path=settings.db_path)
    try:
        yield jobs, store
    finally:
        store.close()
        jobs.close()


@contextmanager
def open_runtime(settings: Settings) -> Iterator[PipelineRuntime]:
    """Build the full worker stack; raises ``RuntimeError`` when no embedder is configured."""

    settings.validate()
    with ExitStack() as stack:
        jobs, store = stack.enter_context(open_repositories(settings))
        router = stack.enter_context(ModelRouter.from_settings(settings.llm))
        embedder = build_embedder(settings.embedding)
        close_embedder = getattr(embedder, "close", None)
        if close_embedder is not None:
            stack.callback(close_embedder)
        worker = PipelineWorker(
            context=HandlerContext(
                store=store,
                jobs=jobs,
                classifier=router,
                embedder=embedder,
                settings=settings.enrichment,
            ),
            max_parallel_jobs=settings.worker.max_parallel_jobs,
            stale_claim_seconds=settings.worker.stale_claim_seconds,
            poll_interval_seconds=settings.worker.poll_interval_seconds,
        )
        yield PipelineRuntime(
            settings=settings,
            jobs=jobs,
            store=store,
            router=router,
            embedder=embedder,
            worker=worker,
        )
