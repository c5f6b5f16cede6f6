"""Controllers for pipeline and message CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import uvicorn

from chat_enrichment.config import Settings
from chat_enrichment.pipeline.api import create_app
from chat_enrichment.pipeline.models import JobCreate, JobStatus, JobType
from chat_enrichment.pipeline.services import ingest_message, open_repositories, open_runtime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkCommand:
    """CLI input for one worker invocation or a polling loop."""

    db_path: Path | None
    worker_group: str | None
    batch_size: int | None
    worker_id: str | None
    loop: bool = False
    max_idle_polls: int = 1


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for manual job enqueue."""

    db_path: Path | None
    organization_id: str
    job_type: str
    entity_id: str | None
    entity_type: str
    priority: int
    entity_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class ListJobsCommand:
    db_path: Path | None
    status: str | None
    job_type: str | None
    limit: int


@dataclass(slots=True)
class InspectJobCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class ReclaimCommand:
    db_path: Path | None
    stale_seconds: int | None


@dataclass(slots=True)
class ServeCommand:
    db_path: Path | None
    host: str
    port: int


@dataclass(slots=True)
class AddMessageCommand:
    db_path: Path | None
    organization_id: str
    content: str


@dataclass(slots=True)
class ShowMessageCommand:
    db_path: Path | None
    message_id: str


class PipelineCliController:
    """Coordinates queue, worker and inspection CLI operations."""

    def run_worker(self, command: WorkCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        batch_size = command.batch_size or settings.worker.batch_size
        with open_runtime(settings) as runtime:
            if command.loop:
                summary = runtime.worker.run_loop(
                    worker_group=command.worker_group,
                    batch_size=batch_size,
                    worker_id=command.worker_id,
                    max_idle_polls=command.max_idle_polls,
                )
            else:
                summary = runtime.worker.run_once(
                    worker_group=command.worker_group,
                    batch_size=batch_size,
                    worker_id=command.worker_id,
                )

        return [
            "Worker summary: "
            f"status={summary.status} worker_id={summary.worker_id} "
            f"group={summary.worker_group} claimed={summary.jobs_claimed} "
            f"completed={summary.completed} failed={summary.failed} "
            f"chained={summary.chained} reclaimed={summary.reclaimed}",
        ]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        job_type = JobType(command.job_type)
        payload: dict[str, object] = {}
        if command.entity_ids:
            payload["entity_ids"] = list(command.entity_ids)
        entity_id = command.entity_id or (command.entity_ids[0] if command.entity_ids else None)
        if entity_id is None:
            raise ValueError("Either --entity-id or at least one --entity-ids value is required.")

        settings = Settings.from_env(db_path=command.db_path)
        with open_repositories(settings) as (jobs, _):
            job = jobs.enqueue(
                JobCreate(
                    organization_id=command.organization_id,
                    job_type=job_type,
                    entity_type=command.entity_type,
                    entity_id=entity_id,
                    priority=command.priority,
                    payload=payload,
                ),
            )
        return [
            "Job enqueued: "
            f"job_id={job.job_id} type={job.job_type} entity={job.entity_type}:{job.entity_id} "
            f"priority={job.priority} status={job.status.value}",
        ]

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        status = JobStatus(command.status.strip().lower()) if command.status else None
        job_type = JobType(command.job_type.strip().lower()) if command.job_type else None
        settings = Settings.from_env(db_path=command.db_path)
        with open_repositories(settings) as (jobs, _):
            rows = jobs.list_jobs(status=status, job_type=job_type, limit=command.limit)
            counts = jobs.count_by_status()

        lines = [
            f"Jobs: {len(rows)} "
            + " ".join(f"{name.value}={counts.get(name.value, 0)}" for name in JobStatus),
        ]
        for job in rows:
            lines.append(
                f"  {job.job_id} type={job.job_type} status={job.status.value} "
                f"entity={job.entity_id} priority={job.priority} attempts={job.attempts} "
                f"worker={job.worker_id or '-'}",
            )
        return lines

    def inspect_job(self, command: InspectJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_repositories(settings) as (jobs, _):
            details = jobs.get_job_details(command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Type: {job.job_type}",
            f"Organization: {job.organization_id}",
            f"Entity: {job.entity_type}:{job.entity_id}",
            f"Status: {job.status.value}",
            f"Priority: {job.priority}",
            f"Attempts: {job.attempts}",
            f"Worker: {job.worker_id or '-'}",
            f"Error: {job.error or '-'}",
            f"Payload: {job.payload or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def reclaim(self, command: ReclaimCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        stale_seconds = (
            command.stale_seconds
            if command.stale_seconds is not None
            else settings.worker.stale_claim_seconds
        )
        with open_repositories(settings) as (jobs, _):
            recovered = jobs.recover_stale_claims(stale_after=timedelta(seconds=stale_seconds))
        return [f"Reclaimed {recovered} stale job(s) older than {stale_seconds}s"]

    def serve(self, command: ServeCommand) -> None:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            app = create_app(runtime.worker, default_batch_size=settings.worker.batch_size)
            logger.info("Serving pipeline worker on %s:%d", command.host, command.port)
            uvicorn.run(app, host=command.host, port=command.port)

    def add_message(self, command: AddMessageCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_repositories(settings) as (jobs, store):
            message, job = ingest_message(
                store,
                jobs,
                organization_id=command.organization_id,
                content=command.content,
            )
        return [
            f"Message stored: message_id={message.message_id}",
            f"Job enqueued: job_id={job.job_id} type={job.job_type}",
        ]

    def show_message(self, command: ShowMessageCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_repositories(settings) as (_, store):
            message = store.get_message(command.message_id)
            if message is None:
                return [f"Message not found: {command.message_id}"]
            normalized = store.get_normalized(command.message_id)
            annotations = store.list_annotations(entity_id=command.message_id)

        lines = [
            f"Message: {message.message_id}",
            f"Organization: {message.organization_id}",
            f"Content: {message.content or '-'}",
        ]
        if normalized is None:
            lines.append("Normalized: -")
        else:
            lines.append(
                f"Normalized: {normalized.normalized_text} "
                f"(lang={normalized.language} tokens={normalized.tokens_count} "
                f"hash={normalized.text_hash})",
            )
        lines.append(f"Annotations: {len(annotations)}")
        for annotation in annotations:
            lines.append(
                f"  {annotation.annotation_type} v{annotation.version} {annotation.value} "
                f"model={annotation.model_used} confidence={annotation.confidence:.2f}"
                + (" degraded" if annotation.degraded else ""),
            )
        return lines
