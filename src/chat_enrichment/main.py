"""CLI entrypoint for chat-enrichment."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click
from sqlalchemy.exc import SQLAlchemyError

from chat_enrichment import __version__
from chat_enrichment.pipeline.chain import DEFAULT_WORKER_GROUP, WORKER_GROUPS
from chat_enrichment.pipeline.controllers import (
    AddMessageCommand,
    EnqueueCommand,
    InspectJobCommand,
    ListJobsCommand,
    PipelineCliController,
    ReclaimCommand,
    ServeCommand,
    ShowMessageCommand,
    WorkCommand,
)
from chat_enrichment.pipeline.models import JobStatus, JobType

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()
JOB_TYPE_CHOICES = [job_type.value for job_type in JobType]
STATUS_CHOICES = [status.value for status in JobStatus]

T = TypeVar("T")
R = TypeVar("R")


@click.group()
@click.version_option(version=__version__, prog_name="chat-enrichment")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def chat_enrichment(log_level: str) -> None:
    """Chat message enrichment pipeline CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@chat_enrichment.group()
def pipeline() -> None:
    """Job queue and worker commands."""


@pipeline.command("work")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--worker-group",
    default=DEFAULT_WORKER_GROUP,
    show_default=True,
    help=f"Worker group: {', '.join(WORKER_GROUPS)}.",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Max jobs claimed per invocation (defaults to CHAT_ENRICHMENT_WORKER_BATCH_SIZE).",
)
@click.option("--worker-id", default=None, help="Worker id; generated when omitted.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one claim/dispatch cycle or poll until idle.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before the loop exits.",
)
def pipeline_work(  # noqa: PLR0913
    db_path: Path | None,
    worker_group: str,
    batch_size: int | None,
    worker_id: str | None,
    once: bool,
    max_idle_polls: int,
) -> None:
    """Claim and process pending jobs for one worker group."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.run_worker,
            WorkCommand(
                db_path=db_path,
                worker_group=worker_group,
                batch_size=batch_size,
                worker_id=worker_id,
                loop=not once,
                max_idle_polls=max_idle_polls,
            ),
        ),
    )


@pipeline.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--org", "organization_id", required=True, help="Organization id.")
@click.option("--job-type", type=click.Choice(JOB_TYPE_CHOICES), required=True, help="Job type.")
@click.option("--entity-id", default=None, help="Target entity id.")
@click.option("--entity-type", default="message", show_default=True, help="Target entity type.")
@click.option("--priority", type=int, default=100, show_default=True, help="Lower runs first.")
@click.option(
    "--entity-ids",
    "entity_ids",
    multiple=True,
    help="Entity id for batch job payloads. Can be repeated.",
)
def pipeline_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    organization_id: str,
    job_type: str,
    entity_id: str | None,
    entity_type: str,
    priority: int,
    entity_ids: tuple[str, ...],
) -> None:
    """Enqueue one job."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.enqueue,
            EnqueueCommand(
                db_path=db_path,
                organization_id=organization_id,
                job_type=job_type,
                entity_id=entity_id,
                entity_type=entity_type,
                priority=priority,
                entity_ids=entity_ids,
            ),
        ),
    )


@pipeline.command("jobs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--status", type=click.Choice(STATUS_CHOICES), default=None, help="Status filter.")
@click.option("--job-type", type=click.Choice(JOB_TYPE_CHOICES), default=None, help="Type filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max rows.",
)
def pipeline_jobs(
    db_path: Path | None,
    status: str | None,
    job_type: str | None,
    limit: int,
) -> None:
    """List recent jobs."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.list_jobs,
            ListJobsCommand(db_path=db_path, status=status, job_type=job_type, limit=limit),
        ),
    )


@pipeline.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def pipeline_inspect(db_path: Path | None, job_id: str) -> None:
    """Show one job with its event stream."""

    _emit_lines(
        _run(PIPELINE_CONTROLLER.inspect_job, InspectJobCommand(db_path=db_path, job_id=job_id)),
    )


@pipeline.command("reclaim")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--stale-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Claim age threshold (defaults to CHAT_ENRICHMENT_STALE_CLAIM_SECONDS).",
)
def pipeline_reclaim(db_path: Path | None, stale_seconds: int | None) -> None:
    """Return stale claimed jobs to the pending queue."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.reclaim,
            ReclaimCommand(db_path=db_path, stale_seconds=stale_seconds),
        ),
    )


@pipeline.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind host.")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=8000, show_default=True)
def pipeline_serve(db_path: Path | None, host: str, port: int) -> None:
    """Serve the `/pipeline-worker` HTTP endpoint."""

    _run(PIPELINE_CONTROLLER.serve, ServeCommand(db_path=db_path, host=host, port=port))


@chat_enrichment.group()
def messages() -> None:
    """Chat message commands."""


@messages.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--org", "organization_id", required=True, help="Organization id.")
@click.option("--content", required=True, help="Message text.")
def messages_add(db_path: Path | None, organization_id: str, content: str) -> None:
    """Store a message and enqueue its normalize job."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.add_message,
            AddMessageCommand(db_path=db_path, organization_id=organization_id, content=content),
        ),
    )


@messages.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("message_id")
def messages_show(db_path: Path | None, message_id: str) -> None:
    """Show a message with its normalized text and annotations."""

    _emit_lines(
        _run(
            PIPELINE_CONTROLLER.show_message,
            ShowMessageCommand(db_path=db_path, message_id=message_id),
        ),
    )


def _run(action: Callable[[T], R], command: T) -> R:
    try:
        return action(command)
    except (ValueError, RuntimeError, SQLAlchemyError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    chat_enrichment()
