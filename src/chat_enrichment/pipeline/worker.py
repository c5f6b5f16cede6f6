"""Claim/dispatch orchestrator for the enrichment job queue."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from chat_enrichment.pipeline.chain import next_job_type, resolve_worker_group
from chat_enrichment.pipeline.handlers import HANDLERS, Handler, HandlerContext
from chat_enrichment.pipeline.models import (
    MAX_ERROR_CHARS,
    JobCreate,
    JobStatus,
    JobType,
    JobView,
    WorkerRunSummary,
)

logger = logging.getLogger(__name__)


def new_worker_id() -> str:
    return f"worker-{uuid4().hex[:8]}"


@dataclass(slots=True)
class _JobOutcome:
    status: JobStatus | None
    chained: bool = False


class PipelineWorker:
    """Claims a batch of jobs, runs their handlers and chains the next stage."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        context: HandlerContext,
        max_parallel_jobs: int = 4,
        stale_claim_seconds: int = 900,
        poll_interval_seconds: float = 2.0,
        handlers: Mapping[JobType, Handler] | None = None,
    ) -> None:
        self.context = context
        self.jobs = context.jobs
        self.max_parallel_jobs = max(1, max_parallel_jobs)
        self.stale_claim_seconds = stale_claim_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.handlers = dict(handlers if handlers is not None else HANDLERS)
        self._stop_requested = False

    def run_once(
        self,
        *,
        worker_group: str | None = None,
        batch_size: int = 20,
        worker_id: str | None = None,
    ) -> WorkerRunSummary:
        """Claim up to ``batch_size`` jobs for ``worker_group`` and process them.

        Claim-level errors propagate to the caller. Errors raised by a single
        handler only fail that job.
        """

        group_name, job_types = resolve_worker_group(worker_group)
        worker_id = worker_id or new_worker_id()
        summary = WorkerRunSummary(worker_id=worker_id, worker_group=group_name)

        summary.reclaimed = self._recover_stale_claims()
        claimed = self.jobs.claim(job_types, max(1, batch_size), worker_id)
        summary.jobs_claimed = len(claimed)
        if not claimed:
            return summary

        logger.info("Worker %s claimed %d %s job(s)", worker_id, len(claimed), group_name)
        with ThreadPoolExecutor(
            max_workers=min(self.max_parallel_jobs, len(claimed)),
            thread_name_prefix=f"{worker_id}-job",
        ) as pool:
            outcomes = list(pool.map(lambda job: self._process_job(job, worker_id), claimed))

        for outcome in outcomes:
            if outcome.status is JobStatus.COMPLETED:
                summary.completed += 1
            elif outcome.status is JobStatus.FAILED:
                summary.failed += 1
            if outcome.chained:
                summary.chained += 1
        logger.info(
            "Worker %s finished: completed=%d failed=%d chained=%d",
            worker_id,
            summary.completed,
            summary.failed,
            summary.chained,
        )
        return summary

    def run_loop(
        self,
        *,
        worker_group: str | None = None,
        batch_size: int = 20,
        worker_id: str | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Repeat ``run_once`` until ``max_idle_polls`` consecutive empty claims."""

        worker_id = worker_id or new_worker_id()
        group_name, _ = resolve_worker_group(worker_group)
        aggregate = WorkerRunSummary(worker_id=worker_id, worker_group=group_name)
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                summary = self.run_once(
                    worker_group=worker_group,
                    batch_size=batch_size,
                    worker_id=worker_id,
                )
                aggregate.jobs_claimed += summary.jobs_claimed
                aggregate.completed += summary.completed
                aggregate.failed += summary.failed
                aggregate.chained += summary.chained
                aggregate.reclaimed += summary.reclaimed

                if summary.jobs_claimed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        break
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0
        return aggregate

    def _recover_stale_claims(self) -> int:
        if self.stale_claim_seconds <= 0:
            return 0
        return self.jobs.recover_stale_claims(
            stale_after=timedelta(seconds=self.stale_claim_seconds),
        )

    def _process_job(self, job: JobView, worker_id: str) -> _JobOutcome:
        try:
            return self._run_job(job, worker_id)
        except Exception:  # noqa: BLE001
            # The claim stays with this worker until the stale sweep returns it.
            logger.exception("Job %s (%s) result could not be recorded", job.job_id, job.job_type)
            return _JobOutcome(status=None)

    def _run_job(self, job: JobView, worker_id: str) -> _JobOutcome:
        try:
            job_type = JobType(job.job_type)
        except ValueError:
            job_type = None
        handler = self.handlers.get(job_type) if job_type is not None else None
        if job_type is None or handler is None:
            logger.error("Job %s has unknown job type %r", job.job_id, job.job_type)
            message = f"Unknown job type: {job.job_type}"
            return self._finish(job, worker_id, JobStatus.FAILED, message)

        try:
            handler(self.context, job)
        except Exception as error:  # noqa: BLE001
            logger.exception("Job %s (%s) failed", job.job_id, job.job_type)
            return self._finish(job, worker_id, JobStatus.FAILED, _truncate_error(error))

        outcome = self._finish(job, worker_id, JobStatus.COMPLETED, None)
        if outcome.status is JobStatus.COMPLETED:
            outcome.chained = self._chain(job, job_type)
        return outcome

    def _finish(
        self,
        job: JobView,
        worker_id: str,
        status: JobStatus,
        error: str | None,
    ) -> _JobOutcome:
        if not self.jobs.complete(job.job_id, status, error, worker_id=worker_id):
            logger.warning(
                "Job %s is no longer claimed by %s, dropping %s result",
                job.job_id,
                worker_id,
                status.value,
            )
            return _JobOutcome(status=None)
        return _JobOutcome(status=status)

    def _chain(self, job: JobView, job_type: JobType) -> bool:
        next_type = next_job_type(job_type)
        if next_type is None:
            return False
        try:
            self.jobs.enqueue(
                JobCreate(
                    organization_id=job.organization_id,
                    job_type=next_type,
                    entity_type=job.entity_type,
                    entity_id=job.entity_id,
                    priority=job.priority,
                    payload=dict(job.payload),
                ),
            )
        except SQLAlchemyError:
            logger.exception("Failed to chain %s after job %s", next_type.value, job.job_id)
            return False
        return True

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s, stopping after current batch", signal.Signals(signum).name)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _truncate_error(error: BaseException) -> str:
    message = str(error) or type(error).__name__
    return message[:MAX_ERROR_CHARS]
