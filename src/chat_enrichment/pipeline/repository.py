"""Persistent job queue repository for the enrichment pipeline."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from chat_enrichment.pipeline.models import (
    TERMINAL_STATUSES,
    JobCreate,
    JobDetails,
    JobEventView,
    JobStatus,
    JobType,
    JobView,
)
from chat_enrichment.storage.alembic_runner import upgrade_head
from chat_enrichment.storage.common import (
    build_sqlite_engine,
    connect_sqlite_with_policy,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from chat_enrichment.storage.sqlmodel_models import ProcessingJob, ProcessingJobEvent

logger = logging.getLogger(__name__)


class JobRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection = connect_sqlite_with_policy(
            db_path=db_path,
            busy_timeout_ms=busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(self, job: JobCreate) -> JobView:
        """Create a pending job.

        Raises ``ValueError`` for job types outside :class:`JobType`.
        """

        job_type = JobType(job.job_type)
        now = utc_now()
        job_id = str(uuid4())
        with Session(self.engine) as session:
            row = ProcessingJob(
                job_id=job_id,
                organization_id=job.organization_id,
                job_type=job_type.value,
                entity_type=job.entity_type,
                entity_id=job.entity_id,
                status=JobStatus.PENDING.value,
                priority=job.priority,
                payload_json=json.dumps(job.payload or {}, ensure_ascii=False, sort_keys=True),
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=JobStatus.PENDING,
                details={
                    "job_type": job_type.value,
                    "entity_type": job.entity_type,
                    "entity_id": job.entity_id,
                    "priority": job.priority,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim(
        self,
        job_types: Sequence[JobType | str],
        limit: int,
        worker_id: str,
    ) -> list[JobView]:
        """Atomically claim up to ``limit`` pending jobs of the given types.

        Each candidate is flipped with a conditional ``UPDATE ... WHERE
        status = 'pending'`` inside one write transaction, so concurrent callers
        never receive the same job.
        """

        if limit <= 0 or not job_types:
            return []
        type_values = [JobType(job_type).value for job_type in job_types]
        now = to_db_datetime(utc_now())
        claimed_ids: list[str] = []

        with Session(self.engine) as session:
            while len(claimed_ids) < limit:
                candidate_ids = session.exec(
                    select(ProcessingJob.job_id)
                    .where(
                        ProcessingJob.status == JobStatus.PENDING.value,
                        col(ProcessingJob.job_type).in_(type_values),
                    )
                    .order_by(
                        col(ProcessingJob.priority).asc(),
                        col(ProcessingJob.created_at).asc(),
                    )
                    .limit(limit - len(claimed_ids))
                    .with_for_update(skip_locked=True),
                ).all()
                if not candidate_ids:
                    break

                for job_id in candidate_ids:
                    result = session.exec(
                        sa_update(ProcessingJob)
                        .where(
                            col(ProcessingJob.job_id) == job_id,
                            col(ProcessingJob.status) == JobStatus.PENDING.value,
                        )
                        .values(
                            status=JobStatus.CLAIMED.value,
                            worker_id=worker_id,
                            attempts=col(ProcessingJob.attempts) + 1,
                            claimed_at=now,
                            finished_at=None,
                            error=None,
                            updated_at=now,
                        ),
                    )
                    if result.rowcount != 1:
                        continue
                    claimed_ids.append(job_id)
                    self._add_event(
                        session=session,
                        job_id=job_id,
                        event_type="claimed",
                        status_from=JobStatus.PENDING,
                        status_to=JobStatus.CLAIMED,
                        details={"worker_id": worker_id},
                    )

            if not claimed_ids:
                session.rollback()
                return []
            session.commit()

            rows = session.exec(
                select(ProcessingJob).where(col(ProcessingJob.job_id).in_(claimed_ids)),
            ).all()

        by_id = {row.job_id: row for row in rows}
        return [_to_job_view(by_id[job_id]) for job_id in claimed_ids]

    def complete(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        *,
        worker_id: str | None = None,
    ) -> bool:
        """Move a claimed job to a terminal state.

        Returns ``False`` when the job is no longer claimed (or, with
        ``worker_id``, no longer claimed by that worker).
        """

        status = JobStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status.value}")

        now = to_db_datetime(utc_now())
        conditions = [
            col(ProcessingJob.job_id) == job_id,
            col(ProcessingJob.status) == JobStatus.CLAIMED.value,
        ]
        if worker_id is not None:
            conditions.append(col(ProcessingJob.worker_id) == worker_id)

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ProcessingJob)
                .where(*conditions)
                .values(
                    status=status.value,
                    error=error if status == JobStatus.FAILED else None,
                    finished_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=status.value,
                status_from=JobStatus.CLAIMED,
                status_to=status,
                details={"error": error} if error else {},
            )
            session.commit()
            return True

    def recover_stale_claims(self, *, stale_after: timedelta) -> int:
        """Return claimed jobs whose claim is older than ``stale_after`` to the queue."""

        cutoff = to_db_datetime(utc_now() - stale_after)
        now = to_db_datetime(utc_now())
        recovered = 0
        with Session(self.engine) as session:
            stale_rows = session.exec(
                select(ProcessingJob).where(
                    ProcessingJob.status == JobStatus.CLAIMED.value,
                    col(ProcessingJob.claimed_at).is_not(None),
                    col(ProcessingJob.claimed_at) < cutoff,
                ),
            ).all()
            for row in stale_rows:
                previous_worker = row.worker_id
                result = session.exec(
                    sa_update(ProcessingJob)
                    .where(
                        col(ProcessingJob.job_id) == row.job_id,
                        col(ProcessingJob.status) == JobStatus.CLAIMED.value,
                        col(ProcessingJob.claimed_at) < cutoff,
                    )
                    .values(
                        status=JobStatus.PENDING.value,
                        worker_id=None,
                        claimed_at=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    continue
                recovered += 1
                self._add_event(
                    session=session,
                    job_id=row.job_id,
                    event_type="stale_reclaimed",
                    status_from=JobStatus.CLAIMED,
                    status_to=JobStatus.PENDING,
                    details={
                        "previous_worker_id": previous_worker,
                        "stale_after_seconds": int(stale_after.total_seconds()),
                    },
                )
            session.commit()
        if recovered:
            logger.warning("Reclaimed %d stale claimed job(s)", recovered)
        return recovered

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ProcessingJob).where(ProcessingJob.job_id == job_id),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(ProcessingJob)
            if status is not None:
                statement = statement.where(ProcessingJob.status == JobStatus(status).value)
            if job_type is not None:
                statement = statement.where(ProcessingJob.job_type == JobType(job_type).value)
            if entity_id is not None:
                statement = statement.where(ProcessingJob.entity_id == entity_id)
            statement = statement.order_by(col(ProcessingJob.created_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ProcessingJob.status, func.count()).group_by(ProcessingJob.status),
            ).all()
        return {str(status): int(count) for status, count in rows}

    def get_job_details(self, job_id: str) -> JobDetails | None:
        """Return job details with event stream."""

        with Session(self.engine) as session:
            job = session.exec(
                select(ProcessingJob).where(ProcessingJob.job_id == job_id),
            ).one_or_none()
            if job is None:
                return None
            event_rows = session.exec(
                select(ProcessingJobEvent)
                .where(ProcessingJobEvent.job_id == job_id)
                .order_by(col(ProcessingJobEvent.created_at).asc(), col(ProcessingJobEvent.id).asc()),
            ).all()

        events: list[JobEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=row.id or 0,
                    job_id=row.job_id,
                    event_type=row.event_type,
                    status_from=JobStatus(row.status_from) if row.status_from is not None else None,
                    status_to=JobStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return JobDetails(job=_to_job_view(job), events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            ProcessingJobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _load_payload(raw: str | None) -> dict[str, object]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed job payload: %s", raw[:120])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _to_job_view(row: ProcessingJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        organization_id=row.organization_id,
        job_type=row.job_type,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        status=JobStatus(row.status),
        priority=row.priority,
        payload=_load_payload(row.payload_json),
        worker_id=row.worker_id,
        error=row.error,
        attempts=row.attempts,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        claimed_at=_optional_aware(row.claimed_at),
        finished_at=_optional_aware(row.finished_at),
    )
