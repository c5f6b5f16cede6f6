"""Domain models for the enrichment job queue and stage handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

MESSAGE_ENTITY_TYPE = "message"
INTENT_ANNOTATION_TYPE = "intent"
CLUSTER_ANNOTATION_TYPE = "semantic_cluster"
ANNOTATION_VERSION = 1
UNKNOWN_LABEL = "unknown"
CACHE_MODEL_NAME = "cache"
CACHE_CONFIDENCE = 0.95
MODEL_CONFIDENCE = 0.8
MAX_ERROR_CHARS = 500


class JobType(str, Enum):
    """Closed set of job types understood by the pipeline."""

    NORMALIZE_MESSAGE = "normalize_message"
    EMBED_MESSAGE = "embed_message"
    ANNOTATE_MESSAGE = "annotate_message"
    BATCH_EMBED = "batch_embed"
    BATCH_ANNOTATE = "batch_annotate"
    CLUSTER_SEMANTIC = "cluster_semantic"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing a job."""

    organization_id: str
    job_type: JobType
    entity_id: str
    entity_type: str = MESSAGE_ENTITY_TYPE
    priority: int = 100
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobView:
    """Readable job view for worker, API and CLI logic.

    ``job_type`` stays a plain string: rows written by external producers
    may carry values outside :class:`JobType`.
    """

    job_id: str
    organization_id: str
    job_type: str
    entity_type: str
    entity_id: str
    status: JobStatus
    priority: int
    payload: dict[str, Any]
    worker_id: str | None
    error: str | None
    attempts: int
    created_at: datetime
    updated_at: datetime
    claimed_at: datetime | None
    finished_at: datetime | None


@dataclass(slots=True)
class JobEventView:
    """Job event entry for audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job details with event stream."""

    job: JobView
    events: list[JobEventView]


@dataclass(slots=True)
class MessageView:
    message_id: str
    organization_id: str
    content: str | None


@dataclass(slots=True)
class NormalizedText:
    """Canonical text of one message plus derived metadata."""

    message_id: str
    normalized_text: str
    text_hash: str
    language: str
    tokens_count: int


@dataclass(slots=True)
class IntentResult:
    """Classification outcome for one normalized text."""

    intent: str
    stage: str
    model_used: str
    confidence: float
    degraded: bool = False

    def to_value(self) -> dict[str, str]:
        return {"intent": self.intent, "stage": self.stage}


@dataclass(slots=True)
class AnnotationWrite:
    """Versioned enrichment result attached to one entity."""

    organization_id: str
    entity_type: str
    entity_id: str
    annotation_type: str
    value: dict[str, Any]
    model_used: str
    confidence: float
    degraded: bool = False
    version: int = ANNOTATION_VERSION


@dataclass(slots=True)
class AnnotationView:
    organization_id: str
    entity_type: str
    entity_id: str
    annotation_type: str
    version: int
    value: dict[str, Any]
    model_used: str
    confidence: float
    degraded: bool
    updated_at: datetime


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate counters for one claim/dispatch invocation."""

    worker_id: str
    worker_group: str
    jobs_claimed: int = 0
    completed: int = 0
    failed: int = 0
    chained: int = 0
    reclaimed: int = 0

    @property
    def status(self) -> str:
        return "idle" if self.jobs_claimed == 0 else "ok"

    def to_response(self) -> dict[str, Any]:
        """Serialize counters in the HTTP response shape."""

        return {
            "status": self.status,
            "worker_id": self.worker_id,
            "worker_group": self.worker_group,
            "jobs_claimed": self.jobs_claimed,
            "completed": self.completed,
            "failed": self.failed,
            "chained": self.chained,
        }
