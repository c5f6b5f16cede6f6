"""Stage transition table and worker-group partitioning."""

from __future__ import annotations

import logging

from chat_enrichment.pipeline.models import JobType

logger = logging.getLogger(__name__)

DEFAULT_WORKER_GROUP = "normalize"

JOB_CHAIN: dict[JobType, JobType | None] = {
    JobType.NORMALIZE_MESSAGE: JobType.EMBED_MESSAGE,
    JobType.EMBED_MESSAGE: JobType.ANNOTATE_MESSAGE,
    JobType.ANNOTATE_MESSAGE: None,
    JobType.BATCH_EMBED: None,
    JobType.BATCH_ANNOTATE: None,
    JobType.CLUSTER_SEMANTIC: None,
}

WORKER_GROUPS: dict[str, tuple[JobType, ...]] = {
    "normalize": (JobType.NORMALIZE_MESSAGE,),
    "embed": (JobType.EMBED_MESSAGE, JobType.BATCH_EMBED),
    "annotate": (JobType.ANNOTATE_MESSAGE, JobType.BATCH_ANNOTATE),
    "cluster": (JobType.CLUSTER_SEMANTIC,),
}


def validate_chain_table(
    chain: dict[JobType, JobType | None],
    worker_groups: dict[str, tuple[JobType, ...]],
) -> None:
    """Raise ``ValueError`` if the transition table is incomplete or cyclic.

    Every job type must have an entry, every chain must reach a terminal
    stage, and every job type (including chain targets) must be claimable by
    some worker group, otherwise chained jobs would sit pending forever.
    """

    missing = [job_type.value for job_type in JobType if job_type not in chain]
    if missing:
        raise ValueError(f"Chain table has no entry for job types: {', '.join(missing)}")

    claimable = {job_type for job_types in worker_groups.values() for job_type in job_types}
    unclaimable = [job_type.value for job_type in JobType if job_type not in claimable]
    if unclaimable:
        raise ValueError(f"No worker group claims job types: {', '.join(unclaimable)}")

    for start in chain:
        seen = [start]
        current = chain[start]
        while current is not None:
            if current in seen:
                path = " -> ".join(item.value for item in [*seen, current])
                raise ValueError(f"Chain table contains a cycle: {path}")
            seen.append(current)
            current = chain.get(current)


def next_job_type(job_type: JobType) -> JobType | None:
    return JOB_CHAIN[job_type]


def resolve_worker_group(worker_group: str | None) -> tuple[str, tuple[JobType, ...]]:
    """Map a worker group name to its job types, falling back to ``normalize``."""

    name = (worker_group or DEFAULT_WORKER_GROUP).strip().lower()
    job_types = WORKER_GROUPS.get(name)
    if job_types is None:
        logger.warning("Unknown worker group %r, falling back to %r", name, DEFAULT_WORKER_GROUP)
        return name, WORKER_GROUPS[DEFAULT_WORKER_GROUP]
    return name, job_types


validate_chain_table(JOB_CHAIN, WORKER_GROUPS)
