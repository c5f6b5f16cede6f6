from __future__ import annotations

import allure
import pytest

from chat_enrichment.pipeline.chain import (
    JOB_CHAIN,
    WORKER_GROUPS,
    next_job_type,
    resolve_worker_group,
    validate_chain_table,
)
from chat_enrichment.pipeline.models import JobType

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("Stage Chaining"),
]


def test_chain_follows_normalize_embed_annotate() -> None:
    assert next_job_type(JobType.NORMALIZE_MESSAGE) == JobType.EMBED_MESSAGE
    assert next_job_type(JobType.EMBED_MESSAGE) == JobType.ANNOTATE_MESSAGE
    for terminal in (
        JobType.ANNOTATE_MESSAGE,
        JobType.BATCH_EMBED,
        JobType.BATCH_ANNOTATE,
        JobType.CLUSTER_SEMANTIC,
    ):
        assert next_job_type(terminal) is None


def test_worker_groups() -> None:
    assert resolve_worker_group("embed") == ("embed", (JobType.EMBED_MESSAGE, JobType.BATCH_EMBED))
    assert resolve_worker_group(None) == ("normalize", (JobType.NORMALIZE_MESSAGE,))
    assert resolve_worker_group(" Annotate ")[1] == (
        JobType.ANNOTATE_MESSAGE,
        JobType.BATCH_ANNOTATE,
    )
    assert resolve_worker_group("bogus") == ("bogus", (JobType.NORMALIZE_MESSAGE,))


def test_validate_rejects_cycle() -> None:
    chain = dict(JOB_CHAIN)
    chain[JobType.ANNOTATE_MESSAGE] = JobType.NORMALIZE_MESSAGE

    with pytest.raises(ValueError, match="cycle"):
        validate_chain_table(chain, WORKER_GROUPS)


def test_validate_rejects_missing_entry() -> None:
    chain = dict(JOB_CHAIN)
    del chain[JobType.CLUSTER_SEMANTIC]

    with pytest.raises(ValueError, match="cluster_semantic"):
        validate_chain_table(chain, WORKER_GROUPS)


def test_validate_rejects_unclaimable_job_type() -> None:
    groups = {name: types for name, types in WORKER_GROUPS.items() if name != "annotate"}

    with pytest.raises(ValueError, match="annotate_message"):
        validate_chain_table(JOB_CHAIN, groups)
