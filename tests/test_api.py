from __future__ import annotations

import allure
import pytest
from fastapi.testclient import TestClient

from chat_enrichment.pipeline.api import create_app
from chat_enrichment.pipeline.handlers import HandlerContext
from chat_enrichment.pipeline.models import JobCreate, JobType
from chat_enrichment.pipeline.repository import JobRepository
from chat_enrichment.pipeline.stores import EnrichmentRepository
from chat_enrichment.pipeline.worker import PipelineWorker

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("HTTP Trigger"),
]


class _BrokenJobStore:
    def recover_stale_claims(self, *, stale_after) -> int:  # noqa: ARG002
        return 0

    def claim(self, job_types, limit, worker_id):  # noqa: ARG002
        raise RuntimeError("database is unreachable")


@pytest.fixture()
def client(handler_context: HandlerContext) -> TestClient:
    return TestClient(create_app(PipelineWorker(context=handler_context), default_batch_size=3))


def test_options_returns_cors_preflight(client: TestClient) -> None:
    response = client.options("/pipeline-worker")

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-headers"] == (
        "authorization, x-client-info, apikey, content-type"
    )


def test_post_without_body_runs_idle_normalize_worker(client: TestClient) -> None:
    response = client.post("/pipeline-worker")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "idle"
    assert payload["worker_group"] == "normalize"
    assert payload["worker_id"].startswith("worker-")
    assert (payload["jobs_claimed"], payload["completed"], payload["failed"]) == (0, 0, 0)
    assert response.headers["access-control-allow-origin"] == "*"


def test_post_with_invalid_json_is_treated_as_empty(client: TestClient) -> None:
    response = client.post(
        "/pipeline-worker",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["worker_group"] == "normalize"


def test_post_processes_requested_group_and_batch_size(
    client: TestClient,
    jobs: JobRepository,
    store: EnrichmentRepository,
) -> None:
    for index in range(5):
        message = store.add_message(organization_id="org-1", content=f"hello {index}")
        jobs.enqueue(
            JobCreate(
                organization_id="org-1",
                job_type=JobType.NORMALIZE_MESSAGE,
                entity_id=message.message_id,
            ),
        )

    response = client.post(
        "/pipeline-worker",
        json={"worker_group": "normalize", "batch_size": 2, "worker_id": "edge-1"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "worker_id": "edge-1",
        "worker_group": "normalize",
        "jobs_claimed": 2,
        "completed": 2,
        "failed": 0,
        "chained": 2,
    }

    defaulted = client.post("/pipeline-worker", json={"batch_size": "lots"})
    assert defaulted.json()["jobs_claimed"] == 3


def test_post_returns_500_when_claim_fails(handler_context: HandlerContext) -> None:
    handler_context.jobs = _BrokenJobStore()  # type: ignore[assignment]
    client = TestClient(create_app(PipelineWorker(context=handler_context)))

    response = client.post("/pipeline-worker", json={})

    assert response.status_code == 500
    assert response.json() == {"error": "database is unreachable"}
