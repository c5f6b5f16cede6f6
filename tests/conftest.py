"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

from chat_enrichment.config import EnrichmentSettings, Settings
from chat_enrichment.llm.router import ModelRouterError, RouterResult
from chat_enrichment.pipeline.handlers import HandlerContext
from chat_enrichment.pipeline.repository import JobRepository
from chat_enrichment.pipeline.services import open_repositories
from chat_enrichment.pipeline.stores import EnrichmentRepository

DEFAULT_CLASSIFICATION = json.dumps({"intent": "pricing", "stage": "discovery"})


class FakeClassifier:
    """Scripted model router: pops queued responses, records every call."""

    def __init__(self, model: str = "fake-cheap") -> None:
        self.model = model
        self.responses: list[str | Exception] = []
        self.calls: list[dict[str, object]] = []

    def classify(
        self,
        task: str,
        messages: list[dict[str, str]],
        override_max_tokens: int | None = None,
    ) -> RouterResult:
        self.calls.append(
            {"task": task, "messages": messages, "override_max_tokens": override_max_tokens},
        )
        response = self.responses.pop(0) if self.responses else DEFAULT_CLASSIFICATION
        if isinstance(response, Exception):
            raise response
        return RouterResult(content=response, model=self.model)


class FakeEmbedder:
    """Deterministic 3-dim embedder that records inputs."""

    model_name = "fake-embed"

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_on: set[str] = set()

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for text in texts:
            if text in self.fail_on:
                raise RuntimeError(f"embedding exploded for {text!r}")
        return [[float(len(text)), 1.0, 0.5] for text in texts]


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "enrichment.db"


@pytest.fixture()
def repositories(db_path: Path) -> Iterator[tuple[JobRepository, EnrichmentRepository]]:
    with open_repositories(Settings(db_path=db_path)) as (jobs, store):
        yield jobs, store


@pytest.fixture()
def jobs(repositories: tuple[JobRepository, EnrichmentRepository]) -> JobRepository:
    return repositories[0]


@pytest.fixture()
def store(repositories: tuple[JobRepository, EnrichmentRepository]) -> EnrichmentRepository:
    return repositories[1]


@pytest.fixture()
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def handler_context(
    jobs: JobRepository,
    store: EnrichmentRepository,
    classifier: FakeClassifier,
    embedder: FakeEmbedder,
) -> HandlerContext:
    return HandlerContext(
        store=store,
        jobs=jobs,
        classifier=classifier,
        embedder=embedder,
        settings=EnrichmentSettings(),
    )


@pytest.fixture()
def router_error() -> ModelRouterError:
    return ModelRouterError("Model call timed out for task='batch_classification'")
