from __future__ import annotations

from pathlib import Path

import allure
import pytest

from chat_enrichment.config import EnrichmentSettings, LlmSettings, Settings, WorkerSettings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_defaults(monkeypatch) -> None:
    for name in (
        "CHAT_ENRICHMENT_DB_PATH",
        "CHAT_ENRICHMENT_WORKER_BATCH_SIZE",
        "CHAT_ENRICHMENT_REQUEUE_BATCH_STRAGGLERS",
        "CHAT_ENRICHMENT_LLM_API_KEY",
        "CHAT_ENRICHMENT_EMBEDDING_API_KEY",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".chat_enrichment.db")
    assert settings.worker.batch_size == 20
    assert settings.worker.max_parallel_jobs == 4
    assert settings.worker.stale_claim_seconds == 900
    assert settings.enrichment.requeue_batch_stragglers is True
    assert settings.enrichment.batch_annotate_limit == 20
    assert settings.llm.model_cheap == "gpt-4o-mini"
    assert settings.llm.timeout_seconds == 30
    assert settings.embedding.model_name == "text-embedding-3-small"
    assert settings.embedding.allow_fallback is False
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHAT_ENRICHMENT_WORKER_BATCH_SIZE", "5")
    monkeypatch.setenv("CHAT_ENRICHMENT_STALE_CLAIM_SECONDS", "0")
    monkeypatch.setenv("CHAT_ENRICHMENT_REQUEUE_BATCH_STRAGGLERS", "off")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-shared")
    monkeypatch.setenv("CHAT_ENRICHMENT_LLM_BASE_URL", "http://llm.local/v1")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.worker.batch_size == 5
    assert settings.worker.stale_claim_seconds == 0
    assert settings.enrichment.requeue_batch_stragglers is False
    assert settings.llm.api_key == "sk-shared"
    assert settings.embedding.api_key == "sk-shared"
    assert settings.embedding.base_url == "http://llm.local/v1"


def test_from_env_rejects_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK", "maybe")

    with pytest.raises(ValueError, match="CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "env_name"),
    [
        (Settings(worker=WorkerSettings(batch_size=0)), "CHAT_ENRICHMENT_WORKER_BATCH_SIZE"),
        (
            Settings(worker=WorkerSettings(max_parallel_jobs=0)),
            "CHAT_ENRICHMENT_WORKER_MAX_PARALLEL_JOBS",
        ),
        (
            Settings(enrichment=EnrichmentSettings(cluster_threshold=1.5)),
            "CHAT_ENRICHMENT_CLUSTER_THRESHOLD",
        ),
        (Settings(llm=LlmSettings(base_url="ftp://x")), "CHAT_ENRICHMENT_LLM_BASE_URL"),
    ],
)
def test_validate_names_offending_variable(settings: Settings, env_name: str) -> None:
    with pytest.raises(ValueError, match=env_name):
        settings.validate()
