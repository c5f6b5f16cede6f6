from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from chat_enrichment.main import chat_enrichment

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("CLI Ops"),
]


@pytest.fixture(autouse=True)
def _offline_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OPENAI_API_KEY",
        "CHAT_ENRICHMENT_LLM_API_KEY",
        "CHAT_ENRICHMENT_EMBEDDING_API_KEY",
        "CHAT_ENRICHMENT_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK", "true")


def _invoke(*args: str):
    return CliRunner().invoke(chat_enrichment, list(args))


def test_cli_message_add_work_and_inspect(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")

    added = _invoke("messages", "add", "--db-path", db_path, "--org", "org-1", "--content", "Hi!")
    assert added.exit_code == 0, added.output
    message_id = re.search(r"message_id=(\S+)", added.output).group(1)  # type: ignore[union-attr]
    job_id = re.search(r"job_id=(\S+)", added.output).group(1)  # type: ignore[union-attr]

    worked = _invoke(
        "pipeline",
        "work",
        "--db-path",
        db_path,
        "--worker-group",
        "normalize",
        "--worker-id",
        "cli-worker",
    )
    assert worked.exit_code == 0, worked.output
    assert "status=ok worker_id=cli-worker group=normalize claimed=1" in worked.output
    assert "completed=1 failed=0 chained=1" in worked.output

    listed = _invoke("pipeline", "jobs", "--db-path", db_path, "--status", "pending")
    assert listed.exit_code == 0, listed.output
    assert "type=embed_message" in listed.output
    assert "Jobs: 1 pending=1 claimed=0 completed=1 failed=0" in listed.output

    inspected = _invoke("pipeline", "inspect", "--db-path", db_path, job_id)
    assert inspected.exit_code == 0, inspected.output
    assert "Status: completed" in inspected.output
    assert "claimed" in inspected.output
    assert "Worker: cli-worker" in inspected.output

    shown = _invoke("messages", "show", "--db-path", db_path, message_id)
    assert shown.exit_code == 0, shown.output
    assert "Normalized: hi (lang=en" in shown.output
    assert "Annotations: 0" in shown.output


def test_cli_loop_runs_embed_stage_with_fallback_embedder(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    _invoke("messages", "add", "--db-path", db_path, "--org", "org-1", "--content", "Hello")
    _invoke("pipeline", "work", "--db-path", db_path)

    worked = _invoke(
        "pipeline",
        "work",
        "--db-path",
        db_path,
        "--worker-group",
        "embed",
        "--loop",
        "--max-idle-polls",
        "1",
    )

    assert worked.exit_code == 0, worked.output
    assert "claimed=1 completed=1 failed=0 chained=1" in worked.output


def test_cli_enqueue_batch_job(tmp_path: Path) -> None:
    result = _invoke(
        "pipeline",
        "enqueue",
        "--db-path",
        str(tmp_path / "cli.db"),
        "--org",
        "org-1",
        "--job-type",
        "batch_annotate",
        "--entity-ids",
        "m-1",
        "--entity-ids",
        "m-2",
        "--priority",
        "10",
    )

    assert result.exit_code == 0, result.output
    assert "type=batch_annotate entity=message:m-1 priority=10 status=pending" in result.output


def test_cli_enqueue_rejects_unknown_job_type(tmp_path: Path) -> None:
    result = _invoke(
        "pipeline",
        "enqueue",
        "--db-path",
        str(tmp_path / "cli.db"),
        "--org",
        "org-1",
        "--job-type",
        "translate_message",
        "--entity-id",
        "m-1",
    )

    assert result.exit_code == 2
    assert "translate_message" in result.output


def test_cli_enqueue_requires_an_entity(tmp_path: Path) -> None:
    result = _invoke(
        "pipeline",
        "enqueue",
        "--db-path",
        str(tmp_path / "cli.db"),
        "--org",
        "org-1",
        "--job-type",
        "normalize_message",
    )

    assert result.exit_code == 1
    assert "--entity-id" in result.output


def test_cli_work_fails_cleanly_without_embedder(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK", "false")

    result = _invoke("pipeline", "work", "--db-path", str(tmp_path / "cli.db"))

    assert result.exit_code == 1
    assert "No embedding API key configured" in result.output


def test_cli_reclaim_and_inspect_missing_job(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")

    reclaimed = _invoke("pipeline", "reclaim", "--db-path", db_path, "--stale-seconds", "60")
    assert reclaimed.exit_code == 0, reclaimed.output
    assert "Reclaimed 0 stale job(s) older than 60s" in reclaimed.output

    missing = _invoke("pipeline", "inspect", "--db-path", db_path, "nope")
    assert missing.exit_code == 0
    assert "Job not found: nope" in missing.output
