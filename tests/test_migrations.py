from pathlib import Path

import allure

from chat_enrichment.pipeline.repository import JobRepository

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("Schema"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = JobRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    row = repository._connection.execute(
        "SELECT version_num FROM alembic_version LIMIT 1"
    ).fetchone()
    assert row is not None
    assert str(row["version_num"]) == "20261017_0001"

    tables = repository._connection.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table' AND name != 'alembic_version'
        ORDER BY name
        """
    ).fetchall()
    assert [str(row["name"]) for row in tables] == [
        "ai_annotations",
        "chat_messages",
        "embeddings_registry",
        "intent_cache",
        "messages_normalized",
        "processing_job_events",
        "processing_jobs",
    ]

    indexes = {
        str(row["name"])
        for row in repository._connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'index'"
        ).fetchall()
    }
    assert "idx_processing_jobs_queue" in indexes
    journal_mode = repository._connection.execute("PRAGMA journal_mode").fetchone()
    assert str(journal_mode[0]).lower() == "wal"
    repository.close()
