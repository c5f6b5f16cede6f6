"""Runtime configuration for the enrichment pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class WorkerSettings:
    """Claim/dispatch loop settings."""

    batch_size: int = 20
    max_parallel_jobs: int = 4
    stale_claim_seconds: int = 900
    poll_interval_seconds: float = 2.0


@dataclass(slots=True)
class EnrichmentSettings:
    """Stage handler tunables."""

    requeue_batch_stragglers: bool = True
    batch_annotate_limit: int = 20
    cluster_threshold: float = 0.9


@dataclass(slots=True)
class LlmSettings:
    """Chat-completions endpoint used by the model router."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model_cheap: str = "gpt-4o-mini"
    model_quality: str = "gpt-4o"
    timeout_seconds: float = 30.0
    max_tokens: int = 300


@dataclass(slots=True)
class EmbeddingSettings:
    """Embedding provider settings."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model_name: str = "text-embedding-3-small"
    allow_fallback: bool = False
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".chat_enrichment.db")
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    enrichment: EnrichmentSettings = field(default_factory=EnrichmentSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        api_key = os.getenv("CHAT_ENRICHMENT_LLM_API_KEY", os.getenv("OPENAI_API_KEY", ""))
        llm_base_url = os.getenv("CHAT_ENRICHMENT_LLM_BASE_URL", "https://api.openai.com/v1")
        return cls(
            db_path=db_path or Path(os.getenv("CHAT_ENRICHMENT_DB_PATH", ".chat_enrichment.db")),
            worker=WorkerSettings(
                batch_size=int(os.getenv("CHAT_ENRICHMENT_WORKER_BATCH_SIZE", "20")),
                max_parallel_jobs=int(os.getenv("CHAT_ENRICHMENT_WORKER_MAX_PARALLEL_JOBS", "4")),
                stale_claim_seconds=int(os.getenv("CHAT_ENRICHMENT_STALE_CLAIM_SECONDS", "900")),
                poll_interval_seconds=float(
                    os.getenv("CHAT_ENRICHMENT_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
            ),
            enrichment=EnrichmentSettings(
                requeue_batch_stragglers=_env_bool(
                    "CHAT_ENRICHMENT_REQUEUE_BATCH_STRAGGLERS",
                    default=True,
                ),
                batch_annotate_limit=int(os.getenv("CHAT_ENRICHMENT_BATCH_ANNOTATE_LIMIT", "20")),
                cluster_threshold=float(os.getenv("CHAT_ENRICHMENT_CLUSTER_THRESHOLD", "0.9")),
            ),
            llm=LlmSettings(
                base_url=llm_base_url,
                api_key=api_key,
                model_cheap=os.getenv("CHAT_ENRICHMENT_LLM_MODEL_CHEAP", "gpt-4o-mini"),
                model_quality=os.getenv("CHAT_ENRICHMENT_LLM_MODEL_QUALITY", "gpt-4o"),
                timeout_seconds=float(os.getenv("CHAT_ENRICHMENT_LLM_TIMEOUT_SECONDS", "30")),
                max_tokens=int(os.getenv("CHAT_ENRICHMENT_LLM_MAX_TOKENS", "300")),
            ),
            embedding=EmbeddingSettings(
                base_url=os.getenv("CHAT_ENRICHMENT_EMBEDDING_BASE_URL", llm_base_url),
                api_key=os.getenv("CHAT_ENRICHMENT_EMBEDDING_API_KEY", api_key),
                model_name=os.getenv(
                    "CHAT_ENRICHMENT_EMBEDDING_MODEL_NAME",
                    "text-embedding-3-small",
                ),
                allow_fallback=_env_bool(
                    "CHAT_ENRICHMENT_EMBEDDING_ALLOW_FALLBACK",
                    default=False,
                ),
                timeout_seconds=float(
                    os.getenv("CHAT_ENRICHMENT_EMBEDDING_TIMEOUT_SECONDS", "30"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.worker.batch_size <= 0:
            raise ValueError("CHAT_ENRICHMENT_WORKER_BATCH_SIZE must be > 0.")
        if self.worker.max_parallel_jobs <= 0:
            raise ValueError("CHAT_ENRICHMENT_WORKER_MAX_PARALLEL_JOBS must be > 0.")
        if self.worker.stale_claim_seconds < 0:
            raise ValueError("CHAT_ENRICHMENT_STALE_CLAIM_SECONDS must be >= 0.")
        if self.enrichment.batch_annotate_limit <= 0:
            raise ValueError("CHAT_ENRICHMENT_BATCH_ANNOTATE_LIMIT must be > 0.")
        if not 0.0 < self.enrichment.cluster_threshold <= 1.0:
            raise ValueError("CHAT_ENRICHMENT_CLUSTER_THRESHOLD must be in (0, 1].")
        if self.llm.timeout_seconds <= 0:
            raise ValueError("CHAT_ENRICHMENT_LLM_TIMEOUT_SECONDS must be > 0.")
        if self.embedding.timeout_seconds <= 0:
            raise ValueError("CHAT_ENRICHMENT_EMBEDDING_TIMEOUT_SECONDS must be > 0.")
        _validate_base_url("CHAT_ENRICHMENT_LLM_BASE_URL", self.llm.base_url)
        _validate_base_url("CHAT_ENRICHMENT_EMBEDDING_BASE_URL", self.embedding.base_url)


def _validate_base_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
