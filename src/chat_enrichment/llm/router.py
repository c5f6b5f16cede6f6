"""Model router: task-tier routing over an OpenAI-compatible chat endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from chat_enrichment.config import LlmSettings

logger = logging.getLogger(__name__)

SUPPORTED_TIERS = ("cheap", "quality")
TASK_TIERS: dict[str, str] = {
    "batch_classification": "cheap",
    "classification": "cheap",
    "summary": "quality",
}
DEFAULT_TIER = "cheap"


class ModelRouterError(RuntimeError):
    """Transport or protocol failure while calling the model endpoint."""


@dataclass(slots=True)
class RouterResult:
    """Raw model output plus the model that produced it."""

    content: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class ModelRouter:
    """Routes a task to a model tier and performs one chat-completion call.

    ``content`` is returned verbatim; callers parse it and must tolerate
    non-JSON output.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str,
        models: dict[str, str],
        timeout_seconds: float = 30.0,
        max_tokens: int = 300,
        max_retries: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        for tier in SUPPORTED_TIERS:
            if not models.get(tier, "").strip():
                raise ValueError(f"Empty model id for tier={tier!r}")
        self.models = dict(models)
        self.max_tokens = max_tokens
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    @classmethod
    def from_settings(cls, settings: LlmSettings) -> ModelRouter:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            models={"cheap": settings.model_cheap, "quality": settings.model_quality},
            timeout_seconds=settings.timeout_seconds,
            max_tokens=settings.max_tokens,
        )

    def resolve_model(self, task: str) -> str:
        tier = TASK_TIERS.get(task.strip().lower(), DEFAULT_TIER)
        return self.models[tier]

    def classify(
        self,
        task: str,
        messages: list[dict[str, str]],
        override_max_tokens: int | None = None,
    ) -> RouterResult:
        """Run one completion for ``task`` and return its text content."""

        model = self.resolve_model(task)
        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": override_max_tokens or self.max_tokens,
            "temperature": 0,
        }
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as error:
            raise ModelRouterError(f"Model call timed out for task={task!r}") from error
        except httpx.HTTPError as error:
            raise ModelRouterError(f"Model call failed for task={task!r}: {error}") from error

        if not response.is_success:
            raise ModelRouterError(
                f"Model call failed for task={task!r}: HTTP {response.status_code}",
            )
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as error:
            raise ModelRouterError(f"Malformed completion response for task={task!r}") from error

        usage = data.get("usage") or {}
        return RouterResult(
            content=content,
            model=str(data.get("model") or model),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ModelRouter:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
