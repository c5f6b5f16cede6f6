"""HTTP trigger for one claim/dispatch invocation."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from chat_enrichment.pipeline.worker import PipelineWorker

logger = logging.getLogger(__name__)

WORKER_PATH = "/pipeline-worker"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def create_app(worker: PipelineWorker, *, default_batch_size: int = 20) -> FastAPI:
    """Build the app around an already wired worker."""

    app = FastAPI(title="Chat Enrichment Pipeline Worker")

    @app.options(WORKER_PATH)
    def preflight() -> Response:
        return Response(content="ok", headers=CORS_HEADERS)

    @app.post(WORKER_PATH)
    async def run_worker(request: Request) -> JSONResponse:
        body = _parse_body(await request.body())
        try:
            summary = await run_in_threadpool(
                worker.run_once,
                worker_group=_optional_str(body.get("worker_group")),
                batch_size=_batch_size(body.get("batch_size"), default_batch_size),
                worker_id=_optional_str(body.get("worker_id")),
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Pipeline worker invocation failed")
            return JSONResponse({"error": str(error)}, status_code=500, headers=CORS_HEADERS)
        return JSONResponse(summary.to_response(), headers=CORS_HEADERS)

    return app


def _parse_body(raw: bytes) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Ignoring non-JSON request body")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _batch_size(value: object, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value
