"""FastAPI entrypoint for context, answer and trace endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kb_agent.bootstrap import build_service
from kb_agent.errors import (
    AssemblyError,
    EmbeddingError,
    KnowledgeAgentError,
    OperationCancelled,
    SearchError,
)
from kb_agent.obs.logs import setup_logging
from kb_agent.runtime import CancellationToken
from kb_agent.service import KnowledgeService
from kb_agent.settings import ConfigCache

_STATUS_BY_CODE = {
    EmbeddingError.code: 502,
    SearchError.code: 502,
    AssemblyError.code: 500,
    OperationCancelled.code: 504,
}


class ContextRequest(BaseModel):
    query: str
    max_tokens: int | None = Field(default=None, ge=1)
    deadline_seconds: float | None = Field(default=None, gt=0)


class AnswerRequest(BaseModel):
    query: str = Field(min_length=1)
    deadline_seconds: float | None = Field(default=None, gt=0)


config_cache = ConfigCache()


def create_app(
    service: KnowledgeService | None = None,
    *,
    settings_cache: ConfigCache | None = None,
) -> FastAPI:
    """Build the HTTP app.

    Without a service, one is built from the shared settings cache on startup
    and closed on shutdown. A service passed in stays owned by the caller.
    """
    cache = settings_cache or config_cache

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "service", None) is not None:
            yield
            return

        settings = cache.get()
        setup_logging(settings.log_level, environment=settings.environment)
        built = build_service(settings)
        app.state.service = built
        try:
            yield
        finally:
            built.close()
            app.state.service = None

    app = FastAPI(title="Knowledge Agent", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(KnowledgeAgentError)
    async def _knowledge_error(_: Request, exc: KnowledgeAgentError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_CODE.get(exc.code, 500),
            content={"error": exc.code, "message": exc.message, "details": exc.details},
        )

    def _service(request: Request) -> KnowledgeService:
        current = request.app.state.service
        if current is None:
            raise HTTPException(status_code=503, detail="Service is not initialised")
        return current

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        current = _service(request)
        return {
            "status": "ok",
            "llm_configured": current.llm is not None,
            "tools_enabled": current.agent_loop is not None,
            "trace_count": len(current.trace_store.list_recent(limit=1000)),
        }

    @app.post("/context")
    def context(payload: ContextRequest, request: Request) -> dict[str, Any]:
        bundle = _service(request).get_context(
            payload.query,
            payload.max_tokens,
            cancel=CancellationToken(deadline_seconds=payload.deadline_seconds),
        )
        return {
            "output_text": bundle.output_text,
            "token_count": bundle.token_count,
            "truncated": bundle.truncated,
            "source_metadata": asdict(bundle.source_metadata),
        }

    @app.post("/answer")
    def answer(payload: AnswerRequest, request: Request) -> dict[str, Any]:
        result = _service(request).answer(
            payload.query,
            cancel=CancellationToken(deadline_seconds=payload.deadline_seconds),
        )
        return {
            "text": result.text,
            "route": result.route,
            "succeeded": result.succeeded,
            "reason": result.reason,
        }

    @app.post("/tools/answer")
    def tools_answer(payload: AnswerRequest, request: Request) -> dict[str, Any]:
        outcome = _service(request).answer_via_tools(
            payload.query,
            cancel=CancellationToken(deadline_seconds=payload.deadline_seconds),
        )
        return {
            "state": outcome.state.value,
            "text": outcome.text,
            "reason": outcome.reason,
            "error_detail": outcome.error_detail,
            "model_calls": outcome.model_calls,
            "tool_calls": len(outcome.tool_results),
        }

    @app.get("/traces")
    def traces(request: Request, limit: int = 20) -> dict[str, Any]:
        store = _service(request).trace_store
        return {"items": [asdict(record) for record in store.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str, request: Request) -> dict[str, Any]:
        try:
            record = _service(request).trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics(request: Request) -> dict[str, Any]:
        return _service(request).trace_store.summary()

    return app


app = create_app()
