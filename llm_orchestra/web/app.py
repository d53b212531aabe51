"""FastAPI app exposing spawn and status endpoints."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError

from .. import __version__
from ..agents import create_default_registry
from ..contracts import SpawnRequest, SpawnResponse, StatusResponse
from ..errors import UnknownAgentType
from ..runtime import Runtime
from .errors import APIError, api_error_handler, validation_error_handler

logger = logging.getLogger("llm_orchestra.web.api")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    runtime = runtime or Runtime(create_default_registry())

    app = FastAPI(title="LLM Orchestra", version=__version__)
    app.state.runtime = runtime

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.info(
                "api_request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                500,
                (perf_counter() - start) * 1000,
            )
            raise
        logger.info(
            "api_request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            (perf_counter() - start) * 1000,
        )
        return response

    @app.get("/", tags=["system"])
    async def info() -> dict:
        return {
            "name": "llm-orchestra",
            "version": __version__,
            "agents": runtime.registry.list(),
        }

    @app.get("/stat", response_model=StatusResponse, response_model_by_alias=True)
    async def stat() -> StatusResponse:
        return runtime.status()

    @app.post(
        "/spawn",
        response_model=SpawnResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def spawn(request: SpawnRequest, response: Response) -> SpawnResponse:
        try:
            result = await runtime.spawn(request)
        except UnknownAgentType as e:
            raise APIError(404, "UNKNOWN_AGENT_TYPE", str(e), {"available": runtime.registry.list()}) from e
        if not result.success:
            response.status_code = 500
        return result

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    return app
