# ============================================================================
# foundry/server/api.py
# FastAPI application for the signed command channel
# ============================================================================
#
# Routes (all under /foundry/v1):
#   POST /run            {command} -> text/event-stream of command events
#   GET  /download       ?token=   -> application/zip, single use
#   POST /upload         raw zip   -> upload token
#   POST /upload/delete  {token}
#   GET  /health
#
# Every route except /health passes rate limiting, signature verification
# and the capability check before its handler runs. Failures at that stage
# are rendered as one JSON error body with the mapped HTTP status.
#
# ============================================================================

from __future__ import annotations

import logging
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from foundry import API_PREFIX, __version__
from foundry.base.config import get_config, setup_logging
from foundry.errors import ErrorCode, FoundryError
from foundry.server.routers import download, run, system

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="WP Foundry Helper",
        description="Signed remote command channel for a WordPress host",
        version=__version__,
    )

    @app.exception_handler(FoundryError)
    async def foundry_error_handler(request: Request, exc: FoundryError):
        logger.warning(f"[API] {request.method} {request.url.path} rejected: {exc.code.value}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = FoundryError(
            ErrorCode.COMMAND_MALFORMED,
            "Malformed request body",
            details={"errors": [e.get("msg", "") for e in exc.errors()]},
        )
        return JSONResponse(status_code=error.http_status, content=error.to_dict())

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[API] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")
        return response

    app.include_router(run.router, prefix=API_PREFIX)
    app.include_router(download.router, prefix=API_PREFIX)
    app.include_router(system.router, prefix=API_PREFIX)
    return app


app = create_app()


def serve(port: Optional[int] = None, host: Optional[str] = None):
    config = get_config()
    setup_logging(config)
    logger.info(f"[API] Serving {config.host.app_root} on {host or config.api_host}:{port or config.api_port}")
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port, log_level="info")


if __name__ == "__main__":
    serve()
