from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import List, Optional

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .. import __version__
from ..config import ServiceConfig, build_service_config
from ..logging import get_logger
from ..preflight.errors import PreflightInputError, PreflightStageError
from ..preflight.request import PreflightRequest
from ..preflight.service import PreflightService


LOG = get_logger("labelcheck-api")


def create_app(
    config: Optional[ServiceConfig] = None,
    *,
    service: Optional[PreflightService] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing the preflight and health endpoints."""

    if service is None:
        service = PreflightService.from_config(config or build_service_config())

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({
            "ok": True,
            "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "version": __version__,
        })

    async def labelcheck(request: Request) -> JSONResponse:
        if request.method != "POST":
            return JSONResponse({"error": "Use POST"}, status_code=405, headers={"Allow": "POST"})

        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid JSON body: {exc}") from exc

        try:
            preflight = PreflightRequest.from_payload(body)
        except PreflightInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        try:
            result = await service.run(preflight)
        except PreflightStageError as exc:
            return JSONResponse(
                {"ok": False, "error": str(exc.cause) or exc.cause.__class__.__name__, "stage": exc.stage},
                status_code=500,
            )
        return JSONResponse(result.as_response())

    async def http_error(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"ok": False, "error": exc.detail}, status_code=exc.status_code)

    async def server_error(_: Request, exc: Exception) -> JSONResponse:
        LOG.exception("Unhandled error: %s", exc)
        return JSONResponse({"ok": False, "error": str(exc) or exc.__class__.__name__}, status_code=500)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        # every method reaches the handler so non-POST gets a JSON 405
        Route("/api/labelcheck", labelcheck, methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]),
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        exception_handlers={HTTPException: http_error, Exception: server_error},
    )

    origins = allow_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    LOG.info("LabelCheck API ready (version %s)", __version__)
    return app


def app_from_env() -> Starlette:
    """uvicorn factory: configuration comes from env/.env."""
    raw = os.environ.get("LABELCHECK_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()] or None
    return create_app(allow_origins=origins)


__all__ = ["create_app", "app_from_env"]
