"""FastAPI app factory for the project allocation portal."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import sys
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config.settings import settings
from .controllers import applications, groups, roles
from .database import dispose_engine, init_models
from .middleware import StructuredLoggingMiddleware, TelemetryMiddleware
from .services.errors import PortalError
from .telemetry import record_domain_error

logger = logging.getLogger(__name__)

_QUIET_LOGGERS = ("pika", "sqlalchemy.engine", "aiosqlite", "asyncio")


def _configure_logging() -> None:
    """Route logs to stdout and a rotating file; access lines stay bare JSON."""

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(file_handler)
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)

    access = logging.getLogger("portal.middleware.structured")
    access.handlers.clear()
    access_console = logging.StreamHandler(sys.stdout)
    access_console.setFormatter(logging.Formatter("%(message)s"))
    access.addHandler(access_console)
    access.addHandler(file_handler)
    access.setLevel(logging.INFO)
    access.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app() -> FastAPI:
    _configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        description="Group formation, project applications and capacity-bound allocation",
    )

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    for module in (groups, applications, roles):
        app.include_router(module.router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "status": "operational",
        }

    @app.get("/health", include_in_schema=False)
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        """Typed engine errors become ``{detail, code, details}`` bodies."""

        record_domain_error(exc.code)
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        else:
            logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.on_event("startup")
    async def startup_event() -> None:
        await init_models()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await dispose_engine()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "portal.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
