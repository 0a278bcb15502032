"""
Aplicación principal FastAPI - Puente HTTP hacia Neo4j.

Este es el punto de entrada del servidor HTTP. Recibe consultas Cypher, las
gobierna (CORS, rate limit, API key, validación) y devuelve los resultados
de Neo4j convertidos a JSON plano.

Grupos de endpoints:

    /
        - GET: Nombre, versión y mapa de endpoints

    /api/health
        - GET: Estado, conexión activa y flags de seguridad

    /api/connect, /api/query, /api/info, /api/disconnect
        - Requieren X-API-Key o Authorization: Bearer <key>

    /static
        - Cliente web (directorio STATIC_DIR, si existe)

Estado compartido (app.state):
    - settings: AppSettings
    - connections: ConnectionManager (único driver del proceso)
    - limiter: RateLimiter
    - cypher_denylist: patrones compilados para el validador

Errores:
    Todas las respuestas de error son JSON con campo `error`.

Ejecución:
    uvicorn backend.app:app --port 3000
    python main.py serve
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.auth import warn_if_insecure
from backend.middleware import install_middleware
from backend.routers.health import SERVICE_NAME, health_router
from backend.routers.neo4j import router as neo4j_router
from bridge import __version__
from bridge.clients import ConnectionManager, auto_connect
from bridge.error_handling import InternalError, RateLimitError, ServiceError, error_payload
from bridge.logging_config import configure_logging
from bridge.rate_limiter import RateLimiter
from bridge.settings import AppSettings, load_settings
from bridge.validation import compile_patterns

api_logger = structlog.get_logger("bridge.api")


async def _sweep_loop(limiter: RateLimiter, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        limiter.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: AppSettings = app.state.settings
    manager: ConnectionManager = app.state.connections

    warn_if_insecure(settings)
    api_logger.info("bridge.startup", settings=repr(settings.masked()))

    tasks = [
        asyncio.create_task(_sweep_loop(app.state.limiter, settings.security.rate_limit_sweep_seconds)),
    ]
    if settings.neo4j.auto_connect:
        # Background task: never blocks startup
        tasks.append(asyncio.create_task(auto_connect(manager, settings)))
    else:
        api_logger.info("neo4j.autoconnect.skipped", reason="no credentials in environment")

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await manager.disconnect()
        except ServiceError as exc:
            api_logger.error("bridge.shutdown.close_failed", error=exc.message)
        api_logger.info("bridge.shutdown")


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        api_logger.error("api.error", path=str(request.url.path), **exc.to_dict())
    return JSONResponse(exc.to_response(), status_code=exc.status_code, headers=headers)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        error_payload(str(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {location + ': ' if location else ''}{first.get('msg', 'invalid value')}"
    else:
        message = "Invalid request"
    return JSONResponse(error_payload(message), status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    api_logger.error(
        "api.unhandled_error",
        path=str(request.url.path),
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=exc,
    )
    error = InternalError()
    return JSONResponse(error.to_response(), status_code=error.status_code)


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    settings: Optional[AppSettings] = None,
    *,
    manager: Optional[ConnectionManager] = None,
    limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Construye la aplicación con su estado propio.

    Args:
        settings: Configuración; por defecto load_settings()
        manager: ConnectionManager a usar (los tests inyectan uno con driver falso)
        limiter: RateLimiter a usar (los tests inyectan uno con reloj controlado)
    """
    settings = settings or load_settings()
    security = settings.security

    app = FastAPI(title=SERVICE_NAME, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    if manager is None:
        manager = ConnectionManager(
            downgrade_tls=settings.neo4j.downgrade_tls,
            query_timeout=settings.server.query_timeout,
        )
    if limiter is None:
        # RateLimiter defines __len__, so an empty one is falsy
        limiter = RateLimiter(
            window_ms=security.rate_limit_window_ms,
            max_requests=security.rate_limit_max_requests,
        )
    app.state.connections = manager
    app.state.limiter = limiter
    app.state.cypher_denylist = compile_patterns(security.cypher_denylist)

    install_middleware(app, app.state.limiter, security.cors_origins)

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health_router)   # /, /api/health
    app.include_router(neo4j_router)    # /api/connect, /api/query, /api/info, /api/disconnect

    static_dir = settings.server.static_dir
    if static_dir and Path(static_dir).is_dir():
        app.mount("/static", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def build_app_from_env() -> FastAPI:
    settings = load_settings()
    configure_logging(settings.server.log_level, settings.server.log_dir)
    return create_app(settings)


app = build_app_from_env()
