"""
Middlewares HTTP del bridge.

Orden efectivo (de afuera hacia adentro):
    RequestIdMiddleware → SecurityHeadersMiddleware → CorsRejectionMiddleware
    → CORSMiddleware → RateLimitMiddleware → BodySizeLimitMiddleware → rutas

Starlette ejecuta primero el último middleware agregado; install_middleware()
los registra en el orden inverso.
"""

from __future__ import annotations

import uuid
from time import perf_counter
from typing import Sequence

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

from bridge.error_handling import RateLimitError, error_payload
from bridge.rate_limiter import RateLimiter
from bridge.security import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    CORS_WILDCARD,
    SECURITY_HEADERS,
    CorsDecision,
    evaluate_origin,
)

api_logger = structlog.get_logger("bridge.api")

RATE_LIMITED_PREFIX = "/api"
SLOW_REQUEST_MS = 5000
MAX_BODY_BYTES = 1024 * 1024
MSG_BODY_TOO_LARGE = "Request body too large (max 1mb)"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Adds unique request_id to each request for tracing/debugging."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client=get_remote_address(request),
        )
        request.state.request_id = request_id

        api_logger.info("request.start", method=request.method, path=str(request.url.path))

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = round((perf_counter() - start) * 1000, 2)
        api_logger.info(
            "request.end",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        if duration_ms >= SLOW_REQUEST_MS:
            api_logger.warning(
                "request.slow",
                method=request.method,
                path=str(request.url.path),
                duration_ms=duration_ms,
            )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response


class CorsRejectionMiddleware(BaseHTTPMiddleware):
    """
    Rechaza con 403 JSON los orígenes fuera de la allow-list.

    Los headers CORS de las respuestas permitidas (y los preflight) los emite
    CORSMiddleware, registrado por dentro de esta capa.
    """

    def __init__(self, app, allow_origins: Sequence[str] = ("*",)) -> None:
        super().__init__(app)
        self.allow_origins = list(allow_origins)

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        if evaluate_origin(origin, self.allow_origins) is CorsDecision.REJECT:
            api_logger.warning("cors.blocked", origin=origin, path=str(request.url.path))
            return JSONResponse(error_payload("Not allowed by CORS"), status_code=403)
        return await call_next(request)


class BodySizeLimitMiddleware:
    """
    Limita el tamaño del body (MAX_BODY_BYTES).

    Content-Length declarado → 413 antes de leer. Sin Content-Length (chunked)
    se cuentan los bytes recibidos y se corta al superar el límite.
    """

    def __init__(self, app, max_bytes: int = MAX_BODY_BYTES) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        declared = Headers(scope=scope).get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            api_logger.warning("request.body_too_large", declared=int(declared), path=scope.get("path"))
            response = JSONResponse(error_payload(MSG_BODY_TOO_LARGE), status_code=413)
            return await response(scope, receive, send)

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    api_logger.warning("request.body_too_large", received=received, path=scope.get("path"))
                    # Surfaces through the app's HTTPException handler as JSON
                    raise HTTPException(status_code=413, detail=MSG_BODY_TOO_LARGE)
            return message

        await self.app(scope, limited_receive, send)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Limita por IP las rutas bajo /api."""

    def __init__(self, app, limiter: RateLimiter, prefix: str = RATE_LIMITED_PREFIX) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.prefix):
            return await call_next(request)

        client_id = get_remote_address(request) or "unknown"
        decision = self.limiter.check(client_id)
        if not decision.allowed:
            api_logger.warning(
                "rate_limit.denied",
                client=client_id,
                path=str(request.url.path),
                retry_after=decision.retry_after,
            )
            exc = RateLimitError(decision.retry_after)
            return JSONResponse(
                exc.to_response(),
                status_code=exc.status_code,
                headers={"Retry-After": str(decision.retry_after)},
            )
        return await call_next(request)


def install_middleware(
    app: FastAPI,
    limiter: RateLimiter,
    allow_origins: Sequence[str],
    max_body_bytes: int = MAX_BODY_BYTES,
) -> None:
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=max_body_bytes)
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # Allowed origins are echoed back (never "*") so credentials keep working
    allow_all = CORS_WILDCARD in allow_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all else list(allow_origins),
        allow_origin_regex=".*" if allow_all else None,
        allow_credentials=True,
        allow_methods=list(CORS_ALLOWED_METHODS),
        allow_headers=list(CORS_ALLOWED_HEADERS),
    )
    app.add_middleware(CorsRejectionMiddleware, allow_origins=allow_origins)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
