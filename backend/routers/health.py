"""Health router - Información del servicio y estado de la conexión (sin autenticación)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from bridge import __version__
from bridge.settings import AppSettings

SERVICE_NAME = "Neo4j Web Bridge"

ENDPOINTS = {
    "health": "/api/health",
    "connect": "POST /api/connect",
    "query": "POST /api/query",
    "info": "/api/info",
    "disconnect": "POST /api/disconnect",
}

health_router = APIRouter(tags=["Health"])


@health_router.get("/")
async def root() -> Dict[str, Any]:
    """API info."""
    return {
        "name": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "endpoints": ENDPOINTS,
    }


@health_router.get("/api/health")
async def health(request: Request) -> Dict[str, Any]:
    """Health check para el cliente web; público."""
    settings: AppSettings = request.app.state.settings
    security = settings.security
    return {
        "status": "ok",
        "version": __version__,
        "connected": request.app.state.connections.connected,
        # Advertised from URI and password alone; the startup connect also needs a username
        "autoConnect": bool(settings.neo4j.uri and settings.neo4j.password),
        "security": {
            "apiKeyRequired": bool(security.api_key),
            "corsOrigins": "all" if security.allows_all_origins else len(security.cors_origins),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
