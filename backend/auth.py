"""
Autenticación por API key para la API REST del bridge.

Flujo de autenticación:
    1. Cliente envía X-API-Key: <key> o Authorization: Bearer <key>
    2. require_api_key() compara contra API_KEY (tiempo constante)
    3. Sin header → 401; clave distinta → 403; coincidencia → continúa

Modo abierto:
    Si API_KEY no está configurada todas las rutas protegidas quedan
    abiertas. warn_if_insecure() lo advierte una sola vez al arrancar.

Example:
    @router.post("/api/query", dependencies=[Depends(require_api_key)])
    async def query(...):
        ...
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Header, Request

from bridge.error_handling import AuthError
from bridge.security import API_KEY_HEADER, AuthResult, authenticate
from bridge.settings import AppSettings

logger = structlog.get_logger("bridge.auth")

MSG_KEY_REQUIRED = "API key required. Provide via X-API-Key header or Authorization: Bearer <key>"
MSG_KEY_INVALID = "Invalid API key"


def warn_if_insecure(settings: AppSettings) -> bool:
    """Registra el modo inseguro. Retorna True si la API está abierta."""
    if settings.security.api_key:
        return False
    logger.warning(
        "auth.insecure_mode",
        message="API_KEY not set. Protected endpoints accept any request.",
    )
    return True


async def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """
    Dependencia FastAPI para rutas protegidas.

    Raises:
        AuthError 401: Si no se envió ninguna credencial
        AuthError 403: Si la credencial no coincide
    """
    settings: AppSettings = request.app.state.settings
    result = authenticate(settings.security.api_key, x_api_key, authorization)

    if result is AuthResult.UNAUTHORIZED:
        logger.info("auth.missing_key", path=request.url.path)
        raise AuthError(MSG_KEY_REQUIRED, status_code=401)
    if result is AuthResult.FORBIDDEN:
        logger.warning("auth.invalid_key", path=request.url.path)
        raise AuthError(MSG_KEY_INVALID, status_code=403)
