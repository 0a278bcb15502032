"""
Políticas de seguridad del bridge: API key compartida y allow-list CORS.

Funciones puras (sin FastAPI) para que la capa HTTP y los tests compartan
exactamente la misma decisión:

    - authenticate(): Authorized / Unauthorized / Forbidden
    - extract_api_key(): X-API-Key o Authorization: Bearer <key>
    - evaluate_origin(): Allow / Reject para el header Origin

Constantes CORS:
    CORS_ALLOWED_METHODS, CORS_ALLOWED_HEADERS

Headers de seguridad fijos en SECURITY_HEADERS.
"""

from __future__ import annotations

import hmac
from enum import Enum
from typing import Optional, Sequence

API_KEY_HEADER = "X-API-Key"
BEARER_PREFIX = "Bearer "

CORS_ALLOWED_METHODS = ("GET", "POST", "OPTIONS")
CORS_ALLOWED_HEADERS = ("Content-Type", "X-API-Key", "Authorization")
CORS_WILDCARD = "*"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class AuthResult(str, Enum):
    AUTHORIZED = "authorized"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


class CorsDecision(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"


def extract_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Clave candidata: X-API-Key tiene prioridad sobre Authorization."""
    if x_api_key:
        return x_api_key
    if authorization:
        if authorization.startswith(BEARER_PREFIX):
            return authorization[len(BEARER_PREFIX):] or None
        return authorization
    return None


def authenticate(
    expected_key: Optional[str],
    x_api_key: Optional[str] = None,
    authorization: Optional[str] = None,
) -> AuthResult:
    """
    Verifica la API key compartida.

    Sin clave configurada todo request es AUTHORIZED (modo abierto). La
    comparación es de tiempo constante (hmac.compare_digest).
    """
    if not expected_key:
        return AuthResult.AUTHORIZED

    provided = extract_api_key(x_api_key, authorization)
    if not provided:
        return AuthResult.UNAUTHORIZED

    if not hmac.compare_digest(provided.encode("utf-8"), expected_key.encode("utf-8")):
        return AuthResult.FORBIDDEN
    return AuthResult.AUTHORIZED


def evaluate_origin(origin: Optional[str], allow_list: Sequence[str]) -> CorsDecision:
    # Non-browser callers (curl, server-to-server) send no Origin
    if not origin:
        return CorsDecision.ALLOW
    if CORS_WILDCARD in allow_list or origin in allow_list:
        return CorsDecision.ALLOW
    return CorsDecision.REJECT
