"""
Helpers para manejo uniforme de errores.

Este módulo proporciona:
    - ErrorCode: Códigos de error estándar
    - ServiceError: Excepción con código, status HTTP y contexto
    - Subclases por categoría (validación, auth, rate limit, conexión, ejecución)
    - error_payload(): Cuerpo JSON uniforme {"error": "..."}

Taxonomía y status HTTP:
    CypherValidationError  → 400
    NotConnectedError      → 400
    AuthError              → 401 / 403
    RateLimitError         → 429 (con retryAfter)
    Neo4jConnectionError   → 500
    QueryExecutionError    → 500
    InternalError          → 500
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


# =============================================================================
# CÓDIGOS DE ERROR ESTÁNDAR
# =============================================================================

class ErrorCode:
    """Códigos de error para logging y respuestas HTTP."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_CONNECTED = "NOT_CONNECTED"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    RATE_LIMITED = "RATE_LIMITED"

    CONNECTION_ERROR = "CONNECTION_ERROR"
    GRAPH_DB_ERROR = "GRAPH_DB_ERROR"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# EXCEPCIONES DE DOMINIO
# =============================================================================

@dataclass(eq=False)
class ServiceError(Exception):
    """
    Error de servicio con código y contexto estructurado.

    Usar para traducir excepciones externas (driver, validación) a errores
    de dominio que la capa HTTP convierte en JSON.
    """
    code: str
    message: str
    status_code: int = 500
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a dict para logging."""
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context or {},
        }

    def to_response(self) -> Dict[str, Any]:
        return error_payload(self.message)


class CypherValidationError(ServiceError):
    """Entrada malformada, demasiado larga o ausente."""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400, context)


class NotConnectedError(ServiceError):
    """No hay driver activo; el cliente debe llamar a /api/connect."""
    def __init__(self, message: str = "Not connected to Neo4j. Please connect first."):
        super().__init__(ErrorCode.NOT_CONNECTED, message, 400)


class AuthError(ServiceError):
    """Credencial ausente (401) o inválida (403)."""
    def __init__(self, message: str, status_code: int = 401):
        code = ErrorCode.AUTH_REQUIRED if status_code == 401 else ErrorCode.INVALID_CREDENTIALS
        super().__init__(code, message, status_code)


class RateLimitError(ServiceError):
    """Cuota excedida para el cliente dentro de la ventana actual."""
    def __init__(self, retry_after: int, message: str = "Too many requests. Please try again later."):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, {"retry_after": retry_after})
        self.retry_after = retry_after

    def to_response(self) -> Dict[str, Any]:
        return error_payload(self.message, retryAfter=self.retry_after)


class Neo4jConnectionError(ServiceError):
    """Neo4j inalcanzable o mal configurado."""
    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(ErrorCode.CONNECTION_ERROR, message, 500, context)


class QueryExecutionError(ServiceError):
    """La consulta falló en la base de datos (o excedió el timeout)."""
    def __init__(self, message: str, context: Optional[Dict] = None, code: str = ErrorCode.GRAPH_DB_ERROR):
        super().__init__(code, message, 500, context)


class InternalError(ServiceError):
    """Error inesperado capturado por el handler final."""
    def __init__(self, message: str = "Internal server error"):
        super().__init__(ErrorCode.INTERNAL_ERROR, message, 500)


# =============================================================================
# HELPERS HTTP
# =============================================================================

def error_payload(message: str, **extra: Any) -> Dict[str, Any]:
    """Cuerpo JSON de error: siempre un objeto con campo `error` string."""
    payload: Dict[str, Any] = {"error": str(message)}
    payload.update(extra)
    return payload
