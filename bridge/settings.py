"""
Configuración del bridge mediante variables de entorno.

Este módulo define las dataclasses de configuración y la función
`load_settings()` que las construye desde .env + entorno del proceso.

Grupos configurables:
    - Neo4j: credenciales para el auto-connect al arrancar
    - Security: API key compartida, CORS, rate limiting, denylist de Cypher
    - Server: puerto, directorio estático, logging

Uso:
    from bridge.settings import load_settings

    settings = load_settings()  # Carga desde .env
    settings = load_settings("ruta/a/.env.local")

    # Acceso seguro para logs (oculta credenciales)
    logger.info("settings.loaded", **asdict(settings.masked()))

Variables de entorno soportadas:
    - NEO4J_URI, NEO4J_USER (o NEO4J_USERNAME), NEO4J_PASSWORD, NEO4J_DATABASE
    - NEO4J_DOWNGRADE_TLS: reescribe neo4j+s/bolt+s/https a bolt:// (default: true)
    - API_KEY, CORS_ORIGINS
    - RATE_LIMIT_WINDOW_MS, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_SWEEP_SECONDS
    - QUERY_TIMEOUT_SECONDS, CYPHER_DENYLIST
    - HOST, PORT, STATIC_DIR, LOG_LEVEL, LOG_DIR
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv, find_dotenv

ENV_FILE_VAR = "APP_ENV_FILE"

DEFAULT_DATABASE = "neo4j"
DEFAULT_PORT = 3000
DEFAULT_WINDOW_MS = 60_000
DEFAULT_MAX_REQUESTS = 100
DEFAULT_SWEEP_SECONDS = 300.0
DEFAULT_QUERY_TIMEOUT = 30.0

_TRUTHY = {"1", "true", "yes", "on"}


# =============================================================================
# DATACLASSES DE CONFIGURACIÓN
# =============================================================================

@dataclass
class Neo4jSettings:
    """
    Credenciales opcionales de Neo4j para el auto-connect.

    Attributes:
        uri: URI de conexión (bolt:// local, neo4j+s:// para Aura)
        username: Usuario de Neo4j
        password: Contraseña
        database: Base de datos lógica (default: neo4j)
        downgrade_tls: Si True, los esquemas seguros se reescriben a bolt://
    """
    uri: Optional[str]
    username: Optional[str]
    password: Optional[str]
    database: str = DEFAULT_DATABASE
    downgrade_tls: bool = True

    @property
    def auto_connect(self) -> bool:
        return bool(self.uri and self.username and self.password)

    def masked(self) -> "Neo4jSettings":
        """Retorna una copia con credenciales enmascaradas para logging seguro."""
        return Neo4jSettings(self.uri, self.username, mask(self.password), self.database, self.downgrade_tls)


@dataclass
class SecuritySettings:
    """
    Políticas de gobierno de requests.

    Attributes:
        api_key: Secreto compartido; None deja la API abierta (modo inseguro)
        cors_origins: Allow-list de orígenes ("*" permite todos)
        rate_limit_window_ms: Duración de la ventana del rate limiter
        rate_limit_max_requests: Requests permitidos por ventana y cliente
        rate_limit_sweep_seconds: Intervalo de limpieza de registros expirados
        cypher_denylist: Patrones regex prohibidos (vacío = desactivado)
    """
    api_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    rate_limit_window_ms: int = DEFAULT_WINDOW_MS
    rate_limit_max_requests: int = DEFAULT_MAX_REQUESTS
    rate_limit_sweep_seconds: float = DEFAULT_SWEEP_SECONDS
    cypher_denylist: List[str] = field(default_factory=list)

    @property
    def allows_all_origins(self) -> bool:
        return "*" in self.cors_origins

    def masked(self) -> "SecuritySettings":
        return SecuritySettings(
            api_key=mask(self.api_key) if self.api_key else None,
            cors_origins=list(self.cors_origins),
            rate_limit_window_ms=self.rate_limit_window_ms,
            rate_limit_max_requests=self.rate_limit_max_requests,
            rate_limit_sweep_seconds=self.rate_limit_sweep_seconds,
            cypher_denylist=list(self.cypher_denylist),
        )


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    static_dir: Optional[str] = "public"
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    query_timeout: float = DEFAULT_QUERY_TIMEOUT


@dataclass
class AppSettings:
    """
    Configuración consolidada del bridge.

    Attributes:
        neo4j: Credenciales para el auto-connect
        security: API key, CORS, rate limiting y denylist
        server: Parámetros del proceso HTTP
    """
    neo4j: Neo4jSettings
    security: SecuritySettings = field(default_factory=SecuritySettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    def masked(self) -> "AppSettings":
        """Retorna una copia con todas las credenciales enmascaradas."""
        return AppSettings(
            neo4j=self.neo4j.masked(),
            security=self.security.masked(),
            server=self.server,
        )


# =============================================================================
# FUNCIONES AUXILIARES
# =============================================================================

def mask(value: Optional[str], prefix: int = 4) -> str:
    """
    Enmascara un valor sensible para logging seguro.

    Example:
        >>> mask("mi-api-key-secreta-12345")
        'mi-a...2345'
    """
    if not value:
        return "****"
    if len(value) <= prefix * 2:
        return "****"
    return f"{value[:prefix]}...{value[-prefix:]}"


def parse_origins(raw: Optional[str]) -> List[str]:
    """Lista separada por comas; vacía o ausente equivale a ["*"]."""
    if not raw or not raw.strip():
        return ["*"]
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} debe ser un entero (recibido: {raw!r})") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} debe ser numérico (recibido: {raw!r})") from exc


def _denylist_from_env() -> List[str]:
    from .validation import DEFAULT_ADMIN_PATTERNS

    raw = (os.getenv("CYPHER_DENYLIST") or "").strip()
    if not raw:
        return []
    if raw.lower() == "admin":
        return list(DEFAULT_ADMIN_PATTERNS)
    return [pattern.strip() for pattern in raw.split(";;") if pattern.strip()]


def load_settings(env_file: Optional[str | os.PathLike[str]] = None) -> AppSettings:
    """
    Carga la configuración desde variables de entorno.

    Busca un archivo .env en el directorio actual o usa el archivo especificado.
    Los valores del entorno del proceso tienen precedencia sobre el .env.

    Args:
        env_file: Ruta opcional al archivo .env. Si no se especifica se usa
                  APP_ENV_FILE o se busca automáticamente desde el cwd.

    Returns:
        AppSettings con toda la configuración cargada

    Raises:
        ValueError: Si una variable numérica no se puede interpretar

    Note:
        CYPHER_DENYLIST acepta "admin" (patrones administrativos predefinidos)
        o una lista de regex separadas por ";;".
    """
    env_file = env_file or os.getenv(ENV_FILE_VAR)
    if env_file:
        load_dotenv(env_file)
    else:
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path)

    neo4j = Neo4jSettings(
        uri=os.getenv("NEO4J_URI") or None,
        username=os.getenv("NEO4J_USER") or os.getenv("NEO4J_USERNAME") or None,
        password=os.getenv("NEO4J_PASSWORD") or None,
        database=os.getenv("NEO4J_DATABASE") or DEFAULT_DATABASE,
        downgrade_tls=_env_bool("NEO4J_DOWNGRADE_TLS", True),
    )

    security = SecuritySettings(
        api_key=os.getenv("API_KEY") or None,
        cors_origins=parse_origins(os.getenv("CORS_ORIGINS")),
        rate_limit_window_ms=_env_int("RATE_LIMIT_WINDOW_MS", DEFAULT_WINDOW_MS),
        rate_limit_max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", DEFAULT_MAX_REQUESTS),
        rate_limit_sweep_seconds=_env_float("RATE_LIMIT_SWEEP_SECONDS", DEFAULT_SWEEP_SECONDS),
        cypher_denylist=_denylist_from_env(),
    )

    # LOG_DIR vacío desactiva el archivo JSONL (solo consola)
    log_dir = os.getenv("LOG_DIR", "logs")
    static_dir = os.getenv("STATIC_DIR", "public")
    server = ServerSettings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", DEFAULT_PORT),
        static_dir=static_dir.strip() or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=log_dir.strip() or None,
        query_timeout=_env_float("QUERY_TIMEOUT_SECONDS", DEFAULT_QUERY_TIMEOUT),
    )

    return AppSettings(neo4j=neo4j, security=security, server=server)
