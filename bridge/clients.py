"""
Gestión de la conexión Neo4j compartida por el bridge.

Este módulo proporciona `ConnectionManager`, dueño exclusivo de a lo sumo un
driver asíncrono de Neo4j, y `auto_connect()` para el intento de conexión al
arrancar el proceso.

Uso típico:
    manager = ConnectionManager()
    uri = await manager.connect(ConnectionConfig(uri, user, password, "neo4j"))
    result = await manager.execute("MATCH (n) RETURN n LIMIT 5")
    await manager.disconnect()

Política de conexión:
    - connect() cierra el driver previo antes de crear uno nuevo
    - Sonda de vida (RETURN 1) antes de reportar éxito; si falla, el driver
      nuevo se cierra y se descarta
    - Los esquemas seguros (neo4j+s, bolt+s, https) se reescriben a bolt://
      cuando downgrade_tls=True (red ya confiable o tunelizada)

Concurrencia:
    connect/disconnect son escritores exclusivos: esperan a que terminen los
    execute() en curso y bloquean nuevos mientras reemplazan el driver. Cada
    execute() abre su propia sesión y la libera en toda salida.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from time import perf_counter
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, Query

from .error_handling import (
    ErrorCode,
    Neo4jConnectionError,
    NotConnectedError,
    QueryExecutionError,
    ServiceError,
)
from .queries import record_to_dict, summarize
from .settings import AppSettings

_logger = structlog.get_logger("bridge.neo4j")

SECURE_SCHEME_RE = re.compile(r"^(neo4j\+s|bolt\+s|https)://")
PLAIN_SCHEME = "bolt://"
PROBE_QUERY = "RETURN 1"
SERVER_INFO_QUERY = """
CALL dbms.components() YIELD name, versions, edition
RETURN name, versions, edition
"""
SLOW_QUERY_MS = 500

DRIVER_OPTIONS: Dict[str, Any] = {
    "max_connection_lifetime": 3 * 60,
    "max_connection_pool_size": 50,
    "connection_acquisition_timeout": 2 * 60,
}

DriverFactory = Callable[..., AsyncDriver]


@dataclass
class ConnectionConfig:
    """Parámetros de una conexión. Nunca se persisten."""
    uri: str
    username: str
    password: str
    database: str = "neo4j"


@dataclass
class QueryResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


def normalize_uri(uri: str) -> str:
    """Reescribe neo4j+s://, bolt+s:// y https:// a bolt://."""
    return SECURE_SCHEME_RE.sub(PLAIN_SCHEME, uri.strip(), count=1)


class ConnectionManager:
    """
    Dueño del driver Neo4j del proceso (cero o uno).

    Args:
        driver_factory: Callable con la firma de AsyncGraphDatabase.driver
        downgrade_tls: Reescribir esquemas seguros a bolt://
        query_timeout: Segundos máximos por consulta (servidor y cliente)
    """

    def __init__(
        self,
        driver_factory: Optional[DriverFactory] = None,
        *,
        downgrade_tls: bool = True,
        query_timeout: float = 30.0,
    ) -> None:
        self._driver_factory = driver_factory or AsyncGraphDatabase.driver
        self.downgrade_tls = downgrade_tls
        self.query_timeout = query_timeout
        self._driver: Optional[AsyncDriver] = None
        self._config: Optional[ConnectionConfig] = None
        self._cond = asyncio.Condition()
        self._active = 0
        self._writing = False

    @property
    def connected(self) -> bool:
        return self._driver is not None

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    # ------------------------------------------------------------------
    # Writer gate
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writing)
            self._writing = True
        try:
            async with self._cond:
                await self._cond.wait_for(lambda: self._active == 0)
            yield
        finally:
            async with self._cond:
                self._writing = False
                self._cond.notify_all()

    @asynccontextmanager
    async def _shared(self) -> AsyncIterator[AsyncDriver]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writing)
            driver = self._driver
            if driver is None:
                raise NotConnectedError()
            self._active += 1
        try:
            yield driver
        finally:
            async with self._cond:
                self._active -= 1
                self._cond.notify_all()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def effective_uri(self, uri: str) -> str:
        if not self.downgrade_tls:
            return uri.strip()
        effective = normalize_uri(uri)
        if effective != uri.strip():
            _logger.warning("neo4j.uri.downgraded", requested=uri, effective=effective)
        return effective

    async def connect(self, config: ConnectionConfig) -> str:
        """
        Reemplaza el driver actual por uno nuevo ya verificado.

        Returns:
            URI efectiva (tras la normalización de esquema)

        Raises:
            Neo4jConnectionError: Si el driver no se puede crear o la sonda falla
        """
        uri = self.effective_uri(config.uri)
        async with self._exclusive():
            await self._close_current()

            start = perf_counter()
            driver: Optional[AsyncDriver] = None
            try:
                driver = self._driver_factory(
                    uri,
                    auth=(config.username, config.password),
                    **DRIVER_OPTIONS,
                )
                async with driver.session(database=config.database) as session:
                    result = await session.run(PROBE_QUERY)
                    await result.consume()
            except Exception as exc:
                _logger.error(
                    "neo4j.connect.failure",
                    uri=uri,
                    database=config.database,
                    error=str(exc),
                )
                if driver is not None:
                    await self._safe_close(driver)
                raise Neo4jConnectionError(
                    str(exc) or "Failed to connect to Neo4j",
                    context={"uri": uri, "database": config.database},
                ) from exc

            self._driver = driver
            self._config = replace(config, uri=uri)

        _logger.info(
            "neo4j.connect.success",
            uri=uri,
            database=config.database,
            elapsed_ms=round((perf_counter() - start) * 1000, 2),
        )
        return uri

    async def execute(
        self,
        cypher: str,
        params: Optional[Dict[str, Any]] = None,
        database: Optional[str] = None,
    ) -> QueryResult:
        """
        Ejecuta una consulta en una sesión propia y convierte el resultado.

        Raises:
            NotConnectedError: Si no hubo un connect() exitoso
            QueryExecutionError: Si la base de datos rechaza la consulta,
                                 excede el timeout o la conversión falla
        """
        start = perf_counter()
        async with self._shared() as driver:
            try:
                result = await asyncio.wait_for(
                    self._run(driver, cypher, params or {}, database),
                    timeout=self.query_timeout,
                )
            except asyncio.TimeoutError as exc:
                _logger.error("neo4j.query.timeout", database=database, timeout=self.query_timeout)
                raise QueryExecutionError(
                    f"Query timed out after {self.query_timeout:g} seconds",
                    context={"database": database},
                    code=ErrorCode.TIMEOUT,
                ) from exc
            except ServiceError:
                raise
            except Exception as exc:
                _logger.error(
                    "neo4j.query.failure",
                    database=database,
                    cypher_preview=cypher[:80].replace("\n", " "),
                    error=str(exc),
                )
                raise QueryExecutionError(
                    str(exc) or "Failed to execute query",
                    context={"database": database},
                ) from exc

        elapsed_ms = round((perf_counter() - start) * 1000, 2)
        _logger.info(
            "neo4j.query.complete",
            records=len(result.records),
            database=database,
            elapsed_ms=elapsed_ms,
        )
        if elapsed_ms > SLOW_QUERY_MS:
            _logger.warning(
                "neo4j.query.slow",
                cypher_preview=cypher[:120].replace("\n", " "),
                database=database,
                elapsed_ms=elapsed_ms,
            )
        return result

    async def _run(
        self,
        driver: AsyncDriver,
        cypher: str,
        params: Dict[str, Any],
        database: Optional[str],
    ) -> QueryResult:
        async with driver.session(database=database) as session:
            result = await session.run(Query(cypher, timeout=self.query_timeout), params)
            records = [record async for record in result]
            summary = await result.consume()
            return QueryResult(
                records=[record_to_dict(record) for record in records],
                summary=summarize(summary),
            )

    async def server_info(self) -> List[Dict[str, Any]]:
        """Componentes del servidor: [{name, versions, edition}]."""
        result = await self.execute(SERVER_INFO_QUERY)
        return [
            {
                "name": row.get("name"),
                "versions": row.get("versions"),
                "edition": row.get("edition"),
            }
            for row in result.records
        ]

    async def disconnect(self) -> None:
        async with self._exclusive():
            await self._close_current(raise_errors=True)

    async def _close_current(self, raise_errors: bool = False) -> None:
        driver, self._driver, self._config = self._driver, None, None
        if driver is None:
            return
        try:
            await driver.close()
            _logger.info("neo4j.disconnected")
        except Exception as exc:
            _logger.error("neo4j.close.failure", error=str(exc))
            if raise_errors:
                raise Neo4jConnectionError(str(exc) or "Failed to close Neo4j driver") from exc

    @staticmethod
    async def _safe_close(driver: AsyncDriver) -> None:
        try:
            await driver.close()
        except Exception as exc:  # noqa: BLE001
            _logger.warning("neo4j.close.failure", error=str(exc))


async def auto_connect(manager: ConnectionManager, settings: AppSettings) -> bool:
    """
    Intento único de conexión con credenciales del entorno.

    Nunca lanza: el resultado solo se registra en el log para no bloquear el
    arranque del servidor.
    """
    neo4j_settings = settings.neo4j
    if not neo4j_settings.auto_connect:
        _logger.info("neo4j.autoconnect.skipped", reason="no credentials in environment")
        return False

    _logger.info("neo4j.autoconnect.start", uri=neo4j_settings.uri, database=neo4j_settings.database)
    config = ConnectionConfig(
        uri=neo4j_settings.uri or "",
        username=neo4j_settings.username or "",
        password=neo4j_settings.password or "",
        database=neo4j_settings.database,
    )
    try:
        await manager.connect(config)
    except ServiceError as exc:
        _logger.error("neo4j.autoconnect.failure", error=exc.message)
        return False
    return True
