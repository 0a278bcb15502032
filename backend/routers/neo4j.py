"""
Neo4j router - Conexión, consultas Cypher e información del servidor.

Todas las rutas requieren API key (ver backend/auth.py).

    POST /api/connect     → Reemplaza la conexión activa
    POST /api/query       → Ejecuta Cypher y devuelve registros convertidos
    GET  /api/info        → dbms.components()
    POST /api/disconnect  → Cierra la conexión activa
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from backend.auth import require_api_key
from bridge.clients import ConnectionConfig, ConnectionManager
from bridge.error_handling import CypherValidationError, NotConnectedError
from bridge.settings import DEFAULT_DATABASE
from bridge.validation import validate_cypher

# Logger
logger = structlog.get_logger("bridge.api.neo4j")


# Dependencies
def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connections


# Request Models
class ConnectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: Optional[str] = Field(default=None, description="URI de Neo4j (bolt://, neo4j://, neo4j+s://).")
    username: Optional[str] = Field(default=None, description="Usuario de Neo4j.")
    password: Optional[str] = Field(default=None, description="Contraseña.")
    database: Optional[str] = Field(default=None, description="Base de datos (default: neo4j).")


class CypherRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Any: el validador decide qué es aceptable, no pydantic
    cypher: Any = Field(default=None, description="Consulta Cypher a ejecutar en Neo4j.")
    params: Optional[Dict[str, Any]] = Field(default=None, description="Diccionario de parámetros (clave->valor).")
    database: Optional[str] = Field(default=None, description="Base de datos Neo4j opcional.")


# Create router
router = APIRouter(prefix="/api", tags=["Neo4j"], dependencies=[Depends(require_api_key)])


# Endpoints
@router.post("/connect")
async def neo4j_connect(
    payload: Optional[ConnectRequest] = None,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> Dict[str, Any]:
    """Conecta (o reconecta) el bridge a Neo4j."""
    payload = payload or ConnectRequest()
    if not payload.uri or not payload.username or not payload.password:
        raise CypherValidationError("Missing required fields: uri, username, password")

    database = payload.database or DEFAULT_DATABASE
    config = ConnectionConfig(
        uri=payload.uri,
        username=payload.username,
        password=payload.password,
        database=database,
    )
    effective_uri = await manager.connect(config)
    return {
        "success": True,
        "message": "Connected successfully",
        "uri": effective_uri,
        "database": database,
    }


@router.post("/query")
async def neo4j_query(
    request: Request,
    payload: Optional[CypherRequest] = None,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> Dict[str, Any]:
    """Execute Cypher query against Neo4j database."""
    if not manager.connected:
        raise NotConnectedError()

    payload = payload or CypherRequest()
    validation = validate_cypher(payload.cypher, request.app.state.cypher_denylist)
    if not validation.valid:
        logger.info("neo4j.query.rejected", reason=validation.error)
        raise CypherValidationError(validation.error or "Invalid Cypher query")

    result = await manager.execute(
        payload.cypher,
        params=payload.params or {},
        database=payload.database or DEFAULT_DATABASE,
    )
    return {
        "success": True,
        "records": result.records,
        "summary": result.summary,
    }


@router.get("/info")
async def neo4j_info(manager: ConnectionManager = Depends(get_connection_manager)) -> Dict[str, Any]:
    if not manager.connected:
        raise NotConnectedError("Not connected to Neo4j")
    info = await manager.server_info()
    return {"success": True, "info": info}


@router.post("/disconnect")
async def neo4j_disconnect(manager: ConnectionManager = Depends(get_connection_manager)) -> Dict[str, Any]:
    await manager.disconnect()
    return {"success": True, "message": "Disconnected"}
