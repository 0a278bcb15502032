from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional

import structlog
import uvicorn

from bridge.clients import ConnectionConfig, ConnectionManager
from bridge.error_handling import ServiceError
from bridge.logging_config import configure_logging
from bridge.settings import ENV_FILE_VAR, AppSettings, load_settings
from bridge.validation import compile_patterns, validate_cypher

APP_IMPORT_PATH = "backend.app:app"


def _coerce_value(value: str):
    lower = value.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    if lower == "null":
        return None
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _parse_param_args(pairs: Optional[List[str]]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for raw in pairs or []:
        if "=" not in raw:
            raise ValueError(f"Parametro invalido: '{raw}'. Usa clave=valor.")
        key, value = raw.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("El nombre del parametro no puede estar vacio.")
        params[key] = _coerce_value(value.strip())
    return params


def cmd_serve(args):
    # backend.app builds its settings on import; the flags travel through the environment
    if args.env:
        os.environ[ENV_FILE_VAR] = args.env
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    settings: AppSettings = args.settings
    host = args.host or settings.server.host
    port = args.port or settings.server.port
    args.logger.info("server.start", host=host, port=port)
    uvicorn.run(APP_IMPORT_PATH, host=host, port=port, log_config=None)


async def _run_query(settings: AppSettings, cypher: str, params: Dict[str, Any], database: str):
    manager = ConnectionManager(
        downgrade_tls=settings.neo4j.downgrade_tls,
        query_timeout=settings.server.query_timeout,
    )
    await manager.connect(
        ConnectionConfig(
            uri=settings.neo4j.uri or "",
            username=settings.neo4j.username or "",
            password=settings.neo4j.password or "",
            database=database,
        )
    )
    try:
        return await manager.execute(cypher, params=params, database=database)
    finally:
        await manager.disconnect()


def cmd_neo4j_query(args):
    logger = args.logger
    settings: AppSettings = args.settings
    try:
        params = _parse_param_args(args.param)
    except ValueError as exc:
        logger.error("neo4j.query.params_error", error=str(exc))
        print(f"Error: {exc}")
        raise SystemExit(1)

    validation = validate_cypher(args.cypher, compile_patterns(settings.security.cypher_denylist))
    if not validation:
        logger.error("neo4j.query.rejected", reason=validation.error)
        print(f"Error: {validation.error}")
        raise SystemExit(1)

    if not settings.neo4j.auto_connect:
        print("Error: define NEO4J_URI, NEO4J_USER y NEO4J_PASSWORD en el entorno o en .env")
        raise SystemExit(1)

    database = args.database or settings.neo4j.database
    logger.info("neo4j.query.begin", cypher=args.cypher, parametros=len(params), database=database)
    try:
        result = asyncio.run(_run_query(settings, args.cypher, params, database))
    except ServiceError as exc:
        logger.error("neo4j.query.error", **exc.to_dict())
        print(f"Error: {exc.message}")
        raise SystemExit(1)

    payload = {"records": result.records, "summary": result.summary}
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    logger.info("neo4j.query.complete", filas=len(result.records))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Neo4j Web Bridge: servidor HTTP y consultas directas")
    parser.add_argument("--env", help="Ruta a archivo .env", default=None)
    parser.add_argument("--log-level", default=None, help="Nivel de logging estructurado (default: LOG_LEVEL o INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Inicia el servidor HTTP (uvicorn)")
    p_serve.add_argument("--host", default=None, help="Interfaz de escucha (default: HOST o 0.0.0.0)")
    p_serve.add_argument("--port", type=int, default=None, help="Puerto (default: PORT o 3000)")
    p_serve.set_defaults(func=cmd_serve)

    p_neo4j = sub.add_parser("neo4j", help="Consultas directas en Neo4j")
    neo4j_sub = p_neo4j.add_subparsers(dest="neo4j_command", required=True)

    pn_query = neo4j_sub.add_parser("query", help="Ejecuta una sentencia Cypher con las credenciales del entorno")
    pn_query.add_argument("--cypher", required=True, help="Instruccion Cypher a ejecutar")
    pn_query.add_argument(
        "--param",
        action="append",
        help="Parametro clave=valor. Puede repetirse.",
    )
    pn_query.add_argument("--database", default=None, help="Base de datos (default: NEO4J_DATABASE o neo4j)")
    pn_query.set_defaults(func=cmd_neo4j_query, neo4j_command="query")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.env)
    log_level = args.log_level or settings.server.log_level
    if args.command != "serve":
        # The server configures logging itself when backend.app is imported
        configure_logging(log_level, settings.server.log_dir)
    args.settings = settings
    args.logger = structlog.get_logger("bridge.cli")

    args.logger.info(
        "command.start",
        command=args.command,
        neo4j_command=getattr(args, "neo4j_command", None),
    )
    try:
        args.func(args)
    except SystemExit:
        raise
    except Exception:
        args.logger.exception("command.error", command=args.command)
        raise
    args.logger.info("command.complete", command=args.command)
    return 0


if __name__ == "__main__":
    sys.exit(main())
