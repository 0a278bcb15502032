"""
Configuración de logging estructurado con structlog.

Este módulo configura el sistema de logging para:
1. Salida a consola (formato legible, coloreado)
2. Salida a archivo (JSONL, rotación diaria) cuando LOG_DIR está definido

Características:
    - Eventos con nombre punteado (request.start, neo4j.query.failure, ...)
    - Contexto por request vía structlog.contextvars (request_id, client)
    - Integración con bibliotecas externas (uvicorn, neo4j)

Uso:
    from bridge.logging_config import configure_logging
    configure_logging(log_level="INFO", log_dir="logs")

Formato de logs JSONL:
    {"event": "neo4j.connect.success", "uri": "bolt://...", "timestamp": "..."}
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import structlog
import structlog.dev
import structlog.stdlib

LOG_FILENAME = "bridge.jsonl"
BACKUP_COUNT = 30  # días de retención


def _build_file_handler(log_dir: Path) -> logging.Handler:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return logging.handlers.TimedRotatingFileHandler(
            filename=log_dir / LOG_FILENAME,
            when="midnight",
            interval=1,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # If the directory is not writable, keep logging to stderr
        return logging.StreamHandler(sys.stderr)


def configure_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> None:
    """
    Configures structlog and standard logging to output to:
    1. Console (Human readable, colored)
    2. File (JSONL, rotating daily), only when log_dir is set
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplication (e.g. uvicorn default)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(console_handler)

    if log_dir:
        file_handler = _build_file_handler(Path(log_dir))
        file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
        ))
        root_logger.addHandler(file_handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("neo4j").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.get_logger("bridge").info(
        "logging_configured",
        level=logging.getLevelName(level),
        log_dir=log_dir,
    )
