"""
Módulo bridge - Núcleo del puente HTTP → Neo4j.

Este paquete implementa el gobierno de requests y la traducción de valores
que la capa HTTP (`backend/`) expone:

1. Rate limiting por cliente con ventana fija
2. Autenticación por API key compartida y política CORS
3. Validación estructural del texto Cypher
4. Conexión Neo4j compartida (a lo sumo un driver por proceso)
5. Conversión recursiva de valores del driver a JSON

Arquitectura de capas:
    - Configuración: settings.py, logging_config.py, error_handling.py
    - Gobierno: rate_limiter.py, security.py, validation.py
    - Datos: clients.py, queries.py
"""

__version__ = "1.1.0"

__all__ = [
    # Configuración
    "settings",
    "logging_config",
    "error_handling",
    # Gobierno
    "rate_limiter",
    "security",
    "validation",
    # Datos
    "clients",
    "queries",
]
