"""
Módulo Backend - API REST del Neo4j Web Bridge.

Este paquete contiene el servidor FastAPI que expone el núcleo `bridge/`
como endpoints HTTP.

Componentes:
    - app.py: Fábrica de la aplicación, lifespan y handlers de error
    - auth.py: Dependencia de API key (X-API-Key / Authorization: Bearer)
    - middleware.py: Request ID, headers de seguridad, CORS y rate limiting
    - routers/: health (público) y neo4j (protegido)

Arquitectura:
    Cliente web → Backend (FastAPI) → Core (bridge/) → Neo4j

Ejecución:
    uvicorn backend.app:app --port 3000
"""
