from __future__ import annotations

from typing import Any, Callable, List

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from backend.app import create_app
from backend.auth import MSG_KEY_INVALID, MSG_KEY_REQUIRED
from backend.middleware import MAX_BODY_BYTES, MSG_BODY_TOO_LARGE
from bridge.clients import ConnectionManager
from bridge.rate_limiter import RateLimiter
from bridge.security import SECURITY_HEADERS
from bridge.settings import AppSettings, Neo4jSettings, SecuritySettings, ServerSettings
from bridge.validation import DEFAULT_ADMIN_PATTERNS, MSG_FORBIDDEN, MSG_NOT_A_STRING
from conftest import FakeDriverFactory

API_KEY = "test-key"
AUTH = {"X-API-Key": API_KEY}
CONNECT_BODY = {"uri": "neo4j+s://db.example:7687", "username": "neo4j", "password": "secret"}


def _settings(
    api_key: str | None = API_KEY,
    cors_origins: List[str] | None = None,
    cypher_denylist: List[str] | None = None,
) -> AppSettings:
    return AppSettings(
        neo4j=Neo4jSettings(uri=None, username=None, password=None),
        security=SecuritySettings(
            api_key=api_key,
            cors_origins=cors_origins or ["*"],
            cypher_denylist=list(cypher_denylist or []),
        ),
        server=ServerSettings(static_dir=None, log_dir=None),
    )


@pytest.fixture
def make_client(driver_factory: FakeDriverFactory):
    opened: List[TestClient] = []

    def _make(settings: AppSettings | None = None, limiter: RateLimiter | None = None, **client_kwargs: Any) -> TestClient:
        manager = ConnectionManager(driver_factory=driver_factory)
        app = create_app(settings or _settings(), manager=manager, limiter=limiter)
        client = TestClient(app, **client_kwargs)
        client.__enter__()
        opened.append(client)
        return client

    yield _make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


def _connect(client: TestClient) -> None:
    response = client.post("/api/connect", json=CONNECT_BODY, headers=AUTH)
    assert response.status_code == 200, response.text


# =============================================================================
# Health / root
# =============================================================================

def test_root_lists_endpoints(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Neo4j Web Bridge"
    assert body["status"] == "running"
    assert body["endpoints"]["query"] == "POST /api/query"


def test_health_is_public(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["connected"] is False
    assert body["autoConnect"] is False
    assert body["security"] == {"apiKeyRequired": True, "corsOrigins": "all"}
    assert body["timestamp"]


def test_health_counts_configured_origins(make_client) -> None:
    client = make_client(_settings(api_key=None, cors_origins=["https://a.example", "https://b.example"]))

    body = client.get("/api/health").json()

    assert body["security"] == {"apiKeyRequired": False, "corsOrigins": 2}


def test_health_auto_connect_needs_uri_and_password(make_client, driver_factory: FakeDriverFactory) -> None:
    settings = _settings()
    settings.neo4j = Neo4jSettings(uri="bolt://db:7687", username=None, password="secret")
    client = make_client(settings)

    body = client.get("/api/health").json()

    assert body["autoConnect"] is True
    # No username: the startup connection is not attempted
    assert driver_factory.calls == []


def test_health_reflects_connection(client: TestClient) -> None:
    _connect(client)

    assert client.get("/api/health").json()["connected"] is True


# =============================================================================
# Authentication
# =============================================================================

def test_missing_key_is_401(client: TestClient) -> None:
    response = client.post("/api/query", json={"cypher": "RETURN 1"})

    assert response.status_code == 401
    assert response.json() == {"error": MSG_KEY_REQUIRED}


def test_wrong_key_is_403(client: TestClient) -> None:
    response = client.post("/api/query", json={"cypher": "RETURN 1"}, headers={"X-API-Key": "nope"})

    assert response.status_code == 403
    assert response.json() == {"error": MSG_KEY_INVALID}


def test_bearer_token_is_accepted(client: TestClient) -> None:
    response = client.get("/api/info", headers={"Authorization": f"Bearer {API_KEY}"})

    # Authenticated; fails only because nothing is connected yet
    assert response.status_code == 400
    assert response.json() == {"error": "Not connected to Neo4j"}


def test_open_mode_without_api_key(make_client) -> None:
    client = make_client(_settings(api_key=None))

    response = client.post("/api/query", json={"cypher": "RETURN 1"})

    assert response.status_code == 400
    assert response.json() == {"error": "Not connected to Neo4j. Please connect first."}


def test_open_mode_warning_is_logged_once_at_startup(make_client) -> None:
    with capture_logs() as logs:
        client = make_client(_settings(api_key=None))
        for _ in range(3):
            client.post("/api/query", json={"cypher": "RETURN 1"})

    warnings = [entry for entry in logs if entry["event"] == "auth.insecure_mode"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"


def test_no_open_mode_warning_with_api_key(make_client) -> None:
    with capture_logs() as logs:
        make_client()

    assert not [entry for entry in logs if entry["event"] == "auth.insecure_mode"]


# =============================================================================
# Connect / query / info / disconnect
# =============================================================================

def test_connect_requires_fields(client: TestClient) -> None:
    response = client.post("/api/connect", json={"uri": "bolt://db:7687"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: uri, username, password"}


def test_connect_success_reports_effective_uri(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    response = client.post("/api/connect", json=CONNECT_BODY, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Connected successfully",
        "uri": "bolt://db.example:7687",
        "database": "neo4j",
    }
    assert driver_factory.calls[0]["auth"] == ("neo4j", "secret")


def test_connect_failure_is_500(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    driver_factory.driver_kwargs = {"probe_error": RuntimeError("Could not resolve host")}

    response = client.post("/api/connect", json=CONNECT_BODY, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Could not resolve host"}
    assert client.get("/api/health").json()["connected"] is False


def test_query_returns_converted_records(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    driver_factory.driver_kwargs = {"records": [{"name": "Alice"}, {"name": "Bob"}]}
    _connect(client)

    response = client.post(
        "/api/query",
        json={"cypher": "MATCH (p:Person) RETURN p.name AS name", "params": {"limit": 2}, "database": "people"},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["records"] == [{"name": "Alice"}, {"name": "Bob"}]
    assert body["summary"]["queryType"] == "r"
    session = driver_factory.last.sessions[-1]
    assert session.kwargs == {"database": "people"}
    assert session.queries == [("MATCH (p:Person) RETURN p.name AS name", {"limit": 2})]


def test_query_checks_connection_before_validation(client: TestClient) -> None:
    response = client.post("/api/query", json={"cypher": ""}, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": "Not connected to Neo4j. Please connect first."}


@pytest.mark.parametrize("body", [{}, {"cypher": ""}, {"cypher": 123}, {"cypher": None}])
def test_query_rejects_invalid_cypher(client: TestClient, body) -> None:
    _connect(client)

    response = client.post("/api/query", json=body, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": MSG_NOT_A_STRING}


def test_query_rejects_overlong_cypher(client: TestClient) -> None:
    _connect(client)

    response = client.post("/api/query", json={"cypher": "x" * 10_001}, headers=AUTH)

    assert response.status_code == 400
    assert "too long" in response.json()["error"]


def test_query_denylist(make_client) -> None:
    client = make_client(_settings(cypher_denylist=list(DEFAULT_ADMIN_PATTERNS)))
    _connect(client)

    response = client.post("/api/query", json={"cypher": "CALL dbms.security.listUsers()"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": MSG_FORBIDDEN}


def test_query_database_error_is_500(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    driver_factory.driver_kwargs = {"run_error": RuntimeError("Invalid input 'MATC'")}
    _connect(client)

    response = client.post("/api/query", json={"cypher": "MATC (n) RETURN n"}, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Invalid input 'MATC'"}


def test_info_returns_components(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    driver_factory.driver_kwargs = {
        "records": [{"name": "Neo4j Kernel", "versions": ["5.20.0"], "edition": "enterprise"}],
    }
    _connect(client)

    response = client.get("/api/info", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "info": [{"name": "Neo4j Kernel", "versions": ["5.20.0"], "edition": "enterprise"}],
    }


def test_disconnect_then_query_is_not_connected(client: TestClient, driver_factory: FakeDriverFactory) -> None:
    _connect(client)

    response = client.post("/api/disconnect", headers=AUTH)
    assert response.json() == {"success": True, "message": "Disconnected"}
    assert driver_factory.last.closed

    response = client.post("/api/query", json={"cypher": "RETURN 1"}, headers=AUTH)
    assert response.status_code == 400


# =============================================================================
# Rate limiting
# =============================================================================

def test_rate_limit_returns_429(make_client) -> None:
    client = make_client(limiter=RateLimiter(window_ms=60_000, max_requests=2))

    assert client.get("/api/health").status_code == 200
    assert client.get("/api/health").status_code == 200
    response = client.get("/api/health")

    assert response.status_code == 429
    body = response.json()
    assert body["error"]
    assert body["retryAfter"] >= 1
    assert response.headers["Retry-After"] == str(body["retryAfter"])


def test_rate_limit_only_covers_api_paths(make_client) -> None:
    client = make_client(limiter=RateLimiter(window_ms=60_000, max_requests=1))

    for _ in range(3):
        assert client.get("/").status_code == 200


# =============================================================================
# CORS and headers
# =============================================================================

def test_cors_rejects_unlisted_origin(make_client) -> None:
    client = make_client(_settings(cors_origins=["https://app.example"]))

    response = client.get("/api/health", headers={"Origin": "https://evil.example"})

    assert response.status_code == 403
    assert response.json() == {"error": "Not allowed by CORS"}


def test_cors_rejection_is_logged(make_client) -> None:
    client = make_client(_settings(cors_origins=["https://app.example"]))

    with capture_logs() as logs:
        client.get("/api/health", headers={"Origin": "https://evil.example"})

    blocked = [entry for entry in logs if entry["event"] == "cors.blocked"]
    assert len(blocked) == 1
    assert blocked[0]["origin"] == "https://evil.example"
    assert blocked[0]["path"] == "/api/health"


def test_cors_reflects_allowed_origin(make_client) -> None:
    client = make_client(_settings(cors_origins=["https://app.example"]))

    response = client.get("/api/health", headers={"Origin": "https://app.example"})

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "https://app.example"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert "Origin" in response.headers["Vary"]


def test_cors_allows_requests_without_origin(make_client) -> None:
    client = make_client(_settings(cors_origins=["https://app.example"]))

    assert client.get("/api/health").status_code == 200


def test_cors_preflight(client: TestClient) -> None:
    response = client.options(
        "/api/query",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "X-API-Key",
        },
    )

    assert response.status_code == 200
    assert "POST" in response.headers["Access-Control-Allow-Methods"]
    assert "x-api-key" in response.headers["Access-Control-Allow-Headers"].lower()
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"


@pytest.mark.parametrize("path", ["/", "/api/health", "/api/query"])
def test_security_headers_present(client: TestClient, path: str) -> None:
    response = client.get(path)

    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value
    assert response.headers["X-Request-ID"]


# =============================================================================
# Error bodies
# =============================================================================

def test_unknown_route_is_json(client: TestClient) -> None:
    response = client.get("/api/nope", headers=AUTH)

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_malformed_json_is_400(client: TestClient) -> None:
    response = client.post(
        "/api/query",
        content="{not json",
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert isinstance(response.json()["error"], str)


def test_unexpected_error_is_generic_500(make_client, monkeypatch: pytest.MonkeyPatch) -> None:
    client = make_client(_settings(api_key=None), raise_server_exceptions=False)
    _connect(client)

    async def boom(*_args, **_kwargs):
        raise RuntimeError("password=hunter2 leaked")

    monkeypatch.setattr(client.app.state.connections, "server_info", boom)

    response = client.get("/api/info")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_declared_oversized_body_is_413(client: TestClient) -> None:
    response = client.post(
        "/api/query",
        content=b"x" * (MAX_BODY_BYTES + 1),
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 413
    assert response.json() == {"error": MSG_BODY_TOO_LARGE}


def test_streamed_oversized_body_is_413(client: TestClient) -> None:
    chunk = b"x" * (MAX_BODY_BYTES // 2 + 1)

    response = client.post(
        "/api/query",
        content=iter([chunk, chunk]),
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert "content-length" not in response.request.headers
    assert response.status_code == 413
    assert response.json() == {"error": MSG_BODY_TOO_LARGE}
