from __future__ import annotations

import json
from typing import Any, Dict

import pytest

import main
from bridge.clients import QueryResult


@pytest.fixture(autouse=True)
def _quiet_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setenv("NEO4J_URI", "bolt://db:7687")
    monkeypatch.setenv("NEO4J_USER", "neo4j")
    monkeypatch.setenv("NEO4J_PASSWORD", "secret")
    monkeypatch.delenv("CYPHER_DENYLIST", raising=False)


def _json_block(out: str) -> Any:
    # structlog may share stdout with the payload; the dump is the block from "{" to "}"
    lines = out.splitlines()
    start = lines.index("{")
    end = lines.index("}", start)
    return json.loads("\n".join(lines[start:end + 1]))


def test_parse_param_args_coerces_values() -> None:
    params = main._parse_param_args(["limit=5", "ratio=0.5", "active=true", "name=Ada", "empty=null"])

    assert params == {"limit": 5, "ratio": 0.5, "active": True, "name": "Ada", "empty": None}


@pytest.mark.parametrize("pair", ["novalue", "=5"])
def test_parse_param_args_rejects_malformed(pair: str) -> None:
    with pytest.raises(ValueError):
        main._parse_param_args([pair])


def test_neo4j_query_emits_json(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    last_call: Dict[str, Any] = {}

    async def fake_run_query(settings, cypher, params, database):
        last_call.update({"uri": settings.neo4j.uri, "cypher": cypher, "params": params, "database": database})
        return QueryResult(records=[{"n": 1}], summary={"queryType": "r"})

    monkeypatch.setattr(main, "_run_query", fake_run_query)

    exit_code = main.main([
        "neo4j",
        "query",
        "--cypher",
        "RETURN $limit AS n",
        "--param",
        "limit=5",
        "--database",
        "movies",
    ])

    assert exit_code == 0
    payload = _json_block(capsys.readouterr().out)
    assert payload == {"records": [{"n": 1}], "summary": {"queryType": "r"}}
    assert last_call == {
        "uri": "bolt://db:7687",
        "cypher": "RETURN $limit AS n",
        "params": {"limit": 5},
        "database": "movies",
    }


def test_neo4j_query_rejects_invalid_param(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main.main(["neo4j", "query", "--cypher", "RETURN 1", "--param", "oops"])

    assert exc_info.value.code == 1
    assert "Parametro invalido" in capsys.readouterr().out


def test_neo4j_query_uses_cypher_validator(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        main.main(["neo4j", "query", "--cypher", "x" * 10_001])

    assert "too long" in capsys.readouterr().out


def test_neo4j_query_requires_credentials(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.delenv("NEO4J_PASSWORD")

    with pytest.raises(SystemExit):
        main.main(["neo4j", "query", "--cypher", "RETURN 1"])

    assert "NEO4J_PASSWORD" in capsys.readouterr().out


def test_serve_runs_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: Dict[str, Any] = {}
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))

    assert main.main(["serve", "--port", "8123"]) == 0

    assert calls["app"] == "backend.app:app"
    assert calls["port"] == 8123
    assert calls["host"] == "0.0.0.0"
