from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import structlog

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# backend.app builds a module-level app on import: keep it quiet and offline
os.environ["LOG_DIR"] = ""
os.environ["STATIC_DIR"] = ""
for _var in ("API_KEY", "NEO4J_URI", "NEO4J_USER", "NEO4J_USERNAME", "NEO4J_PASSWORD", "CYPHER_DENYLIST"):
    os.environ.pop(_var, None)

from bridge.clients import PROBE_QUERY, ConnectionManager  # noqa: E402


class FakeResult:
    def __init__(self, records: List[Any], summary: Any = None) -> None:
        self._records = list(records)
        self._summary = summary
        self.consumed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self._records:
            yield record

    async def consume(self):
        self.consumed = True
        return self._summary


class FakeSession:
    def __init__(self, driver: "FakeDriver", **kwargs: Any) -> None:
        self._driver = driver
        self.kwargs = kwargs
        self.queries: List[tuple] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    async def run(self, query: Any, parameters: Optional[Dict[str, Any]] = None):
        text = getattr(query, "text", query)
        self.queries.append((text, parameters))
        driver = self._driver
        if text == PROBE_QUERY:
            if driver.probe_error is not None:
                raise driver.probe_error
            return FakeResult([], driver.summary)
        if driver.delay:
            await asyncio.sleep(driver.delay)
        if driver.run_error is not None:
            raise driver.run_error
        return FakeResult(driver.records, driver.summary)


class FakeDriver:
    def __init__(
        self,
        records: Optional[List[Any]] = None,
        summary: Any = None,
        probe_error: Optional[Exception] = None,
        run_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.records = records or []
        self.summary = summary if summary is not None else make_summary()
        self.probe_error = probe_error
        self.run_error = run_error
        self.close_error = close_error
        self.delay = delay
        self.sessions: List[FakeSession] = []
        self.closed = False

    def session(self, **kwargs: Any) -> FakeSession:
        session = FakeSession(self, **kwargs)
        self.sessions.append(session)
        return session

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeDriverFactory:
    """Sustituye a AsyncGraphDatabase.driver y recuerda cada driver creado."""

    def __init__(self, **driver_kwargs: Any) -> None:
        self.driver_kwargs = driver_kwargs
        self.calls: List[Dict[str, Any]] = []
        self.drivers: List[FakeDriver] = []

    def __call__(self, uri: str, auth: Any = None, **options: Any) -> FakeDriver:
        self.calls.append({"uri": uri, "auth": auth, "options": options})
        driver = FakeDriver(**self.driver_kwargs)
        self.drivers.append(driver)
        return driver

    @property
    def last(self) -> FakeDriver:
        return self.drivers[-1]


def make_summary(query_type: str = "r", **counters: int) -> SimpleNamespace:
    return SimpleNamespace(
        query_type=query_type,
        counters=SimpleNamespace(**counters),
        result_available_after=3,
        result_consumed_after=1,
    )


@pytest.fixture(autouse=True)
def uncached_loggers() -> None:
    # capture_logs() only sees loggers that are not cached on first use
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def driver_factory() -> FakeDriverFactory:
    return FakeDriverFactory()


@pytest.fixture
def manager(driver_factory: FakeDriverFactory) -> ConnectionManager:
    return ConnectionManager(driver_factory=driver_factory, query_timeout=5.0)
