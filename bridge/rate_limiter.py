"""
Rate limiter en memoria por cliente (ventana fija con expiración perezosa).

Cada cliente (IP) tiene un RateRecord {count, reset_time}. La ventana se
reinicia en el primer request posterior a reset_time; un barrido periódico
elimina los registros expirados para que la memoria solo crezca con clientes
activos.

No se persiste ni se coordina entre procesos: reiniciar el servidor limpia
todos los contadores.

Example:
    >>> limiter = RateLimiter(window_ms=60_000, max_requests=100)
    >>> decision = limiter.check("10.0.0.7")
    >>> decision.allowed
    True
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

_logger = structlog.get_logger("bridge.rate_limit")


def _now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RateRecord:
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0


ALLOW = RateDecision(allowed=True)


class RateLimiter:
    """
    Contador por cliente con ventana `window_ms` y techo `max_requests`.

    Thread-safe: el mapa se muta en cada request y en el barrido, ambos
    bajo el mismo lock.
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_requests: int = 100,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms debe ser positivo")
        if max_requests < 1:
            raise ValueError("max_requests debe ser >= 1")
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock or _now_ms
        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()

    def check(self, client_id: str) -> RateDecision:
        now = self._clock()
        with self._lock:
            record = self._records.get(client_id)
            if record is None:
                self._records[client_id] = RateRecord(count=1, reset_time=now + self.window_ms)
                return ALLOW

            if now > record.reset_time:
                record.count = 1
                record.reset_time = now + self.window_ms
                return ALLOW

            record.count += 1
            if record.count > self.max_requests:
                retry_after = math.ceil((record.reset_time - now) / 1000.0)
                return RateDecision(allowed=False, retry_after=max(retry_after, 1))
            return ALLOW

    def sweep(self) -> int:
        """Elimina registros cuya ventana ya expiró. Retorna cuántos se borraron."""
        now = self._clock()
        with self._lock:
            expired = [key for key, record in self._records.items() if now > record.reset_time]
            for key in expired:
                del self._records[key]
        if expired:
            _logger.debug("rate_limit.sweep", removed=len(expired), remaining=len(self._records))
        return len(expired)

    def get(self, client_id: str) -> Optional[RateRecord]:
        with self._lock:
            record = self._records.get(client_id)
            return RateRecord(record.count, record.reset_time) if record else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
