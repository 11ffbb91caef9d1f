"""Per-request accounting of time spent in the database.

The observability middleware opens a window per request; the engine's cursor
events add to it. Outside a window nothing is recorded.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass


@dataclass
class DbUsage:
    queries: int = 0
    elapsed_ms: float = 0.0


_usage: ContextVar[DbUsage | None] = ContextVar("db_usage", default=None)


def start_db_timer() -> object:
    return _usage.set(DbUsage())


def stop_db_timer(token: object) -> None:
    _usage.reset(token)


def is_timing() -> bool:
    return _usage.get() is not None


def add_db_time(delta_ms: float) -> None:
    usage = _usage.get()
    if usage is None:
        return
    usage.queries += 1
    usage.elapsed_ms += delta_ms


def get_db_time_ms() -> float | None:
    usage = _usage.get()
    return usage.elapsed_ms if usage is not None else None


def get_db_query_count() -> int | None:
    usage = _usage.get()
    return usage.queries if usage is not None else None
