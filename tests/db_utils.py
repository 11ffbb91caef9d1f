from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url


def _admin_engine(base_url: str):
    return create_engine(make_url(base_url).set(database="postgres"), isolation_level="AUTOCOMMIT", future=True)


@contextmanager
def postgres_test_database(base_url: str) -> Iterator[str]:
    """Create a throwaway database next to ``base_url`` and drop it afterwards."""
    db_name = f"branchstock_test_{uuid.uuid4().hex}"
    engine = _admin_engine(base_url)
    with engine.connect() as conn:
        conn.execute(text(f'CREATE DATABASE "{db_name}"'))
    engine.dispose()

    try:
        yield make_url(base_url).set(database=db_name).render_as_string(hide_password=False)
    finally:
        engine = _admin_engine(base_url)
        with engine.connect() as conn:
            conn.execute(
                text("SELECT pg_terminate_backend(pid) FROM pg_stat_activity WHERE datname = :db_name"),
                {"db_name": db_name},
            )
            conn.execute(text(f'DROP DATABASE IF EXISTS "{db_name}"'))
        engine.dispose()
