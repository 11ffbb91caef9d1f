import importlib
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

from tests.db_utils import postgres_test_database


def _setup_app(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    os.environ["SECRET_KEY"] = "test-secret"

    import app.branchstock.core.config as config
    import app.branchstock.db.session as session
    import app.main as main

    importlib.reload(config)
    importlib.reload(session)
    importlib.reload(main)

    return main.create_app(), session


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@pytest.fixture()
def database_url(tmp_path: Path):
    base_url = os.getenv("DATABASE_URL", "")
    if base_url.startswith("postgres"):
        with postgres_test_database(base_url) as url:
            yield url
        return
    yield f"sqlite+pysqlite:///{tmp_path / 'test.db'}"


@pytest.fixture()
def client(database_url: str):
    _run_migrations(database_url)
    app, session = _setup_app(database_url)

    from app.branchstock.core.metrics import metrics

    metrics.reset()
    with TestClient(app) as client:
        yield client

    session.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.branchstock.db.session import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
