"""Pytest configuration for Paranoia Toolkit."""

import pytest
from sqlalchemy import create_engine, event

from paranoia_toolkit.config import set_config


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers
    config.addinivalue_line("markers", "cascade: mark test as cascade engine test")


def make_sqlite_engine(url="sqlite:///:memory:"):
    """SQLite engine with working SAVEPOINT support.

    pysqlite manages transactions itself and breaks nested transactions, so
    BEGIN is emitted by SQLAlchemy instead.
    """
    engine = create_engine(url)

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def engine():
    """In-memory SQLite engine."""
    engine = make_sqlite_engine()
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def reset_config(monkeypatch):
    """Give every test a fresh configuration."""
    for name in ("PARANOIA_AUTO_COMMIT", "PARANOIA_DEFAULT_COLUMN"):
        monkeypatch.delenv(name, raising=False)
    set_config(None)
    yield
    set_config(None)
