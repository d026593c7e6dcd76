"""Pytest fixtures shared across the test suite."""

import pytest

from db import utils as db_utils
from genres.store import ensure_schema


@pytest.fixture(autouse=True)
def reset_database_state():
    """Reset the cached fallback handle between tests."""

    db_utils.set_fallback_connection(None)
    yield
    db_utils.set_fallback_connection(None)


@pytest.fixture
def sqlite_dsn(tmp_path):
    return f"sqlite:///{(tmp_path / 'reference_data.db').as_posix()}"


@pytest.fixture
def db_engine(sqlite_dsn):
    engine = db_utils.build_engine_from_dsn(sqlite_dsn, timeout=1.0)
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def app(tmp_path, sqlite_dsn):
    from web.app_factory import create_app

    flask_app = create_app(
        {
            'TESTING': True,
            'DATABASE_DSN': sqlite_dsn,
            'LOG_FILE': str(tmp_path / 'logs' / 'app.log'),
            'IGDB_CLIENT_ID': 'client',
            'IGDB_CLIENT_SECRET': 'secret',
        }
    )
    yield flask_app
    flask_app.extensions['db_engine'].dispose()
