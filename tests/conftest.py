"""Pytest fixtures shared across the test suite."""

import pytest

from db import utils as db_utils
from reconcile.service import MigrationService
from tests.app_helpers import FakeProvider, get_test_db_engine


@pytest.fixture(autouse=True)
def reset_database_state():
    """Drop the cached fallback engine between tests."""

    db_utils.set_fallback_engine(None)
    yield
    db_utils.set_fallback_engine(None)


@pytest.fixture
def engine(tmp_path):
    engine_wrapper = get_test_db_engine(tmp_path)
    yield engine_wrapper
    engine_wrapper.dispose()


@pytest.fixture
def provider():
    return FakeProvider("igdb")


@pytest.fixture
def service(engine, provider):
    return MigrationService(engine, provider)


@pytest.fixture
def app(tmp_path, engine, provider):
    from web.app_factory import create_app

    flask_app = create_app(
        {
            'TESTING': True,
            'TRUST_USER_HEADER': True,
            'LOG_FILE': str(tmp_path / 'logs' / 'app.log'),
        },
        engine=engine,
        current_provider=provider,
    )
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
