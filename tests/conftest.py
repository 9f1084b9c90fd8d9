import os
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from newsletter.db import models  # noqa: F401
from newsletter.db.base import Base
from newsletter.db.session import create_db_engine, make_session_factory

TEST_USER_ID = UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine; threads get their own connections."""
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'newsletter.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def client(engine, session_factory, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", str(engine.url))

    from newsletter.core.settings import get_settings

    get_settings.cache_clear()

    from newsletter.api.auth import get_credentials_validator
    from newsletter.api.deps import get_db_factory
    from newsletter.main import app

    def _validate(username: str, password: str) -> UUID:
        from newsletter.api.auth import AuthError

        if (username, password) != ("editor", "s3cret"):
            raise AuthError("Invalid username or password")
        return TEST_USER_ID

    app.dependency_overrides[get_db_factory] = lambda: session_factory
    app.dependency_overrides[get_credentials_validator] = lambda: _validate
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

    get_settings.cache_clear()
    os.environ.pop("DATABASE_URL", None)
