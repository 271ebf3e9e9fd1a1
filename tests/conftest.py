# tests/conftest.py
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleetsync.config import Settings
from fleetsync.db import Base, SessionLocal
from fleetsync.models import FleetConnection
import fleetsync.models  # noqa: F401


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = SessionLocal(bind=engine)
    yield session
    session.close()


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        motive_api_base_url="https://motive.test",
        samsara_api_base_url="https://samsara.test",
        provider_max_retries=1,
        jwt_secret="test-secret",
    )


@pytest.fixture()
def add_connection(db):
    def _add(tenant_id, provider, token="tok", enabled=True, use_sandbox=False):
        conn = FleetConnection(
            tenant_id=tenant_id, provider=provider, access_token=token, enabled=enabled, use_sandbox=use_sandbox,
        )
        db.add(conn)
        db.commit()
        db.refresh(conn)
        return conn
    return _add


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr("fleetsync.utils.time.sleep", lambda s: None)
