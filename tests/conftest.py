from __future__ import annotations

from collections.abc import Callable, Generator, Mapping

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from demand_forecast.db.base import Base
from demand_forecast.db.dependencies import get_db_session
import demand_forecast.models.entities  # noqa: F401
from demand_forecast.main import create_app


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLookup:
    """In-memory identifier lookup that records calls and can be told to fail."""

    def __init__(self, names: Mapping[str, str] | None = None) -> None:
        self.names = dict(names or {})
        self.fail_load = False
        self.fail_ids: set[str] = set()
        self.load_calls = 0
        self.name_calls: list[str] = []
        self.id_calls: list[str] = []

    async def load_all(self) -> dict[str, str]:
        self.load_calls += 1
        if self.fail_load:
            raise ConnectionError("lookup source unavailable")
        return dict(self.names)

    async def name_for(self, identifier: str) -> str | None:
        self.name_calls.append(identifier)
        if identifier in self.fail_ids:
            raise TimeoutError("lookup timed out")
        return self.names.get(identifier)

    async def id_for(self, name: str) -> str | None:
        self.id_calls.append(name)
        for identifier, known in self.names.items():
            if known.lower() == name.strip().lower():
                return identifier
        return None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_lookup() -> Callable[..., FakeLookup]:
    return FakeLookup


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session, session_factory: sessionmaker[Session]) -> Generator[TestClient, None, None]:
    app = create_app(session_factory=session_factory)

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
