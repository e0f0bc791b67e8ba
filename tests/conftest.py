"""
Pytest fixtures for balance engine tests. Each test gets a temporary SQLite DB
and a controllable clock.
"""

from __future__ import annotations

import itertools

import pytest

START_TS = 1_700_000_000


class FakeClock:
    """Callable clock for Database / engine components; advance() moves time forward."""

    def __init__(self, start: float = START_TS) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock, monkeypatch):
    """Fresh SQLite database with schema. Unset DATABASE_URL so nothing leaks in from the env."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("BALANCE_DB_URL", raising=False)

    from backend_balance.database import get_database

    database = get_database(f"sqlite:///{tmp_path / 'balance.db'}", clock=clock)
    yield database
    database.dispose()


@pytest.fixture
def service(db, clock):
    from backend_balance.service import BalanceService

    return BalanceService(db, clock=clock)


@pytest.fixture
def make_user(db, clock):
    """Factory: make_user(freedom=..., security=...) inserts a user and returns it."""
    from backend_balance.database.models import User

    counter = itertools.count(1)

    def _make(
        freedom: int = 50,
        security: int = 50,
        reputation: int = 0,
        is_active: bool = True,
        created_at: int | None = None,
        username: str | None = None,
    ) -> User:
        return db.add_user(
            User(
                id=None,
                username=username or f"user{next(counter)}",
                freedom_score=freedom,
                security_score=security,
                reputation_score=reputation,
                is_active=is_active,
                created_at=created_at if created_at is not None else int(clock()),
            )
        )

    return _make


@pytest.fixture
def client(service):
    """FastAPI TestClient over the test service; the scheduler stays off."""
    from fastapi.testclient import TestClient

    from backend_balance.api_server.server import create_app
    from backend_balance.config.settings import Settings

    settings = Settings(database_url=service.db.url, scheduler_enabled=False)
    app = create_app(settings=settings, service=service)
    with TestClient(app) as test_client:
        yield test_client
