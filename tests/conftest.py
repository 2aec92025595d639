"""Pytest configuration and fixtures.

This module provides fixtures for:
- Isolated local storage (one JSON file per test)
- Student directories on both backends (local storage and mongomock)
- A controllable clock for timestamp-sensitive tests
- An HTTP client bound to a fresh portal instance
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import Portal, app
from portal import AccessController, AppState
from storage import LocalStorage
from students import PurchaseVerifier, StudentDirectory

ADMIN_EMAIL = "admin@teacherpoli.com"


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


class FakeClock:
    """Clock that only moves when told to."""

    __test__ = False

    def __init__(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        self.now = now.replace(microsecond=now.microsecond // 1000 * 1000)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StaticVerifier(PurchaseVerifier):
    """Purchase verifier answering from a fixed set of buyers."""

    def __init__(self, buyers=()):
        super().__init__(url=None)
        self.buyers = {b.lower() for b in buyers}

    async def has_purchase(self, email: str) -> bool:
        return email.lower() in self.buyers


@pytest.fixture
def storage_path(tmp_path: Path) -> Path:
    return tmp_path / "storage.json"


@pytest.fixture
def storage(storage_path: Path) -> LocalStorage:
    return LocalStorage(storage_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["teacherpoli_test"]


@pytest.fixture(params=["local", "remote"])
def directory(request, storage: LocalStorage, clock: FakeClock) -> StudentDirectory:
    """Student directory, once per backend."""
    database = request.getfixturevalue("mongo_db") if request.param == "remote" else None
    return StudentDirectory.create(storage, database, verifier=StaticVerifier(), clock=clock)


@pytest.fixture
def local_directory(storage: LocalStorage) -> StudentDirectory:
    return StudentDirectory.create(storage, None, verifier=StaticVerifier(["buyer@example.com"]))


@pytest.fixture
def controller(storage: LocalStorage, local_directory: StudentDirectory) -> AccessController:
    return AccessController(AppState(storage), local_directory, admin_emails=[ADMIN_EMAIL])


@pytest.fixture
def portal(storage: LocalStorage) -> Portal:
    return Portal(
        storage,
        None,
        admin_emails=[ADMIN_EMAIL],
        verifier=StaticVerifier(["buyer@example.com"]),
        delay=0,
    )


@pytest.fixture
def client(portal: Portal) -> Generator[TestClient, None, None]:
    previous = app.state.portal
    app.state.portal = portal
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.state.portal = previous


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    """The HTTP client, signed in as the admin through its bearer token."""
    response = client.post("/auth/login", json={"email": ADMIN_EMAIL})
    assert response.status_code == 200, response.text
    client.headers["Authorization"] = f"Bearer {response.json()['token']}"
    return client
