"""Shared test fixtures."""
import itertools
import json
from datetime import timedelta
from typing import Callable, Dict, Generator, List, Optional, Union

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from mindnest.config import Settings
from mindnest.db.engine import create_schema
from mindnest.models.review import Issue, Review, ReviewFile
from mindnest.models.workspace import File, Workspace
from mindnest.sync.auth import TokenProvider
from mindnest.sync.client import SyncClient
from mindnest.sync.service import SyncService

SERVER_URL = "http://sync.test"
TOKEN = "test-token"


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


# ─── Record factory ───────────────────────────────────────────────────────────

class Seeder:
    """Persists domain records and returns detached copies."""

    def __init__(self, engine):
        self.engine = engine
        self._seq = itertools.count(1)

    def _add(self, record, synced: bool = False):
        if synced:
            record.synced_at = record.updated_at
        with Session(self.engine) as s:
            s.add(record)
            s.commit()
            s.refresh(record)
            s.expunge(record)
        return record

    def workspace(self, synced: bool = False, **fields) -> Workspace:
        n = next(self._seq)
        fields.setdefault("name", f"repo-{n}")
        fields.setdefault("path", f"/src/repo-{n}")
        return self._add(Workspace(**fields), synced)

    def file(self, workspace: Workspace, synced: bool = False, **fields) -> File:
        n = next(self._seq)
        fields.setdefault("path", f"pkg/module_{n}.py")
        fields.setdefault("language", "python")
        return self._add(File(workspace_id=workspace.id, **fields), synced)

    def review(self, workspace: Workspace, synced: bool = False, **fields) -> Review:
        fields.setdefault("review_type", "staged")
        return self._add(Review(workspace_id=workspace.id, **fields), synced)

    def review_file(self, review: Review, file: File, synced: bool = False, **fields) -> ReviewFile:
        return self._add(ReviewFile(review_id=review.id, file_id=file.id, **fields), synced)

    def issue(self, review: Review, file: File, synced: bool = False, **fields) -> Issue:
        n = next(self._seq)
        fields.setdefault("type", "bug")
        fields.setdefault("severity", "medium")
        fields.setdefault("title", f"Issue {n}")
        fields.setdefault("description", "Possible None dereference")
        return self._add(Issue(review_id=review.id, file_id=file.id, **fields), synced)

    def mutate(self, record, delta: timedelta = timedelta(seconds=1)):
        """Simulate the owning service editing a record after it synced."""
        with Session(self.engine) as s:
            row = s.get(type(record), record.id)
            row.updated_at = (row.synced_at or row.updated_at) + delta
            s.add(row)
            s.commit()
            s.refresh(row)
            s.expunge(row)
        return row

    def reload(self, record):
        with Session(self.engine) as s:
            row = s.get(type(record), record.id)
            s.expunge(row)
        return row


@pytest.fixture(name="seed")
def seed_fixture(engine) -> Seeder:
    return Seeder(engine)


# ─── Fake sync server ─────────────────────────────────────────────────────────

class FakeServer:
    """
    httpx.MockTransport handler standing in for the sync server.

    ``responses`` maps an entity id to what the server should do with it:
    an HTTP status code, or "refused" to simulate a connection error.
    Everything else is accepted.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: Dict[str, Union[int, str]] = {}
        self.verify_status = 200
        self.on_push: Optional[Callable[[dict], None]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/auth/verify":
            return httpx.Response(self.verify_status)

        body = json.loads(request.content)
        if self.on_push is not None:
            self.on_push(body)
        outcome = self.responses.get(body.get("id"), 200)
        if outcome == "refused":
            raise httpx.ConnectError("connection refused", request=request)
        if outcome >= 400:
            return httpx.Response(
                outcome,
                json={"status_code": outcome, "error": "rejected", "message": "boom"},
            )
        return httpx.Response(200, json={"success": True, "message": "synced"})

    def pushed(self, endpoint: Optional[str] = None) -> List[str]:
        """Entity ids POSTed, in order, optionally for one endpoint suffix."""
        return [
            json.loads(r.content)["id"]
            for r in self.requests
            if r.method == "POST"
            and (endpoint is None or r.url.path == f"/api/sync/{endpoint}")
        ]


@pytest.fixture(name="server")
def server_fixture() -> FakeServer:
    return FakeServer()


def make_settings(**overrides) -> Settings:
    values = dict(
        server_url=SERVER_URL,
        server_token=TOKEN,
        server_enabled=True,
        db_lock_backoff_seconds=0.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(name="make_service")
def make_service_fixture(engine, server):
    """Factory: SyncService wired to the in-memory store and the fake server."""

    def _make(**setting_overrides) -> SyncService:
        settings = make_settings(**setting_overrides)
        client = SyncClient(
            SERVER_URL,
            TokenProvider(TOKEN),
            transport=httpx.MockTransport(server.handler),
        )
        return SyncService(engine, settings=settings, client=client)

    return _make


@pytest.fixture(name="settings_factory")
def settings_factory_fixture():
    return make_settings
