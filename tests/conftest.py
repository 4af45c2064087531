# tests/conftest.py

import os

# The engine is created at import time; keep the suite off Postgres
os.environ["DATABASE_URL"] = "sqlite://"

from collections import defaultdict
from contextlib import asynccontextmanager

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from genqueue.api.auth import SupabaseAuth, get_auth, get_current_user
from genqueue.api.routes import get_http_client, get_queue, get_storage
from genqueue.core import config
from genqueue.core.errors import UpstreamError
from genqueue.db import Job, JobStatus, get_db, init_db
from genqueue.main import create_app

USER = {"id": "user-1", "email": "user@example.com"}


class FakeQueue:
    """In-memory stand-in for the Upstash queue."""

    def __init__(self):
        self.lists = defaultdict(list)
        self.fail = False

    def lpush(self, key, payload):
        if self.fail:
            raise UpstreamError("Redis unreachable: connection refused")
        self.lists[key].insert(0, payload)
        return len(self.lists[key])

    def llen(self, key):
        if self.fail:
            raise UpstreamError("Redis unreachable: connection refused")
        return len(self.lists[key])


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.fail = False
        self.fail_remove = False

    def upload(self, bucket, path, data, content_type, upsert=False):
        if self.fail:
            raise UpstreamError("Storage upload failed: HTTP 500")
        self.objects[(bucket, path)] = (data, content_type)
        return path

    def download(self, bucket, path):
        if (bucket, path) not in self.objects:
            raise UpstreamError("Storage download failed: HTTP 404: Object not found")
        return self.objects[(bucket, path)][0]

    def remove(self, bucket, paths):
        if self.fail_remove:
            raise UpstreamError("Storage delete failed: HTTP 500")
        for path in paths:
            self.objects.pop((bucket, path), None)

    def create_signed_url(self, bucket, path, expires_in=3600):
        return f"https://storage.test/{bucket}/{path}?token=signed"


class FakeHttp:
    """
    Routes outbound requests by URL. Each route is a callable taking the
    request and returning an ``httpx.Response`` (or raising).
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def handler(self, request):
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    def client(self):
        return httpx.Client(transport=httpx.MockTransport(self.handler))


def respond(status_code=200, **kwargs):
    return lambda request: httpx.Response(status_code, **kwargs)


def refuse(request):
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture(autouse=True)
def no_webhook_secret(monkeypatch):
    monkeypatch.setattr(config, "REPLICATE_WEBHOOK_SECRET", None)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def http_client(fake_http):
    client = fake_http.client()
    yield client
    client.close()


@asynccontextmanager
async def _no_lifespan(app):
    yield


def _build_app(db, queue, storage, http_client):
    app = create_app(lifespan=_no_lifespan)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_auth] = lambda: SupabaseAuth(
        url="https://supabase.test", api_key="service-key", client=http_client
    )
    return app


@pytest.fixture
def anon_client(db, queue, storage, http_client):
    """Client whose bearer tokens go through (mocked) Supabase Auth."""
    with TestClient(_build_app(db, queue, storage, http_client)) as client:
        yield client


@pytest.fixture
def client(db, queue, storage, http_client):
    app = _build_app(db, queue, storage, http_client)
    app.dependency_overrides[get_current_user] = lambda: USER
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_job(db):
    def _make_job(**overrides):
        values = {
            "user_id": USER["id"],
            "job_type": "image_fast",
            "format": "image",
            "quality": "fast",
            "status": JobStatus.QUEUED,
            "meta": {"prompt": "a lighthouse at dusk", "model_variant": "wan_2_1_1_3b"},
        }
        values.update(overrides)
        job = Job(**values)
        db.add(job)
        db.commit()
        db.refresh(job)
        return job
    return _make_job
