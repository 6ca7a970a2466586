import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from doodlesync.application.services.sync_state import SyncStateMachine
from doodlesync.application.services.upload_orchestrator import UploadOrchestrator
from doodlesync.core.config import Settings
from doodlesync.db.models import Drawing, MetadataDocument  # noqa: F401  (registers tables)
from doodlesync.infrastructure.render.pillow_renderer import PillowRenderer


def stroke_payload(*strokes) -> bytes:
    """Build a stroke document. Each stroke is a list of (x, y) points."""
    return json.dumps({
        "strokes": [{"points": [list(p) for p in points], "width": 10, "color": "#000000"} for points in strokes]
    }).encode("utf-8")


CAT = stroke_payload([(10, 10), (60, 40), (110, 10)], [(30, 80), (90, 80)])
EMPTY = stroke_payload()


def make_drawing(drawing_id: str = "A", name: str = "Cat", created: int = 1000, data: bytes = CAT, thumbnail: Optional[bytes] = b"thumb-png") -> Drawing:
    created_date = datetime(1970, 1, 1) + timedelta(seconds=created)
    return Drawing(
        id=drawing_id,
        name=name,
        drawing_data=data,
        thumbnail_data=thumbnail,
        created_date=created_date,
        modified_date=created_date,
    )


class FakeObjectStore:
    def __init__(self, resolve_failures: int = 0, fail_prefixes=(), put_gate: Optional[asyncio.Event] = None, empty_resolves: int = 0):
        self.resolve_failures = resolve_failures
        self.empty_resolves = empty_resolves
        self.fail_prefixes = tuple(fail_prefixes)
        self.put_gate = put_gate
        self.put_started = asyncio.Event()
        self.objects: Dict[str, bytes] = {}
        self.puts: List[tuple] = []
        self.resolve_calls: List[str] = []
        self.deleted: List[str] = []
        self.fail_delete = False

    async def put(self, key, data, content_type, metadata, on_progress=None):
        self.puts.append((key, content_type, dict(metadata)))
        self.put_started.set()
        if self.put_gate is not None:
            await self.put_gate.wait()
        if key.startswith(self.fail_prefixes):
            raise RuntimeError(f"network unreachable for {key}")
        if on_progress is not None:
            on_progress(0.5)
            on_progress(0.25)
            on_progress(1.0)
        self.objects[key] = data

    async def resolve_url(self, key):
        self.resolve_calls.append(key)
        if key.startswith("drawings/") and self.resolve_failures > 0:
            self.resolve_failures -= 1
            raise RuntimeError("object not found yet")
        if key.startswith("drawings/") and self.empty_resolves > 0:
            self.empty_resolves -= 1
            return ""
        if key not in self.objects:
            raise RuntimeError(f"no object at {key}")
        return f"https://storage.test/{key}"

    async def delete(self, url):
        if self.fail_delete:
            raise RuntimeError("permission denied")
        self.deleted.append(url)

    async def download(self, url, max_size):
        key = url.replace("https://storage.test/", "")
        data = self.objects[key]
        if len(data) > max_size:
            raise ValueError("too large")
        return data


class FakeMetadataStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.create_calls = 0
        self.deleted: List[str] = []

    async def create_document(self, collection, fields):
        self.create_calls += 1
        if self.fail:
            raise RuntimeError("PERMISSION_DENIED: missing or insufficient permissions")
        document_id = f"doc-{self.create_calls}"
        self.documents[document_id] = {"collection": collection, **fields}
        return document_id

    async def get_document(self, collection, document_id):
        return self.documents.get(document_id)

    async def delete_document(self, collection, document_id):
        self.deleted.append(document_id)
        self.documents.pop(document_id, None)


class FakeSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, drawing_id, success=True, user_id=None, details=None):
        self.entries.append((action, drawing_id, success, details or {}))


@pytest.fixture
def test_settings():
    return Settings(SYNC_TIMEOUT_SEC=None, URL_RESOLVE_RETRY_DELAY_SEC=1.0, URL_RESOLVE_MAX_ATTEMPTS=3, STORAGE_BACKEND="local")


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def metadata_store():
    return FakeMetadataStore()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def orchestrator(object_store, metadata_store, fake_sleep, test_settings):
    return UploadOrchestrator(
        renderer=PillowRenderer(),
        object_store=object_store,
        metadata_store=metadata_store,
        state_machine=SyncStateMachine(),
        settings=test_settings,
        audit_logger=FakeAudit(),
        sleep=fake_sleep,
    )


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session
