import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.core import dependencies
from app.core.config import get_settings
from app.core.flags import get_flags
from app.core.storage import LocalStorage
from app.services.conversation_archive import ConversationArchiver, get_archiver
from app.services.conversation_store import get_conversation_store
from app.services.session_manager import SessionManager, get_session_manager
from app.services.vehicle_collector import VehicleCollector
from app.tools.registry import init_tools


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeCatalog:
    makes = {2019: ["Honda", "Toyota"], 2021: ["Ford", "Honda", "Toyota"]}
    models = {"Honda": ["Accord", "Civic"], "Toyota": ["Camry", "Corolla"], "Ford": ["F-150"]}
    trims = {"Civic": ["EX", "LX", "Sport"], "Camry": ["LE", "SE"]}

    def __init__(self):
        self.calls = []

    async def get_makes(self, year):
        self.calls.append(("makes", year))
        return self.makes.get(year, [])

    async def get_models(self, year, make):
        self.calls.append(("models", year, make))
        return self.models.get(make, [])

    async def get_trims(self, year, make, model):
        self.calls.append(("trims", year, make, model))
        return self.trims.get(model, [])

    async def validate_zip_code(self, zip_code):
        if zip_code == "90210":
            return {"valid": True, "zip_code": "90210", "data": {"city": "Beverly Hills", "state": "CA"}}
        return {"valid": False, "zip_code": zip_code, "error": "This zip code is not valid or not serviceable."}


class FakeEngine:
    """In-memory realtime engine. Tests push raw events with feed()."""

    def __init__(self):
        self.connected = False
        self.disconnects = 0
        self.audio: list[bytes] = []
        self.texts: list[str] = []
        self.tool_results: list[tuple[str, str]] = []
        self._queue: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.disconnects += 1
        self.connected = False
        self._queue.put_nowait(None)

    async def send_audio(self, pcm):
        self.audio.append(pcm)

    async def send_text(self, text):
        self.texts.append(text)

    async def send_tool_result(self, call_id, output):
        self.tool_results.append((call_id, output))

    def feed(self, raw):
        self._queue.put_nowait(raw)

    async def events(self):
        while True:
            raw = await self._queue.get()
            if raw is None:
                return
            yield raw


class FailingStorage(LocalStorage):
    """Local storage that fails the first `failures` writes."""

    def __init__(self, base_path, failures=1):
        super().__init__(base_path)
        self.failures = failures
        self.writes = 0

    async def write(self, key, data, content_type="application/json"):
        self.writes += 1
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk full")
        return await super().write(key, data, content_type)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CONVERSATIONS_DIR", str(tmp_path / "conversations"))
    monkeypatch.setenv("FF_USE_S3", "false")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    caches = (
        get_settings, get_flags, get_session_manager, get_archiver,
        get_conversation_store, dependencies.get_vehicles,
    )
    for cached in caches:
        cached.cache_clear()
    init_tools()
    yield
    for cached in caches:
        cached.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(clock):
    return SessionManager(timeout_ms=60_000, max_sessions=3, cleanup_interval_ms=1_000, clock=clock)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def vehicles(sessions, catalog):
    return VehicleCollector(sessions, catalog)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "archive"))


@pytest.fixture
def archiver(storage):
    return ConversationArchiver(storage=storage, record_audio=True, mask_pii=True, save_extracted_data=True)


@pytest.fixture
def engines():
    return []


@pytest.fixture
def client(catalog, engines):
    from app.factory import create_app

    def engine_factory():
        engine = FakeEngine()
        engines.append(engine)
        return engine

    app = create_app()
    app.dependency_overrides[dependencies.get_engine_factory] = lambda: engine_factory
    app.dependency_overrides[dependencies.get_vehicles] = lambda: VehicleCollector(get_session_manager(), catalog)

    with TestClient(app) as c:
        yield c


@pytest.fixture
def flaky_storage(tmp_path):
    return FailingStorage(str(tmp_path / "flaky"), failures=1)


@pytest.fixture
def engine():
    return FakeEngine()
