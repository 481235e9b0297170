import pytest

from office_hours_queue.coordinator import QueueCoordinator
from office_hours_queue.sqlite_store import SqliteStore
from office_hours_queue.store import MemoryStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(tmp_path / "queue.sqlite3", busy_timeout=30.0)


@pytest.fixture
def coordinator(store):
    c = QueueCoordinator(store)
    c.register_professor("smith", "Dr. Smith", "B-204")
    return c
