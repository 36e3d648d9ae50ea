import pytest

from tilesync.config_loader import BreakpointConfig
from tilesync.layout.grid import GridModel
from tilesync.storage.kv_store import MemoryKeyValueStore
from tilesync.storage.local_cache import LocalCacheGateway
from tilesync.sync.remote import MemoryDocumentStore, RemoteWriteError


FIVE_BREAKPOINTS = [
    BreakpointConfig(name="lg", min_width=1200, columns=12),
    BreakpointConfig(name="md", min_width=996, columns=10),
    BreakpointConfig(name="sm", min_width=768, columns=6),
    BreakpointConfig(name="xs", min_width=480, columns=4),
    BreakpointConfig(name="xxs", min_width=0, columns=2),
]


class RecordingStore(MemoryDocumentStore):
    """MemoryDocumentStore that records writes and can be told to fail them."""

    def __init__(self):
        super().__init__()
        self.writes = []
        self.deletes = []
        self.fail_writes = False
        self.fail_paths = set()

    async def write(self, path, value):
        self.writes.append(path)
        if self.fail_writes or path in self.fail_paths:
            raise RemoteWriteError(path, "simulated network error")
        await super().write(path, value)

    async def delete(self, path):
        self.deletes.append(path)
        if self.fail_writes:
            raise RemoteWriteError(path, "simulated network error")
        await super().delete(path)


@pytest.fixture
def five_tier_grid():
    return GridModel(FIVE_BREAKPOINTS)


@pytest.fixture
def cache():
    return LocalCacheGateway(MemoryKeyValueStore(), key_prefix="test")


@pytest.fixture
def store():
    return RecordingStore()
