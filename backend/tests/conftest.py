"""
Pytest configuration and shared fixtures for Site Memory tests.
"""

import pytest
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

# Add backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from site_memory.config import KnowledgeConfig, PatternStoreConfig
from site_memory.exceptions import StorageError
from site_memory.knowledge.knowledge_store import KnowledgeStore
from site_memory.observers.api_observer import ApiPatternStore
from site_memory.observers.interaction_observer import InteractionPatternStore
from site_memory.storage import KeyValueStorage, MemoryStorage

# 2024-01-01T00:00:00Z
BASE_TIME_MS = 1_704_067_200_000


# ==================== Test Doubles ====================

class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = BASE_TIME_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now

    def advance_days(self, days: float) -> int:
        return self.advance(int(days * 24 * 60 * 60 * 1000))


class FailingStorage(KeyValueStorage):
    """Storage whose reads and/or writes raise StorageError."""

    def __init__(self, fail_reads: bool = True, fail_writes: bool = True,
                 initial: Optional[Dict[str, Any]] = None):
        self.inner = MemoryStorage(initial)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.fail_remove = False

    async def get(self, key: str) -> Optional[Any]:
        if self.fail_reads:
            raise StorageError("read failed", key=key)
        return await self.inner.get(key)

    async def set(self, values: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise StorageError("write failed", key=",".join(values))
        await self.inner.set(values)

    async def remove(self, keys: Iterable[str]) -> None:
        if self.fail_remove:
            raise StorageError("remove failed")
        await self.inner.remove(keys)


class RecordingPersistence:
    """load()/save() double that keeps every saved snapshot."""

    def __init__(self, stored: Optional[Dict[str, Any]] = None):
        self.stored = stored
        self.saves = []

    async def load(self):
        return self.stored

    async def save(self, snapshot):
        self.saves.append(snapshot)
        self.stored = snapshot


# ==================== Fixtures ====================

@pytest.fixture
def clock():
    """Fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def memory_storage():
    """Empty in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def failing_storage():
    """Storage that fails every read and write until told otherwise."""
    return FailingStorage()


@pytest.fixture
def recording_persistence():
    """Persistence double with nothing stored yet."""
    return RecordingPersistence()


@pytest.fixture
def knowledge_store(memory_storage, clock):
    """KnowledgeStore on in-memory storage with a fake clock."""
    return KnowledgeStore(memory_storage, KnowledgeConfig(), clock=clock)


@pytest.fixture
def api_store(clock):
    """In-memory API pattern store."""
    return ApiPatternStore(clock=clock)


@pytest.fixture
def interaction_store(clock):
    """In-memory interaction pattern store."""
    return InteractionPatternStore(clock=clock)


@pytest.fixture
def small_config():
    """Pattern store config with room for three patterns and a short debounce."""
    return PatternStoreConfig(
        storage_key="test_patterns",
        max_patterns_per_domain=3,
        max_prompt_patterns=10,
        min_hits_for_prompt=1,
        persist_debounce_ms=20,
    )
