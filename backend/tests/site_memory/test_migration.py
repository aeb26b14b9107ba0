"""
Unit tests for the legacy schema migration.

Tests the record converters and the retry-safe migration performed by
KnowledgeStore.ensure_migrated().
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from site_memory.exceptions import StorageError
from site_memory.knowledge.knowledge_store import (
    KnowledgeStore, STORAGE_KEY, RAW_KEY, META_KEY, MIGRATION_FLAG
)
from site_memory.knowledge.migration import (
    LEGACY_KEYS, build_note_content, migrate_experience, migrate_knowledge,
    migrate_meta, migrate_note, migrate_raw, parse_timestamp
)
from site_memory.storage import MemoryStorage

NOW = 1_704_067_200_000

LEGACY_DATA = {
    "experiences": {
        "shop.example": [
            {
                "id": "exp1",
                "issue": "Cookie banner blocks checkout",
                "solution": "Click #accept first",
                "selector": "#accept",
                "context": "any",
                "created": 1_700_000_000_000,
                "lastUsed": 1_700_000_500_000,
                "useCount": 3,
            }
        ]
    },
    "site_notes": {
        "shop.example": [
            {
                "id": "note1",
                "type": "dom",
                "path": "/checkout",
                "goal": "Pay with card",
                "happy_path": ["Open cart", "Click Pay"],
                "selectors": {"pay": "#pay"},
                "avoid": ["Express checkout"],
                "created": "2023-11-14T22:13:20Z",
            }
        ],
        "docs.example": [
            {"id": "note2", "description": "Search docs", "content": "Use /search?q="}
        ],
    },
    "raw_notes": {
        "shop.example": {"content": "# Shop notes", "updated": 1_700_000_000_000},
        "empty.example": {"content": ""},
    },
    "site_notes_meta": {
        "shop.example": {"lastReviewed": 1_700_000_900_000},
    },
}


class FlagWriteFails(MemoryStorage):
    """Storage that refuses to write the migration flag until allowed."""

    def __init__(self, initial):
        super().__init__(initial)
        self.allow_flag = False

    async def set(self, values):
        if MIGRATION_FLAG in values and not self.allow_flag:
            raise StorageError("flag write failed", key=MIGRATION_FLAG)
        await super().set(values)


class RemoveFails(MemoryStorage):
    """Storage whose remove() always fails."""

    async def remove(self, keys):
        raise StorageError("remove failed")


class TestParseTimestamp:
    """Test legacy timestamp parsing."""

    def test_epoch_milliseconds(self):
        """Test that numbers pass through as milliseconds."""
        assert parse_timestamp(1_700_000_000_000, NOW) == 1_700_000_000_000
        assert parse_timestamp("1700000000000", NOW) == 1_700_000_000_000

    def test_iso_string(self):
        """Test that ISO strings with a Z suffix are converted."""
        assert parse_timestamp("2023-11-14T22:13:20Z", NOW) == 1_700_000_000_000

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, 0, -5, [1]])
    def test_unparsable_defaults(self, value):
        """Test that anything unusable falls back to the default."""
        assert parse_timestamp(value, NOW) == NOW


class TestRecordConversion:
    """Test conversion of single legacy records."""

    def test_experience(self):
        """Test that an experience becomes an issue item."""
        exp = LEGACY_DATA["experiences"]["shop.example"][0]

        item = migrate_experience("shop.example", exp, NOW)

        assert item.id == "exp1"
        assert item.type == "issue"
        assert item.title == "Cookie banner blocks checkout"
        assert item.content == "Click #accept first"
        assert item.selector == "#accept"
        assert item.path == "*"
        assert item.use_count == 3
        assert item.last_used == 1_700_000_500_000

    def test_experience_defaults(self):
        """Test defaults for a sparse experience."""
        item = migrate_experience("shop.example", {}, NOW)

        assert item.title == "Untitled"
        assert item.id
        assert item.created == NOW

    def test_note_content_built_from_sections(self):
        """Test that structured note fields become Steps/Selectors/Avoid content."""
        note = LEGACY_DATA["site_notes"]["shop.example"][0]

        assert build_note_content(note) == (
            "Steps:\n1. Open cart\n2. Click Pay\n\n"
            "Selectors:\n- pay: #pay\n\n"
            "Avoid:\n- Express checkout"
        )

    def test_note(self):
        """Test that a note keeps its type and path and takes goal as title."""
        item = migrate_note("shop.example", LEGACY_DATA["site_notes"]["shop.example"][0], NOW)

        assert item.title == "Pay with card"
        assert item.path == "/checkout"
        assert item.type == "dom"
        assert item.created == 1_700_000_000_000
        assert item.content.startswith("Steps:")

    def test_note_with_content_and_description(self):
        """Test that description is a title fallback and content is kept."""
        item = migrate_note("docs.example", LEGACY_DATA["site_notes"]["docs.example"][0], NOW)

        assert item.title == "Search docs"
        assert item.content == "Use /search?q="

    def test_migrate_knowledge_groups_by_domain(self):
        """Test that both stores merge into one map."""
        knowledge = migrate_knowledge(LEGACY_DATA["experiences"], LEGACY_DATA["site_notes"], NOW)

        assert [i.id for i in knowledge["shop.example"]] == ["exp1", "note1"]
        assert [i.id for i in knowledge["docs.example"]] == ["note2"]
        assert migrate_knowledge(None, None, NOW) == {}

    def test_raw_and_meta(self):
        """Test raw notes and review metadata conversion."""
        raw = migrate_raw(LEGACY_DATA["raw_notes"], NOW)
        meta = migrate_meta(LEGACY_DATA["site_notes_meta"])

        assert raw == {"shop.example": {"content": "# Shop notes", "updated": 1_700_000_000_000}}
        assert meta == {"shop.example": {"last_reviewed": 1_700_000_900_000}}


class TestEnsureMigrated:
    """Test the one-time migration run by the knowledge store."""

    @pytest.mark.asyncio
    async def test_migrates_and_removes_legacy_keys(self, clock):
        """Test a full migration."""
        storage = MemoryStorage(LEGACY_DATA)
        store = KnowledgeStore(storage, clock=clock)

        assert await store.ensure_migrated() is True

        data = storage.snapshot()
        assert data[MIGRATION_FLAG] is True
        assert [i["id"] for i in data[STORAGE_KEY]["shop.example"]] == ["exp1", "note1"]
        assert data[RAW_KEY]["shop.example"]["content"] == "# Shop notes"
        assert data[META_KEY]["shop.example"]["last_reviewed"] == 1_700_000_900_000
        assert not any(key in data for key in LEGACY_KEYS)

    @pytest.mark.asyncio
    async def test_runs_once(self, clock):
        """Test that later calls, and new store instances, do not migrate again."""
        storage = MemoryStorage(LEGACY_DATA)
        await KnowledgeStore(storage, clock=clock).ensure_migrated()

        assert await KnowledgeStore(storage, clock=clock).ensure_migrated() is False

    @pytest.mark.asyncio
    async def test_fresh_install(self, knowledge_store, memory_storage):
        """Test that a store without legacy data just sets the flag."""
        assert await knowledge_store.ensure_migrated() is True
        assert memory_storage.snapshot()[MIGRATION_FLAG] is True
        assert await knowledge_store.get_all() == {}

    @pytest.mark.asyncio
    async def test_reads_trigger_migration(self, clock):
        """Test that the first read migrates transparently."""
        store = KnowledgeStore(MemoryStorage(LEGACY_DATA), clock=clock)

        raw = await store.get_raw("shop.example")

        assert raw == "# Shop notes"

    @pytest.mark.asyncio
    async def test_failed_flag_write_is_retried_without_duplicates(self, clock):
        """Test that a migration interrupted before the flag re-runs cleanly."""
        storage = FlagWriteFails(LEGACY_DATA)
        store = KnowledgeStore(storage, clock=clock)

        assert await store.ensure_migrated() is False
        data = storage.snapshot()
        assert MIGRATION_FLAG not in data
        assert all(key in data for key in ("experiences", "site_notes"))

        storage.allow_flag = True
        assert await store.ensure_migrated() is True

        data = storage.snapshot()
        assert [i["id"] for i in data[STORAGE_KEY]["shop.example"]] == ["exp1", "note1"]
        assert "experiences" not in data

    @pytest.mark.asyncio
    async def test_retry_keeps_items_added_meanwhile(self, clock):
        """Test that existing unified data is merged, not replaced."""
        storage = MemoryStorage({
            **LEGACY_DATA,
            STORAGE_KEY: {"shop.example": [{"id": "new1", "domain": "shop.example", "title": "Fresh"}]},
        })
        store = KnowledgeStore(storage, clock=clock)

        await store.ensure_migrated()

        ids = [i["id"] for i in storage.snapshot()[STORAGE_KEY]["shop.example"]]
        assert ids == ["new1", "exp1", "note1"]

    @pytest.mark.asyncio
    async def test_legacy_removal_failure_ignored(self, clock):
        """Test that failing to delete legacy keys still completes the migration."""
        storage = RemoveFails(LEGACY_DATA)
        store = KnowledgeStore(storage, clock=clock)

        assert await store.ensure_migrated() is True
        assert storage.snapshot()[MIGRATION_FLAG] is True
        assert await KnowledgeStore(storage, clock=clock).ensure_migrated() is False
