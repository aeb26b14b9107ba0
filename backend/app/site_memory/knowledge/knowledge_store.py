"""
Knowledge Store - durable, curated facts per site

Layout in storage (one document per key):

    site_knowledge           {domain: [KnowledgeItem]}
    site_knowledge_meta      {domain: {"last_reviewed": ms}}
    site_knowledge_raw       {domain: {"content": str, "updated": ms}}
    site_knowledge_migrated  true once the legacy stores were folded in

Every operation reads the whole knowledge map, mutates it and writes it
back. Operations are serialised with one store-wide asyncio.Lock because
all domains share a single document; without it two concurrent adds would
both read the old map and the second write would drop the first item.

Storage failures never reach callers: they are logged and the operation
returns its neutral result (None, False, [], 0).
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import KnowledgeConfig
from ..exceptions import StorageError
from ..storage import KeyValueStorage
from .block_parser import parse_knowledge_blocks
from .formatting import box_header, escape_fences, relative_age, staleness_badge, RULE
from .migration import (
    LEGACY_EXPERIENCES_KEY, LEGACY_KEYS, LEGACY_RAW_KEY, LEGACY_SPECS_KEY, LEGACY_SPECS_META_KEY,
    migrate_knowledge, migrate_meta, migrate_raw
)
from .models import GLOBAL_DOMAIN, KnowledgeItem, KnowledgeType, generate_id, now_ms

logger = logging.getLogger(__name__)

STORAGE_KEY = "site_knowledge"
META_KEY = "site_knowledge_meta"
RAW_KEY = "site_knowledge_raw"
MIGRATION_FLAG = "site_knowledge_migrated"

# Content shorter than this is too generic to count as a duplicate
MIN_DUPLICATE_CONTENT_LENGTH = 20

KNOWN_TYPES = {t.value for t in KnowledgeType}
UPDATABLE_FIELDS = {"path", "type", "title", "content", "selector", "use_count", "success_count", "expiry_days"}
# Only selector may be cleared with None
NULLABLE_FIELDS = {"selector"}

KnowledgeMap = Dict[str, List[KnowledgeItem]]


def matches_path(pattern: Optional[str], path: str) -> bool:
    """
    Check if a path matches a pattern.

    pattern may be '*', empty, or a comma-separated list of path prefixes.
    """
    if not pattern or pattern == "*":
        return True
    patterns = [p.strip() for p in pattern.split(",")]
    return any(p == "*" or p == path or path.startswith(p) for p in patterns)


def normalize_content(content: Optional[str]) -> str:
    return " ".join((content or "").split()).lower()


def storage_boundary(default: Callable[[], Any]):
    """Log and swallow StorageError, returning ``default()`` instead"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except StorageError as e:
                logger.error(f"[SiteKnowledge] {func.__name__} failed: {e}")
                return default()
        return wrapper
    return decorator


class KnowledgeStore:
    """
    Durable store of KnowledgeItems keyed by domain.

    Features:
    - One-time, retry-safe migration from the legacy stores
    - Duplicate rejection by title and by normalised content
    - Per-item TTL measured from last use, swept on reads
    - Usage-weighted ranking for prompt rendering
    - Review tracking and a free-text markdown sideband per domain
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        config: Optional[KnowledgeConfig] = None,
        clock: Callable[[], int] = now_ms
    ):
        self.storage = storage
        self.config = config or KnowledgeConfig()
        self.clock = clock
        self._lock = asyncio.Lock()
        self._migrated = False

    # ==================== Storage Helpers ====================

    async def _read_knowledge(self) -> KnowledgeMap:
        data = await self.storage.get(STORAGE_KEY) or {}
        knowledge: KnowledgeMap = {}
        for domain, records in data.items():
            items = []
            for record in records or []:
                try:
                    items.append(KnowledgeItem.from_dict(record))
                except TypeError as e:
                    logger.warning(f"[SiteKnowledge] Skipping unreadable item in {domain}: {e}")
            if items:
                knowledge[domain] = items
        return knowledge

    async def _write_knowledge(self, knowledge: KnowledgeMap):
        serializable = {
            domain: [item.to_dict() for item in items]
            for domain, items in knowledge.items()
            if items
        }
        await self.storage.set({STORAGE_KEY: serializable})

    async def _load(self) -> KnowledgeMap:
        """Migrate if needed, read, and sweep expired items"""
        await self._ensure_migrated()
        knowledge = await self._read_knowledge()
        await self._sweep_expired(knowledge)
        return knowledge

    # ==================== Migration ====================

    @storage_boundary(lambda: False)
    async def ensure_migrated(self) -> bool:
        """Fold the legacy stores in, once. Returns True if a migration ran."""
        async with self._lock:
            return await self._ensure_migrated()

    async def _ensure_migrated(self) -> bool:
        if self._migrated:
            return False
        if await self.storage.get(MIGRATION_FLAG):
            self._migrated = True
            return False

        logger.info("[SiteKnowledge] Starting migration from legacy storage...")
        now = self.clock()

        migrated = migrate_knowledge(
            await self.storage.get(LEGACY_EXPERIENCES_KEY),
            await self.storage.get(LEGACY_SPECS_KEY),
            now,
        )
        migrated_raw = migrate_raw(await self.storage.get(LEGACY_RAW_KEY), now)
        migrated_meta = migrate_meta(await self.storage.get(LEGACY_SPECS_META_KEY))

        # Merge by id so a re-run after a partial failure adds nothing twice
        knowledge = await self._read_knowledge()
        for domain, items in migrated.items():
            bucket = knowledge.setdefault(domain, [])
            existing_ids = {item.id for item in bucket}
            bucket.extend(item for item in items if item.id not in existing_ids)

        raw = await self.storage.get(RAW_KEY) or {}
        for domain, entry in migrated_raw.items():
            raw.setdefault(domain, entry)

        meta = await self.storage.get(META_KEY) or {}
        for domain, entry in migrated_meta.items():
            meta.setdefault(domain, entry)

        await self._write_knowledge(knowledge)
        await self.storage.set({RAW_KEY: raw, META_KEY: meta})
        # Flag last: until it is stored the legacy keys stay and the next call retries
        await self.storage.set({MIGRATION_FLAG: True})
        self._migrated = True

        try:
            await self.storage.remove(LEGACY_KEYS)
        except StorageError as e:
            logger.warning(f"[SiteKnowledge] Could not remove legacy keys: {e}")

        total = sum(len(items) for items in migrated.values())
        logger.info(
            f"[SiteKnowledge] Migration complete. Migrated {total} items across {len(migrated)} domains."
        )
        return True

    # ==================== Core CRUD ====================

    @storage_boundary(list)
    async def get(self, domain: str, path: Optional[str] = None) -> List[KnowledgeItem]:
        """Items for a domain, optionally filtered by path. Sweeps expired items first."""
        async with self._lock:
            knowledge = await self._load()

        items = knowledge.get(domain, [])
        if path:
            return [item for item in items if matches_path(item.path, path)]
        return items

    @storage_boundary(dict)
    async def get_all(self) -> KnowledgeMap:
        async with self._lock:
            return await self._load()

    @storage_boundary(lambda: None)
    async def add(self, domain: str, item: Dict[str, Any]) -> Optional[KnowledgeItem]:
        """
        Add a new item for a domain.

        Returns the saved item, or None if it is a duplicate (same title,
        case-insensitive, or same normalised content) or has no title.
        """
        title = (item.get("title") or "").strip()
        if not title:
            logger.warning(f"[SiteKnowledge] Rejecting item without title for {domain}")
            return None

        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()
            bucket = knowledge.setdefault(domain, [])

            new_content = normalize_content(item.get("content"))
            for existing in bucket:
                if (existing.title or "").lower() == title.lower() or (
                    len(new_content) > MIN_DUPLICATE_CONTENT_LENGTH
                    and normalize_content(existing.content) == new_content
                ):
                    logger.info(f"[SiteKnowledge] Skipping duplicate item: {title}")
                    return None

            item_type = item.get("type") or KnowledgeType.DOM.value
            if item_type not in KNOWN_TYPES:
                logger.debug(f"[SiteKnowledge] Unknown type {item_type!r}, storing as dom")
                item_type = KnowledgeType.DOM.value

            now = self.clock()
            new_item = KnowledgeItem(
                id=generate_id(),
                domain=domain,
                path=item.get("path") or "*",
                type=item_type,
                title=title,
                content=item.get("content") or "",
                selector=item.get("selector") or None,
                created=now,
                last_used=now,
                use_count=0,
                success_count=0,
                expiry_days=item.get("expiry_days") or self.config.default_expiry_days,
            )
            bucket.append(new_item)

            # Keep the most recently used items
            if len(bucket) > self.config.max_items_per_domain:
                bucket.sort(key=lambda i: i.last_used, reverse=True)
                del bucket[self.config.max_items_per_domain:]

            await self._write_knowledge(knowledge)

        logger.info(f"[SiteKnowledge] Added item for {domain}: {new_item.title}")
        return new_item

    @storage_boundary(lambda: None)
    async def update(self, domain: str, item_id: str, updates: Dict[str, Any]) -> Optional[KnowledgeItem]:
        """
        Merge updates into an item. id, domain and created never change.

        Returns None if the item is missing, or if the new title is blank or
        already used by another item of the domain (case-insensitive).
        """
        patch = {
            k: v for k, v in updates.items()
            if k in UPDATABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
        }
        if "title" in patch:
            patch["title"] = str(patch["title"]).strip()
            if not patch["title"]:
                logger.warning(f"[SiteKnowledge] Rejecting blank title for {item_id}")
                return None
        if "type" in patch and patch["type"] not in KNOWN_TYPES:
            logger.debug(f"[SiteKnowledge] Unknown type {patch['type']!r}, storing as dom")
            patch["type"] = KnowledgeType.DOM.value

        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()

            bucket = knowledge.get(domain)
            if not bucket:
                logger.info(f"[SiteKnowledge] Domain not found: {domain}")
                return None

            index = next((i for i, item in enumerate(bucket) if item.id == item_id), None)
            if index is None:
                logger.info(f"[SiteKnowledge] Item not found: {item_id}")
                return None

            if "title" in patch and any(
                other.id != item_id and (other.title or "").lower() == patch["title"].lower()
                for other in bucket
            ):
                logger.info(f"[SiteKnowledge] Title already used in {domain}: {patch['title']}")
                return None

            existing = bucket[index]
            merged = existing.to_dict()
            merged.update(patch)
            merged.update(
                id=existing.id,
                domain=existing.domain,
                created=existing.created,
                last_used=self.clock(),
            )
            updated = KnowledgeItem.from_dict(merged)
            bucket[index] = updated

            await self._write_knowledge(knowledge)

        logger.info(f"[SiteKnowledge] Updated item: {item_id} for {domain}")
        return updated

    @storage_boundary(lambda: False)
    async def delete(self, domain: str, item_id: str) -> bool:
        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()

            bucket = knowledge.get(domain)
            if not bucket:
                return False

            remaining = [item for item in bucket if item.id != item_id]
            if len(remaining) == len(bucket):
                return False

            if remaining:
                knowledge[domain] = remaining
            else:
                del knowledge[domain]

            await self._write_knowledge(knowledge)

        logger.info(f"[SiteKnowledge] Deleted item: {item_id} from {domain}")
        return True

    @storage_boundary(lambda: False)
    async def clear(self, domain: str) -> bool:
        """Remove every item for a domain"""
        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()
            if domain not in knowledge:
                return False
            del knowledge[domain]
            await self._write_knowledge(knowledge)

        logger.info(f"[SiteKnowledge] Cleared all items for {domain}")
        return True

    # ==================== Query Helpers ====================

    @storage_boundary(list)
    async def get_for_path(self, domain: str, path: str) -> List[KnowledgeItem]:
        """Domain items matching path, followed by matching global items"""
        async with self._lock:
            knowledge = await self._load()

        items = [item for item in knowledge.get(domain, []) if matches_path(item.path, path)]
        if domain != GLOBAL_DOMAIN:
            items += [item for item in knowledge.get(GLOBAL_DOMAIN, []) if matches_path(item.path, path)]
        return items

    async def get_count(self, domain: str) -> int:
        return len(await self.get(domain))

    @storage_boundary(lambda: False)
    async def mark_used(self, domain: str, item_id: str, success: bool = True) -> bool:
        """Record that an item was used (and whether it helped)"""
        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()

            item = next((i for i in knowledge.get(domain, []) if i.id == item_id), None)
            if item is None:
                return False

            item.last_used = self.clock()
            item.use_count = (item.use_count or 0) + 1
            if success:
                item.success_count = (item.success_count or 0) + 1

            await self._write_knowledge(knowledge)
        return True

    # ==================== Expiry ====================

    @storage_boundary(lambda: False)
    async def cleanup_expired(self) -> bool:
        """Sweep expired items from every domain. Returns True if anything was removed."""
        async with self._lock:
            await self._ensure_migrated()
            knowledge = await self._read_knowledge()
            return await self._sweep_expired(knowledge)

    async def _sweep_expired(self, knowledge: KnowledgeMap) -> bool:
        """Drop expired items in place; write back only if something changed"""
        now = self.clock()
        cleaned = False

        for domain in list(knowledge.keys()):
            items = knowledge[domain]
            live = [item for item in items if not item.is_expired(now)]
            if len(live) == len(items):
                continue
            cleaned = True
            if live:
                knowledge[domain] = live
            else:
                del knowledge[domain]

        if cleaned:
            await self._write_knowledge(knowledge)
            logger.debug("[SiteKnowledge] Removed expired items")
        return cleaned

    # ==================== Parsing Glue ====================

    async def ingest_response(self, text: str, domain: Optional[str]) -> List[KnowledgeItem]:
        """
        Save every LEARNED/SPEC block found in an agent response.

        A block's own ``domain:`` line wins over the domain passed in.
        Duplicates and invalid blocks are skipped.
        """
        saved = []
        for block in parse_knowledge_blocks(text):
            target = block.domain or domain
            if not target:
                logger.warning(f"[SiteKnowledge] No domain for block '{block.title}', skipping")
                continue
            item = await self.add(target, block.to_item_fields())
            if item:
                saved.append(item)
        return saved

    # ==================== Formatting ====================

    def format_for_prompt(self, items: List[KnowledgeItem], domain: str) -> str:
        """
        Render items for the system prompt.

        Items are ranked by use count, recency breaking ties, and capped.
        A site profile within the cap comes first in its own box.
        """
        if not items:
            return ""

        now = self.clock()
        ranked = sorted(items, key=lambda i: i.relevance, reverse=True)[:self.config.max_items_in_prompt]
        profile = next((i for i in ranked if i.type == KnowledgeType.PROFILE.value), None)
        rest = [i for i in ranked if i.type != KnowledgeType.PROFILE.value]

        text = "\n\n"

        if profile:
            text += box_header("SITE PROFILE — READ THIS FIRST") + "\n"
            text += profile.content + "\n\n"
            text += RULE + "\n\n"

        text += f"## SITE SPECS — {domain.upper()} (newest first; on conflict use newer)\n\n"

        for item in rest:
            age = relative_age(item.created, now)
            type_badge = f"[{item.type}]" if item.type else ""
            stale_badge = staleness_badge(item.created, now)
            age_part = f"({age})" if age else ""
            # The id lets the agent delete a broken spec later
            id_suffix = f" #{item.id}" if item.id else ""
            text += f"### {item.title} {type_badge} {age_part}{stale_badge}{id_suffix}\n"

            if item.content:
                text += "```\n" + escape_fences(item.content) + "\n```\n\n"

            if item.selector:
                text += f"**Selector:** `{item.selector}`\n\n"

        return text

    # ==================== Review Tracking ====================

    @storage_boundary(lambda: None)
    async def get_last_reviewed(self, domain: str) -> Optional[int]:
        async with self._lock:
            await self._ensure_migrated()
            meta = await self.storage.get(META_KEY) or {}
        return (meta.get(domain) or {}).get("last_reviewed") or None

    @storage_boundary(lambda: False)
    async def set_last_reviewed(self, domain: str) -> bool:
        async with self._lock:
            await self._ensure_migrated()
            meta = await self.storage.get(META_KEY) or {}
            meta.setdefault(domain, {})["last_reviewed"] = self.clock()
            await self.storage.set({META_KEY: meta})
        return True

    async def get_new_count(self, domain: str) -> int:
        """Items created since the domain was last reviewed (all items if never)"""
        items = await self.get(domain)
        last_reviewed = await self.get_last_reviewed(domain)
        if not last_reviewed:
            return len(items)
        return sum(1 for item in items if item.created > last_reviewed)

    # ==================== Raw Markdown ====================

    @storage_boundary(lambda: False)
    async def set_raw(self, domain: str, content: Optional[str]) -> bool:
        """Store free-text notes for a domain; blank content deletes them"""
        async with self._lock:
            await self._ensure_migrated()
            raw = await self.storage.get(RAW_KEY) or {}
            if content and content.strip():
                raw[domain] = {"content": content, "updated": self.clock()}
            else:
                raw.pop(domain, None)
            await self.storage.set({RAW_KEY: raw})

        logger.info(f"[SiteKnowledge] Set raw content for {domain}")
        return True

    @storage_boundary(lambda: None)
    async def get_raw(self, domain: str) -> Optional[str]:
        async with self._lock:
            await self._ensure_migrated()
            raw = await self.storage.get(RAW_KEY) or {}
        return (raw.get(domain) or {}).get("content") or None
