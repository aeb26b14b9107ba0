"""
Pattern Store - bounded per-domain caches of observed patterns

One generic store backs both observers (API calls and DOM interactions):

    domain -> pattern key -> PatternRecord

Each domain holds at most ``max_patterns_per_domain`` records. When an
insert overflows a domain, the record with the fewest hits is evicted
(oldest ``first_seen`` on ties), so popular patterns survive bursts of
one-off noise. Mutations are coalesced into a single debounced write of the
whole snapshot.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, fields
from typing import (
    Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar
)

from ..config import PatternStoreConfig
from .formatting import render_pattern_block
from .models import now_ms

logger = logging.getLogger(__name__)


@dataclass
class PatternRecord:
    """Common fields of every observed pattern"""
    domain: str
    key: str
    hit_count: int = 1
    first_seen: int = 0
    last_seen: int = 0

    def merge(self, incoming: "PatternRecord"):
        """Fold a new observation of the same pattern into this record"""
        self.hit_count += 1
        self.last_seen = incoming.last_seen

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def union_into(target: List, values: Iterable):
    """Append values missing from target, keeping first-seen order"""
    for value in values:
        if value not in target:
            target.append(value)


class DebouncedTimer:
    """
    Single coalescing timer.

    ``schedule()`` starts the countdown unless one is already pending, in
    which case the call rides the existing timer. The callback runs at most
    once per window.
    """

    def __init__(self, delay_ms: int, callback: Callable[[], Awaitable[None]]):
        self.delay_ms = delay_ms
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None

    def schedule(self) -> bool:
        """Start the timer. Returns False if one was already pending or no loop runs."""
        if self._task is not None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._task = loop.create_task(self._run())
        return True

    def cancel(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        await asyncio.sleep(self.delay_ms / 1000)
        # Cleared before firing so mutations made during the write re-arm the timer
        self._task = None
        await self._callback()


RecordT = TypeVar("RecordT", bound=PatternRecord)


class PatternStore(Generic[RecordT]):
    """
    Bounded, hit-count-evicting pattern cache with debounced persistence.

    Subclasses define which events qualify (``should_observe``), how an event
    turns into records (``extract``), and how a record renders in the prompt
    (``format_line``).
    """

    record_type: Type[PatternRecord] = PatternRecord
    banner_title = "OBSERVED PATTERNS (auto-discovered)"
    banner_intro: List[str] = []
    log_name = "PatternStore"

    def __init__(
        self,
        config: PatternStoreConfig,
        persistence=None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            config: capacity, prompt and debounce limits
            persistence: object with async ``load()`` and ``save(snapshot)``;
                None keeps the store purely in memory
            clock: epoch-millisecond time source
        """
        self.config = config
        self.persistence = persistence
        self.clock = clock
        self._domains: Dict[str, Dict[str, RecordT]] = {}
        self._timer = DebouncedTimer(config.persist_debounce_ms, self._persist)
        self._dirty = False

    # ==================== Event Ingestion ====================

    def should_observe(self, event) -> bool:
        raise NotImplementedError

    def extract(self, event) -> List[Tuple[str, str, RecordT]]:
        """Turn a qualifying event into (domain, key, incoming record) triples"""
        raise NotImplementedError

    def observe(self, event) -> List[RecordT]:
        """Filter an event and record every pattern it yields"""
        if not self.should_observe(event):
            return []
        return [self.record(domain, key, incoming) for domain, key, incoming in self.extract(event)]

    def record(self, domain: str, key: str, incoming: RecordT) -> RecordT:
        """Merge into an existing pattern or insert a new one, evicting on overflow"""
        patterns = self._domains.setdefault(domain, {})

        existing = patterns.get(key)
        if existing is not None:
            existing.merge(incoming)
            result = existing
        else:
            incoming.domain = domain
            incoming.key = key
            incoming.hit_count = 1
            patterns[key] = incoming
            result = incoming

            if len(patterns) > self.config.max_patterns_per_domain:
                self._evict_one(domain, patterns)

        self.schedule_persist()
        return result

    def _evict_one(self, domain: str, patterns: Dict[str, RecordT]):
        # min() keeps the first of equal keys, i.e. insertion order breaks the last ties
        victim = min(patterns.values(), key=lambda r: (r.hit_count, r.first_seen))
        del patterns[victim.key]
        logger.debug(f"[{self.log_name}] Evicted '{victim.key}' ({victim.hit_count} hits) from {domain}")

    # ==================== Prompt Formatting ====================

    def format_line(self, record: RecordT) -> str:
        raise NotImplementedError

    def top_patterns(self, domain: str) -> List[RecordT]:
        patterns = self._domains.get(domain)
        if not patterns:
            return []
        qualifying = [p for p in patterns.values() if p.hit_count >= self.config.min_hits_for_prompt]
        qualifying.sort(key=lambda p: p.hit_count, reverse=True)
        return qualifying[:self.config.max_prompt_patterns]

    def format_for_prompt(self, domain: str) -> Optional[str]:
        """Render the most-hit patterns for domain, or None if none qualify"""
        top = self.top_patterns(domain)
        if not top:
            return None
        lines = [self.format_line(p) for p in top]
        return render_pattern_block(self.banner_title, self.banner_intro, lines)

    # ==================== Accessors ====================

    def get_patterns(self, domain: Optional[str] = None) -> Dict[str, Any]:
        """Plain-dict view: one domain's patterns, or every domain's"""
        if domain:
            return {k: r.to_dict() for k, r in self._domains.get(domain, {}).items()}
        return self.snapshot()

    def get(self, domain: str, key: str) -> Optional[RecordT]:
        return self._domains.get(domain, {}).get(key)

    def pattern_count(self, domain: Optional[str]) -> int:
        if not domain:
            return 0
        return len(self._domains.get(domain, {}))

    def domains(self) -> List[str]:
        return list(self._domains.keys())

    def clear_domain(self, domain: str):
        self._domains.pop(domain, None)
        self.schedule_persist()

    def clear_all(self):
        self._domains.clear()
        self.schedule_persist()

    # ==================== Persistence ====================

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            domain: {key: record.to_dict() for key, record in patterns.items()}
            for domain, patterns in self._domains.items()
        }

    def schedule_persist(self):
        self._dirty = True
        if self.persistence is not None:
            self._timer.schedule()

    @property
    def persist_pending(self) -> bool:
        return self._timer.pending

    async def _persist(self):
        if self.persistence is None:
            return
        self._dirty = False
        try:
            await self.persistence.save(self.snapshot())
        except Exception as e:
            self._dirty = True
            logger.warning(f"[{self.log_name}] Persist error: {e}")

    async def flush(self):
        """Write immediately, cancelling any pending timer"""
        self._timer.cancel()
        if self._dirty:
            await self._persist()

    async def load(self):
        """Hydrate from persistence. Called once at startup."""
        if self.persistence is None:
            return
        try:
            stored = await self.persistence.load()
        except Exception as e:
            logger.warning(f"[{self.log_name}] Load error: {e}")
            return
        if not stored:
            return

        for domain, patterns in stored.items():
            restored: Dict[str, RecordT] = {}
            for key, data in (patterns or {}).items():
                try:
                    record = self.record_type.from_dict({**data, "domain": domain, "key": key})
                except TypeError as e:
                    logger.warning(f"[{self.log_name}] Skipping unreadable pattern {key!r}: {e}")
                    continue
                restored[key] = record
            if restored:
                self._domains[domain] = restored

        logger.info(f"[{self.log_name}] Loaded patterns for {len(self._domains)} domain(s)")
