"""
Legacy schema migration

Before knowledge was unified, two separate stores existed:

- experiences: {domain: [{id, issue, solution, selector, context, created, lastUsed, useCount}]}
- site notes:  {domain: [{id, type, path, goal|description, content | happy_path, selectors, avoid, ...}]}

plus raw markdown notes and review metadata. The helpers here convert those
records into the unified shapes; KnowledgeStore.ensure_migrated() decides
when to run them and persists the result.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import DEFAULT_EXPIRY_DAYS, KnowledgeItem, KnowledgeType, generate_id

logger = logging.getLogger(__name__)

LEGACY_EXPERIENCES_KEY = "experiences"
LEGACY_SPECS_KEY = "site_notes"
LEGACY_SPECS_META_KEY = "site_notes_meta"
LEGACY_RAW_KEY = "raw_notes"

LEGACY_KEYS = [
    LEGACY_EXPERIENCES_KEY,
    LEGACY_SPECS_KEY,
    LEGACY_SPECS_META_KEY,
    LEGACY_RAW_KEY,
]


def parse_timestamp(value: Any, default: int) -> int:
    """
    Epoch milliseconds from a legacy timestamp.

    Accepts numbers (already ms) and ISO-8601 strings; anything else,
    including unparsable strings, yields ``default``.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else default
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit():
            return int(text)
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            return default
        return int(parsed.timestamp() * 1000)
    return default


def _context_to_path(context: Optional[str]) -> str:
    if not context or context == "any":
        return "*"
    return context


def migrate_experience(domain: str, exp: Dict[str, Any], now: int) -> KnowledgeItem:
    return KnowledgeItem(
        id=exp.get("id") or generate_id(),
        domain=domain,
        path=_context_to_path(exp.get("context")),
        type=KnowledgeType.ISSUE.value,
        title=exp.get("issue") or "Untitled",
        content=exp.get("solution") or "",
        selector=exp.get("selector") or None,
        created=parse_timestamp(exp.get("created"), now),
        last_used=parse_timestamp(exp.get("lastUsed"), now),
        use_count=int(exp.get("useCount") or 0),
        expiry_days=DEFAULT_EXPIRY_DAYS,
    )


def build_note_content(note: Dict[str, Any]) -> str:
    """Content for a legacy note that only has structured fields"""
    parts = []

    happy_path = note.get("happy_path") or []
    if happy_path:
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(happy_path, start=1))
        parts.append("Steps:\n" + steps)

    selectors = note.get("selectors") or {}
    if selectors:
        listed = "\n".join(f"- {name}: {sel}" for name, sel in selectors.items())
        parts.append("Selectors:\n" + listed)

    avoid = note.get("avoid") or []
    if avoid:
        parts.append("Avoid:\n" + "\n".join(f"- {a}" for a in avoid))

    return "\n\n".join(parts)


def migrate_note(domain: str, note: Dict[str, Any], now: int) -> KnowledgeItem:
    return KnowledgeItem(
        id=note.get("id") or generate_id(),
        domain=domain,
        path=note.get("path") or "*",
        type=note.get("type") or KnowledgeType.DOM.value,
        title=note.get("goal") or note.get("description") or "Untitled",
        content=note.get("content") or build_note_content(note),
        selector=None,
        created=parse_timestamp(note.get("created"), now),
        last_used=parse_timestamp(note.get("lastUsed"), now),
        use_count=0,
        expiry_days=DEFAULT_EXPIRY_DAYS,
    )


def migrate_knowledge(
    experiences: Optional[Dict[str, List[Dict[str, Any]]]],
    notes: Optional[Dict[str, List[Dict[str, Any]]]],
    now: int
) -> Dict[str, List[KnowledgeItem]]:
    """Unified {domain: [KnowledgeItem]} from both legacy stores"""
    knowledge: Dict[str, List[KnowledgeItem]] = {}

    for domain, records in (experiences or {}).items():
        for exp in records or []:
            knowledge.setdefault(domain, []).append(migrate_experience(domain, exp, now))

    for domain, records in (notes or {}).items():
        for note in records or []:
            knowledge.setdefault(domain, []).append(migrate_note(domain, note, now))

    return knowledge


def migrate_raw(raw_notes: Optional[Dict[str, Dict[str, Any]]], now: int) -> Dict[str, Dict[str, Any]]:
    return {
        domain: {
            "content": entry.get("content"),
            "updated": parse_timestamp(entry.get("updated"), now),
        }
        for domain, entry in (raw_notes or {}).items()
        if entry and entry.get("content")
    }


def migrate_meta(legacy_meta: Optional[Dict[str, Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    migrated = {}
    for domain, entry in (legacy_meta or {}).items():
        last_reviewed = (entry or {}).get("lastReviewed")
        migrated[domain] = {
            "last_reviewed": parse_timestamp(last_reviewed, 0) or None,
        }
    return migrated
