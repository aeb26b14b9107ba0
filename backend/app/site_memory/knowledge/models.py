"""
Knowledge data model

A KnowledgeItem is one curated fact about a site: a working selector, an
API shape, a multi-step procedure, a known issue or the site profile.
Timestamps are epoch milliseconds.
"""

import time
import uuid
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

GLOBAL_DOMAIN = "*"
DEFAULT_EXPIRY_DAYS = 60
MS_PER_DAY = 24 * 60 * 60 * 1000


class KnowledgeType(str, Enum):
    DOM = "dom"
    ISSUE = "issue"
    SHORTCUT = "shortcut"
    API = "api"
    BEHAVIOR = "behavior"
    PROFILE = "profile"
    # Accepted from the save-spec tool and legacy notes
    STORAGE = "storage"


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class KnowledgeItem:
    """A single stored fact about a domain"""
    id: str
    domain: str
    title: str
    content: str = ""
    path: str = "*"
    type: str = KnowledgeType.DOM.value
    selector: Optional[str] = None
    created: int = 0
    last_used: int = 0
    use_count: int = 0
    success_count: int = 0
    expiry_days: int = DEFAULT_EXPIRY_DAYS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeItem":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def is_expired(self, now: int) -> bool:
        expiry_ms = (self.expiry_days or DEFAULT_EXPIRY_DAYS) * MS_PER_DAY
        last_used = self.last_used or self.created
        return (now - last_used) >= expiry_ms

    @property
    def relevance(self) -> float:
        # use_count dominates; recency only breaks ties
        return (self.use_count or 0) + (self.last_used or self.created) / 1e12


@dataclass
class ParsedBlock:
    """A knowledge candidate extracted from a LEARNED or SPEC block"""
    title: str
    type: str
    content: Optional[str] = None
    domain: Optional[str] = None
    path: str = "*"
    selector: Optional[str] = None

    def to_item_fields(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "type": self.type,
            "content": self.content or "",
            "path": self.path or "*",
            "selector": self.selector,
        }
