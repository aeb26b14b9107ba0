"""
Site Memory

Passively learns structural facts about websites and feeds them back to
the browsing agent:
- Observes completed API requests and successful DOM interactions
- Keeps bounded, hit-count-ranked pattern caches per domain
- Stores curated knowledge items with deduplication and expiry
- Parses LEARNED/SPEC annotations out of agent responses
- Renders everything into compact prompt blocks
"""

from .config import SiteMemoryConfig, PatternStoreConfig, KnowledgeConfig
from .exceptions import SiteMemoryError, StorageError
from .storage import KeyValueStorage, JsonFileStorage, MemoryStorage, KeyPersistence
from .knowledge.knowledge_store import KnowledgeStore
from .knowledge.models import KnowledgeItem, KnowledgeType
from .observers.api_observer import ApiPatternStore
from .observers.interaction_observer import InteractionPatternStore
from .observers.events import CompletedNetworkEvent, CompletedToolEvent, RequestHeader
from .prompt_context import PromptContextBuilder
from .service import SiteMemory

__all__ = [
    # Configuration
    "SiteMemoryConfig",
    "PatternStoreConfig",
    "KnowledgeConfig",
    # Errors
    "SiteMemoryError",
    "StorageError",
    # Storage
    "KeyValueStorage",
    "JsonFileStorage",
    "MemoryStorage",
    "KeyPersistence",
    # Stores
    "KnowledgeStore",
    "KnowledgeItem",
    "KnowledgeType",
    "ApiPatternStore",
    "InteractionPatternStore",
    # Events
    "CompletedNetworkEvent",
    "CompletedToolEvent",
    "RequestHeader",
    # Assembly
    "PromptContextBuilder",
    "SiteMemory"
]

__version__ = "1.0.0"
