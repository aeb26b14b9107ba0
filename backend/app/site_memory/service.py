"""
Site Memory service bundle

Wires the two observers, the knowledge store and the prompt builder to one
storage backend, and owns their startup/shutdown lifecycle.
"""

import logging
from typing import Optional

from .config import SiteMemoryConfig
from .knowledge.knowledge_store import KnowledgeStore
from .observers.api_observer import ApiPatternStore
from .observers.interaction_observer import InteractionPatternStore
from .prompt_context import PromptContextBuilder
from .storage import JsonFileStorage, KeyPersistence, KeyValueStorage

logger = logging.getLogger(__name__)


class SiteMemory:
    """All site memory components sharing one storage"""

    def __init__(self, storage: KeyValueStorage, config: Optional[SiteMemoryConfig] = None):
        self.config = config or SiteMemoryConfig()
        self.storage = storage

        api_config = self.config.api_patterns
        interaction_config = self.config.interaction_patterns

        self.api_observer = ApiPatternStore(
            api_config,
            persistence=KeyPersistence(storage, api_config.storage_key)
        )
        self.interaction_observer = InteractionPatternStore(
            interaction_config,
            persistence=KeyPersistence(storage, interaction_config.storage_key)
        )
        self.knowledge = KnowledgeStore(storage, self.config.knowledge)
        self.prompt = PromptContextBuilder(self.knowledge, self.api_observer, self.interaction_observer)

    @classmethod
    def create(cls, config: Optional[SiteMemoryConfig] = None) -> "SiteMemory":
        """File-backed instance rooted at ``config.data_dir``"""
        config = config or SiteMemoryConfig()
        return cls(JsonFileStorage(config.data_dir), config)

    async def start(self):
        """Hydrate the pattern stores and fold in legacy knowledge"""
        await self.api_observer.load()
        await self.interaction_observer.load()
        await self.knowledge.ensure_migrated()
        await self.knowledge.cleanup_expired()
        logger.info("[SiteMemory] Started")

    async def close(self):
        """Write out pending pattern changes"""
        await self.api_observer.flush()
        await self.interaction_observer.flush()
        logger.info("[SiteMemory] Flushed pending writes")
