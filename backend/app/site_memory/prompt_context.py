"""
Prompt Context - the site memory section of the agent's system prompt

For a page URL, three blocks are assembled in order:

1. Site knowledge. User-edited raw notes win; otherwise the typed items
   matching the page path (plus global items) are rendered.
2. Observed API patterns.
3. Known DOM patterns.

Any block may be missing; an unusable URL yields an empty string.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

from .knowledge.formatting import box_header, RULE
from .knowledge.knowledge_store import KnowledgeStore
from .knowledge.normalizer import extract_domain
from .observers.api_observer import ApiPatternStore
from .observers.interaction_observer import InteractionPatternStore

logger = logging.getLogger(__name__)


def render_raw_knowledge(domain: str, content: str) -> str:
    return "\n\n" + box_header(f"SITE KNOWLEDGE FOR: {domain}") + "\n" + content + "\n\n" + RULE


class PromptContextBuilder:
    """Builds the site memory prompt section from the three stores"""

    def __init__(
        self,
        knowledge: KnowledgeStore,
        api_observer: Optional[ApiPatternStore] = None,
        interaction_observer: Optional[InteractionPatternStore] = None
    ):
        self.knowledge = knowledge
        self.api_observer = api_observer
        self.interaction_observer = interaction_observer

    async def build(self, url: Optional[str]) -> str:
        if not url:
            return ""

        domain = extract_domain(url)
        if not domain:
            return ""

        try:
            path = urlsplit(url).path or "/"
        except ValueError:
            path = "/"

        text = await self._knowledge_block(domain, path)

        if self.api_observer is not None:
            api_patterns = self.api_observer.format_for_prompt(domain)
            if api_patterns:
                text += api_patterns
                logger.debug(f"[ApiObserver] Injected patterns for {domain}")

        if self.interaction_observer is not None:
            dom_patterns = self.interaction_observer.format_for_prompt(domain)
            if dom_patterns:
                text += dom_patterns
                logger.debug(f"[InteractionObserver] Injected patterns for {domain}")

        return text

    async def _knowledge_block(self, domain: str, path: str) -> str:
        # User-edited notes take priority over typed items
        raw = await self.knowledge.get_raw(domain)
        if raw:
            logger.info(f"[SiteKnowledge] Injected raw knowledge ({len(raw)} chars) for {domain}")
            return render_raw_knowledge(domain, raw)

        items = await self.knowledge.get_for_path(domain, path)
        if not items:
            return ""
        logger.info(f"[SiteKnowledge] Injected {len(items)} knowledge items for {domain}{path}")
        return self.knowledge.format_for_prompt(items, domain)
