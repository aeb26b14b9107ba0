"""
Interaction Observer

Learns which DOM selectors work on a site from successful tool calls
(click_element, type_text, fill_form, ...). Mirrors the API observer on
top of the same pattern store.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..config import PatternStoreConfig, default_interaction_config
from ..knowledge.normalizer import cap_selector
from ..knowledge.pattern_store import PatternRecord, PatternStore, union_into
from .events import CompletedToolEvent, MultiSelectorTool, SingleSelectorTool, route_tool

logger = logging.getLogger(__name__)

PROMPT_SELECTOR_WIDTH = 45


@dataclass
class InteractionPattern(PatternRecord):
    """A selector that worked, and which tools used it"""
    selector: str = ""
    tools: List[str] = field(default_factory=list)

    def merge(self, incoming: "InteractionPattern"):
        super().merge(incoming)
        union_into(self.tools, incoming.tools)


class InteractionPatternStore(PatternStore[InteractionPattern]):
    """Pattern store fed by completed interaction tool calls"""

    record_type = InteractionPattern
    banner_title = "KNOWN DOM PATTERNS (auto-discovered)"
    banner_intro = ["Selectors that worked on previous visits. Try these first."]
    log_name = "InteractionObserver"

    def __init__(self, config: Optional[PatternStoreConfig] = None, persistence=None, **kwargs):
        super().__init__(config or default_interaction_config(), persistence, **kwargs)

    def should_observe(self, event: CompletedToolEvent) -> bool:
        if not event.tool_input or not event.domain:
            return False
        if event.failed:
            return False
        return isinstance(route_tool(event.tool_name), (SingleSelectorTool, MultiSelectorTool))

    def _selectors_for(self, event: CompletedToolEvent) -> Tuple[Optional[str], List[str]]:
        route = route_tool(event.tool_name)

        if isinstance(route, SingleSelectorTool):
            selector = event.tool_input.get("selector")
            if selector and isinstance(selector, str):
                return route.label, [cap_selector(selector)]
            return route.label, []

        if isinstance(route, MultiSelectorTool):
            fields = event.tool_input.get("fields")
            if isinstance(fields, dict):
                return route.label, [cap_selector(k) for k in fields if isinstance(k, str) and k]
            return route.label, []

        return None, []

    def extract(self, event: CompletedToolEvent) -> List[Tuple[str, str, InteractionPattern]]:
        label, selectors = self._selectors_for(event)
        if not label or not selectors:
            return []

        now = self.clock()
        return [
            (
                event.domain,
                selector,
                InteractionPattern(
                    domain=event.domain,
                    key=selector,
                    first_seen=now,
                    last_seen=now,
                    selector=selector,
                    tools=[label],
                ),
            )
            for selector in selectors
        ]

    def process_tool_result(self, event: CompletedToolEvent) -> List[InteractionPattern]:
        return self.observe(event)

    def format_line(self, p: InteractionPattern) -> str:
        selector = p.selector
        if len(selector) > PROMPT_SELECTOR_WIDTH:
            selector = selector[:PROMPT_SELECTOR_WIDTH - 3] + '...'
        tools = ', '.join(p.tools)
        return f"{selector.ljust(PROMPT_SELECTOR_WIDTH + 2)} {tools.ljust(18)} ({p.hit_count}x)"
