"""
Passive observers

Pattern stores fed by completed network requests and completed
interaction tool calls.
"""

from .events import (
    RequestHeader,
    CompletedNetworkEvent,
    CompletedToolEvent,
    SingleSelectorTool,
    MultiSelectorTool,
    UNTRACKED,
    TOOL_ROUTES,
    route_tool
)
from .api_observer import ApiPattern, ApiPatternStore
from .interaction_observer import InteractionPattern, InteractionPatternStore

__all__ = [
    "RequestHeader",
    "CompletedNetworkEvent",
    "CompletedToolEvent",
    "SingleSelectorTool",
    "MultiSelectorTool",
    "UNTRACKED",
    "TOOL_ROUTES",
    "route_tool",
    "ApiPattern",
    "ApiPatternStore",
    "InteractionPattern",
    "InteractionPatternStore"
]
