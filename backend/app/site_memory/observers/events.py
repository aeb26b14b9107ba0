"""
Completed events handed to the observers by the capture layer
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class RequestHeader:
    name: str
    value: str = ""


@dataclass
class CompletedNetworkEvent:
    """A finished network request"""
    url: str
    request_kind: str = "xmlhttprequest"
    method: str = "GET"
    status_code: Optional[int] = None
    response_content_type: Optional[str] = None
    request_headers: List[RequestHeader] = field(default_factory=list)


@dataclass
class CompletedToolEvent:
    """A finished UI-interaction tool call"""
    tool_name: str
    tool_input: Optional[Dict[str, Any]]
    tool_result: Optional[Dict[str, Any]] = None
    domain: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.tool_result) and bool(self.tool_result.get("error"))


# ==================== Tool Routing ====================

@dataclass(frozen=True)
class SingleSelectorTool:
    """Tool whose ``selector`` input is the captured selector"""
    label: str


@dataclass(frozen=True)
class MultiSelectorTool:
    """Tool whose ``fields`` keys are each captured as a selector"""
    label: str


@dataclass(frozen=True)
class Untracked:
    """Tool the interaction observer ignores"""


UNTRACKED = Untracked()

ToolRoute = Union[SingleSelectorTool, MultiSelectorTool, Untracked]

TOOL_ROUTES: Dict[str, ToolRoute] = {
    "click_element": SingleSelectorTool("click"),
    "type_text": SingleSelectorTool("type"),
    "query_selector": SingleSelectorTool("query"),
    "scroll_to_element": SingleSelectorTool("scroll"),
    "hover_element": SingleSelectorTool("hover"),
    "focus_element": SingleSelectorTool("focus"),
    "select_option": SingleSelectorTool("select"),
    "set_checkbox": SingleSelectorTool("checkbox"),
    "get_element_properties": SingleSelectorTool("props"),
    "fill_form": MultiSelectorTool("fill"),
}


def route_tool(tool_name: str) -> ToolRoute:
    return TOOL_ROUTES.get(tool_name, UNTRACKED)
