"""
Site Memory API

HTTP surface for the site memory stores: knowledge CRUD, review tracking,
raw notes, completed-event ingestion and prompt assembly.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from .config import SiteMemoryConfig
from .knowledge.block_parser import strip_knowledge_blocks
from .knowledge.models import GLOBAL_DOMAIN, KnowledgeType
from .knowledge.normalizer import extract_domain
from .observers.events import CompletedNetworkEvent, CompletedToolEvent, RequestHeader
from .service import SiteMemory

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/site-memory", tags=["Site Memory"])

# Global instance
_site_memory: Optional[SiteMemory] = None

SPEC_TYPES = [
    KnowledgeType.PROFILE.value,
    KnowledgeType.DOM.value,
    KnowledgeType.API.value,
    KnowledgeType.STORAGE.value,
    KnowledgeType.SHORTCUT.value,
]


def get_site_memory() -> SiteMemory:
    """Get or create the site memory instance"""
    global _site_memory
    if _site_memory is None:
        _site_memory = SiteMemory.create(SiteMemoryConfig.from_env())
    return _site_memory


# ==================== Request/Response Models ====================

class KnowledgeItemRequest(BaseModel):
    """New knowledge item"""
    title: str
    content: str = ""
    path: str = "*"
    type: str = KnowledgeType.DOM.value
    selector: Optional[str] = None
    expiry_days: Optional[int] = Field(default=None, ge=1)


class KnowledgeItemUpdate(BaseModel):
    """Partial update; only fields that are sent are applied"""
    title: Optional[str] = None
    content: Optional[str] = None
    path: Optional[str] = None
    type: Optional[str] = None
    selector: Optional[str] = None
    expiry_days: Optional[int] = Field(default=None, ge=1)


class MarkUsedRequest(BaseModel):
    success: bool = True


class RawKnowledgeRequest(BaseModel):
    content: str = ""


class IngestRequest(BaseModel):
    """Agent response text carrying LEARNED/SPEC blocks"""
    text: str


class SaveSpecRequest(BaseModel):
    """save_site_spec tool input"""
    type: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None


class HeaderModel(BaseModel):
    name: str
    value: str = ""


class NetworkEventRequest(BaseModel):
    """A completed network request reported by the capture layer"""
    url: str
    request_kind: str = "xmlhttprequest"
    method: str = "GET"
    status_code: Optional[int] = None
    response_content_type: Optional[str] = None
    request_headers: List[HeaderModel] = []


class ToolEventRequest(BaseModel):
    """A completed interaction tool call"""
    tool_name: str
    tool_input: Optional[Dict[str, Any]] = None
    tool_result: Optional[Dict[str, Any]] = None
    domain: Optional[str] = None
    url: Optional[str] = None


# ==================== Knowledge Endpoints ====================

@router.get("/knowledge")
async def get_all_knowledge(memory: SiteMemory = Depends(get_site_memory)):
    """All knowledge, grouped by domain"""
    knowledge = await memory.knowledge.get_all()
    return {
        domain: [item.to_dict() for item in items]
        for domain, items in knowledge.items()
    }


@router.get("/knowledge/{domain}")
async def get_knowledge(
    domain: str,
    path: Optional[str] = None,
    memory: SiteMemory = Depends(get_site_memory)
):
    """Items for a domain followed by global items, optionally filtered by path"""
    items = await memory.knowledge.get(domain, path)
    global_items = []
    if domain != GLOBAL_DOMAIN:
        global_items = await memory.knowledge.get(GLOBAL_DOMAIN, path)
    return {
        "domain": domain,
        "items": [item.to_dict() for item in items],
        "global_items": [item.to_dict() for item in global_items],
    }


@router.post("/knowledge/{domain}")
async def add_knowledge(
    domain: str,
    request: KnowledgeItemRequest,
    memory: SiteMemory = Depends(get_site_memory)
):
    if not request.title.strip():
        raise HTTPException(status_code=400, detail="title is required")

    saved = await memory.knowledge.add(domain, request.model_dump())
    if not saved:
        raise HTTPException(status_code=409, detail="Duplicate or invalid knowledge item")
    return saved.to_dict()


@router.patch("/knowledge/{domain}/{item_id}")
async def update_knowledge(
    domain: str,
    item_id: str,
    request: KnowledgeItemUpdate,
    memory: SiteMemory = Depends(get_site_memory)
):
    updates = request.model_dump(exclude_unset=True)
    if "title" in updates and not (updates["title"] or "").strip():
        raise HTTPException(status_code=400, detail="title cannot be blank")

    items = await memory.knowledge.get(domain)
    if not any(item.id == item_id for item in items):
        raise HTTPException(status_code=404, detail="Knowledge item not found")

    updated = await memory.knowledge.update(domain, item_id, updates)
    if not updated:
        raise HTTPException(status_code=409, detail="Another item already uses this title")
    return updated.to_dict()


@router.delete("/knowledge/{domain}/{item_id}")
async def delete_knowledge(domain: str, item_id: str, memory: SiteMemory = Depends(get_site_memory)):
    if not await memory.knowledge.delete(domain, item_id):
        raise HTTPException(status_code=404, detail="Knowledge item not found")
    return {"success": True}


@router.delete("/knowledge/{domain}")
async def clear_knowledge(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    cleared = await memory.knowledge.clear(domain)
    return {"success": True, "cleared": cleared}


@router.post("/knowledge/{domain}/{item_id}/used")
async def mark_knowledge_used(
    domain: str,
    item_id: str,
    request: MarkUsedRequest,
    memory: SiteMemory = Depends(get_site_memory)
):
    if not await memory.knowledge.mark_used(domain, item_id, request.success):
        raise HTTPException(status_code=404, detail="Knowledge item not found")
    return {"success": True}


@router.get("/knowledge/{domain}/count")
async def get_knowledge_count(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    return {"domain": domain, "count": await memory.knowledge.get_count(domain)}


@router.get("/knowledge/{domain}/new-count")
async def get_new_knowledge_count(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    """Items added since the domain was last reviewed"""
    return {
        "domain": domain,
        "new_count": await memory.knowledge.get_new_count(domain),
        "last_reviewed": await memory.knowledge.get_last_reviewed(domain),
    }


@router.post("/knowledge/{domain}/reviewed")
async def mark_reviewed(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    if not await memory.knowledge.set_last_reviewed(domain):
        raise HTTPException(status_code=500, detail="Could not record review")
    return {"domain": domain, "last_reviewed": await memory.knowledge.get_last_reviewed(domain)}


@router.get("/knowledge/{domain}/raw")
async def get_raw_knowledge(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    return {"domain": domain, "content": await memory.knowledge.get_raw(domain)}


@router.put("/knowledge/{domain}/raw")
async def set_raw_knowledge(
    domain: str,
    request: RawKnowledgeRequest,
    memory: SiteMemory = Depends(get_site_memory)
):
    """Replace the free-text notes for a domain; empty content removes them"""
    if not await memory.knowledge.set_raw(domain, request.content):
        raise HTTPException(status_code=500, detail="Could not save raw knowledge")
    return {"success": True}


@router.post("/knowledge/{domain}/ingest")
async def ingest_response(
    domain: str,
    request: IngestRequest,
    memory: SiteMemory = Depends(get_site_memory)
):
    """
    Save the LEARNED/SPEC blocks of an agent response.

    Returns the saved items and the response text with the blocks removed.
    """
    saved = await memory.knowledge.ingest_response(request.text, domain)
    return {
        "saved": [item.to_dict() for item in saved],
        "display_text": strip_knowledge_blocks(request.text),
    }


@router.post("/specs/{domain}")
async def save_site_spec(
    domain: str,
    request: SaveSpecRequest,
    memory: SiteMemory = Depends(get_site_memory)
):
    """save_site_spec tool: type, description and content are all required"""
    if not request.type or not request.description or not request.content:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: type, description, and content are all required"
        )
    if request.type not in SPEC_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid type: {request.type}. Must be one of: {', '.join(SPEC_TYPES)}"
        )

    saved = await memory.knowledge.add(domain, {
        "type": request.type,
        "title": request.description,
        "content": request.content,
        "path": "*",
    })
    if not saved:
        raise HTTPException(
            status_code=409,
            detail="Spec was duplicate or invalid - a spec with this title already exists"
        )

    logger.info(f"[SiteKnowledge] Tool saved spec for {domain}: {request.description}")
    return {
        "success": True,
        "message": f'Saved Site Spec for {domain}: "{request.description}"',
        "spec": saved.to_dict(),
    }


# ==================== Event Ingestion Endpoints ====================

@router.post("/events/network")
async def observe_network_event(request: NetworkEventRequest, memory: SiteMemory = Depends(get_site_memory)):
    event = CompletedNetworkEvent(
        url=request.url,
        request_kind=request.request_kind,
        method=request.method,
        status_code=request.status_code,
        response_content_type=request.response_content_type,
        request_headers=[RequestHeader(name=h.name, value=h.value) for h in request.request_headers],
    )
    pattern = memory.api_observer.process_completed_request(event)
    return {
        "recorded": pattern is not None,
        "pattern": pattern.to_dict() if pattern else None,
    }


@router.post("/events/tool")
async def observe_tool_event(request: ToolEventRequest, memory: SiteMemory = Depends(get_site_memory)):
    domain = request.domain
    if not domain and request.url:
        domain = extract_domain(request.url)

    event = CompletedToolEvent(
        tool_name=request.tool_name,
        tool_input=request.tool_input,
        tool_result=request.tool_result,
        domain=domain,
    )
    patterns = memory.interaction_observer.process_tool_result(event)
    return {
        "recorded": len(patterns),
        "patterns": [p.to_dict() for p in patterns],
    }


# ==================== Pattern Endpoints ====================

@router.get("/patterns/{domain}")
async def get_patterns(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    return {
        "domain": domain,
        "api": memory.api_observer.get_patterns(domain),
        "dom": memory.interaction_observer.get_patterns(domain),
    }


@router.get("/patterns/{domain}/counts")
async def get_pattern_counts(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    return {
        "domain": domain,
        "api": memory.api_observer.pattern_count(domain),
        "dom": memory.interaction_observer.pattern_count(domain),
    }


@router.delete("/patterns/{domain}")
async def clear_patterns(domain: str, memory: SiteMemory = Depends(get_site_memory)):
    memory.api_observer.clear_domain(domain)
    memory.interaction_observer.clear_domain(domain)
    return {"success": True}


# ==================== Prompt Context ====================

@router.get("/prompt-context")
async def get_prompt_context(
    url: str = Query(..., description="URL of the page the agent is on"),
    memory: SiteMemory = Depends(get_site_memory)
):
    """Site memory section of the system prompt for a page"""
    return {
        "url": url,
        "domain": extract_domain(url),
        "context": await memory.prompt.build(url),
    }
