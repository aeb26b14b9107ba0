"""
Knowledge System

Bounded pattern caches, the durable knowledge store, and the parser that
turns agent annotations into knowledge items.
"""

from .models import KnowledgeItem, KnowledgeType, ParsedBlock, GLOBAL_DOMAIN
from .normalizer import NormalizedPath, classify_segment, normalize_path, extract_domain, cap_selector
from .pattern_store import PatternRecord, PatternStore, DebouncedTimer
from .knowledge_store import KnowledgeStore, matches_path
from .block_parser import (
    parse_learned_blocks,
    parse_spec_blocks,
    parse_knowledge_blocks,
    strip_knowledge_blocks
)

__all__ = [
    # Models
    "KnowledgeItem",
    "KnowledgeType",
    "ParsedBlock",
    "GLOBAL_DOMAIN",
    # Normalizer
    "NormalizedPath",
    "classify_segment",
    "normalize_path",
    "extract_domain",
    "cap_selector",
    # Stores
    "PatternRecord",
    "PatternStore",
    "DebouncedTimer",
    "KnowledgeStore",
    "matches_path",
    # Parsing
    "parse_learned_blocks",
    "parse_spec_blocks",
    "parse_knowledge_blocks",
    "strip_knowledge_blocks"
]
