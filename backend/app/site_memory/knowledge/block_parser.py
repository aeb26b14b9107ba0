"""
Block Parser - extracts knowledge from agent output

The agent annotates its replies with HTML comments that are invisible to
the user:

    <!--LEARNED
    type: issue
    issue: Search button is covered by the cookie banner
    solution: Dismiss #cookie-accept first
    -->

    <!--SPEC
    description: Checkout flow
    content: |
      1. Click [data-testid="cart"]
      2. Click "Proceed"
    -->

Each block becomes a ParsedBlock; blocks without a title are dropped.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .models import KnowledgeType, ParsedBlock

logger = logging.getLogger(__name__)

LEARNED_BLOCK_RE = re.compile(r'<!--LEARNED\s*([\s\S]*?)-->')
SPEC_BLOCK_RE = re.compile(r'<!--SPEC\s*([\s\S]*?)-->')
STRIP_RE = re.compile(r'<!--(?:LEARNED|SPEC)\s*[\s\S]*?-->\s*')

LEGACY_TITLE_KEY = "goal"
LEGACY_CONTENT_KEY = "solution"
MULTILINE_MARKER = "|"


@dataclass(frozen=True)
class BlockGrammar:
    """Key names that differ between LEARNED and SPEC blocks"""
    title_key: str
    content_key: str
    default_type: str


LEARNED_GRAMMAR = BlockGrammar(title_key="issue", content_key="solution", default_type=KnowledgeType.ISSUE.value)
SPEC_GRAMMAR = BlockGrammar(title_key="description", content_key="content", default_type=KnowledgeType.DOM.value)


def parse_learned_blocks(text: str) -> List[ParsedBlock]:
    return _parse_blocks(text, LEARNED_BLOCK_RE, LEARNED_GRAMMAR)


def parse_spec_blocks(text: str) -> List[ParsedBlock]:
    return _parse_blocks(text, SPEC_BLOCK_RE, SPEC_GRAMMAR)


def parse_knowledge_blocks(text: str) -> List[ParsedBlock]:
    """All LEARNED blocks followed by all SPEC blocks"""
    return parse_learned_blocks(text) + parse_spec_blocks(text)


def strip_knowledge_blocks(text: str) -> str:
    """Remove every LEARNED/SPEC block (and the whitespace after it) for display"""
    return STRIP_RE.sub('', text or '')


def _parse_blocks(text: str, pattern: re.Pattern, grammar: BlockGrammar) -> List[ParsedBlock]:
    if not text:
        return []
    items = []
    for match in pattern.finditer(text):
        parsed = parse_key_value_block(match.group(1).strip(), grammar)
        if parsed:
            items.append(parsed)
    return items


def parse_key_value_block(block: str, grammar: BlockGrammar) -> Optional[ParsedBlock]:
    """
    Parse the body of one block.

    Recognised ``key: value`` lines fill the structured fields. A content
    key with an empty value (or ``|``) switches to literal mode: every
    following line is content. Lines matching no key before that point are
    kept as fallback content.
    """
    type_ = grammar.default_type
    domain = None
    path = "*"
    title = None
    content = None
    selector = None

    in_content = False
    content_lines: List[str] = []
    unmatched_lines: List[str] = []

    for line in block.split('\n'):
        if in_content:
            content_lines.append(line)
            continue

        trimmed = line.strip()
        if not trimmed:
            continue

        key, sep, rest = trimmed.partition(':')
        value = rest.strip()

        if not sep:
            unmatched_lines.append(line)
        elif key == "type":
            type_ = value
        elif key == "domain":
            domain = value
        elif key == "path":
            path = value
        elif key == "selector":
            selector = value
        elif key == "context":
            # Legacy: context maps to path
            path = "*" if value == "any" else value
        elif key in (grammar.title_key, LEGACY_TITLE_KEY):
            title = value
        elif key in (grammar.content_key, LEGACY_CONTENT_KEY):
            if value and value != MULTILINE_MARKER:
                content = value
            else:
                in_content = True
        else:
            unmatched_lines.append(line)

    if content_lines:
        content = dedent_lines(content_lines)

    if not content and unmatched_lines:
        content = dedent_lines(unmatched_lines) or None

    if not title:
        logger.warning("Invalid knowledge block - missing title")
        return None

    return ParsedBlock(
        title=title,
        type=type_,
        content=content,
        domain=domain or None,
        path=path or "*",
        selector=selector or None,
    )


def dedent_lines(lines: List[str]) -> str:
    """Strip the smallest leading-whitespace width of the non-blank lines"""
    non_empty = [line for line in lines if line.strip()]
    if not non_empty:
        return ''
    min_indent = min(len(line) - len(line.lstrip()) for line in non_empty)
    return '\n'.join(line[min_indent:] for line in lines).strip()
