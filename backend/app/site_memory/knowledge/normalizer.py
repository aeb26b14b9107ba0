"""
Normalizer - turns noisy identifiers into stable pattern keys

URLs are reduced to a path template by replacing ids, hashes and tokens
with placeholders, e.g. ``/api/users/42/posts`` -> ``/api/users/{id}/posts``.
Selectors are only length-capped; they are used verbatim as keys.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import parse_qsl, urlsplit

UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
OBJECT_ID_RE = re.compile(r'^[0-9a-f]{24}$', re.IGNORECASE)
NUMERIC_RE = re.compile(r'^\d+$')
LONG_HEX_RE = re.compile(r'^[0-9a-f]{16,}$', re.IGNORECASE)
LONG_TOKEN_RE = re.compile(r'^[A-Za-z0-9_-]{20,}$')
KEBAB_WORDS_RE = re.compile(r'^[a-z]+-[a-z]+(-[a-z]+)*$')

MAX_SELECTOR_LENGTH = 100


@dataclass
class NormalizedPath:
    """Path template plus the sorted query parameter names"""
    path: str
    query_params: List[str] = field(default_factory=list)


def classify_segment(segment: str) -> str:
    """Replace a variable-looking path segment with a placeholder"""
    if not segment:
        return segment
    if UUID_RE.match(segment):
        return '{uuid}'
    if OBJECT_ID_RE.match(segment):
        return '{id}'
    if NUMERIC_RE.match(segment):
        return '{id}'
    if LONG_HEX_RE.match(segment):
        return '{hash}'
    if LONG_TOKEN_RE.match(segment) and not KEBAB_WORDS_RE.match(segment):
        return '{token}'
    return segment


def normalize_path(url: str) -> Optional[NormalizedPath]:
    """
    Normalize a URL into a path template.

    Returns None when the URL cannot be parsed; callers skip the event.
    Query parameter values are never kept, only their names.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url)
        # Accessing .port validates the netloc
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None

    segments = [classify_segment(seg) for seg in parts.path.split('/')]
    path = '/'.join(segments) or '/'

    names = {name for name, _ in parse_qsl(parts.query, keep_blank_values=True)}
    return NormalizedPath(path=path, query_params=sorted(names))


def extract_domain(url: str) -> Optional[str]:
    """Lower-cased hostname without a leading ``www.``, or None"""
    if not url or not isinstance(url, str):
        return None
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return re.sub(r'^www\.', '', hostname.lower())


def cap_selector(selector: str) -> str:
    """Selectors are used verbatim, but never longer than 100 characters"""
    return selector[:MAX_SELECTOR_LENGTH]
