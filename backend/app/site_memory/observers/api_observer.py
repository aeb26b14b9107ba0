"""
API Observer

Learns which API endpoints a site uses from completed network requests.
Requests are filtered for analytics, static assets and build artifacts,
normalized into ``METHOD /path/{id}`` keys and counted per domain.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from ..config import PatternStoreConfig, default_api_config
from ..knowledge.normalizer import extract_domain, normalize_path
from ..knowledge.pattern_store import PatternRecord, PatternStore, union_into
from .events import CompletedNetworkEvent

logger = logging.getLogger(__name__)

TRACKING_DOMAINS = frozenset({
    'google-analytics.com',
    'googletagmanager.com',
    'doubleclick.net',
    'facebook.com',
    'connect.facebook.net',
    'segment.io',
    'api.segment.io',
    'cdn.segment.com',
    'mixpanel.com',
    'api.mixpanel.com',
    'hotjar.com',
    'static.hotjar.com',
    'sentry.io',
    'newrelic.com',
    'bam.nr-data.net',
    'bugsnag.com',
    'notify.bugsnag.com',
    'browser-intake-datadoghq.com',
    'amplitude.com',
    'api.amplitude.com',
    'fullstory.com',
    'rs.fullstory.com',
    'logrocket.com',
    'r.lr-ingest.io',
    'clarity.ms',
    'googlesyndication.com',
    'adservice.google.com',
    'pagead2.googlesyndication.com',
})

NOISY_PATH_RE = re.compile(
    r'^/(?:favicon\.ico|robots\.txt|sw\.js)'
    r'|^/_next/static/'
    r'|^/static/(?:js|css)/'
    r'|^/assets/'
    r'|^/fonts/'
    r'|^/sockjs-node/'
    r'|\.hot-update\.'
)
HASHED_SEGMENT_RE = re.compile(r'[a-f0-9]{20,}\.')

USEFUL_CONTENT_TYPES = (
    'json',
    'xml',
    'text/plain',
    'text/html',
    'form',
    'graphql',
    'protobuf',
    'grpc',
)

AUTH_HEADER_NAMES = frozenset({'authorization', 'x-api-key', 'x-auth-token', 'x-csrf-token'})

PRIMARY_REQUEST_KIND = 'xmlhttprequest'


def is_tracking_host(hostname: str) -> bool:
    return any(hostname == tracker or hostname.endswith('.' + tracker) for tracker in TRACKING_DOMAINS)


@dataclass
class ApiPattern(PatternRecord):
    """An observed endpoint: ``GET /api/users/{id}``"""
    method: str = "GET"
    pattern: str = "/"
    query_params: List[str] = field(default_factory=list)
    status_codes: List[int] = field(default_factory=list)
    content_type: str = ""
    auth_headers: List[str] = field(default_factory=list)
    sample_url: str = ""

    def merge(self, incoming: "ApiPattern"):
        super().merge(incoming)
        self.sample_url = incoming.sample_url
        union_into(self.status_codes, incoming.status_codes)
        union_into(self.query_params, incoming.query_params)
        union_into(self.auth_headers, incoming.auth_headers)
        if incoming.content_type and not self.content_type:
            self.content_type = incoming.content_type


class ApiPatternStore(PatternStore[ApiPattern]):
    """Pattern store fed by completed network requests"""

    record_type = ApiPattern
    banner_title = "OBSERVED API PATTERNS (auto-discovered)"
    banner_intro = [
        "Endpoints passively observed on this domain. Use them directly.",
        'To save one permanently, use save_site_spec with type "api".',
    ]
    log_name = "ApiObserver"

    def __init__(self, config: Optional[PatternStoreConfig] = None, persistence=None, **kwargs):
        super().__init__(config or default_api_config(), persistence, **kwargs)

    def should_observe(self, event: CompletedNetworkEvent) -> bool:
        """True if the request looks like a real API call worth tracking"""
        if event.request_kind != PRIMARY_REQUEST_KIND:
            return False
        if not event.status_code:
            return False

        try:
            url = urlsplit(event.url)
            hostname = (url.hostname or '').lower()
        except ValueError:
            return False

        if url.scheme not in ('http', 'https') or not hostname:
            return False
        if is_tracking_host(hostname):
            return False
        if NOISY_PATH_RE.search(url.path):
            return False
        if any(HASHED_SEGMENT_RE.search(seg) for seg in url.path.split('/')):
            return False

        content_type = (event.response_content_type or '').lower()
        if content_type and not any(t in content_type for t in USEFUL_CONTENT_TYPES):
            return False

        return True

    def extract(self, event: CompletedNetworkEvent) -> List[Tuple[str, str, ApiPattern]]:
        domain = extract_domain(event.url)
        normalized = normalize_path(event.url)
        if not domain or normalized is None:
            return []

        method = (event.method or 'GET').upper()
        key = f"{method} {normalized.path}"
        now = self.clock()

        # Header names only, values are never read
        auth_headers: List[str] = []
        for header in event.request_headers or []:
            if header.name.lower() in AUTH_HEADER_NAMES and header.name not in auth_headers:
                auth_headers.append(header.name)

        content_type = (event.response_content_type or '').split(';')[0].strip()

        incoming = ApiPattern(
            domain=domain,
            key=key,
            first_seen=now,
            last_seen=now,
            method=method,
            pattern=normalized.path,
            query_params=list(normalized.query_params),
            status_codes=[event.status_code] if event.status_code else [],
            content_type=content_type,
            auth_headers=auth_headers,
            sample_url=event.url,
        )
        return [(domain, key, incoming)]

    def process_completed_request(self, event: CompletedNetworkEvent) -> Optional[ApiPattern]:
        recorded = self.observe(event)
        return recorded[0] if recorded else None

    def format_line(self, p: ApiPattern) -> str:
        line = f"{p.method.ljust(6)} {p.pattern}"

        meta = []
        if p.status_codes:
            meta.append(','.join(str(code) for code in p.status_codes))
        if p.content_type:
            meta.append(p.content_type.replace('application/', '').replace('text/', ''))
        if p.auth_headers:
            meta.append('auth: ' + ', '.join(p.auth_headers))
        if p.query_params:
            meta.append('params: ' + ', '.join(p.query_params))

        if meta:
            line += '  [' + '] ['.join(meta) + ']'

        return line + f"  ({p.hit_count}x)"
