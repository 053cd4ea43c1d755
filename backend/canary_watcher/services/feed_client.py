"""
Listing client - pulls candidate (url, title) pairs from a source

Source types:
- rss:     feedparser over the fetched feed body
- curated: same-host article links harvested from an HTML index page
- search:  OpenRouter web-search model returning JSON results
- api / x: not supported; reported as a per-source error

Every network call carries a hard timeout and a bounded redirect count.
Failures raise TransientUpstreamError / PermanentUpstreamError; the discovery
stage isolates them per source.
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlparse

import feedparser
import httpx
from bs4 import BeautifulSoup
from openai import AsyncOpenAI, APIError, APITimeoutError

from canary_watcher.errors import ConfigurationError, PermanentUpstreamError, TransientUpstreamError
from canary_watcher.models import Source, CandidateItem
from canary_watcher.utils.url_utils import canonicalize_url, url_hash, resolve_link, same_host

logger = logging.getLogger(__name__)

MAX_RSS_ITEMS = 500
MAX_CURATED_LINKS = 100

# Path segments that typically indicate article content
ARTICLE_PATH_PATTERNS = [
    re.compile(r'/blog/', re.I),
    re.compile(r'/news/', re.I),
    re.compile(r'/research/', re.I),
    re.compile(r'/article', re.I),
    re.compile(r'/post/', re.I),
    re.compile(r'/[0-9]{4}/[0-9]{2}/'),
    re.compile(r'/p/\w+', re.I),
    re.compile(r'/abs/\d'),
]

DEFAULT_SEARCH_KEYWORDS = [
    'AI research', 'AI policy', 'AI benchmark', 'AI capability', 'frontier model',
    'AI agents', 'tool use', 'AI safety', 'AGI evaluation', 'ARC-AGI',
]


def http_error_for_status(status_code: int, url: str) -> Exception:
    """404/410 are permanent, everything else (429, 5xx, odd 4xx) transient"""
    if status_code in (404, 410):
        return PermanentUpstreamError(f"HTTP {status_code} for {url}", status_code=status_code)
    return TransientUpstreamError(f"HTTP {status_code} for {url}", status_code=status_code)


def _entry_published(entry) -> Optional[datetime]:
    parsed = entry.get('published_parsed') or entry.get('updated_parsed')
    if parsed:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    return None


def _candidate(url: str, title: Optional[str], published_at: Optional[datetime] = None) -> Optional[CandidateItem]:
    canonical = canonicalize_url(url)
    if not canonical.startswith('http'):
        return None
    title = (title or '').strip() or None
    return CandidateItem(url=canonical, url_hash=url_hash(canonical), title=title, published_at=published_at)


def parse_feed(body: str) -> List[CandidateItem]:
    """Parse an RSS/Atom body into candidates, newest first, capped"""
    feed = feedparser.parse(body)
    if feed.bozo and not feed.entries:
        raise TransientUpstreamError(f"Malformed RSS/XML: {feed.get('bozo_exception')}")

    candidates = []
    for entry in feed.entries:
        link = entry.get('link')
        if not link:
            continue
        candidate = _candidate(link, entry.get('title'), _entry_published(entry))
        if candidate:
            candidates.append(candidate)

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    candidates.sort(key=lambda c: c.published_at or epoch, reverse=True)
    return candidates[:MAX_RSS_ITEMS]


def extract_article_links(html: str, page_url: str) -> List[CandidateItem]:
    """Same-host links whose path looks like an article"""
    soup = BeautifulSoup(html, 'lxml')
    candidates = []
    seen = set()

    for a in soup.find_all('a', href=True):
        href = resolve_link(page_url, a['href'])
        if not href.startswith(('http://', 'https://')):
            continue
        if not same_host(href, page_url):
            continue

        parsed = urlparse(href)
        path = parsed.path + (f'?{parsed.query}' if parsed.query else '')
        if len(path) < 5:
            continue
        if not any(p.search(path) for p in ARTICLE_PATH_PATTERNS):
            continue

        candidate = _candidate(href, a.get_text(' ', strip=True))
        if candidate and candidate.url_hash not in seen:
            seen.add(candidate.url_hash)
            candidates.append(candidate)
        if len(candidates) >= MAX_CURATED_LINKS:
            break

    return candidates


class ListingClient:
    """fetch_listing(source) -> [CandidateItem]"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        search_client: Optional['WebSearchClient'] = None
    ):
        self.http = http_client
        self.search_client = search_client

    async def fetch_listing(self, source: Source) -> List[CandidateItem]:
        if source.source_type == 'rss':
            return await self._fetch_rss(source)
        if source.source_type == 'curated':
            return await self._fetch_curated(source)
        if source.source_type == 'search':
            if self.search_client is None:
                raise ConfigurationError("Web search is not configured (OPENROUTER_API_KEY missing)")
            return await self.search_client.search(source)
        raise PermanentUpstreamError(f"Source type '{source.source_type}' is not supported")

    async def _get(self, url: str, accept: str) -> httpx.Response:
        try:
            response = await self.http.get(url, headers={'Accept': accept})
        except httpx.TimeoutException:
            raise TransientUpstreamError(f"Timed out fetching {url}")
        except httpx.TooManyRedirects:
            raise PermanentUpstreamError(f"Too many redirects for {url}")
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Network error fetching {url}: {e}")

        if response.status_code >= 400:
            raise http_error_for_status(response.status_code, url)
        return response

    async def _fetch_rss(self, source: Source) -> List[CandidateItem]:
        response = await self._get(
            source.url,
            'application/rss+xml, application/atom+xml, application/xml, text/xml',
        )
        if response.status_code == 304:
            return []
        return parse_feed(response.text)

    async def _fetch_curated(self, source: Source) -> List[CandidateItem]:
        response = await self._get(source.url, 'text/html,application/xhtml+xml')
        return extract_article_links(response.text, str(response.url))


class WebSearchClient:
    """
    Discovery through a web-search model on OpenRouter

    The model is asked for JSON {"results": [{"url", "title"}]}; anything that
    does not parse is treated as a transient upstream failure.
    """

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def search(self, source: Source) -> List[CandidateItem]:
        keywords = (source.query_config or {}).get('keywords') or DEFAULT_SEARCH_KEYWORDS
        prompt = (
            "Find recent (last 7 days) AI-related news, research updates, policy announcements "
            "and benchmark results.\n"
            f"Focus on: {', '.join(keywords[:10])}.\n"
            'Respond with JSON only: {"results": [{"url": "...", "title": "..."}]}'
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{'role': 'user', 'content': prompt}],
                response_format={'type': 'json_object'},
                temperature=0,
            )
        except APITimeoutError:
            raise TransientUpstreamError("Web search timed out")
        except APIError as e:
            raise TransientUpstreamError(f"Web search failed: {e}")

        raw = response.choices[0].message.content or ''
        try:
            results = json.loads(raw).get('results') or []
        except (ValueError, AttributeError):
            raise TransientUpstreamError("Web search returned malformed JSON")

        candidates = []
        for r in results:
            if not isinstance(r, dict) or not isinstance(r.get('url'), str):
                continue
            candidate = _candidate(r['url'], r.get('title'))
            if candidate:
                candidates.append(candidate)
        return candidates
