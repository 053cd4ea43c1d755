"""
Content client - fetches an article and reduces it to clean markdown

Pipeline per URL:
1. httpx GET (hard timeout, bounded redirects)
2. trafilatura extraction (markdown) + metadata
3. langdetect on the first 1000 chars
4. validate_content(): length, word count, paywall phrases, truncation

404/410 and validation rejections are permanent; timeouts, network errors
and 5xx are transient and left to the queue's retry/backoff.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import httpx
import trafilatura
from trafilatura.metadata import extract_metadata
from langdetect import detect
from langdetect.lang_detect_exception import LangDetectException

from canary_watcher.errors import PermanentUpstreamError, TransientUpstreamError
from canary_watcher.services.feed_client import http_error_for_status

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 200
MIN_WORD_COUNT = 300
MAX_CONTENT_LENGTH = 100_000
TRUNCATION_MARKER = "\n\n[Content truncated]"

PAYWALL_INDICATORS = [
    re.compile(r'subscribe\s+to\s+read', re.I),
    re.compile(r'log\s+in\s+to\s+read', re.I),
    re.compile(r'sign\s+in\s+to\s+continue', re.I),
    re.compile(r'members-only', re.I),
    re.compile(r'paywall', re.I),
    re.compile(r'premium\s+content', re.I),
    re.compile(r"you've\s+reached\s+your\s+article\s+limit", re.I),
    re.compile(r'free\s+articles\s+remaining', re.I),
    re.compile(r'subscribe\s+now\s+for\s+full\s+access', re.I),
    re.compile(r'unlock\s+this\s+article', re.I),
    re.compile(r'register\s+to\s+read', re.I),
]


@dataclass
class ValidationResult:
    valid: bool
    content: str
    word_count: int
    truncated: bool = False
    paywalled: bool = False

    @property
    def rejection_reason(self) -> Optional[str]:
        if self.valid:
            return None
        if self.paywalled:
            return "Paywalled content"
        return f"Content too short ({len(self.content)} chars, {self.word_count} words)"


@dataclass
class FetchedContent:
    """Clean article body plus what we learned about it"""
    url: str
    content: str
    word_count: int
    truncated: bool = False
    metadata: dict = field(default_factory=dict)


def count_words(text: str) -> int:
    return len(text.split())


def validate_content(raw: Optional[str]) -> ValidationResult:
    """Enforce min/max length, detect paywalls, truncate when needed"""
    content = (raw or '').strip()
    paywalled = any(p.search(content) for p in PAYWALL_INDICATORS)
    word_count = count_words(content)

    if len(content) < MIN_CONTENT_LENGTH or word_count < MIN_WORD_COUNT:
        return ValidationResult(valid=False, content=content, word_count=word_count, paywalled=paywalled)

    truncated = False
    if len(content) > MAX_CONTENT_LENGTH:
        content = content[:MAX_CONTENT_LENGTH] + TRUNCATION_MARKER
        truncated = True
        word_count = count_words(content)

    return ValidationResult(
        valid=not paywalled,
        content=content,
        word_count=word_count,
        truncated=truncated,
        paywalled=paywalled,
    )


def detect_content_type(url: str, title: str = '', description: str = '') -> str:
    """paper / report / blog / article, from URL and title hints"""
    combined = f"{title} {description}".lower()
    url = url.lower()
    if 'arxiv' in combined or 'paper' in combined or '/pdf' in url or 'arxiv.org' in url:
        return 'paper'
    if 'report' in combined or 'whitepaper' in combined or 'analysis' in combined:
        return 'report'
    if 'blog' in combined or '/blog' in url or 'medium.com' in url or 'substack.com' in url:
        return 'blog'
    return 'article'


def detect_language(text: str) -> Optional[str]:
    try:
        return detect(text[:1000])
    except LangDetectException:
        return None


def extract_clean_content(html: str, url: str) -> FetchedContent:
    """
    Run trafilatura over raw HTML

    Raises:
        PermanentUpstreamError: nothing extractable, too short, or paywalled
    """
    extracted = trafilatura.extract(
        html,
        url=url,
        output_format='markdown',
        include_comments=False,
        include_tables=True,
        favor_precision=True,
    )
    if not extracted:
        raise PermanentUpstreamError(f"No extractable content at {url}")

    result = validate_content(extracted)
    if not result.valid:
        raise PermanentUpstreamError(f"{result.rejection_reason} at {url}")

    meta = extract_metadata(html, default_url=url)
    title = getattr(meta, 'title', None) if meta else None
    description = getattr(meta, 'description', None) if meta else None

    metadata = {
        'title': title,
        'description': description,
        'author': getattr(meta, 'author', None) if meta else None,
        'published_time': getattr(meta, 'date', None) if meta else None,
        'site_name': getattr(meta, 'sitename', None) if meta else None,
        'language': detect_language(result.content),
        'content_type': detect_content_type(url, title or '', description or ''),
        'source_url': url,
        'truncated': result.truncated,
    }

    return FetchedContent(
        url=url,
        content=result.content,
        word_count=result.word_count,
        truncated=result.truncated,
        metadata=metadata,
    )


class ContentClient:
    """fetch_content(url) -> FetchedContent"""

    def __init__(self, http_client: httpx.AsyncClient):
        self.http = http_client

    async def fetch_content(self, url: str) -> FetchedContent:
        try:
            response = await self.http.get(url, headers={'Accept': 'text/html,application/xhtml+xml'})
        except httpx.TimeoutException:
            raise TransientUpstreamError(f"Timed out fetching {url}")
        except httpx.TooManyRedirects:
            raise PermanentUpstreamError(f"Too many redirects for {url}")
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Network error fetching {url}: {e}")

        if response.status_code >= 400:
            raise http_error_for_status(response.status_code, url)

        content_type = response.headers.get('content-type', '')
        if 'html' not in content_type and 'xml' not in content_type and content_type:
            raise PermanentUpstreamError(f"Unsupported content type '{content_type}' at {url}")

        # CPU-bound parse runs in a worker thread
        return await asyncio.to_thread(extract_clean_content, response.text, str(response.url))
