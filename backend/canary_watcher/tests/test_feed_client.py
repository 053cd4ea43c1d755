"""
Listing tests: URL canonicalisation, RSS parsing, curated link harvesting,
and HTTP status mapping
"""

import httpx
import pytest
from datetime import datetime, timezone

from canary_watcher.errors import ConfigurationError, PermanentUpstreamError, TransientUpstreamError
from canary_watcher.services.feed_client import (
    ListingClient,
    extract_article_links,
    http_error_for_status,
    parse_feed,
)
from canary_watcher.tests.fakes import make_source
from canary_watcher.utils.url_utils import canonicalize_url, same_host, url_hash

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Lab blog</title>
    <item>
      <title>Older post</title>
      <link>https://lab.test/blog/old?utm_source=rss</link>
      <pubDate>Mon, 02 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Newer post</title>
      <link>https://lab.test/blog/new</link>
      <pubDate>Sun, 01 Mar 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link at all</title>
    </item>
  </channel>
</rss>
"""

INDEX_HTML = """
<html><body>
  <a href="/blog/post-one">Post one</a>
  <a href="https://www.lab.test/research/paper-2">Paper two</a>
  <a href="https://other.test/blog/elsewhere">Elsewhere</a>
  <a href="/about">About</a>
  <a href="/blog/post-one#comments">Comments</a>
  <a href="mailto:press@lab.test">Press</a>
</body></html>
"""


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestUrlUtils:

    def test_canonicalize(self):
        url = 'http://Example.COM/a?utm_source=x&b=2&a=1#frag'
        assert canonicalize_url(url) == 'https://example.com/a?a=1&b=2'

    def test_tracking_params_removed(self):
        assert canonicalize_url('https://lab.test/p?fbclid=1&gclid=2&id=7') == 'https://lab.test/p?id=7'

    def test_empty_path_becomes_slash(self):
        assert canonicalize_url('https://lab.test') == 'https://lab.test/'

    def test_non_http_left_alone(self):
        assert canonicalize_url('  mailto:x@lab.test ') == 'mailto:x@lab.test'

    def test_hash_ignores_tracking_variants(self):
        assert url_hash('https://lab.test/a?utm_medium=email') == url_hash('http://LAB.test/a')

    def test_same_host_ignores_www(self):
        assert same_host('https://www.lab.test/a', 'https://lab.test/b')
        assert not same_host('https://lab.test/a', 'https://other.test/a')


class TestParseFeed:

    def test_newest_first_and_canonical(self):
        candidates = parse_feed(RSS)

        assert [c.url for c in candidates] == ['https://lab.test/blog/new', 'https://lab.test/blog/old']
        assert candidates[0].title == 'Newer post'
        assert candidates[0].published_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_garbage_is_transient(self):
        with pytest.raises(TransientUpstreamError):
            parse_feed('this is not a feed')


class TestCuratedLinks:

    def test_same_host_article_links_only(self):
        candidates = extract_article_links(INDEX_HTML, 'https://lab.test/')

        assert [c.url for c in candidates] == [
            'https://lab.test/blog/post-one',
            'https://www.lab.test/research/paper-2',
        ]
        assert candidates[0].title == 'Post one'


class TestStatusMapping:

    @pytest.mark.parametrize('status', [404, 410])
    def test_gone_is_permanent(self, status):
        error = http_error_for_status(status, 'https://lab.test/x')
        assert isinstance(error, PermanentUpstreamError)
        assert error.status_code == status

    @pytest.mark.parametrize('status', [403, 429, 500, 503])
    def test_others_are_transient(self, status):
        assert isinstance(http_error_for_status(status, 'https://lab.test/x'), TransientUpstreamError)


class TestListingClient:

    @pytest.mark.asyncio
    async def test_rss_source(self):
        async with client_for(lambda request: httpx.Response(200, text=RSS)) as http:
            candidates = await ListingClient(http).fetch_listing(make_source('a', url='https://lab.test/feed.xml'))
        assert len(candidates) == 2

    @pytest.mark.asyncio
    async def test_curated_source(self):
        source = make_source('a', url='https://lab.test/', source_type='curated')
        async with client_for(lambda request: httpx.Response(200, text=INDEX_HTML)) as http:
            candidates = await ListingClient(http).fetch_listing(source)
        assert len(candidates) == 2

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self):
        async with client_for(lambda request: httpx.Response(404)) as http:
            with pytest.raises(PermanentUpstreamError):
                await ListingClient(http).fetch_listing(make_source('a'))

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        async with client_for(handler) as http:
            with pytest.raises(TransientUpstreamError):
                await ListingClient(http).fetch_listing(make_source('a'))

    @pytest.mark.asyncio
    async def test_unsupported_type(self):
        async with client_for(lambda request: httpx.Response(200)) as http:
            with pytest.raises(PermanentUpstreamError):
                await ListingClient(http).fetch_listing(make_source('a', source_type='x'))

    @pytest.mark.asyncio
    async def test_search_without_key_is_configuration_error(self):
        async with client_for(lambda request: httpx.Response(200)) as http:
            with pytest.raises(ConfigurationError):
                await ListingClient(http).fetch_listing(make_source('a', source_type='search'))
