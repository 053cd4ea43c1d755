"""
URL normalization utilities

Canonical URLs are what discovery inserts, so the same article reached through
different tracking links maps to one Item per source.
"""
import hashlib
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode, urljoin


# Blacklist of tracking parameters to remove (utm_* handled by prefix)
TRACKING_PARAMS = {
    'fbclid', 'gclid', 'gclsrc', 'dclid', 'msclkid', 'mc_cid', 'mc_eid',
    '_ga', '_gl', 'ref', 'source',
}


def _is_tracking_param(name: str) -> bool:
    name = name.lower()
    return name.startswith('utm_') or name in TRACKING_PARAMS


def canonicalize_url(url: str) -> str:
    """
    Normalize URL to canonical form for deduplication.

    - http upgraded to https
    - host lowercased
    - tracking parameters (utm_*, fbclid, gclid, ...) removed
    - remaining query parameters sorted
    - fragment dropped

    Args:
        url: The URL to normalize

    Returns:
        Canonical URL string (input returned stripped if it is not http(s))
    """
    url = (url or '').strip()
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ('http', 'https') or not parsed.netloc:
        return url

    netloc = parsed.netloc.lower()
    path = parsed.path or '/'

    params = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(k)
    ]
    query = urlencode(sorted(params))

    return urlunparse(('https', netloc, path, parsed.params, query, ''))


def url_hash(url: str) -> str:
    """sha256 hex of the canonical URL"""
    return hashlib.sha256(canonicalize_url(url).encode('utf-8')).hexdigest()


def resolve_link(base_url: str, href: str) -> str:
    """Resolve a relative link against the page it was found on"""
    return urljoin(base_url, href)


def same_host(a: str, b: str) -> bool:
    """Compare hosts ignoring a leading www."""
    def host(u):
        netloc = urlparse(u).netloc.lower()
        return netloc[4:] if netloc.startswith('www.') else netloc
    return host(a) == host(b)
