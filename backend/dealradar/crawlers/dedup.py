"""URL canonicalisation and dedup key derivation.

Two sightings of the same deal (same page, same product title) must map to
the same key no matter which tracking parameters, host casing, default port,
fragment or trailing slash the extraction agent happened to return.
"""

import hashlib
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

from dealradar.core.exceptions import UrlParseError


# Query parameters removed before comparison (case-sensitive key match)
TRACKING_PARAMS = frozenset([
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
    "mc_eid",
    "mc_cid",
    "ref",
    "referrer",
    "aff",
    "aff_id",
    "affiliate",
    "utm_id",
    "utm_reader",
    "utm_viz_id",
    "utm_pubreferrer",
    "oly_enc_id",
    "oly_anon_id",
    "ascsrc",
    "cmp",
    "_branch_match_id",
    "_branch_referrer",
    "igshid",
    "mkt_tok",
    "spm",
])

DEFAULT_PORTS = {"http": 80, "https": 443}

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class DedupKey:
    """Canonical URL plus the content hash derived from it."""

    canonical_url: str
    dedup_key: str


def normalize_url(raw: str) -> str:
    """Canonicalise a URL for comparison.

    Lowercases scheme and host, drops default ports, the fragment and
    tracking parameters, sorts the remaining parameters by key (stable, so
    repeated keys keep their order) and strips one trailing slash from the
    path unless the path is the root.

    Args:
        raw: URL as extracted

    Returns:
        Canonical URL string

    Raises:
        UrlParseError: If the URL has no scheme or host, or an invalid port
    """
    if not raw or not raw.strip():
        raise UrlParseError(raw or "", "empty URL")

    try:
        parts = urlsplit(raw.strip())
        port = parts.port
    except ValueError as e:
        raise UrlParseError(raw, str(e)) from e

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        raise UrlParseError(raw, "URL must have a scheme and a host")

    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"

    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parts.path
    if not path and scheme in DEFAULT_PORTS:
        path = "/"
    if path.endswith("/") and path != "/":
        path = path[:-1]

    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    kept.sort(key=lambda pair: pair[0])
    query = urlencode(kept, quote_via=quote_plus, safe="*")

    return urlunsplit((scheme, netloc, path, query, ""))


def normalize_title(title: str) -> str:
    """Trim, lowercase and collapse whitespace runs to a single space."""
    return _WHITESPACE_RE.sub(" ", title.strip().lower())


def create_hash(value: str) -> str:
    """SHA-256 of the UTF-8 bytes of ``value`` as 64 lowercase hex chars."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_dedup_key(url: str, title: str) -> DedupKey:
    """Build the canonical URL and dedup key for a deal sighting.

    Raises:
        UrlParseError: If ``url`` cannot be canonicalised
    """
    canonical_url = normalize_url(url)
    dedup_key = create_hash(f"{canonical_url}|{normalize_title(title)}")
    return DedupKey(canonical_url=canonical_url, dedup_key=dedup_key)
