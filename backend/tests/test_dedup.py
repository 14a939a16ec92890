"""Tests for URL canonicalisation and dedup keys."""

import re

import pytest

from dealradar.core.exceptions import UrlParseError
from dealradar.crawlers.dedup import (
    TRACKING_PARAMS,
    build_dedup_key,
    create_hash,
    normalize_title,
    normalize_url,
)


# ============================================================================
# TESTS: URL NORMALIZATION
# ============================================================================

class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_lowercases_host_and_drops_fragment(self):
        assert normalize_url("https://Shop.Example.COM/Item#reviews") == "https://shop.example.com/Item"

    def test_strips_default_ports(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:80/a") == "http://example.com/a"

    def test_keeps_non_default_port(self):
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"
        assert normalize_url("https://example.com:80/a") == "https://example.com:80/a"

    def test_removes_tracking_params_and_sorts(self):
        url = "https://example.com/p?b=2&utm_source=news&a=1&gclid=abc&fbclid=x"
        assert normalize_url(url) == "https://example.com/p?a=1&b=2"

    def test_tracking_param_match_is_case_sensitive(self):
        assert normalize_url("https://example.com/p?REF=x&ref=y") == "https://example.com/p?REF=x"

    def test_sort_is_stable_for_repeated_keys(self):
        assert normalize_url("https://example.com/p?b=1&a=2&b=0") == "https://example.com/p?a=2&b=1&b=0"

    def test_query_dropped_when_only_tracking_params(self):
        assert normalize_url("https://example.com/p?utm_medium=email&spm=1") == "https://example.com/p"

    def test_strips_single_trailing_slash(self):
        assert normalize_url("https://example.com/deals/") == "https://example.com/deals"

    def test_root_path_kept(self):
        assert normalize_url("https://example.com/") == "https://example.com/"
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_query_values_reencoded_form_style(self):
        assert normalize_url("https://example.com/s?q=a%20b") == "https://example.com/s?q=a+b"

    @pytest.mark.parametrize("raw", ["not-a-url", "", "   ", "https://", "http://example.com:99999/x"])
    def test_malformed_url_raises(self, raw):
        with pytest.raises(UrlParseError):
            normalize_url(raw)

    def test_deny_list_contents(self):
        for key in ("utm_source", "utm_pubreferrer", "_branch_match_id", "igshid", "mkt_tok", "spm"):
            assert key in TRACKING_PARAMS
        assert len(TRACKING_PARAMS) == 27


# ============================================================================
# TESTS: TITLE + HASH
# ============================================================================

class TestTitleAndHash:
    """Tests for normalize_title and create_hash."""

    def test_normalize_title(self):
        assert normalize_title("  Big   Sale\tNOW\n ") == "big sale now"

    def test_create_hash_is_sha256_hex(self):
        assert create_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


# ============================================================================
# TESTS: DEDUP KEY
# ============================================================================

class TestBuildDedupKey:
    """Tests for build_dedup_key."""

    def test_key_format(self):
        result = build_dedup_key("https://example.com/item", "Widget")

        assert result.canonical_url == "https://example.com/item"
        assert re.fullmatch(r"[0-9a-f]{64}", result.dedup_key)
        assert result.dedup_key == create_hash("https://example.com/item|widget")

    def test_equivalent_sightings_share_a_key(self):
        a = build_dedup_key(
            "https://Shop.example.com:443/item/?utm_campaign=spring&color=red#top",
            "  Widget   PRO ",
        )
        b = build_dedup_key("https://shop.example.com/item?color=red", "widget pro")

        assert a == b

    def test_different_titles_differ(self):
        a = build_dedup_key("https://example.com/item", "Widget")
        b = build_dedup_key("https://example.com/item", "Widget 2")

        assert a.dedup_key != b.dedup_key

    def test_invalid_url_raises(self):
        with pytest.raises(UrlParseError):
            build_dedup_key("not-a-url", "Widget")
