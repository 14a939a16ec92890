"""Tests for the robots.txt advisory fetch and parser."""

import httpx
import pytest

from dealradar.core.exceptions import RobotsFetchError, RobotsParseError
from dealradar.crawlers.robots import (
    RobotsRule,
    fetch_and_parse_robots_txt,
    fetch_robots_txt,
    parse_robots_txt,
    path_matches_rule,
    robots_url_for,
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParseRobotsTxt:
    """Tests for parse_robots_txt."""

    def test_basic_allow_and_disallow(self):
        result = parse_robots_txt(
            "User-agent: *\nDisallow: /admin/\nDisallow: /private/\nAllow: /public/"
        )

        assert len(result.rules) == 3
        assert result.is_blocked("/admin/page")
        assert result.is_blocked("/private/page")
        assert not result.is_blocked("/public/page")
        assert not result.is_blocked("/other/page")

    def test_ignores_comments(self):
        result = parse_robots_txt(
            "# This is a comment\nUser-agent: *\nDisallow: /secret/ # trailing comment"
        )

        assert result.disallows == ["/secret/"]
        assert result.is_blocked("/secret/page")

    def test_empty_and_comment_only(self):
        for content in ("", "# one\n# two"):
            result = parse_robots_txt(content)
            assert result.rules == []
            assert not result.is_blocked("/any/path")

    def test_directives_are_case_insensitive(self):
        result = parse_robots_txt("user-agent: *\nDISALLOW: /cart\nallow: /cart/public")

        assert result.allows == ["/cart/public"]
        assert result.disallows == ["/cart"]

    def test_empty_disallow_is_ignored(self):
        result = parse_robots_txt("User-agent: *\nDisallow:")

        assert result.rules == []

    def test_trailing_wildcard(self):
        result = parse_robots_txt("User-agent: *\nDisallow: /api/*")

        assert result.is_blocked("/api/users")
        assert result.is_blocked("/api/v1/users")
        assert not result.is_blocked("/api")

    def test_end_anchor(self):
        result = parse_robots_txt("User-agent: *\nDisallow: /private$")

        assert result.is_blocked("/private")
        assert not result.is_blocked("/private/")
        assert not result.is_blocked("/private/page")

    def test_root_allowed_by_default(self):
        result = parse_robots_txt("User-agent: *\nDisallow: /admin/")

        assert not result.is_blocked("/")
        assert not result.is_blocked("/home")

    def test_longer_allow_overrides_disallow(self):
        result = parse_robots_txt("Disallow: /shop/\nAllow: /shop/deals/")

        assert result.blocking_rule("/shop/cart") == "/shop/"
        assert result.blocking_rule("/shop/deals/today") is None

    def test_disallow_everything(self):
        result = parse_robots_txt("User-agent: *\nDisallow: /")

        assert result.blocking_rule("/deals") == "/"

    def test_rules_and_formatting(self):
        result = parse_robots_txt("Disallow: /a\nAllow: /b")

        assert result.rules == [RobotsRule(allow="/b"), RobotsRule(disallow="/a")]
        assert result.format_rules() == "Allow: /b\nDisallow: /a"

    def test_rejects_non_text(self):
        with pytest.raises(RobotsParseError):
            parse_robots_txt(b"Disallow: /")


class TestPathMatching:
    """Tests for path_matches_rule and robots_url_for."""

    def test_prefix_match(self):
        assert path_matches_rule("/deals/today", "/deals")
        assert not path_matches_rule("/home", "/deals")

    def test_empty_pattern_matches_everything(self):
        assert path_matches_rule("/anything", "")

    def test_robots_url(self):
        assert robots_url_for("https://shop.example.com/deals?page=2") == "https://shop.example.com/robots.txt"
        assert robots_url_for("shop.example.com") == "https://shop.example.com/robots.txt"


class TestFetchRobotsTxt:
    """Tests for fetch_robots_txt and fetch_and_parse_robots_txt."""

    async def test_returns_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/robots.txt"
            return httpx.Response(200, text="Disallow: /cart")

        async with mock_client(handler) as client:
            result = await fetch_robots_txt("https://example.com/deals", client=client)

        assert result.content == "Disallow: /cart"
        assert result.url == "https://example.com/robots.txt"

    async def test_404_is_empty(self, robots_404_client: httpx.AsyncClient):
        result = await fetch_robots_txt("https://example.com", client=robots_404_client)

        assert result.content == ""

    async def test_server_error_raises(self):
        async with mock_client(lambda request: httpx.Response(500)) as client:
            with pytest.raises(RobotsFetchError):
                await fetch_robots_txt("https://example.com", client=client)

    async def test_network_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("TLS failed", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(RobotsFetchError) as exc_info:
                await fetch_robots_txt("https://example.com", client=client)

        assert "TLS failed" in exc_info.value.message

    async def test_parse_404_blocks_nothing(self, robots_404_client: httpx.AsyncClient):
        result = await fetch_and_parse_robots_txt("https://example.com", client=robots_404_client)

        assert result.rules == []
        assert not result.is_blocked("/path")
