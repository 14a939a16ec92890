"""robots.txt advisory fetch and parser.

Results are informational: they are recorded on stores and crawl jobs but
never stop a crawl.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
import structlog

from dealradar.config import settings
from dealradar.core.exceptions import RobotsFetchError, RobotsParseError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RobotsRule:
    """One directive. Exactly one of ``allow`` / ``disallow`` is non-empty."""

    allow: str = ""
    disallow: str = ""


@dataclass(frozen=True)
class RobotsFetchResult:
    content: str
    url: str


def path_matches_rule(path: str, pattern: str) -> bool:
    """Prefix match with ``*`` (trailing wildcard) and ``$`` (exact end) support."""
    if not pattern or pattern == "/":
        return True
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    if pattern.endswith("$"):
        return path == pattern[:-1]
    return path.startswith(pattern)


@dataclass
class ParsedRobotsTxt:
    """Allow/Disallow directives collected from every user-agent group."""

    allows: List[str] = field(default_factory=list)
    disallows: List[str] = field(default_factory=list)

    @property
    def rules(self) -> List[RobotsRule]:
        return [RobotsRule(allow=a) for a in self.allows] + [
            RobotsRule(disallow=d) for d in self.disallows
        ]

    def blocking_rule(self, path: str) -> Optional[str]:
        """Return the Disallow pattern that blocks ``path``, or None.

        A matching Allow only overrides a Disallow when it is strictly longer.
        """
        for disallow in self.disallows:
            if not path_matches_rule(path, disallow):
                continue
            overridden = any(
                path_matches_rule(path, allow) and len(allow) > len(disallow)
                for allow in self.allows
            )
            if not overridden:
                return disallow
        return None

    def is_blocked(self, path: str) -> bool:
        return self.blocking_rule(path) is not None

    def format_rules(self) -> str:
        """Render directives one per line, the form kept in Store.robots_rules."""
        lines = [f"Allow: {a}" for a in self.allows]
        lines.extend(f"Disallow: {d}" for d in self.disallows)
        return "\n".join(lines)


def parse_robots_txt(content: str) -> ParsedRobotsTxt:
    """Parse robots.txt content.

    User-agent groups are not distinguished; every Allow and Disallow line
    counts. Comments (``#`` to end of line) are ignored.

    Raises:
        RobotsParseError: If ``content`` is not text
    """
    if not isinstance(content, str):
        raise RobotsParseError(f"expected text, got {type(content).__name__}")

    parsed = ParsedRobotsTxt()
    for line in content.split("\n"):
        if line.startswith("#"):
            continue
        directive = line.split("#", 1)[0].strip()
        lower = directive.lower()

        if lower.startswith("allow:"):
            value = directive[6:].strip()
            if value:
                parsed.allows.append(value)
        elif lower.startswith("disallow:"):
            value = directive[9:].strip()
            if value:
                parsed.disallows.append(value)

    return parsed


def robots_url_for(base_url: str) -> str:
    """``/robots.txt`` at the root of ``base_url``; bare hosts get https."""
    if not urlsplit(base_url).scheme.startswith("http"):
        base_url = f"https://{base_url}"
    return urljoin(base_url, "/robots.txt")


async def fetch_robots_txt(
    base_url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> RobotsFetchResult:
    """Download robots.txt for a site.

    Args:
        base_url: Any URL on the site
        client: Optional httpx client (tests inject a MockTransport)

    Returns:
        Content and the URL fetched. A 404 yields empty content.

    Raises:
        RobotsFetchError: On network failure or any other non-2xx status
    """
    robots_url = robots_url_for(base_url)

    try:
        if client is None:
            async with httpx.AsyncClient(
                timeout=settings.ROBOTS_TIMEOUT_SECONDS,
                follow_redirects=True,
            ) as owned_client:
                response = await owned_client.get(robots_url)
        else:
            response = await client.get(robots_url)
    except httpx.HTTPError as e:
        raise RobotsFetchError(base_url, str(e) or type(e).__name__) from e

    if response.status_code == 404:
        return RobotsFetchResult(content="", url=robots_url)
    if not response.is_success:
        raise RobotsFetchError(base_url, f"HTTP {response.status_code}")

    return RobotsFetchResult(content=response.text, url=robots_url)


async def fetch_and_parse_robots_txt(
    base_url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> ParsedRobotsTxt:
    """Fetch and parse robots.txt; missing or empty files block nothing."""
    result = await fetch_robots_txt(base_url, client=client)
    if not result.content:
        return ParsedRobotsTxt()

    parsed = parse_robots_txt(result.content)
    logger.debug(
        "robots_txt_parsed",
        url=result.url,
        allows=len(parsed.allows),
        disallows=len(parsed.disallows),
    )
    return parsed
