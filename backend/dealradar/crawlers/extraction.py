"""Extraction agent: asynchronous "extract deals from these URLs" jobs.

The crawl workflow talks to an ``ExtractionAgent``. Production uses the
Firecrawl agent REST API; tests substitute a fake implementing the same
two calls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

import httpx
import structlog
from pydantic import ValidationError

from dealradar.config import settings
from dealradar.core.exceptions import ApiErrorAgentStatus, ApiErrorStartAgent
from dealradar.crawlers.retry import http_retry
from dealradar.schemas.deal import DealCandidate, deal_candidates_adapter

logger = structlog.get_logger(__name__)


EXTRACT_DEALS_PROMPT = """
You are a helpful assistant that extracts deals from a web store.
You will be given a web store and you will need to extract the deals from the store.
Return the deals in an array of objects as per the schema you were given.
""".strip()


@dataclass(frozen=True)
class AgentJob:
    """Handle of a started extraction job."""

    job_id: str


@dataclass(frozen=True)
class AgentStatePending:
    expires_at: Optional[str] = None


@dataclass(frozen=True)
class AgentStateCompleted:
    data: List[DealCandidate] = field(default_factory=list)
    expires_at: Optional[str] = None


@dataclass(frozen=True)
class AgentStateError:
    error_message: str
    expires_at: Optional[str] = None


AgentState = Union[AgentStatePending, AgentStateCompleted, AgentStateError]


class ExtractionAgent(ABC):
    """Interface of an external extraction agent."""

    @abstractmethod
    async def start(self, urls: Sequence[str]) -> AgentJob:
        """Submit an extraction job for ``urls``.

        Raises:
            ApiErrorStartAgent: If the job could not be started
        """

    @abstractmethod
    async def status(self, job_id: str) -> AgentState:
        """Fetch the current state of a job.

        Raises:
            ApiErrorAgentStatus: If the status call fails or the payload
                cannot be decoded
        """

    async def aclose(self) -> None:
        """Release any held resources."""


def decode_agent_data(job_id: str, data: Any) -> List[DealCandidate]:
    """Decode the agent's ``data`` payload into deal candidates.

    The agent answers either with a bare array or with an object wrapping
    it under ``deals``.
    """
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("deals", [])
    try:
        return deal_candidates_adapter.validate_python(data)
    except ValidationError as e:
        raise ApiErrorAgentStatus(job_id, f"invalid deal payload: {e.error_count()} errors") from e


class FirecrawlAgentClient(ExtractionAgent):
    """Firecrawl agent REST client.

    ``POST /v2/agent`` starts a job; ``GET /v2/agent/{id}`` reports
    ``processing``, ``completed`` or ``failed``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Firecrawl client.

        Args:
            api_key: API key (defaults to settings.FIRECRAWL_API_KEY)
            base_url: API root (defaults to settings.FIRECRAWL_API_URL)
            timeout: Request timeout in seconds
            client: Pre-built httpx client, mainly for tests
        """
        self.api_key = api_key if api_key is not None else settings.FIRECRAWL_API_KEY
        self.base_url = (base_url or settings.FIRECRAWL_API_URL).rstrip("/")
        self.timeout = timeout or settings.FIRECRAWL_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None
        self.logger = logger.bind(service="firecrawl_agent")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @http_retry
    async def _post(self, path: str, payload: dict) -> httpx.Response:
        return await self._get_client().post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
        )

    @http_retry
    async def _get(self, path: str) -> httpx.Response:
        return await self._get_client().get(
            f"{self.base_url}{path}",
            headers=self._headers(),
        )

    async def start(self, urls: Sequence[str]) -> AgentJob:
        if not self.api_key:
            raise ApiErrorStartAgent("FIRECRAWL_API_KEY is not configured")

        payload = {
            "urls": list(urls),
            "prompt": EXTRACT_DEALS_PROMPT,
            "schema": deal_candidates_adapter.json_schema(),
        }

        try:
            response = await self._post("/v2/agent", payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise ApiErrorStartAgent(f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ApiErrorStartAgent(str(e) or type(e).__name__) from e

        job_id = body.get("id") if isinstance(body, dict) else None
        if not job_id:
            raise ApiErrorStartAgent(f"response did not include a job id: {body!r}")

        self.logger.info("agent_job_started", job_id=job_id, urls=list(urls))
        return AgentJob(job_id=str(job_id))

    async def status(self, job_id: str) -> AgentState:
        if not self.api_key:
            raise ApiErrorAgentStatus(job_id, "FIRECRAWL_API_KEY is not configured")

        try:
            response = await self._get(f"/v2/agent/{job_id}")
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise ApiErrorAgentStatus(job_id, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ApiErrorAgentStatus(job_id, str(e) or type(e).__name__) from e

        if not isinstance(body, dict):
            raise ApiErrorAgentStatus(job_id, "unexpected response body")

        status = body.get("status")
        expires_at = body.get("expiresAt")

        if status == "processing":
            return AgentStatePending(expires_at=expires_at)
        if status == "completed":
            return AgentStateCompleted(
                data=decode_agent_data(job_id, body.get("data")),
                expires_at=expires_at,
            )
        if status == "failed":
            return AgentStateError(
                error_message=str(body.get("error") or "agent job failed"),
                expires_at=expires_at,
            )

        raise ApiErrorAgentStatus(job_id, f"unknown agent status: {status!r}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
