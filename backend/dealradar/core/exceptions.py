"""Custom exception classes for the application."""

from typing import Optional


class DealRadarException(Exception):
    """Base exception for all Deal Radar errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(DealRadarException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class UrlParseError(DealRadarException):
    """Raised when a URL cannot be canonicalised."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"URL normalization failed for '{url}': {reason}")


class CrawlInProgressError(DealRadarException):
    """Raised when a crawl is requested for a store that is already crawling."""

    def __init__(self, store_id: str):
        self.store_id = store_id
        super().__init__(f"Crawl already in progress for store '{store_id}'")


class ExtractionError(DealRadarException):
    """Base class for extraction agent failures.

    Any ExtractionError ends the crawl job in ``failed`` status with the
    message recorded as ``error_details``.
    """


class ApiErrorStartAgent(ExtractionError):
    """Raised when the extraction agent refuses or fails to start a job."""

    def __init__(self, reason: str):
        super().__init__(f"Agent failed to start: {reason}")


class ApiErrorAgentStatus(ExtractionError):
    """Raised when the agent status endpoint fails or returns garbage."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        super().__init__(f"Failed to get agent status for job id {job_id}: {reason}")


class AgentStateError(ExtractionError):
    """Raised when the agent reports the extraction itself failed."""

    def __init__(self, job_id: str, error_message: str):
        self.job_id = job_id
        self.error_message = error_message
        super().__init__(f"Extraction failed for job id {job_id}: {error_message}")


class ExtractionTimeoutError(ExtractionError):
    """Raised when the poll budget is exhausted before a terminal state."""

    def __init__(self, job_id: str, polls: int):
        self.job_id = job_id
        self.polls = polls
        super().__init__(f"Extraction timed out for job id {job_id} after {polls} polls")


class RobotsFetchError(DealRadarException):
    """Raised when robots.txt cannot be fetched (network or non-404 HTTP error)."""

    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        super().__init__(f"Failed to fetch robots.txt for {url}: {reason or 'unknown error'}")


class RobotsParseError(DealRadarException):
    """Raised when robots.txt content cannot be parsed."""

    def __init__(self, reason: str):
        super().__init__(f"Failed to parse robots.txt: {reason}")
