"""Exceptions raised by the Amazon API clients and ingestion runs."""

from __future__ import annotations

from typing import Iterable

from sellerpulse.ingest.models import RateLimitInfo


class SellerPulseError(Exception):
    """Base exception for all ingestion errors."""


class CredentialsMissingError(SellerPulseError):
    """Raised when required credentials or settings are not configured."""

    def __init__(self, service: str, missing: Iterable[str]):
        self.service = service
        self.missing = list(missing)
        super().__init__(f"{service}: missing credentials ({', '.join(self.missing)})")


class TokenExchangeError(SellerPulseError):
    """Raised when the LWA token endpoint rejects a refresh-token exchange."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Token exchange failed: HTTP {status}, body={body[:200]}")


class RateLimitedError(SellerPulseError):
    """Raised on HTTP 429 from an upstream API."""

    def __init__(self, retry_after: int, rate_limit: RateLimitInfo | None = None):
        self.retry_after = retry_after
        self.rate_limit = rate_limit
        super().__init__(f"Upstream rate limit exceeded, retry after {retry_after}s")


class UpstreamError(SellerPulseError):
    """Raised for non-2xx upstream responses other than 429."""

    def __init__(self, status: int, body: str, rate_limit: RateLimitInfo | None = None):
        self.status = status
        self.body = body
        self.rate_limit = rate_limit
        super().__init__(f"Upstream request failed: HTTP {status}, body={body[:200]}")

    @property
    def is_auth_failure(self) -> bool:
        return self.status in {401, 403}


class InvalidUpstreamResponseError(SellerPulseError):
    """Raised when a successful response does not have the expected shape."""


class ReportTimeoutError(SellerPulseError):
    """Raised when an asynchronous report is still pending after the last poll."""

    def __init__(self, report_id: str, attempts: int):
        self.report_id = report_id
        self.attempts = attempts
        super().__init__(f"Report {report_id} not ready after {attempts} attempts")


class InvalidParameterError(SellerPulseError):
    """Raised for malformed dates or request parameters."""
