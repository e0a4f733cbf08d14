"""Run results and the mapping from ingestion errors to HTTP responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from sellerpulse.db.gateway import PersistenceGateway
from sellerpulse.ingest.exceptions import (
    CredentialsMissingError,
    InvalidParameterError,
    RateLimitedError,
    TokenExchangeError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionOutcome:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class RunTimer:
    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._started = clock()

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    @property
    def duration(self) -> str:
        return f"{self.elapsed_ms}ms"


def log_safely(
    gateway: PersistenceGateway, log_type: str, status: str, details: Mapping[str, Any]
) -> int | None:
    """Write an audit entry without letting a logging failure mask the run result."""
    try:
        return gateway.append_log(log_type, status, details)
    except Exception:
        logger.exception("Failed to record %s/%s ingestion log", log_type, status)
        return None


def failure_outcome(
    exc: BaseException,
    *,
    service: str,
    timer: RunTimer,
    log_id: int | None,
    distinguish_auth: bool = False,
    extra: Mapping[str, Any] | None = None,
) -> IngestionOutcome:
    body: dict[str, Any] = {
        "success": False,
        "logId": log_id,
        "duration": timer.duration,
        **(extra or {}),
    }
    if isinstance(exc, RateLimitedError):
        body.update(
            error="Rate limit exceeded",
            message=f"{service} rate limit hit, please retry later",
            retryAfter=exc.retry_after,
        )
        return IngestionOutcome(429, body)
    if isinstance(exc, CredentialsMissingError):
        body.update(
            error="Configuration error",
            message="Missing required API credentials",
            missing=exc.missing,
        )
        return IngestionOutcome(500, body)
    if distinguish_auth and (
        isinstance(exc, TokenExchangeError) or (isinstance(exc, UpstreamError) and exc.is_auth_failure)
    ):
        body.update(error="Authentication failed", message=f"Invalid or expired {service} credentials")
        return IngestionOutcome(401, body)
    if isinstance(exc, InvalidParameterError):
        body.update(error="Invalid parameter", message=str(exc))
        return IngestionOutcome(400, body)
    if isinstance(exc, SQLAlchemyError):
        body.update(error="Persistence error", message=str(exc.__class__.__name__))
        return IngestionOutcome(500, body)
    body.update(error="Internal server error", message=str(exc))
    return IngestionOutcome(500, body)


def failure_details(exc: BaseException, timer: RunTimer, **extra: Any) -> dict[str, Any]:
    details: dict[str, Any] = {
        "error": str(exc),
        "errorType": exc.__class__.__name__,
        "duration": timer.elapsed_ms,
    }
    if isinstance(exc, RateLimitedError):
        details["retryAfter"] = exc.retry_after
    if isinstance(exc, UpstreamError):
        details["status"] = exc.status
    details.update(extra)
    return details


def parse_flag(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in {"0", "false", "no", "off"}
