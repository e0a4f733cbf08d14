"""Shared-secret authentication for scheduler-triggered endpoints."""

from __future__ import annotations

import logging
import os
from typing import Annotated

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)

cron_secret_header = APIKeyHeader(name="x-cron-secret", auto_error=False)


async def require_cron_secret(
    request: Request,
    cron_secret: Annotated[str | None, Security(cron_secret_header)] = None,
) -> str:
    """Reject the call unless ``x-cron-secret`` equals ``CRON_SECRET``.

    Plain equality comparison; see DESIGN.md for the timing question.
    """
    expected = os.environ.get("CRON_SECRET")
    if not expected or not cron_secret or cron_secret != expected:
        client = request.headers.get("x-forwarded-for") or (request.client.host if request.client else None)
        logger.warning("Unauthorized cron request from %s", client)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": "Invalid or missing x-cron-secret header"},
        )
    return cron_secret
