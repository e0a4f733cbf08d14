"""Datetime helpers."""

from __future__ import annotations

import os
import re
from datetime import date, datetime, timedelta

import pendulum

DEFAULT_TZ = "UTC"

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def today_in_tz() -> date:
    current = now_in_tz()
    return date(current.year, current.month, current.day)


def yesterday(today: date | None = None) -> date:
    return (today or today_in_tz()) - timedelta(days=1)


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def is_valid_iso_date(value: object) -> bool:
    """Strict ``YYYY-MM-DD`` check that also rejects impossible calendar dates."""
    if not isinstance(value, str) or not ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_iso_date(value: str) -> date:
    if not is_valid_iso_date(value):
        raise ValueError(f"Invalid date string: {value!r}")
    return date.fromisoformat(value)


def last_week_start(today: date) -> date:
    """Monday of the previous calendar week."""
    return today - timedelta(days=today.weekday() + 7)


def last_week_end(today: date) -> date:
    """Sunday of the previous calendar week."""
    return today - timedelta(days=today.weekday() + 1)


def last_month_end(today: date) -> date:
    return date(today.year, today.month, 1) - timedelta(days=1)


def last_month_start(today: date) -> date:
    return last_month_end(today).replace(day=1)


DATE_TEMPLATES = {
    "{{YESTERDAY}}": yesterday,
    "{{TODAY}}": lambda today: today,
    "{{LAST_WEEK_START}}": last_week_start,
    "{{LAST_WEEK_END}}": last_week_end,
    "{{LAST_MONTH_START}}": last_month_start,
    "{{LAST_MONTH_END}}": last_month_end,
}


def resolve_date_template(value: object, today: date | None = None) -> object:
    """Replace a scheduler placeholder such as ``{{YESTERDAY}}`` with a date string.

    Anything that is not a known placeholder is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    resolver = DATE_TEMPLATES.get(value.strip())
    if resolver is None:
        return value
    resolved = resolver(today or today_in_tz())
    return format_date(date(resolved.year, resolved.month, resolved.day))


def interval_bounds(start: str, end: str) -> tuple[str, str]:
    """Whole-day UTC bounds in the upstream interval notation."""
    start_day = parse_iso_date(start)
    end_day = parse_iso_date(end)
    return (
        f"{format_date(start_day)}T00:00:00.000Z",
        f"{format_date(end_day)}T23:59:59.999Z",
    )


def amz_timestamp(moment: datetime | None = None) -> str:
    current = moment or pendulum.now("UTC")
    return current.strftime("%Y%m%dT%H%M%SZ")


def latest_created_before(bound: str, now: datetime | None = None, lag_minutes: int = 2) -> str:
    """Cap an upper ``CreatedBefore`` bound at ``lag_minutes`` before now.

    The Orders API rejects bounds later than two minutes before the request.
    """
    current = pendulum.instance(now) if now is not None else pendulum.now("UTC")
    latest = current.in_timezone("UTC").subtract(minutes=lag_minutes)
    if pendulum.parse(bound) <= latest:
        return bound
    return latest.strftime("%Y-%m-%dT%H:%M:%S.000Z")
