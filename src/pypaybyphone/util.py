"""Shared utilities for validation, normalization and renewal arithmetic."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

from .const import RENEWAL_MARGIN
from .exceptions import ValidationError
from .models import RenewalState

_LICENSE_PLATE_RE = re.compile(r"[^A-Z0-9]")


def normalize_license_plate(plate: str) -> str:
    if not isinstance(plate, str):
        raise ValidationError("License plate must be a string.")
    normalized = _LICENSE_PLATE_RE.sub("", plate.upper())
    if not normalized:
        raise ValidationError("License plate is empty after normalization.")
    return normalized


def mask_license_plate(plate: str) -> str:
    if not isinstance(plate, str):
        return "***"
    normalized = _LICENSE_PLATE_RE.sub("", plate.upper())
    if not normalized:
        return "***"
    if len(normalized) <= 2:
        return "*" * len(normalized)
    if len(normalized) <= 4:
        return f"{normalized[:1]}{'*' * (len(normalized) - 2)}{normalized[-1:]}"
    masked = "*" * (len(normalized) - 4)
    return f"{normalized[:2]}{masked}{normalized[-2:]}"


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValidationError("Timestamp must be a non-empty string.")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError("Timestamp is not a valid ISO 8601 value.") from exc
    if parsed.tzinfo is None:
        raise ValidationError("Timestamp must include timezone information.")
    return parsed.astimezone(UTC)


def format_utc_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValidationError("Timestamp must include timezone information.")
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def whole_minutes(delta: timedelta) -> int:
    """Return ``delta`` in minutes, truncated toward zero."""
    return int(delta.total_seconds() / 60)


def plan_renewal(
    requested_start: datetime,
    requested_minutes: int,
    expiry: datetime,
) -> RenewalState:
    """Return the renewal state left behind by a session ending at ``expiry``.

    The next check lands one minute after expiry and the remaining duration is
    shortened by one minute, so consecutive sessions overlap slightly instead of
    leaving a gap. A non-positive ``remaining_minutes`` means the request is
    satisfied.
    """
    requested_end = requested_start + timedelta(minutes=requested_minutes)
    remaining = requested_end - RENEWAL_MARGIN - expiry
    return RenewalState(
        next_check=expiry + RENEWAL_MARGIN,
        remaining_minutes=whole_minutes(remaining),
    )
