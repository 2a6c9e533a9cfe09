"""Decide whether a project's daily auto-generation is due this hour."""

from __future__ import annotations

import logging
import re
from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from topicgen.errors import ValidationError
from topicgen.models import TopicGeneratorSettings

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")


def parse_schedule_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    match = _TIME_RE.match(value)
    if not match:
        raise ValidationError(f"Invalid schedule time {value!r}, expected HH:MM[:SS]")
    hour, minute, second = (int(g) if g else 0 for g in match.groups())
    try:
        return time(hour, minute, second)
    except ValueError as exc:
        raise ValidationError(f"Invalid schedule time {value!r}: {exc}") from exc


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def is_due(settings: TopicGeneratorSettings, now: datetime, window_minutes: int = 30) -> bool:
    """True when ``now``, in the project's timezone, falls in the firing window.

    The window opens on the scheduled hour and stays open for
    ``window_minutes`` minutes. Naive ``now`` values are read as UTC.
    """
    if not settings.auto_generation_enabled:
        return False
    scheduled = parse_schedule_time(settings.auto_generation_time)
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    local = now.astimezone(resolve_timezone(settings.auto_generation_timezone))
    return local.hour == scheduled.hour and local.minute < window_minutes
