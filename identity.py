#!/usr/bin/env python3
"""
Stable episode identifiers.

An episode id is ``<YYYYMMDD>-<provider>-ep<number>`` where the date is the
UTC publish date and the number is the feed's episode ordinal, or the token
``unknown`` when the feed does not publish one. Re-ingesting the same feed
entry always yields the same id, which is what makes the merge idempotent.
"""

from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from feedparser.datetimes import _parse_date as feedparser_parse_date

from config import get_logger

logger = get_logger("identity")

UNKNOWN_EPISODE = "unknown"

_CUSTOM_FORMATS = (
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %Z",
    "%d %b %Y %H:%M:%S",
    "%Y-%m-%d",
)


def derive_episode_id(date: datetime, provider: str, episode_number: Optional[int]) -> str:
    """Return the stable id for an episode.

    Args:
        date: Publish timestamp; naive values are taken as UTC
        provider: Provider identifier
        episode_number: Published ordinal, or None when the feed has none
    """
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    date_token = date.astimezone(timezone.utc).strftime("%Y%m%d")
    number_token = str(episode_number) if episode_number is not None else UNKNOWN_EPISODE
    return f"{date_token}-{provider}-ep{number_token}"


def parse_publish_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse a feed date string into an aware UTC datetime.

    Tries feedparser's date handlers (RFC 822 and W3DTF plus many
    real-world variants), then ``email.utils``, then a few fixed formats.
    Returns None when nothing matches.
    """
    if not raw or not raw.strip():
        return None
    raw = raw.strip()
    for parser in (_parse_with_feedparser, _parse_with_email_utils, _parse_with_custom_formats):
        parsed = parser(raw)
        if parsed is not None:
            return parsed
    logger.debug(f"Unparseable publish date '{raw}'")
    return None


def _parse_with_feedparser(date_str: str) -> Optional[datetime]:
    try:
        time_struct = feedparser_parse_date(date_str)
        if time_struct:
            return datetime.fromtimestamp(timegm(time_struct), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        return None
    return None


def _parse_with_email_utils(date_str: str) -> Optional[datetime]:
    try:
        dt = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_with_custom_formats(date_str: str) -> Optional[datetime]:
    for fmt in _CUSTOM_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
        except (ValueError, TypeError):
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    return None
