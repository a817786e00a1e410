#!/usr/bin/env python3
"""
Utility classes and functions for the ingestion pipeline.

This module contains helpers shared by the normalizer, the validator and the
store: retry backoff, text cleanup for feed fields, and ISO-8601 timestamp
conversion for the persisted JSON.
"""

from asyncio import sleep
from datetime import datetime, timezone
from typing import Optional
import re

from bs4 import BeautifulSoup

from config import get_logger

logger = get_logger("utils")

_CDATA_OPEN = re.compile(r'^<!\[CDATA\[')
_CDATA_CLOSE = re.compile(r'\]\]>$')
_PARENTHETICAL = re.compile(r'\s*\(.*?\)\s*')


class RetryHelper:
    """Helper class for retry loops with linear backoff.

    The delay before retry ``n`` (1-based) is ``n * base_delay`` seconds,
    capped at ``max_delay``.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_attempts: Total number of attempts, including the first one
            base_delay: Delay unit in seconds
            max_delay: Maximum delay in seconds between attempts
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay to wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-based)

        Returns:
            Delay in seconds
        """
        return min(self.base_delay * attempt, self.max_delay)

    def should_retry(self, attempt: int, max_attempts: Optional[int] = None) -> bool:
        """Whether another attempt follows the given failed one (1-based)."""
        limit = self.max_attempts if max_attempts is None else max_attempts
        return attempt < limit

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay after the given failed attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def clean_cdata(text: Optional[str]) -> str:
    """Unwrap a literal CDATA wrapper and trim surrounding whitespace."""
    if not text:
        return ""
    text = text.strip()
    return _CDATA_CLOSE.sub('', _CDATA_OPEN.sub('', text)).strip()


def strip_markup(html_content: Optional[str]) -> str:
    """Reduce an HTML fragment to its plain text, trimmed."""
    if not html_content:
        return ""
    if '<' not in html_content:
        return html_content.strip()
    return BeautifulSoup(html_content, "html.parser").get_text().strip()


def strip_parenthetical(value: Optional[str]) -> str:
    """Drop the first parenthetical group, e.g. ``jo@example.com (Jo)`` -> ``jo@example.com``."""
    if not value:
        return ""
    return _PARENTHETICAL.sub('', value, count=1)


def to_iso_z(value: datetime) -> str:
    """Render an aware datetime as UTC ISO-8601 with milliseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (as written by ``to_iso_z``) into an aware UTC datetime."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Unable to parse stored timestamp '{value}'")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
