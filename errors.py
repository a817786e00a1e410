#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Dict, Any, Optional


class IngestError(Exception):
    """Base class for failures that abort a single provider's ingestion run.

    Attributes:
        provider: Provider identifier the failure belongs to, when known.
        details: Optional payload for diagnostics (status codes, paths, ...).
    """

    def __init__(self, message: str, provider: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.provider = provider
        self.details = details or {}


class FeedFetchError(IngestError):
    """Raised when the feed document cannot be retrieved (network error or non-2xx)."""


class FeedParseError(IngestError):
    """Raised when the retrieved document is not a usable RSS channel."""


class StoreWriteError(IngestError):
    """Raised when persisting the merged store fails; prior files are left in place."""


__all__ = ["IngestError", "FeedFetchError", "FeedParseError", "StoreWriteError"]
