#!/usr/bin/env python3
"""
Data models for the ingestion pipeline.

Episodes and channels are plain dataclasses with JSON conversion helpers;
the JSON field names are the ones the serving layer reads from
episodes.json and channels.json.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from utils import parse_iso_datetime, to_iso_z

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _optional_int(value: Any) -> Optional[int]:
    # bool is an int subclass; JSON never means it as an episode number
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


@dataclass
class Episode:
    """One published unit of audio content."""

    id: str
    provider: str
    title: str = ""
    episode_number: Optional[int] = None
    date: datetime = EPOCH
    audio_url: str = ""
    image_url: str = ""
    url: str = ""
    duration: str = ""
    author: str = ""
    summary: str = ""
    description: str = ""

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        data["date"] = to_iso_z(self.date)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Episode":
        """Build an episode from persisted JSON, tolerating missing or mistyped fields."""
        return cls(
            id=_text(data, "id"),
            provider=_text(data, "provider"),
            title=_text(data, "title"),
            episode_number=_optional_int(data.get("episode_number")),
            date=parse_iso_datetime(data.get("date")) or EPOCH,
            audio_url=_text(data, "audio_url"),
            image_url=_text(data, "image_url"),
            url=_text(data, "url"),
            duration=_text(data, "duration"),
            author=_text(data, "author"),
            summary=_text(data, "summary"),
            description=_text(data, "description"),
        )


@dataclass
class Channel:
    """Podcast-level metadata for one provider; ``id`` is the provider identifier."""

    id: str
    name: str = ""
    description: str = ""
    author: str = ""
    website: str = ""
    rss_url: str = ""
    image_url: str = ""
    language: str = "en"
    total_episodes: int = 0
    last_updated: str = ""

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        return cls(
            id=_text(data, "id"),
            name=_text(data, "name"),
            description=_text(data, "description"),
            author=_text(data, "author"),
            website=_text(data, "website"),
            rss_url=_text(data, "rss_url"),
            image_url=_text(data, "image_url"),
            language=_text(data, "language") or "en",
            total_episodes=_optional_int(data.get("total_episodes")) or 0,
            last_updated=_text(data, "last_updated"),
        )


@dataclass
class ProviderDataset:
    """Output of one ingestion run for one provider, consumed by the store.

    ``known``, ``validated`` and ``rejected`` count how the feed's candidates
    were classified: already persisted (not probed), newly probed and
    reachable, newly probed and dropped.
    """

    provider: str
    episodes: List[Episode] = field(default_factory=list)
    channel: Optional[Channel] = None
    known: int = 0
    validated: int = 0
    rejected: int = 0

    @property
    def metadata(self) -> Dict[str, Any]:
        return {"provider": self.provider, "total_episodes": len(self.episodes)}


@dataclass
class ReconcileResult:
    """Counts reported by a store reconcile."""

    provider: str
    added: int = 0
    updated: int = 0
    total_episodes: int = 0
    provider_episodes: int = 0
    total_providers: int = 0
    total_channels: int = 0


@dataclass
class IngestOutcome:
    """Structured result of one provider's ingest-and-reconcile run."""

    provider: str
    success: bool
    feed_episodes: int = 0
    skipped_validation: int = 0
    validated: int = 0
    rejected: int = 0
    added: int = 0
    updated: int = 0
    provider_episodes: int = 0
    error: Optional[str] = None
