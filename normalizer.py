#!/usr/bin/env python3
"""
Feed tag normalization.

Turns a parsed RSS ``<channel>`` node and its ``<item>`` nodes into
``Channel`` and ``Episode`` records. Feeds from different hosts put the same
information in different places (iTunes tags, plain RSS tags, Media RSS,
Dublin Core), so every field is resolved by an ordered tuple of extraction
rules. A rule is a pure function ``node -> Optional[str]``; the first rule
that yields a non-empty value wins.

Nothing here performs I/O and nothing raises on missing or malformed tags:
absent values become empty strings (or None for the episode number).
"""

import re
from typing import Callable, Iterable, List, Optional

from bs4 import Tag

from config import get_logger
from identity import derive_episode_id, parse_publish_date
from models import EPOCH, Channel, Episode
from utils import clean_cdata, strip_markup, strip_parenthetical

logger = get_logger("normalizer")

Rule = Callable[[Optional[Tag]], Optional[str]]

# Tracking/redirect prefixes stripped from enclosure URLs, applied in order
TRACKING_PATTERNS = (
    re.compile(r'^https?://www\.podtrac\.com/pts/redirect\.mp3/', re.I),
    re.compile(r'^https?://dts\.podtrac\.com/redirect\.mp3/', re.I),
    re.compile(r'^https?://tracking\.feedpress\.it/', re.I),
    re.compile(r'^https?://.*?/redirect\.mp3/', re.I),
    re.compile(r'^https?://prfx\.byspotify\.com/e/op3\.dev/e/', re.I),
    re.compile(r'^https?://pdst\.fm/e/', re.I),
    re.compile(r'^https?://pfx\.vpixl\.com/[^/]+/', re.I),
    re.compile(r'^https?://pscrb\.fm/rss/p/', re.I),
)

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')


# ---------------------------------------------------------------------------
# Tree access
# ---------------------------------------------------------------------------
def qualified_name(tag: Tag) -> str:
    """Return ``prefix:name`` for namespaced tags and ``name`` otherwise."""
    name = tag.name or ""
    if tag.prefix and ':' not in name:
        return f"{tag.prefix}:{name}"
    return name


def find_children(node: Optional[Tag], qname: str) -> List[Tag]:
    """Direct children of ``node`` whose qualified name is exactly ``qname``."""
    if node is None:
        return []
    return [child for child in node.children if isinstance(child, Tag) and qualified_name(child) == qname]


def find_child(node: Optional[Tag], qname: str) -> Optional[Tag]:
    children = find_children(node, qname)
    return children[0] if children else None


# ---------------------------------------------------------------------------
# Rule constructors
# ---------------------------------------------------------------------------
def text_of(qname: str) -> Rule:
    """Text content of a direct child."""
    def rule(node: Optional[Tag]) -> Optional[str]:
        child = find_child(node, qname)
        if child is None:
            return None
        return clean_cdata(child.get_text()) or None
    rule.__name__ = f"text_of({qname})"
    return rule


def markup_of(qname: str) -> Rule:
    """Content of a direct child, keeping any unescaped inline markup."""
    def rule(node: Optional[Tag]) -> Optional[str]:
        child = find_child(node, qname)
        if child is None:
            return None
        if any(isinstance(c, Tag) for c in child.children):
            return clean_cdata(child.decode_contents()) or None
        return clean_cdata(child.get_text()) or None
    rule.__name__ = f"markup_of({qname})"
    return rule


def attr_of(qname: str, attr: str) -> Rule:
    """Attribute value of a direct child."""
    def rule(node: Optional[Tag]) -> Optional[str]:
        child = find_child(node, qname)
        if child is None:
            return None
        value = child.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        return value.strip() if isinstance(value, str) and value.strip() else None
    rule.__name__ = f"attr_of({qname}@{attr})"
    return rule


def nested_text(*path: str) -> Rule:
    """Text content of a descendant reached through a path of direct children."""
    def rule(node: Optional[Tag]) -> Optional[str]:
        current = node
        for qname in path:
            current = find_child(current, qname)
            if current is None:
                return None
        return clean_cdata(current.get_text()) or None
    rule.__name__ = f"nested_text({'/'.join(path)})"
    return rule


def transformed(inner: Rule, fn: Callable[[str], str]) -> Rule:
    """Post-process the value of another rule."""
    def rule(node: Optional[Tag]) -> Optional[str]:
        value = inner(node)
        if not value:
            return None
        return fn(value) or None
    rule.__name__ = f"transformed({inner.__name__})"
    return rule


def first_value(node: Optional[Tag], rules: Iterable[Rule], default: str = "") -> str:
    """Apply rules in priority order and return the first non-empty value."""
    for rule in rules:
        value = rule(node)
        if value:
            return value
    return default


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------
CHANNEL_NAME_RULES = (text_of("title"),)
CHANNEL_DESCRIPTION_RULES = (markup_of("description"), markup_of("itunes:summary"))
CHANNEL_AUTHOR_RULES = (
    text_of("itunes:author"),
    text_of("author"),
    nested_text("itunes:owner", "itunes:name"),
    transformed(text_of("managingEditor"), strip_parenthetical),
)
CHANNEL_IMAGE_RULES = (
    attr_of("itunes:image", "href"),
    text_of("itunes:image"),
    nested_text("image", "url"),
)
CHANNEL_WEBSITE_RULES = (text_of("link"),)
CHANNEL_LANGUAGE_RULES = (text_of("language"),)

EPISODE_TITLE_RULES = (text_of("title"),)
EPISODE_AUTHOR_RULES = (
    text_of("itunes:author"),
    transformed(text_of("author"), strip_parenthetical),
    text_of("dc:creator"),
)
EPISODE_IMAGE_RULES = (
    attr_of("itunes:image", "href"),
    text_of("itunes:image"),
    attr_of("media:thumbnail", "url"),
    attr_of("media:content", "url"),
)
EPISODE_DESCRIPTION_RULES = (markup_of("description"), markup_of("content:encoded"))
EPISODE_SUMMARY_RULES = (
    markup_of("itunes:summary"),
    markup_of("itunes:subtitle"),
    markup_of("description"),
)
EPISODE_NUMBER_RULES = (text_of("itunes:episode"), text_of("podcast:episode"))
EPISODE_DATE_RULES = (text_of("pubDate"), text_of("dc:date"))
EPISODE_AUDIO_RULES = (attr_of("enclosure", "url"),)
EPISODE_LINK_RULES = (text_of("link"),)
EPISODE_DURATION_RULES = (text_of("itunes:duration"),)


# ---------------------------------------------------------------------------
# Record extraction
# ---------------------------------------------------------------------------
def canonicalize_audio_url(url: Optional[str]) -> str:
    """Strip known tracking/redirect prefixes, leaving the origin URL."""
    if not url:
        return ""
    clean_url = url.strip()
    for pattern in TRACKING_PATTERNS:
        clean_url = pattern.sub('https://', clean_url, count=1)
    return clean_url


def parse_episode_number(value: Optional[str]) -> Optional[int]:
    """Parse the leading integer of an episode ordinal (``"165"``, ``"12 (bonus)"``)."""
    if not value:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def extract_channel(channel: Optional[Tag], provider: str, feed_url: str = "") -> Channel:
    """Build the Channel record for a provider from its ``<channel>`` node."""
    return Channel(
        id=provider,
        name=first_value(channel, CHANNEL_NAME_RULES),
        description=first_value(channel, CHANNEL_DESCRIPTION_RULES),
        author=first_value(channel, CHANNEL_AUTHOR_RULES),
        website=first_value(channel, CHANNEL_WEBSITE_RULES),
        rss_url=feed_url,
        image_url=first_value(channel, CHANNEL_IMAGE_RULES),
        language=first_value(channel, CHANNEL_LANGUAGE_RULES, default="en"),
        total_episodes=0,
    )


def extract_episode(item: Optional[Tag], channel_image_url: str, provider: str) -> Episode:
    """Build a candidate Episode from one ``<item>`` node.

    The channel image is used when the item has no image of its own. An
    unparseable publish date falls back to the Unix epoch, which yields a
    ``19700101-...`` id.
    """
    raw_date = first_value(item, EPISODE_DATE_RULES)
    published = parse_publish_date(raw_date)
    if published is None:
        logger.warning(f"{provider}: unparseable publish date {raw_date!r}, using epoch")
        published = EPOCH

    episode_number = parse_episode_number(first_value(item, EPISODE_NUMBER_RULES))

    return Episode(
        id=derive_episode_id(published, provider, episode_number),
        provider=provider,
        title=first_value(item, EPISODE_TITLE_RULES),
        episode_number=episode_number,
        date=published,
        audio_url=canonicalize_audio_url(first_value(item, EPISODE_AUDIO_RULES)),
        image_url=first_value(item, EPISODE_IMAGE_RULES) or channel_image_url or "",
        url=first_value(item, EPISODE_LINK_RULES),
        duration=first_value(item, EPISODE_DURATION_RULES),
        author=first_value(item, EPISODE_AUTHOR_RULES),
        summary=strip_markup(first_value(item, EPISODE_SUMMARY_RULES)),
        description=first_value(item, EPISODE_DESCRIPTION_RULES),
    )
