#!/usr/bin/env python3
"""
Podcast feed fetcher and parser.

This module downloads a provider's RSS document, normalizes its channel and
items into records, and validates the audio of episodes it has not seen
before. Episodes already present in the store are trusted as-is, so the
number of network probes per run scales with new episodes only.
"""

import re
from asyncio import get_event_loop, wait_for, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Iterable, List, Optional, Set, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup

from config import config, get_logger
from errors import FeedFetchError, FeedParseError
from models import Channel, Episode, ProviderDataset
from normalizer import extract_channel, extract_episode, find_child, find_children
from telemetry import init_telemetry, trace_span
from validator import BatchValidator, ReachabilityValidator, format_client_error

# Module-specific logger
logger = get_logger("fetcher")
init_telemetry("podcast-ingest-fetcher")

# Namespaces podcast feeds commonly use without declaring them
KNOWN_NAMESPACES = {
    "itunes": "http://www.itunes.com/dtds/podcast-1.0.dtd",
    "podcast": "https://podcastindex.org/namespace/1.0",
    "media": "http://search.yahoo.com/mrss/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "content": "http://purl.org/rss/1.0/modules/content/",
}

_RSS_OPEN = re.compile(rb'<rss\b')


def declare_missing_namespaces(content: Any) -> Any:
    """Add xmlns declarations to ``<rss>`` for known prefixes the document uses but never declares.

    Without a declaration lxml drops the prefix, so ``<itunes:episode>`` would
    parse as a plain ``episode`` tag.
    """
    is_text = isinstance(content, str)
    data = content.encode("utf-8") if is_text else content
    missing = [
        prefix for prefix in KNOWN_NAMESPACES
        if re.search(rb'</?' + prefix.encode() + rb':', data)
        and not re.search(rb'xmlns:' + prefix.encode() + rb'\s*=', data)
    ]
    if missing:
        declarations = "".join(f' xmlns:{prefix}="{KNOWN_NAMESPACES[prefix]}"' for prefix in missing)
        data = _RSS_OPEN.sub(lambda m: m.group(0) + declarations.encode(), data, count=1)
        logger.debug(f"Declared missing feed namespaces: {', '.join(missing)}")
    return data.decode("utf-8") if is_text else data


class FeedFetcher:
    def __init__(self, window_size: Optional[int] = None) -> None:
        self.executor = ThreadPoolExecutor()
        self.window_size = window_size

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, feed_url, provider, session: {
            "feed.provider": provider,
            "feed.url": feed_url,
        },
    )
    async def fetch_feed(self, feed_url: str, provider: str, session: ClientSession) -> bytes:
        """Download the feed document once. Any failure is fatal for the provider."""
        logger.info(f"Fetching feed: {provider} from {feed_url}")
        try:
            async with session.get(
                feed_url,
                headers={'User-Agent': config.USER_AGENT},
                timeout=ClientTimeout(total=config.FEED_TIMEOUT),
                max_redirects=config.MAX_REDIRECTS,
            ) as response:
                if not 200 <= response.status < 300:
                    raise FeedFetchError(
                        f"HTTP {response.status} fetching feed",
                        provider=provider,
                        details={"url": feed_url, "status": response.status},
                    )
                return await response.read()
        except TimeoutError as e:
            raise FeedFetchError(
                f"Timed out after {config.FEED_TIMEOUT}s fetching feed",
                provider=provider,
                details={"url": feed_url},
            ) from e
        except ClientError as e:
            raise FeedFetchError(
                f"Network error fetching feed: {format_client_error(e)}",
                provider=provider,
                details={"url": feed_url},
            ) from e

    def parse_feed(self, content: Any, provider: str, feed_url: str = "") -> Tuple[Channel, List[Episode]]:
        """Parse an RSS document into its channel record and candidate episodes.

        Runs in the executor; items are always collected as a list so a
        one-item feed is handled the same way as a long one.
        """
        soup = BeautifulSoup(declare_missing_namespaces(content), "xml")
        rss = find_child(soup, "rss")
        channel_node = find_child(rss, "channel")
        if channel_node is None:
            raise FeedParseError(
                "Document is not an RSS feed (no rss/channel element)",
                provider=provider,
                details={"url": feed_url},
            )

        channel = extract_channel(channel_node, provider, feed_url)
        items = find_children(channel_node, "item")
        episodes = [extract_episode(item, channel.image_url, provider) for item in items]
        return channel, episodes

    async def validate_new(self, episodes: List[Episode], session: ClientSession) -> List[bool]:
        """Probe the audio URL of each episode, returning aligned results."""
        if not episodes:
            return []
        batch = BatchValidator(ReachabilityValidator(session), window_size=self.window_size)
        return await batch.validate_all([episode.audio_url for episode in episodes])

    @trace_span(
        "ingest",
        tracer_name="fetcher",
        attr_from_args=lambda self, feed_url, provider, existing_ids, session: {
            "feed.provider": provider,
            "feed.url": feed_url,
            "feed.existing_ids": len(existing_ids) if existing_ids else 0,
        },
    )
    async def ingest(
        self,
        feed_url: str,
        provider: str,
        existing_ids: Optional[Iterable[str]],
        session: ClientSession,
    ) -> ProviderDataset:
        """Fetch, normalize and validate one provider's feed.

        Args:
            feed_url: RSS document URL
            provider: Provider identifier used in episode ids
            existing_ids: Ids already persisted; their audio is not probed again
            session: Shared aiohttp session

        Returns:
            ProviderDataset with the known episodes plus the new ones whose
            audio answered, in feed order.

        Raises:
            FeedFetchError: the document could not be downloaded
            FeedParseError: the document is not an RSS channel
        """
        known_ids: Set[str] = set(existing_ids or ())
        content = await self.fetch_feed(feed_url, provider, session)
        channel, candidates = await self.run_in_executor(self.parse_feed, content, provider, feed_url)
        logger.info(f"Feed {provider} parsed: {len(candidates)} items, channel '{channel.name}'")

        new_candidates = [episode for episode in candidates if episode.id not in known_ids]
        known_count = len(candidates) - len(new_candidates)
        logger.info(
            f"{provider}: {known_count} known episodes skip validation, {len(new_candidates)} new to validate"
        )

        results = await self.validate_new(new_candidates, session)
        reachable = {id(episode) for episode, ok in zip(new_candidates, results) if ok}
        rejected = [episode for episode, ok in zip(new_candidates, results) if not ok]
        for episode in rejected:
            logger.info(f"Dropping {episode.id}: audio unreachable ({episode.audio_url or 'no enclosure'})")

        episodes = [
            episode for episode in candidates
            if episode.id in known_ids or id(episode) in reachable
        ]
        channel.total_episodes = len(episodes)

        logger.info(
            f"{provider} summary: items={len(candidates)} known={known_count} "
            f"validated={len(reachable)} rejected={len(rejected)}"
        )
        return ProviderDataset(
            provider=provider,
            episodes=episodes,
            channel=channel,
            known=known_count,
            validated=len(reachable),
            rejected=len(rejected),
        )

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in a thread pool executor."""
        loop = get_event_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    async def close(self) -> None:
        """Shut down the parsing thread pool."""
        if self.executor:
            try:
                await wait_for(
                    get_event_loop().run_in_executor(None, lambda: self.executor.shutdown(wait=True)),
                    timeout=30.0,
                )
            except TimeoutError:
                logger.warning("Thread pool executor shutdown timed out after 30 seconds")
                self.executor.shutdown(wait=False)
        logger.debug("FeedFetcher closed")
