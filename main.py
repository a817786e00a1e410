#!/usr/bin/env python3
"""
Podcast Ingestion Orchestrator

This script runs the ingestion pipeline for every configured provider:
1. Read the ids the store already holds for the provider
2. Fetch, normalize and validate the provider's feed
3. Merge the result into the store and persist it

Providers are processed one after another. A provider that fails is reported
and skipped; the remaining providers still run.
"""

import argparse
import asyncio
import sys
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from aiohttp import ClientSession

from config import config, get_logger
from errors import IngestError
from fetcher import FeedFetcher
from models import IngestOutcome
from store import MergeStore
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("orchestrator")
init_telemetry("podcast-ingest-orchestrator")


class IngestionOrchestrator:
    """Runs ingest-and-reconcile for each configured provider."""

    def __init__(
        self,
        data_path: Optional[str] = None,
        providers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            data_path: Store directory. If None, uses config.DATA_PATH.
            providers: Provider id -> feed URL. If None, uses providers.yaml.
        """
        self.store = MergeStore(data_path)
        self.providers = providers if providers is not None else config.PROVIDERS
        self.fetcher = FeedFetcher()

    async def ingest_provider(self, provider: str, feed_url: str, session: ClientSession) -> IngestOutcome:
        """Ingest one provider; failures are logged and returned as an unsuccessful outcome."""
        logger.info(f"📡 Ingesting {provider}")
        try:
            return await self._ingest_provider_impl(provider, feed_url, session)
        except IngestError as e:
            logger.error(f"❌ {provider} failed: {e}")
            return IngestOutcome(provider=provider, success=False, error=str(e))
        except Exception as e:
            logger.error(f"💥 {provider} failed unexpectedly: {e}")
            return IngestOutcome(provider=provider, success=False, error=f"Unexpected error: {e}")

    @trace_span(
        "ingest_provider",
        tracer_name="orchestrator",
        attr_from_args=lambda self, provider, feed_url, session: {
            "feed.provider": provider,
            "feed.url": feed_url,
        },
    )
    async def _ingest_provider_impl(self, provider: str, feed_url: str, session: ClientSession) -> IngestOutcome:
        # One read of episodes.json serves both the id partition and the merge
        stored = await self.store.load_episodes()
        existing_ids = self.store.provider_ids(stored, provider)
        dataset = await self.fetcher.ingest(feed_url, provider, existing_ids, session)
        result = await self.store.reconcile(
            provider, dataset.episodes, dataset.channel, existing_episodes=stored
        )
        logger.info(
            f"✅ {provider}: {result.added} added, {result.updated} refreshed, "
            f"{dataset.rejected} unreachable, {result.provider_episodes} stored"
        )
        return IngestOutcome(
            provider=provider,
            success=True,
            feed_episodes=dataset.known + dataset.validated + dataset.rejected,
            skipped_validation=dataset.known,
            validated=dataset.validated,
            rejected=dataset.rejected,
            added=result.added,
            updated=result.updated,
            provider_episodes=result.provider_episodes,
        )

    @trace_span(
        "pipeline.run",
        tracer_name="orchestrator",
        attr_from_args=lambda self, only=None, session=None: {
            "feed.only": ",".join(only) if only else "",
        },
    )
    async def run_all(
        self,
        only: Optional[List[str]] = None,
        session: Optional[ClientSession] = None,
    ) -> List[IngestOutcome]:
        """Ingest every configured provider (or only the given ones) in turn.

        Args:
            only: If provided, limit the run to these provider ids
            session: Shared HTTP session; one is created when omitted

        Returns:
            One outcome per provider that was attempted
        """
        selected = self._select_providers(only)
        if not selected:
            logger.warning("⚠️ No providers to ingest")
            return []

        logger.info(f"🚀 Starting ingestion of {len(selected)} providers into {self.store.data_path}")
        logger.debug(f"Configuration: {config.get_config_summary()}")
        start_time = time.time()

        if session is None:
            async with ClientSession() as owned_session:
                outcomes = await self._run_sequentially(selected, owned_session)
        else:
            outcomes = await self._run_sequentially(selected, session)

        failed = [outcome.provider for outcome in outcomes if not outcome.success]
        elapsed_time = time.time() - start_time
        if failed:
            logger.warning(f"⚠️ Ingestion finished in {elapsed_time:.1f}s with failures: {', '.join(failed)}")
        else:
            logger.info(f"🎉 Ingestion completed successfully in {elapsed_time:.1f}s")
        return outcomes

    async def _run_sequentially(self, selected: Dict[str, str], session: ClientSession) -> List[IngestOutcome]:
        outcomes = []
        for provider, feed_url in selected.items():
            outcomes.append(await self.ingest_provider(provider, feed_url, session))
        return outcomes

    def _select_providers(self, only: Optional[List[str]]) -> Dict[str, str]:
        if not only:
            return dict(self.providers)
        unknown = [provider for provider in only if provider not in self.providers]
        for provider in unknown:
            logger.warning(f"⚠️ Unknown provider '{provider}', skipping")
        return {provider: url for provider, url in self.providers.items() if provider in only}

    async def check_status(self) -> dict:
        """Check the current state of the store.

        Returns:
            Dictionary with status information
        """
        logger.info("📊 Checking store status")
        status = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'data_path': str(self.store.data_path),
            'configured_providers': sorted(self.providers),
        }
        stats = await self.store.get_stats()
        status['store'] = stats

        missing = [p for p in self.providers if p not in stats['episodes_by_provider']]
        status['providers_without_episodes'] = missing
        status['overall_status'] = 'healthy' if stats['total_episodes'] and not missing else 'issues_detected'
        return status

    def print_status(self, status: dict):
        """Print formatted status information."""
        store = status['store']
        print("\n📊 Podcast Ingestion Status")
        print(f"⏰ {status['timestamp']}")
        print(f"🏥 Overall: {status['overall_status'].upper()}")
        print(f"\n💾 Store: {status['data_path']}")
        print(f"   🎧 Episodes: {store['total_episodes']}")
        print(f"   📻 Channels: {store['total_channels']}")
        print(f"   🕒 Last updated: {store['last_updated'] or 'never'}")
        print("\n📡 Providers:")
        for provider in status['configured_providers']:
            count = store['episodes_by_provider'].get(provider, 0)
            print(f"   {provider}: {count} episodes")

    async def close(self) -> None:
        await self.fetcher.close()


async def run_once(orchestrator: IngestionOrchestrator, only: Optional[List[str]] = None) -> bool:
    """Run one ingestion pass and report whether every provider succeeded."""
    try:
        outcomes = await orchestrator.run_all(only=only)
    finally:
        await orchestrator.close()
    return all(outcome.success for outcome in outcomes)


async def show_status(orchestrator: IngestionOrchestrator) -> None:
    try:
        status = await orchestrator.check_status()
        orchestrator.print_status(status)
    finally:
        await orchestrator.close()


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='Podcast Feed Ingestion')
    parser.add_argument('mode', choices=['run', 'status'],
                        help='Operation mode')
    parser.add_argument('--only', nargs='+', metavar='PROVIDER',
                        help='Only ingest these provider ids')
    parser.add_argument('--data-path', type=str,
                        help='Store directory (defaults to DATA_PATH)')

    args = parser.parse_args()

    orchestrator = IngestionOrchestrator(data_path=args.data_path)

    try:
        if args.mode == 'run':
            success = asyncio.run(run_once(orchestrator, only=args.only))
            sys.exit(0 if success else 1)
        elif args.mode == 'status':
            asyncio.run(show_status(orchestrator))
    except KeyboardInterrupt:
        logger.info("👋 Orchestrator shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
