#!/usr/bin/env python3
"""
Merged episode/channel store.

The store is three JSON files in ``DATA_PATH``:

- ``episodes.json``: every episode across providers, newest first
- ``channels.json``: one channel per provider, ordered by name
- ``version.json``: write timestamp the serving layer polls for freshness

Each provider run reads the files, overlays the provider's dataset by id and
writes everything back. The write serializes all files to temporaries in the
data directory before renaming any of them, so a failure while writing leaves
the previous store intact.
"""

import json
import os
import tempfile
from asyncio import get_event_loop
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from config import config, get_logger
from errors import StoreWriteError
from models import Channel, Episode, ProviderDataset, ReconcileResult
from telemetry import trace_span
from utils import to_iso_z

logger = get_logger("store")

EPISODES_FILE = "episodes.json"
CHANNELS_FILE = "channels.json"
VERSION_FILE = "version.json"


class MergeStore:
    """Read-merge-write access to the persisted dataset."""

    def __init__(self, data_path: Optional[str] = None) -> None:
        self.data_path = Path(data_path or config.DATA_PATH)
        self.episodes_path = self.data_path / EPISODES_FILE
        self.channels_path = self.data_path / CHANNELS_FILE
        self.version_path = self.data_path / VERSION_FILE

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def _read_collection(self, file_path: Path, key: str) -> List[Dict[str, Any]]:
        """Return the list stored under ``key``; missing or corrupt files read as empty."""
        if not file_path.exists():
            return []
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable store file {file_path}: {e}")
            return []
        records = data.get(key) if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.warning(f"Ignoring store file {file_path}: no '{key}' list")
            return []
        return [record for record in records if isinstance(record, dict) and record.get("id")]

    def _load_episodes(self) -> List[Episode]:
        return [Episode.from_dict(record) for record in self._read_collection(self.episodes_path, "episodes")]

    def _load_channels(self) -> List[Channel]:
        return [Channel.from_dict(record) for record in self._read_collection(self.channels_path, "channels")]

    def _load_version(self) -> Dict[str, Any]:
        if not self.version_path.exists():
            return {}
        try:
            with open(self.version_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable version file {self.version_path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def _run_io(self, func, *args) -> Any:
        loop = get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def load_episodes(self) -> List[Episode]:
        return await self._run_io(self._load_episodes)

    async def load_channels(self) -> List[Channel]:
        return await self._run_io(self._load_channels)

    @staticmethod
    def provider_ids(episodes: List[Episode], provider: str) -> Set[str]:
        return {episode.id for episode in episodes if episode.provider == provider}

    async def get_existing_episode_ids(self, provider: str) -> Set[str]:
        """Ids of the provider's persisted episodes (empty when nothing is stored yet)."""
        return self.provider_ids(await self.load_episodes(), provider)

    async def load_data(self, provider: str) -> ProviderDataset:
        """Persisted episodes and channel of one provider."""
        episodes = [episode for episode in await self.load_episodes() if episode.provider == provider]
        channel = next((c for c in await self.load_channels() if c.id == provider), None)
        return ProviderDataset(provider=provider, episodes=episodes, channel=channel, known=len(episodes))

    async def get_stats(self) -> Dict[str, Any]:
        """Summary counts for status reporting."""
        episodes = await self.load_episodes()
        channels = await self.load_channels()
        version = await self._run_io(self._load_version)
        per_provider: Dict[str, int] = {}
        for episode in episodes:
            per_provider[episode.provider] = per_provider.get(episode.provider, 0) + 1
        return {
            "total_episodes": len(episodes),
            "total_channels": len(channels),
            "episodes_by_provider": per_provider,
            "last_updated": version.get("last_updated"),
        }

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------
    @staticmethod
    def merge_episodes(existing: List[Episode], incoming: List[Episode]) -> List[Episode]:
        """Overlay incoming episodes by id and return the result newest first.

        A matching id replaces the stored episode entirely. The sort is stable,
        so equal dates keep their stored order.
        """
        merged: Dict[str, Episode] = {episode.id: episode for episode in existing}
        for episode in incoming:
            merged[episode.id] = episode
        return sorted(merged.values(), key=lambda episode: episode.date, reverse=True)

    @staticmethod
    def merge_channels(
        existing: List[Channel],
        incoming: Optional[Channel],
        provider: str,
        provider_count: int,
        updated_at: str,
    ) -> List[Channel]:
        """Overlay the provider's channel and return all channels ordered by name."""
        merged: Dict[str, Channel] = {channel.id: channel for channel in existing}
        channel = incoming if incoming is not None else merged.get(provider)
        if channel is not None:
            channel.total_episodes = provider_count
            channel.last_updated = updated_at
            merged[channel.id] = channel
        return sorted(merged.values(), key=lambda c: c.name.casefold())

    @trace_span(
        "reconcile",
        tracer_name="store",
        attr_from_args=lambda self, provider, episodes, channel=None, existing_episodes=None: {
            "store.provider": provider,
            "store.incoming": len(episodes),
        },
    )
    async def reconcile(
        self,
        provider: str,
        episodes: List[Episode],
        channel: Optional[Channel] = None,
        existing_episodes: Optional[List[Episode]] = None,
    ) -> ReconcileResult:
        """Merge one provider's dataset into the store and persist it.

        ``existing_episodes`` is the stored collection when the caller has
        already read it this run; otherwise it is read here.

        Raises:
            StoreWriteError: the files could not be written; the previous
                store is left as it was
        """
        if existing_episodes is None:
            existing_episodes = await self.load_episodes()
        existing_ids = {episode.id for episode in existing_episodes}
        incoming_ids = {episode.id for episode in episodes}
        added = len(incoming_ids - existing_ids)
        updated = len(incoming_ids & existing_ids)

        merged_episodes = self.merge_episodes(existing_episodes, episodes)
        provider_count = sum(1 for episode in merged_episodes if episode.provider == provider)

        now = datetime.now(timezone.utc)
        updated_at = to_iso_z(now)
        merged_channels = self.merge_channels(
            await self.load_channels(), channel, provider, provider_count, updated_at
        )
        total_providers = len({episode.provider for episode in merged_episodes})

        payloads = {
            self.episodes_path: {
                "episodes": [episode.to_json() for episode in merged_episodes],
                "metadata": {
                    "total_episodes": len(merged_episodes),
                    "total_providers": total_providers,
                    "last_updated": updated_at,
                },
            },
            self.channels_path: {
                "channels": [c.to_json() for c in merged_channels],
                "metadata": {
                    "total_channels": len(merged_channels),
                    "last_updated": updated_at,
                },
            },
            self.version_path: {
                "last_updated": updated_at,
                "timestamp": int(now.timestamp() * 1000),
            },
        }
        await self._run_io(self._write_all, payloads)

        logger.info(
            f"Merged {provider}: {added} added, {updated} updated, "
            f"{provider_count} for provider, {len(merged_episodes)} total"
        )
        return ReconcileResult(
            provider=provider,
            added=added,
            updated=updated,
            total_episodes=len(merged_episodes),
            provider_episodes=provider_count,
            total_providers=total_providers,
            total_channels=len(merged_channels),
        )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def _write_all(self, payloads: Dict[Path, Dict[str, Any]]) -> None:
        """Write every payload to a temp file first, then rename them into place."""
        temp_paths: Dict[Path, str] = {}
        try:
            self.data_path.mkdir(parents=True, exist_ok=True)
            for target, payload in payloads.items():
                with tempfile.NamedTemporaryFile(
                    mode='w',
                    encoding='utf-8',
                    prefix=f".{target.stem}.",
                    suffix='.tmp',
                    dir=self.data_path,
                    delete=False,
                ) as temp_file:
                    temp_paths[target] = temp_file.name
                    json.dump(payload, temp_file, indent=2, ensure_ascii=False)
                    temp_file.flush()
                    os.fsync(temp_file.fileno())
        except (OSError, TypeError, ValueError) as e:
            self._discard(temp_paths.values())
            raise StoreWriteError(
                f"Failed to write store files: {e}",
                details={"data_path": str(self.data_path)},
            ) from e

        pending = list(temp_paths.items())
        while pending:
            target, temp_path = pending[0]
            try:
                os.replace(temp_path, target)
            except OSError as e:
                self._discard(temp for _, temp in pending)
                raise StoreWriteError(
                    f"Failed to move {target.name} into place: {e}",
                    details={"data_path": str(self.data_path)},
                ) from e
            pending.pop(0)
        logger.debug(f"Wrote {len(payloads)} store files to {self.data_path}")

    def _discard(self, temp_paths) -> None:
        for temp_path in temp_paths:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temp file {temp_path}: {e}")
