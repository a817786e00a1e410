import json
import os
from datetime import datetime, timedelta, timezone

import pytest

import store as store_module
from errors import StoreWriteError
from models import Channel, Episode
from store import MergeStore


def make_episode(provider: str, day: int, number: int, title: str = "") -> Episode:
    date = datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(days=day)
    return Episode(
        id=f"{date:%Y%m%d}-{provider}-ep{number}",
        provider=provider,
        title=title or f"{provider} {number}",
        episode_number=number,
        date=date,
        audio_url=f"https://cdn.example.com/{provider}/{number}.mp3",
    )


def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.mark.asyncio
async def test_reconcile_into_empty_store(tmp_path):
    store = MergeStore(str(tmp_path))
    episodes = [make_episode("acme", 1, 1), make_episode("acme", 3, 3), make_episode("acme", 2, 2)]

    result = await store.reconcile("acme", episodes, Channel(id="acme", name="Acme Radio"))

    assert (result.added, result.updated, result.total_episodes) == (3, 0, 3)
    data = read_json(tmp_path / "episodes.json")
    assert [e["episode_number"] for e in data["episodes"]] == [3, 2, 1]
    assert data["episodes"][0]["date"] == "2025-01-04T00:00:00.000Z"
    assert data["metadata"]["total_episodes"] == 3
    assert data["metadata"]["total_providers"] == 1

    channels = read_json(tmp_path / "channels.json")
    assert channels["channels"][0]["total_episodes"] == 3
    assert channels["metadata"]["total_channels"] == 1

    version = read_json(tmp_path / "version.json")
    assert isinstance(version["timestamp"], int)
    assert version["last_updated"] == data["metadata"]["last_updated"]


@pytest.mark.asyncio
async def test_same_id_overwrites_without_growing(tmp_path):
    store = MergeStore(str(tmp_path))
    await store.reconcile("acme", [make_episode("acme", 1, 1, title="Old title")], Channel(id="acme", name="Acme"))

    refreshed = make_episode("acme", 1, 1, title="Corrected title")
    refreshed.duration = "42:00"
    result = await store.reconcile("acme", [refreshed], Channel(id="acme", name="Acme"))

    assert (result.added, result.updated, result.total_episodes) == (0, 1, 1)
    stored = read_json(tmp_path / "episodes.json")["episodes"]
    assert len(stored) == 1
    assert stored[0]["title"] == "Corrected title"
    assert stored[0]["duration"] == "42:00"


@pytest.mark.asyncio
async def test_episodes_stay_sorted_for_any_input_order(tmp_path):
    store = MergeStore(str(tmp_path))
    await store.reconcile("acme", [make_episode("acme", d, d) for d in (5, 1, 9)], Channel(id="acme", name="Acme"))
    await store.reconcile("other", [make_episode("other", d, d) for d in (7, 2, 11)], Channel(id="other", name="Other"))

    dates = [e["date"] for e in read_json(tmp_path / "episodes.json")["episodes"]]
    assert dates == sorted(dates, reverse=True)


@pytest.mark.asyncio
async def test_other_providers_keep_their_counts(tmp_path):
    store = MergeStore(str(tmp_path))
    await store.reconcile(
        "bravo",
        [make_episode("bravo", d, d) for d in range(10)],
        Channel(id="bravo", name="bravo hour"),
    )

    result = await store.reconcile(
        "alpha",
        [make_episode("alpha", 20, 1), make_episode("alpha", 21, 2)],
        Channel(id="alpha", name="Zebra Talk"),
    )

    assert result.total_channels == 2
    assert result.total_providers == 2
    channels = read_json(tmp_path / "channels.json")["channels"]
    assert [c["name"] for c in channels] == ["bravo hour", "Zebra Talk"]
    counts = {c["id"]: c["total_episodes"] for c in channels}
    assert counts == {"bravo": 10, "alpha": 2}


@pytest.mark.asyncio
async def test_channel_count_is_post_merge_total(tmp_path):
    store = MergeStore(str(tmp_path))
    await store.reconcile("acme", [make_episode("acme", 1, 1), make_episode("acme", 2, 2)], Channel(id="acme", name="Acme"))
    # Feed now lists only the newest episode; history is kept
    await store.reconcile("acme", [make_episode("acme", 3, 3)], Channel(id="acme", name="Acme"))

    channels = read_json(tmp_path / "channels.json")["channels"]
    assert channels[0]["total_episodes"] == 3


@pytest.mark.asyncio
async def test_read_projections_on_empty_store(tmp_path):
    store = MergeStore(str(tmp_path / "missing"))
    assert await store.get_existing_episode_ids("acme") == set()
    dataset = await store.load_data("acme")
    assert dataset.episodes == []
    assert dataset.channel is None


@pytest.mark.asyncio
async def test_read_projections_filter_by_provider(tmp_path):
    store = MergeStore(str(tmp_path))
    await store.reconcile("acme", [make_episode("acme", 1, 1)], Channel(id="acme", name="Acme"))
    await store.reconcile("other", [make_episode("other", 1, 1)], Channel(id="other", name="Other"))

    assert await store.get_existing_episode_ids("acme") == {"20250102-acme-ep1"}
    dataset = await store.load_data("other")
    assert [e.id for e in dataset.episodes] == ["20250102-other-ep1"]
    assert dataset.channel.name == "Other"
    assert dataset.episodes[0].date == datetime(2025, 1, 2, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_corrupt_files_are_treated_as_empty(tmp_path):
    (tmp_path / "episodes.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "channels.json").write_text('{"channels": "nope"}', encoding="utf-8")
    store = MergeStore(str(tmp_path))

    assert await store.get_existing_episode_ids("acme") == set()
    result = await store.reconcile("acme", [make_episode("acme", 1, 1)], Channel(id="acme", name="Acme"))

    assert result.total_episodes == 1
    assert read_json(tmp_path / "episodes.json")["metadata"]["total_episodes"] == 1


@pytest.mark.asyncio
async def test_failed_write_leaves_previous_store_untouched(tmp_path, monkeypatch):
    store = MergeStore(str(tmp_path))
    await store.reconcile("acme", [make_episode("acme", 1, 1)], Channel(id="acme", name="Acme"))
    before = {name: (tmp_path / name).read_bytes() for name in ("episodes.json", "channels.json", "version.json")}

    def failing_fsync(fd):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store_module.os, "fsync", failing_fsync)
    with pytest.raises(StoreWriteError):
        await store.reconcile("acme", [make_episode("acme", 2, 2)], Channel(id="acme", name="Acme"))

    after = {name: (tmp_path / name).read_bytes() for name in before}
    assert after == before
    assert sorted(os.listdir(tmp_path)) == ["channels.json", "episodes.json", "version.json"]


@pytest.mark.asyncio
async def test_failed_rename_cleans_up_temp_files(tmp_path, monkeypatch):
    store = MergeStore(str(tmp_path))
    real_replace = os.replace
    calls = []

    def flaky_replace(src, dst):
        calls.append(dst)
        if len(calls) == 2:
            raise OSError(13, "Permission denied")
        return real_replace(src, dst)

    monkeypatch.setattr(store_module.os, "replace", flaky_replace)
    with pytest.raises(StoreWriteError):
        await store.reconcile("acme", [make_episode("acme", 1, 1)], Channel(id="acme", name="Acme"))

    assert not [name for name in os.listdir(tmp_path) if name.endswith(".tmp")]
