"""Catalog service behaviour: deletion cascade, profiles and viewing state."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from vetro.errors import EntryNotFoundError, ProfileNotFoundError
from vetro.models import Film, LibraryDocument
from vetro.services.catalog import CatalogService


def _seed(document: LibraryDocument) -> None:
    document.films.append(Film(id="heat", title="Heat", storage_path="heat/Heat.mkv"))
    document.films.append(Film(id="alien", title="Alien", storage_path="alien/Alien.mkv"))


def _run(open_store, storage_root: Path, scenario):
    async def runner():
        async with open_store() as store:
            await store.commit(_seed)
            catalog = CatalogService(store, storage_root)
            result = await scenario(catalog)
            return result, await store.load()

    return asyncio.run(runner())


def test_remove_entry_cascades_to_profiles_and_disk(open_store, storage_root: Path) -> None:
    (storage_root / "heat").mkdir()
    (storage_root / "heat" / "Heat.mkv").write_bytes(b"film")

    async def scenario(catalog: CatalogService) -> str:
        profile = await catalog.create_profile("Ana")
        await catalog.add_to_my_list(profile.id, "heat")
        await catalog.add_to_my_list(profile.id, "alien")
        await catalog.rate(profile.id, "heat", liked=True)
        await catalog.record_progress(
            profile.id, "heat", position_sec=30, watched_delta_sec=30, duration_sec=600
        )
        await catalog.record_event(profile.id, "heat", "play")
        await catalog.remove_entry("heat")
        return profile.id

    profile_id, document = _run(open_store, storage_root, scenario)

    assert [entry.id for entry in document.films] == ["alien"]
    interactions = document.interactions[profile_id]
    assert interactions.my_list == ["alien"]
    assert interactions.likes == []
    assert "heat" not in interactions.watch_history
    assert "heat" not in interactions.survey_responses
    assert [event.film_id for event in interactions.events] == ["heat"]
    assert not (storage_root / "heat").exists()


def test_remove_unknown_entry_raises(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService) -> None:
        with pytest.raises(EntryNotFoundError):
            await catalog.remove_entry("missing")

    _, document = _run(open_store, storage_root, scenario)

    assert len(document.films) == 2


def test_remove_all_clears_catalog(open_store, storage_root: Path) -> None:
    (storage_root / "alien").mkdir()

    async def scenario(catalog: CatalogService) -> list[str]:
        profile = await catalog.create_profile("Ana")
        await catalog.add_to_my_list(profile.id, "alien")
        return await catalog.remove_all()

    removed, document = _run(open_store, storage_root, scenario)

    assert sorted(removed) == ["alien", "heat"]
    assert document.films == []
    assert all(not item.my_list for item in document.interactions.values())
    assert not (storage_root / "alien").exists()


def test_folders_outside_storage_root_are_never_deleted(
    open_store, storage_root: Path, tmp_path: Path
) -> None:
    outside = tmp_path / "precious"
    outside.mkdir()

    async def scenario(catalog: CatalogService) -> bool:
        return await catalog._remove_folder("../precious")

    removed, _ = _run(open_store, storage_root, scenario)

    assert removed is False
    assert outside.exists()


def test_ratings_keep_likes_and_dislikes_exclusive(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService) -> str:
        await catalog.rate("p1", "heat", liked=True, reason="Great heist", tags=["tense"])
        await catalog.rate("p1", "heat", liked=False)
        return "p1"

    _, document = _run(open_store, storage_root, scenario)

    interactions = document.interactions["p1"]
    assert interactions.likes == []
    assert interactions.dislikes == ["heat"]
    assert interactions.survey_responses["heat"].liked is False


def test_rating_unknown_entry_raises(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService) -> None:
        with pytest.raises(EntryNotFoundError):
            await catalog.rate("p1", "missing", liked=True)

    _run(open_store, storage_root, scenario)


def test_progress_completes_at_ninety_percent(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService):
        first = await catalog.record_progress(
            "p1", "heat", position_sec=50, watched_delta_sec=50, duration_sec=100
        )
        await catalog.record_progress(
            "p1", "alien", position_sec=10, watched_delta_sec=10, duration_sec=100
        )
        continuing = await catalog.continue_watching("p1")
        second = await catalog.record_progress(
            "p1", "heat", position_sec=95, watched_delta_sec=45, duration_sec=100
        )
        after = await catalog.continue_watching("p1")
        history = await catalog.watch_history("p1")
        return first, continuing, second, after, history

    (first, continuing, second, after, history), _ = _run(open_store, storage_root, scenario)

    assert first.completion_pct == 50.0
    assert not first.completed
    assert {row["film_id"] for row in continuing} == {"heat", "alien"}
    assert second.total_watched_sec == 95
    assert second.completed
    assert [row["film_id"] for row in after] == ["alien"]
    assert [row["film_id"] for row in history] == ["heat", "alien"]


def test_profiles_lifecycle(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService):
        with pytest.raises(ValueError, match="Name required"):
            await catalog.create_profile("   ")
        profile = await catalog.create_profile(" Ana ", color="#123456")
        activated = await catalog.activate_profile(profile.id)
        with pytest.raises(ProfileNotFoundError):
            await catalog.activate_profile("missing")
        profiles = await catalog.list_profiles()
        await catalog.delete_profile(profile.id)
        return profile, activated, profiles, await catalog.list_profiles()

    (profile, activated, profiles, remaining), document = _run(
        open_store, storage_root, scenario
    )

    assert profile.name == "Ana"
    assert profile.avatar.color == "#123456"
    assert activated.last_active_at >= profile.last_active_at
    assert [item.id for item in profiles] == [profile.id]
    assert remaining == []
    assert profile.id not in document.interactions


def test_my_list_requires_known_entry(open_store, storage_root: Path) -> None:
    async def scenario(catalog: CatalogService):
        with pytest.raises(EntryNotFoundError):
            await catalog.add_to_my_list("p1", "missing")
        await catalog.add_to_my_list("p1", "heat")
        await catalog.add_to_my_list("p1", "heat")
        added = await catalog.my_list("p1")
        removed = await catalog.remove_from_my_list("p1", "heat")
        return added, removed

    (added, removed), _ = _run(open_store, storage_root, scenario)

    assert added == ["heat"]
    assert removed == []
