"""Catalog document model behaviour."""

from __future__ import annotations

from vetro.models import Episode, Film, LibraryDocument, ProfileInteractions, Series


def _episode(season: int, number: int, name: str = "") -> Episode:
    file_name = name or f"Show.S{season:02d}E{number:02d}.mkv"
    return Episode(
        id=f"{season}-{number}-{file_name}",
        season=season,
        episode=number,
        file_name=file_name,
        storage_path=f"show/Episodes/{file_name}",
        file_size=10,
    )


def test_series_episodes_are_unique_and_sorted() -> None:
    series = Series(
        id="show",
        episodes=[_episode(2, 1), _episode(1, 2), _episode(1, 2, "Show.S01E02.v2.mkv")],
    )

    assert [item.sort_key for item in series.episodes] == [(1, 2), (2, 1)]
    assert series.episodes[0].file_name == "Show.S01E02.v2.mkv"


def test_add_episode_replaces_pair_and_updates_size() -> None:
    series = Series(id="show")
    series.add_episode(_episode(1, 3))
    series.add_episode(_episode(1, 1))
    series.add_episode(_episode(1, 3, "Show.S01E03.proper.mkv"))

    assert [item.episode for item in series.episodes] == [1, 3]
    assert series.episodes[1].file_name == "Show.S01E03.proper.mkv"
    assert series.file_size == 20


def test_documents_use_camel_case_keys() -> None:
    film = Film(id="heat", title="Heat", storage_path="heat/Heat.mkv")

    document = film.to_document()

    assert document["storagePath"] == "heat/Heat.mkv"
    assert document["isSeries"] is False
    assert document["aiDetails"] is None
    assert Film.model_validate(document).storage_path == "heat/Heat.mkv"


def test_library_document_indexes() -> None:
    series = Series(id="show", title="The  Office", episodes=[_episode(1, 1)])
    document = LibraryDocument(films=[Film(id="heat", storage_path="heat/Heat.mkv"), series])

    assert document.known_ids() == {"heat", "show"}
    assert document.known_asset_paths() == {"heat/Heat.mkv", "show/Episodes/Show.S01E01.mkv"}
    assert document.series_by_key()["the office"] is series
    assert document.find_entry("missing") is None


def test_purge_keeps_event_log() -> None:
    interactions = ProfileInteractions.model_validate(
        {
            "myList": ["heat", "alien"],
            "likes": ["heat"],
            "watchHistory": {"heat": {"completionPct": 10}},
            "events": [{"type": "play", "filmId": "heat"}],
        }
    )

    interactions.purge("heat")

    assert not interactions.references("heat")
    assert interactions.my_list == ["alien"]
    assert len(interactions.events) == 1
