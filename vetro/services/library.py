"""Reconciliation of the storage directory with the persisted catalog."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ..classifier import RELEASE_TAGS, ParsedName, classify, is_image, is_video, series_key
from ..errors import DuplicateAssetDetected, FilesystemConflict
from ..models import Episode, Film, LibraryDocument, Series
from ..store import DocumentStore
from ..utils import new_entry_id
from .enrichment import EnrichmentService

logger = logging.getLogger(__name__)

EPISODES_DIR = "Episodes"

Entry = Film | Series


@dataclass(slots=True)
class ScanReport:
    """What a reconciliation pass registered."""

    entries: list[Entry] = field(default_factory=list)
    new_items: int = 0
    new_episodes: int = 0
    enriched: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.entries)


@dataclass(slots=True)
class _ScanState:
    """Working sets for a single pass, seeded from the catalog snapshot."""

    known_ids: set[str]
    known_paths: set[str]
    series_index: dict[str, Series]
    created: dict[str, Entry] = field(default_factory=dict)
    updated: dict[str, Series] = field(default_factory=dict)
    new_episodes: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: LibraryDocument) -> "_ScanState":
        return cls(
            known_ids=snapshot.known_ids(),
            known_paths=snapshot.known_asset_paths(),
            series_index=snapshot.series_by_key(),
        )

    def is_taken(self, entry_id: str) -> bool:
        return entry_id in self.known_ids or entry_id in self.created


class LibraryReconciler:
    """Registers new files from the storage root into the catalog.

    Loose files dropped at the root are moved into ``<id>/`` (films) or
    ``<id>/Episodes/`` (series episodes). Folders that are not yet catalog
    entries are registered under their folder name. Known asset paths are the
    de-duplication key, which makes repeated passes over an unchanged tree
    no-ops and lets an interrupted pass resume safely.
    """

    def __init__(
        self,
        store: DocumentStore,
        storage_root: Path,
        enrichment: EnrichmentService | None = None,
        *,
        release_tags: Iterable[str] = RELEASE_TAGS,
    ) -> None:
        self._store = store
        self._root = Path(storage_root)
        self._enrichment = enrichment
        self._release_tags = tuple(release_tags)
        self._pass_lock = asyncio.Lock()

    @property
    def storage_root(self) -> Path:
        return self._root

    async def reconcile(self, *, enrich: bool = False) -> list[Entry]:
        """Run one pass and return the new or modified entries."""

        report = await self.scan(enrich=enrich)
        return report.entries

    async def scan(self, *, enrich: bool = False) -> ScanReport:
        """Run one pass and return a report with registration counts."""

        async with self._pass_lock:
            return await self._scan(enrich=enrich)

    async def _scan(self, *, enrich: bool) -> ScanReport:
        if not self._root.exists():
            self._root.mkdir(parents=True, exist_ok=True)
            logger.info("Created storage root %s", self._root)
            return ScanReport()

        snapshot = await self._store.load()
        state = await asyncio.to_thread(self._plan, snapshot)
        if not state.created and not state.updated:
            logger.debug("Scan of %s found nothing new", self._root)
            return ScanReport()

        committed = await self._commit(state)
        report = ScanReport(
            entries=committed,
            new_items=sum(1 for entry in committed if entry.id in state.created),
            new_episodes=state.new_episodes,
        )
        logger.info(
            "Registered %s new item(s) and %s episode(s)",
            report.new_items,
            report.new_episodes,
        )

        if enrich and self._enrichment is not None:
            for entry in committed:
                if entry.id not in state.created:
                    continue
                result = await self._enrichment.trigger(entry.id)
                if result is not None:
                    report.enriched += 1
        return report

    def _plan(self, snapshot: LibraryDocument) -> _ScanState:
        """Walk the storage root, moving loose files and collecting new entries."""

        state = _ScanState.from_snapshot(snapshot)
        loose_files, folders = self._list_root()

        for path in loose_files:
            try:
                self._register_loose_file(path, state)
            except DuplicateAssetDetected as exc:
                logger.debug("Skipping already registered asset: %s", exc)
            except FilesystemConflict as exc:
                logger.warning("Skipping %s: %s", path.name, exc)

        for folder in folders:
            if state.is_taken(folder.name):
                continue
            try:
                self._register_folder(folder, state)
            except DuplicateAssetDetected as exc:
                logger.debug("Skipping already registered asset: %s", exc)
            except FilesystemConflict as exc:
                logger.warning("Skipping folder %s: %s", folder.name, exc)

        if not state.created and not state.updated:
            for entry in snapshot.films:
                if isinstance(entry, Series):
                    self._collect_new_episodes(entry, state)
        return state

    def _list_root(self) -> tuple[list[Path], list[Path]]:
        files: list[Path] = []
        folders: list[Path] = []
        for child in sorted(self._root.iterdir(), key=lambda item: item.name):
            if child.name.startswith("."):
                continue
            if child.is_dir():
                folders.append(child)
            elif child.is_file() and is_video(child.name):
                files.append(child)
        return files, folders

    def _classify(self, name: str) -> ParsedName:
        return classify(name, release_tags=self._release_tags)

    def _register_loose_file(self, path: Path, state: _ScanState) -> None:
        parsed = self._classify(path.name)
        if parsed.is_episode:
            self._register_loose_episode(path, parsed, state)
            return

        film_id = new_entry_id()
        relative = f"{film_id}/{path.name}"
        self._ensure_unknown(relative, state)
        film_dir = self._root / film_id
        try:
            target = self._move(path, film_dir)
        except FilesystemConflict:
            _discard_empty(film_dir, self._root)
            raise
        film = Film(
            id=film_id,
            title=parsed.title,
            year=parsed.year,
            storage_path=relative,
            file_name=path.name,
            file_size=_file_size(target),
        )
        state.created[film_id] = film
        state.known_paths.add(relative)
        logger.info("Detected new film %r (%s)", film.title, film_id)

    def _register_loose_episode(
        self, path: Path, parsed: ParsedName, state: _ScanState
    ) -> None:
        key = series_key(parsed.title)
        series = state.series_index.get(key)
        is_new = series is None
        if series is None:
            series = Series(
                id=new_entry_id(),
                title=parsed.title,
                year=parsed.year,
                file_name=path.name,
            )

        relative = f"{series.id}/{EPISODES_DIR}/{path.name}"
        self._ensure_unknown(relative, state)
        self._ensure_pair_free(series, parsed, path.name)
        episodes_dir = self._root / series.id / EPISODES_DIR
        try:
            target = self._move(path, episodes_dir)
        except FilesystemConflict:
            if is_new:
                _discard_empty(episodes_dir, self._root)
            raise

        series.add_episode(
            Episode(
                id=new_entry_id(),
                season=parsed.season,
                episode=parsed.episode,
                file_name=path.name,
                storage_path=relative,
                file_size=_file_size(target),
            )
        )
        state.known_paths.add(relative)
        state.new_episodes += 1
        if is_new:
            state.created[series.id] = series
            state.series_index[key] = series
            logger.info("Detected new series %r (%s)", series.title, series.id)
        elif series.id not in state.created:
            state.updated[series.id] = series
        logger.info(
            "Added S%02dE%02d to %r", parsed.season, parsed.episode, series.title
        )

    def _register_folder(self, folder: Path, state: _ScanState) -> None:
        folder_id = folder.name
        episodes_dir = folder / EPISODES_DIR
        episode_files = _videos_in(episodes_dir)
        if episode_files:
            self._register_organised_series(folder, episode_files, state)
            return

        videos = _videos_in(folder)
        if not videos:
            logger.debug("Folder %s has no video files yet", folder_id)
            return
        video = videos[0]
        parsed = self._classify(video.name)
        poster = _first_image(folder)
        poster_path = f"{folder_id}/{poster.name}" if poster else ""

        if parsed.is_episode:
            relative = f"{folder_id}/{EPISODES_DIR}/{video.name}"
            self._ensure_unknown(relative, state)
            target = self._move(video, episodes_dir)
            series = Series(
                id=folder_id,
                title=parsed.title,
                year=parsed.year,
                file_name=video.name,
                poster_path=poster_path,
                poster_url=poster_path,
            )
            series.add_episode(
                Episode(
                    id=new_entry_id(),
                    season=parsed.season,
                    episode=parsed.episode,
                    file_name=video.name,
                    storage_path=relative,
                    file_size=_file_size(target),
                )
            )
            state.created[folder_id] = series
            state.known_paths.add(relative)
            state.new_episodes += 1
            state.series_index.setdefault(series.series_key, series)
            logger.info("Detected new series %r (%s)", series.title, folder_id)
            return

        relative = f"{folder_id}/{video.name}"
        self._ensure_unknown(relative, state)
        film = Film(
            id=folder_id,
            title=parsed.title,
            year=parsed.year,
            storage_path=relative,
            poster_path=poster_path,
            poster_url=poster_path,
            file_name=video.name,
            file_size=_file_size(video),
        )
        state.created[folder_id] = film
        state.known_paths.add(relative)
        logger.info("Detected new film %r (%s)", film.title, folder_id)

    def _register_organised_series(
        self, folder: Path, episode_files: list[Path], state: _ScanState
    ) -> None:
        folder_id = folder.name
        first = self._classify(episode_files[0].name)
        poster = _first_image(folder)
        poster_path = f"{folder_id}/{poster.name}" if poster else ""
        series = Series(
            id=folder_id,
            title=first.title,
            year=first.year,
            file_name=episode_files[0].name,
            poster_path=poster_path,
            poster_url=poster_path,
        )
        added = self._append_episodes(series, episode_files, state)
        if not added:
            return
        state.created[folder_id] = series
        state.series_index.setdefault(series.series_key, series)
        logger.info(
            "Detected new series %r (%s) with %s episode(s)",
            series.title,
            folder_id,
            added,
        )

    def _collect_new_episodes(self, series: Series, state: _ScanState) -> None:
        """Pick up files dropped straight into an existing series' Episodes folder."""

        episodes_dir = self._root / series.id / EPISODES_DIR
        candidates = [
            path
            for path in _videos_in(episodes_dir)
            if f"{series.id}/{EPISODES_DIR}/{path.name}" not in series.episode_paths()
        ]
        if not candidates:
            return
        added = self._append_episodes(series, candidates, state)
        if added:
            state.updated[series.id] = series
            logger.info("Added %s new episode(s) to %r", added, series.title)

    def _append_episodes(
        self, series: Series, files: list[Path], state: _ScanState
    ) -> int:
        """Add episode records for files already inside ``<id>/Episodes``."""

        pending_unnumbered: list[Path] = []
        added = 0
        for path in files:
            relative = f"{series.id}/{EPISODES_DIR}/{path.name}"
            if relative in state.known_paths:
                continue
            parsed = self._classify(path.name)
            if not parsed.is_episode:
                pending_unnumbered.append(path)
                continue
            try:
                self._ensure_pair_free(series, parsed, path.name)
            except FilesystemConflict as exc:
                logger.warning("Skipping %s: %s", path.name, exc)
                continue
            series.add_episode(self._episode_for(path, relative, parsed.season, parsed.episode))
            state.known_paths.add(relative)
            added += 1

        for path in pending_unnumbered:
            relative = f"{series.id}/{EPISODES_DIR}/{path.name}"
            used = {item.episode for item in series.episodes if item.season == 1}
            number = max(used, default=0) + 1
            series.add_episode(self._episode_for(path, relative, 1, number))
            state.known_paths.add(relative)
            added += 1

        state.new_episodes += added
        return added

    @staticmethod
    def _episode_for(path: Path, relative: str, season: int, episode: int) -> Episode:
        return Episode(
            id=new_entry_id(),
            season=season,
            episode=episode,
            file_name=path.name,
            storage_path=relative,
            file_size=_file_size(path),
        )

    def _ensure_pair_free(self, series: Series, parsed: ParsedName, name: str) -> None:
        """Reject a second file for a (season, episode) pair whose file still exists."""

        for existing in series.episodes:
            if existing.sort_key != (parsed.season, parsed.episode):
                continue
            if (self._root / existing.storage_path).exists():
                raise FilesystemConflict(
                    f"S{parsed.season:02d}E{parsed.episode:02d} of {series.title!r} "
                    f"is already provided by {existing.file_name}; not registering {name}"
                )

    @staticmethod
    def _ensure_unknown(relative: str, state: _ScanState) -> None:
        if relative in state.known_paths:
            raise DuplicateAssetDetected(relative)

    def _move(self, source: Path, target_dir: Path) -> Path:
        """Move ``source`` into ``target_dir`` without overwriting anything."""

        target = target_dir / source.name
        if target.exists():
            raise FilesystemConflict(f"{target} already exists")
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as exc:
            raise FilesystemConflict(f"could not move {source.name}: {exc}") from exc
        logger.debug("Moved %s -> %s", source, target)
        return target

    async def _commit(self, state: _ScanState) -> list[Entry]:
        """Merge the pass results into the latest document."""

        committed: list[Entry] = []

        def _merge(document: LibraryDocument) -> None:
            committed.clear()
            for entry in list(state.created.values()) + list(state.updated.values()):
                existing = document.find_entry(entry.id)
                if existing is None:
                    if entry.id in state.updated:
                        logger.info("Series %s was removed during the scan; skipping", entry.id)
                        continue
                    document.films.append(entry)
                    committed.append(entry)
                    continue
                if isinstance(existing, Series) and isinstance(entry, Series):
                    known = existing.episode_paths()
                    for episode in entry.episodes:
                        if episode.storage_path not in known:
                            existing.add_episode(episode)
                    existing.file_size = sum(item.file_size for item in existing.episodes)
                    committed.append(existing)
                    continue
                logger.warning(
                    "Entry id %s already registered as a different kind; skipping", entry.id
                )

        await self._store.commit(_merge)
        return list(committed)


def _videos_in(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        (path for path in directory.iterdir() if path.is_file() and is_video(path.name)),
        key=lambda item: item.name,
    )


def _first_image(directory: Path) -> Path | None:
    for path in sorted(directory.iterdir(), key=lambda item: item.name):
        if path.is_file() and is_image(path.name):
            return path
    return None


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _discard_empty(directory: Path, root: Path) -> None:
    """Remove empty directories created for a candidate that could not be moved.

    Walks up from ``directory`` and stops below ``root``.
    """

    current = directory
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
