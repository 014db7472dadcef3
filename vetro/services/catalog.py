"""Catalog queries, deletion cascade and per-profile viewing state."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Sequence

from ..errors import EntryNotFoundError, ProfileNotFoundError
from ..models import (
    Avatar,
    InteractionEvent,
    LibraryDocument,
    Profile,
    ProfileInteractions,
    SurveyResponse,
    WatchProgress,
)
from ..store import DocumentStore
from ..utils import new_entry_id, utcnow
from .library import Entry

logger = logging.getLogger(__name__)

COMPLETION_THRESHOLD_PCT = 90.0
CONTINUE_WATCHING_LIMIT = 10


class CatalogService:
    """Read and mutate the catalog document through the store."""

    def __init__(self, store: DocumentStore, storage_root: Path) -> None:
        self._store = store
        self._root = Path(storage_root)

    # -- entries -----------------------------------------------------------

    async def list_entries(self) -> list[Entry]:
        document = await self._store.load()
        return list(document.films)

    async def get_entry(self, entry_id: str) -> Entry:
        document = await self._store.load()
        entry = document.find_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Film not found: {entry_id}")
        return entry

    async def remove_entry(self, entry_id: str) -> Entry:
        """Delete an entry, scrub it from every profile, then drop its folder."""

        removed: Entry | None = None

        def _remove(document: LibraryDocument) -> None:
            nonlocal removed
            removed = document.find_entry(entry_id)
            if removed is None:
                raise EntryNotFoundError(f"Film not found: {entry_id}")
            document.films = [entry for entry in document.films if entry.id != entry_id]
            for interactions in document.interactions.values():
                interactions.purge(entry_id)

        await self._store.commit(_remove)
        if removed is None:
            raise EntryNotFoundError(f"Film not found: {entry_id}")
        await self._remove_folder(entry_id)
        logger.info("Removed %r (%s)", removed.display_title(), entry_id)
        return removed

    async def remove_all(self) -> list[str]:
        """Delete every entry with the same cascade as :meth:`remove_entry`."""

        removed_ids: list[str] = []

        def _clear(document: LibraryDocument) -> None:
            removed_ids[:] = [entry.id for entry in document.films]
            document.films = []
            for interactions in document.interactions.values():
                for entry_id in removed_ids:
                    interactions.purge(entry_id)

        await self._store.commit(_clear)
        for entry_id in removed_ids:
            await self._remove_folder(entry_id)
        logger.info("Removed all %s entries", len(removed_ids))
        return list(removed_ids)

    async def _remove_folder(self, entry_id: str) -> bool:
        folder = self._root / entry_id
        if not entry_id or folder.resolve().parent != self._root.resolve():
            logger.warning("Refusing to delete %s outside the storage root", folder)
            return False
        if not folder.exists():
            return True
        try:
            await asyncio.to_thread(shutil.rmtree, folder)
        except OSError as exc:
            logger.warning(
                "Entry %s removed from the catalog but its folder could not be deleted: %s",
                entry_id,
                exc,
            )
            return False
        return True

    # -- profiles ----------------------------------------------------------

    async def list_profiles(self) -> list[Profile]:
        document = await self._store.load()
        return list(document.profiles)

    async def create_profile(
        self, name: str, *, color: str | None = None, icon: str | None = None
    ) -> Profile:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("Name required")
        avatar = Avatar()
        if color:
            avatar.color = color
        if icon:
            avatar.icon = icon
        profile = Profile(id=new_entry_id(), name=cleaned, avatar=avatar)

        def _add(document: LibraryDocument) -> None:
            document.profiles.append(profile)
            document.interactions[profile.id] = ProfileInteractions()

        await self._store.commit(_add)
        return profile

    async def delete_profile(self, profile_id: str) -> None:
        def _delete(document: LibraryDocument) -> None:
            document.profiles = [item for item in document.profiles if item.id != profile_id]
            document.interactions.pop(profile_id, None)

        await self._store.commit(_delete)

    async def activate_profile(self, profile_id: str) -> Profile:
        activated: Profile | None = None

        def _touch(document: LibraryDocument) -> None:
            nonlocal activated
            activated = document.find_profile(profile_id)
            if activated is None:
                raise ProfileNotFoundError(f"Profile not found: {profile_id}")
            activated.last_active_at = utcnow()

        await self._store.commit(_touch)
        if activated is None:
            raise ProfileNotFoundError(f"Profile not found: {profile_id}")
        return activated

    # -- interactions ------------------------------------------------------

    async def interactions(self, profile_id: str) -> ProfileInteractions:
        document = await self._store.load()
        return document.interactions.get(profile_id) or ProfileInteractions()

    async def my_list(self, profile_id: str) -> list[str]:
        return list((await self.interactions(profile_id)).my_list)

    async def add_to_my_list(self, profile_id: str, entry_id: str) -> list[str]:
        def _add(document: LibraryDocument) -> None:
            if document.find_entry(entry_id) is None:
                raise EntryNotFoundError(f"Film not found: {entry_id}")
            interactions = document.interactions_for(profile_id)
            if entry_id not in interactions.my_list:
                interactions.my_list.append(entry_id)

        document = await self._store.commit(_add)
        return list(document.interactions[profile_id].my_list)

    async def remove_from_my_list(self, profile_id: str, entry_id: str) -> list[str]:
        def _remove(document: LibraryDocument) -> None:
            interactions = document.interactions_for(profile_id)
            interactions.my_list = [item for item in interactions.my_list if item != entry_id]

        document = await self._store.commit(_remove)
        return list(document.interactions[profile_id].my_list)

    async def get_rating(self, profile_id: str, entry_id: str) -> SurveyResponse | None:
        return (await self.interactions(profile_id)).survey_responses.get(entry_id)

    async def rate(
        self,
        profile_id: str,
        entry_id: str,
        *,
        liked: bool | None,
        enjoyed: bool | None = None,
        reason: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> SurveyResponse:
        """Store survey feedback; likes and dislikes stay mutually exclusive."""

        response = SurveyResponse(
            liked=liked,
            survey_enjoyed=enjoyed,
            feedback_text=reason or "",
            selected_tags=list(tags or []),
        )

        def _rate(document: LibraryDocument) -> None:
            if document.find_entry(entry_id) is None:
                raise EntryNotFoundError(f"Film not found: {entry_id}")
            interactions = document.interactions_for(profile_id)
            interactions.survey_responses[entry_id] = response
            interactions.likes = [item for item in interactions.likes if item != entry_id]
            interactions.dislikes = [item for item in interactions.dislikes if item != entry_id]
            if liked is True:
                interactions.likes.append(entry_id)
            elif liked is False:
                interactions.dislikes.append(entry_id)

        await self._store.commit(_rate)
        return response

    async def get_progress(self, profile_id: str, entry_id: str) -> WatchProgress | None:
        return (await self.interactions(profile_id)).watch_history.get(entry_id)

    async def record_progress(
        self,
        profile_id: str,
        entry_id: str,
        *,
        position_sec: float,
        watched_delta_sec: float = 0.0,
        duration_sec: float = 0.0,
    ) -> WatchProgress:
        """Accumulate watch time; a title counts as completed at 90 %."""

        def _record(document: LibraryDocument) -> None:
            interactions = document.interactions_for(profile_id)
            existing = interactions.watch_history.get(entry_id) or WatchProgress()
            total = existing.total_watched_sec + max(0.0, watched_delta_sec or 0.0)
            completion = min(total / duration_sec * 100, 100.0) if duration_sec > 0 else 0.0
            interactions.watch_history[entry_id] = WatchProgress(
                last_position_sec=position_sec,
                total_watched_sec=total,
                duration_sec=duration_sec,
                completion_pct=round(completion, 2),
                completed=completion >= COMPLETION_THRESHOLD_PCT,
                last_watched_at=utcnow(),
            )

        document = await self._store.commit(_record)
        return document.interactions[profile_id].watch_history[entry_id]

    async def watch_history(self, profile_id: str) -> list[dict[str, Any]]:
        interactions = await self.interactions(profile_id)
        return _history_items(interactions.watch_history.items())

    async def continue_watching(self, profile_id: str) -> list[dict[str, Any]]:
        interactions = await self.interactions(profile_id)
        unfinished = (
            (entry_id, progress)
            for entry_id, progress in interactions.watch_history.items()
            if not progress.completed and progress.total_watched_sec > 0
        )
        return _history_items(unfinished)[:CONTINUE_WATCHING_LIMIT]

    async def record_event(
        self, profile_id: str, entry_id: str, event_type: str, position_sec: float = 0.0
    ) -> InteractionEvent:
        event = InteractionEvent(
            type=event_type, film_id=entry_id, position_sec=position_sec or 0.0
        )

        def _append(document: LibraryDocument) -> None:
            document.interactions_for(profile_id).events.append(event)

        await self._store.commit(_append)
        return event


def _history_items(items) -> list[dict[str, Any]]:
    rows = [
        {"film_id": entry_id, **progress.to_document()}
        for entry_id, progress in items
    ]
    rows.sort(key=lambda row: row.get("lastWatchedAt") or "", reverse=True)
    return rows
