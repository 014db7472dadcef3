"""Atomic access to the persisted library document."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import DocumentRecord
from .errors import StoreWriteError
from .models import LibraryDocument

logger = logging.getLogger(__name__)

LIBRARY_KEY = "library"

Transform = Callable[[LibraryDocument], "LibraryDocument | None"]


class DocumentStore:
    """Serialised read-modify-write access to the catalog document.

    Every mutation goes through :meth:`commit`: the transform runs against a
    freshly loaded snapshot and the result is written in one transaction. The
    write is conditional on the revision that was read, so a writer in another
    process forces a reload instead of being overwritten. Commits issued from
    the same process queue on an ``asyncio.Lock``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        key: str = LIBRARY_KEY,
        max_attempts: int = 5,
    ) -> None:
        self._session_factory = session_factory
        self._key = key
        self._max_attempts = max(1, max_attempts)
        self._lock = asyncio.Lock()

    async def load(self) -> LibraryDocument:
        """Return a fresh snapshot of the document."""

        async with self._session_factory() as session:
            _, document = await self._read(session)
        return document

    async def commit(self, transform: Transform) -> LibraryDocument:
        """Apply ``transform`` to the latest snapshot and persist the result."""

        async with self._lock:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    written = await self._apply(transform)
                except SQLAlchemyError as exc:
                    raise StoreWriteError(f"Failed to persist library document: {exc}") from exc
                if written is not None:
                    return written
                logger.debug(
                    "Document %s changed during commit, retrying (%s/%s)",
                    self._key,
                    attempt,
                    self._max_attempts,
                )
        raise StoreWriteError(
            f"Library document {self._key} kept changing; gave up after "
            f"{self._max_attempts} attempts"
        )

    async def export_document(self) -> dict[str, Any]:
        """Return the whole document as JSON-compatible data."""

        document = await self.load()
        return document.to_document()

    async def import_document(self, payload: dict[str, Any]) -> LibraryDocument:
        """Replace the stored document with ``payload``."""

        if not isinstance(payload, dict) or not payload.get("version"):
            raise ValueError("Invalid db format")
        try:
            replacement = LibraryDocument.model_validate(payload)
        except ValidationError as exc:
            raise ValueError(f"Invalid db format: {exc.error_count()} error(s)") from exc
        return await self.commit(lambda _current: replacement)

    async def _apply(self, transform: Transform) -> LibraryDocument | None:
        async with self._session_factory() as session:
            revision, document = await self._read(session)
            result = transform(document)
            if result is not None:
                document = result
            try:
                payload = document.to_document()
            except (TypeError, ValueError) as exc:
                raise StoreWriteError(f"Library document is not serialisable: {exc}") from exc

            if revision is None:
                session.add(DocumentRecord(key=self._key, revision=1, payload=payload))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return None
                return document

            stmt = (
                update(DocumentRecord)
                .where(
                    DocumentRecord.key == self._key,
                    DocumentRecord.revision == revision,
                )
                .values(payload=payload, revision=revision + 1)
            )
            outcome = await session.execute(stmt)
            if outcome.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            return document

    async def _read(self, session: AsyncSession) -> tuple[int | None, LibraryDocument]:
        stmt = select(DocumentRecord.revision, DocumentRecord.payload).where(
            DocumentRecord.key == self._key
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return None, LibraryDocument()
        revision, payload = row
        return revision, LibraryDocument.model_validate(payload or {})
