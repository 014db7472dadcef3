"""Best-effort metadata enrichment of catalog entries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from ..classifier import classify
from ..errors import EnrichmentError, EntryNotFoundError, VetroError
from ..models import AIDetails, EnrichmentPayload, Film, LibraryDocument, Series
from ..store import DocumentStore
from ..utils import extract_json_object, utcnow

logger = logging.getLogger(__name__)

META_FILE_NAME = "meta.json"

ENRICHMENT_TEMPLATE = """
You are a {subject} metadata expert. Given a filename, identify the {subject} and return accurate metadata.

RULES:
- Output STRICT JSON only. No markdown, no code fences, no explanations.
- "title" must be the CLEAN, official English title of the {subject} (no year, no resolution, no file extensions, no dots/underscores). Example: filename "{example}" -> title "{example_title}".
- "year" must be the actual {year_hint} of the identified {subject}. If unknown, use 0.
- "posterUrl" must be a WORKING image URL. Use the TMDB image CDN format: https://image.tmdb.org/t/p/w500/<poster_path>. If unsure, return "".
- "description" should be a real 1-2 sentence synopsis.
- "genres" should be the real genres.
- "certification" should be the rating (G, PG, PG-13, R, NC-17, TV-14, TV-MA) or "Unrated" if unknown.
- Do NOT invent data. If you're not confident about a field, leave it empty/default.

Filename: {file_name}
Cleaned title guess: {title_guess}
{episode_hint}
Return JSON in this exact format:
{{
  "title": "",
  "year": 0,
  "description": "",
  "genres": [],
  "certification": "Unrated",
  "posterUrl": "",
  "logline": "",
  "shortSummary": "",
  "themes": [],
  "moodTags": [],
  "contentWarnings": [],
  "recommendedAudience": "",
  "similarTitles": [{{"title": "", "reason": ""}}],
  "discussionQuestions": [],
  "watchAdvice": {{"pace": "", "bestTime": "", "withWho": ""}},
  "confidence": 0.0
}}
"""

POSTER_CONTENT_TYPES = {"image/png": ".png", "image/webp": ".webp"}


class TextGenerator(Protocol):
    """Anything able to turn a prompt into raw model text."""

    model: str

    async def generate(self, prompt: str) -> str:  # pragma: no cover - protocol
        ...


@dataclass(slots=True)
class EnrichmentResult:
    """Outcome of a successful enrichment run."""

    entry: Film | Series
    details: AIDetails
    poster_saved: bool = False


class EnrichmentService:
    """Calls the generative provider and merges its answer into the catalog."""

    def __init__(
        self,
        store: DocumentStore,
        provider: TextGenerator | None,
        http_client: httpx.AsyncClient,
        storage_root: Path,
    ) -> None:
        self._store = store
        self._provider = provider
        self._http = http_client
        self._storage_root = Path(storage_root)

    @property
    def available(self) -> bool:
        configured = getattr(self._provider, "configured", True)
        return self._provider is not None and bool(configured)

    async def check(self) -> bool:
        """Log whether the provider is reachable; never raises."""

        if not self.available:
            logger.warning("Enrichment provider not configured; metadata stays filename-derived")
            return False
        ping = getattr(self._provider, "ping", None)
        if ping is None:
            return True
        try:
            healthy = await ping()
        except EnrichmentError as exc:
            logger.error("Enrichment provider check failed: %s", exc)
            return False
        if healthy:
            logger.info("Enrichment provider verified (%s)", self._provider.model)
        else:
            logger.warning("Enrichment provider responded unexpectedly")
        return healthy

    async def trigger(self, entry_id: str) -> EnrichmentResult | None:
        """Enrich one entry, logging instead of raising on failure."""

        if not self.available:
            logger.info("Skipping enrichment for %s (no provider configured)", entry_id)
            return None
        try:
            result = await self.enrich(entry_id)
        except VetroError as exc:
            logger.warning("Enrichment failed for %s: %s", entry_id, exc)
            return None
        logger.info("Enrichment complete for %r (%s)", result.entry.display_title(), entry_id)
        return result

    async def enrich(self, entry_id: str) -> EnrichmentResult:
        """Fetch metadata for ``entry_id`` and merge it into the catalog.

        The provider call happens outside any store transaction; the catalog is
        re-read right before merging so concurrent profile changes survive.
        """

        if self._provider is None:
            raise EnrichmentError("No enrichment provider configured")

        snapshot = await self._store.load()
        entry = snapshot.find_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Film not found: {entry_id}")

        prompt = self.build_prompt(entry)
        raw_text = await self._provider.generate(prompt)
        logger.debug("Provider raw response for %s: %s", entry_id, raw_text)

        try:
            parsed = extract_json_object(raw_text)
        except ValueError as exc:
            raise EnrichmentError(f"Provider returned invalid JSON: {exc}") from exc
        payload = EnrichmentPayload.from_raw(parsed)
        if payload.is_empty():
            raise EnrichmentError("Provider response did not match the metadata schema")

        entry_dir = self._storage_root / entry_id
        try:
            entry_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EnrichmentError(f"Cannot prepare {entry_dir}: {exc}") from exc

        local_poster: str | None = None
        if payload.poster_url:
            local_poster = await self._download_poster(payload.poster_url, entry_dir)

        details = AIDetails(
            generated_at=utcnow(),
            model=getattr(self._provider, "model", "unknown"),
            data=parsed,
        )
        self._write_meta(entry_dir, details)

        merged: Film | Series | None = None

        def _merge(document: LibraryDocument) -> None:
            nonlocal merged
            target = document.find_entry(entry_id)
            if target is None:
                return
            apply_payload(target, payload, details, local_poster)
            merged = target

        await self._store.commit(_merge)
        if merged is None:
            raise EntryNotFoundError(f"Film {entry_id} was removed during enrichment")
        return EnrichmentResult(entry=merged, details=details, poster_saved=bool(local_poster))

    def build_prompt(self, entry: Film | Series) -> str:
        file_name = entry.file_name or entry.display_title()
        parsed = classify(file_name)
        if isinstance(entry, Series):
            subject = "TV series"
            example = "Breaking.Bad.S01E01.720p.mkv"
            example_title = "Breaking Bad"
            year_hint = "first-air year"
            episode_hint = (
                "This file is an episode; describe the whole series, not the episode.\n"
            )
            title_guess = entry.title or parsed.title
        else:
            subject = "movie"
            example = "The.Dark.Knight.2008.1080p.mkv"
            example_title = "The Dark Knight"
            year_hint = "release year"
            episode_hint = ""
            title_guess = parsed.title
        return ENRICHMENT_TEMPLATE.format(
            subject=subject,
            example=example,
            example_title=example_title,
            year_hint=year_hint,
            file_name=file_name,
            title_guess=title_guess,
            episode_hint=episode_hint,
        )

    async def _download_poster(self, url: str, entry_dir: Path) -> str | None:
        if not url.startswith(("http://", "https://")):
            return None
        try:
            response = await self._http.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Poster download failed for %s: %s", url, exc)
            return None

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        suffix = POSTER_CONTENT_TYPES.get(content_type, ".jpg")
        poster_file = entry_dir / f"poster{suffix}"
        try:
            poster_file.write_bytes(response.content)
        except OSError as exc:
            logger.warning("Could not save poster %s: %s", poster_file, exc)
            return None
        logger.info("Poster saved: %s", poster_file)
        return f"{entry_dir.name}/{poster_file.name}"

    @staticmethod
    def _write_meta(entry_dir: Path, details: AIDetails) -> None:
        meta_path = entry_dir / META_FILE_NAME
        try:
            meta_path.write_text(
                json.dumps(details.to_document(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Could not write %s: %s", meta_path, exc)


def apply_payload(
    entry: Film | Series,
    payload: EnrichmentPayload,
    details: AIDetails,
    local_poster: str | None = None,
) -> None:
    """Overwrite only the fields the provider actually supplied."""

    if payload.title:
        entry.title = payload.title.strip()
    if payload.year:
        entry.year = payload.year
    if payload.description is not None:
        entry.description = payload.description
    if payload.genres is not None:
        entry.genres = [genre for genre in payload.genres if genre.strip()]
    if payload.certification is not None:
        entry.certification = payload.certification
    if local_poster:
        entry.poster_path = local_poster
        entry.poster_url = local_poster
    elif payload.poster_url:
        entry.poster_url = payload.poster_url
    entry.ai_details = details

