"""Entry point for the FastAPI-powered library server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from .config import get_settings
from .errors import (
    EnrichmentError,
    EntryNotFoundError,
    ProfileNotFoundError,
    StoreWriteError,
)
from .services import Services, open_services
from .services.watcher import LibraryWatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    async with open_services(settings) as services:
        fastapi_app.state.services = services
        logger.info("Database: %s", settings.database_url)
        logger.info("Film storage: %s", settings.storage_dir)
        await services.enrichment.check()

        watcher: LibraryWatcher | None = None
        if settings.watch_enabled:
            watcher = LibraryWatcher(
                services.reconciler,
                debounce_seconds=settings.watch_debounce_seconds,
                initial_delay_seconds=settings.initial_scan_delay_seconds,
                enrich=settings.auto_enrich and settings.enrichment_available,
            )
            watcher.start()
        fastapi_app.state.watcher = watcher

        try:
            yield
        finally:  # pragma: no cover - teardown path exercised at runtime
            if watcher is not None:
                await watcher.stop()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Self-hosted media library with AI metadata enrichment",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    fastapi_app.mount(
        "/storage/films",
        StaticFiles(directory=str(settings.storage_dir), check_dir=False),
        name="storage",
    )
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> Services:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Library services not initialised")
    return services


class ProfileCreate(BaseModel):
    name: str = ""
    color: str | None = None
    icon: str | None = None


class FilmReference(BaseModel):
    film_id: str = Field(alias="filmId")


class RatingBody(BaseModel):
    liked: bool | None = None
    survey_enjoyed: bool | None = Field(default=None, alias="surveyEnjoyed")
    survey_reason: str | None = Field(default=None, alias="surveyReason")
    survey_tags: list[str] | None = Field(default=None, alias="surveyTags")


class ProgressBody(BaseModel):
    position_sec: float = Field(default=0.0, alias="positionSec")
    total_watched_delta_sec: float = Field(default=0.0, alias="totalWatchedDeltaSec")
    duration_sec: float = Field(default=0.0, alias="durationSec")


class EventBody(BaseModel):
    type: str
    position_sec: float = Field(default=0.0, alias="positionSec")


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(StoreWriteError)
    async def _store_failure(_: Request, exc: StoreWriteError) -> JSONResponse:
        logger.error("Store write failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @fastapi_app.exception_handler(EntryNotFoundError)
    async def _missing_entry(_: Request, exc: EntryNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "Film not found"})

    @fastapi_app.exception_handler(ProfileNotFoundError)
    async def _missing_profile(_: Request, exc: ProfileNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "Profile not found"})

    @fastapi_app.get("/api/health")
    async def health() -> dict[str, Any]:
        services = get_services(fastapi_app)
        profiles = await services.catalog.list_profiles()
        return {"status": "ok", "profiles": len(profiles)}

    # -- films -------------------------------------------------------------

    @fastapi_app.get("/api/films")
    async def list_films() -> list[dict[str, Any]]:
        services = get_services(fastapi_app)
        return [entry.to_document() for entry in await services.catalog.list_entries()]

    @fastapi_app.post("/api/films/scan")
    async def scan_films(enrich: bool = False) -> dict[str, Any]:
        services = get_services(fastapi_app)
        report = await services.reconciler.scan(enrich=enrich)
        return {
            "newItems": report.new_items,
            "newEpisodes": report.new_episodes,
            "enriched": report.enriched,
            "films": [entry.to_document() for entry in report.entries],
        }

    @fastapi_app.get("/api/films/{film_id}")
    async def get_film(film_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        return (await services.catalog.get_entry(film_id)).to_document()

    @fastapi_app.delete("/api/films/{film_id}")
    async def delete_film(film_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        await services.catalog.remove_entry(film_id)
        return {"ok": True}

    @fastapi_app.post("/api/films/{film_id}/ai/enrich")
    async def enrich_film(film_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        if not services.enrichment.available:
            raise HTTPException(status_code=503, detail="Enrichment provider not configured")
        try:
            result = await services.enrichment.enrich(film_id)
        except EnrichmentError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "success": True,
            "film": result.entry.to_document(),
            "aiDetails": result.details.to_document(),
            "posterSaved": result.poster_saved,
        }

    # -- profiles ----------------------------------------------------------

    @fastapi_app.get("/api/profiles")
    async def list_profiles() -> list[dict[str, Any]]:
        services = get_services(fastapi_app)
        return [profile.to_document() for profile in await services.catalog.list_profiles()]

    @fastapi_app.post("/api/profiles")
    async def create_profile(body: ProfileCreate) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            profile = await services.catalog.create_profile(
                body.name, color=body.color, icon=body.icon
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return profile.to_document()

    @fastapi_app.delete("/api/profiles/{profile_id}")
    async def delete_profile(profile_id: str) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.delete_profile(profile_id)
        return {"ok": True}

    @fastapi_app.post("/api/profiles/{profile_id}/activate")
    async def activate_profile(profile_id: str) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.activate_profile(profile_id)
        return {"ok": True}

    # -- interactions ------------------------------------------------------

    @fastapi_app.get("/api/profiles/{profile_id}/my-list")
    async def get_my_list(profile_id: str) -> list[str]:
        return await get_services(fastapi_app).catalog.my_list(profile_id)

    @fastapi_app.post("/api/profiles/{profile_id}/my-list/add")
    async def add_my_list(profile_id: str, body: FilmReference) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.add_to_my_list(profile_id, body.film_id)
        return {"ok": True}

    @fastapi_app.post("/api/profiles/{profile_id}/my-list/remove")
    async def remove_my_list(profile_id: str, body: FilmReference) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.remove_from_my_list(profile_id, body.film_id)
        return {"ok": True}

    @fastapi_app.get("/api/profiles/{profile_id}/film/{film_id}/rating")
    async def get_rating(profile_id: str, film_id: str) -> dict[str, Any] | None:
        rating = await get_services(fastapi_app).catalog.get_rating(profile_id, film_id)
        return rating.to_document() if rating else None

    @fastapi_app.post("/api/profiles/{profile_id}/film/{film_id}/rating")
    async def rate_film(profile_id: str, film_id: str, body: RatingBody) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.rate(
            profile_id,
            film_id,
            liked=body.liked,
            enjoyed=body.survey_enjoyed,
            reason=body.survey_reason,
            tags=body.survey_tags,
        )
        return {"ok": True}

    @fastapi_app.get("/api/profiles/{profile_id}/watch-history")
    async def watch_history(profile_id: str) -> list[dict[str, Any]]:
        return await get_services(fastapi_app).catalog.watch_history(profile_id)

    @fastapi_app.get("/api/profiles/{profile_id}/continue-watching")
    async def continue_watching(profile_id: str) -> list[dict[str, Any]]:
        return await get_services(fastapi_app).catalog.continue_watching(profile_id)

    @fastapi_app.get("/api/profiles/{profile_id}/film/{film_id}/progress")
    async def get_progress(profile_id: str, film_id: str) -> dict[str, Any] | None:
        progress = await get_services(fastapi_app).catalog.get_progress(profile_id, film_id)
        return progress.to_document() if progress else None

    @fastapi_app.post("/api/profiles/{profile_id}/film/{film_id}/progress")
    async def record_progress(
        profile_id: str, film_id: str, body: ProgressBody
    ) -> dict[str, Any]:
        progress = await get_services(fastapi_app).catalog.record_progress(
            profile_id,
            film_id,
            position_sec=body.position_sec,
            watched_delta_sec=body.total_watched_delta_sec,
            duration_sec=body.duration_sec,
        )
        return {"completionPct": progress.completion_pct, "completed": progress.completed}

    @fastapi_app.post("/api/profiles/{profile_id}/film/{film_id}/event")
    async def record_event(profile_id: str, film_id: str, body: EventBody) -> dict[str, Any]:
        await get_services(fastapi_app).catalog.record_event(
            profile_id, film_id, body.type, body.position_sec
        )
        return {"ok": True}

    # -- document export/import ---------------------------------------------

    @fastapi_app.get("/api/export")
    async def export_document() -> JSONResponse:
        payload = await get_services(fastapi_app).store.export_document()
        return JSONResponse(
            payload,
            headers={"Content-Disposition": 'attachment; filename="db.json"'},
        )

    @fastapi_app.post("/api/import")
    async def import_document(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid db format") from exc
        try:
            await get_services(fastapi_app).store.import_document(payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"ok": True}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "vetro.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
