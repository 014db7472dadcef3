"""Service layer wiring for the library server and the command line."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from ..config import Settings
from ..database import Database
from ..store import DocumentStore
from .catalog import CatalogService
from .enrichment import EnrichmentService
from .library import LibraryReconciler
from .openrouter import OpenRouterClient


@dataclass(slots=True)
class Services:
    """Everything the routes and commands need, wired once per process."""

    store: DocumentStore
    catalog: CatalogService
    reconciler: LibraryReconciler
    enrichment: EnrichmentService


def build_services(
    config: Settings,
    database: Database,
    *,
    provider_client: httpx.AsyncClient,
    download_client: httpx.AsyncClient,
) -> Services:
    store = DocumentStore(database.session_factory)
    provider = OpenRouterClient(config, provider_client)
    enrichment = EnrichmentService(store, provider, download_client, config.storage_dir)
    return Services(
        store=store,
        catalog=CatalogService(store, config.storage_dir),
        reconciler=LibraryReconciler(store, config.storage_dir, enrichment),
        enrichment=enrichment,
    )


@asynccontextmanager
async def open_services(config: Settings) -> AsyncIterator[Services]:
    """Open the HTTP clients and database, then yield the wired services."""

    async with AsyncExitStack() as exit_stack:
        provider_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(config.openrouter_api_url),
                timeout=httpx.Timeout(60.0, connect=10.0),
            )
        )
        download_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        )
        database = Database(config.database_url)
        exit_stack.push_async_callback(database.dispose)
        await database.create_all()
        yield build_services(
            config,
            database,
            provider_client=provider_client,
            download_client=download_client,
        )


__all__ = ["Services", "build_services", "open_services"]
