"""Command line interface for managing the film library."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Sequence

from .config import Settings, get_settings
from .errors import EntryNotFoundError, StoreWriteError
from .models import Series
from .services import Services, open_services
from .utils import format_size


async def list_entries(services: Services) -> int:
    entries = await services.catalog.list_entries()
    if not entries:
        print("  No films in database.")
        return 0

    print(f"\n  {len(entries)} film(s):\n")
    for entry in entries:
        line = f"  {entry.id}  {entry.display_title()}  ({entry.year or '?'})"
        if isinstance(entry, Series):
            line += f"  {len(entry.episodes)} episode(s)"
        print(f"{line}  [{format_size(entry.file_size)}]")
    print()
    return 0


async def scan(services: Services, *, enrich: bool) -> int:
    suffix = " (with AI enrichment)" if enrich else ""
    print(f"\n  Scanning {services.reconciler.storage_root} for new films...{suffix}\n")
    if enrich and not services.enrichment.available:
        print("  OPENROUTER_API_KEY is not set; registering without enrichment.")

    report = await services.reconciler.scan(enrich=enrich)
    if not report.changed:
        print("  No new films found.")
        return 0

    for entry in report.entries:
        print(f"  + {entry.display_title()}  ({entry.id})")
    print(
        f"\n  Registered {report.new_items} new item(s) "
        f"and {report.new_episodes} new episode(s)."
    )
    if enrich:
        print(f"  Enriched {report.enriched} item(s).")
    return 0


async def remove(services: Services, entry_id: str) -> int:
    try:
        removed = await services.catalog.remove_entry(entry_id)
    except EntryNotFoundError:
        print(f"  Film not found: {entry_id}")
        return 1
    print(f'  Removed: "{removed.display_title()}" ({entry_id})')
    return 0


async def remove_all(services: Services) -> int:
    removed = await services.catalog.remove_all()
    if not removed:
        print("  No films to remove.")
        return 0
    print(f"  Removed all {len(removed)} film(s) and their storage files.")
    return 0


async def info(services: Services, entry_id: str) -> int:
    try:
        entry = await services.catalog.get_entry(entry_id)
    except EntryNotFoundError:
        print(f"  Film not found: {entry_id}")
        return 1
    print("\n  Film details:\n")
    print(json.dumps(entry.to_document(), indent=2, ensure_ascii=False))
    print()
    return 0


def serve(config: Settings) -> int:
    """Start the uvicorn server using the configured settings."""

    import uvicorn

    uvicorn.run(
        "vetro.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=config.environment == "development",
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vetro",
        description="Manage the Vetro film library from the command line.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show debug logging"
    )
    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    commands.add_parser("list", aliases=["ls"], help="List every film and series")

    scan_parser = commands.add_parser("scan", help="Register new files from storage")
    scan_parser.add_argument(
        "--enrich", action="store_true", help="Fetch AI metadata for new items"
    )

    remove_parser = commands.add_parser(
        "remove", aliases=["rm", "delete"], help="Remove one film by id"
    )
    remove_parser.add_argument("id", help="Film id")

    commands.add_parser(
        "remove-all", aliases=["clear"], help="Remove every film and its files"
    )

    info_parser = commands.add_parser("info", help="Show the stored record of a film")
    info_parser.add_argument("id", help="Film id")

    commands.add_parser("serve", help="Run the HTTP server")
    return parser


COMMAND_ALIASES = {
    "ls": "list",
    "rm": "remove",
    "delete": "remove",
    "clear": "remove-all",
}


async def run_command(args: argparse.Namespace, config: Settings) -> int:
    command = COMMAND_ALIASES.get(args.command, args.command)
    async with open_services(config) as services:
        if command == "list":
            return await list_entries(services)
        if command == "scan":
            return await scan(services, enrich=args.enrich)
        if command == "remove":
            return await remove(services, args.id)
        if command == "remove-all":
            return await remove_all(services)
        if command == "info":
            return await info(services, args.id)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None, *, config: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    config = config or get_settings()

    if args.command == "serve":
        return serve(config)

    try:
        return asyncio.run(run_command(args, config))
    except StoreWriteError as exc:
        print(f"  Error: {exc}", file=sys.stderr)
        return 1
