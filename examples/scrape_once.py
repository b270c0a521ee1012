"""Command-line helper that scrapes a handful of URLs once and prints the results."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.table import Table

from threat_radar.config import load_config
from threat_radar.orchestrator import ScrapeOrchestrator
from threat_radar.state import ScrapeStateTracker
from threat_radar.store import JsonStore
from threat_radar.transport import ProxyTransport


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scrape URLs once through the Tor proxy")
    parser.add_argument("urls", nargs="+", help="Pages to fetch (http:// or https://)")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Optional JSON file to persist sources and entries. Defaults to memory only.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    config = load_config()
    store = JsonStore(args.store)
    registered = {source.url for source in store.list_sources()}
    for index, url in enumerate(args.urls, start=1):
        if url not in registered:
            store.add_source(f"source-{index}", url)

    transport = ProxyTransport(config.proxy)
    orchestrator = ScrapeOrchestrator(config.scraper, store, transport, ScrapeStateTracker())
    try:
        states = orchestrator.scrape_all()
    finally:
        transport.close()

    console = Console()
    table = Table(title="Scrape results")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Error")
    for state in states:
        table.add_row(
            state.source_name,
            state.status.value,
            str(state.entries_found),
            str(state.entries_inserted),
            state.error or "",
        )
    console.print(table)

    entries = store.list_entries()
    if entries:
        console.print(f"{len(entries)} entries stored:")
        for entry in entries:
            console.print(f"  [{entry.category}] {entry.criticality_score:3d}  {entry.title}")
    else:
        console.print("No entries stored.")


if __name__ == "__main__":  # pragma: no cover
    main()
