#!/usr/bin/env python3
"""Command-line interface for the TouchGrass ingestion pipeline.

Commands:
  - touchgrass-ingest ingest     : Run a JSON batch file (seed data, crawl dumps)
  - touchgrass-ingest normalize  : Print normalized events without storing them
  - touchgrass-ingest sources    : List configured sources and their raw shapes

Typical usage:
  touchgrass-ingest ingest seed.json --source seed-data
  touchgrass-ingest ingest crawl.json --source crawler --source-type crawler-shape --dry-run
  touchgrass-ingest normalize listings.json --source-type listing-shape
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from touchgrass.configs.config import Config, load_ingestion_config
from touchgrass.configs.settings import get_settings
from touchgrass.ingestion.errors import InvalidPayloadError
from touchgrass.ingestion.handler import (
    build_orchestrator,
    handle_batch_request,
    load_source_shapes,
    parse_batch_payload,
)
from touchgrass.ingestion.normalizer import EventNormalizer, RawEventShape
from touchgrass.ingestion.persist import InMemoryEventStore
from touchgrass.ingestion.search_index import InMemorySearchIndex
from touchgrass.monitoring.logging import configure_logging

SHAPE_CHOICES = [shape.value for shape in RawEventShape]


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="touchgrass-ingest", description="TouchGrass DC ingestion CLI"
    )
    p.add_argument("--version", action="store_true", help="Print version and exit")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd")

    # ingest
    pi = sub.add_parser("ingest", help="Normalize, store and index a JSON batch file")
    pi.add_argument("file", help="JSON file: a list of events or a trigger payload")
    pi.add_argument("--source", "-s", default=None, help="Provenance tag")
    pi.add_argument(
        "--source-type", "-t", default=None, choices=SHAPE_CHOICES, help="Raw event shape"
    )
    pi.add_argument(
        "--dry-run",
        action="store_true",
        help="Use in-memory store and index (nothing leaves the process)",
    )

    # normalize
    pn = sub.add_parser("normalize", help="Print normalized events without storing them")
    pn.add_argument("file", help="JSON file: a list of events or a trigger payload")
    pn.add_argument("--source", "-s", default=None, help="Provenance tag")
    pn.add_argument(
        "--source-type", "-t", default=None, choices=SHAPE_CHOICES, help="Raw event shape"
    )

    # sources
    sub.add_parser("sources", help="List configured sources")

    return p.parse_args(argv)


def _read_json(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Batch file not found: {p}")
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _build_payload(data: Any, source: str | None, source_type: str | None) -> dict[str, Any]:
    """Wrap file contents as a trigger payload, applying command-line overrides."""
    payload = dict(data) if isinstance(data, dict) else {"events": data}
    if source:
        payload["source"] = source
    if source_type:
        payload["sourceType"] = source_type
    return payload


def _source_shapes() -> dict[str, str]:
    path = get_settings().INGESTION_CONFIG_PATH
    if not path.exists():
        return {}
    return load_source_shapes(load_ingestion_config(path))


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    try:
        return _main_impl(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in batch file: {e}", file=sys.stderr)
        return 1
    except InvalidPayloadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    if args.version:
        from touchgrass import __version__

        print(f"touchgrass version {__version__}")
        return 0

    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    settings = get_settings()
    # stdout carries the JSON result
    configure_logging(
        args.log_level or settings.LOG_LEVEL,
        args.json_logs or settings.LOG_JSON,
        stream=sys.stderr,
    )

    if args.cmd == "sources":
        sources = Config.list_sources()
        print(f"{'SOURCE':<16} {'SHAPE':<20} {'ENABLED':<8} DESCRIPTION")
        print("-" * 72)
        for name, conf in sorted(sources.items()):
            enabled = "yes" if conf.get("enabled", True) else "no"
            print(
                f"{name:<16} {conf.get('source_type', '-'):<20} {enabled:<8} "
                f"{conf.get('description', '')}"
            )
        return 0

    payload = _build_payload(_read_json(args.file), args.source, args.source_type)

    if args.cmd == "normalize":
        request = parse_batch_payload(payload, _source_shapes())
        normalizer = EventNormalizer(default_currency=settings.DEFAULT_CURRENCY)
        batch = normalizer.normalize_batch(request.events, request.source_type, request.source)
        output = {
            "events": [event.model_dump(mode="json", exclude_none=True) for event in batch.events],
            "rejected": [{"index": r.index, "reason": r.reason} for r in batch.rejections],
        }
        print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    if args.cmd == "ingest":
        if args.dry_run:
            orchestrator = build_orchestrator(
                settings, store=InMemoryEventStore(), index_client=InMemorySearchIndex()
            )
        else:
            orchestrator = build_orchestrator(settings)
        result = asyncio.run(_ingest(orchestrator, payload))
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0 if result.get("success") else 1

    print(f"Error: Unknown command {args.cmd}", file=sys.stderr)
    return 1


async def _ingest(orchestrator, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        return await handle_batch_request(payload, orchestrator, _source_shapes())
    finally:
        await orchestrator.gateway.store.close()
        await orchestrator.propagator.client.close()


if __name__ == "__main__":
    sys.exit(main())
