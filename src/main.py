# src/main.py — v2
"""CLI entry point — definitions, receipt, verify, health commands.

Usage:
    checkout-ledger definitions
    checkout-ledger receipt <events.json> [--pipeline-type T] [--session-id S] [-o FILE]
    checkout-ledger verify <receipt.json> [--expected-hash H]
    checkout-ledger health <events.json>

Event files hold a JSON list of events, or an object with an "events" list,
as exported from the event store.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from checkout_ledger.config.settings import ConfigurationError
from checkout_ledger.version import __version__

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISMATCH = 2


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        _setup_logging(args.verbose)
    except (ConfigurationError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_ERROR

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_ERROR


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="checkout-ledger",
        description=f"checkout-ledger v{__version__} - tamper-evident checkout pipeline receipts",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- definitions ---
    p_defs = subparsers.add_parser(
        "definitions", help="List built-in pipeline definitions",
    )
    p_defs.set_defaults(func=_cmd_definitions)

    # --- receipt ---
    p_receipt = subparsers.add_parser(
        "receipt", help="Compute a receipt from an exported event log",
    )
    p_receipt.add_argument("events_file", type=Path, help="Path to events JSON")
    p_receipt.add_argument(
        "--pipeline-type", default=None,
        help="Pipeline type (default: taken from the events)",
    )
    p_receipt.add_argument(
        "--session-id", default=None,
        help="Session to chain (required if the file holds several sessions)",
    )
    p_receipt.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Write the receipt to this file instead of stdout",
    )
    p_receipt.set_defaults(func=_cmd_receipt)

    # --- verify ---
    p_verify = subparsers.add_parser(
        "verify", help="Verify the chain of a receipt",
    )
    p_verify.add_argument("receipt_file", type=Path, help="Path to receipt JSON")
    p_verify.add_argument(
        "--expected-hash", default=None,
        help="Chain hash the receipt must match (e.g. the last snapshot)",
    )
    p_verify.set_defaults(func=_cmd_verify)

    # --- health ---
    p_health = subparsers.add_parser(
        "health", help="Summarize handler health from an exported event log",
    )
    p_health.add_argument("events_file", type=Path, help="Path to events JSON")
    p_health.set_defaults(func=_cmd_health)

    return parser


async def _cmd_definitions(args: argparse.Namespace) -> int:
    """Print the pipeline registry."""
    from checkout_ledger.pipeline.registry import PIPELINE_DEFINITIONS

    for definition in PIPELINE_DEFINITIONS:
        print(f"{definition.type}  ({definition.name})")
        print(f"  required: {', '.join(definition.required_steps)}")
        print(f"  optional: {', '.join(definition.optional_steps) or '-'}")
    return EXIT_OK


async def _cmd_receipt(args: argparse.Namespace) -> int:
    """Chain an exported event log into a receipt."""
    from checkout_ledger.pipeline.receipt import compute_receipt
    from checkout_ledger.pipeline.registry import get_pipeline_definition

    events = _load_events(args.events_file)
    if events is None:
        return EXIT_ERROR

    session_ids = sorted({e.session_id for e in events})
    session_id = args.session_id
    if session_id is None:
        if len(session_ids) != 1:
            logger.error(
                "Found %d sessions; pass --session-id (one of: %s)",
                len(session_ids), ", ".join(session_ids) or "none",
            )
            return EXIT_ERROR
        session_id = session_ids[0]
    events = [e for e in events if e.session_id == session_id]

    pipeline_type = args.pipeline_type or (events[0].pipeline_type if events else None)
    if pipeline_type is None:
        logger.error("No events for session %s; pass --pipeline-type", session_id)
        return EXIT_ERROR

    definition = get_pipeline_definition(pipeline_type)
    if definition is None:
        logger.error("Unknown pipeline type: %s", pipeline_type)
        return EXIT_ERROR

    receipt = compute_receipt(session_id, definition, events)
    payload = receipt.model_dump_json(indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(payload + "\n", encoding="utf-8")
        logger.info("Receipt written to %s", args.output)
    else:
        print(payload)
    return EXIT_OK


async def _cmd_verify(args: argparse.Namespace) -> int:
    """Re-derive a receipt's chain and compare hashes."""
    from checkout_ledger.pipeline.models import PipelineReceipt
    from checkout_ledger.pipeline.receipt import verify_receipt

    path: Path = args.receipt_file
    if not path.is_file():
        logger.error("File not found: %s", path)
        return EXIT_ERROR
    try:
        receipt = PipelineReceipt.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as exc:
        logger.error("Invalid receipt %s: %s", path, exc)
        return EXIT_ERROR

    if not verify_receipt(receipt):
        print(f"MISMATCH  chain of {receipt.session_id} does not re-derive")
        return EXIT_MISMATCH
    if args.expected_hash and args.expected_hash != receipt.chain_hash:
        print(f"MISMATCH  {receipt.chain_hash} != expected {args.expected_hash}")
        return EXIT_MISMATCH

    print(f"OK  {receipt.session_id}  {receipt.chain_hash}")
    return EXIT_OK


async def _cmd_health(args: argparse.Namespace) -> int:
    """Print per-handler health."""
    from checkout_ledger.config.settings import load_settings
    from checkout_ledger.tracking.handler_health import aggregate_by_handler

    events = _load_events(args.events_file)
    if events is None:
        return EXIT_ERROR

    settings = load_settings()
    health = aggregate_by_handler(
        events,
        window=timedelta(minutes=settings.health_window_minutes),
        healthy_threshold=settings.health_healthy_threshold,
        degraded_threshold=settings.health_degraded_threshold,
    )
    print(json.dumps(
        {name: h.model_dump(mode="json") for name, h in health.items()},
        indent=2,
    ))
    return EXIT_OK


def _load_events(path: Path) -> list[Any] | None:
    """Load and validate events from a JSON export. None on error (logged)."""
    from checkout_ledger.pipeline.event import EventValidationError, validate_event

    if not path.is_file():
        logger.error("File not found: %s", path)
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in %s: %s", path, exc)
        return None

    raw_events = data.get("events") if isinstance(data, dict) else data
    if not isinstance(raw_events, list):
        logger.error("%s must hold a list of events", path)
        return None

    events = []
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            logger.error("Event #%d in %s is not an object", index, path)
            return None
        try:
            events.append(validate_event(raw))
        except EventValidationError as exc:
            logger.error("Event #%d in %s rejected: %s", index, path, exc)
            return None
    return events


def _setup_logging(verbose: bool) -> None:
    """Configure logging from settings (LOG_* env vars or .env); -v forces DEBUG."""
    from checkout_ledger.config.settings import load_settings
    from checkout_ledger.logging.logger import configure_logging

    configure_logging(load_settings(), verbose=verbose)


if __name__ == "__main__":
    sys.exit(main())
