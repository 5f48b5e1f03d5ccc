# session_engine/cli.py

import argparse
import asyncio
import json
import logging
import sys
from collections import defaultdict
from datetime import date
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from session_engine.batch_processor import run_batch_processing
from session_engine.exceptions import SessionEngineError
from session_engine.ingestion import load_events, partition_events
from session_engine.logic.categories import CategorySuggestionBook, JsonCategoryStore
from session_engine.logic.sessions import DailySessionService
from session_engine.logic.settings import Settings, get_settings

logging.basicConfig(
    format="%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-25s | %(message)s",
    level=logging.INFO,
)
log = logging.getLogger("session_engine.cli")


def _build_service(args_ns, settings: Settings, suggestions: CategorySuggestionBook) -> DailySessionService:
    if args_ns.no_ai:
        settings.enable_ai_fallback = False
    store = JsonCategoryStore(args_ns.categories) if args_ns.categories else None
    return DailySessionService(settings, category_store=store, suggestion_sink=suggestions)


def _load_partitions(args_ns, settings: Settings):
    events = load_events(args_ns.events)
    if args_ns.device:
        events = [e for e in events if e.device_id == args_ns.device]
    return partition_events(events, settings.local_tz)


def _log_pending_suggestions(suggestions: CategorySuggestionBook) -> None:
    pending = suggestions.pending()
    if not pending:
        return
    log.info(f"{len(pending)} category suggestions awaiting review:")
    for s in pending:
        log.info(f"  {s.kind}:{s.value} -> {s.suggested_category} (confidence {s.confidence}, seen {s.occurrence_count}x)")


def _emit(payload: dict, out_path: Path | None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if out_path:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        log.info(f"Wrote output to {out_path}")
    else:
        print(text)


def handle_summarize(args_ns, settings: Settings):
    suggestions = CategorySuggestionBook()
    service = _build_service(args_ns, settings, suggestions)
    partitions = _load_partitions(args_ns, settings)
    if args_ns.day:
        partitions = {key: evts for key, evts in partitions.items() if key[1] == args_ns.day}
    log.info(f"CLI: Summarizing {len(partitions)} device-day partitions from {args_ns.events}...")

    summaries = asyncio.run(run_batch_processing(service, partitions))

    output = defaultdict(dict)
    for (device_id, local_day), summary in sorted(summaries.items()):
        output[device_id][local_day.isoformat()] = summary.to_json_dict()
    _emit(dict(output), args_ns.out)
    _log_pending_suggestions(suggestions)


def handle_weekly(args_ns, settings: Settings):
    suggestions = CategorySuggestionBook()
    service = _build_service(args_ns, settings, suggestions)
    partitions = _load_partitions(args_ns, settings)

    by_device = defaultdict(dict)
    for (device_id, local_day), evts in partitions.items():
        by_device[device_id][local_day] = evts

    async def run():
        results = {}
        for device_id, events_by_day in sorted(by_device.items()):
            try:
                weekly = await service.weekly_patterns(args_ns.week_start, events_by_day)
            except SessionEngineError as e:
                log.error(f"Weekly roll-up failed for device {device_id}: {e}")
                continue
            results[device_id] = weekly.model_dump(mode='json', by_alias=True)
        return results

    log.info(f"CLI: Building weekly patterns from {args_ns.week_start} for {len(by_device)} devices...")
    _emit(asyncio.run(run()), args_ns.out)
    _log_pending_suggestions(suggestions)


def _add_common_arguments(subparser):
    subparser.add_argument("--events", type=Path, required=True, help="Event file (.parquet, .csv, .json, .jsonl, .ndjson).")
    subparser.add_argument("--categories", type=Path, default=None, help="JSON file with 'apps' and 'domains' category mappings.")
    subparser.add_argument("--device", type=str, default=None, help="Only process events from this device id.")
    subparser.add_argument("--no-ai", action="store_true", help="Disable the AI boundary fallback for this run.")
    subparser.add_argument("--out", type=Path, default=None, help="Write JSON output to this file instead of stdout.")


def main():
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    parser = argparse.ArgumentParser(
        prog="session-engine",
        description="Session engine: segment activity events into focus sessions and daily patterns."
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging for all session engine modules."
    )
    subparsers = parser.add_subparsers(dest="command", title="Available Commands", required=True)

    # --- Summarize Subcommand ---
    parser_summarize = subparsers.add_parser("summarize", help="Build daily session summaries per device.")
    _add_common_arguments(parser_summarize)
    parser_summarize.add_argument("--day", type=date.fromisoformat, default=None, help="Only summarize this local day (YYYY-MM-DD).")
    parser_summarize.set_defaults(func=handle_summarize)

    # --- Weekly Subcommand ---
    parser_weekly = subparsers.add_parser("weekly", help="Roll seven daily summaries up into weekly patterns.")
    _add_common_arguments(parser_weekly)
    parser_weekly.add_argument("--week-start", type=date.fromisoformat, required=True, help="First day of the week (YYYY-MM-DD).")
    parser_weekly.set_defaults(func=handle_weekly)

    args = parser.parse_args()

    if args.debug:
        logging.getLogger("session_engine").setLevel(logging.DEBUG)
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)
        for handler in root_logger.handlers:
            handler.setLevel(logging.DEBUG)
        log.debug("Debug logging enabled via CLI.")

    try:
        args.func(args, settings)
    except SessionEngineError as e:
        log.error(f"CLI: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
