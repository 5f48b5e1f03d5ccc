# session_engine/ingestion.py
"""
Event source adapter for the session engine.
Reads exported activity events with polars, normalizes column names and
defaults, validates rows into ActivityEvent records and partitions them into
(device, local day) batches.
"""

import logging
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import polars as pl
from pydantic import ValidationError

from session_engine.exceptions import InvalidEventBatchError
from session_engine.logic.patterns import get_local_timezone
from session_engine.models import DEFAULT_EVENT_DURATION_S, ActivityEvent

log = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "deviceId": "device_id",
    "appName": "app_name",
    "app": "app_name",
    "windowTitle": "window_title",
    "title": "window_title",
    "bundleId": "bundle_id",
    "bundleIdentifier": "bundle_id",
    "documentPath": "document_path",
    "isIdle": "is_idle",
    "durationS": "duration",
    "duration_s": "duration",
}

REQUIRED_COLUMNS = ("timestamp", "app_name")

COLUMN_DEFAULTS = {
    "device_id": "unknown-device",
    "source": "unknown",
    "window_title": "",
    "is_idle": False,
    "duration": DEFAULT_EVENT_DURATION_S,
    "bundle_id": None,
    "document_path": None,
    "url": None,
}

Partition = Tuple[str, date]


def _read_raw(path: Path) -> pl.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        return pl.read_parquet(path)
    if suffix == ".csv":
        return pl.read_csv(path)
    if suffix == ".json":
        return pl.read_json(path)
    if suffix in (".jsonl", ".ndjson"):
        return pl.read_ndjson(path)
    raise InvalidEventBatchError(f"Unsupported event file type: {path.name}")


def normalize_event_frame(df: pl.DataFrame) -> pl.DataFrame:
    """Renames known column spellings to field names and fills missing columns and nulls with defaults."""
    renames: Dict[str, str] = {}
    for column in df.columns:
        target = COLUMN_ALIASES.get(column)
        if target and target not in df.columns and target not in renames.values():
            renames[column] = target
    df = df.rename(renames)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise InvalidEventBatchError(f"Event data is missing required columns: {', '.join(missing)}")

    columns = []
    for column, default in COLUMN_DEFAULTS.items():
        if column not in df.columns:
            columns.append(pl.lit(default).alias(column))
        elif default is not None:
            columns.append(pl.col(column).fill_null(default))
    if columns:
        df = df.with_columns(columns)
    return df.select(list(REQUIRED_COLUMNS) + list(COLUMN_DEFAULTS))


def read_event_frame(path: Path) -> pl.DataFrame:
    path = Path(path)
    try:
        df = normalize_event_frame(_read_raw(path))
    except InvalidEventBatchError:
        raise
    except Exception as e:
        raise InvalidEventBatchError(f"Cannot read events from {path}: {e}") from e
    log.info(f"Read {df.height} events from {path}.")
    return df


def frame_to_events(df: pl.DataFrame) -> List[ActivityEvent]:
    events: List[ActivityEvent] = []
    for idx, row in enumerate(df.iter_rows(named=True)):
        try:
            events.append(ActivityEvent.model_validate(row))
        except ValidationError as e:
            raise InvalidEventBatchError(f"Invalid event at row {idx}: {e}") from e
    return events


def load_events(path: Path) -> List[ActivityEvent]:
    return frame_to_events(read_event_frame(path))


def validate_event_order(events: Sequence[ActivityEvent]) -> None:
    """Raises InvalidEventBatchError unless timestamps are non-decreasing."""
    for idx in range(1, len(events)):
        if events[idx].timestamp < events[idx - 1].timestamp:
            raise InvalidEventBatchError(
                f"Events are not sorted by timestamp: index {idx} ({events[idx].timestamp.isoformat()}) "
                f"precedes index {idx - 1} ({events[idx - 1].timestamp.isoformat()})"
            )


def partition_events(events: Sequence[ActivityEvent], local_tz: str = "UTC") -> Dict[Partition, List[ActivityEvent]]:
    """Groups events by (device id, local calendar day), keeping their input order."""
    tz = get_local_timezone(local_tz)
    partitions: Dict[Partition, List[ActivityEvent]] = defaultdict(list)
    for event in events:
        partitions[(event.device_id, event.timestamp.astimezone(tz).date())].append(event)
    log.info(f"Partitioned {len(events)} events into {len(partitions)} device-day batches.")
    return dict(partitions)
