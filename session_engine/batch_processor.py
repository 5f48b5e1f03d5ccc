# session_engine/batch_processor.py
import asyncio
import logging
from typing import Dict, Mapping, Sequence

from session_engine.exceptions import InvalidEventBatchError
from session_engine.ingestion import Partition
from session_engine.logic.sessions import DailySessionService
from session_engine.models import ActivityEvent, DailySessionSummary

logger = logging.getLogger(__name__)


async def _summarize_partition(
    service: DailySessionService,
    partition: Partition,
    events: Sequence[ActivityEvent],
) -> DailySessionSummary | None:
    device_id, local_day = partition
    try:
        return await service.summarize_day(local_day, events)
    except InvalidEventBatchError as e:
        logger.error(f"Rejected event batch for device {device_id} on {local_day}: {e}")
        return None


async def run_batch_processing(
    service: DailySessionService,
    partitions: Mapping[Partition, Sequence[ActivityEvent]],
) -> Dict[Partition, DailySessionSummary]:
    """
    Runs one aggregation per (device, day) partition concurrently.
    A rejected batch is logged and left out of the result; other runs are unaffected.
    """
    if not partitions:
        logger.info("No event partitions to process.")
        return {}

    logger.info(f"Starting batch processing for {len(partitions)} device-day partitions.")
    keys = list(partitions)
    results = await asyncio.gather(
        *(_summarize_partition(service, key, partitions[key]) for key in keys)
    )

    summaries = {key: summary for key, summary in zip(keys, results) if summary is not None}
    logger.info(f"Batch processing finished: {len(summaries)} of {len(keys)} partitions summarized.")
    return summaries
