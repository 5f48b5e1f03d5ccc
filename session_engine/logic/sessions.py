# session_engine/logic/sessions.py
"""
Daily session summaries for the session engine.
Orchestrates one aggregation run per (device, day): refreshes the category
lookup, segments the events, and derives patterns, totals and the category
breakdown. Does not interact with any storage; events are passed in and the
summary record is returned.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import List, Mapping, Optional, Sequence

from session_engine.ingestion import validate_event_order
from session_engine.logic.boundary import BoundaryDecisionEngine
from session_engine.logic.categories import CategoryLookupCache, CategorySnapshot, CategoryStore, SuggestionSink
from session_engine.logic.context_extractor import ContextExtractor
from session_engine.logic.llm_processing import BoundaryClassifier, DecisionCache, GeminiBoundaryClassifier
from session_engine.logic.patterns import PatternAnalyzer
from session_engine.logic.session_aggregation import SessionAggregator
from session_engine.logic.settings import Settings
from session_engine.models import ActivityEvent, DailySessionSummary, WeeklyPatterns

log = logging.getLogger(__name__)

DAYS_PER_WEEK = 7


def empty_day_summary(day: date) -> DailySessionSummary:
    return DailySessionSummary(date=day)


class DailySessionService:
    """
    Shared across concurrent runs: the decision cache and the category lookup
    are the only state that outlives a single run.
    """

    def __init__(
        self,
        settings: Settings,
        category_store: Optional[CategoryStore] = None,
        classifier: Optional[BoundaryClassifier] = None,
        suggestion_sink: Optional[SuggestionSink] = None,
        decision_cache: Optional[DecisionCache] = None,
    ):
        self.settings = settings
        self.lookup = CategoryLookupCache(category_store)
        self.decision_cache = decision_cache if decision_cache is not None else DecisionCache.from_settings(settings)
        self.suggestion_sink = suggestion_sink
        self.extractor = ContextExtractor()
        self.analyzer = PatternAnalyzer(local_tz=settings.local_tz)

        if not settings.enable_ai_fallback:
            classifier = None
        elif classifier is None and settings.ai_configured:
            classifier = GeminiBoundaryClassifier(settings)
        self.classifier = classifier
        log.info(f"DailySessionService initialized (AI fallback {'on' if self.classifier else 'off'}).")

    def build_engine(self, snapshot: CategorySnapshot) -> BoundaryDecisionEngine:
        return BoundaryDecisionEngine(
            categories=snapshot,
            decision_cache=self.decision_cache,
            classifier=self.classifier,
            suggestion_sink=self.suggestion_sink,
            max_ai_calls=self.settings.ai_max_calls_per_run,
        )

    def clear_cache(self) -> None:
        self.decision_cache.clear()

    async def summarize_day(self, day: date, events: Sequence[ActivityEvent]) -> DailySessionSummary:
        """
        Builds the summary record for one device's events on one day.

        Raises:
            InvalidEventBatchError: if the events are not in ascending timestamp order.
        """
        log.info(f"Summarizing sessions for {day} with {len(events)} events.")
        if not events:
            log.info(f"No events for {day}. Returning empty summary.")
            return empty_day_summary(day)

        validate_event_order(events)
        if any(e.duration < 0 for e in events):
            log.error(f"Negative event duration in batch for {day}. Returning empty summary.")
            return empty_day_summary(day)

        snapshot = await asyncio.to_thread(self.lookup.refresh)
        engine = self.build_engine(snapshot)
        sessions = await SessionAggregator(engine, self.extractor).aggregate(events)

        total_active = sum(s.duration for s in sessions if s.type == "active")
        total_idle = sum(s.duration for s in sessions if s.type == "idle")
        summary = DailySessionSummary(
            date=day,
            total_active=total_active,
            total_idle=total_idle,
            session_count=len(sessions),
            sessions=sessions,
            patterns=self.analyzer.analyze(sessions),
            by_category=self.analyzer.category_breakdown(sessions),
        )
        log.info(
            f"Built {summary.session_count} sessions for {day} "
            f"({total_active}s active, {total_idle}s idle, {engine.ai_calls} AI calls)."
        )
        return summary

    async def summarize_range(
        self,
        start: date,
        end: date,
        events_by_day: Mapping[date, Sequence[ActivityEvent]],
    ) -> List[DailySessionSummary]:
        """One summary per calendar day from start to end inclusive; days without events are empty."""
        summaries: List[DailySessionSummary] = []
        current = start
        while current <= end:
            summaries.append(await self.summarize_day(current, events_by_day.get(current, [])))
            current += timedelta(days=1)
        return summaries

    async def weekly_patterns(
        self,
        week_start: date,
        events_by_day: Mapping[date, Sequence[ActivityEvent]],
    ) -> WeeklyPatterns:
        week_end = week_start + timedelta(days=DAYS_PER_WEEK - 1)
        summaries = await self.summarize_range(week_start, week_end, events_by_day)
        return self.analyzer.summarize_week(summaries)
