# session_engine/logic/patterns.py
"""
Behavioral patterns derived from a finalized session list: longest focus block,
idle periods, distraction blocks and their triggers, context-switch rate and
peak productivity hour. Also rolls daily summaries up into weekly patterns.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from session_engine.models import (
    ActivitySession,
    CategoryTotals,
    DailySessionSummary,
    DistractionBlock,
    FocusSummary,
    IdlePeriod,
    SessionPatterns,
    WeeklyPatterns,
)

log = logging.getLogger(__name__)

MAX_REPORTED_PERIODS = 10
DISTRACTION = "distraction"


def get_local_timezone(local_tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(local_tz)
    except Exception as e:
        log.warning(f"Failed to get timezone {local_tz}: {e}, using UTC")
        return ZoneInfo("UTC")


class PatternAnalyzer:

    def __init__(self, local_tz: str = "UTC"):
        self.local_tz = local_tz

    def get_local_timezone(self) -> ZoneInfo:
        return get_local_timezone(self.local_tz)

    def _clock_time(self, instant: datetime, tz: ZoneInfo) -> str:
        return instant.astimezone(tz).strftime("%H:%M")

    def analyze(self, sessions: Sequence[ActivitySession]) -> SessionPatterns:
        tz = self.get_local_timezone()
        active = [s for s in sessions if s.type == "active"]

        longest_focus: Optional[FocusSummary] = None
        for s in active:
            if not s.category or s.category == DISTRACTION:
                continue
            if longest_focus is None or s.duration > longest_focus.duration:
                longest_focus = FocusSummary(category=s.category, duration=s.duration, start=s.start)

        idle_periods = [
            IdlePeriod(
                start=self._clock_time(s.start, tz),
                duration=s.duration,
                after=s.preceding_category or "unknown activity",
            )
            for s in sessions if s.type == "idle"
        ][:MAX_REPORTED_PERIODS]

        distraction_blocks: List[DistractionBlock] = []
        for idx, s in enumerate(sessions):
            if s.type != "active" or s.category != DISTRACTION:
                continue
            if len(distraction_blocks) >= MAX_REPORTED_PERIODS:
                break
            distraction_blocks.append(DistractionBlock(
                start=self._clock_time(s.start, tz),
                duration=s.duration,
                trigger=self._trigger(sessions[idx - 1] if idx > 0 else None),
            ))

        total_active = sum(s.duration for s in active)
        total_switches = sum(s.context_switches for s in active)
        switch_rate = (total_switches / total_active) * 3600 if total_active > 0 else 0.0

        return SessionPatterns(
            longest_focus=longest_focus,
            idle_periods=idle_periods,
            distraction_blocks=distraction_blocks,
            context_switch_rate=round(switch_rate, 1),
            peak_productivity_hour=self._peak_hour(active),
        )

    @staticmethod
    def _trigger(preceding: Optional[ActivitySession]) -> str:
        # Idle sessions carry no category, so they read as a fresh start.
        if preceding is None or not preceding.category:
            return "start of tracking"
        return f"after {preceding.category}"

    @staticmethod
    def _peak_hour(active: Sequence[ActivitySession]) -> Optional[int]:
        """Hour of day (UTC, by session start) with the most non-distraction time; first hour wins ties."""
        hourly: Dict[int, int] = {}
        for s in active:
            if s.category == DISTRACTION:
                continue
            hour = s.start.hour
            hourly[hour] = hourly.get(hour, 0) + s.duration

        peak_hour: Optional[int] = None
        peak_duration = 0
        for hour, duration in hourly.items():
            if duration > peak_duration:
                peak_duration = duration
                peak_hour = hour
        return peak_hour

    @staticmethod
    def category_breakdown(sessions: Sequence[ActivitySession]) -> Dict[str, CategoryTotals]:
        breakdown: Dict[str, CategoryTotals] = {}
        for s in sessions:
            if s.type == "idle":
                continue
            totals = breakdown.setdefault(s.category or "other", CategoryTotals())
            totals.duration += s.duration
            totals.sessions += 1
        return breakdown

    @staticmethod
    def summarize_week(summaries: Sequence[DailySessionSummary]) -> WeeklyPatterns:
        active = [s for d in summaries for s in d.sessions if s.type == "active"]
        avg_session_length = sum(s.duration for s in active) / len(active) if active else 0

        switch_rates = [d.patterns.context_switch_rate for d in summaries if d.patterns.context_switch_rate > 0]
        avg_switch_rate = sum(switch_rates) / len(switch_rates) if switch_rates else 0.0

        category_totals: Dict[str, int] = {}
        for d in summaries:
            for category, totals in d.by_category.items():
                category_totals[category] = category_totals.get(category, 0) + totals.duration

        longest: Optional[FocusSummary] = None
        for d in summaries:
            focus = d.patterns.longest_focus
            if focus and (longest is None or focus.duration > longest.duration):
                longest = focus

        return WeeklyPatterns(
            total_active=sum(d.total_active for d in summaries),
            total_idle=sum(d.total_idle for d in summaries),
            avg_session_length=round(avg_session_length),
            avg_context_switch_rate=round(avg_switch_rate, 1),
            category_totals=category_totals,
            daily_peak_hours=[
                d.patterns.peak_productivity_hour for d in summaries if d.patterns.peak_productivity_hour is not None
            ],
            longest_focus_session=longest,
        )
