# session_engine/logic/session_aggregation.py
"""
Session aggregation module for the session engine.
Folds an ordered event batch into active and idle sessions in a single pass,
asking the BoundaryDecisionEngine once per adjacent pair of active events.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from session_engine.logic.boundary import MERGE_CONFIDENCE_THRESHOLD, BoundaryDecisionEngine
from session_engine.logic.context_extractor import (
    ContextExtractor,
    deduplicate_contexts,
    extract_domain,
)
from session_engine.models import ActivityEvent, ActivitySession, ExtractedContext, to_activity_category

log = logging.getLogger(__name__)

SESSION_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "sessions.session-engine")


def make_session_id(device_id: str, session_type: str, start: datetime, ordinal: int) -> str:
    """Stable id so that re-running a batch reproduces the same sessions.

    The ordinal is the session's position in the run, so two sessions starting
    at the same instant still get distinct ids.
    """
    return str(uuid.uuid5(SESSION_ID_NAMESPACE, f"{device_id}|{session_type}|{start.isoformat()}|{ordinal}"))


def event_end(event: ActivityEvent) -> datetime:
    return event.timestamp + timedelta(seconds=event.duration)


@dataclass
class _OpenSession:
    """Accumulator for the active session currently being built."""
    events: List[ActivityEvent]
    apps: Dict[str, None] = field(default_factory=dict)
    contexts: List[ExtractedContext] = field(default_factory=list)
    category: Optional[str] = None
    switches: int = 0

    @property
    def last(self) -> ActivityEvent:
        return self.events[-1]


class SessionAggregator:
    """Turns one device's ordered events for one run into ActivitySession records."""

    def __init__(
        self,
        engine: BoundaryDecisionEngine,
        extractor: Optional[ContextExtractor] = None,
        merge_threshold: float = MERGE_CONFIDENCE_THRESHOLD,
    ):
        self.engine = engine
        self.extractor = extractor or ContextExtractor()
        self.merge_threshold = merge_threshold

    async def aggregate(self, events: Sequence[ActivityEvent]) -> List[ActivitySession]:
        sessions: List[ActivitySession] = []
        current: Optional[_OpenSession] = None

        for event in events:
            if event.is_idle:
                if current is not None:
                    self._append(sessions, self._finalize(current, len(sessions)))
                    current = None
                self._add_idle(sessions, event)
                continue

            if current is None:
                current = self._open(event)
                continue

            decision = await self.engine.decide(current.last, event)
            if decision.should_merge and decision.confidence >= self.merge_threshold:
                self._merge(current, event)
            else:
                log.debug(
                    f"Session boundary at {event.timestamp.isoformat()}: {decision.reason} "
                    f"(merge={decision.should_merge}, confidence={decision.confidence})"
                )
                self._append(sessions, self._finalize(current, len(sessions)))
                current = self._open(event)

        if current is not None:
            self._append(sessions, self._finalize(current, len(sessions)))

        return sessions

    def _open(self, event: ActivityEvent) -> _OpenSession:
        session = _OpenSession(events=[event], apps={event.app_name: None})
        session.category = self.engine.category_for(event)
        context = self.extractor.extract_event(event)
        if context:
            session.contexts.append(context)
        return session

    def _merge(self, session: _OpenSession, event: ActivityEvent) -> None:
        previous = session.last
        if event.app_name != previous.app_name:
            session.switches += 1
        elif event.url and previous.url and extract_domain(event.url) != extract_domain(previous.url):
            session.switches += 1

        session.events.append(event)
        session.apps.setdefault(event.app_name, None)
        context = self.extractor.extract_event(event)
        if context:
            session.contexts.append(context)
        if not session.category:
            session.category = self.engine.category_for(event)

    def _finalize(self, session: _OpenSession, ordinal: int) -> ActivitySession:
        first = session.events[0]
        start = first.timestamp
        end = event_end(session.last)
        return ActivitySession(
            id=make_session_id(first.device_id, "active", start, ordinal),
            start=start,
            end=end,
            duration=int((end - start).total_seconds()),
            type="active",
            category=to_activity_category(session.category),
            apps=list(session.apps),
            contexts=deduplicate_contexts(session.contexts),
            context_switches=session.switches,
        )

    def _add_idle(self, sessions: List[ActivitySession], event: ActivityEvent) -> None:
        if sessions and sessions[-1].type == "idle":
            trailing = sessions[-1]
            sessions[-1] = trailing.model_copy(update={
                "end": max(trailing.end, event_end(event)),
                "duration": trailing.duration + event.duration,
            })
            return

        preceding_category = sessions[-1].category if sessions else None
        self._append(sessions, ActivitySession(
            id=make_session_id(event.device_id, "idle", event.timestamp, len(sessions)),
            start=event.timestamp,
            end=event_end(event),
            duration=event.duration,
            type="idle",
            preceding_category=preceding_category,
        ))

    @staticmethod
    def _append(sessions: List[ActivitySession], session: ActivitySession) -> None:
        # An event whose duration runs past the next event's timestamp is clipped there.
        if sessions and sessions[-1].end > session.start:
            previous = sessions[-1]
            span = int((session.start - previous.start).total_seconds())
            sessions[-1] = previous.model_copy(update={
                "end": session.start,
                "duration": span if previous.type == "active" else min(previous.duration, span),
            })
        sessions.append(session)
