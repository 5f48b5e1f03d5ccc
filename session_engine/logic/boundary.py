# session_engine/logic/boundary.py
"""
Session boundary detection for the session engine.

Decides whether two adjacent events belong to the same session, in order:
time gap, idle run, same app (with URL awareness for browsers), related app
groups, then category comparison with an AI fallback for uncategorized items.
Ambiguity resolves to a conservative split, never to a silent merge.
"""

import logging
from typing import Optional, Sequence, Tuple

from session_engine.exceptions import ClassificationError
from session_engine.logic.categories import EMPTY_SNAPSHOT, CategorySnapshot, SuggestionSink
from session_engine.logic.context_extractor import are_urls_related, extract_domain, is_browser
from session_engine.logic.llm_processing import BoundaryClassifier, DecisionCache
from session_engine.models import ActivityEvent, BoundaryDecision

log = logging.getLogger(__name__)

# Thresholds
MAX_SESSION_GAP_S = 300
IDLE_THRESHOLD_S = 120
MERGE_CONFIDENCE_THRESHOLD = 0.7
SUGGESTION_CONFIDENCE_THRESHOLD = 0.6
CONSERVATIVE_CONFIDENCE = 0.5
DESCRIPTION_TITLE_LIMIT = 60

CONSERVATIVE_REASON = "uncategorized — conservative split"

# Apps that share a work context; membership is a case-insensitive substring match either way.
RELATED_APP_GROUPS: Tuple[Tuple[str, ...], ...] = (
    # Development: IDE + terminal + API client
    (
        "Visual Studio Code", "Code", "Cursor", "Xcode", "IntelliJ IDEA", "WebStorm", "PyCharm",
        "Ghostty", "Terminal", "iTerm2", "Alacritty", "Hyper", "Warp", "Kitty",
        "Bruno", "Postman", "Insomnia",
    ),
    # Design
    ("Figma", "Sketch", "Adobe XD", "Photoshop", "Illustrator", "InDesign"),
    # Browsers
    ("Firefox", "Chrome", "Safari", "Edge", "Brave", "Arc"),
    # Communication
    ("Slack", "Discord", "Teams", "Zoom"),
)


def _in_group(app_name: str, group: Sequence[str]) -> bool:
    app = app_name.strip().lower()
    if not app:
        return False
    return any(app in member.lower() or member.lower() in app for member in group)


def are_apps_related(app1: str, app2: str) -> bool:
    return any(_in_group(app1, group) and _in_group(app2, group) for group in RELATED_APP_GROUPS)


def conservative_split(reason: str = CONSERVATIVE_REASON) -> BoundaryDecision:
    return BoundaryDecision(should_merge=False, confidence=CONSERVATIVE_CONFIDENCE, reason=reason)


def lookup_key(event: ActivityEvent) -> str:
    """Domain for browser events (when one can be extracted), app name otherwise."""
    if is_browser(event.app_name):
        return extract_domain(event.url) or event.app_name
    return event.app_name


def describe_event(event: ActivityEvent) -> str:
    desc = event.app_name
    domain = extract_domain(event.url)
    if domain:
        desc += f" ({domain})"
    if event.window_title and len(event.window_title) < DESCRIPTION_TITLE_LIMIT:
        desc += f': "{event.window_title}"'
    return desc


class BoundaryDecisionEngine:
    """
    Compares adjacent events. One engine serves one aggregation run: it pins the
    category snapshot it was built with and counts the AI calls it has spent.
    """

    def __init__(
        self,
        categories: CategorySnapshot = EMPTY_SNAPSHOT,
        decision_cache: Optional[DecisionCache] = None,
        classifier: Optional[BoundaryClassifier] = None,
        suggestion_sink: Optional[SuggestionSink] = None,
        max_ai_calls: Optional[int] = None,
    ):
        self.categories = categories
        self.decision_cache = decision_cache if decision_cache is not None else DecisionCache()
        self.classifier = classifier
        self.suggestion_sink = suggestion_sink
        self.max_ai_calls = max_ai_calls
        self.ai_calls = 0
        self._budget_warned = False

    def category_for(self, event: ActivityEvent) -> Optional[str]:
        return self.categories.category_for(event)

    def clear_cache(self) -> None:
        self.decision_cache.clear()

    async def decide(self, prev: ActivityEvent, curr: ActivityEvent) -> BoundaryDecision:
        """Returns a decision for every input; failures become the conservative split."""
        try:
            decision = await self._decide(prev, curr)
        except Exception as e:
            log.error(f"Boundary decision failed for {prev.app_name} -> {curr.app_name}: {e}", exc_info=True)
            decision = conservative_split()
        log.debug(
            f"{prev.app_name} -> {curr.app_name}: merge={decision.should_merge} "
            f"confidence={decision.confidence} ({decision.reason})"
        )
        return decision

    async def _decide(self, prev: ActivityEvent, curr: ActivityEvent) -> BoundaryDecision:
        gap = (curr.timestamp - prev.timestamp).total_seconds()
        if gap > MAX_SESSION_GAP_S:
            return BoundaryDecision(
                should_merge=False,
                confidence=1.0,
                reason=f"Large time gap ({round(gap / 60)}min > {MAX_SESSION_GAP_S // 60}min)",
            )

        if prev.is_idle and prev.duration > IDLE_THRESHOLD_S:
            return BoundaryDecision(should_merge=False, confidence=1.0, reason="Extended idle period")

        if prev.app_name == curr.app_name:
            if is_browser(prev.app_name) and prev.url and curr.url:
                if extract_domain(prev.url) == extract_domain(curr.url):
                    return BoundaryDecision(should_merge=True, confidence=1.0, reason="Same app and domain")
                if are_urls_related(prev.url, curr.url):
                    return BoundaryDecision(
                        should_merge=True,
                        confidence=0.9,
                        reason="Related domains (same service ecosystem)",
                    )
                return await self._decide_by_category(prev, curr)
            return BoundaryDecision(should_merge=True, confidence=1.0, reason="Same application")

        if are_apps_related(prev.app_name, curr.app_name):
            prev_cat = self.category_for(prev)
            curr_cat = self.category_for(curr)
            if prev_cat and curr_cat and prev_cat == curr_cat:
                return BoundaryDecision(
                    should_merge=True,
                    confidence=0.9,
                    reason=f"Related apps in same category ({prev_cat})",
                )
            return BoundaryDecision(should_merge=True, confidence=0.75, reason="Related application group")

        return await self._decide_by_category(prev, curr)

    async def _decide_by_category(self, prev: ActivityEvent, curr: ActivityEvent) -> BoundaryDecision:
        prev_cat = self.category_for(prev)
        curr_cat = self.category_for(curr)

        if prev_cat and curr_cat:
            if prev_cat == curr_cat:
                return BoundaryDecision(should_merge=True, confidence=0.85, reason=f"Same category ({prev_cat})")
            return BoundaryDecision(
                should_merge=False,
                confidence=0.9,
                reason=f"Different categories ({prev_cat} → {curr_cat})",
            )

        cache_key = f"{lookup_key(prev)}|{lookup_key(curr)}"
        cached = self.decision_cache.get(cache_key)
        if cached is not None:
            return cached

        if self.classifier is None:
            return conservative_split()

        if self.max_ai_calls is not None and self.ai_calls >= self.max_ai_calls:
            if not self._budget_warned:
                log.warning(f"AI boundary budget of {self.max_ai_calls} calls exhausted for this run.")
                self._budget_warned = True
            return conservative_split()

        self.ai_calls += 1
        try:
            result = await self.classifier.classify(describe_event(prev), describe_event(curr))
        except ClassificationError as e:
            log.warning(f"AI boundary decision failed: {e}")
            return conservative_split()

        decision = BoundaryDecision(
            should_merge=result.same_session,
            confidence=result.confidence,
            reason=result.reason,
            suggested_category=result.suggested_category,
        )
        self.decision_cache.set(cache_key, decision)

        if decision.suggested_category and decision.confidence >= SUGGESTION_CONFIDENCE_THRESHOLD:
            # Report whichever side is uncategorized, preferring the current event.
            subject = curr if not curr_cat else prev
            self._suggest(subject, decision)

        return decision

    def _suggest(self, event: ActivityEvent, decision: BoundaryDecision) -> None:
        if self.suggestion_sink is None:
            return
        domain = extract_domain(event.url) if is_browser(event.app_name) else None
        kind = "domain" if is_browser(event.app_name) else "app"
        value = domain or event.app_name
        try:
            self.suggestion_sink.record(kind, value, decision.suggested_category, decision.confidence)
        except Exception as e:
            log.warning(f"Failed to record category suggestion for {kind}:{value}: {e}")
