import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch
from session_engine.exceptions import InvalidEventBatchError
from session_engine.logic.categories import CategorySuggestionBook, InMemoryCategoryStore
from session_engine.logic.llm_processing import DecisionCache, GeminiBoundaryClassifier
from session_engine.logic.sessions import DailySessionService, empty_day_summary
from session_engine.logic.settings import Settings
from session_engine.models import ActivityEvent, AppCategoryRow, BoundaryClassification, DomainCategoryRow

DAY = date(2025, 1, 6)
BASE = datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)

def _event(app, offset_s=0, **kwargs):
    return ActivityEvent(timestamp=BASE + timedelta(seconds=offset_s), app_name=app, **kwargs)

@pytest.fixture
def settings():
    return Settings(gemini_api_key="", enable_ai_fallback=True)

@pytest.fixture
def store():
    return InMemoryCategoryStore(
        apps=[
            AppCategoryRow(app_name="Code", category="development"),
            AppCategoryRow(app_name="Slack", category="communication"),
        ],
        domains=[DomainCategoryRow(domain="youtube.com", category="distraction")],
    )

class FakeClassifier:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def classify(self, previous, current):
        self.calls += 1
        return self.result

@pytest.mark.asyncio
async def test_summarize_day(settings, store):
    service = DailySessionService(settings, category_store=store)
    events = [
        _event("Code", 0, window_title="main.py - proj - Visual Studio Code"),
        _event("Code", 5),
        _event("Slack", 10, window_title="#eng - Acme - Slack"),
        _event("loginwindow", 15, is_idle=True, duration=200),
        _event("Firefox", 215, url="https://www.youtube.com/watch?v=1"),
    ]
    summary = await service.summarize_day(DAY, events)

    assert summary.date == DAY
    assert summary.session_count == 4
    assert [s.type for s in summary.sessions] == ["active", "active", "idle", "active"]
    assert summary.sessions[0].contexts == ["proj/main.py"]
    assert summary.total_active == 10 + 5 + 5
    assert summary.total_idle == 200
    assert summary.by_category["development"].duration == 10
    assert summary.by_category["distraction"].sessions == 1
    assert summary.patterns.distraction_blocks[0].trigger == "start of tracking"
    assert summary.patterns.idle_periods[0].after == "communication"

@pytest.mark.asyncio
async def test_summary_json_uses_camel_case(settings, store):
    service = DailySessionService(settings, category_store=store)
    summary = await service.summarize_day(DAY, [_event("Code", 0), _event("Code", 5)])
    payload = summary.to_json_dict()
    assert payload["date"] == "2025-01-06"
    assert payload["totalActive"] == 10
    assert payload["sessionCount"] == 1
    assert payload["byCategory"] == {"development": {"duration": 10, "sessions": 1}}
    session = payload["sessions"][0]
    assert session["start"].startswith("2025-01-06T09:00:00")
    assert session["contextSwitches"] == 0
    assert "precedingCategory" in session
    assert "peakProductivityHour" in payload["patterns"]

@pytest.mark.asyncio
async def test_empty_batch_gives_empty_summary(settings):
    service = DailySessionService(settings)
    summary = await service.summarize_day(DAY, [])
    assert summary == empty_day_summary(DAY)
    assert summary.to_json_dict() == {
        "date": "2025-01-06",
        "totalActive": 0,
        "totalIdle": 0,
        "sessionCount": 0,
        "sessions": [],
        "patterns": {
            "longestFocus": None,
            "idlePeriods": [],
            "distractionBlocks": [],
            "contextSwitchRate": 0.0,
            "peakProductivityHour": None,
        },
        "byCategory": {},
    }

@pytest.mark.asyncio
async def test_negative_duration_gives_empty_summary(settings):
    service = DailySessionService(settings)
    summary = await service.summarize_day(DAY, [_event("Code", 0), _event("Code", 5, duration=-3)])
    assert summary.session_count == 0

@pytest.mark.asyncio
async def test_unsorted_batch_is_rejected(settings):
    service = DailySessionService(settings)
    with pytest.raises(InvalidEventBatchError):
        await service.summarize_day(DAY, [_event("Code", 10), _event("Code", 0)])

@pytest.mark.asyncio
async def test_default_classifier_follows_settings():
    assert DailySessionService(Settings(gemini_api_key="")).classifier is None
    configured = DailySessionService(Settings(gemini_api_key="key"))
    assert isinstance(configured.classifier, GeminiBoundaryClassifier)
    disabled = DailySessionService(
        Settings(gemini_api_key="key", enable_ai_fallback=False),
        classifier=FakeClassifier(None),
    )
    assert disabled.classifier is None

@pytest.mark.asyncio
async def test_ai_suggestions_and_shared_cache(settings, store):
    classifier = FakeClassifier(BoundaryClassification(
        same_session=True, confidence=0.9, reason="Writing docs", suggested_category="research",
    ))
    book = CategorySuggestionBook()
    cache = DecisionCache()
    service = DailySessionService(
        settings, category_store=store, classifier=classifier, suggestion_sink=book, decision_cache=cache,
    )
    events = [_event("Code", 0), _event("Obsidian", 5)]
    first = await service.summarize_day(DAY, events)
    second = await service.summarize_day(DAY, events)

    assert first.session_count == 1
    assert second == first
    assert classifier.calls == 1
    assert [s.value for s in book.pending()] == ["Obsidian"]

    service.clear_cache()
    await service.summarize_day(DAY, events)
    assert classifier.calls == 2

@pytest.mark.asyncio
async def test_store_failure_degrades_to_conservative_split(settings):
    class BrokenStore:
        def list_app_categories(self):
            raise ConnectionError("unreachable")

        def list_domain_categories(self):
            return []

    service = DailySessionService(settings, category_store=BrokenStore())
    summary = await service.summarize_day(DAY, [_event("Code", 0), _event("Slack", 5)])
    assert summary.session_count == 2
    assert all(s.category == "other" for s in summary.sessions)

@pytest.mark.asyncio
async def test_summarize_range_and_weekly(settings, store):
    service = DailySessionService(settings, category_store=store)
    tuesday = BASE + timedelta(days=1)
    events_by_day = {
        DAY: [_event("Code", 0), _event("Code", 5)],
        DAY + timedelta(days=1): [
            ActivityEvent(timestamp=tuesday, app_name="Code", duration=60),
            ActivityEvent(timestamp=tuesday + timedelta(seconds=60), app_name="Code", duration=60),
        ],
    }
    summaries = await service.summarize_range(DAY, DAY + timedelta(days=2), events_by_day)
    assert [s.date for s in summaries] == [DAY, DAY + timedelta(days=1), DAY + timedelta(days=2)]
    assert summaries[2].session_count == 0

    weekly = await service.weekly_patterns(DAY, events_by_day)
    assert weekly.total_active == 130
    assert weekly.avg_session_length == 65
    assert weekly.category_totals == {"development": 130}
    assert weekly.daily_peak_hours == [9, 9]
    assert weekly.longest_focus_session.duration == 120

@pytest.mark.asyncio
async def test_gemini_classifier_failure_is_conservative(store):
    settings = Settings(gemini_api_key="key")
    with patch("session_engine.logic.llm_processing.genai.Client") as client_cls:
        client_cls.return_value.models.generate_content.side_effect = TimeoutError("slow")
        service = DailySessionService(settings, category_store=store)
        summary = await service.summarize_day(DAY, [_event("Code", 0), _event("Obsidian", 5)])
    assert summary.session_count == 2

@pytest.mark.asyncio
async def test_category_refresh_runs_off_the_event_loop(settings, store):
    service = DailySessionService(settings, category_store=store)
    with patch("session_engine.logic.sessions.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
        summary = await service.summarize_day(DAY, [_event("Code", 0)])
    to_thread.assert_called_once_with(service.lookup.refresh)
    assert summary.sessions[0].category == "development"
