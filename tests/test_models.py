import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError
from session_engine.models import (
    ActivityEvent,
    BoundaryDecision,
    BoundaryClassification,
    to_activity_category,
)

def test_event_defaults_and_camel_case_input():
    event = ActivityEvent.model_validate({
        "timestamp": "2025-01-06T09:00:00.750Z",
        "appName": "Code",
        "windowTitle": None,
        "bundleIdentifier": "com.microsoft.VSCode",
        "isIdle": None,
        "duration": None,
    })
    assert event.timestamp == datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)
    assert event.window_title == ""
    assert event.bundle_id == "com.microsoft.VSCode"
    assert event.is_idle is False
    assert event.duration == 5
    assert event.device_id == "unknown-device"

def test_naive_and_offset_timestamps_become_utc():
    naive = ActivityEvent(timestamp=datetime(2025, 1, 6, 9, 0), app_name="Code")
    assert naive.timestamp.tzinfo == timezone.utc
    offset = ActivityEvent(timestamp="2025-01-06T10:00:00+01:00", app_name="Code")
    assert offset.timestamp == datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
    assert offset.timestamp.utcoffset() == timedelta(0)

def test_events_are_immutable():
    event = ActivityEvent(timestamp=datetime(2025, 1, 6, 9, 0), app_name="Code")
    with pytest.raises(ValidationError):
        event.app_name = "Slack"

def test_decision_confidence_bounds():
    with pytest.raises(ValidationError):
        BoundaryDecision(should_merge=True, confidence=1.5, reason="bad")

def test_classification_only_accepts_literal_true():
    assert BoundaryClassification.model_validate({"sameSession": 1}).same_session is False
    assert BoundaryClassification.model_validate({"sameSession": True}).same_session is True

def test_to_activity_category():
    assert to_activity_category("design") == "design"
    assert to_activity_category("email") == "other"
    assert to_activity_category(None) == "other"
