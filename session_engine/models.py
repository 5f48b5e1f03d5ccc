# session_engine/models.py

from datetime import date, datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_EVENT_DURATION_S = 5

CalendarDate = date

ActivityCategory = Literal["development", "design", "communication", "research", "distraction", "other"]
VALID_CATEGORIES = frozenset(["development", "design", "communication", "research", "distraction", "other"])

ContextKind = Literal["file", "url", "command", "document", "project", "other"]
SuggestionKind = Literal["app", "domain"]


def to_activity_category(value: Optional[str]) -> str:
    """Normalizes a free-form category string, defaulting to 'other'."""
    if value and value in VALID_CATEGORIES:
        return value
    return "other"


class CamelModel(BaseModel):
    """Base model that emits camelCase keys and accepts both spellings on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(v):
    if isinstance(v, str):
        v = datetime.fromisoformat(v.replace('Z', '+00:00'))
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
    raise ValueError("Invalid datetime format")


# --- Input ---
class ActivityEvent(CamelModel):
    """A single raw activity sample reported by a device."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    device_id: str = "unknown-device"
    source: str = "unknown"
    timestamp: datetime
    app_name: str
    window_title: str = ""
    bundle_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("bundleId", "bundleIdentifier", "bundle_id"))
    document_path: Optional[str] = None
    url: Optional[str] = None
    is_idle: bool = False
    duration: int = DEFAULT_EVENT_DURATION_S

    @field_validator('timestamp', mode='before')
    @classmethod
    def ensure_utc(cls, v):
        return _as_utc(v)

    @field_validator('timestamp')
    @classmethod
    def truncate_to_seconds(cls, v: datetime) -> datetime:
        return v.replace(microsecond=0)

    @field_validator('window_title', mode='before')
    @classmethod
    def empty_title(cls, v):
        return "" if v is None else v

    @field_validator('is_idle', mode='before')
    @classmethod
    def idle_flag(cls, v):
        return False if v is None else v

    @field_validator('duration', mode='before')
    @classmethod
    def default_duration(cls, v):
        if v is None:
            return DEFAULT_EVENT_DURATION_S
        if isinstance(v, float):
            return int(round(v))
        return v


# --- Per-event derived values ---
class ExtractedContext(CamelModel):
    kind: ContextKind
    value: str
    detail: Optional[str] = None


class BoundaryDecision(CamelModel):
    """Verdict on whether two adjacent events belong to the same session."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    should_merge: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    suggested_category: Optional[ActivityCategory] = None


class BoundaryClassification(CamelModel):
    """
    Validated payload of the AI classification collaborator.
    Malformed optional fields fall back to defaults instead of failing.
    """
    same_session: bool = False
    confidence: float = 0.6
    reason: str = "AI classification"
    suggested_category: Optional[ActivityCategory] = None

    @field_validator('same_session', mode='before')
    @classmethod
    def strict_true(cls, v):
        return v is True

    @field_validator('confidence', mode='before')
    @classmethod
    def default_confidence(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0.6
        return min(max(float(v), 0.0), 1.0)

    @field_validator('reason', mode='before')
    @classmethod
    def default_reason(cls, v):
        if not isinstance(v, str) or not v.strip():
            return "AI classification"
        return v.strip()

    @field_validator('suggested_category', mode='before')
    @classmethod
    def known_category(cls, v):
        if isinstance(v, str) and v.strip().lower() in VALID_CATEGORIES:
            return v.strip().lower()
        return None


# --- Output ---
class ActivitySession(CamelModel):
    """A contiguous block of active or idle time. Immutable once built."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    start: datetime
    end: datetime
    duration: int = Field(description="Seconds.")
    type: Literal["active", "idle"]
    category: Optional[ActivityCategory] = None
    apps: List[str] = Field(default_factory=list)
    contexts: List[str] = Field(default_factory=list)
    context_switches: int = 0
    preceding_category: Optional[str] = None

    @field_validator('start', 'end', mode='before')
    @classmethod
    def parse_datetime_utc(cls, v):
        return _as_utc(v)


class FocusSummary(CamelModel):
    category: str
    duration: int
    start: datetime


class IdlePeriod(CamelModel):
    start: str = Field(description="Local HH:MM.")
    duration: int
    after: str


class DistractionBlock(CamelModel):
    start: str = Field(description="Local HH:MM.")
    duration: int
    trigger: str


class SessionPatterns(CamelModel):
    longest_focus: Optional[FocusSummary] = None
    idle_periods: List[IdlePeriod] = Field(default_factory=list)
    distraction_blocks: List[DistractionBlock] = Field(default_factory=list)
    context_switch_rate: float = 0.0
    peak_productivity_hour: Optional[int] = Field(default=None, ge=0, le=23)


class CategoryTotals(CamelModel):
    duration: int = 0
    sessions: int = 0


class DailySessionSummary(CamelModel):
    """The per (device, date) record handed to persistence and narrative prompts."""
    date: CalendarDate
    total_active: int = 0
    total_idle: int = 0
    session_count: int = 0
    sessions: List[ActivitySession] = Field(default_factory=list)
    patterns: SessionPatterns = Field(default_factory=SessionPatterns)
    by_category: Dict[str, CategoryTotals] = Field(default_factory=dict)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


class WeeklyPatterns(CamelModel):
    total_active: int = 0
    total_idle: int = 0
    avg_session_length: int = 0
    avg_context_switch_rate: float = 0.0
    category_totals: Dict[str, int] = Field(default_factory=dict)
    daily_peak_hours: List[int] = Field(default_factory=list)
    longest_focus_session: Optional[FocusSummary] = None


# --- Category store rows ---
class AppCategoryRow(CamelModel):
    app_name: str
    bundle_id: Optional[str] = None
    category: str


class DomainCategoryRow(CamelModel):
    domain: str
    pattern: Optional[str] = None
    category: str


class CategorySuggestion(CamelModel):
    kind: SuggestionKind
    value: str
    suggested_category: str
    confidence: Optional[float] = None
    occurrence_count: int = 1
    status: Literal["pending", "accepted", "rejected"] = "pending"
