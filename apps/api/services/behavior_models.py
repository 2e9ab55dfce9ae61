"""
Behavioral Analytics Data Structures

Typed records shared by the pattern, suggestion, correlation and habit-risk
services. Everything here is derived state: it can be rebuilt from the
activity log at any time, and persisted copies are caches.

Closed vocabularies (suggestion type/timing/priority, risk level, alert type)
are str-valued enums so they serialize as plain strings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def weekday_index(moment: datetime) -> int:
    """Sunday=0 .. Saturday=6 (stored snapshots use this numbering)."""
    return (moment.weekday() + 1) % 7


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# =============================================================================
# ENUMS
# =============================================================================

class SuggestionType(str, Enum):
    HABIT_RESUMPTION = "habit_resumption"
    UPCOMING_HABIT = "upcoming_habit"
    SEQUENCE_SUGGESTION = "sequence_suggestion"
    WEEKLY_HABIT = "weekly_habit"


class SuggestionTiming(str, Enum):
    """Timing class; controls both the producing rule and the TTL."""
    IMMEDIATE = "immediate"
    UPCOMING = "upcoming"
    SEQUENCE = "sequence"
    WEEKLY = "weekly"


class SuggestionPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class SuggestionAction(str, Enum):
    LOG_ACTIVITY = "log_activity"
    PREPARE_ACTIVITY = "prepare_activity"
    REMINDER = "reminder"


class DeviationType(str, Enum):
    MISSED_PATTERN = "missed_pattern"
    UNUSUAL_TIMING = "unusual_timing"


class CorrelationStrength(str, Enum):
    VERY_STRONG = "Very Strong"
    STRONG = "Strong"
    MODERATE = "Moderate"
    WEAK = "Weak"
    VERY_WEAK = "Very Weak"


class CorrelationDirection(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertType(str, Enum):
    HABIT_DEGRADATION = "habit_degradation_alert"
    INTERVENTION_SUGGESTION = "intervention_suggestion"
    CUSTOM = "custom"


# =============================================================================
# ACTIVITY LOG
# =============================================================================

@dataclass
class ActivityRecord:
    """One logged activity as seen by the analytics engine (read-only)."""
    user_id: Any
    category: str
    start_time: datetime
    duration_minutes: Optional[float] = None
    category_id: Optional[str] = None

    @property
    def category_key(self) -> str:
        return self.category_id or self.category


@dataclass
class ActivityDraft:
    """Activity to be logged on the user's behalf when a suggestion is acted on."""
    user_id: Any
    category: str
    start_time: datetime
    duration_minutes: int = 30
    confidence: float = 1.0
    description: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "user_id": str(self.user_id),
            "category": self.category,
            "start_time": _iso(self.start_time),
            "duration_minutes": self.duration_minutes,
            "confidence": self.confidence,
            "description": self.description,
        }


# =============================================================================
# PATTERNS
# =============================================================================

@dataclass
class DailyPattern:
    category: str
    hour: int
    occurrences: int = 0
    days: List[str] = field(default_factory=list)
    total_duration: float = 0.0
    average_duration: float = 0.0
    confidence: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "category": self.category,
            "hour": self.hour,
            "occurrences": self.occurrences,
            "days": list(self.days),
            "total_duration": self.total_duration,
            "average_duration": self.average_duration,
            "confidence": self.confidence,
        }


@dataclass
class WeeklyPattern:
    category: str
    day_of_week: int
    occurrences: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    def to_dict(self) -> Dict:
        return {
            "category": self.category,
            "day_of_week": self.day_of_week,
            "day_name": self.day_name,
            "occurrences": self.occurrences,
            "total_duration": self.total_duration,
            "average_duration": self.average_duration,
        }


@dataclass
class CategoryPattern:
    category: str
    total_activities: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    preferred_times: List[Dict[str, int]] = field(default_factory=list)
    preferred_days: List[Dict[str, Any]] = field(default_factory=list)
    average_frequency: float = 0.0  # activities per week

    def to_dict(self) -> Dict:
        return {
            "category": self.category,
            "total_activities": self.total_activities,
            "total_duration": self.total_duration,
            "average_duration": self.average_duration,
            "preferred_times": list(self.preferred_times),
            "preferred_days": list(self.preferred_days),
            "average_frequency": self.average_frequency,
        }


@dataclass
class SequencePattern:
    """A same-day transition from one category to the next."""
    from_category: str
    to_category: str
    count: int = 0
    total_gap_hours: float = 0.0
    average_gap_hours: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "from": self.from_category,
            "to": self.to_category,
            "count": self.count,
            "total_gap_hours": self.total_gap_hours,
            "average_gap_hours": self.average_gap_hours,
        }


@dataclass
class PatternSet:
    daily: List[DailyPattern] = field(default_factory=list)
    weekly: List[WeeklyPattern] = field(default_factory=list)
    category: List[CategoryPattern] = field(default_factory=list)
    temporal: List[SequencePattern] = field(default_factory=list)

    @property
    def total_patterns(self) -> int:
        # Category summaries are descriptive, not habits
        return len(self.daily) + len(self.weekly) + len(self.temporal)

    def to_dict(self) -> Dict:
        return {
            "daily": [p.to_dict() for p in self.daily],
            "weekly": [p.to_dict() for p in self.weekly],
            "category": [p.to_dict() for p in self.category],
            "temporal": [p.to_dict() for p in self.temporal],
        }


@dataclass
class Deviation:
    type: DeviationType
    category: str
    message: str
    expected_hour: Optional[int] = None
    confidence: Optional[float] = None
    actual_hour: Optional[int] = None
    expected_hours: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "category": self.category,
            "message": self.message,
        }
        if self.type == DeviationType.MISSED_PATTERN:
            data["expected_hour"] = self.expected_hour
            data["confidence"] = self.confidence
        else:
            data["actual_hour"] = self.actual_hour
            data["expected_hours"] = list(self.expected_hours)
        return data


# =============================================================================
# SUGGESTIONS
# =============================================================================

@dataclass
class SuggestionCandidate:
    """A freshly generated suggestion that has not been stored yet."""
    type: SuggestionType
    priority: SuggestionPriority
    category: str
    title: str
    message: str
    confidence: float
    timing: SuggestionTiming
    suggested_action: Optional[SuggestionAction] = None

    @property
    def dedup_key(self):
        return (self.type, self.category, self.timing)

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "priority": self.priority.value,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "confidence": self.confidence,
            "timing": self.timing.value,
            "suggested_action": self.suggested_action.value if self.suggested_action else None,
        }


@dataclass
class Suggestion:
    """A stored suggestion with its lifecycle flags."""
    id: Any
    user_id: Any
    type: SuggestionType
    category: str
    title: str
    message: str
    priority: SuggestionPriority
    confidence: float
    timing: SuggestionTiming
    action_type: SuggestionAction
    created_at: datetime
    expires_at: datetime
    is_read: bool = False
    is_acted_on: bool = False

    @property
    def dedup_key(self):
        return (self.type, self.category, self.timing)

    def is_active(self, now: datetime) -> bool:
        return not self.is_read and not self.is_acted_on and self.expires_at > now

    def to_dict(self) -> Dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "type": self.type.value,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "confidence": self.confidence,
            "timing": self.timing.value,
            "action_type": self.action_type.value,
            "is_read": self.is_read,
            "is_acted_on": self.is_acted_on,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
        }


# =============================================================================
# CORRELATIONS
# =============================================================================

@dataclass
class Correlation:
    """Pearson relationship between the daily durations of two categories."""
    category_a: str
    category_b: str
    coefficient: float
    strength: CorrelationStrength
    direction: CorrelationDirection
    data_points: int
    average_a: float  # hours per analysed day
    average_b: float
    significance: str
    p_value: float
    relationship: str

    def involves(self, category: str) -> bool:
        return category in (self.category_a, self.category_b)

    def to_dict(self) -> Dict:
        return {
            "category_a": self.category_a,
            "category_b": self.category_b,
            "coefficient": round(self.coefficient, 4),
            "strength": self.strength.value,
            "direction": self.direction.value,
            "data_points": self.data_points,
            "average_a": round(self.average_a, 3),
            "average_b": round(self.average_b, 3),
            "significance": self.significance,
            "p_value": round(self.p_value, 4),
            "relationship": self.relationship,
        }


@dataclass
class CorrelationInsight:
    type: str
    title: str
    description: str
    correlations: List[Correlation]
    actionable: bool = True

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "correlations": [c.to_dict() for c in self.correlations],
            "actionable": self.actionable,
        }


@dataclass
class CorrelationPrediction:
    trigger: str
    predicted: str
    confidence: float
    direction: CorrelationDirection
    recent_hours: float
    predicted_hours: float
    message: str
    recommendation: str
    type: str = "correlation_prediction"

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "trigger": self.trigger,
            "predicted": self.predicted,
            "confidence": round(self.confidence, 4),
            "direction": self.direction.value,
            "recent_hours": round(self.recent_hours, 2),
            "predicted_hours": round(self.predicted_hours, 2),
            "message": self.message,
            "recommendation": self.recommendation,
        }


# =============================================================================
# HABIT RISK
# =============================================================================

@dataclass
class WeeklyBucket:
    week_start: datetime
    week_end: datetime
    frequency: int
    total_hours: float


@dataclass
class RiskMetrics:
    frequency_trend: float
    duration_trend: float
    consistency_score: float
    days_since_last_activity: int


@dataclass
class Prediction:
    """Habit-degradation assessment for one category."""
    category_id: str
    category_name: str
    risk_score: int
    risk_level: RiskLevel
    frequency_trend: float
    duration_trend: float
    consistency_score: float
    days_since_last_activity: int
    total_activities: int
    message: str
    recommendations: List[str]
    created_at: datetime

    def to_dict(self) -> Dict:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "frequency_trend": round(self.frequency_trend, 2),
            "duration_trend": round(self.duration_trend, 2),
            "consistency_score": round(self.consistency_score, 2),
            "days_since_last_activity": self.days_since_last_activity,
            "total_activities": self.total_activities,
            "message": self.message,
            "recommendations": list(self.recommendations),
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# ALERTS
# =============================================================================

@dataclass
class Alert:
    id: Any
    user_id: Any
    type: str
    title: str
    message: str
    created_at: datetime
    action_data: Dict[str, Any] = field(default_factory=dict)
    read: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "action_data": dict(self.action_data),
            "read": self.read,
            "created_at": _iso(self.created_at),
        }


@dataclass
class CacheWriteResult:
    """Outcome of a best-effort snapshot write. Never raised, only reported."""
    ok: bool
    error: Optional[str] = None
