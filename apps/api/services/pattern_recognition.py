"""
Pattern Recognition Engine

Mines recurring habits from a user's own activity log over a trailing window:

- daily:    (category, hour-of-day) habits
- weekly:   (category, weekday) habits
- category: per-category summaries (preferred hours/days, weekly frequency)
- temporal: same-day transitions from one category to the next

Every call recomputes all four collections from the raw log. The stored
snapshot is a cache for other consumers; the detector never reads it back.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from core.config import settings
from services.behavior_models import (
    DAY_NAMES,
    ActivityRecord,
    CacheWriteResult,
    CategoryPattern,
    DailyPattern,
    PatternSet,
    SequencePattern,
    WeeklyPattern,
    weekday_index,
)
from services.storage.base import ActivityRepository, PatternStore, write_cache

logger = logging.getLogger(__name__)


PATTERN_ANALYSIS_DAYS = 30
MIN_OCCURRENCES = 3
MAX_SEQUENCE_GAP_HOURS = 6


def format_hour(hour: int) -> str:
    """Render an hour of day as "7:00 AM" / "12:00 PM"."""
    period = "PM" if hour >= 12 else "AM"
    if hour == 0:
        display = 12
    elif hour > 12:
        display = hour - 12
    else:
        display = hour
    return f"{display}:00 {period}"


# =============================================================================
# AGGREGATION
# =============================================================================

def analyze_daily_patterns(
    activities: List[ActivityRecord],
    window_days: int = PATTERN_ANALYSIS_DAYS,
) -> List[DailyPattern]:
    """
    Group by (category, hour). Confidence is the share of the window on which
    the habit was observed, capped at 1.0.
    """
    groups: Dict[Tuple[str, int], DailyPattern] = {}
    days: Dict[Tuple[str, int], set] = {}

    for activity in activities:
        key = (activity.category, activity.start_time.hour)
        pattern = groups.get(key)
        if pattern is None:
            pattern = DailyPattern(category=key[0], hour=key[1])
            groups[key] = pattern
            days[key] = set()
        pattern.occurrences += 1
        days[key].add(activity.start_time.date().isoformat())
        if activity.duration_minutes:
            pattern.total_duration += activity.duration_minutes

    result = []
    for key, pattern in groups.items():
        if pattern.occurrences < MIN_OCCURRENCES:
            continue
        pattern.days = sorted(days[key])
        pattern.average_duration = pattern.total_duration / pattern.occurrences
        pattern.confidence = min(pattern.occurrences / window_days, 1.0)
        result.append(pattern)

    return sorted(result, key=lambda p: p.confidence, reverse=True)


def analyze_weekly_patterns(activities: List[ActivityRecord]) -> List[WeeklyPattern]:
    groups: Dict[Tuple[str, int], WeeklyPattern] = {}

    for activity in activities:
        key = (activity.category, weekday_index(activity.start_time))
        pattern = groups.get(key)
        if pattern is None:
            pattern = WeeklyPattern(category=key[0], day_of_week=key[1])
            groups[key] = pattern
        pattern.occurrences += 1
        if activity.duration_minutes:
            pattern.total_duration += activity.duration_minutes

    result = []
    for pattern in groups.values():
        if pattern.occurrences < MIN_OCCURRENCES:
            continue
        pattern.average_duration = pattern.total_duration / pattern.occurrences
        result.append(pattern)

    return sorted(result, key=lambda p: p.occurrences, reverse=True)


def analyze_category_patterns(
    activities: List[ActivityRecord],
    window_days: int = PATTERN_ANALYSIS_DAYS,
) -> List[CategoryPattern]:
    """
    Per-category summary. Preferred hours and days are the three most frequent
    values; Counter.most_common keeps first-seen order on ties.
    """
    groups: Dict[str, CategoryPattern] = {}
    hours: Dict[str, Counter] = {}
    weekdays: Dict[str, Counter] = {}

    for activity in activities:
        name = activity.category
        pattern = groups.get(name)
        if pattern is None:
            pattern = CategoryPattern(category=name)
            groups[name] = pattern
            hours[name] = Counter()
            weekdays[name] = Counter()
        pattern.total_activities += 1
        if activity.duration_minutes:
            pattern.total_duration += activity.duration_minutes
        hours[name][activity.start_time.hour] += 1
        weekdays[name][weekday_index(activity.start_time)] += 1

    result = []
    for name, pattern in groups.items():
        if pattern.total_activities < MIN_OCCURRENCES:
            continue
        pattern.average_duration = pattern.total_duration / pattern.total_activities
        pattern.preferred_times = [
            {"hour": hour, "count": count}
            for hour, count in hours[name].most_common(3)
        ]
        pattern.preferred_days = [
            {"day": day, "day_name": DAY_NAMES[day], "count": count}
            for day, count in weekdays[name].most_common(3)
        ]
        pattern.average_frequency = pattern.total_activities / window_days * 7
        result.append(pattern)

    return sorted(result, key=lambda p: p.total_activities, reverse=True)


def analyze_temporal_sequences(activities: List[ActivityRecord]) -> List[SequencePattern]:
    """Adjacent same-day activities at most 6 hours apart form a transition."""
    by_day: Dict[Any, List[ActivityRecord]] = {}
    for activity in activities:
        by_day.setdefault(activity.start_time.date(), []).append(activity)

    groups: Dict[Tuple[str, str], SequencePattern] = {}
    for day_activities in by_day.values():
        ordered = sorted(day_activities, key=lambda a: a.start_time)
        for current, following in zip(ordered, ordered[1:]):
            gap_hours = (following.start_time - current.start_time).total_seconds() / 3600
            if gap_hours > MAX_SEQUENCE_GAP_HOURS:
                continue
            key = (current.category, following.category)
            sequence = groups.get(key)
            if sequence is None:
                sequence = SequencePattern(from_category=key[0], to_category=key[1])
                groups[key] = sequence
            sequence.count += 1
            sequence.total_gap_hours += gap_hours

    result = []
    for sequence in groups.values():
        if sequence.count < MIN_OCCURRENCES:
            continue
        sequence.average_gap_hours = sequence.total_gap_hours / sequence.count
        result.append(sequence)

    return sorted(result, key=lambda s: s.count, reverse=True)


def build_pattern_set(
    activities: List[ActivityRecord],
    window_days: int = PATTERN_ANALYSIS_DAYS,
) -> PatternSet:
    return PatternSet(
        daily=analyze_daily_patterns(activities, window_days),
        weekly=analyze_weekly_patterns(activities),
        category=analyze_category_patterns(activities, window_days),
        temporal=analyze_temporal_sequences(activities),
    )


# =============================================================================
# DERIVED SUMMARIES
# =============================================================================

def calculate_pattern_strength(patterns: PatternSet) -> int:
    """0-100 blend of average daily confidence (70%) and pattern diversity (30%)."""
    total = patterns.total_patterns
    if total == 0:
        return 0
    avg_confidence = sum(p.confidence for p in patterns.daily) / max(len(patterns.daily), 1)
    diversity = min(total / 10, 1)
    return round((avg_confidence * 0.7 + diversity * 0.3) * 100)


def get_pattern_insights(patterns: PatternSet) -> List[Dict]:
    insights = []

    consistent = [p for p in patterns.daily if p.confidence > 0.5][:3]
    if consistent:
        insights.append({
            "type": "consistent_habits",
            "title": "Your Most Consistent Habits",
            "data": [p.to_dict() for p in consistent],
            "message": f"You're most consistent with {', '.join(p.category for p in consistent)}",
        })

    hour_counts: Counter = Counter()
    for pattern in patterns.daily:
        hour_counts[pattern.hour] += pattern.occurrences
    peak_hours = hour_counts.most_common(3)
    if peak_hours:
        insights.append({
            "type": "peak_times",
            "title": "Your Peak Activity Times",
            "data": [{"hour": hour, "count": count} for hour, count in peak_hours],
            "message": f"You're most active around {', '.join(format_hour(h) for h, _ in peak_hours)}",
        })

    top_sequences = patterns.temporal[:3]
    if top_sequences:
        first = top_sequences[0]
        insights.append({
            "type": "activity_sequences",
            "title": "Your Activity Patterns",
            "data": [s.to_dict() for s in top_sequences],
            "message": f"You often follow {first.from_category} with {first.to_category}",
        })

    return insights


# =============================================================================
# DETECTOR
# =============================================================================

class PatternDetector:
    """Fetches the trailing window for a user and mines it."""

    def __init__(
        self,
        activities: ActivityRepository,
        store: Optional[PatternStore] = None,
        window_days: Optional[int] = None,
    ):
        self.activities = activities
        self.store = store
        self.window_days = window_days or settings.PATTERN_ANALYSIS_DAYS

    def detect_patterns(self, user_id, now: Optional[datetime] = None, persist: bool = True) -> PatternSet:
        now = now or datetime.now()
        start = now - timedelta(days=self.window_days)
        records = self.activities.query_by_user_and_range(user_id, start, now)
        patterns = build_pattern_set(records, self.window_days)

        logger.debug(
            f"Detected {patterns.total_patterns} patterns for user {user_id} "
            f"from {len(records)} activities"
        )

        if persist:
            self.snapshot_patterns(user_id, patterns, now)
        return patterns

    def snapshot_patterns(self, user_id, patterns: PatternSet, analyzed_at: datetime) -> CacheWriteResult:
        if self.store is None:
            return CacheWriteResult(ok=True)
        return write_cache(
            "pattern",
            lambda: self.store.upsert(user_id, patterns.to_dict(), analyzed_at),
        )

    def get_pattern_insights(self, user_id, now: Optional[datetime] = None) -> List[Dict]:
        return get_pattern_insights(self.detect_patterns(user_id, now))
