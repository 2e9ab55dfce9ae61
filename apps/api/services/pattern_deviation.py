"""
Deviation detection against learned daily habits.

Stateless: compares today's activities with the daily patterns and never
touches storage beyond reading today's log.
"""

from datetime import datetime, time
from typing import List, Optional

from services.behavior_models import ActivityRecord, DailyPattern, Deviation, DeviationType
from services.pattern_recognition import format_hour
from services.storage.base import ActivityRepository


TIME_WINDOW_HOURS = 2
MISSED_PATTERN_MIN_CONFIDENCE = 0.3


def day_bounds(now: datetime):
    """Local midnight to the last microsecond of the day."""
    return (
        datetime.combine(now.date(), time.min),
        datetime.combine(now.date(), time.max),
    )


def detect_deviations(
    today_activities: List[ActivityRecord],
    daily_patterns: List[DailyPattern],
    now: datetime,
) -> List[Deviation]:
    deviations = []
    current_hour = now.hour

    for pattern in daily_patterns:
        if pattern.confidence <= MISSED_PATTERN_MIN_CONFIDENCE or pattern.hour > current_hour:
            continue
        matched = any(
            a.category == pattern.category
            and abs(a.start_time.hour - pattern.hour) <= TIME_WINDOW_HOURS
            for a in today_activities
        )
        if not matched:
            deviations.append(Deviation(
                type=DeviationType.MISSED_PATTERN,
                category=pattern.category,
                expected_hour=pattern.hour,
                confidence=pattern.confidence,
                message=f"You usually {pattern.category.lower()} around {format_hour(pattern.hour)}",
            ))

    for activity in today_activities:
        expected = [p for p in daily_patterns if p.category == activity.category]
        if not expected:
            continue
        actual_hour = activity.start_time.hour
        if any(abs(p.hour - actual_hour) <= TIME_WINDOW_HOURS for p in expected):
            continue
        usual = " or ".join(format_hour(p.hour) for p in expected)
        deviations.append(Deviation(
            type=DeviationType.UNUSUAL_TIMING,
            category=activity.category,
            actual_hour=actual_hour,
            expected_hours=[p.hour for p in expected],
            message=f"Unusual time for {activity.category.lower()} - you typically do this around {usual}",
        ))

    return deviations


class DeviationDetector:

    def __init__(self, activities: ActivityRepository):
        self.activities = activities

    def detect(
        self,
        user_id,
        daily_patterns: List[DailyPattern],
        now: Optional[datetime] = None,
    ) -> List[Deviation]:
        now = now or datetime.now()
        start, end = day_bounds(now)
        today = self.activities.query_by_user_and_range(user_id, start, end)
        return detect_deviations(today, daily_patterns, now)
