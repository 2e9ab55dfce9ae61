"""
Tests for missed-pattern and unusual-timing detection.
"""

from datetime import datetime

from services.behavior_models import DailyPattern, DeviationType
from services.pattern_deviation import DeviationDetector, day_bounds, detect_deviations
from fixtures.activity_fixtures import OTHER_USER_ID, USER_ID, make_activity
from fixtures.fake_stores import FakeActivityRepository


NOON = datetime(2026, 3, 18, 12, 0)


def _pattern(category, hour, confidence=0.5):
    return DailyPattern(category=category, hour=hour, occurrences=15, confidence=confidence)


class TestMissedPattern:

    def test_missed_morning_habit(self):
        deviations = detect_deviations([], [_pattern("Exercise", 7, 0.6)], NOON)

        assert len(deviations) == 1
        d = deviations[0]
        assert d.type == DeviationType.MISSED_PATTERN
        assert d.category == "Exercise"
        assert d.expected_hour == 7
        assert d.confidence == 0.6
        assert d.message == "You usually exercise around 7:00 AM"

    def test_activity_within_two_hours_counts(self):
        today = [make_activity("Exercise", datetime(2026, 3, 18, 9, 15))]
        assert detect_deviations(today, [_pattern("Exercise", 7)], NOON) == []

    def test_future_hours_are_not_missed(self):
        assert detect_deviations([], [_pattern("Reading", 21)], NOON) == []

    def test_current_hour_can_be_missed(self):
        deviations = detect_deviations([], [_pattern("Lunch", 12)], NOON)
        assert [d.category for d in deviations] == ["Lunch"]

    def test_weak_patterns_are_ignored(self):
        assert detect_deviations([], [_pattern("Exercise", 7, 0.3)], NOON) == []

    def test_other_category_does_not_satisfy_pattern(self):
        today = [make_activity("Reading", datetime(2026, 3, 18, 7, 0))]
        deviations = detect_deviations(today, [_pattern("Exercise", 7)], NOON)
        assert [d.type for d in deviations] == [DeviationType.MISSED_PATTERN]


class TestUnusualTiming:

    def test_activity_far_from_usual_hours(self):
        patterns = [_pattern("Exercise", 7), _pattern("Exercise", 18, 0.2)]
        today = [make_activity("Exercise", datetime(2026, 3, 18, 12, 30))]

        deviations = [d for d in detect_deviations(today, patterns, NOON) if d.type == DeviationType.UNUSUAL_TIMING]

        assert len(deviations) == 1
        d = deviations[0]
        assert d.actual_hour == 12
        assert d.expected_hours == [7, 18]
        assert d.message == (
            "Unusual time for exercise - you typically do this around 7:00 AM or 6:00 PM"
        )

    def test_uses_patterns_of_any_confidence(self):
        patterns = [_pattern("Exercise", 7, 0.1)]
        today = [make_activity("Exercise", datetime(2026, 3, 18, 8, 0))]
        assert detect_deviations(today, patterns, NOON) == []

    def test_category_without_patterns_is_not_unusual(self):
        today = [make_activity("Gaming", datetime(2026, 3, 18, 3, 0))]
        assert detect_deviations(today, [_pattern("Exercise", 13)], NOON) == []

    def test_serializes_by_type(self):
        today = [make_activity("Exercise", datetime(2026, 3, 18, 11, 0))]
        deviations = detect_deviations(today, [_pattern("Exercise", 7)], NOON)
        data = {d.type.value: d.to_dict() for d in deviations}

        assert set(data["missed_pattern"]) == {"type", "category", "message", "expected_hour", "confidence"}
        assert set(data["unusual_timing"]) == {"type", "category", "message", "actual_hour", "expected_hours"}


class TestDeviationDetector:

    def test_reads_only_todays_activity(self):
        repo = FakeActivityRepository([
            make_activity("Exercise", datetime(2026, 3, 17, 7, 0)),
            make_activity("Exercise", datetime(2026, 3, 18, 7, 0), user_id=OTHER_USER_ID),
        ])
        deviations = DeviationDetector(repo).detect(USER_ID, [_pattern("Exercise", 7)], NOON)

        start, end = day_bounds(NOON)
        assert repo.queries == [(USER_ID, start, end)]
        assert start == datetime(2026, 3, 18)
        assert end.date() == NOON.date()
        assert [d.type for d in deviations] == [DeviationType.MISSED_PATTERN]
