"""
Tests for pattern mining over the trailing activity window.
"""

import pytest
from datetime import datetime, timedelta

from services.behavior_models import DailyPattern, PatternSet, SequencePattern
from services.pattern_recognition import (
    PatternDetector,
    analyze_category_patterns,
    analyze_daily_patterns,
    analyze_temporal_sequences,
    analyze_weekly_patterns,
    calculate_pattern_strength,
    format_hour,
    get_pattern_insights,
)
from fixtures.activity_fixtures import USER_ID, daily_at, make_activity, on_dates
from fixtures.fake_stores import FailingStore, FakeActivityRepository, FakePatternStore


class TestFormatHour:

    def test_morning_and_evening(self):
        assert format_hour(7) == "7:00 AM"
        assert format_hour(15) == "3:00 PM"

    def test_midnight_and_noon(self):
        assert format_hour(0) == "12:00 AM"
        assert format_hour(12) == "12:00 PM"


class TestDailyPatterns:

    def test_recurring_hour_becomes_pattern(self):
        activities = daily_at("Exercise", datetime(2026, 3, 10), days=10, hour=7, minutes=45)
        patterns = analyze_daily_patterns(activities)

        assert len(patterns) == 1
        p = patterns[0]
        assert (p.category, p.hour) == ("Exercise", 7)
        assert p.occurrences == 10
        assert p.confidence == pytest.approx(10 / 30)
        assert p.average_duration == pytest.approx(45)
        assert p.days == sorted(p.days)
        assert p.days[0] == "2026-03-10"

    def test_below_minimum_occurrences_is_dropped(self):
        activities = daily_at("Exercise", datetime(2026, 3, 10), days=2, hour=7)
        assert analyze_daily_patterns(activities) == []

    def test_same_day_repeats_count_once_in_days(self):
        base = datetime(2026, 3, 10, 7, 0)
        activities = [make_activity("Meditation", base + timedelta(minutes=m)) for m in (0, 10, 20)]
        p = analyze_daily_patterns(activities)[0]
        assert p.occurrences == 3
        assert p.days == ["2026-03-10"]

    def test_confidence_is_monotone_and_capped(self):
        previous = 0.0
        for count in range(3, 50):
            base = datetime(2026, 1, 1, 9, 0)
            activities = [make_activity("Work", base + timedelta(days=i // 2, minutes=i % 2)) for i in range(count)]
            confidence = analyze_daily_patterns(activities)[0].confidence
            assert confidence >= previous
            assert confidence <= 1.0
            previous = confidence
        assert previous == 1.0

    def test_sorted_by_confidence(self):
        activities = (
            daily_at("Reading", datetime(2026, 3, 1), days=4, hour=21)
            + daily_at("Exercise", datetime(2026, 3, 1), days=9, hour=7)
        )
        patterns = analyze_daily_patterns(activities)
        assert [p.category for p in patterns] == ["Exercise", "Reading"]

    def test_missing_duration_does_not_break_average(self):
        activities = daily_at("Exercise", datetime(2026, 3, 10), days=3, hour=7)
        activities[0].duration_minutes = None
        p = analyze_daily_patterns(activities)[0]
        assert p.total_duration == 60
        assert p.average_duration == pytest.approx(20)


class TestWeeklyPatterns:

    def test_weekday_uses_sunday_zero_numbering(self):
        mondays = [datetime(2026, 3, d, 18, 0) for d in (2, 9, 16)]
        patterns = analyze_weekly_patterns(on_dates("Yoga", mondays))

        assert len(patterns) == 1
        assert patterns[0].day_of_week == 1
        assert patterns[0].day_name == "Monday"
        assert patterns[0].occurrences == 3

    def test_sorted_by_occurrences(self):
        sundays = [datetime(2026, 3, d, 10, 0) for d in (1, 8, 15, 22)]
        fridays = [datetime(2026, 3, d, 10, 0) for d in (6, 13, 20)]
        patterns = analyze_weekly_patterns(on_dates("Hiking", sundays) + on_dates("Cooking", fridays))
        assert [(p.category, p.day_name) for p in patterns] == [("Hiking", "Sunday"), ("Cooking", "Friday")]


class TestCategoryPatterns:

    def test_preferred_times_break_ties_by_first_seen(self):
        starts = [
            datetime(2026, 3, 2, 20, 0),
            datetime(2026, 3, 3, 21, 0),
            datetime(2026, 3, 4, 20, 0),
            datetime(2026, 3, 5, 21, 0),
            datetime(2026, 3, 6, 8, 0),
        ]
        patterns = analyze_category_patterns(on_dates("Reading", starts, minutes=60))

        assert len(patterns) == 1
        p = patterns[0]
        assert [t["hour"] for t in p.preferred_times] == [20, 21, 8]
        assert p.total_activities == 5
        assert p.average_duration == pytest.approx(60)
        assert p.average_frequency == pytest.approx(5 / 30 * 7)
        assert p.preferred_days[0]["day_name"] == "Monday"

    def test_sparse_category_is_dropped(self):
        starts = [datetime(2026, 3, 2, 20, 0), datetime(2026, 3, 3, 20, 0)]
        assert analyze_category_patterns(on_dates("Reading", starts)) == []


class TestTemporalSequences:

    def test_same_day_transitions_are_counted(self):
        activities = []
        for day in (2, 3, 4):
            activities.append(make_activity("Exercise", datetime(2026, 3, day, 7, 0)))
            activities.append(make_activity("Shower", datetime(2026, 3, day, 8, 30)))

        sequences = analyze_temporal_sequences(activities)

        assert len(sequences) == 1
        s = sequences[0]
        assert (s.from_category, s.to_category) == ("Exercise", "Shower")
        assert s.count == 3
        assert s.average_gap_hours == pytest.approx(1.5)

    def test_gaps_over_six_hours_are_ignored(self):
        activities = []
        for day in (2, 3, 4):
            activities.append(make_activity("Work", datetime(2026, 3, day, 9, 0)))
            activities.append(make_activity("Reading", datetime(2026, 3, day, 16, 30)))
        assert analyze_temporal_sequences(activities) == []

    def test_no_pairs_across_midnight(self):
        activities = []
        for day in (2, 3, 4):
            activities.append(make_activity("Reading", datetime(2026, 3, day, 23, 0)))
            activities.append(make_activity("Exercise", datetime(2026, 3, day + 1, 0, 30)))
        # Each day holds Exercise at 00:30 then Reading at 23:00, too far apart
        assert analyze_temporal_sequences(activities) == []

    def test_unsorted_input_is_ordered_within_day(self):
        activities = []
        for day in (2, 3, 4):
            activities.append(make_activity("Shower", datetime(2026, 3, day, 8, 30)))
            activities.append(make_activity("Exercise", datetime(2026, 3, day, 7, 0)))
        sequences = analyze_temporal_sequences(activities)
        assert (sequences[0].from_category, sequences[0].to_category) == ("Exercise", "Shower")


class TestPatternSummaries:

    def _patterns(self):
        return PatternSet(
            daily=[
                DailyPattern(category="Exercise", hour=7, occurrences=20, confidence=20 / 30),
                DailyPattern(category="Reading", hour=21, occurrences=10, confidence=10 / 30),
            ],
            temporal=[SequencePattern(from_category="Exercise", to_category="Shower", count=5)],
        )

    def test_strength_is_zero_without_patterns(self):
        assert calculate_pattern_strength(PatternSet()) == 0

    def test_strength_blends_confidence_and_diversity(self):
        patterns = PatternSet(daily=[DailyPattern(category="Exercise", hour=7, occurrences=15, confidence=0.5)])
        assert calculate_pattern_strength(patterns) == 38

    def test_insights(self):
        insights = {i["type"]: i for i in get_pattern_insights(self._patterns())}

        assert insights["consistent_habits"]["message"] == "You're most consistent with Exercise"
        assert insights["peak_times"]["data"] == [{"hour": 7, "count": 20}, {"hour": 21, "count": 10}]
        assert insights["peak_times"]["message"] == "You're most active around 7:00 AM, 9:00 PM"
        assert insights["activity_sequences"]["message"] == "You often follow Exercise with Shower"

    def test_no_insights_for_empty_patterns(self):
        assert get_pattern_insights(PatternSet()) == []


class TestPatternDetector:

    def test_queries_trailing_window_and_snapshots(self, now):
        repo = FakeActivityRepository(daily_at("Exercise", now - timedelta(days=10), days=10, hour=7))
        store = FakePatternStore()

        patterns = PatternDetector(repo, store, window_days=30).detect_patterns(USER_ID, now)

        assert repo.queries == [(USER_ID, now - timedelta(days=30), now)]
        assert len(patterns.daily) == 1
        assert store.analyzed[str(USER_ID)] == now
        assert store.snapshots[str(USER_ID)]["daily"][0]["category"] == "Exercise"

    def test_activity_outside_window_is_ignored(self, now):
        old = daily_at("Exercise", now - timedelta(days=50), days=5, hour=7)
        patterns = PatternDetector(FakeActivityRepository(old), window_days=30).detect_patterns(USER_ID, now)
        assert patterns.total_patterns == 0

    def test_snapshot_failure_does_not_affect_result(self, now):
        repo = FakeActivityRepository(daily_at("Exercise", now - timedelta(days=10), days=10, hour=7))
        detector = PatternDetector(repo, FailingStore(), window_days=30)

        patterns = detector.detect_patterns(USER_ID, now)
        assert len(patterns.daily) == 1

        result = detector.snapshot_patterns(USER_ID, patterns, now)
        assert result.ok is False
        assert "database unavailable" in result.error
