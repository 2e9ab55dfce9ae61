"""
End-to-end tests for the engine over in-memory stores.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from services.behavior_models import (
    Suggestion,
    SuggestionAction,
    SuggestionPriority,
    SuggestionTiming,
    SuggestionType,
)
from fixtures.activity_fixtures import OTHER_USER_ID, SATURDAY_NIGHT, USER_ID, daily_at, make_activity


# Wednesday. Exercise happened every morning for the previous 20 days, not today.
NOON = datetime(2026, 3, 18, 12, 0)


@pytest.fixture
def morning_exerciser(activity_repo):
    activity_repo.add(*daily_at("Exercise", datetime(2026, 2, 26), days=20, hour=7))
    return activity_repo


class TestPatternAnalysis:

    def test_analyze_patterns_shape(self, behavior_engine, morning_exerciser, pattern_store):
        result = behavior_engine.analyze_patterns(USER_ID, NOON)

        assert set(result) == {"patterns", "deviations", "suggestions", "analysis_date"}
        assert result["patterns"]["daily"][0]["hour"] == 7
        assert result["deviations"][0]["type"] == "missed_pattern"
        assert result["suggestions"][0]["type"] == "habit_resumption"
        assert pattern_store.analyzed[str(USER_ID)] == NOON

    def test_pattern_insights(self, behavior_engine, morning_exerciser):
        types = [i["type"] for i in behavior_engine.get_pattern_insights(USER_ID, NOON)]
        assert "consistent_habits" in types


class TestCheckPatternsAndSuggest:

    def test_fresh_analysis_stores_suggestions(self, behavior_engine, morning_exerciser, suggestion_store):
        result = behavior_engine.check_patterns_and_suggest(USER_ID, NOON)

        assert result["has_deviations"] is True
        assert result["deviations"][0]["category"] == "Exercise"
        assert [s["category"] for s in result["suggestions"]] == ["Exercise"]
        assert 0 < result["pattern_strength"] <= 100
        assert suggestion_store.create_calls == 1

    def test_second_call_within_the_hour_reuses_suggestions(
        self, behavior_engine, morning_exerciser, suggestion_store
    ):
        first = behavior_engine.check_patterns_and_suggest(USER_ID, NOON)
        second = behavior_engine.check_patterns_and_suggest(USER_ID, NOON + timedelta(minutes=10))

        assert [s["id"] for s in second["suggestions"]] == [s["id"] for s in first["suggestions"]]
        assert second["has_deviations"] is True
        assert second["deviations"] == []
        assert second["pattern_strength"] == 50
        assert suggestion_store.create_calls == 1
        assert len(suggestion_store.rows) == 1

    def test_after_an_hour_duplicates_are_still_suppressed(
        self, behavior_engine, morning_exerciser, suggestion_store
    ):
        behavior_engine.check_patterns_and_suggest(USER_ID, NOON)
        result = behavior_engine.check_patterns_and_suggest(USER_ID, NOON + timedelta(minutes=90))

        assert len(result["suggestions"]) == 1
        assert result["deviations"]
        assert len(suggestion_store.rows) == 1

    def test_no_history_means_no_suggestions(self, behavior_engine, suggestion_store):
        result = behavior_engine.check_patterns_and_suggest(USER_ID, NOON)

        assert result == {
            "has_deviations": False,
            "deviations": [],
            "suggestions": [],
            "pattern_strength": 0,
            "last_analyzed": NOON.isoformat(),
        }
        assert suggestion_store.create_calls == 0


class TestPatternAnalysisJob:

    def test_processes_active_users_and_cleans_up(self, behavior_engine, morning_exerciser, suggestion_store):
        suggestion_store.rows.append(Suggestion(
            id="old",
            user_id=OTHER_USER_ID,
            type=SuggestionType.WEEKLY_HABIT,
            category="Yoga",
            title="t",
            message="m",
            priority=SuggestionPriority.LOW,
            confidence=0.3,
            timing=SuggestionTiming.WEEKLY,
            action_type=SuggestionAction.REMINDER,
            created_at=NOON - timedelta(days=2),
            expires_at=NOON - timedelta(days=1),
        ))

        summary = behavior_engine.run_pattern_analysis_job(NOON, delay=0)

        assert summary == {
            "processed_users": 1,
            "total_users": 1,
            "skipped_users": 0,
            "failed_users": 0,
            "total_suggestions": 1,
            "cleaned_up_suggestions": 1,
        }

    def test_recently_analyzed_users_are_skipped(self, behavior_engine, morning_exerciser):
        behavior_engine.run_pattern_analysis_job(NOON, delay=0)
        summary = behavior_engine.run_pattern_analysis_job(NOON + timedelta(minutes=30), delay=0)

        assert summary["skipped_users"] == 1
        assert summary["processed_users"] == 0

        later = behavior_engine.run_pattern_analysis_job(NOON + timedelta(hours=3), delay=0)
        assert later["processed_users"] == 1

    def test_failing_user_is_counted(self, behavior_engine, morning_exerciser, user_directory):
        user_directory.active = [OTHER_USER_ID, USER_ID]
        original = behavior_engine.suggestions.recent_active_suggestions

        def flaky(user_id, now=None):
            if user_id == OTHER_USER_ID:
                raise RuntimeError("connection reset")
            return original(user_id, now)

        with patch.object(behavior_engine.suggestions, "recent_active_suggestions", side_effect=flaky):
            summary = behavior_engine.run_pattern_analysis_job(NOON, delay=0)

        assert summary["failed_users"] == 1
        assert summary["processed_users"] == 1
        assert summary["total_users"] == 2


class TestCorrelations:

    @pytest.fixture
    def paired(self, activity_repo):
        for i in range(20):
            start = datetime(2026, 2, 20, 8, 0) + timedelta(days=i)
            minutes = 30 + 10 * (i % 7)
            activity_repo.add(
                make_activity("Exercise", start, minutes),
                make_activity("Sleep", start + timedelta(hours=12), minutes * 2),
            )
        return activity_repo

    def test_analysis_is_snapshotted(self, behavior_engine, paired, correlation_store):
        now = datetime(2026, 3, 12, 12, 0)
        analysis = behavior_engine.analyze_cross_correlations(USER_ID, now)

        assert set(analysis) == {"correlations", "insights", "predictions", "analysis_date", "data_points"}
        assert analysis["correlations"][0]["strength"] == "Very Strong"
        assert analysis["data_points"] == 20

        snapshot = correlation_store.snapshots[str(USER_ID)]
        assert snapshot["analyzed_at"] == now
        assert snapshot["correlations"] == analysis["correlations"]

    def test_insufficient_data(self, behavior_engine, correlation_store):
        analysis = behavior_engine.analyze_cross_correlations(USER_ID, NOON)

        assert analysis["correlations"] == []
        assert analysis["predictions"] == []
        assert analysis["data_points"] == 0
        assert str(USER_ID) in correlation_store.snapshots

    def test_matrix_and_category_views(self, behavior_engine, paired):
        now = datetime(2026, 3, 12, 12, 0)

        matrix = behavior_engine.get_correlation_matrix(USER_ID, now)
        assert matrix["matrix"]["Sleep"]["Exercise"] == matrix["matrix"]["Exercise"]["Sleep"]

        assert len(behavior_engine.get_category_correlations(USER_ID, "Sleep", now)) == 1
        assert behavior_engine.get_category_correlations(USER_ID, "Reading", now) == []

    def test_summary(self, behavior_engine, paired):
        summary = behavior_engine.get_correlation_summary(USER_ID, datetime(2026, 3, 12, 12, 0))

        assert summary["total_correlations"] == 1
        assert summary["strong_correlations"] == 1
        assert summary["top_correlation"]["category_b"] == "Sleep"


class TestRisk:

    @pytest.fixture
    def abandoned(self, activity_repo):
        activity_repo.add(*daily_at("Exercise", datetime(2026, 2, 22), days=5, hour=9))
        activity_repo.add(*daily_at("Exercise", datetime(2026, 3, 1), days=5, hour=9))
        return activity_repo

    def test_current_risk_analysis(self, behavior_engine, abandoned, prediction_store):
        result = behavior_engine.get_current_risk_analysis(USER_ID, SATURDAY_NIGHT)

        assert result["predictions"][0]["risk_level"] == "critical"
        assert result["recent_alerts"][0]["title"] == "Exercise Habit at Risk"
        assert result["risk_summary"]["critical_risk"] == 1
        assert result["last_analyzed"] == SATURDAY_NIGHT.isoformat()
        assert prediction_store.snapshots[str(USER_ID)][0]["risk_score"] == 100

    def test_repeat_analysis_does_not_duplicate_alerts(self, behavior_engine, abandoned, notification_store):
        behavior_engine.analyze_habit_degradation_risk(USER_ID, SATURDAY_NIGHT)
        behavior_engine.analyze_habit_degradation_risk(USER_ID, SATURDAY_NIGHT + timedelta(hours=2))

        assert len(notification_store.rows) == 1

    def test_no_risk_no_alerts(self, behavior_engine, notification_store):
        assert behavior_engine.analyze_habit_degradation_risk(USER_ID, SATURDAY_NIGHT) == []
        assert notification_store.rows == []
