"""
Tests for correlation-driven predictive insights.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from services.behavior_models import Correlation, CorrelationDirection, CorrelationStrength
from services.correlation_predictions import (
    PredictiveInsightGenerator,
    generate_predictions,
    recent_category_hours,
)
from fixtures.activity_fixtures import USER_ID, make_activity
from fixtures.fake_stores import FakeActivityRepository


NOW = datetime(2026, 3, 21, 22, 0)


def _correlation(a, b, r, average_a=1.0, average_b=2.0):
    return Correlation(
        category_a=a,
        category_b=b,
        coefficient=r,
        strength=CorrelationStrength.VERY_STRONG if abs(r) >= 0.8 else CorrelationStrength.MODERATE,
        direction=CorrelationDirection.POSITIVE if r > 0 else CorrelationDirection.NEGATIVE,
        data_points=30,
        average_a=average_a,
        average_b=average_b,
        significance="Highly significant (p < 0.01)",
        p_value=0.001,
        relationship="",
    )


class TestRecentHours:

    def test_totals_per_category(self):
        activities = [
            make_activity("Exercise", NOW - timedelta(days=1), 90),
            make_activity("Exercise", NOW - timedelta(days=2), 30),
            make_activity("Reading", NOW - timedelta(days=2), None),
        ]
        assert recent_category_hours(activities) == {"Exercise": 2.0, "Reading": 0.0}


class TestGeneratePredictions:

    def test_positive_extrapolation(self):
        predictions = generate_predictions([_correlation("Exercise", "Sleep", 0.9)], {"Exercise": 3.0})

        assert len(predictions) == 1
        p = predictions[0]
        assert (p.trigger, p.predicted) == ("Exercise", "Sleep")
        assert p.confidence == pytest.approx(0.9)
        assert p.predicted_hours == pytest.approx(2.0 + 0.9 * 2.0)
        assert p.message == (
            "Based on your recent Exercise activity (3.0h), you're likely to increase Sleep activity. "
            "This very strong correlation suggests 3.8h of Sleep this week."
        )
        assert p.recommendation.startswith("Consider maintaining your Exercise routine")

    def test_negative_correlation_warns(self):
        p = generate_predictions([_correlation("Work", "Exercise", -0.6)], {"Work": 5.0})[0]
        assert p.direction == CorrelationDirection.NEGATIVE
        assert p.predicted_hours == pytest.approx(2.0 - 0.6 * 4.0)
        assert "decrease Exercise activity" in p.message
        assert p.recommendation == (
            "Be mindful that increased Work might reduce Exercise time. Plan accordingly."
        )

    def test_trigger_must_exceed_average_by_twenty_percent(self):
        correlations = [_correlation("Exercise", "Sleep", 0.9)]
        assert generate_predictions(correlations, {"Exercise": 1.2}) == []
        assert generate_predictions(correlations, {}) == []
        assert len(generate_predictions(correlations, {"Exercise": 1.21})) == 1

    def test_moderate_correlations_are_ignored(self):
        assert generate_predictions([_correlation("Exercise", "Sleep", 0.45)], {"Exercise": 10.0}) == []

    def test_only_top_five_considered_and_three_returned(self):
        correlations = [_correlation(f"Cat{i}", "Sleep", 0.9) for i in range(7)]
        recent = {f"Cat{i}": 10.0 for i in range(7)}
        predictions = generate_predictions(correlations, recent)
        assert [p.trigger for p in predictions] == ["Cat0", "Cat1", "Cat2"]

        # Only Cat5 and Cat6 are running hot, but they sit outside the top five
        recent = {"Cat5": 10.0, "Cat6": 10.0}
        assert generate_predictions(correlations, recent) == []


class TestPredictiveInsightGenerator:

    def test_reads_last_seven_days(self):
        repo = FakeActivityRepository([
            make_activity("Exercise", NOW - timedelta(days=1), 180),
            make_activity("Exercise", NOW - timedelta(days=9), 600),
        ])
        predictions = PredictiveInsightGenerator(repo).generate(
            USER_ID, [_correlation("Exercise", "Sleep", 0.9)], NOW
        )

        assert repo.queries == [(USER_ID, NOW - timedelta(days=7), NOW)]
        assert predictions[0].recent_hours == pytest.approx(3.0)

    def test_no_correlations_skips_the_query(self):
        repo = FakeActivityRepository()
        assert PredictiveInsightGenerator(repo).generate(USER_ID, [], NOW) == []
        assert repo.queries == []

    def test_repository_error_propagates(self):
        repo = MagicMock()
        repo.query_by_user_and_range.side_effect = RuntimeError("connection reset")

        with pytest.raises(RuntimeError, match="connection reset"):
            PredictiveInsightGenerator(repo).generate(USER_ID, [_correlation("Exercise", "Sleep", 0.9)], NOW)
