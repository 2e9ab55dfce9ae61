"""
Habit Degradation Risk

Scores, per category, how likely a habit is being abandoned. Inputs are the
trailing 30 days of the user's log:

- frequency and duration trend: last 2 vs first 2 of 4 trailing 7-day windows
- consistency: share of the last 14 days (today included) with activity
- recency: whole days since the last activity in the category

The score is additive with independently capped contributions:

    frequency trend   < -30%: 40   < -15%: 25   < 0: 10
    duration trend    < -40%: 30   < -20%: 20   < 0: 10
    consistency       <  30%: 20   <  50%: 15   < 70%: 10
    days since last   >  7:   10   >  3:   5

capped at 100. >= 70 critical, >= 50 high, >= 30 medium, else low (dropped).

A zero baseline with non-zero recent activity reports a +100% trend. That is
an approximation (the real change is unbounded), kept for compatibility.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
import logging
import time as time_module

from core.config import settings
from services.behavior_models import (
    ActivityRecord,
    Prediction,
    RiskLevel,
    RiskMetrics,
    WeeklyBucket,
)
from services.storage.base import (
    ActivityRepository,
    PredictionStore,
    UserDirectory,
    write_cache,
)

logger = logging.getLogger(__name__)


ANALYSIS_DAYS = 30
MIN_CATEGORY_ACTIVITIES = 5
TREND_WEEKS = 4
CONSISTENCY_DAYS = 14
ALERT_LEVELS = (RiskLevel.CRITICAL, RiskLevel.HIGH)


# =============================================================================
# METRICS
# =============================================================================

def calculate_weekly_trends(activities: List[ActivityRecord], now: datetime) -> List[WeeklyBucket]:
    """Four trailing 7-day windows ending at now, oldest first."""
    weeks = []
    for i in range(TREND_WEEKS - 1, -1, -1):
        week_end = now - timedelta(days=7 * i)
        week_start = week_end - timedelta(days=7)
        in_week = [a for a in activities if week_start < a.start_time <= week_end]
        weeks.append(WeeklyBucket(
            week_start=week_start,
            week_end=week_end,
            frequency=len(in_week),
            total_hours=sum((a.duration_minutes or 0) for a in in_week) / 60,
        ))
    return weeks


def calculate_trend(older: List[float], recent: List[float]) -> float:
    """Percent change of the recent average over the older average."""
    older_avg = sum(older) / len(older) if older else 0.0
    recent_avg = sum(recent) / len(recent) if recent else 0.0
    if older_avg == 0:
        return 100.0 if recent_avg > 0 else 0.0
    return (recent_avg - older_avg) / older_avg * 100


def calculate_frequency_trend(weeks: List[WeeklyBucket]) -> float:
    return calculate_trend([w.frequency for w in weeks[:2]], [w.frequency for w in weeks[-2:]])


def calculate_duration_trend(weeks: List[WeeklyBucket]) -> float:
    return calculate_trend([w.total_hours for w in weeks[:2]], [w.total_hours for w in weeks[-2:]])


def calculate_consistency_score(activities: List[ActivityRecord], now: datetime) -> float:
    active_days = {a.start_time.date() for a in activities}
    today = now.date()
    hits = sum(
        1 for offset in range(CONSISTENCY_DAYS)
        if today - timedelta(days=offset) in active_days
    )
    return hits / CONSISTENCY_DAYS * 100


def get_days_since_last_activity(activities: List[ActivityRecord], now: datetime) -> Optional[int]:
    if not activities:
        return None
    last = max(a.start_time for a in activities)
    return (now - last) // timedelta(days=1)


def calculate_risk_score(metrics: RiskMetrics) -> int:
    score = 0

    if metrics.frequency_trend < -30:
        score += 40
    elif metrics.frequency_trend < -15:
        score += 25
    elif metrics.frequency_trend < 0:
        score += 10

    if metrics.duration_trend < -40:
        score += 30
    elif metrics.duration_trend < -20:
        score += 20
    elif metrics.duration_trend < 0:
        score += 10

    if metrics.consistency_score < 30:
        score += 20
    elif metrics.consistency_score < 50:
        score += 15
    elif metrics.consistency_score < 70:
        score += 10

    if metrics.days_since_last_activity > 7:
        score += 10
    elif metrics.days_since_last_activity > 3:
        score += 5

    return min(score, 100)


def get_risk_level(score: int) -> RiskLevel:
    if score >= 70:
        return RiskLevel.CRITICAL
    if score >= 50:
        return RiskLevel.HIGH
    if score >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def generate_prediction_message(category_name: str, metrics: RiskMetrics, score: int) -> str:
    parts = [f"Your {category_name.lower()} activity"]
    if metrics.frequency_trend < -30:
        parts.append(f"has dropped significantly ({abs(metrics.frequency_trend):.0f}%)")
    elif metrics.frequency_trend < -15:
        parts.append(f"has decreased ({abs(metrics.frequency_trend):.0f}%)")
    else:
        parts.append("shows concerning patterns")

    message = " ".join(parts)
    if metrics.days_since_last_activity > 1:
        message += f" and it's been {metrics.days_since_last_activity} days since your last session."
    else:
        message += "."
    return f"{message} Habit break risk: {score}%."


def generate_recommendations(category_name: str, level: RiskLevel) -> List[str]:
    name = category_name.lower()
    if level == RiskLevel.CRITICAL:
        return [
            f"Schedule a {name} session today",
            "Start with just 10-15 minutes to rebuild momentum",
            "Set a daily reminder for this habit",
        ]
    if level == RiskLevel.HIGH:
        return [
            f"Plan your next {name} session within 24 hours",
            "Consider reducing session length to maintain consistency",
            "Review what might be blocking this habit",
        ]
    if level == RiskLevel.MEDIUM:
        return [
            f"Schedule regular {name} sessions this week",
            "Track what times work best for you",
            "Consider habit stacking with existing routines",
        ]
    return []


# =============================================================================
# SCORING
# =============================================================================

def group_active_categories(
    activities: List[ActivityRecord],
) -> List[Tuple[str, str, List[ActivityRecord]]]:
    """(category key, display name, activities) for categories with enough history."""
    groups: Dict[str, Tuple[str, List[ActivityRecord]]] = {}
    for activity in activities:
        key = activity.category_key
        if key not in groups:
            groups[key] = (activity.category, [])
        groups[key][1].append(activity)

    return [
        (key, name, records)
        for key, (name, records) in groups.items()
        if len(records) >= MIN_CATEGORY_ACTIVITIES
    ]


def compute_metrics(activities: List[ActivityRecord], now: datetime) -> RiskMetrics:
    weeks = calculate_weekly_trends(activities, now)
    return RiskMetrics(
        frequency_trend=calculate_frequency_trend(weeks),
        duration_trend=calculate_duration_trend(weeks),
        consistency_score=calculate_consistency_score(activities, now),
        days_since_last_activity=get_days_since_last_activity(activities, now) or 0,
    )


def analyze_category_degradation(
    category_id: str,
    category_name: str,
    activities: List[ActivityRecord],
    now: datetime,
) -> Optional[Prediction]:
    """Prediction for one category, or None when the risk is low."""
    metrics = compute_metrics(activities, now)
    score = calculate_risk_score(metrics)
    level = get_risk_level(score)
    if level == RiskLevel.LOW:
        return None

    return Prediction(
        category_id=category_id,
        category_name=category_name,
        risk_score=score,
        risk_level=level,
        frequency_trend=metrics.frequency_trend,
        duration_trend=metrics.duration_trend,
        consistency_score=metrics.consistency_score,
        days_since_last_activity=metrics.days_since_last_activity,
        total_activities=len(activities),
        message=generate_prediction_message(category_name, metrics, score),
        recommendations=generate_recommendations(category_name, level),
        created_at=now,
    )


def score_activities(activities: List[ActivityRecord], now: datetime) -> List[Prediction]:
    predictions = []
    for key, name, records in group_active_categories(activities):
        prediction = analyze_category_degradation(key, name, records, now)
        if prediction is not None:
            predictions.append(prediction)
    return predictions


class RiskScorer:
    """
    Per-user habit-risk analysis plus the scheduled batch passes.

    alert_manager is duck-typed (create_habit_alerts) to keep this module
    free of the notification layer.
    """

    def __init__(
        self,
        activities: ActivityRepository,
        store: Optional[PredictionStore] = None,
        alert_manager=None,
        users: Optional[UserDirectory] = None,
    ):
        self.activities = activities
        self.store = store
        self.alert_manager = alert_manager
        self.users = users

    def predict(self, user_id, now: Optional[datetime] = None) -> List[Prediction]:
        """Score every active category without side effects."""
        now = now or datetime.now()
        start = now - timedelta(days=ANALYSIS_DAYS)
        records = self.activities.query_by_user_and_range(user_id, start, now)
        return score_activities(records, now)

    def analyze_habit_degradation_risk(self, user_id, now: Optional[datetime] = None) -> List[Prediction]:
        predictions, _ = self._analyze_and_alert(user_id, now)
        return predictions

    def _analyze_and_alert(self, user_id, now: Optional[datetime]):
        now = now or datetime.now()
        predictions = self.predict(user_id, now)

        if self.store is not None:
            write_cache(
                "prediction",
                lambda: self.store.upsert(user_id, [p.to_dict() for p in predictions], now),
            )

        alerts = []
        if self.alert_manager is not None:
            at_risk = [p for p in predictions if p.risk_level in ALERT_LEVELS]
            if at_risk:
                alerts = self.alert_manager.create_habit_alerts(user_id, at_risk, now=now)

        return predictions, alerts

    def get_user_predictions(self, user_id) -> List[Dict]:
        if self.store is None:
            return []
        return self.store.get_latest(user_id)

    def run_batch_analysis(self, now: Optional[datetime] = None, delay: Optional[float] = None) -> List[Dict]:
        """Sequential pass over opted-in users. A failing user never stops the batch."""
        delay = settings.BATCH_USER_DELAY_S if delay is None else delay
        results = []

        for index, user_id in enumerate(self._opted_in_users()):
            if index and delay:
                time_module.sleep(delay)
            try:
                predictions, alerts = self._analyze_and_alert(user_id, now)
                results.append({
                    "user_id": str(user_id),
                    "predictions_count": len(predictions),
                    "alerts_generated": len(alerts),
                })
            except Exception as e:
                logger.error(f"Habit risk analysis failed for user {user_id}: {e}")
                results.append({"user_id": str(user_id), "error": str(e)})

        return results

    def run_critical_check(self, now: Optional[datetime] = None, delay: Optional[float] = None) -> List[Dict]:
        """
        Lightweight pass between daily batches: scores users without touching
        the prediction snapshot and alerts only on critical risk.
        """
        delay = settings.BATCH_USER_DELAY_S if delay is None else delay
        results = []

        for index, user_id in enumerate(self._opted_in_users()):
            if index and delay:
                time_module.sleep(delay)
            try:
                critical = [
                    p for p in self.predict(user_id, now)
                    if p.risk_level == RiskLevel.CRITICAL
                ]
                alerts = []
                if critical and self.alert_manager is not None:
                    alerts = self.alert_manager.create_habit_alerts(user_id, critical, now=now)
                results.append({
                    "user_id": str(user_id),
                    "critical_count": len(critical),
                    "alerts_generated": len(alerts),
                })
            except Exception as e:
                logger.error(f"Critical habit check failed for user {user_id}: {e}")
                results.append({"user_id": str(user_id), "error": str(e)})

        return results

    def _opted_in_users(self) -> List:
        if self.users is None:
            return []
        return self.users.list_opted_in_users()
