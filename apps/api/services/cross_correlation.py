"""
Cross-Category Correlation Engine

Finds which activity categories move together from day to day.

For each day in the window that has any activity, every category gets its
total duration in hours (0 when absent). Pearson r is computed for every
unordered category pair over those aligned series. Only |r| >= 0.3 survives.

This is descriptive statistics over one user's log: a t-test approximation
grades significance, nothing here implies causation.
"""

from datetime import datetime, timedelta
from statistics import mean
from typing import Dict, List, Optional, Tuple
import logging
import math

from scipy.stats import t as t_dist

from core.config import settings
from services.behavior_models import (
    ActivityRecord,
    CacheWriteResult,
    Correlation,
    CorrelationDirection,
    CorrelationInsight,
    CorrelationStrength,
)
from services.storage.base import ActivityRepository, CorrelationStore, write_cache

logger = logging.getLogger(__name__)


MIN_DATA_POINTS = 10
CORRELATION_THRESHOLD = 0.3
STRONG_CORRELATION = 0.5

HEALTH_KEYWORDS = ("health", "exercise", "fitness", "sleep", "nutrition", "wellness", "physical")
PRODUCTIVITY_KEYWORDS = ("work", "study", "learning", "career", "education", "productivity")


# =============================================================================
# STATISTICS
# =============================================================================

def calculate_pearson_correlation(x: List[float], y: List[float]) -> float:
    """
    Pearson r of two equal-length series.

    Returns 0.0 for empty input or when either series has zero variance.
    Clamped to [-1, 1] against float drift.
    """
    if len(x) != len(y) or not x:
        return 0.0

    mean_x = mean(x)
    mean_y = mean(y)
    numerator = sum((a - mean_x) * (b - mean_y) for a, b in zip(x, y))
    sum_sq_x = sum((a - mean_x) ** 2 for a in x)
    sum_sq_y = sum((b - mean_y) ** 2 for b in y)

    if sum_sq_x == 0 or sum_sq_y == 0:
        return 0.0

    r = numerator / math.sqrt(sum_sq_x * sum_sq_y)
    return max(-1.0, min(1.0, r))


def classify_correlation_strength(r: float) -> CorrelationStrength:
    abs_r = abs(r)
    if abs_r >= 0.8:
        return CorrelationStrength.VERY_STRONG
    if abs_r >= 0.6:
        return CorrelationStrength.STRONG
    if abs_r >= 0.4:
        return CorrelationStrength.MODERATE
    if abs_r >= 0.2:
        return CorrelationStrength.WEAK
    return CorrelationStrength.VERY_WEAK


def t_statistic(r: float, n: int) -> float:
    """|r| * sqrt((n-2) / (1-r^2)); infinite for a perfect correlation."""
    denominator = 1 - r * r
    if denominator <= 0:
        return math.inf
    return abs(r) * math.sqrt((n - 2) / denominator)


def calculate_significance(r: float, n: int) -> str:
    if n < 3:
        return "Insufficient data"
    t = t_statistic(r, n)
    if t > 2.576:
        return "Highly significant (p < 0.01)"
    if t > 1.96:
        return "Significant (p < 0.05)"
    if t > 1.645:
        return "Marginally significant (p < 0.10)"
    return "Not significant"


def calculate_p_value(r: float, n: int) -> float:
    """Two-tailed p-value from the exact t-distribution."""
    if n <= 2:
        return 1.0
    t = t_statistic(r, n)
    if math.isinf(t):
        return 0.0
    return float(2 * t_dist.sf(t, n - 2))


def describe_relationship(category_a: str, category_b: str, r: float) -> str:
    strength = classify_correlation_strength(r).value.lower()
    if r > 0:
        return (
            f"{strength} positive relationship: when {category_a} activity increases, "
            f"{category_b} activity tends to increase as well"
        )
    return (
        f"{strength} negative relationship: when {category_a} activity increases, "
        f"{category_b} activity tends to decrease"
    )


# =============================================================================
# SERIES
# =============================================================================

def build_daily_duration_table(
    activities: List[ActivityRecord],
) -> Tuple[List[str], Dict[object, Dict[str, float]]]:
    """
    Returns (categories in first-seen order, {day: {category: hours}}).
    Only days with at least one activity appear.
    """
    categories: List[str] = []
    table: Dict[object, Dict[str, float]] = {}

    for activity in activities:
        if activity.category not in categories:
            categories.append(activity.category)
        day = table.setdefault(activity.start_time.date(), {})
        hours = (activity.duration_minutes or 0) / 60
        day[activity.category] = day.get(activity.category, 0.0) + hours

    return categories, table


def correlate_pair(
    table: Dict[object, Dict[str, float]],
    category_a: str,
    category_b: str,
) -> Optional[Correlation]:
    days = sorted(table)
    if len(days) < MIN_DATA_POINTS:
        return None

    series_a = [table[d].get(category_a, 0.0) for d in days]
    series_b = [table[d].get(category_b, 0.0) for d in days]
    r = calculate_pearson_correlation(series_a, series_b)
    if abs(r) < CORRELATION_THRESHOLD:
        return None

    n = len(days)
    return Correlation(
        category_a=category_a,
        category_b=category_b,
        coefficient=r,
        strength=classify_correlation_strength(r),
        direction=CorrelationDirection.POSITIVE if r > 0 else CorrelationDirection.NEGATIVE,
        data_points=n,
        average_a=mean(series_a),
        average_b=mean(series_b),
        significance=calculate_significance(r, n),
        p_value=calculate_p_value(r, n),
        relationship=describe_relationship(category_a, category_b, r),
    )


def detect_cross_correlations(activities: List[ActivityRecord]) -> List[Correlation]:
    """Every surviving unordered pair, strongest first."""
    if len(activities) < MIN_DATA_POINTS:
        return []

    categories, table = build_daily_duration_table(activities)
    if len(table) < MIN_DATA_POINTS:
        return []

    correlations = []
    for i, category_a in enumerate(categories):
        for category_b in categories[i + 1:]:
            correlation = correlate_pair(table, category_a, category_b)
            if correlation is not None:
                correlations.append(correlation)

    return sorted(correlations, key=lambda c: abs(c.coefficient), reverse=True)


# =============================================================================
# INSIGHTS
# =============================================================================

def _matches(category: str, keywords) -> bool:
    lowered = category.lower()
    return any(keyword in lowered for keyword in keywords)


def generate_correlation_insights(correlations: List[Correlation]) -> List[CorrelationInsight]:
    """Expects correlations sorted by |r| desc; each group keeps its top 3."""
    insights = []

    strong_positive = [
        c for c in correlations
        if c.direction == CorrelationDirection.POSITIVE and abs(c.coefficient) >= STRONG_CORRELATION
    ][:3]
    if strong_positive:
        insights.append(CorrelationInsight(
            type="strong_positive_correlations",
            title="Strong Positive Correlations",
            description="Activities that tend to increase together",
            correlations=strong_positive,
        ))

    strong_negative = [
        c for c in correlations
        if c.direction == CorrelationDirection.NEGATIVE and abs(c.coefficient) >= STRONG_CORRELATION
    ][:3]
    if strong_negative:
        insights.append(CorrelationInsight(
            type="strong_negative_correlations",
            title="Strong Negative Correlations",
            description="Activities that tend to compete with each other",
            correlations=strong_negative,
        ))

    health = [
        c for c in correlations
        if _matches(c.category_a, HEALTH_KEYWORDS) or _matches(c.category_b, HEALTH_KEYWORDS)
    ][:3]
    if health:
        insights.append(CorrelationInsight(
            type="health_correlations",
            title="Health & Wellness Connections",
            description="How health activities relate to other behaviors",
            correlations=health,
        ))

    productivity = [
        c for c in correlations
        if _matches(c.category_a, PRODUCTIVITY_KEYWORDS) or _matches(c.category_b, PRODUCTIVITY_KEYWORDS)
    ][:3]
    if productivity:
        insights.append(CorrelationInsight(
            type="productivity_correlations",
            title="Productivity Patterns",
            description="How work and study activities connect to other habits",
            correlations=productivity,
        ))

    return insights


def get_correlation_matrix(correlations: List[Correlation]) -> Dict:
    """
    Symmetric matrix over the categories that appear in any correlation.
    Diagonal is 1.0, pairs that did not survive the threshold are 0.
    """
    categories: List[str] = []
    for c in correlations:
        for name in (c.category_a, c.category_b):
            if name not in categories:
                categories.append(name)

    matrix = {a: {b: (1.0 if a == b else 0.0) for b in categories} for a in categories}
    for c in correlations:
        value = round(c.coefficient, 4)
        matrix[c.category_a][c.category_b] = value
        matrix[c.category_b][c.category_a] = value

    return {"categories": categories, "matrix": matrix}


# =============================================================================
# ANALYZER
# =============================================================================

class CorrelationAnalyzer:

    def __init__(
        self,
        activities: ActivityRepository,
        store: Optional[CorrelationStore] = None,
        window_days: Optional[int] = None,
    ):
        self.activities = activities
        self.store = store
        self.window_days = window_days or settings.CORRELATION_ANALYSIS_DAYS

    def detect_cross_correlations(self, user_id, now: Optional[datetime] = None) -> List[Correlation]:
        now = now or datetime.now()
        start = now - timedelta(days=self.window_days)
        records = self.activities.query_by_user_and_range(user_id, start, now)
        correlations = detect_cross_correlations(records)
        logger.debug(
            f"Found {len(correlations)} correlations for user {user_id} "
            f"from {len(records)} activities"
        )
        return correlations

    def get_category_correlations(
        self, user_id, category: str, now: Optional[datetime] = None
    ) -> List[Correlation]:
        return [c for c in self.detect_cross_correlations(user_id, now) if c.involves(category)]

    def snapshot_analysis(self, user_id, analysis: Dict) -> CacheWriteResult:
        if self.store is None:
            return CacheWriteResult(ok=True)
        return write_cache("correlation", lambda: self.store.upsert(user_id, analysis))
