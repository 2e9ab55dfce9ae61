"""
Behavior Engine

Composition root for the analytics services. Built once per process (or per
database session in workers) with the stores it should use, then exposes the
JSON-returning operations the HTTP layer and the scheduled jobs call.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

from sqlalchemy.orm import Session

from core.config import settings
from services.alert_manager import AlertManager, summarize_risk
from services.correlation_predictions import PredictiveInsightGenerator
from services.cross_correlation import (
    STRONG_CORRELATION,
    CorrelationAnalyzer,
    generate_correlation_insights,
    get_correlation_matrix,
)
from services.habit_risk import RiskScorer
from services.pattern_deviation import DeviationDetector
from services.pattern_recognition import (
    PatternDetector,
    calculate_pattern_strength,
    get_pattern_insights,
)
from services.pattern_suggestions import SuggestionEngine
from services.storage.base import (
    ActivityRepository,
    ActivityWriter,
    CorrelationStore,
    NotificationStore,
    PatternStore,
    PredictionStore,
    SuggestionStore,
    UserDirectory,
)

logger = logging.getLogger(__name__)


ACTIVE_USER_DAYS = 7
REANALYZE_AFTER = timedelta(hours=2)
CACHED_PATTERN_STRENGTH = 50
RECENT_HABIT_ALERTS = 5


class BehaviorEngine:

    def __init__(
        self,
        activities: ActivityRepository,
        suggestion_store: SuggestionStore,
        notification_store: NotificationStore,
        pattern_store: Optional[PatternStore] = None,
        correlation_store: Optional[CorrelationStore] = None,
        prediction_store: Optional[PredictionStore] = None,
        users: Optional[UserDirectory] = None,
        activity_writer: Optional[ActivityWriter] = None,
    ):
        self.users = users
        self.pattern_store = pattern_store
        self.patterns = PatternDetector(activities, pattern_store)
        self.deviations = DeviationDetector(activities)
        self.suggestions = SuggestionEngine(suggestion_store, activities, activity_writer)
        self.correlations = CorrelationAnalyzer(activities, correlation_store)
        self.predictive = PredictiveInsightGenerator(activities)
        self.alerts = AlertManager(notification_store, users)
        self.risk = RiskScorer(activities, prediction_store, self.alerts, users)

    # -------------------------------------------------------------------------
    # PATTERNS & SUGGESTIONS
    # -------------------------------------------------------------------------

    def _analyze(self, user_id, now: datetime):
        patterns = self.patterns.detect_patterns(user_id, now)
        deviations = self.deviations.detect(user_id, patterns.daily, now)
        candidates = self.suggestions.generate(user_id, patterns, deviations, now)
        return patterns, deviations, candidates

    def analyze_patterns(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        patterns, deviations, candidates = self._analyze(user_id, now)
        return {
            "patterns": patterns.to_dict(),
            "deviations": [d.to_dict() for d in deviations],
            "suggestions": [c.to_dict() for c in candidates],
            "analysis_date": now.isoformat(),
        }

    def check_patterns_and_suggest(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        result, _ = self._refresh_suggestions(user_id, now or datetime.now())
        return result

    def _refresh_suggestions(self, user_id, now: datetime) -> Tuple[Dict[str, Any], int]:
        recent = self.suggestions.recent_active_suggestions(user_id, now)
        if recent:
            return {
                "has_deviations": True,
                "deviations": [],
                "suggestions": [s.to_dict() for s in recent],
                "pattern_strength": CACHED_PATTERN_STRENGTH,
                "last_analyzed": now.isoformat(),
            }, 0

        patterns, deviations, candidates = self._analyze(user_id, now)
        stored = self.suggestions.store_suggestions(user_id, candidates, now) if candidates else 0
        active = self.suggestions.get_active_suggestions(user_id, now)
        return {
            "has_deviations": bool(deviations),
            "deviations": [d.to_dict() for d in deviations],
            "suggestions": [s.to_dict() for s in active],
            "pattern_strength": calculate_pattern_strength(patterns),
            "last_analyzed": now.isoformat(),
        }, stored

    def get_pattern_insights(self, user_id, now: Optional[datetime] = None) -> List[Dict]:
        return get_pattern_insights(self.patterns.detect_patterns(user_id, now))

    def run_pattern_analysis_job(self, now: Optional[datetime] = None, delay: Optional[float] = None) -> Dict[str, int]:
        """
        Refresh suggestions for users active in the last week, skipping anyone
        analyzed in the last two hours, then sweep expired suggestions.
        """
        now = now or datetime.now()
        delay = settings.BATCH_USER_DELAY_S if delay is None else delay
        user_ids = self.users.list_recently_active_users(now - timedelta(days=ACTIVE_USER_DAYS)) if self.users else []

        processed = skipped = failed = total_suggestions = 0
        for user_id in user_ids:
            try:
                if self._recently_analyzed(user_id, now):
                    skipped += 1
                    continue
                _, stored = self._refresh_suggestions(user_id, now)
                total_suggestions += stored
                processed += 1
            except Exception as e:
                failed += 1
                logger.error(f"Pattern analysis failed for user {user_id}: {e}")
            if delay:
                time.sleep(delay)

        cleaned = self.suggestions.cleanup_expired_suggestions(now)
        logger.info(
            f"Pattern analysis job: processed {processed}/{len(user_ids)} users, "
            f"skipped {skipped}, failed {failed}, stored {total_suggestions} suggestions, "
            f"cleaned {cleaned}"
        )
        return {
            "processed_users": processed,
            "total_users": len(user_ids),
            "skipped_users": skipped,
            "failed_users": failed,
            "total_suggestions": total_suggestions,
            "cleaned_up_suggestions": cleaned,
        }

    def _recently_analyzed(self, user_id, now: datetime) -> bool:
        if self.pattern_store is None:
            return False
        last = self.pattern_store.get_last_analyzed(user_id)
        return last is not None and last >= now - REANALYZE_AFTER

    # -------------------------------------------------------------------------
    # CORRELATIONS
    # -------------------------------------------------------------------------

    def analyze_cross_correlations(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        correlations = self.correlations.detect_cross_correlations(user_id, now)
        insights = generate_correlation_insights(correlations)
        predictions = self.predictive.generate(user_id, correlations, now)

        analysis = {
            "correlations": [c.to_dict() for c in correlations],
            "insights": [i.to_dict() for i in insights],
            "predictions": [p.to_dict() for p in predictions],
            "analysis_date": now.isoformat(),
            "data_points": sum(c.data_points for c in correlations),
        }
        self.correlations.snapshot_analysis(user_id, {**analysis, "analyzed_at": now})
        return analysis

    def get_correlation_matrix(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        return get_correlation_matrix(self.correlations.detect_cross_correlations(user_id, now))

    def get_category_correlations(self, user_id, category: str, now: Optional[datetime] = None) -> List[Dict]:
        return [c.to_dict() for c in self.correlations.get_category_correlations(user_id, category, now)]

    def get_correlation_summary(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        analysis = self.analyze_cross_correlations(user_id, now)
        correlations = analysis["correlations"]
        return {
            "total_correlations": len(correlations),
            "strong_correlations": sum(1 for c in correlations if abs(c["coefficient"]) >= STRONG_CORRELATION),
            "top_correlation": correlations[0] if correlations else None,
            "insights": len(analysis["insights"]),
            "predictions": len(analysis["predictions"]),
            "data_points": analysis["data_points"],
            "last_analyzed": analysis["analysis_date"],
        }

    # -------------------------------------------------------------------------
    # HABIT RISK
    # -------------------------------------------------------------------------

    def analyze_habit_degradation_risk(self, user_id, now: Optional[datetime] = None) -> List[Dict]:
        return [p.to_dict() for p in self.risk.analyze_habit_degradation_risk(user_id, now)]

    def get_current_risk_analysis(self, user_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        predictions = self.risk.analyze_habit_degradation_risk(user_id, now)
        recent_alerts = self.alerts.get_habit_degradation_alerts(user_id)[:RECENT_HABIT_ALERTS]
        return {
            "predictions": [p.to_dict() for p in predictions],
            "recent_alerts": [a.to_dict() for a in recent_alerts],
            "risk_summary": summarize_risk(predictions),
            "last_analyzed": now.isoformat(),
        }


def build_sql_engine(db: Session, log_activities: bool = True) -> BehaviorEngine:
    """Wire every store to one SQLAlchemy session."""
    from services.storage.sql import (
        SqlActivityRepository,
        SqlActivityWriter,
        SqlCorrelationStore,
        SqlNotificationStore,
        SqlPatternStore,
        SqlPredictionStore,
        SqlSuggestionStore,
        SqlUserDirectory,
    )

    return BehaviorEngine(
        activities=SqlActivityRepository(db),
        suggestion_store=SqlSuggestionStore(db),
        notification_store=SqlNotificationStore(db),
        pattern_store=SqlPatternStore(db),
        correlation_store=SqlCorrelationStore(db),
        prediction_store=SqlPredictionStore(db),
        users=SqlUserDirectory(db),
        activity_writer=SqlActivityWriter(db) if log_activities else None,
    )
