"""
SQLAlchemy-backed stores.

Each public method is its own unit of work: it commits on success and rolls
back on failure, so a failed cache write never poisons later operations that
share the session.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging
import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from models import (
    Activity,
    CorrelationAnalysis,
    Notification,
    PatternSuggestion,
    User,
    UserPatterns,
)
from services.behavior_models import (
    ActivityDraft,
    ActivityRecord,
    Alert,
    Suggestion,
    SuggestionAction,
    SuggestionPriority,
    SuggestionTiming,
    SuggestionType,
)
from services.storage.base import (
    ActivityRepository,
    ActivityWriter,
    CorrelationStore,
    NotificationStore,
    PatternStore,
    PredictionStore,
    SuggestionPurge,
    SuggestionStore,
    UserDirectory,
)

logger = logging.getLogger(__name__)


def as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


class _SqlStore:

    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


# =============================================================================
# ACTIVITY LOG
# =============================================================================

def _to_record(row: Activity) -> ActivityRecord:
    return ActivityRecord(
        user_id=row.user_id,
        category=row.category_name or "Other",
        category_id=row.category_id,
        start_time=row.start_time,
        duration_minutes=row.duration_minutes,
    )


class SqlActivityRepository(_SqlStore, ActivityRepository):

    def query_by_user_and_range(self, user_id, start, end) -> List[ActivityRecord]:
        rows = (
            self.db.query(Activity)
            .filter(
                Activity.user_id == as_uuid(user_id),
                Activity.start_time >= start,
                Activity.start_time <= end,
            )
            .order_by(Activity.start_time.asc())
            .all()
        )
        return [_to_record(row) for row in rows]

    def get_last_activity(self, user_id) -> Optional[ActivityRecord]:
        row = (
            self.db.query(Activity)
            .filter(Activity.user_id == as_uuid(user_id))
            .order_by(Activity.start_time.desc())
            .first()
        )
        return _to_record(row) if row else None


class SqlActivityWriter(_SqlStore, ActivityWriter):

    def log_activity(self, draft: ActivityDraft):
        activity = Activity(
            user_id=as_uuid(draft.user_id),
            category_name=draft.category,
            description=draft.description,
            start_time=draft.start_time,
            duration_minutes=draft.duration_minutes,
            confidence_score=draft.confidence,
        )
        self.db.add(activity)
        self._commit()
        return activity.id


# =============================================================================
# SNAPSHOT CACHES
# =============================================================================

class SqlPatternStore(_SqlStore, PatternStore):

    def upsert(self, user_id, patterns: Dict, analyzed_at: datetime) -> None:
        uid = as_uuid(user_id)
        row = self.db.get(UserPatterns, uid)
        if row is None:
            row = UserPatterns(user_id=uid)
            self.db.add(row)
        row.patterns = patterns
        row.last_analyzed = analyzed_at
        self._commit()

    def get_last_analyzed(self, user_id) -> Optional[datetime]:
        row = self.db.get(UserPatterns, as_uuid(user_id))
        return row.last_analyzed if row else None


class _AnalysisRowMixin(_SqlStore):

    def _row(self, user_id) -> CorrelationAnalysis:
        uid = as_uuid(user_id)
        row = self.db.get(CorrelationAnalysis, uid)
        if row is None:
            row = CorrelationAnalysis(
                user_id=uid,
                correlations=[],
                insights=[],
                predictions=[],
                risk_predictions=[],
                data_points=0,
            )
            self.db.add(row)
        return row


class SqlCorrelationStore(_AnalysisRowMixin, CorrelationStore):

    def upsert(self, user_id, analysis: Dict) -> None:
        row = self._row(user_id)
        row.correlations = analysis.get("correlations", [])
        row.insights = analysis.get("insights", [])
        row.predictions = analysis.get("predictions", [])
        row.data_points = analysis.get("data_points", 0)
        row.last_analyzed = analysis.get("analyzed_at")
        self._commit()


class SqlPredictionStore(_AnalysisRowMixin, PredictionStore):

    def upsert(self, user_id, predictions: List[Dict], analyzed_at: datetime) -> None:
        row = self._row(user_id)
        row.risk_predictions = predictions
        row.risk_last_analyzed = analyzed_at
        self._commit()

    def get_latest(self, user_id) -> List[Dict]:
        row = self.db.get(CorrelationAnalysis, as_uuid(user_id))
        return list(row.risk_predictions or []) if row else []


# =============================================================================
# SUGGESTIONS
# =============================================================================

def _to_suggestion(row: PatternSuggestion) -> Suggestion:
    return Suggestion(
        id=row.id,
        user_id=row.user_id,
        type=SuggestionType(row.type),
        category=row.category,
        title=row.title,
        message=row.message,
        priority=SuggestionPriority(row.priority),
        confidence=row.confidence,
        timing=SuggestionTiming(row.timing),
        action_type=SuggestionAction(row.action_type),
        created_at=row.created_at,
        expires_at=row.expires_at,
        is_read=row.is_read,
        is_acted_on=row.is_acted_on,
    )


class SqlSuggestionStore(_SqlStore, SuggestionStore):

    def delete_where(self, user_id, purge: SuggestionPurge) -> int:
        clauses = []
        if purge.created_before is not None:
            clauses.append(PatternSuggestion.created_at < purge.created_before)
        if purge.read:
            clauses.append(PatternSuggestion.is_read.is_(True))
        if purge.acted_on:
            clauses.append(PatternSuggestion.is_acted_on.is_(True))
        if not clauses:
            return 0
        deleted = (
            self.db.query(PatternSuggestion)
            .filter(PatternSuggestion.user_id == as_uuid(user_id), or_(*clauses))
            .delete(synchronize_session="fetch")
        )
        self._commit()
        return deleted

    def find_active(self, user_id, now: datetime) -> List[Suggestion]:
        rows = (
            self.db.query(PatternSuggestion)
            .filter(
                PatternSuggestion.user_id == as_uuid(user_id),
                PatternSuggestion.is_read.is_(False),
                PatternSuggestion.is_acted_on.is_(False),
                PatternSuggestion.expires_at > now,
            )
            .order_by(PatternSuggestion.created_at.desc())
            .all()
        )
        return [_to_suggestion(row) for row in rows]

    def create_many(self, suggestions: List[Suggestion]) -> int:
        for s in suggestions:
            self.db.add(PatternSuggestion(
                id=as_uuid(s.id),
                user_id=as_uuid(s.user_id),
                type=s.type.value,
                category=s.category,
                title=s.title,
                message=s.message,
                priority=s.priority.value,
                confidence=s.confidence,
                timing=s.timing.value,
                action_type=s.action_type.value,
                is_read=s.is_read,
                is_acted_on=s.is_acted_on,
                created_at=s.created_at,
                expires_at=s.expires_at,
            ))
        self._commit()
        return len(suggestions)

    def _row_query(self, user_id, suggestion_id):
        try:
            sid = as_uuid(suggestion_id)
        except ValueError:
            return None
        return self.db.query(PatternSuggestion).filter(
            PatternSuggestion.id == sid,
            PatternSuggestion.user_id == as_uuid(user_id),
        )

    def update_flags(self, user_id, suggestion_id, is_read=None, is_acted_on=None) -> bool:
        query = self._row_query(user_id, suggestion_id)
        if query is None:
            return False
        values = {}
        if is_read is not None:
            values[PatternSuggestion.is_read] = is_read
        if is_acted_on is not None:
            values[PatternSuggestion.is_acted_on] = is_acted_on
        if not values:
            return query.first() is not None
        updated = query.update(values, synchronize_session="fetch")
        self._commit()
        return updated > 0

    def get(self, user_id, suggestion_id) -> Optional[Suggestion]:
        query = self._row_query(user_id, suggestion_id)
        row = query.first() if query is not None else None
        return _to_suggestion(row) if row else None

    def delete_expired(self, now: datetime) -> int:
        deleted = (
            self.db.query(PatternSuggestion)
            .filter(PatternSuggestion.expires_at < now)
            .delete(synchronize_session="fetch")
        )
        self._commit()
        return deleted

    def list_since(self, user_id, since: datetime) -> List[Suggestion]:
        rows = (
            self.db.query(PatternSuggestion)
            .filter(
                PatternSuggestion.user_id == as_uuid(user_id),
                PatternSuggestion.created_at >= since,
            )
            .all()
        )
        return [_to_suggestion(row) for row in rows]

    def list_recent(self, user_id, limit: int) -> List[Suggestion]:
        rows = (
            self.db.query(PatternSuggestion)
            .filter(PatternSuggestion.user_id == as_uuid(user_id))
            .order_by(PatternSuggestion.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_to_suggestion(row) for row in rows]


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def _to_alert(row: Notification) -> Alert:
    return Alert(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        title=row.title,
        message=row.message,
        action_data=dict(row.action_data or {}),
        read=row.read,
        created_at=row.created_at,
    )


class SqlNotificationStore(_SqlStore, NotificationStore):

    def _filtered(self, user_id, type=None, read=None, since=None):
        query = self.db.query(Notification).filter(Notification.user_id == as_uuid(user_id))
        if type is not None:
            query = query.filter(Notification.type == type)
        if read is not None:
            query = query.filter(Notification.read.is_(read))
        if since is not None:
            query = query.filter(Notification.created_at >= since)
        return query

    def _get_row(self, user_id, alert_id) -> Optional[Notification]:
        try:
            aid = as_uuid(alert_id)
        except ValueError:
            return None
        return (
            self.db.query(Notification)
            .filter(Notification.id == aid, Notification.user_id == as_uuid(user_id))
            .first()
        )

    def create(self, alert: Alert) -> Alert:
        row = Notification(
            id=as_uuid(alert.id) if alert.id else uuid.uuid4(),
            user_id=as_uuid(alert.user_id),
            type=alert.type,
            title=alert.title,
            message=alert.message,
            action_data=dict(alert.action_data),
            read=alert.read,
            created_at=alert.created_at,
        )
        self.db.add(row)
        self._commit()
        return _to_alert(row)

    def get(self, user_id, alert_id) -> Optional[Alert]:
        row = self._get_row(user_id, alert_id)
        return _to_alert(row) if row else None

    def find(self, user_id, type=None, read=None, since=None, limit=None, offset=0) -> List[Alert]:
        query = self._filtered(user_id, type, read, since).order_by(Notification.created_at.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [_to_alert(row) for row in query.all()]

    def update(self, alert: Alert) -> Alert:
        row = self._get_row(alert.user_id, alert.id)
        if row is None:
            raise LookupError(f"notification {alert.id} disappeared during update")
        row.title = alert.title
        row.message = alert.message
        row.read = alert.read
        # Reassign so the JSON column is flagged dirty
        row.action_data = dict(alert.action_data)
        self._commit()
        return _to_alert(row)

    def mark_read_many(self, user_id, type=None) -> int:
        updated = (
            self._filtered(user_id, type=type, read=False)
            .update({Notification.read: True}, synchronize_session="fetch")
        )
        self._commit()
        return updated

    def delete(self, user_id, alert_id) -> bool:
        row = self._get_row(user_id, alert_id)
        if row is None:
            return False
        self.db.delete(row)
        self._commit()
        return True

    def delete_read_before(self, cutoff: datetime) -> int:
        deleted = (
            self.db.query(Notification)
            .filter(Notification.created_at < cutoff, Notification.read.is_(True))
            .delete(synchronize_session="fetch")
        )
        self._commit()
        return deleted

    def count(self, user_id, type=None, read=None, since=None) -> int:
        return self._filtered(user_id, type, read, since).count()


# =============================================================================
# USERS
# =============================================================================

class SqlUserDirectory(_SqlStore, UserDirectory):

    def list_opted_in_users(self) -> List[UUID]:
        rows = (
            self.db.query(User.id)
            .filter(
                User.onboarding_completed.is_(True),
                User.notifications_enabled.is_(True),
            )
            .order_by(User.created_at.asc())
            .all()
        )
        return [row.id for row in rows]

    def list_recently_active_users(self, since: datetime) -> List[UUID]:
        rows = (
            self.db.query(Activity.user_id)
            .filter(Activity.start_time >= since)
            .distinct()
            .all()
        )
        return [row.user_id for row in rows]

    def notifications_enabled(self, user_id) -> bool:
        user = self.db.get(User, as_uuid(user_id))
        return bool(user and user.notifications_enabled)
