"""
Alert Manager

CRUD over user notifications plus the risk-driven parts:

- throttling: at most one alert of a type (and category, when given) per
  user per 24 hours, and none for users who turned notifications off
- habit alerts from high/critical risk predictions
- intervention plans for a habit_degradation_alert
- retention cleanup of read alerts
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import uuid

from core.config import settings
from core.exceptions import NotFoundError, ValidationError
from services.behavior_models import Alert, AlertType, Prediction, RiskLevel
from services.storage.base import NotificationStore, UserDirectory

logger = logging.getLogger(__name__)


HABIT_ALERT_HISTORY = 10
RECENT_STATS_DAYS = 7


BASE_INTERVENTIONS = [
    {
        "type": "immediate",
        "title": "Quick Win",
        "description": "Do just 5 minutes of {name} right now",
        "priority": "high",
    },
    {
        "type": "schedule",
        "title": "Schedule It",
        "description": "Block time in your calendar for {name} this week",
        "priority": "medium",
    },
    {
        "type": "environment",
        "title": "Prepare Your Space",
        "description": "Set up your environment to make {name} easier",
        "priority": "medium",
    },
]

LEVEL_INTERVENTIONS = {
    RiskLevel.CRITICAL: [
        {
            "type": "accountability",
            "title": "Get Support",
            "description": "Tell someone about your commitment to restart this habit",
            "priority": "high",
        },
        {
            "type": "reduce_friction",
            "title": "Make It Easier",
            "description": "Identify and remove barriers that are preventing you from starting",
            "priority": "high",
        },
    ],
    RiskLevel.HIGH: [
        {
            "type": "habit_stack",
            "title": "Habit Stacking",
            "description": "Link {name} to an existing strong habit",
            "priority": "medium",
        },
        {
            "type": "reminder",
            "title": "Set Reminders",
            "description": "Create visual or digital reminders for this habit",
            "priority": "medium",
        },
    ],
    RiskLevel.MEDIUM: [
        {
            "type": "review",
            "title": "Review Your Why",
            "description": "Reconnect with why {name} is important to you",
            "priority": "low",
        },
        {
            "type": "adjust",
            "title": "Adjust Expectations",
            "description": "Consider if your current approach needs modification",
            "priority": "low",
        },
    ],
}


def generate_interventions(category_name: str, risk_level: Optional[str]) -> List[Dict[str, str]]:
    name = category_name.lower()
    try:
        level = RiskLevel(risk_level)
    except ValueError:
        level = None
    templates = BASE_INTERVENTIONS + LEVEL_INTERVENTIONS.get(level, [])
    return [{**t, "description": t["description"].format(name=name)} for t in templates]


def summarize_risk(predictions: List[Prediction]) -> Dict[str, Any]:
    count = len(predictions)
    return {
        "total_categories": count,
        "critical_risk": sum(1 for p in predictions if p.risk_level == RiskLevel.CRITICAL),
        "high_risk": sum(1 for p in predictions if p.risk_level == RiskLevel.HIGH),
        "medium_risk": sum(1 for p in predictions if p.risk_level == RiskLevel.MEDIUM),
        "average_risk_score": sum(p.risk_score for p in predictions) / count if count else 0,
    }


class AlertManager:

    def __init__(self, store: NotificationStore, users: Optional[UserDirectory] = None):
        self.store = store
        self.users = users

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def get_user_alerts(
        self,
        user_id,
        type: Optional[str] = None,
        read: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Alert]:
        return self.store.find(user_id, type=type, read=read, limit=limit, offset=offset)

    def get_habit_degradation_alerts(self, user_id) -> List[Alert]:
        return self.store.find(
            user_id, type=AlertType.HABIT_DEGRADATION.value, limit=HABIT_ALERT_HISTORY
        )

    def get_alert(self, user_id, alert_id) -> Alert:
        alert = self.store.get(user_id, alert_id)
        if alert is None:
            raise NotFoundError("Alert", str(alert_id))
        return alert

    def mark_alert_as_read(self, user_id, alert_id) -> Alert:
        alert = self.get_alert(user_id, alert_id)
        alert.read = True
        return self.store.update(alert)

    def mark_all_alerts_as_read(self, user_id, type: Optional[str] = None) -> int:
        return self.store.mark_read_many(user_id, type=type)

    def delete_alert(self, user_id, alert_id) -> bool:
        if not self.store.delete(user_id, alert_id):
            raise NotFoundError("Alert", str(alert_id))
        return True

    def create_alert(
        self,
        user_id,
        title: str,
        message: str,
        type: Optional[str] = None,
        action_data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Alert:
        if not title or not message:
            raise ValidationError("Alert title and message are required", field="title" if not title else "message")
        alert = Alert(
            id=uuid.uuid4(),
            user_id=user_id,
            type=type or AlertType.CUSTOM.value,
            title=title,
            message=message,
            action_data=dict(action_data or {}),
            created_at=now or datetime.now(),
        )
        return self.store.create(alert)

    # -------------------------------------------------------------------------
    # RISK-DRIVEN ALERTS
    # -------------------------------------------------------------------------

    def should_send_alert(
        self,
        user_id,
        type: str = AlertType.HABIT_DEGRADATION.value,
        category_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        if self.users is not None and not self.users.notifications_enabled(user_id):
            return False

        now = now or datetime.now()
        since = now - timedelta(hours=settings.ALERT_THROTTLE_HOURS)
        recent = self.store.find(user_id, type=type, since=since)
        if category_id is not None:
            recent = [a for a in recent if a.action_data.get("category_id") == category_id]
        return not recent

    def create_habit_alerts(
        self,
        user_id,
        predictions: List[Prediction],
        now: Optional[datetime] = None,
    ) -> List[Alert]:
        """One habit_degradation_alert per high/critical prediction that passes the throttle."""
        now = now or datetime.now()
        created = []
        for prediction in predictions:
            if prediction.risk_level not in (RiskLevel.CRITICAL, RiskLevel.HIGH):
                continue
            if not self.should_send_alert(
                user_id, AlertType.HABIT_DEGRADATION.value, prediction.category_id, now
            ):
                logger.debug(
                    f"Throttled {prediction.risk_level.value} alert for user {user_id} "
                    f"category {prediction.category_name}"
                )
                continue
            created.append(self.create_alert(
                user_id,
                type=AlertType.HABIT_DEGRADATION.value,
                title=f"{prediction.category_name} Habit at Risk",
                message=prediction.message,
                action_data={
                    "category_id": prediction.category_id,
                    "category_name": prediction.category_name,
                    "risk_level": prediction.risk_level.value,
                    "risk_score": prediction.risk_score,
                    "recommendations": list(prediction.recommendations),
                },
                now=now,
            ))

        if created:
            logger.info(f"Created {len(created)} habit alerts for user {user_id}")
        return created

    def trigger_intervention(self, user_id, alert_id, now: Optional[datetime] = None) -> List[Dict[str, str]]:
        now = now or datetime.now()
        alert = self.get_alert(user_id, alert_id)
        if alert.type != AlertType.HABIT_DEGRADATION.value:
            raise ValidationError("Invalid alert for intervention", field="alert_id")

        category_name = alert.action_data.get("category_name") or "this habit"
        interventions = generate_interventions(category_name, alert.action_data.get("risk_level"))

        self.create_alert(
            user_id,
            type=AlertType.INTERVENTION_SUGGESTION.value,
            title=f"Action Plan: {category_name}",
            message=(
                f"Here are some strategies to get back on track with your "
                f"{category_name.lower()} habit."
            ),
            action_data={
                "original_alert_id": str(alert.id),
                "category_name": category_name,
                "interventions": interventions,
                "created_from": AlertType.HABIT_DEGRADATION.value,
            },
            now=now,
        )

        alert.read = True
        alert.action_data = {
            **alert.action_data,
            "intervention_triggered": True,
            "intervention_date": now.isoformat(),
        }
        self.store.update(alert)
        return interventions

    # -------------------------------------------------------------------------
    # STATS & RETENTION
    # -------------------------------------------------------------------------

    def get_alert_stats(self, user_id, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or datetime.now()
        return {
            "total": self.store.count(user_id),
            "unread": self.store.count(user_id, read=False),
            "habit_alerts": self.store.count(user_id, type=AlertType.HABIT_DEGRADATION.value),
            "recent_alerts": self.store.count(user_id, since=now - timedelta(days=RECENT_STATS_DAYS)),
        }

    def cleanup_old_alerts(self, days_to_keep: Optional[int] = None, now: Optional[datetime] = None) -> int:
        days_to_keep = settings.ALERT_RETENTION_DAYS if days_to_keep is None else days_to_keep
        now = now or datetime.now()
        deleted = self.store.delete_read_before(now - timedelta(days=days_to_keep))
        if deleted:
            logger.info(f"Cleaned up {deleted} read alerts older than {days_to_keep} days")
        return deleted
