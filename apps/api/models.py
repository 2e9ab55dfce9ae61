from sqlalchemy import Column, Boolean, Float, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.types import JSON
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """
    Minimal user row owned by the auth service.

    The analytics engine only reads the opt-in flags used by batch jobs and
    alert throttling.
    """
    __tablename__ = "app_user"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=True)
    name = Column(Text, nullable=True)
    onboarding_completed = Column(Boolean, default=False, nullable=False)
    notifications_enabled = Column(Boolean, default=True, nullable=False)


class Activity(Base):
    """
    One logged activity.

    Created by the activity service (manual entry, NL parsing, or acting on a
    suggestion). Read-only to the analytics engine.
    """
    __tablename__ = "activity"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), nullable=False, index=True)
    # Resolved display name of the built-in or custom category
    category_id = Column(Text, nullable=True)
    category_name = Column(Text, nullable=False, default="Other")
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)  # user wall-clock time
    duration_minutes = Column(Integer, nullable=True)
    confidence_score = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_activity_user_start", "user_id", "start_time"),
    )


class UserPatterns(Base):
    """Cached pattern snapshot. Derived state; safe to drop at any time."""
    __tablename__ = "user_patterns"

    user_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), primary_key=True)
    patterns = Column(JSONType, nullable=False, default=dict)
    last_analyzed = Column(DateTime, nullable=False)


class PatternSuggestion(Base):
    """
    An actionable nudge produced by the suggestion engine.

    Lifecycle:
        created -> read (dismissed) or acted on -> purged on the next store pass.
        Unread rows past expires_at are removed by the hourly cleanup job.
    """
    __tablename__ = "pattern_suggestion"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), nullable=False, index=True)
    type = Column(Text, nullable=False)
    category = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    timing = Column(Text, nullable=False)
    action_type = Column(Text, nullable=False, default="log_activity")
    is_read = Column(Boolean, default=False, nullable=False)
    is_acted_on = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_pattern_suggestion_dedup", "user_id", "type", "category", "timing"),
    )


class CorrelationAnalysis(Base):
    """
    Per-user snapshot of the latest correlation analysis and habit-risk
    predictions. Both halves are caches and are overwritten independently.
    """
    __tablename__ = "correlation_analysis"

    user_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), primary_key=True)
    correlations = Column(JSONType, nullable=False, default=list)
    insights = Column(JSONType, nullable=False, default=list)
    predictions = Column(JSONType, nullable=False, default=list)
    risk_predictions = Column(JSONType, nullable=False, default=list)
    data_points = Column(Integer, default=0, nullable=False)
    last_analyzed = Column(DateTime, nullable=True)
    risk_last_analyzed = Column(DateTime, nullable=True)


class Notification(Base):
    """User-facing alert. habit_degradation_alert rows come from risk scoring."""
    __tablename__ = "notification"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), nullable=False, index=True)
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    action_data = Column(JSONType, nullable=False, default=dict)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_notification_user_type_created", "user_id", "type", "created_at"),
    )
