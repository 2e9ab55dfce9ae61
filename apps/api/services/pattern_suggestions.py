"""
Pattern Suggestions

Turns deviations and upcoming/sequence/weekly habits into ranked candidates,
and owns the stored suggestion lifecycle:

    generate -> store (purge, dedup, expire) -> read | acted on -> purged

An active suggestion (unread, not acted on) is unique per user on
(type, category, timing). The check-then-insert in store_suggestions runs
under a per-user lock so concurrent refreshes in one process cannot both
insert the same triple.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging
import threading
import uuid
import weakref

from core.exceptions import NotFoundError
from services.behavior_models import (
    ActivityDraft,
    ActivityRecord,
    Deviation,
    DeviationType,
    PatternSet,
    Suggestion,
    SuggestionAction,
    SuggestionCandidate,
    SuggestionPriority,
    SuggestionTiming,
    SuggestionType,
    weekday_index,
)
from services.storage.base import (
    ActivityRepository,
    ActivityWriter,
    SuggestionPurge,
    SuggestionStore,
)

logger = logging.getLogger(__name__)


MAX_SUGGESTIONS = 5
UPCOMING_MIN_CONFIDENCE = 0.4
STALE_AFTER = timedelta(hours=4)
ACTED_ON_DURATION_MINUTES = 30

TTL_BY_TIMING = {
    SuggestionTiming.IMMEDIATE: timedelta(hours=4),
    SuggestionTiming.UPCOMING: timedelta(hours=6),
    SuggestionTiming.SEQUENCE: timedelta(hours=2),
    SuggestionTiming.WEEKLY: timedelta(hours=24),
}
DEFAULT_TTL = timedelta(hours=8)


def get_expiration_date(timing: Optional[SuggestionTiming], now: datetime) -> datetime:
    return now + TTL_BY_TIMING.get(timing, DEFAULT_TTL)


def rank_suggestions(items):
    """Priority high > medium > low, then confidence desc. Stable on ties."""
    return sorted(items, key=lambda s: (s.priority.rank, s.confidence), reverse=True)


# =============================================================================
# CANDIDATE GENERATION
# =============================================================================

def generate_proactive_suggestions(
    patterns: PatternSet,
    deviations: List[Deviation],
    last_activity: Optional[ActivityRecord],
    now: datetime,
) -> List[SuggestionCandidate]:
    candidates: List[SuggestionCandidate] = []
    current_hour = now.hour

    for deviation in deviations:
        if deviation.type != DeviationType.MISSED_PATTERN:
            continue
        candidates.append(SuggestionCandidate(
            type=SuggestionType.HABIT_RESUMPTION,
            priority=SuggestionPriority.HIGH,
            category=deviation.category,
            title=f"Time for {deviation.category}?",
            message=f"{deviation.message}. Would you like to log this activity now?",
            confidence=deviation.confidence or 0.0,
            timing=SuggestionTiming.IMMEDIATE,
            suggested_action=SuggestionAction.LOG_ACTIVITY,
        ))

    for pattern in patterns.daily:
        hours_ahead = pattern.hour - current_hour
        if not (0 < hours_ahead <= 2 and pattern.confidence > UPCOMING_MIN_CONFIDENCE):
            continue
        candidates.append(SuggestionCandidate(
            type=SuggestionType.UPCOMING_HABIT,
            priority=SuggestionPriority.MEDIUM,
            category=pattern.category,
            title=f"Upcoming: {pattern.category}",
            message=(
                f"You usually {pattern.category.lower()} in {hours_ahead} hour(s). "
                f"Want to prepare?"
            ),
            confidence=pattern.confidence,
            timing=SuggestionTiming.UPCOMING,
            suggested_action=SuggestionAction.PREPARE_ACTIVITY,
        ))

    if last_activity is not None:
        hours_since = (now - last_activity.start_time).total_seconds() / 3600
        for sequence in patterns.temporal:
            if sequence.from_category != last_activity.category:
                continue
            if hours_since > sequence.average_gap_hours + 1:
                continue
            candidates.append(SuggestionCandidate(
                type=SuggestionType.SEQUENCE_SUGGESTION,
                priority=SuggestionPriority.MEDIUM,
                category=sequence.to_category,
                title=f"Next up: {sequence.to_category}?",
                message=(
                    f"After {sequence.from_category}, you often do {sequence.to_category}. "
                    f"Ready for the next activity?"
                ),
                # Not clamped; counts above 10 rank first among sequences
                confidence=sequence.count / 10,
                timing=SuggestionTiming.SEQUENCE,
                suggested_action=SuggestionAction.LOG_ACTIVITY,
            ))

    today = weekday_index(now)
    deviated = {d.category for d in deviations}
    for pattern in patterns.weekly:
        if pattern.day_of_week != today or pattern.category in deviated:
            continue
        candidates.append(SuggestionCandidate(
            type=SuggestionType.WEEKLY_HABIT,
            priority=SuggestionPriority.LOW,
            category=pattern.category,
            title=f"{pattern.day_name} {pattern.category}",
            message=(
                f"You often do {pattern.category.lower()} on {pattern.day_name}s. "
                f"Don't forget!"
            ),
            confidence=pattern.occurrences / 10,
            timing=SuggestionTiming.WEEKLY,
            suggested_action=SuggestionAction.REMINDER,
        ))

    return rank_suggestions(candidates)[:MAX_SUGGESTIONS]


# =============================================================================
# LIFECYCLE
# =============================================================================

# Entries disappear once no store pass holds the lock.
_user_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_user_locks_guard = threading.Lock()


def _user_lock(user_id) -> threading.Lock:
    key = str(user_id)
    with _user_locks_guard:
        lock = _user_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _user_locks[key] = lock
        return lock


class SuggestionEngine:

    def __init__(
        self,
        store: SuggestionStore,
        activities: ActivityRepository,
        activity_writer: Optional[ActivityWriter] = None,
    ):
        self.store = store
        self.activities = activities
        self.activity_writer = activity_writer

    def generate(
        self,
        user_id,
        patterns: PatternSet,
        deviations: List[Deviation],
        now: Optional[datetime] = None,
    ) -> List[SuggestionCandidate]:
        now = now or datetime.now()
        last_activity = self.activities.get_last_activity(user_id)
        return generate_proactive_suggestions(patterns, deviations, last_activity, now)

    def get_active_suggestions(self, user_id, now: Optional[datetime] = None) -> List[Suggestion]:
        now = now or datetime.now()
        active = self.store.find_active(user_id, now)
        newest_first = sorted(active, key=lambda s: s.created_at, reverse=True)
        return rank_suggestions(newest_first)

    def recent_active_suggestions(self, user_id, now: Optional[datetime] = None) -> List[Suggestion]:
        """Active suggestions if any of them is less than an hour old, else []."""
        now = now or datetime.now()
        active = self.get_active_suggestions(user_id, now)
        if any(s.created_at > now - timedelta(hours=1) for s in active):
            return active
        return []

    def store_suggestions(
        self,
        user_id,
        candidates: List[SuggestionCandidate],
        now: Optional[datetime] = None,
    ) -> int:
        """Purge stale rows, drop duplicates of active ones, persist the rest."""
        now = now or datetime.now()

        with _user_lock(user_id):
            self.store.delete_where(
                user_id,
                SuggestionPurge(created_before=now - STALE_AFTER, read=True, acted_on=True),
            )
            active_keys = {s.dedup_key for s in self.store.find_active(user_id, now)}

            fresh = []
            for candidate in candidates:
                if candidate.dedup_key in active_keys:
                    continue
                active_keys.add(candidate.dedup_key)
                fresh.append(Suggestion(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    type=candidate.type,
                    category=candidate.category,
                    title=candidate.title,
                    message=candidate.message,
                    priority=candidate.priority,
                    confidence=candidate.confidence,
                    timing=candidate.timing,
                    action_type=candidate.suggested_action or SuggestionAction.LOG_ACTIVITY,
                    created_at=now,
                    expires_at=get_expiration_date(candidate.timing, now),
                ))

            if not fresh:
                return 0
            stored = self.store.create_many(fresh)

        logger.info(f"Stored {stored} suggestions for user {user_id}")
        return stored

    def mark_read(self, user_id, suggestion_id) -> bool:
        if not self.store.update_flags(user_id, suggestion_id, is_read=True):
            raise NotFoundError("Suggestion", str(suggestion_id))
        return True

    def mark_acted_on(self, user_id, suggestion_id) -> bool:
        if not self.store.update_flags(user_id, suggestion_id, is_read=True, is_acted_on=True):
            raise NotFoundError("Suggestion", str(suggestion_id))
        return True

    def act_on_suggestion(self, user_id, suggestion_id, now: Optional[datetime] = None) -> Optional[ActivityDraft]:
        """
        Mark a suggestion acted on. For log_activity suggestions, return the
        activity that should be logged on the user's behalf and hand it to the
        activity writer when one is configured.
        """
        now = now or datetime.now()
        suggestion = self.store.get(user_id, suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggestion", str(suggestion_id))
        self.mark_acted_on(user_id, suggestion_id)

        if suggestion.action_type != SuggestionAction.LOG_ACTIVITY:
            return None

        draft = ActivityDraft(
            user_id=user_id,
            category=suggestion.category,
            start_time=now,
            duration_minutes=ACTED_ON_DURATION_MINUTES,
            confidence=1.0,
            description=suggestion.title,
        )
        if self.activity_writer is not None:
            self.activity_writer.log_activity(draft)
        return draft

    def get_suggestion_stats(self, user_id, days: int = 7, now: Optional[datetime] = None) -> Dict:
        now = now or datetime.now()
        suggestions = self.store.list_since(user_id, now - timedelta(days=days))
        total = len(suggestions)
        acted_on = sum(1 for s in suggestions if s.is_acted_on)
        dismissed = sum(1 for s in suggestions if s.is_read and not s.is_acted_on)
        return {
            "total": total,
            "acted_on": acted_on,
            "dismissed": dismissed,
            "action_rate": round(acted_on / total * 100) if total else 0,
            "dismissal_rate": round(dismissed / total * 100) if total else 0,
            "period": f"{days} days",
        }

    def get_suggestion_history(self, user_id, limit: int = 50) -> Dict:
        suggestions = self.store.list_recent(user_id, limit)
        by_type: Dict[str, Dict[str, int]] = {}
        by_category: Dict[str, Dict[str, int]] = {}

        for s in suggestions:
            for bucket in (
                by_type.setdefault(s.type.value, {"total": 0, "acted_on": 0, "dismissed": 0}),
                by_category.setdefault(s.category, {"total": 0, "acted_on": 0, "dismissed": 0}),
            ):
                bucket["total"] += 1
                if s.is_acted_on:
                    bucket["acted_on"] += 1
                elif s.is_read:
                    bucket["dismissed"] += 1

        return {
            "suggestions": [s.to_dict() for s in suggestions],
            "analytics": {
                "by_type": by_type,
                "by_category": by_category,
                "total_suggestions": len(suggestions),
            },
        }

    def cleanup_expired_suggestions(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        deleted = self.store.delete_expired(now)
        if deleted:
            logger.info(f"Cleaned up {deleted} expired suggestions")
        return deleted
