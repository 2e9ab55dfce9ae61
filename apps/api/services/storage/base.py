"""
Storage interfaces for the analytics engine.

The engine never talks to a database directly. Each component receives the
repositories it needs at construction time:

- ActivityRepository: read-only query surface over the activity log
- PatternStore / CorrelationStore / PredictionStore: snapshot caches
- SuggestionStore / NotificationStore: the only shared mutable state
- UserDirectory: opt-in flags used by batch jobs and alert throttling
- ActivityWriter: logs an activity when a suggestion is acted on

Snapshot stores are caches. Writes to them go through write_cache(), which
reports failure as a CacheWriteResult instead of raising.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from services.behavior_models import (
    ActivityDraft,
    ActivityRecord,
    Alert,
    CacheWriteResult,
    Suggestion,
)

logger = logging.getLogger(__name__)


class ActivityRepository(ABC):

    @abstractmethod
    def query_by_user_and_range(
        self, user_id: Any, start: datetime, end: datetime
    ) -> List[ActivityRecord]:
        """Activities with start <= start_time <= end, ordered by start_time."""

    @abstractmethod
    def get_last_activity(self, user_id: Any) -> Optional[ActivityRecord]:
        """Most recent activity of the user, if any."""


class ActivityWriter(ABC):

    @abstractmethod
    def log_activity(self, draft: ActivityDraft) -> Any:
        """Create an activity from a draft. Returns the new activity id."""


class PatternStore(ABC):

    @abstractmethod
    def upsert(self, user_id: Any, patterns: Dict, analyzed_at: datetime) -> None:
        pass

    @abstractmethod
    def get_last_analyzed(self, user_id: Any) -> Optional[datetime]:
        pass


@dataclass
class SuggestionPurge:
    """
    Filter for SuggestionStore.delete_where.

    A row matches when ANY enabled clause matches (created before the cutoff,
    already read, or already acted on).
    """
    created_before: Optional[datetime] = None
    read: bool = True
    acted_on: bool = True

    def matches(self, suggestion: Suggestion) -> bool:
        if self.created_before is not None and suggestion.created_at < self.created_before:
            return True
        if self.read and suggestion.is_read:
            return True
        if self.acted_on and suggestion.is_acted_on:
            return True
        return False


class SuggestionStore(ABC):

    @abstractmethod
    def delete_where(self, user_id: Any, purge: SuggestionPurge) -> int:
        pass

    @abstractmethod
    def find_active(self, user_id: Any, now: datetime) -> List[Suggestion]:
        """Unread, not acted on, not expired."""

    @abstractmethod
    def create_many(self, suggestions: List[Suggestion]) -> int:
        pass

    @abstractmethod
    def update_flags(
        self,
        user_id: Any,
        suggestion_id: Any,
        is_read: Optional[bool] = None,
        is_acted_on: Optional[bool] = None,
    ) -> bool:
        """Returns False when no suggestion with that id belongs to the user."""

    @abstractmethod
    def get(self, user_id: Any, suggestion_id: Any) -> Optional[Suggestion]:
        pass

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        """Global sweep of rows whose expires_at has passed."""

    @abstractmethod
    def list_since(self, user_id: Any, since: datetime) -> List[Suggestion]:
        pass

    @abstractmethod
    def list_recent(self, user_id: Any, limit: int) -> List[Suggestion]:
        """Newest first."""


class CorrelationStore(ABC):

    @abstractmethod
    def upsert(self, user_id: Any, analysis: Dict) -> None:
        pass


class PredictionStore(ABC):

    @abstractmethod
    def upsert(self, user_id: Any, predictions: List[Dict], analyzed_at: datetime) -> None:
        pass

    @abstractmethod
    def get_latest(self, user_id: Any) -> List[Dict]:
        pass


class NotificationStore(ABC):

    @abstractmethod
    def create(self, alert: Alert) -> Alert:
        pass

    @abstractmethod
    def get(self, user_id: Any, alert_id: Any) -> Optional[Alert]:
        pass

    @abstractmethod
    def find(
        self,
        user_id: Any,
        type: Optional[str] = None,
        read: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Alert]:
        """Newest first."""

    @abstractmethod
    def update(self, alert: Alert) -> Alert:
        pass

    @abstractmethod
    def mark_read_many(self, user_id: Any, type: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def delete(self, user_id: Any, alert_id: Any) -> bool:
        pass

    @abstractmethod
    def delete_read_before(self, cutoff: datetime) -> int:
        """Global retention sweep of read alerts."""

    @abstractmethod
    def count(
        self,
        user_id: Any,
        type: Optional[str] = None,
        read: Optional[bool] = None,
        since: Optional[datetime] = None,
    ) -> int:
        pass


class UserDirectory(ABC):

    @abstractmethod
    def list_opted_in_users(self) -> List[Any]:
        """Onboarded users with notifications enabled."""

    @abstractmethod
    def list_recently_active_users(self, since: datetime) -> List[Any]:
        pass

    @abstractmethod
    def notifications_enabled(self, user_id: Any) -> bool:
        pass


def write_cache(label: str, write: Callable[[], None]) -> CacheWriteResult:
    """Run a snapshot write; log and report failure instead of raising."""
    try:
        write()
    except Exception as e:
        logger.warning(f"{label} snapshot write failed: {e}")
        return CacheWriteResult(ok=False, error=str(e))
    return CacheWriteResult(ok=True)
