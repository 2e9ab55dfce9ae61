# Storage layer for the analytics engine.
#
# base.py holds the abstract stores the services depend on; sql.py holds the
# SQLAlchemy implementations over models.py. Tests swap in in-memory fakes.

from .base import (
    ActivityRepository,
    ActivityWriter,
    CorrelationStore,
    NotificationStore,
    PatternStore,
    PredictionStore,
    SuggestionPurge,
    SuggestionStore,
    UserDirectory,
    write_cache,
)

__all__ = [
    'ActivityRepository',
    'ActivityWriter',
    'CorrelationStore',
    'NotificationStore',
    'PatternStore',
    'PredictionStore',
    'SuggestionPurge',
    'SuggestionStore',
    'UserDirectory',
    'write_cache',
]
