"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

from core.config import settings

# Schedule configuration
beat_schedule = {
    # Refresh patterns and suggestions for users active in the last week
    'pattern-analysis': {
        'task': 'tasks.run_pattern_analysis_job',
        'schedule': crontab(minute=0, hour='*/2'),
    },
    'cleanup-expired-suggestions': {
        'task': 'tasks.cleanup_expired_suggestions',
        'schedule': crontab(minute=30),  # hourly
    },
    # Daily habit degradation analysis at 9 AM
    'habit-risk-batch': {
        'task': 'tasks.run_habit_risk_batch',
        'schedule': crontab(hour=9, minute=0),
    },
    'cleanup-old-alerts': {
        'task': 'tasks.cleanup_old_alerts',
        'schedule': crontab(hour=3, minute=30),
    },
}

if settings.CRITICAL_CHECK_ENABLED:
    beat_schedule['critical-habit-check'] = {
        'task': 'tasks.run_critical_habit_check',
        'schedule': crontab(minute=0, hour='*/6'),
    }
