"""
Scheduled Pattern Tasks

Periodic refresh of habit patterns and suggestions, and the hourly sweep of
expired suggestions. Runs via Celery Beat (see celerybeat_schedule.py).
"""

from typing import Dict
from celery import Task
from sqlalchemy.orm import Session
from core.database import get_db_sync
from core.logging import job_context
from tasks import celery_app
from services.behavior_engine import build_sql_engine
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.run_pattern_analysis_job", bind=True)
def run_pattern_analysis_job_task(self: Task) -> Dict:
    """
    Refresh suggestions for every user active in the last 7 days.

    Users analyzed within the last 2 hours are skipped. One user's failure
    is logged and the job moves on.
    """
    db: Session = get_db_sync()

    try:
        summary = build_sql_engine(db).run_pattern_analysis_job()
        logger.info("Pattern analysis job finished", extra=job_context("pattern_analysis", **summary))
        return {"status": "success", **summary}
    except Exception as e:
        logger.error(f"Error in run_pattern_analysis_job_task: {str(e)}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="tasks.run_user_pattern_check", bind=True)
def run_user_pattern_check_task(self: Task, user_id: str) -> Dict:
    """On-demand pattern check for a single user."""
    db: Session = get_db_sync()

    try:
        result = build_sql_engine(db).check_patterns_and_suggest(user_id)
        return {"status": "success", "user_id": user_id, **result}
    except Exception as e:
        logger.error(f"Pattern check failed for user {user_id}: {str(e)}", exc_info=True)
        return {"status": "error", "user_id": user_id, "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="tasks.cleanup_expired_suggestions")
def cleanup_expired_suggestions_task() -> Dict:
    db: Session = get_db_sync()

    try:
        deleted = build_sql_engine(db).suggestions.cleanup_expired_suggestions()
        logger.info(f"Deleted {deleted} expired suggestions", extra=job_context("cleanup_expired_suggestions", deleted=deleted))
        return {"status": "success", "deleted": deleted}
    except Exception as e:
        logger.error(f"Suggestion cleanup failed: {str(e)}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()
