"""
Scheduled Habit Risk Tasks

- daily batch: score every opted-in user, persist predictions, raise alerts
- 6-hourly critical check: alert-only pass for critical risk
- daily retention sweep of read alerts
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


@celery_app.task(name="tasks.run_habit_risk_batch", bind=True)
def run_habit_risk_batch_task(self: Task) -> Dict:
    db: Session = get_db_sync()

    try:
        results = build_sql_engine(db).risk.run_batch_analysis()
        failed = [r for r in results if "error" in r]
        total_alerts = sum(r.get("alerts_generated", 0) for r in results)

        logger.info(
            f"Habit risk batch: analyzed {len(results) - len(failed)}/{len(results)} users, "
            f"{total_alerts} alerts generated",
            extra=job_context(
                "habit_risk_batch",
                total_users=len(results),
                failed_users=len(failed),
                alerts_generated=total_alerts,
            ),
        )
        if failed:
            logger.warning(f"Habit risk batch: {len(failed)} user analyses failed")

        return {
            "status": "success",
            "total_users": len(results),
            "failed_users": len(failed),
            "alerts_generated": total_alerts,
            "results": results,
        }
    except Exception as e:
        logger.error(f"Error in run_habit_risk_batch_task: {str(e)}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="tasks.run_critical_habit_check", bind=True)
def run_critical_habit_check_task(self: Task) -> Dict:
    db: Session = get_db_sync()

    try:
        results = build_sql_engine(db).risk.run_critical_check()
        total_alerts = sum(r.get("alerts_generated", 0) for r in results)
        logger.info(
            f"Critical habit check: {len(results)} users, {total_alerts} alerts generated",
            extra=job_context("critical_habit_check", total_users=len(results), alerts_generated=total_alerts),
        )
        return {
            "status": "success",
            "total_users": len(results),
            "alerts_generated": total_alerts,
            "results": results,
        }
    except Exception as e:
        logger.error(f"Error in run_critical_habit_check_task: {str(e)}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="tasks.analyze_user_habit_risk", bind=True)
def analyze_user_habit_risk_task(self: Task, user_id: str) -> Dict:
    """On-demand habit risk analysis for a single user."""
    db: Session = get_db_sync()

    try:
        predictions = build_sql_engine(db).analyze_habit_degradation_risk(user_id)
        return {"status": "success", "user_id": user_id, "predictions": predictions}
    except Exception as e:
        logger.error(f"Habit risk analysis failed for user {user_id}: {str(e)}", exc_info=True)
        return {"status": "error", "user_id": user_id, "message": str(e)}
    finally:
        db.close()


@celery_app.task(name="tasks.cleanup_old_alerts")
def cleanup_old_alerts_task() -> Dict:
    db: Session = get_db_sync()

    try:
        deleted = build_sql_engine(db).alerts.cleanup_old_alerts()
        logger.info(f"Deleted {deleted} old read alerts", extra=job_context("cleanup_old_alerts", deleted=deleted))
        return {"status": "success", "deleted": deleted}
    except Exception as e:
        logger.error(f"Alert cleanup failed: {str(e)}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()
