"""
Tests for the JSON log formatter and job context fields.
"""

import json
import logging
import sys

from core.logging import JSONFormatter, job_context


def _record(msg="Habit risk batch finished", exc_info=None, **extra):
    record = logging.LogRecord(
        name="tasks.prediction_tasks",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_base_fields(self):
        payload = json.loads(JSONFormatter().format(_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "tasks.prediction_tasks"
        assert payload["message"] == "Habit risk batch finished"
        assert "job" not in payload

    def test_job_context_is_merged(self):
        record = _record(**job_context("habit_risk_batch", total_users=3, alerts_generated=1))

        payload = json.loads(JSONFormatter().format(record))

        assert payload["job"] == "habit_risk_batch"
        assert payload["total_users"] == 3
        assert payload["alerts_generated"] == 1

    def test_exception_is_included(self):
        try:
            raise RuntimeError("db down")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())

        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: db down" in payload["exception"]

    def test_non_json_values_are_stringified(self):
        from datetime import datetime

        record = _record(**job_context("pattern_analysis", finished_at=datetime(2026, 3, 18, 12, 0)))
        payload = json.loads(JSONFormatter().format(record))
        assert payload["finished_at"] == "2026-03-18 12:00:00"
