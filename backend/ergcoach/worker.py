"""Celery worker for async session report persistence."""

import json
import logging
import os
from datetime import datetime
from typing import Dict

from celery import Celery

from ergcoach.config import get_settings
from ergcoach.schemas.session import SessionReport

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "ergcoach",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
)


def report_path(report: SessionReport) -> str:
    """File name for a report: session id and generation time."""
    session = report.session_id or "session"
    stamp = report.generated_at.strftime("%Y%m%dT%H%M%S")
    return os.path.join(settings.report_dir, f"{session}_{stamp}.json")


def write_report(report: SessionReport) -> str:
    os.makedirs(settings.report_dir, exist_ok=True)
    path = report_path(report)
    with open(path, "w") as f:
        json.dump(report.model_dump(mode="json"), f, indent=2)
    return path


@celery_app.task(bind=True, name="generate_session_report")
def generate_session_report_task(self, report_data: Dict):
    """
    Persist a session report.

    The report is built on the per-frame path and arrives here as a JSON
    snapshot, so nothing in this task touches live session state.
    """
    session_id = report_data.get("session_id")
    logger.info(f"Saving report for session {session_id}")

    try:
        report = SessionReport.model_validate(report_data)
        path = write_report(report)

        logger.info(
            f"Report saved for session {session_id}: {report.stroke_count} strokes, "
            f"technical score {report.technical_score}% ({path})"
        )

        return {
            "session_id": session_id,
            "path": path,
            "stroke_count": report.stroke_count,
            "technical_score": report.technical_score,
            "saved_at": datetime.utcnow().isoformat(),
        }

    except Exception as e:
        logger.exception(f"Error saving report for session {session_id}: {e}")
        raise


def dispatch_session_report(report: SessionReport) -> None:
    """Queue a report for persistence."""
    generate_session_report_task.delay(report.model_dump(mode="json"))
