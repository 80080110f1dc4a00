"""
APScheduler configuration for the daily database and application backup.

Manages:
- The daily backup job (fixed time of day)
- Manual "run now" triggers
"""

import logging
from uuid import uuid4
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from tuition_backup.backup.executor import perform_backup


logger = logging.getLogger(__name__)

DAILY_BACKUP_JOB_ID = 'daily_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler with the daily backup job.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 3600
    }

    timezone_name = app.config.get('SCHEDULER_TIMEZONE', 'UTC')

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone_name
    )

    hour = app.config.get('BACKUP_SCHEDULE_HOUR', 2)
    minute = app.config.get('BACKUP_SCHEDULE_MINUTE', 0)

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=CronTrigger(hour=hour, minute=minute, timezone=timezone_name),
        id=DAILY_BACKUP_JOB_ID,
        name='Daily Database and Application Backup',
        replace_existing=True
    )

    logger.info(f"Daily backup scheduled at {hour:02d}:{minute:02d} ({timezone_name})")
    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_backup_wrapper():
    """
    Run a backup inside the stored app context.

    Failures in the scheduled context are only logged (the notifier has
    already reported them); they are not retried.
    """
    try:
        logger.info("Running automated backup...")
        run = perform_backup(flask_app)
        logger.info(f"Automated backup {run.timestamp} completed successfully")
    except Exception as e:
        logger.error(f"Automated backup failed: {e}")


def trigger_backup_now() -> str:
    """
    Queue a backup to run immediately on the scheduler's worker thread.

    Returns:
        ID of the one-off scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{uuid4().hex}"

    # 1 second delay avoids racing the scheduler's wakeup
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup',
        replace_existing=False
    )

    logger.info(f"Manually triggered backup: {job_id}")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
