"""
APScheduler configuration and job scheduling for dirvault.

Manages:
- The recurring backup job (Daily, Weekly or Hourly, from the Schedule section)
- Manual job triggers

The backup engine itself knows nothing about schedules; this module is the
adapter that turns a frequency and time of day into a recurring trigger.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from dirvault.settings import ConfigurationError, SCHEDULE_FREQUENCIES, load_configuration
from dirvault.backup.executor import execute_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup'

# Hourly recurrence is bounded rather than infinite
HOURLY_TRIGGER_DURATION = timedelta(days=3650)

_CRON_DAYS = {
    'Monday': 'mon',
    'Tuesday': 'tue',
    'Wednesday': 'wed',
    'Thursday': 'thu',
    'Friday': 'fri',
    'Saturday': 'sat',
    'Sunday': 'sun'
}

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': MemoryJobStore()
    }

    # One worker: runs never overlap inside this process
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

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
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def build_trigger(frequency: str, time_of_day: str, day_of_week: str = 'Sunday', tz=None):
    """
    Translate a schedule into an APScheduler trigger.

    Args:
        frequency: 'Daily', 'Weekly' or 'Hourly'
        time_of_day: 'HH:MM'; for Hourly, the first run and the minute of every run
        day_of_week: Day name, used by Weekly only
        tz: Timezone for the trigger (defaults to the scheduler's)

    Returns:
        Trigger instance

    Raises:
        ConfigurationError: If the frequency, time or day is not supported
    """
    if frequency not in SCHEDULE_FREQUENCIES:
        raise ConfigurationError(
            f"Unsupported schedule frequency: {frequency}. Valid options: {list(SCHEDULE_FREQUENCIES)}",
            'Schedule.Frequency'
        )

    try:
        hour_text, minute_text = time_of_day.split(':')
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError) as e:
        raise ConfigurationError(f"Schedule.Time must be HH:MM, got {time_of_day!r}", 'Schedule.Time') from e

    if tz is None:
        tz = scheduler.timezone if scheduler is not None else timezone.utc

    if frequency == 'Daily':
        return CronTrigger(hour=hour, minute=minute, timezone=tz)

    if frequency == 'Weekly':
        if day_of_week not in _CRON_DAYS:
            raise ConfigurationError(f"Invalid Schedule.DayOfWeek: {day_of_week}", 'Schedule.DayOfWeek')
        return CronTrigger(day_of_week=_CRON_DAYS[day_of_week], hour=hour, minute=minute, timezone=tz)

    # First run is the next occurrence of HH:MM, which may be tomorrow
    now = datetime.now(tz)
    start = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if start < now:
        start += timedelta(days=1)
    return IntervalTrigger(
        hours=1,
        start_date=start,
        end_date=start + HOURLY_TRIGGER_DURATION,
        timezone=tz
    )


def register_recurring_trigger(
    frequency: str,
    time_of_day: str,
    entrypoint: Callable,
    day_of_week: str = 'Sunday',
    job_id: str = BACKUP_JOB_ID
):
    """
    Register entrypoint to run on a recurring schedule.

    Replaces any existing job with the same id.

    Returns:
        APScheduler Job

    Raises:
        RuntimeError: If the scheduler is not initialized
        ConfigurationError: If the schedule is invalid
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    trigger = build_trigger(frequency, time_of_day, day_of_week)

    job = scheduler.add_job(
        func=entrypoint,
        trigger=trigger,
        id=job_id,
        name=f"Backup: {frequency} at {time_of_day}",
        replace_existing=True
    )

    logger.info(f"Scheduled backup job: {frequency} at {time_of_day}")
    return job


def sync_backup_schedule() -> bool:
    """
    Synchronize the recurring backup job with the configuration store.

    This function should be called:
    - After app startup
    - After the Schedule section of the configuration changes

    Returns:
        True if a recurring job is registered afterwards
    """
    global scheduler, flask_app

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    config_path = flask_app.config['BACKUP_CONFIG_FILE']

    try:
        config = load_configuration(config_path)
    except ConfigurationError as e:
        logger.error(f"Cannot schedule backups, configuration is invalid: {e}")
        _remove_backup_job()
        return False

    schedule = config.schedule
    if not schedule.enabled:
        logger.info("Backup schedule disabled")
        _remove_backup_job()
        return False

    register_recurring_trigger(
        schedule.frequency,
        schedule.time,
        _execute_backup_wrapper,
        day_of_week=schedule.day_of_week
    )
    return True


def _remove_backup_job():
    global scheduler

    if scheduler.get_job(BACKUP_JOB_ID) is not None:
        scheduler.remove_job(BACKUP_JOB_ID)
        logger.info("Removed scheduled backup job")


def _execute_backup_wrapper():
    """
    Wrapper function for executing backups in scheduler context.

    Runs within the stored Flask app's context so configuration is available.
    """
    global flask_app

    with flask_app.app_context():
        config_path = flask_app.config['BACKUP_CONFIG_FILE']
        logger.info(f"Scheduler executing backup for {config_path}")

        result = execute_backup(
            config_path,
            progress_interval=flask_app.config.get('PROGRESS_INTERVAL_SECONDS', 30)
        )

        if result.exit_code == 0:
            logger.info(f"Scheduled backup completed with status: {result.status.value}")
        else:
            logger.error(f"Scheduled backup failed: {result.error}")

        return result


def trigger_backup_now():
    """
    Manually trigger a backup immediately.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # 1 second delay avoids racing the caller's response
    now = datetime.now(timezone.utc)
    job = scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_{int(now.timestamp())}",
        name="Manual backup",
        replace_existing=False
    )

    logger.info("Manually triggered backup")
    return job


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

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
    """Check if scheduler is running."""
    global scheduler

    return scheduler is not None and scheduler.running
