"""
APScheduler configuration and the backup orchestration loop for DB Shield.

Manages:
- The polling job that fires scheduled backups when they are due
- Per-target bookkeeping that prevents firing the same due instant twice
- One-shot runs over all enabled targets
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dbshield.backup.dumpers import DumpRunner
from dbshield.backup.executor import BackupResult, BackupSettings, run_backup
from dbshield.backup.schedule import InvalidScheduleError, due_instant
from dbshield.backup.targets import ConfigurationError, load_targets

logger = logging.getLogger(__name__)

POLL_JOB_ID = 'poll_targets'


class FireTracker:
    """
    In-memory record of the last due instant serviced per target.

    Lives for the duration of the process only; a restart starts with an
    empty table.
    """

    def __init__(self):
        self._fired: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def should_fire(self, target_name: str, due: datetime) -> bool:
        """Return False if an instant >= ``due`` was already serviced for the target."""
        with self._lock:
            last = self._fired.get(target_name)
        return last is None or last < due

    def mark_fired(self, target_name: str, due: datetime):
        """Record ``due`` as the last serviced instant, replacing any prior value."""
        with self._lock:
            self._fired[target_name] = due

    def last_fired(self, target_name: str) -> Optional[datetime]:
        with self._lock:
            return self._fired.get(target_name)

    def snapshot(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._fired)

    def clear(self):
        with self._lock:
            self._fired.clear()


# Global scheduler instance, Flask app reference and loop state
scheduler = None
flask_app = None
fire_tracker = FireTracker()
dump_runner = None


def _settings(app) -> BackupSettings:
    return BackupSettings.from_config(app.config)


def poll_targets(app, now: datetime = None, runner: DumpRunner = None) -> Dict[str, list]:
    """
    Run one tick of the orchestration loop.

    Reloads targets, computes the due instant of every enabled, scheduled
    target and runs the backup pipeline for those not yet serviced.

    Args:
        app: Flask app instance (the call must run inside its app context)
        now: Current time (defaults to the wall clock, UTC)
        runner: DumpRunner used for dumps

    Returns:
        Dict with 'fired', 'skipped' and 'invalid' target names and 'results'
    """
    now = now or datetime.now(timezone.utc)
    lookback = app.config['LOOKBACK_SECONDS']
    tz = app.config['SCHEDULER_TIMEZONE']
    settings = _settings(app)

    summary = {'fired': [], 'skipped': [], 'invalid': [], 'results': []}

    try:
        targets = load_targets(enabled_only=True)
    except ConfigurationError as e:
        logger.error(f"Config error: {e}")
        return summary

    for target in targets:
        if not target.schedule:
            continue

        try:
            due = due_instant(target.schedule, now, lookback, tz)
        except InvalidScheduleError as e:
            logger.warning(f"Skipping {target.name}: {e}")
            summary['invalid'].append(target.name)
            continue

        if due is None:
            continue

        if not fire_tracker.should_fire(target.name, due):
            logger.debug(f"Already serviced {target.name} for {due.isoformat()}")
            summary['skipped'].append(target.name)
            continue

        logger.info(f"Executing scheduled backup for {target.name} (due {due.isoformat()})")
        try:
            result = run_backup(target, settings, runner)
        except Exception as e:
            logger.exception(f"Unexpected error while backing up {target.name}: {e}")
            result = BackupResult(target.name, 'failed', error=str(e))

        fire_tracker.mark_fired(target.name, due)
        summary['fired'].append(target.name)
        summary['results'].append(result)

    return summary


def run_all_now(app, name: str = None, runner: DumpRunner = None) -> List[BackupResult]:
    """
    Back up every enabled target immediately, ignoring schedules.

    Does not consult or update the fire tracker.

    Args:
        app: Flask app instance (the call must run inside its app context)
        name: Only run the target with this name
        runner: DumpRunner used for dumps

    Returns:
        List of BackupResult, one per target run

    Raises:
        ConfigurationError: If targets cannot be loaded
    """
    settings = _settings(app)
    results = []

    for target in load_targets(enabled_only=name is None):
        if name is not None and target.name != name:
            continue
        results.append(run_backup(target, settings, runner))

    return results


def _poll_wrapper():
    """Run a tick inside the app context from the scheduler thread."""
    global flask_app, dump_runner

    with flask_app.app_context():
        try:
            summary = poll_targets(flask_app, runner=dump_runner)
            if summary['fired']:
                logger.info(f"Tick complete, fired: {', '.join(summary['fired'])}")
        except Exception as e:
            logger.exception(f"Scheduler tick failed: {e}")


def init_scheduler(app):
    """
    Initialize and configure APScheduler with the polling job.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app, dump_runner

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app
    dump_runner = DumpRunner(timeout=_settings(app).timeout_seconds)

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine missed ticks into one
        'max_instances': 1,  # Never overlap two ticks
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config['SCHEDULER_TIMEZONE']
    )

    scheduler.add_job(
        func=_poll_wrapper,
        trigger=IntervalTrigger(seconds=app.config['POLL_INTERVAL_SECONDS']),
        id=POLL_JOB_ID,
        name='Poll backup targets',
        replace_existing=True
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
        logger.info(
            f"Scheduler started (poll every {flask_app.config['POLL_INTERVAL_SECONDS']}s, "
            f"lookback {flask_app.config['LOOKBACK_SECONDS']}s)"
        )
    else:
        logger.info("Scheduler already running")


def stop_scheduler(wait: bool = True):
    """
    Stop the APScheduler.

    Any dump in progress is terminated; its partial file is cleaned up by
    the executor.
    """
    global scheduler, dump_runner

    if scheduler and scheduler.running:
        if dump_runner is not None:
            dump_runner.cancel()
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")


def reset_scheduler():
    """Forget the scheduler instance and the fire records."""
    global scheduler, flask_app, dump_runner

    scheduler = None
    flask_app = None
    dump_runner = None
    fire_tracker.clear()


def run_daemon(app, stop_event: threading.Event):
    """
    Run the orchestration loop in the foreground until ``stop_event`` is set.

    Args:
        app: Flask app instance
        stop_event: Set by a signal handler to request shutdown
    """
    logger.info("Starting daemon mode...")
    init_scheduler(app)
    start_scheduler()
    try:
        while not stop_event.is_set():
            stop_event.wait(timeout=1)
    finally:
        logger.info("Shutdown requested, stopping scheduler")
        stop_scheduler()


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running


def get_scheduler_diagnostics() -> dict:
    """
    Get scheduler state for troubleshooting.

    Returns:
        Dict with scheduler state, poll job and fire records
    """
    fired = {name: instant.isoformat() for name, instant in fire_tracker.snapshot().items()}

    if scheduler is None:
        return {
            'initialized': False,
            'running': False,
            'fire_records': fired
        }

    job = scheduler.get_job(POLL_JOB_ID)
    next_poll = job.next_run_time if job else None

    return {
        'initialized': True,
        'running': scheduler.running,
        'poll_interval_seconds': flask_app.config['POLL_INTERVAL_SECONDS'],
        'lookback_seconds': flask_app.config['LOOKBACK_SECONDS'],
        'next_poll': next_poll.isoformat() if next_poll else None,
        'fire_records': fired
    }
