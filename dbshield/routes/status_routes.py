"""
Status routes - read-only overview of targets and the scheduler.
"""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from dbshield.backup.schedule import InvalidScheduleError, upcoming_firing
from dbshield.backup.storage import ArtifactStore, StorageError
from dbshield.models import Target
from dbshield.scheduler import fire_tracker, get_scheduler_diagnostics


bp = Blueprint('status', __name__, url_prefix='/api/status')


def _next_run(target: Target, now: datetime):
    if not target.enabled or not target.schedule_cron:
        return None
    try:
        next_run = upcoming_firing(target.schedule_cron, now, current_app.config['SCHEDULER_TIMEZONE'])
    except InvalidScheduleError:
        return 'invalid schedule'
    return next_run.isoformat() if next_run else None


@bp.route('/', methods=['GET'])
def get_status():
    """
    Get scheduler state and a summary of every target.

    Returns:
        JSON with:
        - scheduler: scheduler diagnostics
        - targets: per-target summary (no credentials)
    """
    now = datetime.now(timezone.utc)
    targets_data = []

    for target in Target.query.order_by(Target.id).all():
        try:
            artifacts = ArtifactStore(target.output_dir, target.name).list_artifacts()
        except StorageError:
            artifacts = []

        last_fired = fire_tracker.last_fired(target.name)

        targets_data.append({
            'name': target.name,
            'kind': target.db_kind,
            'host': target.host,
            'database': target.database,
            'schedule_cron': target.schedule_cron,
            'enabled': target.enabled,
            'retention_count': target.retention_count,
            'backup_count': len(artifacts),
            'last_backup': artifacts[-1].name if artifacts else None,
            'last_fired': last_fired.isoformat() if last_fired else None,
            'next_run': _next_run(target, now)
        })

    return jsonify({
        'scheduler': get_scheduler_diagnostics(),
        'targets': targets_data
    })
