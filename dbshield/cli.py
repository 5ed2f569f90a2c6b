"""
Command line interface - target management and backup execution.

Commands are registered on the Flask CLI, e.g. ``flask --app dbshield targets list``
or, once installed, ``dbshield targets list``.
"""

import logging
import os
import re
import signal
import threading

import click
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from dbshield import db
from dbshield.backup.retention import RetentionManager
from dbshield.backup.schedule import InvalidScheduleError, parse_schedule, schedule_preset
from dbshield.backup.storage import ArtifactStore, StorageError
from dbshield.backup.targets import ConfigurationError, find_target, load_targets
from dbshield.models import DatabaseKind, Target
from dbshield.utils.crypto import get_secret_cipher


logger = logging.getLogger(__name__)

targets_cli = AppGroup('targets', help='Manage backup targets.')
backup_cli = AppGroup('backup', help='Run backups.')

NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')
# Leaves room for the '_YYYYmmdd_HHMMSS_NNN.sql' artifact suffix within a 255 byte filename
MAX_NAME_LENGTH = 231
PRESETS = ['minutely', 'hourly', 'daily', 'weekly', 'monthly']


def _resolve_schedule(schedule, preset, at_hour, on_day):
    """Turn the schedule options into a validated cron expression (or None)."""
    if schedule is not None:
        if schedule.lower() == 'none':
            return None
        try:
            parse_schedule(schedule)
        except InvalidScheduleError as e:
            raise click.BadParameter(str(e), param_hint='--schedule')
        return schedule

    if preset is not None:
        try:
            return schedule_preset(preset, at_hour, on_day)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--preset')

    return None


def _get_target_or_fail(query: str) -> Target:
    target = find_target(query)
    if target is None:
        raise click.ClickException(f"Database configuration not found: '{query}'")
    return target


def _validate_name(name: str) -> str:
    if not NAME_PATTERN.match(name):
        raise click.BadParameter(
            "Name may only contain letters, digits, '.', '_' and '-'",
            param_hint='NAME'
        )
    if len(name) > MAX_NAME_LENGTH:
        raise click.BadParameter(
            f"Name must be at most {MAX_NAME_LENGTH} characters",
            param_hint='NAME'
        )
    return name


@targets_cli.command('add')
@click.argument('name')
@click.option('--kind', type=click.Choice(DatabaseKind.values()), default=DatabaseKind.MARIADB.value,
              show_default=True, help='Database type.')
@click.option('--host', default='localhost', show_default=True)
@click.option('--port', type=int, help='Defaults to 3306 (mariadb) or 5432 (postgresql).')
@click.option('--user', required=True)
@click.option('--password', default=None, help='Database password (stored encrypted).')
@click.option('--database', required=True, help='Database name.')
@click.option('--output-dir', default=None, help='Directory for backups.')
@click.option('--retention', type=click.IntRange(min=0), default=5, show_default=True,
              help='Number of backups to keep.')
@click.option('--schedule', default=None, help="Cron expression, e.g. '0 0 * * * *', or 'none'.")
@click.option('--preset', type=click.Choice(PRESETS), default=None, help='Schedule preset.')
@click.option('--at-hour', type=click.IntRange(0, 23), default=0, show_default=True,
              help='Hour for daily, weekly and monthly presets.')
@click.option('--on-day', default=None, help='Weekday (weekly) or day of month (monthly).')
def add_target(name, kind, host, port, user, password, database, output_dir, retention,
               schedule, preset, at_hour, on_day):
    """Add a new database configuration."""
    _validate_name(name)

    if Target.query.filter_by(name=name).first():
        raise click.ClickException(f"Target name already exists: {name}")

    if schedule is None and preset is None:
        preset = 'hourly'
    schedule_cron = _resolve_schedule(schedule, preset, at_hour, on_day)

    target = Target(
        name=name,
        db_kind=kind,
        host=host,
        port=port or DatabaseKind(kind).default_port,
        user=user,
        database=database,
        output_dir=output_dir or os.path.join(current_app.config['DEFAULT_OUTPUT_DIR'], name),
        retention_count=retention,
        schedule_cron=schedule_cron,
        enabled=True
    )
    if password:
        target.password_encrypted = get_secret_cipher(current_app).encrypt(password)

    db.session.add(target)
    db.session.commit()

    click.echo(f"Configuration saved successfully! ({name}, schedule: {schedule_cron or 'None'})")


@targets_cli.command('list')
def list_targets():
    """List all database configurations."""
    targets = Target.query.order_by(Target.id).all()
    if not targets:
        click.echo("No databases configured.")
        return

    header = ['ID', 'Name', 'Type', 'Host', 'Database', 'Schedule', 'Retention', 'Status', 'Last Backup']
    rows = []
    for position, target in enumerate(targets, start=1):
        try:
            latest = ArtifactStore(target.output_dir, target.name).latest_artifact()
        except StorageError:
            latest = None

        rows.append([
            str(position),
            target.name,
            target.db_kind,
            target.host,
            target.database,
            target.schedule_cron or 'None',
            str(target.retention_count),
            'Enabled' if target.enabled else 'Disabled',
            latest.name if latest else 'Never'
        ])

    widths = [max(len(row[i]) for row in [header] + rows) for i in range(len(header))]
    for row in [header] + rows:
        click.echo('  '.join(value.ljust(width) for value, width in zip(row, widths)).rstrip())


@targets_cli.command('edit')
@click.argument('query')
@click.option('--name', default=None)
@click.option('--host', default=None)
@click.option('--port', type=int, default=None)
@click.option('--user', default=None)
@click.option('--password', default=None, help='New password.')
@click.option('--clear-password', is_flag=True, help='Remove the stored password.')
@click.option('--database', default=None)
@click.option('--output-dir', default=None)
@click.option('--retention', type=click.IntRange(min=0), default=None)
@click.option('--schedule', default=None, help="Cron expression or 'none'.")
@click.option('--preset', type=click.Choice(PRESETS), default=None)
@click.option('--at-hour', type=click.IntRange(0, 23), default=0)
@click.option('--on-day', default=None)
def edit_target(query, name, host, port, user, password, clear_password, database, output_dir,
                retention, schedule, preset, at_hour, on_day):
    """Edit an existing database configuration (by ID or name)."""
    target = _get_target_or_fail(query)

    if name is not None and name != target.name:
        _validate_name(name)
        if Target.query.filter_by(name=name).first():
            raise click.ClickException(f"Target name already exists: {name}")
        target.name = name

    if host is not None:
        target.host = host
    if port is not None:
        target.port = port
    if user is not None:
        target.user = user
    if database is not None:
        target.database = database
    if output_dir is not None:
        target.output_dir = output_dir
    if retention is not None:
        target.retention_count = retention

    if clear_password:
        target.password_encrypted = None
    elif password:
        target.password_encrypted = get_secret_cipher(current_app).encrypt(password)

    if schedule is not None or preset is not None:
        target.schedule_cron = _resolve_schedule(schedule, preset, at_hour, on_day)

    db.session.commit()
    click.echo("Configuration updated successfully!")


@targets_cli.command('delete')
@click.argument('query')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation.')
def delete_target(query, yes):
    """Delete a database configuration (backups on disk are kept)."""
    target = _get_target_or_fail(query)

    if not yes and not click.confirm(f"Are you sure you want to delete '{target.name}'?"):
        click.echo("Deletion cancelled.")
        return

    db.session.delete(target)
    db.session.commit()
    click.echo("Configuration deleted.")


def _set_enabled(query: str, enabled: bool):
    target = _get_target_or_fail(query)
    target.enabled = enabled
    db.session.commit()

    state = 'Enabled' if enabled else 'Disabled'
    current_app.logger.info(f"{state} backup for database: {target.name}")
    click.echo(f"{state} backup for database: {target.name}")


@targets_cli.command('enable')
@click.argument('query')
def enable_target(query):
    """Enable a database configuration."""
    _set_enabled(query, True)


@targets_cli.command('disable')
@click.argument('query')
def disable_target(query):
    """Disable a database configuration."""
    _set_enabled(query, False)


@backup_cli.command('run')
@click.argument('query', required=False)
def run_backups(query):
    """Run backups immediately for all enabled databases (or one, by ID or name)."""
    from dbshield.scheduler import run_all_now

    name = None
    if query is not None:
        name = _get_target_or_fail(query).name
    elif Target.query.count() == 0:
        current_app.logger.warning("No databases configured. Run `targets add` first.")
        return

    try:
        results = run_all_now(current_app, name=name)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    failed = 0
    for result in results:
        if result.status == 'success':
            click.echo(f"{result.target_name}: backup created at {result.artifact_path}")
        elif result.status == 'duplicate':
            click.echo(f"{result.target_name}: identical to previous backup, not kept")
        else:
            failed += 1
            click.echo(f"{result.target_name}: FAILED - {result.error}", err=True)

    if failed:
        raise SystemExit(1)


@backup_cli.command('prune')
def prune_backups():
    """Apply retention counts to all targets without taking new backups."""
    try:
        targets = load_targets()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    summary = RetentionManager().rotate_all(targets)
    click.echo(f"Deleted {summary['deleted']} backup(s) across {summary['targets_processed']} target(s)")
    for error in summary['errors']:
        click.echo(error, err=True)


@backup_cli.command('daemon')
def run_daemon_command():
    """Run continuously, backing up databases on their schedules."""
    from dbshield.scheduler import run_daemon

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    run_daemon(current_app._get_current_object(), stop_event)


def _create_app():
    from dbshield import create_app
    return create_app()


@click.group(cls=FlaskGroup, create_app=_create_app, add_default_commands=False)
def main():
    """DB Shield - scheduled database backups."""
