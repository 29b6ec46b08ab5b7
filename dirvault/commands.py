"""
Command line entry points.

Registered on the Flask CLI as the `backup` group:
    flask --app dirvault backup run [--config PATH]
    flask --app dirvault backup schedule

The `dirvault` console script exposes the same commands. This is also the
entrypoint a platform scheduler (cron, systemd timer, Task Scheduler) invokes.
"""

import sys

import click
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from dirvault.backup.executor import execute_backup
from dirvault.scheduler import build_trigger
from dirvault.settings import ConfigurationError, load_configuration


backup_cli = AppGroup('backup', help='Run and inspect backups.')


def _print_progress(elapsed_seconds: float):
    click.echo(f"... still writing ({elapsed_seconds:.0f}s)")


@backup_cli.command('run')
@click.option('--config', 'config_path', default=None, help='Configuration file (defaults to BACKUP_CONFIG_FILE).')
def run_command(config_path):
    """Run one backup and exit with 0 on Success/NoChanges, 1 on failure."""
    config_path = config_path or current_app.config['BACKUP_CONFIG_FILE']

    result = execute_backup(
        config_path,
        progress_callback=_print_progress,
        progress_interval=current_app.config.get('PROGRESS_INTERVAL_SECONDS', 30)
    )

    click.echo(f"Status: {result.status.value}")
    if result.artifact is not None:
        click.echo(f"Artifact: {result.artifact.path}")
    click.echo(f"Files written: {result.files_written} ({result.bytes_written} bytes)")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if result.error is not None:
        click.echo(f"Error ({result.error_type}): {result.error}", err=True)

    sys.exit(result.exit_code)


@backup_cli.command('schedule')
@click.option('--config', 'config_path', default=None, help='Configuration file (defaults to BACKUP_CONFIG_FILE).')
def schedule_command(config_path):
    """Validate and show the configured recurrence."""
    config_path = config_path or current_app.config['BACKUP_CONFIG_FILE']

    try:
        schedule = load_configuration(config_path).schedule
        trigger = build_trigger(schedule.frequency, schedule.time, schedule.day_of_week)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    state = 'enabled' if schedule.enabled else 'disabled'
    click.echo(f"Schedule ({state}): {schedule.frequency} at {schedule.time}")
    click.echo(f"Trigger: {trigger}")


def main():
    """Console script entry point."""
    from dirvault import create_app

    cli = FlaskGroup(create_app=create_app)
    cli()
