"""
Backup routes - status, manual runs and archive listing.
"""

from flask import Blueprint, jsonify, current_app

from dirvault.settings import ConfigurationError, load_configuration
from dirvault.backup.executor import execute_backup
from dirvault.backup.storage import LocalStorage, newest_first
from dirvault.scheduler import get_scheduled_jobs, is_scheduler_running, trigger_backup_now


bp = Blueprint('backup', __name__, url_prefix='/api/backup')


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get backup configuration summary and scheduler state.

    Returns:
        JSON with:
        - configuration: Source, destination and policy (or error)
        - scheduler_status: 'running' or 'stopped'
        - scheduled_jobs: Jobs registered with the scheduler
    """
    config_path = current_app.config['BACKUP_CONFIG_FILE']

    try:
        config = load_configuration(config_path)
        configuration = {
            'source_path': config.source_path,
            'destination_path': config.destination_path,
            'max_retained_backups': config.max_retained_backups,
            'incremental_enabled': config.incremental_enabled,
            'output_mode': config.output_mode,
            'archive_format': config.archive_format,
            'last_backup_timestamp': (
                config.last_backup_timestamp.isoformat() if config.last_backup_timestamp else None
            ),
            'schedule': {
                'enabled': config.schedule.enabled,
                'frequency': config.schedule.frequency,
                'time': config.schedule.time,
                'day_of_week': config.schedule.day_of_week
            }
        }
        error = None
    except ConfigurationError as e:
        configuration = None
        error = str(e)

    return jsonify({
        'config_file': config_path,
        'configuration': configuration,
        'error': error,
        'scheduler_status': 'running' if is_scheduler_running() else 'stopped',
        'scheduled_jobs': get_scheduled_jobs()
    })


@bp.route('/artifacts', methods=['GET'])
def list_artifacts():
    """
    List backup archives at the destination, newest first.

    Returns:
        JSON array of archives
    """
    try:
        config = load_configuration(current_app.config['BACKUP_CONFIG_FILE'])
    except ConfigurationError as e:
        return jsonify({'error': str(e)}), 400

    try:
        archives = newest_first(LocalStorage(config.destination_path).list_archives())
    except OSError as e:
        return jsonify({'error': f"Failed to list archives: {e}"}), 500

    return jsonify([
        {
            'name': archive['name'],
            'path': archive['path'],
            'created_at': archive['created'].isoformat(),
            'size_bytes': archive['size']
        }
        for archive in archives
    ])


@bp.route('/run', methods=['POST'])
def run_backup_now():
    """
    Run a backup synchronously.

    Returns:
        JSON run result; HTTP 200 for Success/NoChanges, 500 for Failed
    """
    result = execute_backup(
        current_app.config['BACKUP_CONFIG_FILE'],
        progress_interval=current_app.config.get('PROGRESS_INTERVAL_SECONDS', 30)
    )

    return jsonify(result.to_dict()), (200 if result.exit_code == 0 else 500)


@bp.route('/trigger', methods=['POST'])
def queue_backup():
    """
    Queue a backup on the scheduler for immediate execution.

    Returns:
        JSON with success message
    """
    try:
        trigger_backup_now()
        return jsonify({'message': 'Backup has been queued for immediate execution'}), 202
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503
