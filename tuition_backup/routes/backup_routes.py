"""
Backup routes - trigger runs, list stored backups, inspect the schedule.
"""

import hmac
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from tuition_backup.backup.errors import BackupError
from tuition_backup.backup.executor import perform_backup
from tuition_backup.backup.storage import S3Storage, StorageError
from tuition_backup.config import BackupSettings
from tuition_backup.scheduler import get_scheduled_jobs, is_scheduler_running, trigger_backup_now


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


def token_required(view):
    """
    Require the X-Backup-Token header when BACKUP_API_TOKEN is configured.
    """
    @wraps(view)
    def wrapped(*args, **kwargs):
        expected = current_app.config.get('BACKUP_API_TOKEN')
        if expected:
            provided = request.headers.get('X-Backup-Token', '')
            if not hmac.compare_digest(provided, expected):
                return jsonify({'error': 'Invalid or missing backup token'}), 401
        return view(*args, **kwargs)
    return wrapped


@bp.route('/run', methods=['POST'])
@token_required
def run_backup():
    """
    Start a backup.

    Query params:
        - wait: 'true' to run synchronously and return the run summary

    Returns:
        202 when queued, 200 with the run on success, 500 on failure
    """
    wait = request.args.get('wait', 'false').lower() == 'true'

    if not wait:
        try:
            job_id = trigger_backup_now()
        except RuntimeError as e:
            return jsonify({'error': str(e)}), 503
        return jsonify({'message': 'Backup has been queued for immediate execution', 'job_id': job_id}), 202

    try:
        run = perform_backup(current_app._get_current_object())
    except BackupError as e:
        return jsonify({'status': 'failed', 'error': str(e)}), 500

    return jsonify(run.to_dict())


@bp.route('/', methods=['GET'])
@token_required
def list_backups():
    """
    List stored backups grouped by run timestamp, newest first.
    """
    settings = BackupSettings.from_config(current_app.config)

    try:
        storage = S3Storage.from_settings(settings)
        backups = storage.list_backups()
    except (StorageError, BackupError) as e:
        return jsonify({'error': str(e)}), 502

    return jsonify({
        'bucket': settings.bucket_name,
        'retention_days': settings.retention_days,
        'backups': backups
    })


@bp.route('/schedule', methods=['GET'])
@token_required
def get_schedule():
    """
    Scheduler status and scheduled jobs.
    """
    return jsonify({
        'running': is_scheduler_running(),
        'jobs': get_scheduled_jobs()
    })
