"""
Backup routes - start backups, follow their progress, browse history, restore.
"""

import json

from flask import Blueprint, Response, current_app, jsonify, request

from snapvault.backup.errors import BackupError, InvalidArgumentError


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


# HTTP status per error kind
ERROR_STATUS = {
    'invalid_argument': 400,
    'invalid_configuration': 400,
    'conflict': 409,
    'io_error': 500,
    'verification_failure': 422,
    'not_found': 404,
    'retention_cleanup_error': 500,
}


def _service():
    return current_app.extensions['snapvault']


@bp.errorhandler(BackupError)
def handle_backup_error(error):
    status = ERROR_STATUS.get(error.kind, 500)
    if status >= 500:
        current_app.logger.error(f"Backup request failed ({error.kind}): {error}")
    return jsonify({
        'success': False,
        'error': error.kind,
        'message': str(error),
    }), status


@bp.route('/create', methods=['POST'])
def create_backup():
    """
    Start a backup in the background.

    Request body:
        - type: daily, weekly, monthly or manual (default: manual)

    Returns:
        202 with the initial progress snapshot, 409 while another backup runs
    """
    data = request.get_json(silent=True) or {}
    progress = _service().start_backup(data.get('type', 'manual'))

    return jsonify({
        'success': True,
        'message': 'Backup started',
        'data': progress.to_dict(),
    }), 202


@bp.route('/progress/<job_id>', methods=['GET'])
def get_progress(job_id):
    progress = _service().get_progress(job_id)
    return jsonify({'success': True, 'data': progress.to_dict()})


@bp.route('/progress/<job_id>/stream', methods=['GET'])
def stream_progress(job_id):
    """
    Server-Sent Events stream of progress snapshots.

    The stream ends after the completed/failed snapshot, or when
    BACKUP_STREAM_TIMEOUT expires (the backup itself keeps running).
    """
    timeout = current_app.config.get('BACKUP_STREAM_TIMEOUT')
    events = _service().stream_progress(job_id, timeout=timeout)

    def generate():
        for progress in events:
            yield f"data: {json.dumps(progress.to_dict())}\n\n"

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )


@bp.route('/active', methods=['GET'])
def list_active():
    active = _service().list_active()
    return jsonify({
        'success': True,
        'data': [p.to_dict() for p in active],
        'count': len(active),
    })


@bp.route('/history', methods=['GET'])
def list_history():
    """
    Catalog of finished backups, newest first.

    Query params:
        - limit: Max number of records
    """
    limit = request.args.get('limit')
    if limit is not None:
        try:
            limit = int(limit)
        except ValueError:
            raise InvalidArgumentError(f"limit must be a positive integer, got {limit!r}")

    records = _service().list_history(limit)
    return jsonify({
        'success': True,
        'data': [r.to_dict() for r in records],
        'total': len(records),
    })


@bp.route('/history/<backup_id>', methods=['GET'])
def get_backup(backup_id):
    """One catalog record including its execution log."""
    metadata = _service().get_backup(backup_id)
    return jsonify({'success': True, 'data': metadata.to_dict(include_logs=True)})


@bp.route('/stats', methods=['GET'])
def get_statistics():
    return jsonify({'success': True, 'data': _service().get_statistics()})


@bp.route('/dashboard', methods=['GET'])
def get_dashboard():
    return jsonify({'success': True, 'data': _service().get_dashboard()})


@bp.route('/restore', methods=['POST'])
def restore_backup():
    """
    Restore a backup into an empty directory.

    Request body:
        - backupId: Catalog id (required)
        - targetPath: Directory to restore into (optional)
    """
    data = request.get_json(silent=True) or {}
    backup_id = data.get('backupId')
    if not backup_id:
        raise InvalidArgumentError('backupId is required')

    result = _service().restore(backup_id, data.get('targetPath'))

    return jsonify({
        'success': True,
        'message': 'Backup restored successfully',
        'data': result,
    })
