"""
Admin Routes - Show Status Sweep

Same sweep as scripts/update_show_statuses.py, for schedulers that can only
make HTTP calls.
"""

from flask import Blueprint, current_app, jsonify, request
import logging

from routes import error_response
from show_lifecycle import sweep_show_statuses
from utils.helpers import parse_bool

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


@admin_bp.route('/shows/status-sweep', methods=['POST'])
def run_show_status_sweep():
    """
    Move shows through upcoming -> in-progress -> completed (or stale -> cancelled)

    Query Parameters:
        dry_run (bool, optional): Report what would change without writing
    """
    dry_run = parse_bool(request.args.get('dry_run'))
    try:
        stats = sweep_show_statuses(current_app.extensions['catalog_repository'], dry_run=dry_run)
    except Exception as e:
        logger.error(f"Show status sweep failed: {e}", exc_info=True)
        return error_response('Show status sweep failed', e)

    return jsonify({'success': True, 'dry_run': dry_run, 'stats': stats}), 200
