# routes/health.py
from flask import Blueprint, current_app, jsonify
import logging
import time
import db_utils as db_tools

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)

@health_bp.route('/health', methods=['GET'])
def health_check():
    """Health check with database diagnostics and the number of running imports"""
    health_status = {
        'status': 'unknown',
        'database': 'unknown',
        'pool_stats': None,
        'active_imports': len(current_app.extensions['progress_bus'].active_jobs()),
        'timestamp': time.time()
    }

    try:
        health_status['pool_stats'] = db_tools.get_pool_stats()

        # Test database connection
        result = db_tools.execute_query("SELECT version(), current_timestamp", fetch_one=True)

        health_status['status'] = 'healthy'
        health_status['database'] = 'connected'
        health_status['db_version'] = result['version'] if result else 'unknown'
        health_status['db_time'] = str(result['current_timestamp']) if result else 'unknown'

        return jsonify(health_status), 200

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        health_status['status'] = 'unhealthy'
        health_status['database'] = 'error'
        if current_app.config.get('APP_ENV', 'development').lower() != 'production':
            health_status['detail'] = str(e)
        return jsonify(health_status), 503
