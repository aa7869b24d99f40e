"""
Setlist Import API Backend
A Flask API that imports artists, songs, shows and venues from the catalog,
ticketing and setlist services and streams import progress to clients
"""

from flask import Flask, request
from flask_cors import CORS
import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configuration
from config import ImportSettings, configure_logging, init_app_config, set_db_pooling_mode

# Set pooling mode BEFORE importing db_utils
set_db_pooling_mode()

# Import database tools
import db_utils as db_tools
from import_orchestrator import ImportOrchestrator
from progress_bus import ProgressBus

logger = configure_logging()


def create_app(settings=None, progress_bus=None, orchestrator=None, repository=None):
    """
    Create the Flask app

    One ProgressBus and one ImportOrchestrator per app; routes reach them
    through app.extensions. Tests pass their own instances.
    """
    settings = settings or ImportSettings.from_env()
    progress_bus = progress_bus or ProgressBus(retention_seconds=settings.progress_retention_seconds)
    if orchestrator is None:
        orchestrator = ImportOrchestrator.from_settings(progress_bus, settings, repository)
    repository = repository or orchestrator.repository

    app = Flask(__name__)
    CORS(app)
    app.config['APP_ENV'] = settings.app_env
    init_app_config(app)

    app.extensions['import_settings'] = settings
    app.extensions['progress_bus'] = progress_bus
    app.extensions['import_orchestrator'] = orchestrator
    app.extensions['catalog_repository'] = repository

    # Register all route blueprints
    from routes import register_blueprints
    register_blueprints(app)

    # Request/response logging
    @app.before_request
    def log_request():
        """Log incoming requests"""
        logger.info(f"{request.method} {request.path}")

    @app.after_request
    def log_response(response):
        """Log response status"""
        logger.info(f"{request.method} {request.path} - {response.status_code}")
        return response

    logger.info(f"Spotify credentials present: {bool(os.environ.get('SPOTIFY_CLIENT_ID'))}")
    logger.info(f"Ticketmaster key present: {bool(os.environ.get('TICKETMASTER_API_KEY'))}")
    logger.info(f"setlist.fm key present: {bool(os.environ.get('SETLISTFM_API_KEY'))}")
    logger.info(f"Flask app initialized in PID {os.getpid()} (env={settings.app_env})")
    return app


app = create_app()


if __name__ == '__main__':
    # Running directly with 'python app.py' (not gunicorn)
    logger.info("Starting Flask application directly (not gunicorn)...")
    logger.info("Database connection pool will initialize on first request")

    db_tools.start_keepalive_thread()

    try:
        app.run(debug=True, host='0.0.0.0', port=5001, threaded=True, use_reloader=False)
    finally:
        logger.info("Shutting down...")
        db_tools.stop_keepalive_thread()
        db_tools.close_connection_pool()
        logger.info("Shutdown complete")

import atexit

def cleanup_connections():
    """Close the connection pool on shutdown"""
    logger.info("Shutting down connection pool...")
    db_tools.close_connection_pool()
    logger.info("Connection pool closed")

atexit.register(cleanup_connections)
