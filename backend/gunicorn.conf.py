# gunicorn.conf.py
# Gunicorn configuration file

import logging
import os

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = 'info'

# Worker configuration
# One process: the progress bus and the running import threads live in-process,
# so a status stream must land in the same worker as the import it watches.
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '16'))
timeout = 120

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Hooks
def post_worker_init(worker):
    """
    Called after a worker has been forked and initialized.
    Starts the database keepalive thread inside the worker.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"=== Post-worker init hook called for worker PID {os.getpid()} ===")

    try:
        import db_utils
        db_utils.start_keepalive_thread()
    except Exception as e:
        logger.error(f"Error starting keepalive thread in gunicorn worker: {e}", exc_info=True)


def worker_exit(server, worker):
    """
    Called when a worker exits.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Worker {worker.pid} exiting - closing database resources")

    try:
        import db_utils
        db_utils.stop_keepalive_thread()
        db_utils.close_connection_pool()
    except Exception as e:
        logger.error(f"Error closing database resources: {e}")
