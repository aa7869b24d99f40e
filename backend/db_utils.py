#!/usr/bin/env python3
"""
Database Utilities - Unified for Scripts and Backend
Supports both pooled (Flask backend) and non-pooled (scripts) modes

Configuration:
    DATABASE_URL, or DB_HOST / DB_NAME / DB_USER / DB_PASSWORD / DB_PORT
    Set DB_USE_POOLING=true environment variable to enable pooling (for Flask)
    Leave unset or false for simple connections (for scripts)
"""

import os
import logging
import time
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

# Determine mode: pooled (backend) or simple (scripts)
USE_POOLING = os.environ.get('DB_USE_POOLING', 'false').lower() == 'true'

# Database configuration
DB_CONFIG = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'dbname': os.environ.get('DB_NAME', 'postgres'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD', ''),
    'port': os.environ.get('DB_PORT', '5432')
}


def get_connection_string() -> str:
    """DATABASE_URL wins; otherwise build one from the DB_* variables"""
    url = os.environ.get('DATABASE_URL')
    if url:
        return url
    return (
        f"postgresql://{DB_CONFIG['user']}:{DB_CONFIG['password']}"
        f"@{DB_CONFIG['host']}:{DB_CONFIG['port']}/{DB_CONFIG['dbname']}"
    )


SCHEMA_PATH = Path(__file__).parent / 'sql' / 'schema.sql'


# ============================================================================
# POOLING MODE (Backend) - Only active if USE_POOLING=true
# ============================================================================

# Global connection pool (only used if pooling enabled)
pool: Optional[ConnectionPool] = None
keepalive_thread: Optional[threading.Thread] = None
keepalive_stop = threading.Event()
pool_init_lock = threading.Lock()


def init_connection_pool(max_retries=3, retry_delay=2):
    """
    Initialize the connection pool (only used in pooling mode)

    Returns:
        bool: True if successful, False otherwise
    """
    if not USE_POOLING:
        logger.debug("Pooling not enabled, skipping pool initialization")
        return True

    global pool

    # Thread-safe initialization
    with pool_init_lock:
        if pool is not None:
            logger.debug("Connection pool already initialized")
            return True

        for attempt in range(max_retries):
            try:
                logger.info(f"Initializing connection pool (attempt {attempt + 1}/{max_retries})...")

                # Sized for one gthread worker: request threads plus import job threads
                pool = ConnectionPool(
                    get_connection_string(),
                    min_size=2,
                    max_size=int(os.environ.get('DB_POOL_MAX_SIZE', '10')),
                    open=True,
                    timeout=30,
                    max_waiting=20,
                    max_lifetime=1800,   # Recycle after 30 minutes
                    max_idle=600,        # Keep idle for 10 minutes
                    kwargs={
                        'row_factory': dict_row,
                        'connect_timeout': 10,
                        'keepalives': 1,
                        'keepalives_idle': 30,
                        'keepalives_interval': 10,
                        'keepalives_count': 3,
                        'options': '-c statement_timeout=30000',
                        'autocommit': False,
                        'prepare_threshold': None  # Disable prepared statements (transaction poolers)
                    }
                )

                logger.info("Testing connection pool...")
                with pool.connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute("SELECT 1 as test, pg_backend_pid() as pid")
                        result = cur.fetchone()
                        logger.info("✓ Connection pool initialized successfully")
                        logger.info(f"  Backend PID: {result['pid']}")

                stats = get_pool_stats()
                if stats:
                    logger.info(f"  Pool stats: {stats}")

                return True

            except Exception as e:
                logger.error(f"✗ Connection pool initialization failed (attempt {attempt + 1}/{max_retries}): {e}")

                if pool is not None:
                    try:
                        pool.close()
                    except Exception as close_error:
                        logger.debug(f"Error closing failed pool: {close_error}")
                    pool = None

                if attempt < max_retries - 1:
                    # Exponential backoff
                    wait_time = retry_delay * (1.5 ** attempt)
                    logger.info(f"Retrying in {wait_time:.1f} seconds...")
                    time.sleep(wait_time)
                else:
                    logger.error("Failed to initialize connection pool after all retries")
                    return False

        return False


def reset_connection_pool():
    """Reset the connection pool (only used in pooling mode)"""
    if not USE_POOLING:
        return True

    global pool

    with pool_init_lock:
        logger.warning("Resetting connection pool...")

        if pool is not None:
            try:
                pool.close()
                logger.info("Old pool closed")
            except Exception as e:
                logger.error(f"Error closing old pool: {e}")

        pool = None

    time.sleep(2)
    success = init_connection_pool()

    if success:
        logger.info("✓ Connection pool reset successfully")
    else:
        logger.error("✗ Failed to reset connection pool")

    return success


def connection_keepalive():
    """Background thread to keep pooled connections alive"""
    logger.info("Starting connection keepalive thread...")

    while not keepalive_stop.is_set():
        if keepalive_stop.wait(300):  # 5 minutes
            break

        if pool is None:
            continue

        logger.debug("Sending keepalive ping to database...")
        try:
            with pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 AS ok, pg_backend_pid() AS pid")
                    result = cur.fetchone()
            logger.debug(f"Keepalive ping successful (PID: {result['pid'] if result else 'unknown'})")
        except Exception as e:
            logger.warning(f"Keepalive ping failed: {e}")

    logger.info("Connection keepalive thread stopped")


def start_keepalive_thread():
    """Start the background keepalive thread (only used in pooling mode)"""
    if not USE_POOLING:
        return

    global keepalive_thread

    if keepalive_thread is None or not keepalive_thread.is_alive():
        keepalive_stop.clear()
        keepalive_thread = threading.Thread(target=connection_keepalive, daemon=True, name="DbKeepalive")
        keepalive_thread.start()
        logger.info("Keepalive thread started")


def stop_keepalive_thread():
    """Stop the background keepalive thread (only used in pooling mode)"""
    if not USE_POOLING:
        return

    logger.info("Stopping keepalive thread...")
    keepalive_stop.set()
    if keepalive_thread:
        keepalive_thread.join(timeout=5)
    logger.info("Keepalive thread stopped")


def close_connection_pool():
    """Close the connection pool (only used in pooling mode)"""
    if not USE_POOLING:
        return

    global pool

    with pool_init_lock:
        if pool:
            logger.info("Closing connection pool...")
            try:
                pool.close()
                logger.info("Connection pool closed")
            except Exception as e:
                logger.error(f"Error closing connection pool: {e}")
            pool = None


def get_pool_stats():
    """Get current connection pool statistics (only used in pooling mode)"""
    if not USE_POOLING or pool is None:
        return None

    try:
        stats = pool.get_stats()
        return {
            'pool_size': stats.get('pool_size', 0),
            'pool_available': stats.get('pool_available', 0),
            'requests_waiting': stats.get('requests_waiting', 0)
        }
    except Exception as e:
        logger.error(f"Error getting pool stats: {e}")
        return None


# ============================================================================
# SIMPLE MODE (Scripts)
# ============================================================================

def _create_connection():
    """
    Create a simple database connection (only used in simple mode)

    Returns:
        psycopg connection
    """
    try:
        conn = psycopg.connect(
            get_connection_string(),
            row_factory=dict_row,
            autocommit=False,
            prepare_threshold=None
        )
        logger.debug("Simple database connection created")
        return conn
    except psycopg.OperationalError as e:
        logger.error(f"Failed to connect to database: {e}")
        logger.error(f"Connection details: host={DB_CONFIG['host']}, "
                     f"port={DB_CONFIG['port']}, database={DB_CONFIG['dbname']}, "
                     f"user={DB_CONFIG['user']} (DATABASE_URL set: {bool(os.environ.get('DATABASE_URL'))})")
        raise


# ============================================================================
# UNIFIED CONNECTION MANAGER
# ============================================================================

@contextmanager
def get_db_connection():
    """
    Get a database connection using the appropriate mode

    One block is one transaction: committed on normal exit, rolled back
    when the block raises.

    Returns:
        Database connection (context manager)
    """
    if USE_POOLING:
        # POOLING MODE (Backend)
        if pool is None:
            logger.info("Connection pool not initialized, initializing now...")
            if not init_connection_pool():
                raise RuntimeError("Failed to initialize connection pool")

        try:
            with pool.connection() as conn:
                yield conn
                # Transaction committed automatically if no exception
        except psycopg.OperationalError as e:
            logger.error(f"Database operational error: {e}")
            if "server closed the connection unexpectedly" in str(e).lower():
                logger.warning("Detected connection closure, attempting pool reset...")
                reset_connection_pool()
            raise

    else:
        # SIMPLE MODE (Scripts)
        conn = _create_connection()
        try:
            yield conn
            conn.commit()
            logger.debug("Transaction committed successfully")
        except Exception:
            try:
                conn.rollback()
                logger.debug("Transaction rolled back due to error")
            except Exception as rollback_error:
                logger.error(f"Error rolling back transaction: {rollback_error}")
            raise
        finally:
            try:
                conn.close()
                logger.debug("Database connection closed")
            except Exception as close_error:
                logger.error(f"Error closing connection: {close_error}")


# ============================================================================
# HELPER FUNCTIONS (Used by both modes)
# ============================================================================

def execute_query(query, params=None, fetch_one=False, fetch_all=True):
    """
    Execute a query with proper error handling

    Args:
        query: SQL query string
        params: Query parameters tuple
        fetch_one: If True, return only first result
        fetch_all: If True, return all results (ignored if fetch_one is True)

    Returns:
        Query results or None
    """
    start_time = time.time()

    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)

                if fetch_one:
                    result = cur.fetchone()
                elif fetch_all:
                    result = cur.fetchall()
                else:
                    result = None

                logger.debug(f"Query executed in {time.time() - start_time:.3f}s")
                return result

    except psycopg.Error as e:
        logger.error(f"Query error after {time.time() - start_time:.3f}s: {e}")
        raise


def apply_schema(path: Path = SCHEMA_PATH):
    """Create the import pipeline's tables if they do not exist"""
    logger.info(f"Applying schema from {path}")
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(path.read_text())
        conn.commit()
    logger.info("Schema applied")


def test_connection():
    """
    Test the database connection and log connection info

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        logger.info("Testing database connection...")
        logger.info(f"Mode: {'POOLED' if USE_POOLING else 'SIMPLE'}")

        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT current_database(), current_user, version(), pg_backend_pid()")
                result = cur.fetchone()

                logger.info(f"✓ Connected to database: {result['current_database']}")
                logger.info(f"  User: {result['current_user']}")
                logger.info(f"  Backend PID: {result['pg_backend_pid']}")
                logger.info(f"  PostgreSQL version: {result['version'].split(',')[0]}")

        if USE_POOLING:
            stats = get_pool_stats()
            if stats:
                logger.info(f"  Pool stats: {stats}")

        return True
    except Exception as e:
        logger.error(f"✗ Connection test failed: {e}")
        return False


# ============================================================================
# MAIN - For Testing
# ============================================================================

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    import sys
    if '--apply-schema' in sys.argv:
        apply_schema()
    sys.exit(0 if test_connection() else 1)
