"""
Configuration Module for the Setlist Import API
Handles logging setup, Flask app initialization and import pipeline settings
"""

import os
import logging
from dataclasses import dataclass


def configure_logging(level=logging.INFO):
    """
    Configure application logging with standard format

    Returns:
        Logger instance for the config module
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


def init_app_config(app):
    """
    Initialize Flask app configuration

    This sets up:
    - Custom JSON provider for date formatting
    - APP_ENV, used to decide whether error detail is returned to clients

    Args:
        app: Flask application instance
    """
    from utils.json_provider import CustomJSONProvider
    app.json = CustomJSONProvider(app)
    app.config.setdefault('APP_ENV', os.environ.get('APP_ENV', 'development'))


def set_db_pooling_mode():
    """
    Set database pooling mode environment variable

    This MUST be called before importing db_utils to ensure
    the connection pool is configured correctly.
    """
    os.environ['DB_USE_POOLING'] = 'true'


def is_production(env: str = None) -> bool:
    return (env or os.environ.get('APP_ENV', 'development')).lower() == 'production'


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


def _env_bool(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class ImportSettings:
    """Tunables for the artist import pipeline"""

    cooldown_seconds: int = 3600
    progress_retention_seconds: int = 300
    upstream_timeout_seconds: float = 10
    upstream_max_retries: int = 3
    upstream_retry_base_delay: float = 1.0
    upstream_retry_max_delay: float = 30
    shows_lookahead_days: int = 365
    setlist_max_pages: int = 3
    import_setlists_by_default: bool = False
    spotify_market: str = 'US'
    import_full_catalog: bool = True
    catalog_max_albums: int = 100
    name_match_threshold: float = 90
    stream_keepalive_seconds: float = 15
    app_env: str = 'development'

    @property
    def production(self) -> bool:
        return is_production(self.app_env)

    @classmethod
    def from_env(cls) -> 'ImportSettings':
        return cls(
            cooldown_seconds=_env_int('IMPORT_COOLDOWN_SECONDS', 3600),
            progress_retention_seconds=_env_int('PROGRESS_RETENTION_SECONDS', 300),
            upstream_timeout_seconds=_env_float('UPSTREAM_TIMEOUT_SECONDS', 10),
            upstream_max_retries=_env_int('UPSTREAM_MAX_RETRIES', 3),
            upstream_retry_base_delay=_env_float('UPSTREAM_RETRY_BASE_DELAY', 1.0),
            upstream_retry_max_delay=_env_float('UPSTREAM_RETRY_MAX_DELAY', 30),
            shows_lookahead_days=_env_int('SHOWS_LOOKAHEAD_DAYS', 365),
            setlist_max_pages=_env_int('SETLIST_MAX_PAGES', 3),
            import_setlists_by_default=_env_bool('IMPORT_SETLISTS_BY_DEFAULT', False),
            spotify_market=os.environ.get('SPOTIFY_MARKET', 'US'),
            import_full_catalog=_env_bool('IMPORT_FULL_CATALOG', True),
            catalog_max_albums=_env_int('CATALOG_MAX_ALBUMS', 100),
            name_match_threshold=_env_float('NAME_MATCH_THRESHOLD', 90),
            stream_keepalive_seconds=_env_float('STREAM_KEEPALIVE_SECONDS', 15),
            app_env=os.environ.get('APP_ENV', 'development'),
        )
