"""
Catalog Database Operations

All SQL used by the import pipeline for artists, venues, shows and songs.
Each public method runs in its own transaction (one get_db_connection() block);
nothing here spans entity types.

Unique violations are re-raised as SlugConflict / ExternalIdConflict so the
upsert layer can retry without knowing about psycopg.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

import psycopg

from db_utils import get_db_connection
from service_errors import ExternalIdConflict, SlugConflict, UniqueConflict

logger = logging.getLogger(__name__)


# Columns the upsert layer may write, per table
TABLE_COLUMNS = {
    'artists': {
        'name', 'slug', 'spotify_id', 'ticketmaster_id', 'setlistfm_id',
        'image_url', 'small_image_url', 'genres', 'popularity', 'followers',
        'verified', 'external_url', 'total_songs', 'upcoming_shows',
        'last_synced_at', 'last_full_sync_at', 'updated_at',
    },
    'venues': {
        'name', 'slug', 'ticketmaster_id', 'address', 'city', 'state', 'country',
        'postal_code', 'latitude', 'longitude', 'timezone', 'capacity', 'updated_at',
    },
    'shows': {
        'headliner_artist_id', 'venue_id', 'name', 'slug', 'starts_at', 'doors_at',
        'status', 'ticket_url', 'price_min', 'price_max', 'currency',
        'ticketmaster_id', 'setlistfm_id', 'setlist_url', 'played_songs',
        'last_synced_at', 'updated_at',
    },
    'songs': {
        'artist_id', 'spotify_id', 'title', 'album_name', 'artwork_url',
        'duration_ms', 'popularity', 'explicit', 'track_number', 'isrc',
        'last_synced_at', 'updated_at',
    },
}

ARTIST_EXTERNAL_ID_COLUMNS = ('spotify_id', 'ticketmaster_id', 'setlistfm_id')


def _translate_unique_violation(error: psycopg.errors.UniqueViolation) -> UniqueConflict:
    constraint = getattr(error.diag, 'constraint_name', None) or ''
    if constraint.endswith('_slug_key'):
        return SlugConflict(f"Slug already taken ({constraint})", constraint=constraint)
    return ExternalIdConflict(f"External ID already stored ({constraint})", constraint=constraint)


def _check_columns(table: str, fields: Dict) -> None:
    unknown = set(fields) - TABLE_COLUMNS[table]
    if unknown:
        raise ValueError(f"Unknown {table} columns: {', '.join(sorted(unknown))}")


class CatalogRepository:
    """
    PostgreSQL-backed storage for the upsert layer
    """

    # ========================================================================
    # GENERIC HELPERS
    # ========================================================================

    def _fetch_one(self, query: str, params=None) -> Optional[dict]:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _find_by(self, table: str, column: str, value) -> Optional[dict]:
        if value is None:
            return None
        if column not in TABLE_COLUMNS[table] and column != 'id':
            raise ValueError(f"Unknown {table} column: {column}")
        return self._fetch_one(f"SELECT * FROM {table} WHERE {column} = %s LIMIT 1", (value,))

    def _insert(self, table: str, fields: Dict) -> dict:
        _check_columns(table, fields)
        columns = list(fields)
        placeholders = ', '.join(['%s'] * len(columns))
        query = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING *
        """
        try:
            with get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, [fields[c] for c in columns])
                    row = cur.fetchone()
                    conn.commit()
                    return row
        except psycopg.errors.UniqueViolation as e:
            raise _translate_unique_violation(e) from e

    def _update(self, table: str, row_id, fields: Dict) -> Optional[dict]:
        _check_columns(table, fields)
        if not fields:
            return self._find_by(table, 'id', row_id)

        updates = [f"{column} = %s" for column in fields]
        values = list(fields.values())
        values.append(row_id)
        query = f"""
            UPDATE {table}
            SET {', '.join(updates)}
            WHERE id = %s
            RETURNING *
        """
        try:
            with get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, values)
                    row = cur.fetchone()
                    conn.commit()
                    return row
        except psycopg.errors.UniqueViolation as e:
            raise _translate_unique_violation(e) from e

    def slug_exists(self, table: str, slug: str) -> bool:
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")
        row = self._fetch_one(f"SELECT 1 AS found FROM {table} WHERE slug = %s LIMIT 1", (slug,))
        return row is not None

    # ========================================================================
    # ARTISTS
    # ========================================================================

    def get_artist(self, artist_id) -> Optional[dict]:
        return self._find_by('artists', 'id', artist_id)

    def find_artist_by_external_ids(self, external_ids: Dict[str, str]) -> Optional[dict]:
        """
        Find an artist matching any of the given external IDs

        Args:
            external_ids: column -> value, e.g. {'spotify_id': '4Z8W...'}

        Returns:
            First match, checking catalog, ticketing then setlist IDs
        """
        for column in ARTIST_EXTERNAL_ID_COLUMNS:
            value = external_ids.get(column)
            if value:
                row = self._find_by('artists', column, value)
                if row:
                    return row
        return None

    def insert_artist(self, fields: Dict) -> dict:
        return self._insert('artists', fields)

    def update_artist(self, artist_id, fields: Dict) -> dict:
        return self._update('artists', artist_id, fields)

    def finalize_artist_sync(self, artist_id, synced_at: datetime) -> dict:
        """Record song/show totals and stamp the full-sync time used by the cooldown guard"""
        query = """
            UPDATE artists a
            SET total_songs = (SELECT COUNT(*) FROM songs s WHERE s.artist_id = a.id),
                upcoming_shows = (
                    SELECT COUNT(*) FROM shows sh
                    WHERE sh.headliner_artist_id = a.id
                      AND sh.status = 'upcoming'
                      AND (sh.starts_at IS NULL OR sh.starts_at >= %s)
                ),
                last_full_sync_at = %s,
                last_synced_at = %s
            WHERE a.id = %s
            RETURNING *
        """
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (synced_at, synced_at, synced_at, artist_id))
                row = cur.fetchone()
                conn.commit()
                return row

    # ========================================================================
    # VENUES
    # ========================================================================

    def find_venue_by_ticketmaster_id(self, ticketmaster_id: str) -> Optional[dict]:
        return self._find_by('venues', 'ticketmaster_id', ticketmaster_id)

    def find_venue_by_name_city(self, name: str, city: Optional[str]) -> Optional[dict]:
        """Best-effort fallback lookup (case-insensitive, exact spelling)"""
        if not name:
            return None
        return self._fetch_one(
            """
            SELECT * FROM venues
            WHERE LOWER(name) = LOWER(%s)
              AND LOWER(COALESCE(city, '')) = LOWER(COALESCE(%s, ''))
            ORDER BY created_at
            LIMIT 1
            """,
            (name, city)
        )

    def insert_venue(self, fields: Dict) -> dict:
        return self._insert('venues', fields)

    def update_venue(self, venue_id, fields: Dict) -> dict:
        return self._update('venues', venue_id, fields)

    # ========================================================================
    # SHOWS
    # ========================================================================

    def find_show_by_ticketmaster_id(self, ticketmaster_id: str) -> Optional[dict]:
        return self._find_by('shows', 'ticketmaster_id', ticketmaster_id)

    def find_show_by_setlistfm_id(self, setlistfm_id: str) -> Optional[dict]:
        return self._find_by('shows', 'setlistfm_id', setlistfm_id)

    def insert_show(self, fields: Dict) -> dict:
        return self._insert('shows', fields)

    def update_show(self, show_id, fields: Dict) -> dict:
        return self._update('shows', show_id, fields)

    def list_shows_for_status_sweep(self, horizon: datetime) -> List[dict]:
        """Shows still open (upcoming / in-progress) that start on or before the horizon"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, name, status, starts_at
                    FROM shows
                    WHERE status IN ('upcoming', 'in-progress')
                      AND starts_at IS NOT NULL
                      AND starts_at <= %s
                    ORDER BY starts_at
                    """,
                    (horizon,)
                )
                return cur.fetchall()

    def transition_show_status(self, show_id, from_status: str, to_status: str) -> bool:
        """Compare-and-set status change; False if the show moved on meanwhile"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE shows
                    SET status = %s, updated_at = NOW()
                    WHERE id = %s AND status = %s
                    """,
                    (to_status, show_id, from_status)
                )
                changed = cur.rowcount > 0
                conn.commit()
                return changed

    # ========================================================================
    # SONGS
    # ========================================================================

    def find_song_by_spotify_id(self, spotify_id: str) -> Optional[dict]:
        return self._find_by('songs', 'spotify_id', spotify_id)

    def insert_song(self, fields: Dict) -> dict:
        return self._insert('songs', fields)

    def update_song(self, song_id, fields: Dict) -> dict:
        return self._update('songs', song_id, fields)
