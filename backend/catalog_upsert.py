"""
Catalog Upsert Layer

Idempotent create-or-update of artists, venues, shows and songs from the
normalized payloads produced by the API clients.

Merge rules:
- A non-null stored value is never replaced by a null/empty upstream value
- External IDs are fill-only: once set they are never overwritten
- Genres are a case-insensitive union (existing spelling wins)
- Catalog tracks are collapsed per recording (ISRC) before they are stored
- Show status only moves forward (see STATUS_RANK)
- A row that is already up to date only has last_synced_at refreshed

New rows get a unique slug: base, base-1, base-2, ... The slug_exists
pre-check is only a hint; a SlugConflict from the insert moves on to the
next suffix, so two imports racing for the same name both succeed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from name_matching import normalize_for_comparison
from service_errors import ExternalIdConflict, PersistenceError, SlugConflict
from utils.helpers import slugify

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 20

# service name (as used in client payloads) -> artists column
ARTIST_EXTERNAL_IDS = {
    'spotify': 'spotify_id',
    'ticketmaster': 'ticketmaster_id',
    'setlistfm': 'setlistfm_id',
}

ARTIST_FIELDS = ('name', 'image_url', 'small_image_url', 'popularity', 'followers', 'external_url')
VENUE_FIELDS = ('name', 'address', 'city', 'state', 'country', 'postal_code', 'timezone', 'capacity')
SHOW_FIELDS = ('name', 'starts_at', 'doors_at', 'ticket_url', 'price_min', 'price_max',
               'currency', 'setlist_url')
SONG_FIELDS = ('title', 'album_name', 'artwork_url', 'duration_ms', 'popularity',
               'explicit', 'track_number', 'isrc')

STATUS_RANK = {
    'upcoming': 0,
    'in-progress': 1,
    'cancelled': 1,
    'postponed': 1,
    'completed': 2,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_empty(value) -> bool:
    return value is None or value == '' or value == [] or value == {}


def merge_fields(existing: Dict[str, Any], incoming: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Changed, non-empty incoming values for the given fields"""
    changes = {}
    for field in fields:
        value = incoming.get(field)
        if _is_empty(value):
            continue
        if existing.get(field) != value:
            changes[field] = value
    return changes


def merge_genres(existing: Optional[List[str]], incoming: Optional[Iterable[str]]) -> List[str]:
    """Case-insensitive union; keeps the stored spelling and order, appends new tags"""
    merged = list(existing or [])
    seen = {g.strip().lower() for g in merged if g}
    for genre in incoming or []:
        if not genre or not genre.strip():
            continue
        key = genre.strip().lower()
        if key not in seen:
            seen.add(key)
            merged.append(genre.strip())
    return merged


def dedupe_tracks(tracks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    One track per recording: keyed by ISRC, or by title and duration in
    seconds when the ISRC is missing; the most popular copy wins

    The same recording shows up on an album, its deluxe edition and the
    single, each with a different catalog track ID.
    """
    chosen: Dict[Any, Dict[str, Any]] = {}
    for track in tracks:
        isrc = (track.get('isrc') or '').strip().upper()
        if isrc:
            key = isrc
        else:
            key = (normalize_for_comparison(track.get('title')), round((track.get('duration_ms') or 0) / 1000))
        current = chosen.get(key)
        if current is None or (track.get('popularity') or 0) > (current.get('popularity') or 0):
            # Re-inserting keeps the first-seen order for replaced keys too
            chosen[key] = track
    return list(chosen.values())


def fill_external_ids(existing: Dict[str, Any], incoming: Dict[str, Any], columns: Iterable[str],
                      label: str) -> Dict[str, Any]:
    """External IDs only fill gaps; a conflicting value is logged and ignored"""
    changes = {}
    for column in columns:
        value = incoming.get(column)
        if not value:
            continue
        current = existing.get(column)
        if current is None:
            changes[column] = value
        elif current != value:
            logger.warning(f"{label} {existing.get('id')}: keeping {column}={current}, ignoring {value}")
    return changes


class CatalogUpserter:
    """
    Create-or-update on top of a CatalogRepository (or anything with the same methods)
    """

    def __init__(self, repository, now=utcnow):
        self.repository = repository
        self.now = now

    # ========================================================================
    # SHARED MECHANICS
    # ========================================================================

    def _insert_with_unique_slug(self, table: str, base_text: str, fields: Dict[str, Any], insert):
        """
        Insert with the first free slug among base, base-1, ... base-(MAX-1)

        Raises:
            ExternalIdConflict: another writer created the same entity first
            PersistenceError: every candidate slug was taken
        """
        base = slugify(base_text, fallback=table.rstrip('s'))
        for attempt in range(MAX_SLUG_ATTEMPTS):
            slug = base if attempt == 0 else f"{base}-{attempt}"
            if self.repository.slug_exists(table, slug):
                continue
            try:
                return insert({**fields, 'slug': slug})
            except SlugConflict:
                logger.info(f"Slug '{slug}' taken concurrently in {table}, trying next suffix")
                continue

        raise PersistenceError(f"No free slug for {table} '{base}' after {MAX_SLUG_ATTEMPTS} attempts")

    def _refresh(self, update, row: Dict[str, Any], changes: Dict[str, Any], label: str) -> Dict[str, Any]:
        stamp = self.now()
        if changes:
            logger.debug(f"Updating {label} {row['id']}: {', '.join(sorted(changes))}")
            changes = {**changes, 'updated_at': stamp}
        return update(row['id'], {**changes, 'last_synced_at': stamp})

    # ========================================================================
    # ARTISTS
    # ========================================================================

    def upsert_artist(self, payload: Dict[str, Any], artist_id=None) -> Tuple[Dict[str, Any], bool]:
        """
        Create or update one artist

        Args:
            payload: Normalized artist payload ('name', 'external_ids', 'genres', ...)
            artist_id: Internal ID when the caller already knows the row

        Returns:
            (artist row, created)
        """
        external_ids = {
            column: (payload.get('external_ids') or {}).get(service)
            for service, column in ARTIST_EXTERNAL_IDS.items()
            if (payload.get('external_ids') or {}).get(service)
        }

        existing = None
        if artist_id is not None:
            existing = self.repository.get_artist(artist_id)
            if existing is None:
                raise PersistenceError(f"Artist {artist_id} does not exist")
        elif external_ids:
            existing = self.repository.find_artist_by_external_ids(external_ids)

        if existing:
            return self._update_artist(existing, payload, external_ids), False

        name = payload.get('name')
        if not name:
            raise PersistenceError("Cannot create an artist without a name")

        fields = {column: payload.get(column) for column in ARTIST_FIELDS if not _is_empty(payload.get(column))}
        fields.update(external_ids)
        fields['genres'] = merge_genres([], payload.get('genres'))
        fields['last_synced_at'] = self.now()

        try:
            artist = self._insert_with_unique_slug('artists', name, fields, self.repository.insert_artist)
        except ExternalIdConflict:
            # Lost a race with another import of the same artist
            existing = self.repository.find_artist_by_external_ids(external_ids)
            if existing is None:
                raise PersistenceError(f"Artist '{name}' conflicted on an external ID but cannot be found")
            return self._update_artist(existing, payload, external_ids), False

        logger.info(f"Created artist '{artist['name']}' ({artist['slug']})")
        return artist, True

    def _update_artist(self, existing, payload, external_ids) -> Dict[str, Any]:
        changes = merge_fields(existing, payload, ARTIST_FIELDS)
        changes.update(fill_external_ids(existing, external_ids, ARTIST_EXTERNAL_IDS.values(), 'Artist'))

        genres = merge_genres(existing.get('genres'), payload.get('genres'))
        if genres != list(existing.get('genres') or []):
            changes['genres'] = genres

        try:
            return self._refresh(self.repository.update_artist, existing, changes, 'artist')
        except ExternalIdConflict as e:
            # Another artist row already owns one of the IDs we tried to fill
            logger.warning(f"Artist {existing['id']}: not filling external IDs ({e.constraint})")
            for column in ARTIST_EXTERNAL_IDS.values():
                changes.pop(column, None)
            return self._refresh(self.repository.update_artist, existing, changes, 'artist')

    # ========================================================================
    # VENUES
    # ========================================================================

    def upsert_venue(self, payload: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], bool]:
        """
        Create or update one venue

        Looks up by ticketing venue ID, then by name+city. The name+city
        fallback is exact (case-insensitive), so spelling variants still
        produce separate rows.

        Returns:
            (venue row, created), or (None, False) for a payload without a name
        """
        name = payload.get('name')
        tm_id = payload.get('ticketmaster_id')
        if not name:
            logger.debug(f"Skipping venue without a name (ticketmaster_id={tm_id})")
            return None, False

        existing = self.repository.find_venue_by_ticketmaster_id(tm_id) if tm_id else None
        if existing is None:
            candidate = self.repository.find_venue_by_name_city(name, payload.get('city'))
            # A same-named venue with a different ticketing ID is a different venue
            if candidate and not (tm_id and candidate.get('ticketmaster_id')
                                  and candidate['ticketmaster_id'] != tm_id):
                existing = candidate

        if existing:
            return self._update_venue(existing, payload), False

        fields = {column: payload.get(column) for column in VENUE_FIELDS if not _is_empty(payload.get(column))}
        fields.update(_coordinates(payload))
        if tm_id:
            fields['ticketmaster_id'] = tm_id

        base = f"{name} {payload.get('city') or ''}"
        try:
            venue = self._insert_with_unique_slug('venues', base, fields, self.repository.insert_venue)
        except ExternalIdConflict:
            existing = self.repository.find_venue_by_ticketmaster_id(tm_id)
            if existing is None:
                raise PersistenceError(f"Venue '{name}' conflicted on ticketmaster_id but cannot be found")
            return self._update_venue(existing, payload), False

        logger.info(f"Created venue '{venue['name']}' ({venue['slug']})")
        return venue, True

    def _update_venue(self, existing, payload) -> Dict[str, Any]:
        changes = merge_fields(existing, payload, VENUE_FIELDS)
        changes.update(fill_external_ids(existing, payload, ('ticketmaster_id',), 'Venue'))
        coordinates = _coordinates(payload)
        if coordinates and (existing.get('latitude'), existing.get('longitude')) != (
                coordinates['latitude'], coordinates['longitude']):
            changes.update(coordinates)
        if not changes:
            return existing
        return self.repository.update_venue(existing['id'], {**changes, 'updated_at': self.now()})

    # ========================================================================
    # SHOWS
    # ========================================================================

    def upsert_show(self, payload: Dict[str, Any], artist_id, venue_id=None) -> Tuple[Dict[str, Any], bool]:
        """
        Create or update one show for a headliner

        Keyed by the ticketing event ID, or the setlist ID for historical shows.

        Returns:
            (show row, created)
        """
        tm_id = payload.get('ticketmaster_id')
        setlist_id = payload.get('setlistfm_id')
        if not tm_id and not setlist_id:
            raise PersistenceError("Cannot store a show without a ticketing or setlist ID")

        existing = None
        if tm_id:
            existing = self.repository.find_show_by_ticketmaster_id(tm_id)
        if existing is None and setlist_id:
            existing = self.repository.find_show_by_setlistfm_id(setlist_id)

        if existing:
            return self._update_show(existing, payload, venue_id), False

        name = payload.get('name') or 'Live'
        starts_at = payload.get('starts_at')
        fields = {column: payload.get(column) for column in SHOW_FIELDS if not _is_empty(payload.get(column))}
        fields.update({
            'name': name,
            'headliner_artist_id': artist_id,
            'venue_id': venue_id,
            'status': payload.get('status') or 'upcoming',
            'played_songs': list(payload.get('played_songs') or []),
            'last_synced_at': self.now(),
        })
        if tm_id:
            fields['ticketmaster_id'] = tm_id
        if setlist_id:
            fields['setlistfm_id'] = setlist_id

        base = f"{name} {starts_at.strftime('%Y-%m-%d')}" if starts_at else name
        try:
            show = self._insert_with_unique_slug('shows', base, fields, self.repository.insert_show)
        except ExternalIdConflict:
            existing = (self.repository.find_show_by_ticketmaster_id(tm_id) if tm_id
                        else self.repository.find_show_by_setlistfm_id(setlist_id))
            if existing is None:
                raise PersistenceError(f"Show '{name}' conflicted on an external ID but cannot be found")
            return self._update_show(existing, payload, venue_id), False

        logger.debug(f"Created show '{show['name']}' ({show['slug']})")
        return show, True

    def _update_show(self, existing, payload, venue_id) -> Dict[str, Any]:
        changes = merge_fields(existing, payload, SHOW_FIELDS)
        changes.update(fill_external_ids(existing, payload, ('ticketmaster_id', 'setlistfm_id'), 'Show'))

        if venue_id and existing.get('venue_id') is None:
            changes['venue_id'] = venue_id

        status = payload.get('status')
        current = existing.get('status') or 'upcoming'
        if status and status != current:
            if STATUS_RANK.get(status, 0) >= STATUS_RANK.get(current, 0):
                changes['status'] = status
            else:
                logger.debug(f"Show {existing['id']}: not regressing status {current} -> {status}")

        played = list(payload.get('played_songs') or [])
        if played and played != list(existing.get('played_songs') or []):
            changes['played_songs'] = played

        return self._refresh(self.repository.update_show, existing, changes, 'show')

    # ========================================================================
    # SONGS
    # ========================================================================

    def upsert_song(self, payload: Dict[str, Any], artist_id) -> Tuple[Dict[str, Any], bool]:
        """
        Create or update one catalog track (keyed by its catalog track ID)

        Returns:
            (song row, created)
        """
        spotify_id = payload.get('spotify_id')
        if not spotify_id or not payload.get('title'):
            raise PersistenceError("Cannot store a song without a catalog ID and title")

        existing = self.repository.find_song_by_spotify_id(spotify_id)
        if existing:
            return self._update_song(existing, payload), False

        fields = {column: payload.get(column) for column in SONG_FIELDS if payload.get(column) is not None}
        fields.update({
            'spotify_id': spotify_id,
            'artist_id': artist_id,
            'last_synced_at': self.now(),
        })

        try:
            song = self.repository.insert_song(fields)
        except ExternalIdConflict:
            existing = self.repository.find_song_by_spotify_id(spotify_id)
            if existing is None:
                raise PersistenceError(f"Song {spotify_id} conflicted but cannot be found")
            return self._update_song(existing, payload), False

        return song, True

    def _update_song(self, existing, payload) -> Dict[str, Any]:
        changes = merge_fields(existing, payload, SONG_FIELDS)
        return self._refresh(self.repository.update_song, existing, changes, 'song')

    # ========================================================================
    # SYNC BOOKKEEPING
    # ========================================================================

    def finalize_artist(self, artist_id) -> Dict[str, Any]:
        """Stamp totals and the full-sync time that drives the re-import cooldown"""
        return self.repository.finalize_artist_sync(artist_id, self.now())


def _coordinates(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Latitude/longitude only travel together"""
    latitude, longitude = payload.get('latitude'), payload.get('longitude')
    if latitude is None or longitude is None:
        return {}
    return {'latitude': latitude, 'longitude': longitude}
