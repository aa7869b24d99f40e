"""
Shared pytest fixtures: an in-memory catalog repository with the same unique
constraints as sql/schema.sql, fake upstream clients and a fresh ProgressBus
per test.
"""

import copy
import uuid
import threading
from datetime import datetime, timezone

import pytest

from catalog_upsert import CatalogUpserter
from config import ImportSettings
from import_orchestrator import ImportOrchestrator
from progress_bus import ProgressBus
from service_errors import ExternalIdConflict, NotFound, SlugConflict


# ============================================================================
# IN-MEMORY REPOSITORY
# ============================================================================

UNIQUE_COLUMNS = {
    'artists': ('slug', 'spotify_id', 'ticketmaster_id', 'setlistfm_id'),
    'venues': ('slug', 'ticketmaster_id'),
    'shows': ('slug', 'ticketmaster_id', 'setlistfm_id'),
    'songs': ('spotify_id',),
}

DEFAULTS = {
    'artists': {'genres': [], 'verified': False, 'total_songs': 0, 'upcoming_shows': 0,
                'last_full_sync_at': None, 'last_synced_at': None},
    'venues': {'latitude': None, 'longitude': None},
    'shows': {'status': 'upcoming', 'played_songs': [], 'venue_id': None},
    'songs': {'explicit': False},
}


class FakeRepository:
    """Dict-backed stand-in for catalog_db.CatalogRepository"""

    def __init__(self):
        self.tables = {name: {} for name in UNIQUE_COLUMNS}
        self.lock = threading.Lock()
        self.calls = []
        # slug -> number of times slug_exists should lie and say "free"
        self.stale_slug_checks = {}

    def _check_unique(self, table, row, ignore_id=None):
        for column in UNIQUE_COLUMNS[table]:
            value = row.get(column)
            if value is None:
                continue
            for other in self.tables[table].values():
                if other['id'] != ignore_id and other.get(column) == value:
                    constraint = f"{table}_{column}_key"
                    if column == 'slug':
                        raise SlugConflict(f"duplicate {constraint}", constraint=constraint)
                    raise ExternalIdConflict(f"duplicate {constraint}", constraint=constraint)

    def _insert(self, table, fields):
        with self.lock:
            self.calls.append(('insert', table))
            now = datetime.now(timezone.utc)
            row = {**copy.deepcopy(DEFAULTS[table]), 'id': str(uuid.uuid4()),
                   'created_at': now, 'updated_at': now, **copy.deepcopy(fields)}
            self._check_unique(table, row)
            self.tables[table][row['id']] = row
            return copy.deepcopy(row)

    def _update(self, table, row_id, fields):
        with self.lock:
            self.calls.append(('update', table))
            row = self.tables[table][row_id]
            merged = {**row, **copy.deepcopy(fields)}
            self._check_unique(table, merged, ignore_id=row_id)
            self.tables[table][row_id] = merged
            return copy.deepcopy(merged)

    def _find(self, table, column, value):
        if value is None:
            return None
        with self.lock:
            for row in self.tables[table].values():
                if row.get(column) == value:
                    return copy.deepcopy(row)
        return None

    def rows(self, table):
        with self.lock:
            return [copy.deepcopy(r) for r in self.tables[table].values()]

    def slug_exists(self, table, slug):
        if self.stale_slug_checks.get(slug):
            self.stale_slug_checks[slug] -= 1
            return False
        return self._find(table, 'slug', slug) is not None

    # Artists
    def get_artist(self, artist_id):
        return self._find('artists', 'id', artist_id)

    def find_artist_by_external_ids(self, external_ids):
        for column in ('spotify_id', 'ticketmaster_id', 'setlistfm_id'):
            row = self._find('artists', column, external_ids.get(column))
            if row:
                return row
        return None

    def insert_artist(self, fields):
        return self._insert('artists', fields)

    def update_artist(self, artist_id, fields):
        return self._update('artists', artist_id, fields)

    def finalize_artist_sync(self, artist_id, synced_at):
        songs = [s for s in self.rows('songs') if s['artist_id'] == artist_id]
        shows = [s for s in self.rows('shows')
                 if s['headliner_artist_id'] == artist_id and s['status'] == 'upcoming']
        return self._update('artists', artist_id, {
            'total_songs': len(songs),
            'upcoming_shows': len(shows),
            'last_full_sync_at': synced_at,
            'last_synced_at': synced_at,
        })

    # Venues
    def find_venue_by_ticketmaster_id(self, ticketmaster_id):
        return self._find('venues', 'ticketmaster_id', ticketmaster_id)

    def find_venue_by_name_city(self, name, city):
        for row in self.rows('venues'):
            if row['name'].lower() == (name or '').lower() and (row.get('city') or '').lower() == (city or '').lower():
                return row
        return None

    def insert_venue(self, fields):
        return self._insert('venues', fields)

    def update_venue(self, venue_id, fields):
        return self._update('venues', venue_id, fields)

    # Shows
    def find_show_by_ticketmaster_id(self, ticketmaster_id):
        return self._find('shows', 'ticketmaster_id', ticketmaster_id)

    def find_show_by_setlistfm_id(self, setlistfm_id):
        return self._find('shows', 'setlistfm_id', setlistfm_id)

    def insert_show(self, fields):
        return self._insert('shows', fields)

    def update_show(self, show_id, fields):
        return self._update('shows', show_id, fields)

    def list_shows_for_status_sweep(self, horizon):
        return [s for s in self.rows('shows')
                if s['status'] in ('upcoming', 'in-progress') and s.get('starts_at') and s['starts_at'] <= horizon]

    def transition_show_status(self, show_id, from_status, to_status):
        with self.lock:
            row = self.tables['shows'][show_id]
            if row['status'] != from_status:
                return False
            row['status'] = to_status
            return True

    # Songs
    def find_song_by_spotify_id(self, spotify_id):
        return self._find('songs', 'spotify_id', spotify_id)

    def insert_song(self, fields):
        return self._insert('songs', fields)

    def update_song(self, song_id, fields):
        return self._update('songs', song_id, fields)


# ============================================================================
# FAKE UPSTREAM CLIENTS
# ============================================================================

class FakeClient:
    """Records calls; `failures[method]` is a list of exceptions raised before succeeding"""

    def __init__(self):
        self.calls = []
        self.failures = {}

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def count(self, method):
        return sum(1 for call in self.calls if call[0] == method)


class FakeSpotify(FakeClient):
    def __init__(self):
        super().__init__()
        self.artists = {}
        self.top_tracks = {}
        self.search_results = {}
        self.albums = {}
        self.album_tracks = {}
        self.tracks = {}

    def get_artist(self, spotify_id):
        self._record('get_artist', spotify_id)
        if spotify_id not in self.artists:
            raise NotFound(f"spotify has no artist {spotify_id}", service='spotify', status_code=404)
        return copy.deepcopy(self.artists[spotify_id])

    def search_artists(self, name, limit=5):
        self._record('search_artists', name)
        return copy.deepcopy(self.search_results.get(name, []))

    def get_artist_top_tracks(self, spotify_id, market=None):
        self._record('get_artist_top_tracks', spotify_id)
        return copy.deepcopy(self.top_tracks.get(spotify_id, []))

    def add_album(self, spotify_id, album_id, name, tracks):
        """Register an album and the full payloads of its tracks"""
        self.albums.setdefault(spotify_id, []).append({'spotify_id': album_id, 'name': name})
        self.album_tracks[album_id] = [{'spotify_id': t['spotify_id'], 'title': t['title']} for t in tracks]
        for track in tracks:
            self.tracks[track['spotify_id']] = track

    def get_artist_albums(self, spotify_id, include_groups='album,single', market=None, max_albums=None):
        self._record('get_artist_albums', spotify_id)
        albums = self.albums.get(spotify_id, [])
        return copy.deepcopy(albums[:max_albums] if max_albums else albums)

    def get_album_tracks(self, album_id):
        self._record('get_album_tracks', album_id)
        return copy.deepcopy(self.album_tracks.get(album_id, []))

    def get_tracks(self, track_ids):
        self._record('get_tracks', tuple(track_ids))
        return [copy.deepcopy(self.tracks[t]) for t in track_ids if t in self.tracks]


class FakeTicketmaster(FakeClient):
    def __init__(self):
        super().__init__()
        self.attractions = {}
        self.search_results = {}
        self.events = {}
        self.venues = {}

    def search_attractions(self, keyword, size=10):
        self._record('search_attractions', keyword)
        return copy.deepcopy(self.search_results.get(keyword, []))

    def get_attraction(self, attraction_id):
        self._record('get_attraction', attraction_id)
        if attraction_id not in self.attractions:
            raise NotFound(f"no attraction {attraction_id}", service='ticketmaster', status_code=404)
        return copy.deepcopy(self.attractions[attraction_id])

    def get_events(self, attraction_id=None, keyword=None, start=None, end=None, max_pages=5):
        self._record('get_events', attraction_id)
        return copy.deepcopy(self.events.get(attraction_id, []))

    def get_venue(self, venue_id):
        self._record('get_venue', venue_id)
        if venue_id not in self.venues:
            raise NotFound(f"no venue {venue_id}", service='ticketmaster', status_code=404)
        return copy.deepcopy(self.venues[venue_id])


class FakeSetlistFm(FakeClient):
    def __init__(self):
        super().__init__()
        self.artists = {}
        self.search_results = {}
        self.setlists = {}

    def search_artists(self, name, page=1):
        self._record('search_artists', name)
        return copy.deepcopy(self.search_results.get(name, []))

    def get_artist(self, mbid):
        self._record('get_artist', mbid)
        if mbid not in self.artists:
            raise NotFound(f"no artist {mbid}", service='setlistfm', status_code=404)
        return copy.deepcopy(self.artists[mbid])

    def get_artist_setlists(self, mbid, page=1):
        self._record('get_artist_setlists', mbid, page)
        if mbid not in self.setlists:
            raise NotFound(f"no setlists for {mbid}", service='setlistfm', status_code=404)
        pages = self.setlists[mbid]
        return {'setlists': copy.deepcopy(pages[page - 1]) if page <= len(pages) else [],
                'page': page, 'total_pages': len(pages)}


# ============================================================================
# PAYLOAD BUILDERS
# ============================================================================

NOVA_RAY_SPOTIFY_ID = '1NovaRaySpotifyId0000'


def spotify_artist(spotify_id=NOVA_RAY_SPOTIFY_ID, name='Nova Ray', genres=('indie pop',), **extra):
    payload = {
        'name': name,
        'external_ids': {'spotify': spotify_id},
        'image_url': f'https://img.example/{spotify_id}/640.jpg',
        'small_image_url': f'https://img.example/{spotify_id}/64.jpg',
        'genres': list(genres),
        'popularity': 61,
        'followers': 120500,
        'external_url': f'https://open.spotify.com/artist/{spotify_id}',
    }
    payload.update(extra)
    return payload


def spotify_track(spotify_id, title, **extra):
    payload = {
        'spotify_id': spotify_id,
        'title': title,
        'album_name': 'Low Orbit',
        'artwork_url': 'https://img.example/low-orbit.jpg',
        'duration_ms': 201000,
        'popularity': 55,
        'explicit': False,
        'track_number': 1,
        'isrc': None,
    }
    payload.update(extra)
    return payload


def tm_venue(venue_id='KovZ917Ahkk', name='The Fillmore', city='San Francisco', **extra):
    payload = {
        'ticketmaster_id': venue_id,
        'name': name,
        'address': '1805 Geary Blvd',
        'city': city,
        'state': 'CA',
        'country': 'US',
        'postal_code': '94115',
        'latitude': 37.784,
        'longitude': -122.433,
        'timezone': 'America/Los_Angeles',
        'capacity': None,
    }
    payload.update(extra)
    return payload


def tm_event(event_id, starts_at, venue=None, status='upcoming', name='Nova Ray: Low Orbit Tour'):
    return {
        'ticketmaster_id': event_id,
        'name': name,
        'starts_at': starts_at,
        'doors_at': None,
        'status': status,
        'ticket_url': f'https://www.ticketmaster.com/event/{event_id}',
        'price_min': 35.0,
        'price_max': 89.5,
        'currency': 'USD',
        'venue': venue,
    }


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def upserter(repository):
    return CatalogUpserter(repository)


@pytest.fixture
def bus():
    return ProgressBus(retention_seconds=300)


@pytest.fixture
def settings():
    return ImportSettings(upstream_max_retries=3, upstream_retry_base_delay=1.0, upstream_retry_max_delay=30)


@pytest.fixture
def spotify():
    return FakeSpotify()


@pytest.fixture
def ticketmaster():
    return FakeTicketmaster()


@pytest.fixture
def setlistfm():
    return FakeSetlistFm()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(bus, upserter, spotify, ticketmaster, setlistfm, settings, sleeps):
    return ImportOrchestrator(bus, upserter, spotify, ticketmaster, setlistfm,
                              settings=settings, sleep=sleeps.append)


@pytest.fixture
def recorder(bus):
    """Collects every payload the bus publishes, per job key"""
    captured = {}

    class Recorder:
        def watch(self, job_key):
            if job_key in captured:
                return
            captured[job_key] = []
            bus.subscribe(job_key, lambda key, payload: captured[key].append(payload))

        def stages(self, job_key):
            stages = []
            for payload in captured.get(job_key, []):
                if not stages or stages[-1] != payload['stage']:
                    stages.append(payload['stage'])
            return stages

        def events(self, job_key):
            return captured.get(job_key, [])

    return Recorder()


@pytest.fixture
def flask_app(bus, orchestrator, repository, settings):
    from app import create_app
    flask_app = create_app(settings=settings, progress_bus=bus, orchestrator=orchestrator, repository=repository)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
