"""
Artist Import Orchestrator

Sequences one artist import and drives the ProgressBus:

    initializing -> resolving-artist -> fetching-catalog -> fetching-songs
    -> fetching-shows -> [fetching-setlists] -> persisting -> completed

Any uncaught error moves the job straight to 'failed'; rows written by
earlier stages stay (each upsert is its own transaction and a later
re-import fills the gaps).

Each triggered import runs on its own daemon thread. The orchestrator is
the only place that enforces the re-sync cooldown and the one-job-per-artist
rule, and the only place that retries upstream calls.
"""

import time
import uuid
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from catalog_upsert import CatalogUpserter, dedupe_tracks, merge_genres, utcnow
from config import ImportSettings
from name_matching import is_likely_live_album, is_likely_live_title, pick_best_match
from progress_bus import (
    ProgressBus,
    STAGE_COMPLETED,
    STAGE_FAILED,
    STAGE_FETCHING_CATALOG,
    STAGE_FETCHING_SETLISTS,
    STAGE_FETCHING_SHOWS,
    STAGE_FETCHING_SONGS,
    STAGE_INITIALIZING,
    STAGE_PERSISTING,
    STAGE_RESOLVING_ARTIST,
)
from service_errors import (
    ExternalServiceError,
    NotFound,
    PersistenceError,
    RateLimited,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

# Job key prefix -> artists column holding that service's ID
JOB_KEY_SOURCES = {
    'artist': 'id',
    'spotify': 'spotify_id',
    'ticketmaster': 'ticketmaster_id',
    'setlistfm': 'setlistfm_id',
}

# Request body field -> job key prefix
REQUEST_ID_FIELDS = {
    'artistId': 'artist',
    'spotifyId': 'spotify',
    'ticketmasterId': 'ticketmaster',
    'setlistfmId': 'setlistfm',
}

# Progress percentage at the start of each stage
STAGE_PROGRESS = {
    STAGE_INITIALIZING: 0,
    STAGE_RESOLVING_ARTIST: 10,
    STAGE_FETCHING_CATALOG: 25,
    STAGE_FETCHING_SONGS: 40,
    STAGE_FETCHING_SHOWS: 55,
    STAGE_FETCHING_SETLISTS: 75,
    STAGE_PERSISTING: 90,
    STAGE_COMPLETED: 100,
}

# Report in-stage progress every N stored items
PROGRESS_EVERY = 10


class ArtistNotFound(LookupError):
    """An internal artist ID that is not in the database"""


class ImportFailed(Exception):
    """Raised by run_import after the failure was reported to the progress bus"""

    def __init__(self, job_key: str, stage: str, error: Exception):
        self.job_key = job_key
        self.stage = stage
        self.error = error
        super().__init__(f"{job_key}: {stage} failed: {error}")


# ============================================================================
# JOB KEYS
# ============================================================================

@dataclass(frozen=True)
class ImportRef:
    """What to import: an internal artist ID or one service's artist ID"""

    source: str
    value: str

    @property
    def job_key(self) -> str:
        return f"{self.source}:{self.value}"

    def __str__(self):
        return self.job_key


def parse_job_key(job_key: str) -> ImportRef:
    """
    'spotify:4Z8W...' -> ImportRef('spotify', '4Z8W...')

    Raises:
        ValueError: unknown prefix, empty ID or malformed internal ID
    """
    source, sep, value = (job_key or '').partition(':')
    source = source.strip().lower()
    value = value.strip()
    if not sep or source not in JOB_KEY_SOURCES or not value:
        raise ValueError(f"Invalid job key '{job_key}' (expected one of "
                         f"{', '.join(p + ':<id>' for p in JOB_KEY_SOURCES)})")
    if source == 'artist':
        try:
            value = str(uuid.UUID(value))
        except ValueError:
            raise ValueError(f"Invalid artist ID '{value}'")
    return ImportRef(source, value)


def ref_from_request(data: Dict[str, Any]) -> ImportRef:
    """Pick the identifier out of a trigger request body (first present field wins)"""
    for field_name, source in REQUEST_ID_FIELDS.items():
        value = data.get(field_name)
        if value is not None and str(value).strip():
            return parse_job_key(f"{source}:{str(value).strip()}")
    raise ValueError(f"One of {', '.join(REQUEST_ID_FIELDS)} is required")


# ============================================================================
# RUN STATE
# ============================================================================

@dataclass
class ImportJob:
    ref: ImportRef
    include_setlists: bool
    thread: Optional[threading.Thread] = None
    artist_id: Any = None
    started_at: float = field(default_factory=time.time)


@dataclass
class ImportRun:
    """Counters and cached upstream payloads for one pipeline execution"""

    ref: ImportRef
    catalog_payload: Optional[dict] = None
    attraction_payload: Optional[dict] = None
    songs_added: int = 0
    songs_updated: int = 0
    shows_added: int = 0
    shows_updated: int = 0
    venues_added: int = 0
    setlists_imported: int = 0
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)

    def summary(self, artist: dict) -> Dict[str, Any]:
        return {
            'artistId': artist['id'],
            'artistName': artist.get('name'),
            'slug': artist.get('slug'),
            'songsAdded': self.songs_added,
            'songsUpdated': self.songs_updated,
            'showsAdded': self.shows_added,
            'showsUpdated': self.shows_updated,
            'venuesAdded': self.venues_added,
            'setlistsImported': self.setlists_imported,
            'skipped': self.skipped,
            'warnings': list(self.warnings),
        }


def synced_status(artist: dict) -> Dict[str, Any]:
    """'completed' payload for an artist whose last full sync is still in the cooldown window"""
    synced_at = artist.get('last_full_sync_at')
    if isinstance(synced_at, datetime):
        if synced_at.tzinfo is None:
            synced_at = synced_at.replace(tzinfo=timezone.utc)
        synced_at = synced_at.isoformat()
    return {
        'stage': STAGE_COMPLETED,
        'progress': 100,
        'message': f"{artist.get('name')} was imported recently",
        'updatedAt': synced_at,
        'metadata': {
            'artistId': str(artist['id']),
            'artistName': artist.get('name'),
            'slug': artist.get('slug'),
            'totalSongs': artist.get('total_songs'),
            'upcomingShows': artist.get('upcoming_shows'),
            'lastFullSyncAt': synced_at,
        },
    }


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class ImportOrchestrator:
    """
    Top-level coordinator for artist imports
    """

    def __init__(self, progress_bus: ProgressBus, upserter: CatalogUpserter, spotify, ticketmaster, setlistfm,
                 settings: ImportSettings = None, sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], datetime] = utcnow):
        self.bus = progress_bus
        self.upserter = upserter
        self.repository = upserter.repository
        self.spotify = spotify
        self.ticketmaster = ticketmaster
        self.setlistfm = setlistfm
        self.settings = settings or ImportSettings()
        self._sleep = sleep
        self._now = now

        self._lock = threading.Lock()
        self._jobs: Dict[str, ImportJob] = {}
        self._artist_jobs: Dict[Any, str] = {}

    @classmethod
    def from_settings(cls, progress_bus: ProgressBus, settings: ImportSettings, repository=None):
        """Wire the production clients and PostgreSQL repository"""
        from catalog_db import CatalogRepository
        from setlistfm_client import SetlistFmClient
        from spotify_client import SpotifyClient
        from ticketmaster_client import TicketmasterClient

        timeout = settings.upstream_timeout_seconds
        return cls(
            progress_bus,
            CatalogUpserter(repository or CatalogRepository()),
            spotify=SpotifyClient(market=settings.spotify_market, timeout=timeout),
            ticketmaster=TicketmasterClient(timeout=timeout),
            setlistfm=SetlistFmClient(timeout=timeout),
            settings=settings,
        )

    # ========================================================================
    # TRIGGERING
    # ========================================================================

    def trigger_import(self, ref: ImportRef, force: bool = False,
                       include_setlists: Optional[bool] = None) -> Dict[str, Any]:
        """
        Start an import on a background thread unless one is running or the
        artist was fully synced within the cooldown window

        Returns:
            {'started': bool, 'jobKey': str, 'status': dict, 'reason'?: str}

        Raises:
            ArtistNotFound: ref is an internal ID with no artist row
        """
        include = self.settings.import_setlists_by_default if include_setlists is None else include_setlists
        artist = self._find_existing_artist(ref)

        with self._lock:
            in_flight = self._jobs.get(ref.job_key)
            if in_flight is None and artist is not None:
                alias = self._artist_jobs.get(artist['id'])
                in_flight = self._jobs.get(alias) if alias else None
            if in_flight is not None:
                key = in_flight.ref.job_key
                logger.info(f"Import for {ref} already running as {key}")
                return self._not_started(key, 'in-progress')

            if not force and artist is not None and self._recently_synced(artist):
                logger.info(f"Skipping import for {ref}: synced at {artist.get('last_full_sync_at')}")
                return self._not_started(ref.job_key, 'recently-synced', artist)

            job = ImportJob(ref=ref, include_setlists=include)
            if artist is not None:
                job.artist_id = artist['id']
                self._artist_jobs[artist['id']] = ref.job_key
            self._jobs[ref.job_key] = job

        self.bus.report(ref.job_key, STAGE_INITIALIZING, 0, f"Import queued for {ref}")

        job.thread = threading.Thread(
            target=self._run_job,
            args=(job,),
            daemon=True,
            name=f"Import-{ref.job_key}"
        )
        job.thread.start()
        logger.info(f"Started import thread for {ref} (setlists={'on' if include else 'off'})")

        return {'started': True, 'jobKey': ref.job_key, 'status': self.bus.get_status(ref.job_key)}

    def _not_started(self, job_key: str, reason: str, synced_artist: dict = None) -> Dict[str, Any]:
        status = self.bus.get_status(job_key)
        if status is None and synced_artist is not None:
            status = synced_status(synced_artist)
        return {
            'started': False,
            'jobKey': job_key,
            'reason': reason,
            'status': status,
        }

    def current_status(self, ref: ImportRef) -> Optional[dict]:
        """
        Latest progress payload for ref

        Once the bus has evicted a finished job, an artist still inside the
        cooldown window reads as 'completed' (built from the stored sync
        time and totals) rather than as a job that never started.
        """
        status = self.bus.get_status(ref.job_key)
        if status is not None:
            return status
        try:
            artist = self.recently_synced_artist(ref)
        except ArtistNotFound:
            return None
        return synced_status(artist) if artist is not None else None

    def _find_existing_artist(self, ref: ImportRef) -> Optional[dict]:
        if ref.source == 'artist':
            artist = self.repository.get_artist(ref.value)
            if artist is None:
                raise ArtistNotFound(f"No artist with ID {ref.value}")
            return artist
        return self.repository.find_artist_by_external_ids({JOB_KEY_SOURCES[ref.source]: ref.value})

    def recently_synced_artist(self, ref: ImportRef) -> Optional[dict]:
        """The stored artist for ref if its last full sync is inside the cooldown window"""
        artist = self._find_existing_artist(ref)
        return artist if artist is not None and self._recently_synced(artist) else None

    def _recently_synced(self, artist: dict) -> bool:
        synced_at = artist.get('last_full_sync_at')
        if synced_at is None:
            return False
        if synced_at.tzinfo is None:
            synced_at = synced_at.replace(tzinfo=timezone.utc)
        return self._now() - synced_at < timedelta(seconds=self.settings.cooldown_seconds)

    def _run_job(self, job: ImportJob):
        try:
            self.run_import(job.ref, include_setlists=job.include_setlists, job=job, announce=False)
        except ImportFailed as e:
            logger.warning(f"Import {job.ref} ended in failure at {e.stage}")
        except Exception as e:
            # run_import reports its own failures; this only catches bugs in that reporting
            logger.error(f"Unhandled error in import thread for {job.ref}: {e}", exc_info=True)
            self.bus.report(job.ref.job_key, STAGE_FAILED, 100, "Import failed unexpectedly",
                            error=self._error_text(e))
        finally:
            with self._lock:
                self._jobs.pop(job.ref.job_key, None)
                if job.artist_id is not None and self._artist_jobs.get(job.artist_id) == job.ref.job_key:
                    del self._artist_jobs[job.artist_id]

    def active_jobs(self) -> List[str]:
        with self._lock:
            return sorted(self._jobs)

    def is_running(self, job_key: str) -> bool:
        with self._lock:
            return job_key in self._jobs

    def wait(self, job_key: str, timeout: float = None) -> bool:
        """Block until the job's thread finishes; True if it did within the timeout"""
        with self._lock:
            job = self._jobs.get(job_key)
        if job is None or job.thread is None:
            return True
        job.thread.join(timeout)
        return not job.thread.is_alive()

    # ========================================================================
    # PIPELINE
    # ========================================================================

    def run_import(self, ref: ImportRef, include_setlists: Optional[bool] = None,
                   job: ImportJob = None, announce: bool = True) -> Dict[str, Any]:
        """
        Run the whole pipeline on the calling thread

        Returns:
            Summary counts (also sent as the 'completed' event's metadata)

        Raises:
            ImportFailed: after 'failed' has been reported
        """
        job_key = ref.job_key
        include = self.settings.import_setlists_by_default if include_setlists is None else include_setlists
        run = ImportRun(ref=ref)
        stage = STAGE_INITIALIZING

        try:
            if announce:
                self._enter(job_key, STAGE_INITIALIZING, f"Starting import for {ref}")

            stage = STAGE_RESOLVING_ARTIST
            self._enter(job_key, stage, "Resolving artist")
            artist = self._resolve_artist(ref, run)
            if job is not None:
                owner = self._claim_artist(job, artist['id'])
                if owner is not None:
                    return self._defer_to(job_key, owner, artist)

            stage = STAGE_FETCHING_CATALOG
            self._enter(job_key, stage, f"Fetching catalog data for {artist['name']}")
            artist = self._fetch_catalog(artist, run)

            stage = STAGE_FETCHING_SONGS
            self._enter(job_key, stage, "Fetching top tracks and catalog")
            self._fetch_songs(job_key, artist, run)

            stage = STAGE_FETCHING_SHOWS
            self._enter(job_key, stage, "Fetching upcoming shows")
            self._fetch_shows(job_key, artist, run)

            if include:
                stage = STAGE_FETCHING_SETLISTS
                self._enter(job_key, stage, "Fetching setlist history")
                artist = self._fetch_setlists(job_key, artist, run)

            stage = STAGE_PERSISTING
            self._enter(job_key, stage, "Finalizing artist")
            artist = self.upserter.finalize_artist(artist['id'])

        except Exception as e:
            self._fail(job_key, stage, e)
            raise ImportFailed(job_key, stage, e) from e

        summary = run.summary(artist)
        self.bus.report(
            job_key, STAGE_COMPLETED, 100,
            f"Imported {artist['name']}: {run.songs_added} songs and {run.shows_added} shows added",
            metadata=summary
        )
        return summary

    def _enter(self, job_key: str, stage: str, message: str):
        self.bus.report(job_key, stage, STAGE_PROGRESS[stage], message)

    def _step(self, job_key: str, stage: str, next_stage: str, done: int, total: int, label: str):
        """In-stage progress, kept strictly below the next stage's starting percentage"""
        if total <= 0 or (done % PROGRESS_EVERY and done != total):
            return
        start, end = STAGE_PROGRESS[stage], STAGE_PROGRESS[next_stage] - 1
        self.bus.report(job_key, stage, start + (end - start) * done // total, f"Stored {done}/{total} {label}")

    def _claim_artist(self, job: ImportJob, artist_id) -> Optional[str]:
        """
        Register job as the one import for artist_id

        Returns:
            None if the claim succeeded, else the key of the live job that
            already owns the artist (reached through another identifier)
        """
        with self._lock:
            owner = self._artist_jobs.get(artist_id)
            if owner is not None and owner != job.ref.job_key and owner in self._jobs:
                return owner
            job.artist_id = artist_id
            self._artist_jobs[artist_id] = job.ref.job_key
            return None

    def _defer_to(self, job_key: str, owner: str, artist: dict) -> Dict[str, Any]:
        """End this run without work; the owning job's stream carries the import"""
        logger.info(f"[{job_key}] {artist['name']} is already being imported as {owner}, stopping")
        metadata = {
            'artistId': artist['id'],
            'artistName': artist.get('name'),
            'slug': artist.get('slug'),
            'redirectTo': owner,
        }
        self.bus.report(job_key, STAGE_COMPLETED, 100,
                        f"{artist['name']} is already being imported as {owner}", metadata=metadata)
        return metadata

    def _fail(self, job_key: str, stage: str, error: Exception):
        logger.error(f"[{job_key}] {stage} failed: {type(error).__name__}: {error}",
                     exc_info=not isinstance(error, (ExternalServiceError, PersistenceError, ArtistNotFound)))
        metadata = {'failedStage': stage, 'errorType': type(error).__name__}
        service = getattr(error, 'service', None)
        if service:
            metadata['service'] = service
        self.bus.report(job_key, STAGE_FAILED, STAGE_PROGRESS.get(stage, 0),
                        f"Import failed during {stage}", error=self._error_text(error), metadata=metadata)

    def _error_text(self, error: Exception) -> str:
        if self.settings.production:
            return type(error).__name__
        return f"{type(error).__name__}: {error}"

    # ========================================================================
    # UPSTREAM CALLS
    # ========================================================================

    def _backoff_delay(self, error: Exception, attempt: int) -> float:
        max_delay = self.settings.upstream_retry_max_delay
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), max_delay)
        return min(self.settings.upstream_retry_base_delay * (2 ** attempt), max_delay)

    def _call(self, description: str, func: Callable, *args, **kwargs):
        """Call an upstream client, retrying RateLimited/UpstreamUnavailable with backoff"""
        max_retries = self.settings.upstream_max_retries
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except (RateLimited, UpstreamUnavailable) as e:
                if attempt >= max_retries:
                    logger.error(f"{description}: giving up after {attempt + 1} attempts ({e})")
                    raise
                delay = self._backoff_delay(e, attempt)
                attempt += 1
                logger.warning(f"{description}: {e} - retry {attempt}/{max_retries} in {delay:.1f}s")
                self._sleep(delay)

    def _call_optional(self, description: str, func: Callable, *args, **kwargs):
        """Like _call, but upstream NotFound is an empty result (None)"""
        try:
            return self._call(description, func, *args, **kwargs)
        except NotFound:
            logger.info(f"{description}: nothing found upstream")
            return None

    def _discover(self, description: str, search: Callable, name: str) -> Optional[dict]:
        """Search one service by name and accept the best fuzzy match above the threshold"""
        candidates = self._call_optional(description, search, name) or []
        match = pick_best_match(name, candidates, threshold=self.settings.name_match_threshold)
        if match:
            logger.info(f"{description}: matched '{name}' to '{match.get('name')}'")
        return match

    # ========================================================================
    # STAGES
    # ========================================================================

    def _resolve_artist(self, ref: ImportRef, run: ImportRun) -> dict:
        """Load or create the artist row; upstream NotFound here is fatal"""
        if ref.source == 'artist':
            artist = self.repository.get_artist(ref.value)
            if artist is None:
                raise ArtistNotFound(f"No artist with ID {ref.value}")
            return artist

        existing = self.repository.find_artist_by_external_ids({JOB_KEY_SOURCES[ref.source]: ref.value})
        if existing is not None:
            return existing

        if ref.source == 'spotify':
            payload = self._call(f"spotify artist {ref.value}", self.spotify.get_artist, ref.value)
            run.catalog_payload = payload
        elif ref.source == 'ticketmaster':
            payload = self._call(f"ticketmaster attraction {ref.value}",
                                 self.ticketmaster.get_attraction, ref.value)
            run.attraction_payload = payload
        else:
            payload = self._call(f"setlistfm artist {ref.value}", self.setlistfm.get_artist, ref.value)

        artist, created = self.upserter.upsert_artist(payload)
        logger.info(f"{'Created' if created else 'Matched'} artist '{artist['name']}' for {ref}")
        return artist

    def _fetch_catalog(self, artist: dict, run: ImportRun) -> dict:
        """Refresh catalog metadata and link/merge the ticketing attraction"""
        name = artist['name']

        catalog = run.catalog_payload
        if catalog is None and artist.get('spotify_id'):
            catalog = self._call_optional(f"spotify artist {artist['spotify_id']}",
                                          self.spotify.get_artist, artist['spotify_id'])
        elif catalog is None:
            catalog = self._discover(f"spotify search '{name}'", self.spotify.search_artists, name)

        attraction = run.attraction_payload
        if attraction is None and artist.get('ticketmaster_id'):
            attraction = self._call_optional(f"ticketmaster attraction {artist['ticketmaster_id']}",
                                             self.ticketmaster.get_attraction, artist['ticketmaster_id'])
        elif attraction is None:
            attraction = self._discover(f"ticketmaster search '{name}'",
                                        self.ticketmaster.search_attractions, name)

        payload = dict(catalog or {})
        external_ids = dict(payload.get('external_ids') or {})
        genres = list(payload.get('genres') or [])
        if attraction:
            for service, value in (attraction.get('external_ids') or {}).items():
                if value:
                    external_ids.setdefault(service, value)
            genres = merge_genres(genres, attraction.get('genres'))
            # Ticketing images only fill a gap; catalog artwork is preferred
            if not artist.get('image_url') and not payload.get('image_url'):
                payload['image_url'] = attraction.get('image_url')

        payload['external_ids'] = external_ids
        payload['genres'] = genres
        payload.pop('name', None)  # keep the resolved display name

        if not catalog and not attraction:
            run.warnings.append('no catalog or ticketing match')
        artist, _ = self.upserter.upsert_artist(payload, artist_id=artist['id'])
        return artist

    def _fetch_songs(self, job_key: str, artist: dict, run: ImportRun):
        spotify_id = artist.get('spotify_id')
        if not spotify_id:
            logger.info(f"[{job_key}] no catalog ID for {artist['name']}, skipping top tracks")
            return

        tracks = self._call_optional(f"spotify top tracks {spotify_id}",
                                     self.spotify.get_artist_top_tracks, spotify_id,
                                     self.settings.spotify_market) or []
        if self.settings.import_full_catalog:
            tracks = tracks + self._fetch_studio_catalog(job_key, spotify_id)

        tracks = dedupe_tracks(t for t in tracks if not is_likely_live_title(t.get('title')))
        for index, track in enumerate(tracks, start=1):
            try:
                _, created = self.upserter.upsert_song(track, artist['id'])
            except PersistenceError as e:
                logger.warning(f"[{job_key}] skipping track {track.get('spotify_id')}: {e}")
                run.skipped += 1
                continue
            if created:
                run.songs_added += 1
            else:
                run.songs_updated += 1
            self._step(job_key, STAGE_FETCHING_SONGS, STAGE_FETCHING_SHOWS, index, len(tracks), 'songs')

    def _fetch_studio_catalog(self, job_key: str, spotify_id: str) -> List[dict]:
        """Full track payloads for every studio album and single (live releases skipped)"""
        albums = self._call_optional(f"spotify albums {spotify_id}", self.spotify.get_artist_albums,
                                     spotify_id, max_albums=self.settings.catalog_max_albums) or []
        studio_albums = [a for a in albums if a.get('spotify_id') and not is_likely_live_album(a.get('name'))]
        logger.info(f"[{job_key}] {len(studio_albums)} studio releases of {len(albums)}")

        track_ids = []
        for index, album in enumerate(studio_albums, start=1):
            listing = self._call_optional(f"spotify album {album['spotify_id']} tracks",
                                          self.spotify.get_album_tracks, album['spotify_id']) or []
            track_ids.extend(t['spotify_id'] for t in listing
                             if t.get('spotify_id') and not is_likely_live_title(t.get('title')))
            if index % PROGRESS_EVERY == 0:
                self.bus.report(job_key, STAGE_FETCHING_SONGS, STAGE_PROGRESS[STAGE_FETCHING_SONGS],
                                f"Read {index}/{len(studio_albums)} releases")

        track_ids = list(dict.fromkeys(track_ids))
        if not track_ids:
            return []
        return self._call_optional(f"spotify track details ({len(track_ids)})",
                                   self.spotify.get_tracks, track_ids) or []

    def _fetch_shows(self, job_key: str, artist: dict, run: ImportRun):
        attraction_id = artist.get('ticketmaster_id')
        if not attraction_id:
            logger.info(f"[{job_key}] no ticketing ID for {artist['name']}, no upcoming shows to fetch")
            return

        start = self._now()
        end = start + timedelta(days=self.settings.shows_lookahead_days)
        events = self._call_optional(f"ticketmaster events {attraction_id}", self.ticketmaster.get_events,
                                     attraction_id=attraction_id, start=start, end=end) or []

        venue_cache: Dict[str, Optional[dict]] = {}
        for index, event in enumerate(events, start=1):
            try:
                venue = self._store_venue(event.get('venue'), venue_cache, run)
                _, created = self.upserter.upsert_show(event, artist['id'], venue['id'] if venue else None)
            except PersistenceError as e:
                logger.warning(f"[{job_key}] skipping event {event.get('ticketmaster_id')}: {e}")
                run.skipped += 1
                continue
            if created:
                run.shows_added += 1
            else:
                run.shows_updated += 1
            self._step(job_key, STAGE_FETCHING_SHOWS, STAGE_FETCHING_SETLISTS, index, len(events), 'shows')

    def _store_venue(self, venue: Optional[dict], cache: Dict[str, Optional[dict]], run: ImportRun) -> Optional[dict]:
        """Upsert an event's venue, enriching sparse embedded venues from the venue detail endpoint"""
        if not venue:
            return None

        tm_id = venue.get('ticketmaster_id')
        if tm_id and tm_id in cache:
            return cache[tm_id]

        if tm_id and (not venue.get('address') or venue.get('latitude') is None):
            detail = self._call_optional(f"ticketmaster venue {tm_id}", self.ticketmaster.get_venue, tm_id)
            if detail:
                venue = {**venue, **{k: v for k, v in detail.items() if v is not None}}

        row, created = self.upserter.upsert_venue(venue)
        if created:
            run.venues_added += 1
        if tm_id:
            cache[tm_id] = row
        return row

    def _fetch_setlists(self, job_key: str, artist: dict, run: ImportRun) -> dict:
        """Historical setlists; a missing artist upstream degrades to zero setlists"""
        mbid = artist.get('setlistfm_id')
        if not mbid:
            match = self._discover(f"setlistfm search '{artist['name']}'",
                                   self.setlistfm.search_artists, artist['name'])
            if not match:
                run.warnings.append('no setlist history match')
                return artist
            artist, _ = self.upserter.upsert_artist({'external_ids': match['external_ids']},
                                                    artist_id=artist['id'])
            mbid = artist.get('setlistfm_id')
            if not mbid:
                # Another artist row already owns that setlist ID
                run.warnings.append('setlist history ID belongs to another artist')
                return artist

        page = 1
        total_pages = 1
        while page <= min(total_pages, self.settings.setlist_max_pages):
            result = self._call_optional(f"setlistfm setlists {mbid} p{page}",
                                         self.setlistfm.get_artist_setlists, mbid, page)
            if result is None:
                if page == 1:
                    run.warnings.append('no setlist history upstream')
                break
            total_pages = result.get('total_pages') or 0

            setlists = result.get('setlists') or []
            for setlist in setlists:
                try:
                    venue = self._store_venue(setlist.get('venue'), {}, run)
                    self.upserter.upsert_show(setlist, artist['id'], venue['id'] if venue else None)
                except PersistenceError as e:
                    logger.warning(f"[{job_key}] skipping setlist {setlist.get('setlistfm_id')}: {e}")
                    run.skipped += 1
                    continue
                run.setlists_imported += 1

            self.bus.report(job_key, STAGE_FETCHING_SETLISTS,
                            STAGE_PROGRESS[STAGE_FETCHING_SETLISTS] + min(page, 14),
                            f"Stored {run.setlists_imported} setlists ({page} page{'s' if page > 1 else ''})")
            page += 1

        return artist
