"""
Tests for import_orchestrator: stage sequencing, retries, cooldown and
in-flight deduplication, all against the in-memory repository and fake
upstream clients from conftest.py
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from config import ImportSettings
from conftest import NOVA_RAY_SPOTIFY_ID, spotify_artist, spotify_track, tm_event, tm_venue
from import_orchestrator import (
    ArtistNotFound,
    ImportFailed,
    ImportOrchestrator,
    ImportRef,
    parse_job_key,
    ref_from_request,
)
from progress_bus import STAGE_COMPLETED, STAGE_FAILED, TERMINAL_STAGES
from service_errors import NotFound, RateLimited, UpstreamUnavailable

NOVA_KEY = f'spotify:{NOVA_RAY_SPOTIFY_ID}'
ATTRACTION_ID = 'K8vZ917NovaRay'
MBID = 'a74b1b7f-71a5-4011-9441-d0b5e4122711'

BASE_STAGES = ['initializing', 'resolving-artist', 'fetching-catalog', 'fetching-songs', 'fetching-shows']


def in_days(days):
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest.fixture
def nova_ray(spotify):
    """Nova Ray: a catalog artist with three top tracks and no ticketing or setlist presence"""
    spotify.artists[NOVA_RAY_SPOTIFY_ID] = spotify_artist()
    spotify.top_tracks[NOVA_RAY_SPOTIFY_ID] = [
        spotify_track('trk-low-orbit', 'Low Orbit'),
        spotify_track('trk-static-bloom', 'Static Bloom', track_number=2),
        spotify_track('trk-paper-moons', 'Paper Moons', track_number=3),
    ]
    return spotify.artists[NOVA_RAY_SPOTIFY_ID]


@pytest.fixture
def on_tour(nova_ray, ticketmaster):
    """Give Nova Ray a ticketing attraction with two shows at the same venue"""
    ticketmaster.search_results['Nova Ray'] = [
        {'name': 'Nova Ray Tribute Band', 'external_ids': {'ticketmaster': 'K8vZTribute'}, 'genres': ['Rock']},
        {'name': 'Nova Ray', 'external_ids': {'ticketmaster': ATTRACTION_ID}, 'genres': ['Pop', 'Indie Pop'],
         'image_url': 'https://tm.example/nova.jpg'},
    ]
    ticketmaster.events[ATTRACTION_ID] = [
        tm_event('Z7r9jZ1A7a', in_days(30), venue=tm_venue()),
        tm_event('Z7r9jZ1A7b', in_days(31), venue=tm_venue()),
    ]
    return ticketmaster


def run_triggered(orchestrator, recorder, job_key, **kwargs):
    recorder.watch(job_key)
    result = orchestrator.trigger_import(parse_job_key(job_key), **kwargs)
    assert orchestrator.wait(result['jobKey'], timeout=5)
    return result


# ============================================================================
# JOB KEYS
# ============================================================================

def test_parse_job_key():
    ref = parse_job_key(f'Spotify:{NOVA_RAY_SPOTIFY_ID}')
    assert ref == ImportRef('spotify', NOVA_RAY_SPOTIFY_ID)
    assert ref.job_key == NOVA_KEY


def test_parse_job_key_normalizes_internal_ids():
    artist_id = uuid.uuid4()
    assert parse_job_key(f'artist:{str(artist_id).upper()}').value == str(artist_id)


@pytest.mark.parametrize('job_key', ['', 'spotify', 'spotify:', 'myspace:abc', 'artist:not-a-uuid'])
def test_parse_job_key_rejects_malformed(job_key):
    with pytest.raises(ValueError):
        parse_job_key(job_key)


def test_ref_from_request():
    assert ref_from_request({'ticketmasterId': ' K8vZ1 '}) == ImportRef('ticketmaster', 'K8vZ1')
    with pytest.raises(ValueError):
        ref_from_request({'name': 'Nova Ray'})


# ============================================================================
# PIPELINE
# ============================================================================

def test_catalog_only_artist_completes_without_shows(orchestrator, recorder, repository, nova_ray):
    result = run_triggered(orchestrator, recorder, NOVA_KEY)

    assert result['started'] is True
    assert result['jobKey'] == NOVA_KEY
    assert recorder.stages(NOVA_KEY) == BASE_STAGES + ['persisting', 'completed']

    final = recorder.events(NOVA_KEY)[-1]
    assert final['progress'] == 100
    summary = final['metadata']
    assert summary['songsAdded'] == 3
    assert summary['showsAdded'] == 0
    assert summary['artistName'] == 'Nova Ray'
    assert summary['slug'] == 'nova-ray'

    [artist] = repository.rows('artists')
    assert artist['total_songs'] == 3
    assert artist['upcoming_shows'] == 0
    assert artist['last_full_sync_at'] is not None
    assert len(repository.rows('songs')) == 3
    assert repository.rows('shows') == []


def test_progress_never_decreases_and_ends_once(orchestrator, recorder, nova_ray):
    run_triggered(orchestrator, recorder, NOVA_KEY)

    events = recorder.events(NOVA_KEY)
    progress = [e['progress'] for e in events]
    assert progress == sorted(progress)
    assert [e['stage'] for e in events if e['stage'] in TERMINAL_STAGES] == [STAGE_COMPLETED]


def test_import_links_ticketing_and_stores_shows(orchestrator, recorder, repository, ticketmaster, on_tour):
    run_triggered(orchestrator, recorder, NOVA_KEY)

    assert recorder.stages(NOVA_KEY) == BASE_STAGES + ['persisting', 'completed']
    summary = recorder.events(NOVA_KEY)[-1]['metadata']
    assert summary['showsAdded'] == 2
    assert summary['venuesAdded'] == 1

    [artist] = repository.rows('artists')
    assert artist['ticketmaster_id'] == ATTRACTION_ID
    assert artist['genres'] == ['indie pop', 'Pop']
    # Catalog artwork wins over the ticketing image
    assert artist['image_url'] == nova_ray_image()
    assert artist['upcoming_shows'] == 2

    shows = repository.rows('shows')
    assert {s['ticketmaster_id'] for s in shows} == {'Z7r9jZ1A7a', 'Z7r9jZ1A7b'}
    assert len({s['venue_id'] for s in shows}) == 1
    assert ticketmaster.count('get_venue') == 0


def nova_ray_image():
    return spotify_artist()['image_url']


def test_reimport_updates_instead_of_duplicating(orchestrator, recorder, repository, on_tour):
    run_triggered(orchestrator, recorder, NOVA_KEY)
    run_triggered(orchestrator, recorder, NOVA_KEY, force=True)

    summary = recorder.events(NOVA_KEY)[-1]['metadata']
    assert summary['songsAdded'] == 0
    assert summary['songsUpdated'] == 3
    assert summary['showsAdded'] == 0
    assert summary['showsUpdated'] == 2
    assert len(repository.rows('artists')) == 1
    assert len(repository.rows('songs')) == 3
    assert len(repository.rows('shows')) == 2
    assert len(repository.rows('venues')) == 1


def test_sparse_venue_is_enriched_once(orchestrator, recorder, repository, ticketmaster, on_tour):
    sparse = tm_venue(address=None, latitude=None, longitude=None)
    ticketmaster.events[ATTRACTION_ID] = [
        tm_event('Z7r9jZ1A7a', in_days(30), venue=sparse),
        tm_event('Z7r9jZ1A7b', in_days(31), venue=sparse),
    ]
    ticketmaster.venues['KovZ917Ahkk'] = tm_venue()

    run_triggered(orchestrator, recorder, NOVA_KEY)

    assert ticketmaster.count('get_venue') == 1
    [venue] = repository.rows('venues')
    assert venue['address'] == '1805 Geary Blvd'
    assert venue['latitude'] == 37.784


def test_bad_track_is_skipped(orchestrator, recorder, spotify, nova_ray):
    spotify.top_tracks[NOVA_RAY_SPOTIFY_ID].append(spotify_track('trk-untitled', ''))

    run_triggered(orchestrator, recorder, NOVA_KEY)

    summary = recorder.events(NOVA_KEY)[-1]['metadata']
    assert recorder.events(NOVA_KEY)[-1]['stage'] == STAGE_COMPLETED
    assert summary['songsAdded'] == 3
    assert summary['skipped'] == 1


def test_full_catalog_skips_live_releases_and_duplicate_recordings(orchestrator, recorder, repository,
                                                                   spotify, nova_ray):
    spotify.top_tracks[NOVA_RAY_SPOTIFY_ID][0]['isrc'] = 'USNR12600001'
    spotify.add_album(NOVA_RAY_SPOTIFY_ID, 'alb-low-orbit', 'Low Orbit', [
        spotify_track('trk-low-orbit-album', 'Low Orbit', isrc='USNR12600001', popularity=40),
        spotify_track('trk-gravity-well', 'Gravity Well', isrc='USNR12600004', track_number=4),
        spotify_track('trk-low-orbit-live', 'Low Orbit (Live)', isrc='USNR12600099'),
    ])
    spotify.add_album(NOVA_RAY_SPOTIFY_ID, 'alb-deluxe', 'Low Orbit (Deluxe)', [
        spotify_track('trk-low-orbit-deluxe', 'Low Orbit', isrc='USNR12600001', popularity=62),
    ])
    spotify.add_album(NOVA_RAY_SPOTIFY_ID, 'alb-fillmore', 'Live at The Fillmore', [
        spotify_track('trk-halcyon-live', 'Halcyon', isrc='USNR12600050'),
    ])

    run_triggered(orchestrator, recorder, NOVA_KEY)

    summary = recorder.events(NOVA_KEY)[-1]['metadata']
    assert summary['songsAdded'] == 4
    assert {song['spotify_id'] for song in repository.rows('songs')} == {
        'trk-low-orbit-deluxe', 'trk-static-bloom', 'trk-paper-moons', 'trk-gravity-well'}
    assert ('get_album_tracks', 'alb-fillmore') not in spotify.calls
    assert [call for call in spotify.calls if call[0] == 'get_tracks'] == [
        ('get_tracks', ('trk-low-orbit-album', 'trk-gravity-well', 'trk-low-orbit-deluxe'))]


def test_catalog_import_can_be_limited_to_top_tracks(bus, upserter, spotify, ticketmaster, setlistfm,
                                                     recorder, repository, nova_ray):
    spotify.add_album(NOVA_RAY_SPOTIFY_ID, 'alb-low-orbit', 'Low Orbit', [
        spotify_track('trk-gravity-well', 'Gravity Well', isrc='USNR12600004'),
    ])
    orchestrator = ImportOrchestrator(bus, upserter, spotify, ticketmaster, setlistfm,
                                      settings=ImportSettings(import_full_catalog=False), sleep=lambda s: None)

    run_triggered(orchestrator, recorder, NOVA_KEY)

    assert spotify.count('get_artist_albums') == 0
    assert len(repository.rows('songs')) == 3


def test_missing_album_listing_is_not_fatal(orchestrator, recorder, spotify, nova_ray):
    spotify.failures['get_artist_albums'] = [NotFound('no albums', service='spotify', status_code=404)]

    run_triggered(orchestrator, recorder, NOVA_KEY)

    final = recorder.events(NOVA_KEY)[-1]
    assert final['stage'] == STAGE_COMPLETED
    assert final['metadata']['songsAdded'] == 3


def test_import_by_ticketing_id(orchestrator, recorder, repository, ticketmaster):
    ticketmaster.attractions[ATTRACTION_ID] = {
        'name': 'Nova Ray', 'external_ids': {'ticketmaster': ATTRACTION_ID}, 'genres': ['Pop'],
    }
    key = f'ticketmaster:{ATTRACTION_ID}'

    run_triggered(orchestrator, recorder, key)

    assert recorder.stages(key)[-1] == STAGE_COMPLETED
    [artist] = repository.rows('artists')
    assert artist['ticketmaster_id'] == ATTRACTION_ID
    assert artist['name'] == 'Nova Ray'
    # resolved from the cached attraction, not fetched twice
    assert ticketmaster.count('get_attraction') == 1


# ============================================================================
# SETLISTS
# ============================================================================

def chapel_setlist(setlist_id, day):
    return {
        'setlistfm_id': setlist_id,
        'name': 'Live at The Chapel',
        'starts_at': datetime(2025, 11, day),
        'status': 'completed',
        'ticket_url': None,
        'setlist_url': f'https://www.setlist.fm/setlist/nova-ray/{setlist_id}.html',
        'played_songs': ['Low Orbit', 'Static Bloom'],
        'venue': tm_venue(venue_id=None, name='The Chapel', address=None, latitude=None, longitude=None),
    }


def test_setlists_are_imported_when_requested(orchestrator, recorder, repository, setlistfm, nova_ray):
    setlistfm.search_results['Nova Ray'] = [{'name': 'Nova Ray', 'external_ids': {'setlistfm': MBID}}]
    setlistfm.setlists[MBID] = [[chapel_setlist('63de4613', 3), chapel_setlist('63de4614', 4)]]

    run_triggered(orchestrator, recorder, NOVA_KEY, include_setlists=True)

    assert recorder.stages(NOVA_KEY) == BASE_STAGES + ['fetching-setlists', 'persisting', 'completed']
    assert recorder.events(NOVA_KEY)[-1]['metadata']['setlistsImported'] == 2

    [artist] = repository.rows('artists')
    assert artist['setlistfm_id'] == MBID
    shows = repository.rows('shows')
    assert {s['status'] for s in shows} == {'completed'}
    assert artist['upcoming_shows'] == 0
    assert len(repository.rows('venues')) == 1


def test_setlist_not_found_degrades(orchestrator, recorder, setlistfm, nova_ray):
    setlistfm.search_results['Nova Ray'] = [{'name': 'Nova Ray', 'external_ids': {'setlistfm': MBID}}]

    run_triggered(orchestrator, recorder, NOVA_KEY, include_setlists=True)

    final = recorder.events(NOVA_KEY)[-1]
    assert final['stage'] == STAGE_COMPLETED
    assert final['metadata']['setlistsImported'] == 0
    assert 'no setlist history upstream' in final['metadata']['warnings']


def test_setlist_no_match_degrades(orchestrator, recorder, setlistfm, nova_ray):
    setlistfm.search_results['Nova Ray'] = [{'name': 'Completely Different', 'external_ids': {'setlistfm': MBID}}]

    run_triggered(orchestrator, recorder, NOVA_KEY, include_setlists=True)

    final = recorder.events(NOVA_KEY)[-1]
    assert final['stage'] == STAGE_COMPLETED
    assert 'no setlist history match' in final['metadata']['warnings']
    assert setlistfm.count('get_artist_setlists') == 0


def test_setlist_paging_is_capped(orchestrator, recorder, setlistfm, settings, nova_ray):
    setlistfm.search_results['Nova Ray'] = [{'name': 'Nova Ray', 'external_ids': {'setlistfm': MBID}}]
    setlistfm.setlists[MBID] = [[chapel_setlist(f'page{n}', n + 1)] for n in range(settings.setlist_max_pages + 2)]

    run_triggered(orchestrator, recorder, NOVA_KEY, include_setlists=True)

    assert setlistfm.count('get_artist_setlists') == settings.setlist_max_pages
    assert recorder.events(NOVA_KEY)[-1]['metadata']['setlistsImported'] == settings.setlist_max_pages


# ============================================================================
# FAILURES AND RETRIES
# ============================================================================

def test_transient_errors_are_retried_with_backoff(orchestrator, spotify, sleeps, nova_ray):
    spotify.failures['get_artist'] = [
        RateLimited(service='spotify', retry_after=7),
        UpstreamUnavailable('502 Bad Gateway', service='spotify', status_code=502),
    ]

    summary = orchestrator.run_import(parse_job_key(NOVA_KEY))

    assert summary['songsAdded'] == 3
    assert sleeps == [7, 2.0]
    assert spotify.count('get_artist') == 3


def test_retry_delay_is_capped(orchestrator, spotify, sleeps, nova_ray):
    spotify.failures['get_artist'] = [RateLimited(service='spotify', retry_after=600)]
    orchestrator.run_import(parse_job_key(NOVA_KEY))
    assert sleeps == [30]


def test_exhausted_retries_fail_the_stage(orchestrator, recorder, bus, spotify, sleeps, nova_ray):
    spotify.failures['get_artist'] = [
        UpstreamUnavailable('timed out', service='spotify') for _ in range(4)
    ]
    recorder.watch(NOVA_KEY)

    with pytest.raises(ImportFailed) as excinfo:
        orchestrator.run_import(parse_job_key(NOVA_KEY))

    assert excinfo.value.stage == 'resolving-artist'
    assert sleeps == [1.0, 2.0, 4.0]

    status = bus.get_status(NOVA_KEY)
    assert status['stage'] == STAGE_FAILED
    assert status['message'] == 'Import failed during resolving-artist'
    assert status['error'] == 'UpstreamUnavailable: timed out'
    assert status['metadata'] == {'failedStage': 'resolving-artist', 'errorType': 'UpstreamUnavailable',
                                  'service': 'spotify'}
    assert [e['stage'] for e in recorder.events(NOVA_KEY) if e['stage'] in TERMINAL_STAGES] == [STAGE_FAILED]


def test_unknown_upstream_artist_fails_without_retry(orchestrator, bus, sleeps):
    with pytest.raises(ImportFailed):
        orchestrator.run_import(parse_job_key('spotify:doesNotExist'))

    assert sleeps == []
    status = bus.get_status('spotify:doesNotExist')
    assert status['stage'] == STAGE_FAILED
    assert status['metadata']['errorType'] == 'NotFound'


def test_production_hides_error_detail(bus, upserter, spotify, ticketmaster, setlistfm):
    orchestrator = ImportOrchestrator(bus, upserter, spotify, ticketmaster, setlistfm,
                                      settings=ImportSettings(app_env='production'), sleep=lambda s: None)

    with pytest.raises(ImportFailed):
        orchestrator.run_import(parse_job_key('spotify:doesNotExist'))

    assert bus.get_status('spotify:doesNotExist')['error'] == 'NotFound'


def test_failure_in_background_thread_is_reported(orchestrator, recorder, bus):
    run_triggered(orchestrator, recorder, 'spotify:doesNotExist')

    assert recorder.stages('spotify:doesNotExist')[-1] == STAGE_FAILED
    assert not orchestrator.is_running('spotify:doesNotExist')


def test_catalog_outage_after_resolve_keeps_partial_rows(orchestrator, repository, spotify, bus, nova_ray):
    spotify.failures['get_artist_top_tracks'] = [
        UpstreamUnavailable('down', service='spotify') for _ in range(4)
    ]

    with pytest.raises(ImportFailed) as excinfo:
        orchestrator.run_import(parse_job_key(NOVA_KEY))

    assert excinfo.value.stage == 'fetching-songs'
    assert len(repository.rows('artists')) == 1
    assert repository.rows('artists')[0]['last_full_sync_at'] is None


# ============================================================================
# COOLDOWN AND IN-FLIGHT DEDUPLICATION
# ============================================================================

def test_recent_sync_is_not_reimported(orchestrator, recorder, repository, nova_ray):
    run_triggered(orchestrator, recorder, NOVA_KEY)

    again = orchestrator.trigger_import(parse_job_key(NOVA_KEY))
    assert again['started'] is False
    assert again['reason'] == 'recently-synced'
    assert again['status']['stage'] == STAGE_COMPLETED

    # Same artist by internal ID
    [artist] = repository.rows('artists')
    by_id = orchestrator.trigger_import(parse_job_key(f"artist:{artist['id']}"))
    assert by_id['started'] is False
    assert by_id['reason'] == 'recently-synced'


def test_force_bypasses_cooldown(orchestrator, recorder, nova_ray):
    run_triggered(orchestrator, recorder, NOVA_KEY)
    forced = run_triggered(orchestrator, recorder, NOVA_KEY, force=True)
    assert forced['started'] is True


def test_cooldown_expires(bus, upserter, spotify, ticketmaster, setlistfm, repository, settings, nova_ray):
    later = datetime.now(timezone.utc) + timedelta(seconds=settings.cooldown_seconds + 60)
    orchestrator = ImportOrchestrator(bus, upserter, spotify, ticketmaster, setlistfm,
                                      settings=settings, sleep=lambda s: None, now=lambda: later)
    orchestrator.run_import(parse_job_key(NOVA_KEY))

    assert orchestrator.recently_synced_artist(parse_job_key(NOVA_KEY)) is None
    result = orchestrator.trigger_import(parse_job_key(NOVA_KEY))
    assert result['started'] is True
    assert orchestrator.wait(NOVA_KEY, timeout=5)


def test_unknown_internal_artist_is_rejected(orchestrator):
    with pytest.raises(ArtistNotFound):
        orchestrator.trigger_import(parse_job_key(f'artist:{uuid.uuid4()}'))


def test_concurrent_triggers_share_one_job(orchestrator, recorder, upserter, spotify, nova_ray):
    artist, _ = upserter.upsert_artist(spotify_artist())
    entered = threading.Event()
    gate = threading.Event()
    original = spotify.get_artist

    def slow_get_artist(spotify_id):
        entered.set()
        gate.wait(5)
        return original(spotify_id)

    spotify.get_artist = slow_get_artist
    recorder.watch(NOVA_KEY)

    first = orchestrator.trigger_import(parse_job_key(NOVA_KEY))
    assert entered.wait(5)
    try:
        second = orchestrator.trigger_import(parse_job_key(NOVA_KEY))
        by_id = orchestrator.trigger_import(parse_job_key(f"artist:{artist['id']}"))
        assert orchestrator.active_jobs() == [NOVA_KEY]
    finally:
        gate.set()

    assert first['started'] is True
    assert second == {**second, 'started': False, 'reason': 'in-progress', 'jobKey': NOVA_KEY}
    assert by_id['started'] is False
    assert by_id['jobKey'] == NOVA_KEY

    assert orchestrator.wait(NOVA_KEY, timeout=5)
    assert [s for s in recorder.stages(NOVA_KEY) if s == STAGE_COMPLETED] == [STAGE_COMPLETED]
    assert orchestrator.active_jobs() == []


def test_new_artist_triggered_through_two_services_runs_once(orchestrator, recorder, repository,
                                                             spotify, ticketmaster, nova_ray):
    tm_key = f'ticketmaster:{ATTRACTION_ID}'
    ticketmaster.attractions[ATTRACTION_ID] = {
        'name': 'Nova Ray',
        'external_ids': {'ticketmaster': ATTRACTION_ID, 'spotify': NOVA_RAY_SPOTIFY_ID},
        'genres': ['Pop'],
    }
    entered = [threading.Event(), threading.Event()]
    gates = [threading.Event(), threading.Event()]
    original = spotify.get_artist
    seen = []

    def held_get_artist(spotify_id):
        # First caller is the spotify-keyed job resolving, second the ticketing job's catalog stage
        slot = min(len(seen), 1)
        seen.append(spotify_id)
        entered[slot].set()
        gates[slot].wait(5)
        return original(spotify_id)

    spotify.get_artist = held_get_artist
    recorder.watch(NOVA_KEY)
    recorder.watch(tm_key)

    try:
        by_spotify = orchestrator.trigger_import(parse_job_key(NOVA_KEY))
        assert entered[0].wait(5)
        by_ticketing = orchestrator.trigger_import(parse_job_key(tm_key))
        assert entered[1].wait(5)

        gates[0].set()
        assert orchestrator.wait(NOVA_KEY, timeout=5)
    finally:
        for gate in gates:
            gate.set()
    assert orchestrator.wait(tm_key, timeout=5)

    assert by_spotify['started'] is True
    assert by_ticketing['started'] is True

    deferred = recorder.events(NOVA_KEY)[-1]
    assert deferred['stage'] == STAGE_COMPLETED
    assert deferred['metadata']['redirectTo'] == tm_key
    assert 'fetching-catalog' not in recorder.stages(NOVA_KEY)

    owner = recorder.events(tm_key)[-1]
    assert owner['stage'] == STAGE_COMPLETED
    assert owner['metadata']['songsAdded'] == 3

    assert len(repository.rows('artists')) == 1
    assert spotify.count('get_artist_top_tracks') == 1
    assert orchestrator.active_jobs() == []


def test_recently_synced_status_outlives_progress_retention(orchestrator, bus, recorder, nova_ray):
    run_triggered(orchestrator, recorder, NOVA_KEY)
    bus.retention_seconds = 0
    assert bus.get_status(NOVA_KEY) is None

    result = orchestrator.trigger_import(parse_job_key(NOVA_KEY))

    assert result['started'] is False
    assert result['reason'] == 'recently-synced'
    assert result['status']['stage'] == STAGE_COMPLETED
    assert result['status']['progress'] == 100
    assert result['status']['metadata']['totalSongs'] == 3

    artist_id = result['status']['metadata']['artistId']
    assert orchestrator.current_status(parse_job_key(f'artist:{artist_id}'))['stage'] == STAGE_COMPLETED
    assert orchestrator.current_status(parse_job_key('spotify:neverImported')) is None
    assert orchestrator.current_status(parse_job_key(f'artist:{uuid.uuid4()}')) is None


def test_setlists_follow_configured_default(bus, upserter, spotify, ticketmaster, setlistfm, recorder, nova_ray):
    settings = ImportSettings(import_setlists_by_default=True)
    orchestrator = ImportOrchestrator(bus, upserter, spotify, ticketmaster, setlistfm,
                                      settings=settings, sleep=lambda s: None)

    run_triggered(orchestrator, recorder, NOVA_KEY)

    assert 'fetching-setlists' in recorder.stages(NOVA_KEY)
    assert setlistfm.count('search_artists') == 1


def test_not_found_is_not_transient():
    assert not NotFound('gone').transient
