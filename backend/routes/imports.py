# routes/imports.py
"""
Artist import endpoints

POST /artists/import              trigger (or no-op) an import
GET  /imports/<job_key>/status    point-in-time status, or a live
                                  text/event-stream when the client asks for one
GET  /imports/active              every job that has not reached a terminal stage
"""

import queue
import logging
from flask import Blueprint, Response, current_app, jsonify, request, url_for

from import_orchestrator import ArtistNotFound, parse_job_key, ref_from_request
from progress_bus import initializing_status, is_terminal, stage_index
from routes import error_response
from utils.helpers import parse_bool

logger = logging.getLogger(__name__)
imports_bp = Blueprint('imports', __name__)


def _bus():
    return current_app.extensions['progress_bus']


def _orchestrator():
    return current_app.extensions['import_orchestrator']


def _wants_stream() -> bool:
    best = request.accept_mimetypes.best_match(['application/json', 'text/event-stream'])
    return best == 'text/event-stream' and request.accept_mimetypes['text/event-stream'] > 0


@imports_bp.route('/artists/import', methods=['POST'])
def trigger_artist_import():
    """
    Start an artist import in the background

    Body (JSON): one of artistId / spotifyId / ticketmasterId / setlistfmId,
    optional force (bypass the re-sync cooldown) and includeSetlists.

    Returns:
        202 when a new pipeline was started, 200 when an import is already
        running or the artist was synced recently (reason says which)
    """
    data = request.get_json(silent=True) or {}

    try:
        ref = ref_from_request(data)
    except ValueError as e:
        return jsonify({'error': 'Invalid import request', 'message': str(e)}), 400

    include_setlists = data.get('includeSetlists')
    if include_setlists is not None:
        include_setlists = parse_bool(include_setlists)

    try:
        result = _orchestrator().trigger_import(
            ref,
            force=parse_bool(data.get('force')),
            include_setlists=include_setlists
        )
    except ArtistNotFound:
        return jsonify({'error': 'Artist not found', 'artistId': ref.value}), 404
    except Exception as e:
        logger.error(f"Error starting import for {ref}: {e}", exc_info=True)
        return error_response('Failed to start import', e)

    result['statusUrl'] = url_for('imports.import_status', job_key=result['jobKey'])
    return jsonify(result), 202 if result['started'] else 200


@imports_bp.route('/imports/<path:job_key>/status', methods=['GET'])
def import_status(job_key):
    """
    Status of one import job

    Plain requests get the latest payload ({stage, progress, message,
    updatedAt, error?}). An artist synced within the cooldown window whose
    progress was already evicted reads as 'completed'; otherwise a synthetic
    'initializing' payload is returned for keys nothing has been reported
    for. With Accept: text/event-stream the same payloads are streamed until
    a terminal stage.

    Query Parameters:
        autostart (bool, optional): start an import for the key if none is running
    """
    try:
        ref = parse_job_key(job_key)
    except ValueError as e:
        return jsonify({'error': 'Invalid job key', 'message': str(e)}), 400

    bus = _bus()
    orchestrator = _orchestrator()

    if parse_bool(request.args.get('autostart')) and not bus.is_active(ref.job_key):
        try:
            orchestrator.trigger_import(ref)
        except ArtistNotFound:
            return jsonify({'error': 'Artist not found', 'artistId': ref.value}), 404
        except Exception as e:
            logger.error(f"Error auto-starting import for {ref}: {e}", exc_info=True)
            return error_response('Failed to start import', e)

    if _wants_stream():
        settings = current_app.extensions['import_settings']
        return Response(
            stream_status(bus, ref.job_key, current_app.json.dumps, settings.stream_keepalive_seconds,
                          fallback=lambda: orchestrator.current_status(ref)),
            mimetype='text/event-stream',
            headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
        )

    try:
        status = orchestrator.current_status(ref)
    except Exception as e:
        logger.error(f"Error reading import status for {ref}: {e}", exc_info=True)
        return error_response('Failed to read import status', e)

    return jsonify(status or initializing_status())


@imports_bp.route('/imports/active', methods=['GET'])
def active_imports():
    """Every import whose latest stage is not terminal"""
    jobs = _bus().active_jobs()
    return jsonify({
        'count': len(jobs),
        'imports': [{'jobKey': key, **status} for key, status in sorted(jobs.items())]
    })


# ============================================================================
# EVENT STREAM
# ============================================================================

def _position(status):
    return stage_index(status['stage']), status.get('progress', 0)


def stream_status(bus, job_key, dumps, keepalive_seconds=15, fallback=None):
    """
    Generator of text/event-stream frames for one job

    Subscribes first, then reads the snapshot, so nothing reported in
    between is lost; queued events at or behind the snapshot are dropped.
    When the bus knows nothing about the job, fallback() (if given) supplies
    the first frame. Ends after the first terminal event. The import itself
    is unaffected when the client goes away.
    """
    events = queue.Queue()

    def listener(key, payload):
        events.put(payload)

    bus.subscribe(job_key, listener)
    try:
        last = bus.get_status(job_key)
        if last is None and fallback is not None:
            last = fallback()
        last = last or initializing_status()
        yield f"data: {dumps(last)}\n\n"
        if is_terminal(last):
            return

        while True:
            try:
                payload = events.get(timeout=keepalive_seconds)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue

            if payload == last or _position(payload) < _position(last):
                continue

            yield f"data: {dumps(payload)}\n\n"
            last = payload
            if is_terminal(payload):
                return
    finally:
        bus.unsubscribe(job_key, listener)
        logger.debug(f"[{job_key}] stream closed")
