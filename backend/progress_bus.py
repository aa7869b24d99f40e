"""
Progress Bus
In-process publish/subscribe channel for import job progress

One ProgressBus is constructed per process (app.create_app) and handed to the
import orchestrator (producer) and the status routes (consumers). It keeps
the last report per job key so a client that subscribes and then immediately
calls get_status() never misses the current state.

State for a job is kept until it reaches a terminal stage, then for
retention_seconds more; eviction happens lazily on access.
"""

import time
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Stage names, in pipeline order
STAGE_INITIALIZING = 'initializing'
STAGE_RESOLVING_ARTIST = 'resolving-artist'
STAGE_FETCHING_CATALOG = 'fetching-catalog'
STAGE_FETCHING_SONGS = 'fetching-songs'
STAGE_FETCHING_SHOWS = 'fetching-shows'
STAGE_FETCHING_SETLISTS = 'fetching-setlists'
STAGE_PERSISTING = 'persisting'
STAGE_COMPLETED = 'completed'
STAGE_FAILED = 'failed'

STAGE_ORDER = [
    STAGE_INITIALIZING,
    STAGE_RESOLVING_ARTIST,
    STAGE_FETCHING_CATALOG,
    STAGE_FETCHING_SONGS,
    STAGE_FETCHING_SHOWS,
    STAGE_FETCHING_SETLISTS,
    STAGE_PERSISTING,
    STAGE_COMPLETED,
]

TERMINAL_STAGES = frozenset({STAGE_COMPLETED, STAGE_FAILED})

Listener = Callable[[str, dict], None]


def stage_index(stage: str) -> int:
    """Position in STAGE_ORDER; failed sorts after everything"""
    if stage == STAGE_FAILED:
        return len(STAGE_ORDER)
    return STAGE_ORDER.index(stage)


def is_terminal(status: Optional[dict]) -> bool:
    return bool(status) and status.get('stage') in TERMINAL_STAGES


def initializing_status(message: str = 'Waiting for import to start') -> dict:
    """Synthetic payload for a job key nothing has been reported for"""
    return {
        'stage': STAGE_INITIALIZING,
        'progress': 0,
        'message': message,
        'updatedAt': _now_iso(),
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgressBus:
    """
    Last-known status per job key plus push notification to subscribers
    """

    def __init__(self, retention_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._status: Dict[str, dict] = {}
        self._terminal_at: Dict[str, float] = {}
        self._listeners: Dict[str, List[Listener]] = {}

    # ========================================================================
    # PRODUCER SIDE
    # ========================================================================

    def report(self, job_key: str, stage: str, progress: int, message: str,
               error: str = None, metadata: dict = None) -> Optional[dict]:
        """
        Record the latest state for a job and publish it to current subscribers

        Safe with no subscribers. Once a job is terminal, further reports are
        dropped unless they restart it ('initializing'), so exactly one
        terminal event is published per run.

        Returns:
            The stored payload, or None if the report was dropped
        """
        if stage != STAGE_FAILED and stage not in STAGE_ORDER:
            raise ValueError(f"Unknown stage: {stage}")

        payload = {
            'stage': stage,
            'progress': max(0, min(100, int(progress))),
            'message': message,
            'updatedAt': _now_iso(),
        }
        if error is not None:
            payload['error'] = error
        if metadata:
            payload['metadata'] = dict(metadata)

        with self._lock:
            self._evict_expired()
            previous = self._status.get(job_key)
            if is_terminal(previous) and stage != STAGE_INITIALIZING:
                logger.warning(f"[{job_key}] dropping '{stage}' report after terminal '{previous['stage']}'")
                return None

            self._status[job_key] = payload
            if stage in TERMINAL_STAGES:
                self._terminal_at[job_key] = self._clock()
            else:
                self._terminal_at.pop(job_key, None)
            listeners = list(self._listeners.get(job_key, ()))

        logger.info(f"[{job_key}] {stage} ({payload['progress']}%): {message}")

        # Listeners run outside the lock so they may call back into the bus
        for listener in listeners:
            try:
                listener(job_key, dict(payload))
            except Exception as e:
                logger.error(f"[{job_key}] progress listener failed: {e}", exc_info=True)

        return payload

    # ========================================================================
    # CONSUMER SIDE
    # ========================================================================

    def subscribe(self, job_key: str, listener: Listener) -> None:
        """Attach a callback; it only receives reports made after this call"""
        with self._lock:
            self._listeners.setdefault(job_key, []).append(listener)

    def unsubscribe(self, job_key: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(job_key)
            if not listeners:
                return
            try:
                listeners.remove(listener)
            except ValueError:
                return
            if not listeners:
                del self._listeners[job_key]

    def get_status(self, job_key: str) -> Optional[dict]:
        """Most recent report for the job, or None if unknown / evicted"""
        with self._lock:
            self._evict_expired()
            status = self._status.get(job_key)
            return dict(status) if status else None

    def is_active(self, job_key: str) -> bool:
        status = self.get_status(job_key)
        return status is not None and not is_terminal(status)

    def active_jobs(self) -> Dict[str, dict]:
        """Every job whose latest stage is not terminal"""
        with self._lock:
            self._evict_expired()
            return {key: dict(status) for key, status in self._status.items() if not is_terminal(status)}

    def subscriber_count(self, job_key: str) -> int:
        with self._lock:
            return len(self._listeners.get(job_key, ()))

    # ========================================================================
    # RETENTION
    # ========================================================================

    def _evict_expired(self) -> None:
        """Caller holds the lock"""
        if not self._terminal_at:
            return
        cutoff = self._clock() - self.retention_seconds
        expired = [key for key, finished in self._terminal_at.items() if finished <= cutoff]
        for key in expired:
            self._terminal_at.pop(key, None)
            self._status.pop(key, None)
            logger.debug(f"[{key}] progress state evicted")
