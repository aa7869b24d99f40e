"""
Show Lifecycle

Periodic status sweep for shows. The import pipeline only records what the
ticketing service says; time-based transitions happen here:

    upcoming    -> in-progress   15 minutes before the scheduled start
    in-progress -> completed     4 hours after the scheduled start
    upcoming    -> cancelled     still 'upcoming' more than 7 days after start

Statuses never move backwards; transitions are compare-and-set so a show
changed by someone else mid-sweep is left alone.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)

START_LEAD = timedelta(minutes=15)
SHOW_DURATION = timedelta(hours=4)
STALE_AFTER = timedelta(days=7)


def next_status(status: str, starts_at: Optional[datetime], now: datetime) -> Optional[str]:
    """
    Status a show should move to at `now`, or None to leave it

    Examples:
        >>> start = datetime(2026, 6, 1, 20, 0, tzinfo=timezone.utc)
        >>> next_status('upcoming', start, start - timedelta(minutes=10))
        'in-progress'
        >>> next_status('in-progress', start, start + timedelta(hours=5))
        'completed'
    """
    if starts_at is None:
        return None
    if starts_at.tzinfo is None:
        starts_at = starts_at.replace(tzinfo=timezone.utc)

    if status == 'upcoming':
        if now - starts_at > STALE_AFTER:
            return 'cancelled'
        if now >= starts_at - START_LEAD:
            # Past the end already: the sweep missed the live window
            return 'completed' if now >= starts_at + SHOW_DURATION else 'in-progress'
        return None

    if status == 'in-progress' and now >= starts_at + SHOW_DURATION:
        return 'completed'

    return None


def sweep_show_statuses(repository, now: datetime = None, dry_run: bool = False) -> Dict[str, int]:
    """
    Apply time-based transitions to every open show

    Args:
        repository: CatalogRepository (list_shows_for_status_sweep / transition_show_status)
        now: Reference time (defaults to current UTC time)
        dry_run: Only count what would change

    Returns:
        Counts per transition plus 'checked' and 'skipped'
    """
    now = now or datetime.now(timezone.utc)
    stats = {'checked': 0, 'in-progress': 0, 'completed': 0, 'cancelled': 0, 'skipped': 0}

    for show in repository.list_shows_for_status_sweep(now + START_LEAD):
        stats['checked'] += 1
        target = next_status(show['status'], show.get('starts_at'), now)
        if target is None:
            continue

        if dry_run:
            logger.info(f"[DRY RUN] Would move show {show['id']} ({show.get('name')}): {show['status']} -> {target}")
            stats[target] += 1
            continue

        if repository.transition_show_status(show['id'], show['status'], target):
            logger.info(f"Show {show['id']} ({show.get('name')}): {show['status']} -> {target}")
            stats[target] += 1
        else:
            logger.debug(f"Show {show['id']} changed during sweep, skipped")
            stats['skipped'] += 1

    logger.info(f"Status sweep done: {stats}")
    return stats
