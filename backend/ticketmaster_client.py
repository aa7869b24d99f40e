"""
Ticketmaster Discovery API Client

Ticketing/events side of an artist import: attraction (artist) search and
detail, event search by attraction or keyword within a date range, and venue
detail. Payloads are normalized into plain dicts for the upsert layer.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from api_client_base import BaseApiClient
from service_errors import AuthenticationError

logger = logging.getLogger(__name__)

TICKETMASTER_BASE_URL = 'https://app.ticketmaster.com/discovery/v2'

# Discovery API refuses deep paging past size * page >= 1000
MAX_DEEP_PAGING = 1000

# Ticketmaster dates.status.code -> show lifecycle status
EVENT_STATUS_MAP = {
    'onsale': 'upcoming',
    'offsale': 'upcoming',
    'presale': 'upcoming',
    'cancelled': 'cancelled',
    'canceled': 'cancelled',
    'postponed': 'postponed',
    'rescheduled': 'postponed',
}

IGNORED_CLASSIFICATIONS = {'undefined', 'other', 'music'}


class TicketmasterClient(BaseApiClient):
    """
    Ticketmaster Discovery v2 client (API-key authenticated).
    """

    service_name = 'ticketmaster'

    def __init__(self, api_key: str = None, timeout: float = 10, rate_limit_delay: float = 0.25,
                 session=None, logger=None):
        super().__init__(TICKETMASTER_BASE_URL, timeout=timeout, rate_limit_delay=rate_limit_delay,
                         session=session, logger=logger)
        self.api_key = api_key or os.environ.get('TICKETMASTER_API_KEY')

    def _auth_params(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthenticationError("TICKETMASTER_API_KEY is not configured", service=self.service_name)
        return {'apikey': self.api_key}

    # ========================================================================
    # ATTRACTIONS
    # ========================================================================

    def search_attractions(self, keyword: str, size: int = 10) -> List[Dict[str, Any]]:
        """Search music attractions by keyword, normalized to artist payloads"""
        data = self.get('/attractions.json', params={
            'keyword': keyword,
            'classificationName': 'music',
            'size': size,
        })
        attractions = (data.get('_embedded') or {}).get('attractions') or []
        return [normalize_attraction(a) for a in attractions if a and a.get('id')]

    def get_attraction(self, attraction_id: str) -> Dict[str, Any]:
        """Get one attraction by Ticketmaster ID"""
        return normalize_attraction(self.get(f'/attractions/{attraction_id}.json'))

    # ========================================================================
    # EVENTS
    # ========================================================================

    def iterate_events(self, attraction_id: str = None, keyword: str = None,
                       start: datetime = None, end: datetime = None,
                       page_size: int = 200, max_pages: int = 5) -> Iterator[List[Dict[str, Any]]]:
        """
        Yield pages of normalized events for an attraction and/or keyword

        Args:
            attraction_id: Ticketmaster attraction ID
            keyword: Free-text keyword (used when no attraction ID is known)
            start: Earliest event start (inclusive)
            end: Latest event start (inclusive)
            page_size: Events per page (Ticketmaster caps at 200)
            max_pages: Hard stop on pages fetched
        """
        if not attraction_id and not keyword:
            raise ValueError("attraction_id or keyword is required")

        params = {'size': page_size, 'sort': 'date,asc', 'classificationName': 'music'}
        if attraction_id:
            params['attractionId'] = attraction_id
        if keyword:
            params['keyword'] = keyword
        if start:
            params['startDateTime'] = _format_tm_datetime(start)
        if end:
            params['endDateTime'] = _format_tm_datetime(end)

        page = 0
        total_pages = 1
        while page < total_pages and page < max_pages and (page + 1) * page_size <= MAX_DEEP_PAGING:
            data = self.get('/events.json', params={**params, 'page': page})
            total_pages = (data.get('page') or {}).get('totalPages') or 0
            events = (data.get('_embedded') or {}).get('events') or []

            self.logger.debug(f"Ticketmaster: page {page + 1}/{total_pages}, {len(events)} events")
            yield [normalize_event(e) for e in events if e and e.get('id')]
            page += 1

    def get_events(self, attraction_id: str = None, keyword: str = None,
                   start: datetime = None, end: datetime = None, max_pages: int = 5) -> List[Dict[str, Any]]:
        """All events for an attraction/keyword within a date range, de-duplicated by event ID"""
        seen = {}
        for events in self.iterate_events(attraction_id=attraction_id, keyword=keyword,
                                          start=start, end=end, max_pages=max_pages):
            for event in events:
                seen.setdefault(event['ticketmaster_id'], event)
        return list(seen.values())

    # ========================================================================
    # VENUES
    # ========================================================================

    def get_venue(self, venue_id: str) -> Dict[str, Any]:
        """Get venue detail by Ticketmaster venue ID"""
        return normalize_venue(self.get(f'/venues/{venue_id}.json'))


# ============================================================================
# NORMALIZATION
# ============================================================================

def _format_tm_datetime(value: datetime) -> str:
    """Ticketmaster wants UTC with a literal Z and no microseconds"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=0, tzinfo=None).isoformat() + 'Z'


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Unparseable Ticketmaster datetime: {value}")
        return None


def _venue_zone(name: Optional[str]):
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug(f"Unknown Ticketmaster timezone: {name}")
        return None


def _local_datetime(block: Dict[str, Any], zone_name: str = None) -> Optional[datetime]:
    """
    Prefer the UTC dateTime; fall back to localDate + localTime in the venue's timezone

    Without a usable timezone only the date is kept (midnight UTC), since a
    venue-local wall-clock time cannot be placed on the timeline.
    """
    if not block:
        return None
    parsed = _parse_datetime(block.get('dateTime'))
    if parsed:
        return parsed
    local_date = block.get('localDate')
    if not local_date:
        return None
    zone = _venue_zone(zone_name)
    if zone is None:
        parsed = _parse_datetime(local_date)
        return parsed.replace(tzinfo=timezone.utc) if parsed else None
    local_time = block.get('localTime') or '00:00:00'
    parsed = _parse_datetime(f"{local_date}T{local_time}")
    return parsed.replace(tzinfo=zone) if parsed else None


def _best_image(images: Optional[list]) -> Optional[str]:
    """Widest image wins"""
    candidates = [img for img in (images or []) if img and img.get('url')]
    if not candidates:
        return None
    return max(candidates, key=lambda img: img.get('width') or 0)['url']


def _to_float(value) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def classification_tags(classifications: Optional[list]) -> List[str]:
    """Segment/genre/sub-genre names, minus Ticketmaster's placeholder values"""
    tags = []
    for classification in classifications or []:
        for level in ('segment', 'genre', 'subGenre'):
            name = ((classification or {}).get(level) or {}).get('name')
            if name and name.strip().lower() not in IGNORED_CLASSIFICATIONS and name not in tags:
                tags.append(name.strip())
    return tags


def normalize_attraction(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Ticketmaster attraction into the upsert layer's artist payload"""
    data = data or {}
    external_ids = {'ticketmaster': data.get('id')}

    # Attractions often carry their MusicBrainz ID, which is setlist.fm's key
    musicbrainz = ((data.get('externalLinks') or {}).get('musicbrainz') or [])
    if musicbrainz and (musicbrainz[0] or {}).get('id'):
        external_ids['setlistfm'] = musicbrainz[0]['id']

    return {
        'name': (data.get('name') or '').strip() or None,
        'external_ids': external_ids,
        'image_url': _best_image(data.get('images')),
        'genres': classification_tags(data.get('classifications')),
        'external_url': data.get('url'),
    }


def normalize_venue(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Ticketmaster venue into the upsert layer's venue payload"""
    data = data or {}
    location = data.get('location') or {}
    latitude = _to_float(location.get('latitude'))
    longitude = _to_float(location.get('longitude'))
    if latitude is None or longitude is None:
        latitude = longitude = None

    return {
        'ticketmaster_id': data.get('id'),
        'name': (data.get('name') or '').strip() or None,
        'address': (data.get('address') or {}).get('line1'),
        'city': (data.get('city') or {}).get('name'),
        'state': (data.get('state') or {}).get('stateCode') or (data.get('state') or {}).get('name'),
        'country': (data.get('country') or {}).get('countryCode'),
        'postal_code': data.get('postalCode'),
        'latitude': latitude,
        'longitude': longitude,
        'timezone': data.get('timezone'),
        'capacity': _to_int(data.get('capacity')),
    }


def normalize_event(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Ticketmaster event into the upsert layer's show payload"""
    data = data or {}
    dates = data.get('dates') or {}
    venues = (data.get('_embedded') or {}).get('venues') or []
    price_ranges = data.get('priceRanges') or []
    price = price_ranges[0] if price_ranges else {}
    status_code = ((dates.get('status') or {}).get('code') or '').lower()
    venue = normalize_venue(venues[0]) if venues and venues[0] else None
    zone_name = dates.get('timezone') or (venue or {}).get('timezone')

    return {
        'ticketmaster_id': data.get('id'),
        'name': (data.get('name') or '').strip() or None,
        'starts_at': _local_datetime(dates.get('start'), zone_name),
        'doors_at': _local_datetime(dates.get('doorsTimes'), zone_name),
        'status': EVENT_STATUS_MAP.get(status_code, 'upcoming'),
        'ticket_url': data.get('url'),
        'price_min': _to_float(price.get('min')),
        'price_max': _to_float(price.get('max')),
        'currency': price.get('currency'),
        'venue': venue,
    }
