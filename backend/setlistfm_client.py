"""
setlist.fm API Client

Historical-setlist side of an artist import. setlist.fm keys artists by their
MusicBrainz ID (mbid); setlists are paged 20 per page, newest first.
"""

import os
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from api_client_base import BaseApiClient
from service_errors import AuthenticationError

logger = logging.getLogger(__name__)

SETLISTFM_BASE_URL = 'https://api.setlist.fm/rest/1.0'


class SetlistFmClient(BaseApiClient):
    """
    setlist.fm REST client (x-api-key authenticated).
    """

    service_name = 'setlistfm'

    def __init__(self, api_key: str = None, timeout: float = 10, rate_limit_delay: float = 0.5,
                 session=None, logger=None):
        super().__init__(SETLISTFM_BASE_URL, timeout=timeout, rate_limit_delay=rate_limit_delay,
                         session=session, logger=logger)
        self.api_key = api_key or os.environ.get('SETLISTFM_API_KEY')

    def _auth_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthenticationError("SETLISTFM_API_KEY is not configured", service=self.service_name)
        return {'x-api-key': self.api_key, 'Accept-Language': 'en'}

    def search_artists(self, name: str, page: int = 1) -> List[Dict[str, Any]]:
        """
        Search setlist.fm artists by name

        Returns:
            List of normalized artist dicts (possibly empty)
        """
        data = self.get('/search/artists', params={'artistName': name, 'p': page, 'sort': 'relevance'})
        return [normalize_artist(a) for a in (data.get('artist') or []) if a and a.get('mbid')]

    def get_artist(self, mbid: str) -> Dict[str, Any]:
        return normalize_artist(self.get(f'/artist/{mbid}'))

    def get_artist_setlists(self, mbid: str, page: int = 1) -> Dict[str, Any]:
        """
        One page of an artist's setlists

        Returns:
            {'setlists': [...], 'page': n, 'total_pages': n}
        """
        data = self.get(f'/artist/{mbid}/setlists', params={'p': page})
        per_page = data.get('itemsPerPage') or 20
        total = data.get('total') or 0
        return {
            'setlists': [normalize_setlist(s) for s in (data.get('setlist') or []) if s and s.get('id')],
            'page': data.get('page') or page,
            'total_pages': math.ceil(total / per_page) if per_page else 0,
        }


# ============================================================================
# NORMALIZATION
# ============================================================================

def _parse_event_date(value: Optional[str]) -> Optional[datetime]:
    """setlist.fm dates are dd-MM-yyyy with no time; kept as midnight UTC"""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%d-%m-%Y').replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable setlist.fm date: {value}")
        return None


def normalize_artist(data: Dict[str, Any]) -> Dict[str, Any]:
    data = data or {}
    return {
        'name': (data.get('name') or '').strip() or None,
        'sort_name': data.get('sortName'),
        'disambiguation': data.get('disambiguation') or None,
        'external_ids': {'setlistfm': data.get('mbid')},
        'external_url': data.get('url'),
    }


def normalize_venue(data: Dict[str, Any]) -> Dict[str, Any]:
    """setlist.fm venues have no ticketing ID, so they go through name+city lookup"""
    data = data or {}
    city = data.get('city') or {}
    coords = city.get('coords') or {}
    latitude = coords.get('lat')
    longitude = coords.get('long')
    if latitude is None or longitude is None:
        latitude = longitude = None

    return {
        'ticketmaster_id': None,
        'name': (data.get('name') or '').strip() or None,
        'address': None,
        'city': city.get('name'),
        'state': city.get('stateCode') or city.get('state'),
        'country': (city.get('country') or {}).get('code'),
        'postal_code': None,
        'latitude': latitude,
        'longitude': longitude,
        'timezone': None,
        'capacity': None,
    }


def normalize_setlist(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a setlist into the upsert layer's show payload (always completed)"""
    data = data or {}
    songs = []
    for song_set in ((data.get('sets') or {}).get('set') or []):
        for song in (song_set or {}).get('song') or []:
            name = ((song or {}).get('name') or '').strip()
            if name:
                songs.append(name)

    venue = data.get('venue')
    tour = (data.get('tour') or {}).get('name')
    venue_name = (venue or {}).get('name')

    return {
        'setlistfm_id': data.get('id'),
        'name': tour or (f"Live at {venue_name}" if venue_name else None),
        'starts_at': _parse_event_date(data.get('eventDate')),
        'status': 'completed',
        'ticket_url': None,
        'setlist_url': data.get('url'),
        'played_songs': songs,
        'venue': normalize_venue(venue) if venue else None,
    }
