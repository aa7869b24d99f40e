"""
Spotify API Client Infrastructure

Handles the catalog-metadata side of an artist import:
- OAuth client-credentials token management (token cached until expiry)
- Artist search, artist detail, top tracks and the full album catalog
- Normalization of Spotify payloads into the plain dicts the upsert layer expects

Rate limiting and error mapping come from BaseApiClient.
"""

import os
import time
import base64
import logging
import threading
from typing import Any, Dict, List, Optional

from api_client_base import BaseApiClient
from service_errors import AuthenticationError

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_URL = 'https://accounts.spotify.com/api/token'
SPOTIFY_API_BASE_URL = 'https://api.spotify.com/v1'


class SpotifyClient(BaseApiClient):
    """
    Spotify Web API client with authentication and rate limiting.
    """

    service_name = 'spotify'

    def __init__(self, client_id: str = None, client_secret: str = None, market: str = 'US',
                 timeout: float = 10, rate_limit_delay: float = 0.2, session=None, logger=None):
        """
        Initialize Spotify Client

        Args:
            client_id: Spotify app client id (defaults to SPOTIFY_CLIENT_ID)
            client_secret: Spotify app secret (defaults to SPOTIFY_CLIENT_SECRET)
            market: Market used for top tracks
            timeout: Per-request timeout (seconds)
            rate_limit_delay: Base delay between API calls (seconds)
            session: Optional requests.Session
            logger: Optional logger instance
        """
        super().__init__(SPOTIFY_API_BASE_URL, timeout=timeout, rate_limit_delay=rate_limit_delay,
                         session=session, logger=logger)
        self.client_id = client_id or os.environ.get('SPOTIFY_CLIENT_ID')
        self.client_secret = client_secret or os.environ.get('SPOTIFY_CLIENT_SECRET')
        self.market = market

        self.access_token = None
        self.token_expires = 0
        self._token_lock = threading.Lock()

    # ========================================================================
    # AUTHENTICATION
    # ========================================================================

    def get_spotify_auth_token(self) -> str:
        """
        Get a valid Spotify access token (reuses existing if still valid)

        Raises:
            AuthenticationError: credentials missing or rejected
        """
        with self._token_lock:
            if self.access_token and time.time() < self.token_expires:
                return self.access_token

            if not self.client_id or not self.client_secret:
                self.logger.error("Spotify credentials not found in environment variables")
                self.logger.error("Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET")
                raise AuthenticationError("Spotify credentials are not configured", service=self.service_name)

            credentials = f"{self.client_id}:{self.client_secret}"
            credentials_b64 = base64.b64encode(credentials.encode()).decode()

            data = self._request(
                'POST', '',
                url=SPOTIFY_ACCOUNTS_URL,
                headers={
                    'Authorization': f'Basic {credentials_b64}',
                    'Content-Type': 'application/x-www-form-urlencoded'
                },
                data={'grant_type': 'client_credentials'},
                authenticate=False,
            )

            token = data.get('access_token')
            if not token:
                raise AuthenticationError("Spotify token response had no access_token", service=self.service_name)

            # Store token and expiration time (with 60 second buffer)
            self.access_token = token
            self.token_expires = time.time() + int(data.get('expires_in', 3600)) - 60

            self.logger.debug("Spotify authentication successful")
            return self.access_token

    def _auth_headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.get_spotify_auth_token()}'}

    def _drop_token(self):
        with self._token_lock:
            self.access_token = None
            self.token_expires = 0

    def _request(self, method, path, **kwargs):
        authenticate = kwargs.get('authenticate', True)
        had_cached_token = authenticate and self.access_token is not None
        try:
            return super()._request(method, path, **kwargs)
        except AuthenticationError:
            if not authenticate:
                raise
            # A cached token can be revoked before its expiry; a 401 with a fresh one is final
            self._drop_token()
            if not had_cached_token:
                raise

        self.logger.info("Spotify rejected the cached token, re-authenticating")
        try:
            return super()._request(method, path, **kwargs)
        except AuthenticationError:
            self._drop_token()
            raise

    # ========================================================================
    # ENDPOINTS
    # ========================================================================

    def search_artists(self, name: str, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Search Spotify for artists by keyword

        Returns:
            List of normalized artist dicts (possibly empty)
        """
        data = self.get('/search', params={'q': name, 'type': 'artist', 'limit': limit})
        items = (data.get('artists') or {}).get('items') or []
        return [normalize_artist(item) for item in items if item and item.get('id')]

    def get_artist(self, spotify_id: str) -> Dict[str, Any]:
        """Get one artist by Spotify ID (NotFound if Spotify does not know it)"""
        data = self.get(f'/artists/{spotify_id}')
        return normalize_artist(data)

    def get_artist_top_tracks(self, spotify_id: str, market: str = None) -> List[Dict[str, Any]]:
        """Get the artist's top tracks for a market, normalized"""
        data = self.get(f'/artists/{spotify_id}/top-tracks', params={'market': market or self.market})
        tracks = data.get('tracks') or []
        return [normalize_track(t) for t in tracks if t and t.get('id')]

    def _get_all_items(self, path: str, params: dict, page_size: int = 50, max_items: int = None) -> List[dict]:
        """Follow offset paging of a Spotify list endpoint until 'next' is empty"""
        items = []
        offset = 0
        while True:
            data = self.get(path, params={**params, 'limit': page_size, 'offset': offset})
            page = [item for item in (data.get('items') or []) if item and item.get('id')]
            items.extend(page)
            if not data.get('next') or (max_items and len(items) >= max_items):
                break
            offset += page_size
        return items[:max_items] if max_items else items

    def get_artist_albums(self, spotify_id: str, include_groups: str = 'album,single',
                          market: str = None, max_albums: int = None) -> List[Dict[str, Any]]:
        """
        All of the artist's own releases (albums and singles by default)

        Args:
            spotify_id: Spotify artist ID
            include_groups: Comma-separated album groups to request
            market: Market filter (defaults to the client's market)
            max_albums: Stop after this many albums

        Returns:
            List of normalized album dicts
        """
        items = self._get_all_items(
            f'/artists/{spotify_id}/albums',
            {'include_groups': include_groups, 'market': market or self.market},
            max_items=max_albums
        )
        self.logger.debug(f"Spotify: {len(items)} albums for artist {spotify_id}")
        return [normalize_album(item) for item in items]

    def get_album_tracks(self, album_id: str) -> List[Dict[str, Any]]:
        """
        Every track on an album

        Album track listings are simplified objects (no ISRC or popularity);
        use get_tracks() for the full payloads.
        """
        items = self._get_all_items(f'/albums/{album_id}/tracks', {})
        return [{'spotify_id': item['id'], 'title': (item.get('name') or '').strip() or None}
                for item in items]

    def get_tracks(self, track_ids: List[str], batch_size: int = 50) -> List[Dict[str, Any]]:
        """Full track payloads for many IDs (Spotify allows 50 per request)"""
        tracks = []
        for start in range(0, len(track_ids), batch_size):
            batch = track_ids[start:start + batch_size]
            data = self.get('/tracks', params={'ids': ','.join(batch), 'market': self.market})
            tracks.extend(normalize_track(t) for t in (data.get('tracks') or []) if t and t.get('id'))
        return tracks


# ============================================================================
# NORMALIZATION
# ============================================================================

def _image_url(images: Optional[list], index: int) -> Optional[str]:
    if not images or len(images) <= index:
        return None
    return (images[index] or {}).get('url')


def normalize_artist(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a Spotify artist object into the upsert layer's artist payload

    Missing fields become None; absence of a field is never an error.
    """
    data = data or {}
    images = data.get('images') or []
    return {
        'name': (data.get('name') or '').strip() or None,
        'external_ids': {'spotify': data.get('id')},
        'image_url': _image_url(images, 0),
        'small_image_url': _image_url(images, len(images) - 1) if images else None,
        'genres': [g for g in (data.get('genres') or []) if g],
        'popularity': data.get('popularity'),
        'followers': (data.get('followers') or {}).get('total'),
        'external_url': (data.get('external_urls') or {}).get('spotify'),
    }


def normalize_album(data: Dict[str, Any]) -> Dict[str, Any]:
    data = data or {}
    return {
        'spotify_id': data.get('id'),
        'name': (data.get('name') or '').strip() or None,
        'album_type': data.get('album_type'),
        'album_group': data.get('album_group'),
        'release_date': data.get('release_date'),
        'total_tracks': data.get('total_tracks'),
        'artwork_url': _image_url(data.get('images'), 0),
    }


def normalize_track(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Spotify track object into the upsert layer's song payload"""
    data = data or {}
    album = data.get('album') or {}
    return {
        'spotify_id': data.get('id'),
        'title': (data.get('name') or '').strip() or None,
        'album_name': album.get('name'),
        'artwork_url': _image_url(album.get('images'), 0),
        'duration_ms': data.get('duration_ms'),
        'popularity': data.get('popularity'),
        'explicit': bool(data.get('explicit', False)),
        'track_number': data.get('track_number'),
        'isrc': (data.get('external_ids') or {}).get('isrc'),
    }

