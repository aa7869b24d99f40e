"""
API Client Infrastructure

Shared low-level HTTP handling for the catalog, ticketing and setlist clients:
- Minimum spacing between requests (per-client rate limiting)
- Upper-bound timeout on every call
- Mapping of HTTP failures onto the typed errors in service_errors

Retrying is not done here. A client call either returns the
decoded JSON payload or raises; the import orchestrator owns the retry policy.
"""

import time
import logging
import threading
from typing import Any, Dict, Optional

import requests

from service_errors import (
    AuthenticationError,
    ExternalServiceError,
    NotFound,
    RateLimited,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)


class BaseApiClient:
    """
    Thin request/response wrapper around one third-party HTTP API.
    """

    service_name = 'upstream'

    def __init__(self, base_url: str, timeout: float = 10, rate_limit_delay: float = 0.0,
                 session: requests.Session = None, logger=None):
        """
        Initialize the client

        Args:
            base_url: Root URL every relative path is joined to
            timeout: Seconds before a call is abandoned as UpstreamUnavailable
            rate_limit_delay: Minimum delay between consecutive requests (seconds)
            session: Optional requests.Session (tests inject a stub)
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(self.__class__.__module__)

        self.last_request_time = 0
        self._rate_lock = threading.Lock()

        self.stats = {
            'api_calls': 0,
            'rate_limit_hits': 0,
            'errors': 0,
        }

    # ========================================================================
    # RATE LIMITING
    # ========================================================================

    def _wait_for_rate_limit(self):
        """Enforce minimum delay between requests"""
        if self.rate_limit_delay <= 0:
            return
        with self._rate_lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.rate_limit_delay:
                time.sleep(self.rate_limit_delay - elapsed)
            self.last_request_time = time.time()

    @staticmethod
    def _parse_retry_after(response: requests.Response) -> Optional[float]:
        """
        Extract the wait hint from a 429 response

        Returns:
            Seconds to wait, or None if the upstream gave no usable hint
        """
        retry_after = response.headers.get('Retry-After')
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                logger.warning(f"Invalid Retry-After header: {retry_after}")

        # Some services send a reset timestamp instead
        reset = response.headers.get('X-RateLimit-Reset')
        if reset:
            try:
                return max(0.0, float(reset) - time.time())
            except ValueError:
                logger.warning(f"Invalid X-RateLimit-Reset header: {reset}")

        return None

    # ========================================================================
    # REQUESTS
    # ========================================================================

    def _auth_headers(self) -> Dict[str, str]:
        """Headers added to every request; subclasses override"""
        return {}

    def _auth_params(self) -> Dict[str, str]:
        """Query parameters added to every request; subclasses override"""
        return {}

    def _request(self, method: str, path: str, params: dict = None, headers: dict = None,
                 data: Any = None, url: str = None, authenticate: bool = True) -> Any:
        """
        Make one API request and decode the JSON body

        Args:
            method: HTTP method ('GET', 'POST', ...)
            path: Path relative to base_url (ignored when url is given)
            params: Query parameters
            headers: Extra headers
            data: Form body
            url: Absolute URL override
            authenticate: Whether to add the client's auth headers/params

        Returns:
            Decoded JSON payload ({} for empty bodies)

        Raises:
            AuthenticationError, RateLimited, NotFound, UpstreamUnavailable
        """
        target = url or f"{self.base_url}/{path.lstrip('/')}"
        all_params = dict(params or {})
        all_headers = {'Accept': 'application/json'}
        if authenticate:
            all_params.update(self._auth_params())
            all_headers.update(self._auth_headers())
        if headers:
            all_headers.update(headers)

        self._wait_for_rate_limit()
        self.stats['api_calls'] += 1

        try:
            response = self.session.request(
                method, target,
                params=all_params or None,
                headers=all_headers,
                data=data,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            self.stats['errors'] += 1
            raise UpstreamUnavailable(f"{self.service_name} request timed out: {target}",
                                      service=self.service_name) from e
        except requests.exceptions.RequestException as e:
            self.stats['errors'] += 1
            raise UpstreamUnavailable(f"{self.service_name} request failed: {e}",
                                      service=self.service_name) from e

        return self._handle_response(response, target)

    def _handle_response(self, response: requests.Response, target: str) -> Any:
        """Map the status code onto a payload or a typed error"""
        status = response.status_code

        if status == 429:
            self.stats['rate_limit_hits'] += 1
            retry_after = self._parse_retry_after(response)
            self.logger.warning(f"{self.service_name} rate limit hit (retry_after={retry_after})")
            raise RateLimited(service=self.service_name, retry_after=retry_after)

        if status in (401, 403):
            self.stats['errors'] += 1
            raise AuthenticationError(f"{self.service_name} rejected credentials ({status})",
                                      service=self.service_name, status_code=status)

        if status == 404:
            raise NotFound(f"{self.service_name} has no data for {target}",
                           service=self.service_name, status_code=404)

        if status >= 500:
            self.stats['errors'] += 1
            raise UpstreamUnavailable(f"{self.service_name} returned {status}",
                                      service=self.service_name, status_code=status)

        if status >= 400:
            self.stats['errors'] += 1
            raise ExternalServiceError(f"{self.service_name} rejected request ({status}): {target}",
                                       service=self.service_name, status_code=status)

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            self.stats['errors'] += 1
            raise UpstreamUnavailable(f"{self.service_name} returned invalid JSON",
                                      service=self.service_name, status_code=status) from e

    def get(self, path: str, params: dict = None) -> Any:
        return self._request('GET', path, params=params)
