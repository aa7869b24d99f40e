"""
Service Errors
Typed failures raised by the upstream API clients and the persistence layer

Upstream clients never leak requests exceptions or raw status codes to their
callers; every failure is mapped onto one of the classes below so the import
orchestrator can decide between retrying, degrading and failing a stage.
"""

from typing import Optional


class ExternalServiceError(Exception):
    """Base class for failures talking to a third-party API"""

    transient = False

    def __init__(self, message: str, service: str = None, status_code: int = None):
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ExternalServiceError):
    """Upstream rejected our credentials (or we have none configured)"""


class RateLimited(ExternalServiceError):
    """Upstream answered 429; retry_after is in seconds when the service provides it"""

    transient = True

    def __init__(self, message: str = None, service: str = None, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        if message is None:
            message = f"{service or 'Upstream'} rate limit exceeded."
            if retry_after is not None:
                message = f"{message} Retry after {retry_after} seconds."
        super().__init__(message, service=service, status_code=429)


class NotFound(ExternalServiceError):
    """Upstream has no data for the requested entity"""


class UpstreamUnavailable(ExternalServiceError):
    """Timeouts, connection failures and 5xx responses"""

    transient = True


class PersistenceError(Exception):
    """A record could not be stored after the bounded retry was exhausted"""


class UniqueConflict(Exception):
    """A unique constraint rejected an insert or update"""

    def __init__(self, message: str, constraint: str = None):
        self.constraint = constraint
        super().__init__(message)


class SlugConflict(UniqueConflict):
    """Another row already owns the slug we tried to insert"""


class ExternalIdConflict(UniqueConflict):
    """Another row already owns the external identifier (concurrent create)"""


def is_transient(error: Exception) -> bool:
    """True for failures worth retrying with backoff"""
    return isinstance(error, ExternalServiceError) and error.transient
