"""Exception hierarchy for EventSnaps domain services"""
from typing import Optional


class EventSnapsError(Exception):
    """Base class for all domain errors"""
    pass


class PersistenceError(EventSnapsError):
    """An insert/update/delete against the store failed"""
    pass


class SchemaMismatchError(EventSnapsError):
    """A row coming out of the store does not have the expected shape"""

    def __init__(self, entity: str, detail: str):
        super().__init__(f"Unexpected {entity} shape: {detail}")
        self.entity = entity
        self.detail = detail


class AuthorizationError(EventSnapsError):
    """The acting principal may not perform the requested operation"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)
        self.message = message


class NotFoundError(EventSnapsError):
    """A referenced record (by id) does not exist"""
    pass


class EventExpiredError(EventSnapsError):
    """Write attempted on an event past its expiry"""
    pass


class FeatureNotAvailableError(EventSnapsError):
    """The event owner's plan does not include the requested feature"""

    def __init__(self, feature: str, message: Optional[str] = None):
        super().__init__(message or f"Feature '{feature}' is not available on this plan")
        self.feature = feature
        self.message = message or str(self)


class DuplicateTrackError(EventSnapsError):
    """The track is already pending in the event's jukebox queue"""
    pass


class VoteError(EventSnapsError):
    """A vote could not be recorded"""
    pass


class MusicSearchError(EventSnapsError):
    """Search facade failure carrying the HTTP status to surface"""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StorageError(EventSnapsError):
    """Reading or writing photo bytes failed"""
    pass
