"""Exception types shared by the server and client sides."""


class TodoSyncError(Exception):
    """Base class for todosync errors."""


class UnauthorizedError(TodoSyncError):
    """Credential missing or mismatched."""


class InvalidRequestError(TodoSyncError):
    """Request body is missing fields or has malformed values."""


class StoreError(TodoSyncError):
    """Base class for storage failures."""


class StoreUnavailableError(StoreError):
    """Storage could not be reached or the operation timed out.

    Raised only after the enclosing transaction has been rolled back, so
    callers may retry without risk of observing a partial write.
    """


class TransportError(TodoSyncError):
    """Client could not complete a request against the sync server."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
