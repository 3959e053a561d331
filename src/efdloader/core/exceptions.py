"""efdloader exception hierarchy."""

from __future__ import annotations


class EfdLoaderError(Exception):
    """Base exception for all efdloader errors."""


class JobNotFoundError(EfdLoaderError):
    """Import job record does not exist."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")


class JobCancelledError(EfdLoaderError):
    """Import job was cancelled externally; the running slice must stop."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Import job {job_id} was cancelled")


class JobStoreError(EfdLoaderError):
    """Job record store operation failed."""


class FileStoreError(EfdLoaderError):
    """Object storage operation failed."""


class SourceStreamError(EfdLoaderError):
    """Reading the source file stream failed at the transport level."""


class DestinationWriteError(EfdLoaderError):
    """A batch could not be written to its destination table."""

    def __init__(self, destination: str, message: str) -> None:
        self.destination = destination
        super().__init__(f"Write to {destination} failed: {message}")


class CacheError(EfdLoaderError):
    """Redis cache operation failed."""


class DispatchError(EfdLoaderError):
    """The next slice could not be queued."""


RECOVERABLE_MESSAGE_PATTERNS = (
    "error reading a body from connection",
    "connection closed",
    "stream closed",
    "network error",
    "econnreset",
    "socket hang up",
    "connection reset",
    "premature close",
)


def is_recoverable_transport_error(exc: BaseException) -> bool:
    """Return True for stream/connection failures worth retrying from the last checkpoint."""
    if isinstance(exc, (SourceStreamError, ConnectionError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in RECOVERABLE_MESSAGE_PATTERNS)
