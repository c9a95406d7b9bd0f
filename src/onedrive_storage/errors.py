"""Exception hierarchy shared by the Graph client and the storage engines."""

from __future__ import annotations


class DriveError(Exception):
    """Base class for every error raised by onedrive_storage."""


class InvalidArgument(DriveError, ValueError):
    """Raised for malformed caller input, before any network call is made."""


class PayloadTooLarge(DriveError):
    """Raised when the direct write path is given content above its ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Content of {size} bytes exceeds the {limit} byte direct upload limit; "
            "use upload_file instead"
        )
        self.size = size
        self.limit = limit


class UnsupportedPolicy(DriveError):
    """Raised when a collision policy has no wire-level conflict directive."""


class UploadStateError(DriveError):
    """Raised when an upload is driven through a transition its state does not allow."""


class GraphAuthError(DriveError):
    """Raised when MSAL token acquisition fails."""


class RemoteRequestFailed(DriveError):
    """Raised when the Graph API returns a non-2xx response or the transport fails.

    Attributes:
        status_code: HTTP status code, or None when no response was received.
        message: Error detail extracted from the response body when available.
    """

    def __init__(self, status_code: int | None, message: str) -> None:
        prefix = f"Graph API error {status_code}" if status_code is not None else "Graph API error"
        super().__init__(f"{prefix}: {message}")
        self.status_code = status_code
        self.message = message


class SessionCreationFailed(RemoteRequestFailed):
    """Raised when the service refuses to create an upload session."""


class ChunkUploadFailed(RemoteRequestFailed):
    """Raised when one chunk is rejected; the session stays resumable.

    Attributes:
        offset: Byte offset of the chunk that failed.
    """

    def __init__(self, status_code: int | None, message: str, offset: int) -> None:
        super().__init__(status_code, message)
        self.offset = offset
