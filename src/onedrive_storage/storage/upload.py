"""Resumable chunked uploads through Graph upload sessions.

An upload negotiates a session with ``createUploadSession``, then PUTs the
content to the session URL in order, one byte range per request, each range
described by a ``Content-Range`` header. Every chunk except the last must be
a multiple of 320 KiB. The service answers 202 with the ranges it still
expects until the final chunk, which returns the finished drive item.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import IO, TYPE_CHECKING, Any

from onedrive_storage.errors import (
    ChunkUploadFailed,
    InvalidArgument,
    RemoteRequestFailed,
    SessionCreationFailed,
    UploadStateError,
)
from onedrive_storage.graph.models import (
    FIELD_CONFLICT_BEHAVIOR,
    FIELD_EXPIRATION,
    FIELD_NEXT_EXPECTED_RANGES,
    FIELD_UPLOAD_URL,
    RawRecord,
)

if TYPE_CHECKING:
    import httpx

    from onedrive_storage.graph.client import GraphClient
    from onedrive_storage.graph.session_store import UploadSessionStore

logger = logging.getLogger(__name__)

CHUNK_ALIGNMENT = 320 * 1024
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
SIMPLE_UPLOAD_MAX_SIZE = 4 * 1024 * 1024

_FRACTION_OVERFLOW = re.compile(r"(\.\d{6})\d+")


class UploadState(Enum):
    """Lifecycle of a chunked upload."""

    IDLE = "idle"
    SESSION_NEGOTIATED = "session_negotiated"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"


_TRANSITIONS: dict[UploadState, frozenset[UploadState]] = {
    UploadState.IDLE: frozenset({UploadState.SESSION_NEGOTIATED}),
    UploadState.SESSION_NEGOTIATED: frozenset(
        {UploadState.UPLOADING, UploadState.CANCELLED, UploadState.EXPIRED}
    ),
    UploadState.UPLOADING: frozenset(
        {
            UploadState.COMPLETED,
            UploadState.CANCELLED,
            UploadState.FAILED,
            UploadState.EXPIRED,
        }
    ),
    # A failed chunk leaves the session resumable.
    UploadState.FAILED: frozenset(
        {UploadState.UPLOADING, UploadState.CANCELLED, UploadState.EXPIRED}
    ),
    UploadState.COMPLETED: frozenset(),
    UploadState.CANCELLED: frozenset(),
    UploadState.EXPIRED: frozenset(),
}

TERMINAL_STATES = frozenset({UploadState.COMPLETED, UploadState.CANCELLED, UploadState.EXPIRED})


def _parse_timestamp(value: str) -> datetime:
    """Parse a Graph ISO-8601 timestamp, which may carry 7 fractional digits."""
    parsed = datetime.fromisoformat(_FRACTION_OVERFLOW.sub(r"\1", value))
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


@dataclass
class UploadSession:
    """Server-issued handle for an in-progress upload.

    Attributes:
        upload_url: Pre-authorized URL that chunks are PUT to.
        expiration: When the service discards the session, if reported.
        next_expected_ranges: Byte ranges the service still needs, in the
            service's "start-end" / "start-" notation.
    """

    upload_url: str
    expiration: datetime | None = None
    next_expected_ranges: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> UploadSession:
        """Build a session from a createUploadSession or status response.

        Raises:
            KeyError: If the upload URL is missing.
            ValueError: If the expiration timestamp is malformed.
        """
        expiration = data.get(FIELD_EXPIRATION)
        return cls(
            upload_url=data[FIELD_UPLOAD_URL],
            expiration=_parse_timestamp(expiration) if expiration else None,
            next_expected_ranges=list(data.get(FIELD_NEXT_EXPECTED_RANGES, [])),
        )

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            FIELD_UPLOAD_URL: self.upload_url,
            FIELD_NEXT_EXPECTED_RANGES: list(self.next_expected_ranges),
        }
        if self.expiration is not None:
            data[FIELD_EXPIRATION] = self.expiration.isoformat()
        return data

    def acknowledge(self, data: dict[str, Any]) -> None:
        """Update the session from a chunk or status response."""
        if FIELD_NEXT_EXPECTED_RANGES in data:
            self.next_expected_ranges = list(data[FIELD_NEXT_EXPECTED_RANGES])
        expiration = data.get(FIELD_EXPIRATION)
        if expiration:
            self.expiration = _parse_timestamp(expiration)

    def next_expected_offset(self) -> int | None:
        """Return the first byte the service still expects, or None if nothing is pending."""
        if not self.next_expected_ranges:
            return None
        start, _, _ = self.next_expected_ranges[0].partition("-")
        return int(start)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiration is None:
            return False
        return (now or datetime.now(tz=UTC)) >= self.expiration


@dataclass(frozen=True)
class ChunkRange:
    """Half-open byte range [start, end) uploaded as one request."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def content_range(self, total_size: int) -> str:
        """Format the Content-Range header value, whose end bound is inclusive."""
        return f"bytes {self.start}-{self.end - 1}/{total_size}"


def validate_chunk_size(chunk_size: int | None) -> int:
    """Return the effective chunk size, defaulting when None.

    Raises:
        InvalidArgument: If the size is not a positive multiple of 320 KiB.
    """
    if chunk_size is None:
        return DEFAULT_CHUNK_SIZE
    if (
        isinstance(chunk_size, bool)
        or not isinstance(chunk_size, int)
        or chunk_size <= 0
        or chunk_size % CHUNK_ALIGNMENT != 0
    ):
        raise InvalidArgument(
            f"chunk_size must be a positive multiple of 320 KiB ({CHUNK_ALIGNMENT} bytes), "
            f"got {chunk_size!r}"
        )
    return chunk_size


def plan_chunks(total_size: int, chunk_size: int, start: int = 0) -> list[ChunkRange]:
    """Split [start, total_size) into contiguous chunks of chunk_size bytes.

    The final chunk holds the remainder and may be shorter.
    """
    return [
        ChunkRange(offset, min(offset + chunk_size, total_size))
        for offset in range(start, total_size, chunk_size)
    ]


def content_size(content: IO[bytes], size: int | None = None) -> int:
    """Return the number of bytes left in a content stream.

    Args:
        content: Binary stream positioned at the first byte to upload.
        size: Explicit size, required for streams that cannot seek.

    Raises:
        InvalidArgument: If the size is negative or cannot be determined.
    """
    if size is not None:
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise InvalidArgument(f"size must be a non-negative integer, got {size!r}")
        return size
    if not content.seekable():
        raise InvalidArgument("size is required for streams that are not seekable")
    position = content.tell()
    end = content.seek(0, 2)
    content.seek(position)
    return end - position


def _response_json(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    return response.json()  # type: ignore[no-any-return]


class ChunkedUpload:
    """Drives one upload session from negotiation to completion.

    A ChunkedUpload is single-use and strictly sequential: chunks are sent
    one at a time in byte order and callers must not upload and cancel
    concurrently.
    """

    def __init__(
        self,
        client: GraphClient,
        content: IO[bytes],
        total_size: int,
        chunk_size: int | None = None,
        store: UploadSessionStore | None = None,
        store_key: str | None = None,
    ) -> None:
        """Initialise an idle upload.

        Args:
            client: GraphClient used for every request.
            content: Binary stream read forward-only from its current position.
            total_size: Number of bytes that will be uploaded.
            chunk_size: Chunk size in bytes; a positive multiple of 320 KiB.
            store: Optional store that persists the session after every
                acknowledgement so the upload can be resumed after a restart.
            store_key: Key under which the session is persisted.

        Raises:
            InvalidArgument: If chunk_size is invalid or total_size is not positive.
        """
        if total_size <= 0:
            raise InvalidArgument("Cannot upload empty content through an upload session")
        self._client = client
        self._content = content
        self._total_size = total_size
        self._chunk_size = validate_chunk_size(chunk_size)
        self._store = store
        self._store_key = store_key
        self._state = UploadState.IDLE
        self._session: UploadSession | None = None
        self._offset = 0
        self._pending: bytes | None = None
        self._resumable = True
        self._result: RawRecord | None = None

    @classmethod
    def from_session(
        cls,
        client: GraphClient,
        session: UploadSession,
        content: IO[bytes],
        total_size: int,
        chunk_size: int | None = None,
        store: UploadSessionStore | None = None,
        store_key: str | None = None,
    ) -> ChunkedUpload:
        """Rebuild an upload around an existing session, e.g. one loaded from a store.

        The content stream must hold the whole file and be seekable; it is
        positioned at the session's next expected offset.
        """
        upload = cls(client, content, total_size, chunk_size, store, store_key)
        offset = session.next_expected_offset() or 0
        if offset:
            if not content.seekable():
                raise InvalidArgument("Resuming an upload requires a seekable content stream")
            content.seek(offset)
        upload._session = session
        upload._offset = offset
        upload._transition(UploadState.SESSION_NEGOTIATED)
        logger.info(
            "[from_session] resuming upload session; offset:%d;total_size:%d",
            offset,
            total_size,
        )
        return upload

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def session(self) -> UploadSession | None:
        return self._session

    @property
    def offset(self) -> int:
        """Number of bytes the service has acknowledged so far."""
        return self._offset

    @property
    def total_size(self) -> int:
        return self._total_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def result(self) -> RawRecord | None:
        """The finished drive item once the upload has completed."""
        return self._result

    def _transition(self, target: UploadState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise UploadStateError(
                f"Upload cannot move from {self._state.value} to {target.value}"
            )
        logger.debug(
            "[_transition] upload state change; from:%s;to:%s",
            self._state.value,
            target.value,
        )
        self._state = target

    async def negotiate(self, session_path: str, conflict_behavior: str) -> UploadSession:
        """Create the upload session.

        Args:
            session_path: Graph path of the ``createUploadSession`` action.
            conflict_behavior: Wire-level conflict-behavior directive.

        Returns:
            The negotiated UploadSession.

        Raises:
            UploadStateError: If a session was already negotiated.
            SessionCreationFailed: If the service rejects the request.
        """
        if self._state is not UploadState.IDLE:
            raise UploadStateError(f"Upload session already negotiated; state:{self._state.value}")

        body = {"item": {FIELD_CONFLICT_BEHAVIOR: conflict_behavior}}
        try:
            response = await self._client.request("POST", session_path, json=body)
        except RemoteRequestFailed as exc:
            logger.error("[negotiate] upload session creation failed; status:%s", exc.status_code)
            raise SessionCreationFailed(
                exc.status_code, f"Could not create an upload session: {exc.message}"
            ) from exc

        try:
            session = UploadSession.from_json(_response_json(response))
        except (KeyError, ValueError) as exc:
            raise SessionCreationFailed(
                response.status_code, "Upload session response is malformed"
            ) from exc

        self._session = session
        self._transition(UploadState.SESSION_NEGOTIATED)
        await self._persist()
        logger.info(
            "[negotiate] upload session created; total_size:%d;chunk_size:%d",
            self._total_size,
            self._chunk_size,
        )
        return session

    def _read_chunk(self) -> bytes:
        """Read the next chunk from the stream, looping over short reads."""
        wanted = min(self._chunk_size, self._total_size - self._offset)
        parts: list[bytes] = []
        remaining = wanted
        while remaining > 0:
            data = self._content.read(remaining)
            if not data:
                break
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)

    async def upload_next_chunk(self) -> RawRecord | None:
        """Upload the next chunk, or re-send the chunk that last failed.

        Returns:
            The finished drive item when this chunk completed the upload,
            otherwise None.

        Raises:
            UploadStateError: If no session is active, or the service asked
                for an offset an unseekable stream has already passed.
            ChunkUploadFailed: If the chunk is rejected, the stream ends early
                or the session has expired. Unless expired or unseekable, the
                session stays resumable and calling this method again retries
                the chunk.
        """
        if self._session is None:
            raise UploadStateError("No upload session has been negotiated")
        if not self._resumable:
            raise UploadStateError(
                f"Upload cannot continue: the stream cannot seek to byte {self._offset}"
            )
        if self._state is not UploadState.UPLOADING:
            self._transition(UploadState.UPLOADING)

        if self._session.is_expired():
            self._transition(UploadState.EXPIRED)
            await self._forget()
            raise ChunkUploadFailed(None, "Upload session has expired", self._offset)

        chunk = self._pending if self._pending is not None else self._read_chunk()
        self._pending = chunk
        if not chunk:
            self._transition(UploadState.FAILED)
            raise ChunkUploadFailed(
                None,
                f"Content ended at byte {self._offset} before the service completed the upload "
                f"of {self._total_size} bytes",
                self._offset,
            )

        chunk_range = ChunkRange(self._offset, self._offset + len(chunk))
        headers = {
            "Content-Length": str(chunk_range.length),
            "Content-Range": chunk_range.content_range(self._total_size),
        }
        try:
            response = await self._client.request(
                "PUT",
                self._session.upload_url,
                content=chunk,
                headers=headers,
                authenticate=False,
            )
        except RemoteRequestFailed as exc:
            self._transition(UploadState.FAILED)
            logger.error(
                "[upload_next_chunk] chunk rejected; start:%d;end:%d;status:%s",
                chunk_range.start,
                chunk_range.end,
                exc.status_code,
            )
            raise ChunkUploadFailed(exc.status_code, exc.message, chunk_range.start) from exc

        self._pending = None
        self._offset = chunk_range.end
        body = _response_json(response)

        if response.status_code in (200, 201):
            self._result = body
            self._transition(UploadState.COMPLETED)
            await self._forget()
            logger.info("[upload_next_chunk] upload complete; total_size:%d", self._total_size)
            return body

        self._session.acknowledge(body)
        await self._persist()
        self._sync_offset(self._session)
        logger.info(
            "[upload_next_chunk] chunk acknowledged; offset:%d;total_size:%d",
            self._offset,
            self._total_size,
        )
        return None

    def _sync_offset(self, session: UploadSession) -> None:
        """Align the local offset with the first range the service still expects."""
        expected = session.next_expected_offset()
        if expected is None or expected == self._offset:
            return
        if not self._content.seekable():
            position = self._offset
            self._offset = expected
            self._resumable = False
            self._transition(UploadState.FAILED)
            logger.error(
                "[_sync_offset] stream cannot seek to expected offset; local:%d;expected:%d",
                position,
                expected,
            )
            raise ChunkUploadFailed(
                None,
                f"Service expects byte {expected} but the stream is at {position} "
                "and cannot seek; the upload cannot be resumed from this stream",
                expected,
            )
        logger.warning(
            "[_sync_offset] service expects a different offset; local:%d;expected:%d",
            self._offset,
            expected,
        )
        self._content.seek(self._content.tell() + expected - self._offset)
        self._offset = expected

    async def upload(self) -> RawRecord:
        """Upload every remaining chunk in order and return the finished drive item."""
        while True:
            record = await self.upload_next_chunk()
            if record is not None:
                return record

    async def resume(self) -> RawRecord:
        """Continue a failed upload from the last acknowledged offset."""
        if self._state is not UploadState.FAILED:
            raise UploadStateError(f"Only a failed upload can be resumed; state:{self._state.value}")
        if not self._resumable:
            raise UploadStateError(
                f"Upload cannot be resumed: the stream cannot seek to byte {self._offset}"
            )
        return await self.upload()

    async def cancel(self) -> None:
        """Delete the upload session on the service.

        A no-op when no session exists or the upload already ended. The state
        becomes CANCELLED before the delete request is sent; a failed delete
        still raises RemoteRequestFailed.
        """
        if self._session is None or self._state in TERMINAL_STATES:
            logger.info("[cancel] no active upload session; state:%s", self._state.value)
            return
        self._transition(UploadState.CANCELLED)
        self._pending = None
        await self._forget()
        logger.info("[cancel] deleting upload session; offset:%d", self._offset)
        await self._client.delete(self._session.upload_url, authenticate=False)

    async def get_status(self) -> int | None:
        """Ask the service for the next byte offset it expects.

        Returns:
            The next expected offset, or None when nothing is pending.

        Raises:
            RemoteRequestFailed: If the backend cannot report session status.
        """
        if self._session is None or self._state in TERMINAL_STATES:
            return None
        response = await self._client.request(
            "GET", self._session.upload_url, authenticate=False
        )
        self._session.acknowledge(_response_json(response))
        return self._session.next_expected_offset()

    async def _persist(self) -> None:
        if self._store is not None and self._store_key and self._session is not None:
            await self._store.save(self._store_key, self._session)

    async def _forget(self) -> None:
        if self._store is not None and self._store_key:
            await self._store.clear(self._store_key)
