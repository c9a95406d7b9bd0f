"""Typed local handles for drive items and their follow-up operations."""

from __future__ import annotations

import logging
import weakref
from typing import IO, TYPE_CHECKING, Any, cast
from urllib.parse import quote

from onedrive_storage.errors import (
    DriveError,
    InvalidArgument,
    PayloadTooLarge,
    RemoteRequestFailed,
    UploadStateError,
)
from onedrive_storage.graph.models import (
    FIELD_CONFLICT_BEHAVIOR,
    FIELD_FOLDER,
    FIELD_ID,
    FIELD_LAST_MODIFIED,
    FIELD_NAME,
    FIELD_PARENT_REFERENCE,
    FIELD_PATH,
    FIELD_SIZE,
    FIELD_WEB_URL,
    ItemKind,
    RawRecord,
    classify_record,
)
from onedrive_storage.storage.collision import CollisionPolicy, to_conflict_behavior
from onedrive_storage.storage.listing import (
    ListingView,
    Page,
    PageCursors,
    fetch_children,
    select_records,
)
from onedrive_storage.storage.query import ChildrenRequest, SortKey, build_children_request
from onedrive_storage.storage.upload import (
    SIMPLE_UPLOAD_MAX_SIZE,
    ChunkedUpload,
    UploadState,
    content_size,
    validate_chunk_size,
)

if TYPE_CHECKING:
    from onedrive_storage.graph.client import GraphClient
    from onedrive_storage.graph.session_store import UploadSessionStore

logger = logging.getLogger(__name__)

DEFAULT_ITEMS_PAGE_SIZE = 20
DEFAULT_FILES_PAGE_SIZE = 20
DEFAULT_FOLDERS_PAGE_SIZE = 100

# The service refuses to create an empty file through the direct path.
EMPTY_FILE_PLACEHOLDER = b"\x00"


def _require_name(name: str, argument: str = "name") -> None:
    if not name:
        raise InvalidArgument(f"{argument} must be a non-empty string")


def _read_small_content(content: bytes | IO[bytes]) -> bytes:
    """Return content for the direct write path, enforcing the size ceiling first."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        size = len(content)
        if size > SIMPLE_UPLOAD_MAX_SIZE:
            raise PayloadTooLarge(size, SIMPLE_UPLOAD_MAX_SIZE)
        return bytes(content)
    if not content.seekable():
        data = _read_at_most(content, SIMPLE_UPLOAD_MAX_SIZE + 1)
        if len(data) > SIMPLE_UPLOAD_MAX_SIZE:
            raise PayloadTooLarge(len(data), SIMPLE_UPLOAD_MAX_SIZE)
        return data
    size = content_size(content)
    if size > SIMPLE_UPLOAD_MAX_SIZE:
        raise PayloadTooLarge(size, SIMPLE_UPLOAD_MAX_SIZE)
    return content.read()


def _read_at_most(content: IO[bytes], limit: int) -> bytes:
    """Read up to limit bytes, looping over short reads until the stream ends."""
    parts: list[bytes] = []
    remaining = limit
    while remaining > 0:
        data = content.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


class StorageItem:
    """A drive item bound to the client that fetched it.

    The client is held through a weak reference: a handle can issue
    follow-up requests while its client is alive but does not keep the
    client alive.
    """

    kind = ItemKind.OTHER

    def __init__(self, record: RawRecord, client: GraphClient, drive_path: str) -> None:
        """Initialise the handle from a raw drive item record.

        Args:
            record: Raw drive item JSON from the Graph API.
            client: GraphClient used for follow-up requests.
            drive_path: Graph path of the owning drive (e.g. "/users/u/drive").
        """
        parent_ref: dict[str, Any] = record.get(FIELD_PARENT_REFERENCE, {})
        self.record = record
        self.id: str = record.get(FIELD_ID, "")
        self.name: str = record.get(FIELD_NAME, "")
        self.parent_id: str = parent_ref.get(FIELD_ID, "")
        self.parent_path: str = parent_ref.get(FIELD_PATH, "")
        self.size: int | None = record.get(FIELD_SIZE)
        self.last_modified: str | None = record.get(FIELD_LAST_MODIFIED)
        self.web_url: str | None = record.get(FIELD_WEB_URL)
        self.drive_path = drive_path
        self._client_ref = weakref.ref(client)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, name={self.name!r})"

    @property
    def request_path(self) -> str:
        """Graph path addressing this item by id."""
        return f"{self.drive_path}/items/{self.id}"

    @property
    def client(self) -> GraphClient:
        client = self._client_ref()
        if client is None:
            raise DriveError(f"The client that loaded {self.name!r} has been closed")
        return client

    def _wrap(self, record: RawRecord) -> StorageItem:
        return materialize(record, self.client, self.drive_path)

    async def rename(self, new_name: str) -> StorageItem:
        """Rename the item and return a handle for the updated record."""
        _require_name(new_name, "new_name")
        record = await self.client.patch_json(self.request_path, {FIELD_NAME: new_name})
        logger.info("[rename] renamed item; id:%s;name:%s", self.id, new_name)
        return self._wrap(record)

    async def delete(self) -> None:
        """Delete the item from the drive."""
        await self.client.delete(self.request_path)
        logger.info("[delete] deleted item; id:%s;name:%s", self.id, self.name)


class StorageFile(StorageItem):
    """A file in the drive."""

    kind = ItemKind.FILE

    async def read(self) -> bytes:
        """Download the file's content."""
        return await self.client.get_content(f"{self.request_path}/content")

    async def write(self, content: bytes | IO[bytes]) -> StorageFile:
        """Replace the file's content through the direct write path.

        Raises:
            PayloadTooLarge: If the content exceeds the direct upload limit.
        """
        data = _read_small_content(content)
        record = await self.client.put_content(f"{self.request_path}/content", data)
        logger.info("[write] wrote file content; id:%s;size:%d", self.id, len(data))
        return cast(StorageFile, self._wrap(record))


class StorageFolder(StorageItem):
    """A folder in the drive, with paginated listings and file creation.

    Each of the three listing views (all items, files only, folders only)
    keeps its own continuation, so the views can be paged independently and
    in any interleaving.
    """

    kind = ItemKind.FOLDER

    def __init__(self, record: RawRecord, client: GraphClient, drive_path: str) -> None:
        super().__init__(record, client, drive_path)
        self.cursors = PageCursors()
        self._upload: ChunkedUpload | None = None

    @property
    def upload(self) -> ChunkedUpload | None:
        """The most recent upload started through this folder."""
        return self._upload

    @property
    def is_upload_completed(self) -> bool:
        return self._upload is not None and self._upload.state is UploadState.COMPLETED

    def _child_path(self, name: str) -> str:
        return f"{self.request_path}:/{quote(name, safe='/')}:"

    def children_request(
        self,
        page_size: int,
        sort_key: SortKey | str | None = None,
        filter: str | None = None,  # noqa: A002
    ) -> ChildrenRequest:
        """Build a first-page children request for this folder."""
        return build_children_request(self.request_path, page_size, sort_key, filter)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def _list(self, view: ListingView, request: ChildrenRequest) -> Page[Any]:
        page = await fetch_children(self.client, request)
        self.cursors.advance(view, page.next_request)
        items = [self._wrap(record) for record in select_records(page.records, view)]
        return Page(items=items, next_request=page.next_request)

    async def _next(self, view: ListingView) -> Page[Any] | None:
        request = self.cursors.get(view)
        if request is None:
            return None
        return await self._list(view, request)

    async def list_items(
        self,
        page_size: int = DEFAULT_ITEMS_PAGE_SIZE,
        sort_key: SortKey | str | None = None,
        filter: str | None = None,  # noqa: A002
    ) -> Page[StorageItem]:
        """Fetch the first page of children of every kind."""
        request = self.children_request(page_size, sort_key, filter)
        return await self._list(ListingView.ITEMS, request)

    async def list_files(
        self,
        page_size: int = DEFAULT_FILES_PAGE_SIZE,
        sort_key: SortKey | str | None = None,
        filter: str | None = None,  # noqa: A002
    ) -> Page[StorageFile]:
        """Fetch the first page of children and keep only the files.

        A page can hold fewer than page_size files, or none, while more pages
        remain; call next_files() for the rest.
        """
        request = self.children_request(page_size, sort_key, filter)
        return await self._list(ListingView.FILES, request)

    async def list_folders(
        self,
        page_size: int = DEFAULT_FOLDERS_PAGE_SIZE,
        sort_key: SortKey | str | None = None,
        filter: str | None = None,  # noqa: A002
    ) -> Page[StorageFolder]:
        """Fetch the first page of children and keep only the folders."""
        request = self.children_request(page_size, sort_key, filter)
        return await self._list(ListingView.FOLDERS, request)

    async def next_items(self) -> Page[StorageItem] | None:
        """Fetch the next page of all children, or None when there is none."""
        return await self._next(ListingView.ITEMS)

    async def next_files(self) -> Page[StorageFile] | None:
        """Fetch the next page of files, or None when there is none."""
        return await self._next(ListingView.FILES)

    async def next_folders(self) -> Page[StorageFolder] | None:
        """Fetch the next page of folders, or None when there is none."""
        return await self._next(ListingView.FOLDERS)

    async def get_items_range(self, start_index: int, count: int) -> list[StorageItem]:
        """Return the children at [start_index, start_index + count).

        The children endpoint cannot skip, so this requests the first
        start_index + count children in one call and slices them. Listing
        cursors are left untouched.
        """
        if start_index < 0:
            raise InvalidArgument(f"start_index must not be negative, got {start_index}")
        if count <= 0:
            raise InvalidArgument(f"count must be positive, got {count}")
        request = self.children_request(start_index + count)
        page = await fetch_children(self.client, request)
        return [self._wrap(record) for record in page.records[start_index : start_index + count]]

    # ------------------------------------------------------------------
    # Single-child lookups
    # ------------------------------------------------------------------

    async def get_item(self, name: str) -> StorageItem | None:
        """Resolve a child by name or relative path; None if it does not exist."""
        _require_name(name)
        try:
            record = await self.client.get(self._child_path(name))
        except RemoteRequestFailed as exc:
            if exc.status_code == 404:
                logger.info("[get_item] child not found; folder_id:%s;name:%s", self.id, name)
                return None
            raise
        return self._wrap(record)

    async def get_file(self, name: str) -> StorageFile | None:
        """Resolve a child file; None if missing or not a file."""
        item = await self.get_item(name)
        return item if isinstance(item, StorageFile) else None

    async def get_folder(self, name: str) -> StorageFolder | None:
        """Resolve a child folder; None if missing or not a folder."""
        item = await self.get_item(name)
        return item if isinstance(item, StorageFolder) else None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_file(
        self,
        name: str,
        policy: CollisionPolicy = CollisionPolicy.FAIL_IF_EXISTS,
        content: bytes | IO[bytes] | None = None,
    ) -> StorageFile:
        """Create a file with one direct write request.

        Without content a single zero byte is written, since the service does
        not accept empty files; overwrite it afterwards with StorageFile.write().

        Raises:
            InvalidArgument: If name is empty.
            PayloadTooLarge: If content exceeds 4 MiB; use upload_file instead.
        """
        _require_name(name)
        data = EMPTY_FILE_PLACEHOLDER if content is None else _read_small_content(content)
        behavior = to_conflict_behavior(policy)
        record = await self.client.put_content(
            f"{self._child_path(name)}/content",
            data,
            params={FIELD_CONFLICT_BEHAVIOR: behavior},
        )
        logger.info(
            "[create_file] created file; folder_id:%s;name:%s;size:%d",
            self.id,
            name,
            len(data),
        )
        return cast(StorageFile, self._wrap(record))

    async def create_folder(
        self,
        name: str,
        policy: CollisionPolicy = CollisionPolicy.FAIL_IF_EXISTS,
    ) -> StorageFolder:
        """Create a child folder."""
        _require_name(name)
        body = {
            FIELD_NAME: name,
            FIELD_FOLDER: {},
            FIELD_CONFLICT_BEHAVIOR: to_conflict_behavior(policy),
        }
        record = await self.client.post_json(f"{self.request_path}/children", body)
        logger.info("[create_folder] created folder; folder_id:%s;name:%s", self.id, name)
        return cast(StorageFolder, self._wrap(record))

    async def rename(self, new_name: str) -> StorageFolder:
        """Rename the folder and return a folder handle for the updated record."""
        return cast(StorageFolder, await super().rename(new_name))

    # ------------------------------------------------------------------
    # Chunked uploads
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        name: str,
        content: IO[bytes],
        policy: CollisionPolicy = CollisionPolicy.FAIL_IF_EXISTS,
        chunk_size: int | None = None,
        size: int | None = None,
        store: UploadSessionStore | None = None,
        store_key: str | None = None,
    ) -> StorageFile:
        """Upload a file of any size through an upload session.

        Args:
            name: Name of the file to create in this folder.
            content: Binary stream read forward-only from its current position.
            policy: What to do when the name is already taken.
            chunk_size: Chunk size in bytes; a positive multiple of 320 KiB.
                Defaults to 5 MiB.
            size: Number of bytes to upload; required for unseekable streams.
            store: Optional UploadSessionStore to persist the session in.
            store_key: Key under which the session is persisted.

        Returns:
            The uploaded file.

        Raises:
            InvalidArgument: If name, content, chunk_size or size is invalid.
                Raised before any request is sent.
            SessionCreationFailed: If the session cannot be created.
            ChunkUploadFailed: If a chunk is rejected. The upload stays
                resumable through resume_upload().
        """
        _require_name(name)
        if content is None:
            raise InvalidArgument("content must not be None")
        validate_chunk_size(chunk_size)
        total_size = content_size(content, size)
        behavior = to_conflict_behavior(policy)

        upload = ChunkedUpload(self.client, content, total_size, chunk_size, store, store_key)
        self._upload = upload
        await upload.negotiate(f"{self._child_path(name)}/createUploadSession", behavior)
        record = await upload.upload()
        logger.info(
            "[upload_file] uploaded file; folder_id:%s;name:%s;size:%d",
            self.id,
            name,
            total_size,
        )
        return cast(StorageFile, self._wrap(record))

    async def resume_upload(self) -> StorageFile:
        """Resume the most recent upload after a ChunkUploadFailed."""
        if self._upload is None:
            raise UploadStateError("No upload has been started from this folder")
        record = await self._upload.resume()
        return cast(StorageFile, self._wrap(record))

    async def restore_upload(
        self,
        content: IO[bytes],
        store: UploadSessionStore,
        store_key: str,
        size: int | None = None,
        chunk_size: int | None = None,
    ) -> StorageFile | None:
        """Finish an upload whose session was persisted by an earlier process.

        Args:
            content: Seekable stream over the whole file, positioned at its start.
            store: Store the session was saved in.
            store_key: Key the session was saved under.
            size: Total file size; measured from the stream when omitted.
            chunk_size: Chunk size for the remaining chunks.

        Returns:
            The uploaded file, or None if no session is stored under store_key.
        """
        session = await store.load(store_key)
        if session is None:
            return None
        total_size = content_size(content, size)
        upload = ChunkedUpload.from_session(
            self.client, session, content, total_size, chunk_size, store, store_key
        )
        self._upload = upload
        record = await upload.upload()
        return cast(StorageFile, self._wrap(record))

    async def cancel_session(self) -> None:
        """Delete the current upload session; a no-op when there is none."""
        if self._upload is None:
            return
        await self._upload.cancel()

    async def get_upload_status(self) -> int | None:
        """Return the next byte offset the service expects, or None if nothing is pending."""
        if self._upload is None:
            return None
        return await self._upload.get_status()


def materialize(record: RawRecord, client: GraphClient, drive_path: str) -> StorageItem:
    """Wrap a raw drive item in the handle type matching its facets.

    Pure transformation: no request is sent.

    Args:
        record: Raw drive item JSON.
        client: GraphClient the handle uses for follow-up requests.
        drive_path: Graph path of the owning drive.

    Returns:
        StorageFolder for folder and special-folder records, StorageFile for
        file records, otherwise a plain StorageItem of kind OTHER.
    """
    kind = classify_record(record)
    if kind is ItemKind.FOLDER:
        return StorageFolder(record, client, drive_path)
    if kind is ItemKind.FILE:
        return StorageFile(record, client, drive_path)
    return StorageItem(record, client, drive_path)
