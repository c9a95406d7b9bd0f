"""Unit tests for paginated listings — storage/listing.py and StorageFolder views."""

from typing import Any

import httpx
import pytest

from onedrive_storage.errors import InvalidArgument, RemoteRequestFailed
from onedrive_storage.graph.client import GraphClient
from onedrive_storage.storage.items import StorageFile, StorageFolder, StorageItem
from onedrive_storage.storage.listing import (
    ListingView,
    Page,
    PageCursors,
    fetch_children,
    select_records,
)
from onedrive_storage.storage.query import ChildrenRequest, SortKey
from tests.unit.fakes import (
    DRIVE_PATH,
    GRAPH,
    RecordingBackend,
    file_record,
    folder_record,
    json_response,
    special_folder_record,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CHILDREN_URL = f"{GRAPH}{DRIVE_PATH}/items/folder-1/children"
PAGE_2_LINK = f"{CHILDREN_URL}?$skiptoken=p2"

PAGE_1: list[dict[str, Any]] = [
    folder_record("sub-a"),
    file_record("f1"),
    {"id": "pkg-1", "name": "Notebook", "package": {"type": "oneNote"}},
    file_record("f2"),
]
PAGE_2: list[dict[str, Any]] = [
    special_folder_record("docs"),
    file_record("f3"),
    folder_record("sub-b"),
]


def _paged_handler(request: httpx.Request) -> httpx.Response:
    """Two-page backend: page 1 links to page 2, page 2 is terminal."""
    if request.url.params.get("$skiptoken") == "p2":
        return json_response({"value": PAGE_2})
    return json_response({"value": PAGE_1, "@odata.nextLink": PAGE_2_LINK})


def _ids(page: Page[Any] | list[Any] | None) -> list[str]:
    assert page is not None
    return [item.id for item in page]


async def _drain(first: Page[Any], advance: Any) -> list[str]:
    ids = _ids(first)
    while True:
        page = await advance()
        if page is None:
            return ids
        ids.extend(_ids(page))


# ---------------------------------------------------------------------------
# fetch_children / select_records
# ---------------------------------------------------------------------------


class TestFetchChildren:
    @pytest.mark.asyncio
    async def test_returns_records_and_continuation(
        self, backend: RecordingBackend, graph_client: GraphClient
    ) -> None:
        backend.handler = _paged_handler
        request = ChildrenRequest(path=f"{DRIVE_PATH}/items/folder-1/children", params={"$top": 4})

        page = await fetch_children(graph_client, request)

        assert [r["id"] for r in page.records] == ["sub-a", "f1", "pkg-1", "f2"]
        assert page.next_request == ChildrenRequest.continuation(PAGE_2_LINK)
        assert backend.requests[0].url.params["$top"] == "4"

    @pytest.mark.asyncio
    async def test_terminal_page_has_no_continuation(
        self, backend: RecordingBackend, graph_client: GraphClient
    ) -> None:
        backend.handler = _paged_handler

        page = await fetch_children(graph_client, ChildrenRequest.continuation(PAGE_2_LINK))

        assert page.next_request is None
        assert backend.requests[0].url.params["$skiptoken"] == "p2"

    @pytest.mark.asyncio
    async def test_missing_value_key_yields_empty_page(
        self, backend: RecordingBackend, graph_client: GraphClient
    ) -> None:
        backend.enqueue(200, {})

        page = await fetch_children(graph_client, ChildrenRequest(path="/x/children"))

        assert page.records == []
        assert page.next_request is None


class TestSelectRecords:
    def test_items_view_keeps_everything_in_order(self) -> None:
        assert select_records(PAGE_1, ListingView.ITEMS) == PAGE_1

    def test_files_view_keeps_only_files(self) -> None:
        assert [r["id"] for r in select_records(PAGE_1, ListingView.FILES)] == ["f1", "f2"]

    def test_folders_view_accepts_special_folders(self) -> None:
        selected = select_records(PAGE_2, ListingView.FOLDERS)
        assert [r["id"] for r in selected] == ["docs", "sub-b"]


class TestPageCursors:
    def test_cursors_start_empty(self) -> None:
        cursors = PageCursors()
        assert all(cursors.get(view) is None for view in ListingView)

    def test_advancing_one_cursor_leaves_others(self) -> None:
        cursors = PageCursors()
        request = ChildrenRequest.continuation(PAGE_2_LINK)

        cursors.advance(ListingView.FILES, request)

        assert cursors.files is request
        assert cursors.items is None
        assert cursors.folders is None


# ---------------------------------------------------------------------------
# StorageFolder list / next
# ---------------------------------------------------------------------------


class TestFolderListings:
    @pytest.mark.asyncio
    async def test_list_items_materializes_every_kind(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        page = await folder.list_items()

        assert _ids(page) == ["sub-a", "f1", "pkg-1", "f2"]
        assert isinstance(page[0], StorageFolder)
        assert isinstance(page[1], StorageFile)
        assert type(page[2]) is StorageItem
        assert page.has_more
        assert folder.cursors.items == ChildrenRequest.continuation(PAGE_2_LINK)

    @pytest.mark.asyncio
    async def test_list_items_sends_page_size_sort_and_filter(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        await folder.list_items(page_size=7, sort_key=SortKey.NAME, filter="size gt 0")

        params = backend.requests[0].url.params
        assert params["$top"] == "7"
        assert params["$orderby"] == "name asc"
        assert params["$filter"] == "size gt 0"

    @pytest.mark.asyncio
    async def test_list_files_then_next_files_yields_files_in_order(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        first = await folder.list_files()
        second = await folder.next_files()
        third = await folder.next_files()

        assert _ids(first) == ["f1", "f2"]
        assert _ids(second) == ["f3"]
        assert third is None
        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_each_page_holds_only_its_own_records(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        await folder.list_items()
        second = await folder.next_items()

        assert _ids(second) == ["docs", "f3", "sub-b"]
        assert second is not None and not second.has_more

    @pytest.mark.asyncio
    async def test_short_files_page_does_not_fetch_more(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.enqueue(200, {"value": [folder_record("only-folder")], "@odata.nextLink": PAGE_2_LINK})

        page = await folder.list_files()

        assert len(page) == 0
        assert page.has_more
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_list_folders_includes_special_folders(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        first = await folder.list_folders()
        second = await folder.next_folders()

        assert _ids(first) == ["sub-a"]
        assert _ids(second) == ["docs", "sub-b"]
        assert all(isinstance(item, StorageFolder) for item in second or [])

    @pytest.mark.asyncio
    async def test_list_folders_default_page_size(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler

        await folder.list_folders()

        assert backend.requests[0].url.params["$top"] == "100"

    @pytest.mark.asyncio
    async def test_next_without_listing_returns_none_without_request(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        assert await folder.next_items() is None
        assert await folder.next_files() is None
        assert await folder.next_folders() is None
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_interleaved_cursors_match_isolated_runs(
        self, backend: RecordingBackend, graph_client: GraphClient
    ) -> None:
        backend.handler = _paged_handler

        isolated: dict[str, list[str]] = {}
        for view in ("items", "files", "folders"):
            fresh = StorageFolder(folder_record("folder-1"), graph_client, DRIVE_PATH)
            first = await getattr(fresh, f"list_{view}")()
            isolated[view] = await _drain(first, getattr(fresh, f"next_{view}"))

        folder = StorageFolder(folder_record("folder-1"), graph_client, DRIVE_PATH)
        interleaved = {
            "items": _ids(await folder.list_items()),
            "files": _ids(await folder.list_files()),
            "folders": _ids(await folder.list_folders()),
        }
        interleaved["files"] += _ids(await folder.next_files())
        interleaved["items"] += _ids(await folder.next_items())
        assert await folder.next_files() is None
        interleaved["folders"] += _ids(await folder.next_folders())
        assert await folder.next_items() is None
        assert await folder.next_folders() is None

        assert interleaved == isolated

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_cursor(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = _paged_handler
        await folder.list_items()
        cursor = folder.cursors.items
        backend.queue.append(httpx.Response(503, json={"error": {"message": "Busy"}}))

        with pytest.raises(RemoteRequestFailed) as exc_info:
            await folder.next_items()

        assert exc_info.value.status_code == 503
        assert folder.cursors.items == cursor
        assert _ids(await folder.next_items()) == ["docs", "f3", "sub-b"]


# ---------------------------------------------------------------------------
# get_items_range
# ---------------------------------------------------------------------------


class TestGetItemsRange:
    @staticmethod
    def _ten_children(request: httpx.Request) -> httpx.Response:
        top = int(request.url.params["$top"])
        children = [file_record(f"c{i}") for i in range(10)]
        return json_response({"value": children[:top]})

    @pytest.mark.asyncio
    async def test_returns_requested_slice(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = self._ten_children

        items = await folder.get_items_range(2, 3)

        assert _ids(items) == ["c2", "c3", "c4"]
        assert len(backend.requests) == 1
        assert backend.requests[0].url.params["$top"] == "5"

    @pytest.mark.asyncio
    async def test_returns_only_available_items(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = self._ten_children

        items = await folder.get_items_range(8, 5)

        assert _ids(items) == ["c8", "c9"]

    @pytest.mark.asyncio
    async def test_does_not_touch_cursors(
        self, backend: RecordingBackend, folder: StorageFolder
    ) -> None:
        backend.handler = self._ten_children

        await folder.get_items_range(0, 3)

        assert folder.cursors == PageCursors()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("start", "count"), [(-1, 3), (0, 0), (2, -4)])
    async def test_invalid_bounds_raise_before_request(
        self, backend: RecordingBackend, folder: StorageFolder, start: int, count: int
    ) -> None:
        with pytest.raises(InvalidArgument):
            await folder.get_items_range(start, count)

        assert backend.requests == []
