"""Paginated children listings: page fetching, view filtering and cursors."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

from onedrive_storage.graph.models import (
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    ItemKind,
    RawRecord,
    classify_record,
)
from onedrive_storage.storage.query import ChildrenRequest

if TYPE_CHECKING:
    from onedrive_storage.graph.client import GraphClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ListingView(Enum):
    """The three parallel views over a folder's children."""

    ITEMS = "items"
    FILES = "files"
    FOLDERS = "folders"


_VIEW_KINDS: dict[ListingView, ItemKind | None] = {
    ListingView.ITEMS: None,
    ListingView.FILES: ItemKind.FILE,
    ListingView.FOLDERS: ItemKind.FOLDER,
}


@dataclass
class PageCursors:
    """Independent continuation requests, one per listing view.

    Each attribute is only read and written through its own view, so
    advancing one cursor never affects the others. None means the view has
    no further pages.
    """

    items: ChildrenRequest | None = None
    files: ChildrenRequest | None = None
    folders: ChildrenRequest | None = None

    def get(self, view: ListingView) -> ChildrenRequest | None:
        return getattr(self, view.value)  # type: ignore[no-any-return]

    def advance(self, view: ListingView, request: ChildrenRequest | None) -> None:
        setattr(self, view.value, request)


@dataclass
class ChildrenPage:
    """One fetched page of raw child records."""

    records: list[RawRecord]
    next_request: ChildrenRequest | None


@dataclass
class Page(Generic[T]):
    """One page of materialized children and the continuation that follows it."""

    items: list[T] = field(default_factory=list)
    next_request: ChildrenRequest | None = None

    @property
    def has_more(self) -> bool:
        return self.next_request is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> T:
        return self.items[index]


async def fetch_children(client: GraphClient, request: ChildrenRequest) -> ChildrenPage:
    """Execute a children request and return the raw page.

    Args:
        client: GraphClient used to send the request.
        request: First-page request or a stored continuation.

    Returns:
        ChildrenPage with the records in service order and the continuation
        for the next page, or None when the service reports no more pages.

    Raises:
        RemoteRequestFailed: If the request fails; nothing is retried.
    """
    response = await client.get(request.path, params=request.params or None)
    records: list[RawRecord] = response.get(ODATA_VALUE, [])
    next_link = response.get(ODATA_NEXT_LINK)
    next_request = ChildrenRequest.continuation(next_link) if next_link else None
    logger.info(
        "[fetch_children] fetched page; record_count:%d;has_more:%s",
        len(records),
        next_request is not None,
    )
    return ChildrenPage(records=records, next_request=next_request)


def select_records(records: list[RawRecord], view: ListingView) -> list[RawRecord]:
    """Filter an already-fetched page down to the records a view shows.

    Order is preserved. No extra pages are fetched to fill a short result.
    """
    kind = _VIEW_KINDS[view]
    if kind is None:
        return list(records)
    return [record for record in records if classify_record(record) is kind]
