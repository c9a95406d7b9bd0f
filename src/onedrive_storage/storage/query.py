"""Construction of children listing requests against a parent folder."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from onedrive_storage.errors import InvalidArgument
from onedrive_storage.graph.models import ODATA_FILTER, ODATA_ORDER_BY, ODATA_TOP


class SortKey(Enum):
    """Drive item properties the children endpoint can order by."""

    NAME = "name"
    SIZE = "size"
    LAST_MODIFIED = "lastModifiedDateTime"


@dataclass(frozen=True)
class ChildrenRequest:
    """A re-issuable children listing request.

    Attributes:
        path: Relative Graph path, or the absolute ``@odata.nextLink`` URL of
            a continuation (which already encodes the original query).
        params: Query string parameters sent with the request.
    """

    path: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def continuation(cls, next_link: str) -> ChildrenRequest:
        """Build the request for the page an ``@odata.nextLink`` points to."""
        return cls(path=next_link)


def build_children_request(
    parent_path: str,
    page_size: int,
    sort_key: SortKey | str | None = None,
    filter: str | None = None,  # noqa: A002
) -> ChildrenRequest:
    """Build a children listing request for a folder.

    Args:
        parent_path: Graph request path of the parent folder
            (e.g. "/users/u/drive/items/abc").
        page_size: Number of children per page. The service enforces its own
            upper bound.
        sort_key: Property to order ascending by. A raw string is used as the
            property name verbatim.
        filter: OData filter expression passed through unchanged.

    Returns:
        ChildrenRequest for the first page.

    Raises:
        InvalidArgument: If page_size is not a positive integer.
    """
    if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
        raise InvalidArgument(f"page_size must be a positive integer, got {page_size!r}")

    params: dict[str, Any] = {ODATA_TOP: page_size}
    if sort_key is not None:
        key = sort_key.value if isinstance(sort_key, SortKey) else sort_key
        params[ODATA_ORDER_BY] = f"{key} asc"
    if filter:
        params[ODATA_FILTER] = filter
    return ChildrenRequest(path=f"{parent_path}/children", params=params)
