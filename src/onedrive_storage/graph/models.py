"""Graph API field names and classification of raw drive item records."""

from enum import Enum
from typing import Any

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_FILE = "file"
FIELD_FOLDER = "folder"
FIELD_SPECIAL_FOLDER = "specialFolder"
FIELD_SIZE = "size"
FIELD_LAST_MODIFIED = "lastModifiedDateTime"
FIELD_WEB_URL = "webUrl"
FIELD_PARENT_REFERENCE = "parentReference"
FIELD_PATH = "path"
FIELD_CONFLICT_BEHAVIOR = "@microsoft.graph.conflictBehavior"

# Upload session fields
FIELD_UPLOAD_URL = "uploadUrl"
FIELD_EXPIRATION = "expirationDateTime"
FIELD_NEXT_EXPECTED_RANGES = "nextExpectedRanges"

# OData response keys and query options
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"
ODATA_TOP = "$top"
ODATA_ORDER_BY = "$orderby"
ODATA_FILTER = "$filter"

RawRecord = dict[str, Any]


class ItemKind(Enum):
    """Kind discriminant of a drive item."""

    FOLDER = "folder"
    FILE = "file"
    OTHER = "other"


def classify_record(record: RawRecord) -> ItemKind:
    """Classify a raw drive item by its facet markers.

    A ``folder`` facet and a ``specialFolder`` facet both mark a folder.
    """
    if FIELD_FOLDER in record or FIELD_SPECIAL_FOLDER in record:
        return ItemKind.FOLDER
    if FIELD_FILE in record:
        return ItemKind.FILE
    return ItemKind.OTHER
