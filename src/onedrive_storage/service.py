"""Drive service: entry points to a user's OneDrive folders."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from onedrive_storage.errors import RemoteRequestFailed
from onedrive_storage.graph.client import GraphClient, graph_client_from_config
from onedrive_storage.graph.models import FIELD_ID
from onedrive_storage.storage.items import StorageFolder, StorageItem, materialize

if TYPE_CHECKING:
    from types import TracebackType

    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)


class DriveService:
    """Caller-owned handle on one OneDrive drive."""

    def __init__(self, graph_client: GraphClient, drive_user: str | None = None) -> None:
        """Initialise the service.

        Args:
            graph_client: Authenticated GraphClient. Handles returned by this
                service keep only a weak reference to it, so the caller must
                keep the client (or this service) alive while using them.
            drive_user: UPN or object ID of the drive's owner. Required with
                app permissions (client credentials flow) where /me is not
                available; when omitted the signed-in user's drive is used.
        """
        self._graph = graph_client
        self.drive_path = f"/users/{drive_user}/drive" if drive_user else "/me/drive"

    async def __aenter__(self) -> DriveService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._graph.aclose()

    async def root_folder(self) -> StorageFolder:
        """Return the drive's root folder."""
        record = await self._graph.get(f"{self.drive_path}/root")
        logger.info("[root_folder] loaded root folder; id:%s", record.get(FIELD_ID, ""))
        return StorageFolder(record, self._graph, self.drive_path)

    async def app_root_folder(self) -> StorageFolder:
        """Return the application's special folder (Apps/<app name>)."""
        record = await self._graph.get(f"{self.drive_path}/special/approot")
        logger.info("[app_root_folder] loaded app root folder; id:%s", record.get(FIELD_ID, ""))
        return StorageFolder(record, self._graph, self.drive_path)

    async def get_item_by_id(self, item_id: str) -> StorageItem | None:
        """Return the item with the given id, or None if it does not exist."""
        try:
            record = await self._graph.get(f"{self.drive_path}/items/{item_id}")
        except RemoteRequestFailed as exc:
            if exc.status_code == 404:
                logger.info("[get_item_by_id] item not found; id:%s", item_id)
                return None
            raise
        return materialize(record, self._graph, self.drive_path)


def drive_service_from_config(config: AppConfig) -> DriveService:
    """Construct a DriveService from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured DriveService owning a new GraphClient.
    """
    return DriveService(graph_client_from_config(config), drive_user=config.drive_user)
