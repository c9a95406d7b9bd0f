"""Upload session persistence in Azure Blob Storage for resume after restart."""

from __future__ import annotations

import contextlib
import json
import logging
from typing import TYPE_CHECKING

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient

from onedrive_storage.storage.upload import UploadSession

if TYPE_CHECKING:
    from onedrive_storage.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_BLOB_PREFIX = "upload-session/"


class UploadSessionStore:
    """Stores in-progress upload sessions as JSON blobs keyed by caller-chosen names.

    A session is saved after negotiation and after every acknowledged chunk,
    and removed once the upload completes, is cancelled or expires.
    """

    def __init__(
        self,
        storage_connection_string: str,
        container: str,
        blob_prefix: str = DEFAULT_BLOB_PREFIX,
    ) -> None:
        """Initialise the session store.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name for session storage.
            blob_prefix: Prefix for session blob paths.
        """
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self._blob_prefix = blob_prefix

    def _blob_client(self, key: str):  # type: ignore[no-untyped-def]
        container_client = self._blob_service.get_container_client(self._container)
        return container_client.get_blob_client(f"{self._blob_prefix}{key}")

    async def aclose(self) -> None:
        """Close the underlying blob service client."""
        await self._blob_service.close()

    async def load(self, key: str) -> UploadSession | None:
        """Read a persisted session.

        Returns:
            The stored UploadSession, or None if no session is stored under key.
        """
        try:
            downloader = await self._blob_client(key).download_blob()
            data = await downloader.readall()
        except ResourceNotFoundError:
            logger.info("[load] no upload session stored; key:%s", key)
            return None
        return UploadSession.from_json(json.loads(data.decode("utf-8")))

    async def save(self, key: str, session: UploadSession) -> None:
        """Write a session, creating the container if needed."""
        container_client = self._blob_service.get_container_client(self._container)
        with contextlib.suppress(ResourceExistsError):
            await container_client.create_container()
            logger.info("[save] created blob container; container:%s", self._container)

        payload = json.dumps(session.to_json()).encode("utf-8")
        await self._blob_client(key).upload_blob(payload, overwrite=True)
        logger.info("[save] stored upload session; key:%s", key)

    async def clear(self, key: str) -> None:
        """Delete a stored session; a missing blob is not an error."""
        try:
            await self._blob_client(key).delete_blob()
        except ResourceNotFoundError:
            return
        logger.info("[clear] removed upload session; key:%s", key)


def upload_session_store_from_config(config: AppConfig) -> UploadSessionStore | None:
    """Construct an UploadSessionStore, or None when no storage account is configured.

    Args:
        config: Application configuration instance.

    Returns:
        Configured UploadSessionStore, or None if persistence is disabled.
    """
    if not config.storage_connection_string:
        return None
    return UploadSessionStore(
        storage_connection_string=config.storage_connection_string,
        container=config.session_container,
    )
