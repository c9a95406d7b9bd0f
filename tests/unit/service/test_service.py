"""Unit tests for service.py — DriveService entry points."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from onedrive_storage.config import AppConfig
from onedrive_storage.errors import RemoteRequestFailed
from onedrive_storage.graph.client import GraphClient
from onedrive_storage.service import DriveService, drive_service_from_config
from onedrive_storage.storage.items import StorageFile, StorageFolder
from tests.unit.fakes import (
    DRIVE_PATH,
    RecordingBackend,
    file_record,
    folder_record,
    special_folder_record,
)


@pytest.fixture
def service(graph_client: GraphClient) -> DriveService:
    return DriveService(graph_client, drive_user="testuser@contoso.onmicrosoft.com")


class TestDrivePath:
    def test_user_drive(self, graph_client: GraphClient) -> None:
        assert DriveService(graph_client, "u@x.com").drive_path == "/users/u@x.com/drive"

    def test_signed_in_user_drive_without_user(self, graph_client: GraphClient) -> None:
        assert DriveService(graph_client).drive_path == "/me/drive"


class TestFolders:
    @pytest.mark.asyncio
    async def test_root_folder(self, backend: RecordingBackend, service: DriveService) -> None:
        backend.enqueue(200, folder_record("root-id", "root"))

        root = await service.root_folder()

        assert backend.requests[0].url.path == f"/v1.0{DRIVE_PATH}/root"
        assert isinstance(root, StorageFolder)
        assert root.id == "root-id"
        assert root.request_path == f"{DRIVE_PATH}/items/root-id"

    @pytest.mark.asyncio
    async def test_app_root_folder(self, backend: RecordingBackend, service: DriveService) -> None:
        backend.enqueue(200, special_folder_record("app-id", "MyApp"))

        app_root = await service.app_root_folder()

        assert backend.requests[0].url.path == f"/v1.0{DRIVE_PATH}/special/approot"
        assert isinstance(app_root, StorageFolder)
        assert app_root.name == "MyApp"


class TestGetItemById:
    @pytest.mark.asyncio
    async def test_returns_typed_handle(
        self, backend: RecordingBackend, service: DriveService
    ) -> None:
        backend.enqueue(200, file_record("abc"))

        item = await service.get_item_by_id("abc")

        assert backend.requests[0].url.path == f"/v1.0{DRIVE_PATH}/items/abc"
        assert isinstance(item, StorageFile)

    @pytest.mark.asyncio
    async def test_missing_item_returns_none(
        self, backend: RecordingBackend, service: DriveService
    ) -> None:
        backend.enqueue(404, {"error": {"code": "itemNotFound", "message": "Not found"}})

        assert await service.get_item_by_id("gone") is None

    @pytest.mark.asyncio
    async def test_other_errors_propagate(
        self, backend: RecordingBackend, service: DriveService
    ) -> None:
        backend.enqueue(401, {"error": {"message": "Unauthorized"}})

        with pytest.raises(RemoteRequestFailed) as exc_info:
            await service.get_item_by_id("abc")

        assert exc_info.value.status_code == 401


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self) -> None:
        graph = MagicMock()
        graph.aclose = AsyncMock()

        async with DriveService(graph, "u") as service:
            assert service.drive_path == "/users/u/drive"

        graph.aclose.assert_awaited_once()


class TestDriveServiceFromConfig:
    def test_builds_service_for_configured_user(self) -> None:
        config = AppConfig(
            client_id="cid", client_secret="cs", tenant_id="tid", drive_user="u@x.com"
        )
        with patch("onedrive_storage.service.graph_client_from_config") as mock_factory:
            service = drive_service_from_config(config)

        mock_factory.assert_called_once_with(config)
        assert service.drive_path == "/users/u@x.com/drive"
