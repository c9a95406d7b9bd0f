"""Shared fixtures — a recording Graph backend behind httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from onedrive_storage.graph.client import GraphClient
from onedrive_storage.storage.items import StorageFolder
from tests.unit.fakes import DRIVE_PATH, RecordingBackend, StaticAuth, folder_record


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def graph_client(backend: RecordingBackend) -> GraphClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    return GraphClient(StaticAuth(), http=http)


@pytest.fixture
def folder(graph_client: GraphClient) -> StorageFolder:
    return StorageFolder(folder_record("folder-1", "Docs"), graph_client, DRIVE_PATH)
