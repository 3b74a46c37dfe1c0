"""
Tests for CosmosMirrorClient.

Unit tests run against a mocked container. The live tests at the bottom
require PLANILLA_COSMOS_* environment variables and a TEST database.
"""

from __future__ import annotations

import os
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from planilla_storage import CosmosAuthMethod, StorageConfig
from planilla_storage.exceptions import MirrorError
from planilla_storage.mirror import CosmosMirrorClient, CosmosMirrorConfig

COSMOS_CONFIGURED = bool(os.environ.get("PLANILLA_COSMOS_ENDPOINT"))


def sample_document(record_id: str = "rec-1") -> dict:
    return {
        "id": record_id,
        "filename": f"planilla_1_{record_id}.json",
        "filePath": f"/uploads/planillas/planilla_1_{record_id}.json",
        "createdAt": "2024-05-01T12:00:00.000Z",
        "updatedAt": "2024-05-01T12:00:00.000Z",
        "images": [],
        "meta": {"title": "A"},
    }


@pytest.fixture
def mock_container() -> AsyncMock:
    container = AsyncMock()
    container.create_item = AsyncMock(side_effect=lambda body: dict(body))
    return container


@pytest.fixture
def client(mock_container: AsyncMock) -> CosmosMirrorClient:
    mirror = CosmosMirrorClient(CosmosMirrorConfig(endpoint="https://acct.example"))
    mirror._container = mock_container
    return mirror


class TestCosmosMirrorClient:
    """Test mirror calls against a mocked container."""

    async def test_create_returns_confirmed_id(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        remote_id = await client.create(sample_document())

        body = mock_container.create_item.call_args.kwargs["body"]
        assert body["id"] == remote_id
        assert body["planillaId"] == "rec-1"
        assert body["meta"] == {"title": "A"}
        assert "mirroredAt" in body

    async def test_create_without_confirmation(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        mock_container.create_item = AsyncMock(return_value={})

        with pytest.raises(MirrorError):
            await client.create(sample_document())

    async def test_create_http_error(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        mock_container.create_item = AsyncMock(
            side_effect=CosmosHttpResponseError(status_code=503, message="unavailable")
        )

        with pytest.raises(MirrorError) as exc_info:
            await client.create(sample_document())
        assert exc_info.value.operation == "create"

    async def test_update_replaces_item(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        await client.update("remote-1", sample_document())

        kwargs = mock_container.replace_item.call_args.kwargs
        assert kwargs["item"] == "remote-1"
        assert kwargs["body"]["id"] == "remote-1"
        assert kwargs["body"]["planillaId"] == "rec-1"

    async def test_update_missing_document(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        mock_container.replace_item = AsyncMock(
            side_effect=CosmosResourceNotFoundError(status_code=404, message="gone")
        )

        with pytest.raises(MirrorError) as exc_info:
            await client.update("remote-1", sample_document())
        assert exc_info.value.remote_id == "remote-1"

    async def test_delete(self, client: CosmosMirrorClient, mock_container: AsyncMock) -> None:
        await client.delete("remote-1")

        mock_container.delete_item.assert_awaited_once_with(
            item="remote-1", partition_key="remote-1"
        )

    async def test_delete_missing_is_success(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        mock_container.delete_item = AsyncMock(
            side_effect=CosmosResourceNotFoundError(status_code=404, message="gone")
        )

        await client.delete("remote-1")

    async def test_delete_http_error(
        self, client: CosmosMirrorClient, mock_container: AsyncMock
    ) -> None:
        mock_container.delete_item = AsyncMock(
            side_effect=CosmosHttpResponseError(status_code=500, message="boom")
        )

        with pytest.raises(MirrorError):
            await client.delete("remote-1")

    async def test_connection_failure_becomes_mirror_error(self) -> None:
        mirror = CosmosMirrorClient(
            CosmosMirrorConfig(
                endpoint="https://acct.example", auth_method=CosmosAuthMethod.KEY, key="k"
            )
        )

        with patch(
            "planilla_storage.mirror.cosmos.CosmosClient", side_effect=RuntimeError("unreachable")
        ):
            with pytest.raises(MirrorError) as exc_info:
                await mirror.create(sample_document())

        assert exc_info.value.operation == "create"
        assert mirror._container is None

    async def test_close_resets_state(self, client: CosmosMirrorClient) -> None:
        await client.close()

        assert client._container is None


@pytest.mark.skipif(not COSMOS_CONFIGURED, reason="PLANILLA_COSMOS_ENDPOINT not set")
class TestCosmosMirrorLive:
    """Round trip against a real Cosmos DB account.

    WARNING: point PLANILLA_COSMOS_DATABASE at a TEST database, never production!
    """

    @pytest.fixture
    async def live_client(self):  # type: ignore[misc]
        mirror = CosmosMirrorClient(
            CosmosMirrorConfig.from_storage_config(StorageConfig.from_environment())
        )
        await mirror.initialize()
        yield mirror
        await mirror.close()

    async def test_create_update_delete(self, live_client: CosmosMirrorClient) -> None:
        record_id = f"test-{uuid.uuid4().hex[:8]}"

        remote_id = await live_client.create(sample_document(record_id))
        assert remote_id

        updated = sample_document(record_id)
        updated["meta"] = {"title": "B"}
        await live_client.update(remote_id, updated)

        await live_client.delete(remote_id)
        # Second delete of an absent document is tolerated
        await live_client.delete(remote_id)
