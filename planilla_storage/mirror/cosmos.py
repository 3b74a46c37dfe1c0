"""
Cosmos DB mirror client.

Mirrors planilla documents into a single Cosmos DB container:

    {
        "id": "{remote_id}",          # assigned here, partition key
        "planillaId": "{local id}",
        "filename": "...", "filePath": "...",
        "createdAt": "...", "updatedAt": "...",
        "images": [...], "meta": {...},
        "mirroredAt": "{iso_timestamp}"
    }

The remote id is only returned once Cosmos has confirmed the create.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential

from ..config import CosmosAuthMethod, StorageConfig
from ..exceptions import (
    AuthenticationError,
    MirrorError,
    PlanillaStorageError,
    StorageConnectionError,
)
from .base import MirrorClient

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/id"


@dataclass
class CosmosMirrorConfig:
    """Configuration for the Cosmos mirror.

    Attributes:
        endpoint: Cosmos DB account endpoint URL
        database_name: Name of the database
        container_name: Name of the container holding planilla documents
        auth_method: Authentication method
        key: Cosmos DB account key (only needed for KEY auth)
    """

    endpoint: str
    database_name: str = "planillas-db"
    container_name: str = "planillas"
    auth_method: CosmosAuthMethod = CosmosAuthMethod.DEFAULT_CREDENTIAL
    key: str | None = None

    def __post_init__(self) -> None:
        if self.auth_method == CosmosAuthMethod.KEY and not self.key:
            raise AuthenticationError(
                self.endpoint, "PLANILLA_COSMOS_KEY required when auth method is 'key'"
            )

    @classmethod
    def from_storage_config(cls, config: StorageConfig) -> CosmosMirrorConfig:
        if not config.cosmos_endpoint:
            raise AuthenticationError("cosmos", "PLANILLA_COSMOS_ENDPOINT not configured")
        return cls(
            endpoint=config.cosmos_endpoint,
            database_name=config.cosmos_database,
            container_name=config.cosmos_container,
            auth_method=config.cosmos_auth_method,
            key=config.cosmos_key,
        )

    @classmethod
    def from_env(cls) -> CosmosMirrorConfig:
        """Create config from environment variables.

        Expected environment variables:
        - PLANILLA_COSMOS_ENDPOINT: Cosmos DB account endpoint
        - PLANILLA_COSMOS_DATABASE: Database name
        - PLANILLA_COSMOS_CONTAINER: Container name
        - PLANILLA_COSMOS_AUTH_METHOD: 'key' or 'default_credential' (default)
        - PLANILLA_COSMOS_KEY: Account key (only if auth method is 'key')
        """
        endpoint = os.environ.get("PLANILLA_COSMOS_ENDPOINT")
        if not endpoint:
            raise AuthenticationError(
                "cosmos", "PLANILLA_COSMOS_ENDPOINT environment variable not set"
            )
        return cls.from_storage_config(StorageConfig.from_environment())


class CosmosMirrorClient(MirrorClient):
    """Mirror client backed by Azure Cosmos DB (async SDK).

    The connection is opened lazily on the first call so a store can start
    while the remote is unreachable; connection problems surface as
    MirrorError from the call that hit them.
    """

    def __init__(self, config: CosmosMirrorConfig) -> None:
        self.config = config
        self._client: CosmosClient | None = None
        self._credential: DefaultAzureCredential | None = None
        self._database: DatabaseProxy | None = None
        self._container: ContainerProxy | None = None

    async def initialize(self) -> None:
        """Open the client and ensure database and container exist."""
        if self._container is not None:
            return

        try:
            if self.config.auth_method == CosmosAuthMethod.KEY:
                self._client = CosmosClient(self.config.endpoint, credential=self.config.key)
            else:
                self._credential = DefaultAzureCredential()
                self._client = CosmosClient(self.config.endpoint, credential=self._credential)

            self._database = await self._client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await self._database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
            )
            logger.info(f"Cosmos mirror initialized: {self.config.endpoint}")

        except CosmosHttpResponseError as e:
            await self.close()
            if e.status_code in (401, 403):
                raise AuthenticationError(self.config.endpoint, str(e)) from e
            raise StorageConnectionError(self.config.endpoint, e) from e
        except Exception as e:
            await self.close()
            raise StorageConnectionError(self.config.endpoint, e) from e

    async def _get_container(self, operation: str, remote_id: str | None = None) -> ContainerProxy:
        try:
            await self.initialize()
        except PlanillaStorageError as e:
            raise MirrorError(operation, remote_id, e) from e
        assert self._container is not None
        return self._container

    @staticmethod
    def _to_remote(remote_id: str, document: dict[str, Any]) -> dict[str, Any]:
        body = {key: value for key, value in document.items() if key != "id"}
        body["id"] = remote_id
        body["planillaId"] = document.get("id")
        body["mirroredAt"] = datetime.now(UTC).isoformat()
        return body

    async def create(self, document: dict[str, Any]) -> str:
        container = await self._get_container("create")
        remote_id = str(uuid.uuid4())
        try:
            created = await container.create_item(body=self._to_remote(remote_id, document))
        except CosmosHttpResponseError as e:
            raise MirrorError("create", cause=e) from e

        confirmed = created.get("id") if isinstance(created, dict) else None
        if not confirmed:
            raise MirrorError("create", cause="response did not include a document id")
        logger.info(f"Mirrored planilla {document.get('id')} as {confirmed}")
        return confirmed

    async def update(self, remote_id: str, document: dict[str, Any]) -> None:
        container = await self._get_container("update", remote_id)
        try:
            await container.replace_item(item=remote_id, body=self._to_remote(remote_id, document))
        except CosmosHttpResponseError as e:
            raise MirrorError("update", remote_id, e) from e

    async def delete(self, remote_id: str) -> None:
        container = await self._get_container("delete", remote_id)
        try:
            await container.delete_item(item=remote_id, partition_key=remote_id)
        except CosmosResourceNotFoundError:
            logger.info(f"Mirror document already absent: {remote_id}")
        except CosmosHttpResponseError as e:
            raise MirrorError("delete", remote_id, e) from e

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

        if self._credential:
            await self._credential.close()
            self._credential = None

        self._database = None
        self._container = None

    async def __aenter__(self) -> CosmosMirrorClient:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
