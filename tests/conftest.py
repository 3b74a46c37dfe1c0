"""
Shared test configuration and fixtures.

Provides an in-memory mirror client so record store tests run without a
Cosmos DB account, plus temporary storage directories.
"""

import asyncio
import logging
import tempfile
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from planilla_storage import FileStore, LocalIndex, RecordStore, StorageConfig
from planilla_storage.exceptions import MirrorError
from planilla_storage.mirror import MirrorClient

logger = logging.getLogger(__name__)


class InMemoryMirror(MirrorClient):
    """
    Mirror client that keeps documents in a dict.

    Failures and latency can be switched on per operation to drive the
    record store's sync status transitions.
    """

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.delay = 0.0
        self.closed = False

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def create(self, document: dict[str, Any]) -> str:
        self.calls.append(("create", None))
        await self._pause()
        if self.fail_create:
            raise MirrorError("create", cause="simulated failure")
        remote_id = f"remote-{uuid.uuid4().hex[:8]}"
        self.documents[remote_id] = dict(document)
        return remote_id

    async def update(self, remote_id: str, document: dict[str, Any]) -> None:
        self.calls.append(("update", remote_id))
        await self._pause()
        if self.fail_update:
            raise MirrorError("update", remote_id, "simulated failure")
        if remote_id not in self.documents:
            raise MirrorError("update", remote_id, "document not found")
        self.documents[remote_id] = dict(document)

    async def delete(self, remote_id: str) -> None:
        self.calls.append(("delete", remote_id))
        await self._pause()
        if self.fail_delete:
            raise MirrorError("delete", remote_id, "simulated failure")
        self.documents.pop(remote_id, None)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for storage tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir: Path) -> StorageConfig:
    return StorageConfig(
        uploads_dir=temp_dir / "uploads",
        db_file=temp_dir / "db.json",
        domain="https://planillas.example.com/",
        mirror_timeout=0.5,
    )


@pytest.fixture
def mirror() -> InMemoryMirror:
    return InMemoryMirror()


@pytest.fixture
async def file_store(config: StorageConfig) -> FileStore:
    store = FileStore.from_config(config)
    await store.ensure_directories()
    return store


@pytest.fixture
async def store(config: StorageConfig, mirror: InMemoryMirror):  # type: ignore[misc]
    """Started record store wired to the in-memory mirror."""
    record_store = RecordStore.from_config(config, mirror=mirror)
    await record_store.start()
    yield record_store
    await record_store.close()


@pytest.fixture
async def local_store(config: StorageConfig):  # type: ignore[misc]
    """Started record store with no mirror configured."""
    record_store = RecordStore(
        LocalIndex(config.db_file),
        FileStore.from_config(config),
        mirror=None,
    )
    await record_store.start()
    yield record_store
    await record_store.close()


@pytest.fixture
def upload(config: StorageConfig):
    """Place a file in the uploads directory, as the upload handler would."""

    def _upload(filename: str, content: bytes = b"\x89PNG fake image") -> dict[str, str]:
        config.uploads_dir.mkdir(parents=True, exist_ok=True)
        (config.uploads_dir / filename).write_bytes(content)
        return {"filename": filename, "originalname": f"original-{filename}"}

    return _upload
