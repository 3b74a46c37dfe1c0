"""
Planilla Storage

Durable storage for planillas (form records with attached images), with
best-effort mirroring to a remote document store.

Provides:
- Local index document plus one immutable JSON snapshot per record
- Attachment files with public URLs
- Per-record sync status against a Cosmos DB mirror
- Orphan file cleanup

Usage:

    >>> from planilla_storage import RecordStore, StorageConfig
    >>> config = StorageConfig.from_environment()
    >>> async with RecordStore.from_config(config) as store:
    ...     record = await store.create_record(
    ...         {"site": "Norte"},
    ...         attachments=[{"filename": "a.jpg", "originalname": "a.jpg"}],
    ...     )
    ...     print(record.sync_status)

Mirroring is off unless PLANILLA_COSMOS_ENDPOINT is set; records then stay
``pending`` until ``acknowledge_sync`` is called.
"""

from .config import CosmosAuthMethod, StorageConfig
from .exceptions import (
    AuthenticationError,
    DuplicateIdError,
    MirrorError,
    NotFoundError,
    PartialCleanupError,
    PlanillaStorageError,
    RecordNotFoundError,
    StorageConnectionError,
    StorageIOError,
    ValidationError,
)
from .local import FileStore, LocalIndex, OrphanReport
from .logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
    configure_structured_logging,
)
from .mirror import (
    CosmosMirrorClient,
    CosmosMirrorConfig,
    MirrorClient,
    MirrorResult,
    create_mirror_client,
)
from .models import ImageRef, PlanillaRecord, SnapshotRef, SyncStatus
from .records import RecordStore, parse_payload

__all__ = [
    # Record store
    "RecordStore",
    "parse_payload",
    # Configuration
    "StorageConfig",
    "CosmosAuthMethod",
    # Models
    "PlanillaRecord",
    "ImageRef",
    "SnapshotRef",
    "SyncStatus",
    # Local storage
    "FileStore",
    "LocalIndex",
    "OrphanReport",
    # Mirror
    "MirrorClient",
    "MirrorResult",
    "CosmosMirrorClient",
    "CosmosMirrorConfig",
    "create_mirror_client",
    # Logging
    "StructuredJsonFormatter",
    "configure_structured_logging",
    "StorageLoggerAdapter",
    # Exceptions
    "PlanillaStorageError",
    "ValidationError",
    "RecordNotFoundError",
    "NotFoundError",
    "DuplicateIdError",
    "StorageIOError",
    "MirrorError",
    "PartialCleanupError",
    "StorageConnectionError",
    "AuthenticationError",
]

__version__ = "0.1.0"
