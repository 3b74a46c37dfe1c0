"""
Configuration for planilla storage.

Configuration can be provided directly or via environment variables:

    UPLOADS_DIR: Attachment directory (default: uploads)
    DB_FILE: Local index document (default: db.json)
    PORT: Port the hosting server listens on (default: 3001)
    DOMAIN: Public base URL for attachments (default: http://localhost:<PORT>)
    PLANILLA_MIRROR_TIMEOUT: Seconds allowed per mirror call (default: 5)
    PLANILLA_COSMOS_ENDPOINT: Cosmos DB endpoint URL (mirror disabled if unset)
    PLANILLA_COSMOS_DATABASE: Database name (default: planillas-db)
    PLANILLA_COSMOS_CONTAINER: Container name (default: planillas)
    PLANILLA_COSMOS_AUTH_METHOD: 'key' or 'default_credential' (default)
    PLANILLA_COSMOS_KEY: Account key (only if auth method is 'key')
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

DEFAULT_PORT = 3001
DEFAULT_MIRROR_TIMEOUT = 5.0
SNAPSHOT_SUBDIR = "planillas"


class CosmosAuthMethod(Enum):
    """Authentication method for Cosmos DB.

    KEY: Use the account key
    DEFAULT_CREDENTIAL: Use Azure DefaultAzureCredential (recommended)
    """

    KEY = "key"
    DEFAULT_CREDENTIAL = "default_credential"


@dataclass
class StorageConfig:
    """Configuration for the planilla record store.

    Attributes:
        uploads_dir: Directory holding attachment files
        db_file: Path of the local index document
        domain: Public base URL used to build attachment URLs
        port: Port of the hosting server (only used for the default domain)
        mirror_timeout: Upper bound in seconds for a single mirror call

        cosmos_endpoint: Cosmos DB endpoint URL; mirroring is off when unset
        cosmos_auth_method: Authentication method
        cosmos_key: Cosmos DB key (only for KEY auth method)
        cosmos_database: Cosmos DB database name
        cosmos_container: Cosmos DB container name
    """

    uploads_dir: Path = field(default_factory=lambda: Path("uploads"))
    db_file: Path = field(default_factory=lambda: Path("db.json"))
    domain: str = f"http://localhost:{DEFAULT_PORT}"
    port: int = DEFAULT_PORT
    mirror_timeout: float = DEFAULT_MIRROR_TIMEOUT

    cosmos_endpoint: str | None = None
    cosmos_auth_method: CosmosAuthMethod = CosmosAuthMethod.DEFAULT_CREDENTIAL
    cosmos_key: str | None = None
    cosmos_database: str = "planillas-db"
    cosmos_container: str = "planillas"

    def __post_init__(self) -> None:
        self.uploads_dir = Path(self.uploads_dir)
        self.db_file = Path(self.db_file)
        self.domain = self.domain.rstrip("/")

    @property
    def snapshots_dir(self) -> Path:
        """Directory holding per-record JSON snapshots."""
        return self.uploads_dir / SNAPSHOT_SUBDIR

    @property
    def mirror_enabled(self) -> bool:
        return bool(self.cosmos_endpoint)

    @classmethod
    def from_environment(cls) -> StorageConfig:
        """Create configuration from environment variables."""
        port = int(os.environ.get("PORT", DEFAULT_PORT))

        auth_method_str = os.environ.get("PLANILLA_COSMOS_AUTH_METHOD", "default_credential")
        try:
            auth_method = CosmosAuthMethod(auth_method_str.lower())
        except ValueError:
            auth_method = CosmosAuthMethod.DEFAULT_CREDENTIAL

        return cls(
            uploads_dir=Path(os.environ.get("UPLOADS_DIR", "uploads")),
            db_file=Path(os.environ.get("DB_FILE", "db.json")),
            domain=os.environ.get("DOMAIN", f"http://localhost:{port}"),
            port=port,
            mirror_timeout=float(
                os.environ.get("PLANILLA_MIRROR_TIMEOUT", DEFAULT_MIRROR_TIMEOUT)
            ),
            cosmos_endpoint=os.environ.get("PLANILLA_COSMOS_ENDPOINT") or None,
            cosmos_auth_method=auth_method,
            cosmos_key=os.environ.get("PLANILLA_COSMOS_KEY"),
            cosmos_database=os.environ.get("PLANILLA_COSMOS_DATABASE", "planillas-db"),
            cosmos_container=os.environ.get("PLANILLA_COSMOS_CONTAINER", "planillas"),
        )
