"""Tests for StorageConfig and CosmosMirrorConfig."""

from pathlib import Path

import pytest

from planilla_storage import CosmosAuthMethod, StorageConfig
from planilla_storage.exceptions import AuthenticationError
from planilla_storage.mirror import CosmosMirrorClient, CosmosMirrorConfig, create_mirror_client

ENV_VARS = [
    "UPLOADS_DIR",
    "DB_FILE",
    "PORT",
    "DOMAIN",
    "PLANILLA_MIRROR_TIMEOUT",
    "PLANILLA_COSMOS_ENDPOINT",
    "PLANILLA_COSMOS_DATABASE",
    "PLANILLA_COSMOS_CONTAINER",
    "PLANILLA_COSMOS_AUTH_METHOD",
    "PLANILLA_COSMOS_KEY",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestStorageConfig:
    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        config = StorageConfig.from_environment()

        assert config.uploads_dir == Path("uploads")
        assert config.db_file == Path("db.json")
        assert config.port == 3001
        assert config.domain == "http://localhost:3001"
        assert config.mirror_timeout == 5.0
        assert config.snapshots_dir == Path("uploads") / "planillas"
        assert not config.mirror_enabled

    def test_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("UPLOADS_DIR", "/srv/uploads")
        clean_env.setenv("DB_FILE", "/srv/db.json")
        clean_env.setenv("PORT", "8080")
        clean_env.setenv("DOMAIN", "https://planillas.example.com/")
        clean_env.setenv("PLANILLA_MIRROR_TIMEOUT", "2.5")
        clean_env.setenv("PLANILLA_COSMOS_ENDPOINT", "https://acct.documents.azure.com:443/")
        clean_env.setenv("PLANILLA_COSMOS_AUTH_METHOD", "KEY")
        clean_env.setenv("PLANILLA_COSMOS_KEY", "secret")

        config = StorageConfig.from_environment()

        assert config.uploads_dir == Path("/srv/uploads")
        assert config.db_file == Path("/srv/db.json")
        assert config.port == 8080
        assert config.domain == "https://planillas.example.com"
        assert config.mirror_timeout == 2.5
        assert config.mirror_enabled
        assert config.cosmos_auth_method == CosmosAuthMethod.KEY
        assert config.cosmos_key == "secret"
        assert config.cosmos_database == "planillas-db"
        assert config.cosmos_container == "planillas"

    def test_domain_follows_port(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PORT", "4000")

        assert StorageConfig.from_environment().domain == "http://localhost:4000"

    def test_unknown_auth_method_falls_back(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PLANILLA_COSMOS_AUTH_METHOD", "certificate")

        config = StorageConfig.from_environment()

        assert config.cosmos_auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL


class TestMirrorConfig:
    def test_key_auth_requires_key(self) -> None:
        with pytest.raises(AuthenticationError):
            CosmosMirrorConfig(endpoint="https://acct", auth_method=CosmosAuthMethod.KEY)

    def test_from_storage_config(self) -> None:
        config = StorageConfig(
            cosmos_endpoint="https://acct",
            cosmos_database="db",
            cosmos_container="c",
        )

        mirror_config = CosmosMirrorConfig.from_storage_config(config)

        assert mirror_config.endpoint == "https://acct"
        assert mirror_config.database_name == "db"
        assert mirror_config.container_name == "c"
        assert mirror_config.auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL

    def test_from_env_requires_endpoint(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(AuthenticationError):
            CosmosMirrorConfig.from_env()

    def test_create_mirror_client(self) -> None:
        assert create_mirror_client(StorageConfig()) is None

        client = create_mirror_client(StorageConfig(cosmos_endpoint="https://acct"))
        assert isinstance(client, CosmosMirrorClient)
