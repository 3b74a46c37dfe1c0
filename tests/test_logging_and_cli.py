"""Tests for structured logging and the maintenance CLI."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from planilla_storage import RecordStore, StorageConfig
from planilla_storage.cli import build_parser, main
from planilla_storage.logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
)


class TestStructuredLogging:
    def test_formatter_includes_context(self) -> None:
        record = logging.LogRecord(
            name="planilla_storage.records",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Mirror create failed for %s",
            args=("rec-1",),
            exc_info=None,
        )
        record.record_id = "rec-1"

        line = json.loads(StructuredJsonFormatter().format(record))

        assert line["level"] == "WARNING"
        assert line["logger"] == "planilla_storage.records"
        assert line["message"] == "Mirror create failed for rec-1"
        assert line["record_id"] == "rec-1"
        assert line["timestamp"].endswith("Z")
        assert list(line)[:5] == ["timestamp", "level", "logger", "message", "record_id"]

    def test_adapter_merges_extra(self, caplog: pytest.LogCaptureFixture) -> None:
        log = StorageLoggerAdapter.for_record(logging.getLogger("planilla_storage.test"), "rec-1")

        with caplog.at_level(logging.INFO, logger="planilla_storage.test"):
            log.info("hello", extra={"remote_id": "remote-1"})

        assert caplog.records[0].record_id == "rec-1"
        assert caplog.records[0].remote_id == "remote-1"


@pytest.fixture
def cli_env(config: StorageConfig, monkeypatch: pytest.MonkeyPatch) -> StorageConfig:
    monkeypatch.setenv("UPLOADS_DIR", str(config.uploads_dir))
    monkeypatch.setenv("DB_FILE", str(config.db_file))
    monkeypatch.setenv("DOMAIN", config.domain)
    monkeypatch.delenv("PLANILLA_COSMOS_ENDPOINT", raising=False)
    # Leave the package logger handlers untouched between tests
    monkeypatch.setattr("planilla_storage.cli.configure_structured_logging", lambda *a, **k: None)
    return config


async def seed(config: StorageConfig) -> str:
    async with RecordStore.from_config(config) as store:
        record = await store.create_record({"title": "A"})
    return record.id


class TestCli:
    def test_parser_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_list(self, cli_env: StorageConfig, capsys: pytest.CaptureFixture[str]) -> None:
        record_id = asyncio.run(seed(cli_env))

        assert main(["list"]) == 0

        out = capsys.readouterr().out
        assert record_id in out
        assert "pending" in out
        assert "1 planilla(s)" in out

    def test_show(self, cli_env: StorageConfig, capsys: pytest.CaptureFixture[str]) -> None:
        record_id = asyncio.run(seed(cli_env))

        assert main(["show", record_id]) == 0

        shown = json.loads(capsys.readouterr().out)
        assert shown["id"] == record_id
        assert shown["meta"] == {"title": "A"}

    def test_show_unknown(self, cli_env: StorageConfig, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["show", "missing"]) == 1
        assert "missing" in capsys.readouterr().err

    def test_orphans(
        self, cli_env: StorageConfig, capsys: pytest.CaptureFixture[str], upload
    ) -> None:
        asyncio.run(seed(cli_env))
        upload("stray.png")

        assert main(["orphans", "--min-age", "0"]) == 0
        assert "stray.png" in capsys.readouterr().out
        assert (cli_env.uploads_dir / "stray.png").exists()

        assert main(["orphans", "--delete", "--min-age", "0"]) == 0
        assert "Removed: 1" in capsys.readouterr().out
        assert not (cli_env.uploads_dir / "stray.png").exists()
