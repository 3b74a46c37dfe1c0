"""
File store for planilla attachments and snapshots.

Directory structure:
{uploads_dir}/
  {attachment files}            # placed by the upload collaborator
  planillas/
    planilla_{stamp}_{id}.json  # one snapshot per live record

Snapshots are immutable: an update writes a new file and removes the old
one. Nothing here knows about records beyond the names it is handed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiofiles.os

from ..config import SNAPSHOT_SUBDIR, StorageConfig
from ..exceptions import StorageIOError, ValidationError
from ..models import SnapshotRef
from .file_ops import create_json, ensure_directory, file_exists, list_files, read_json, remove_file

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "planilla_"
SNAPSHOT_SUFFIX = ".json"


@dataclass
class OrphanReport:
    """Files on disk that no live record references."""

    snapshots: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    removed: int = 0

    @property
    def total(self) -> int:
        return len(self.snapshots) + len(self.attachments)


class FileStore:
    """Attachment and snapshot files under a single uploads directory."""

    def __init__(self, uploads_dir: Path | str, domain: str) -> None:
        self.uploads_dir = Path(uploads_dir)
        self.snapshots_dir = self.uploads_dir / SNAPSHOT_SUBDIR
        self.domain = domain.rstrip("/")

        self._stamp_lock = threading.Lock()
        self._last_stamp = 0

    @classmethod
    def from_config(cls, config: StorageConfig) -> FileStore:
        return cls(config.uploads_dir, config.domain)

    async def ensure_directories(self) -> None:
        await ensure_directory(self.uploads_dir)
        await ensure_directory(self.snapshots_dir)

    # Snapshots

    def _next_stamp(self) -> int:
        """Millisecond stamp, strictly increasing within this process."""
        with self._stamp_lock:
            stamp = max(time.time_ns() // 1_000_000, self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    @staticmethod
    def _snapshot_name(ref: SnapshotRef | str) -> str:
        name = ref.filename if isinstance(ref, SnapshotRef) else ref
        return FileStore.validate_filename(name, field="snapshot")

    async def write_snapshot(self, record_id: str, payload: dict[str, Any]) -> SnapshotRef:
        """Serialize ``payload`` to a new, uniquely named snapshot file.

        Raises:
            StorageIOError: If the file cannot be created or written
        """
        filename = f"{SNAPSHOT_PREFIX}{self._next_stamp()}_{record_id}{SNAPSHOT_SUFFIX}"
        ref = SnapshotRef.for_filename(filename)
        document = dict(payload)
        document.setdefault("filename", ref.filename)
        document.setdefault("filePath", ref.public_path)
        await create_json(self.snapshots_dir / filename, document)
        logger.debug(f"Snapshot written: {filename}")
        return ref

    async def read_snapshot(self, ref: SnapshotRef | str) -> dict[str, Any] | None:
        return await read_json(self.snapshots_dir / self._snapshot_name(ref))

    async def snapshot_exists(self, ref: SnapshotRef | str) -> bool:
        return await file_exists(self.snapshots_dir / self._snapshot_name(ref))

    async def delete_snapshot(self, ref: SnapshotRef | str) -> bool:
        """Remove a snapshot file. A missing file is not an error.

        Returns:
            True if a file was removed
        """
        name = self._snapshot_name(ref)
        removed = await remove_file(self.snapshots_dir / name)
        if not removed:
            logger.debug(f"Snapshot already absent: {name}")
        return removed

    # Attachments

    @staticmethod
    def validate_filename(filename: str, field: str = "filename") -> str:
        """Reject names that could escape the uploads directory."""
        if not isinstance(filename, str) or not filename:
            raise ValidationError(field, "must be a non-empty string")
        if ".." in filename or "/" in filename or "\\" in filename:
            raise ValidationError(field, "invalid file name", filename)
        return filename

    def attachment_path(self, filename: str) -> Path:
        return self.uploads_dir / self.validate_filename(filename)

    async def attachment_exists(self, filename: str) -> bool:
        return await file_exists(self.attachment_path(filename))

    async def delete_attachment(self, filename: str) -> bool:
        """Remove an attachment file by name.

        A missing file is logged and reported as False so callers can
        continue with the remaining attachments.

        Raises:
            ValidationError: If the name is unsafe
            StorageIOError: If the file exists but cannot be removed
        """
        path = self.attachment_path(filename)
        removed = await remove_file(path)
        if removed:
            logger.info(f"Attachment removed: {filename}")
        else:
            logger.warning(f"Attachment not found on disk: {path}")
        return removed

    def resolve_public_url(self, filename: str) -> str:
        return f"{self.domain}/uploads/{filename}"

    # Maintenance

    async def find_orphans(
        self,
        live_snapshots: set[str],
        live_attachments: set[str],
        min_age: float = 0.0,
    ) -> OrphanReport:
        """List snapshot and attachment files outside the given live sets.

        Files modified less than ``min_age`` seconds ago are skipped; they
        may belong to an operation that has not reached the index yet.
        """
        cutoff = time.time() - min_age
        snapshots = [
            name
            for name in await list_files(self.snapshots_dir)
            if name.startswith(SNAPSHOT_PREFIX)
            and name.endswith(SNAPSHOT_SUFFIX)
            and name not in live_snapshots
            and await self._older_than(self.snapshots_dir / name, cutoff)
        ]
        attachments = [
            name
            for name in await list_files(self.uploads_dir)
            if name not in live_attachments
            and await self._older_than(self.uploads_dir / name, cutoff)
        ]
        return OrphanReport(snapshots=snapshots, attachments=attachments)

    @staticmethod
    async def _older_than(path: Path, cutoff: float) -> bool:
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError("stat", str(path), e) from e
        return stat.st_mtime <= cutoff

    async def remove_orphans(self, report: OrphanReport) -> int:
        """Delete the files listed in ``report``; returns the number removed."""
        removed = 0
        for name in report.snapshots:
            if await remove_file(self.snapshots_dir / name):
                removed += 1
        for name in report.attachments:
            if await remove_file(self.uploads_dir / name):
                removed += 1
        report.removed = removed
        logger.info(f"Removed {removed} orphaned file(s)")
        return removed
