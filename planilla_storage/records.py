"""
Planilla record store.

Orchestrates the local index, the file store and the remote mirror.

Write protocol (create / update):
1. Validate payload and attachments (no side effects on failure)
2. Write a new snapshot file
3. Commit the index entry and persist it
4. Remove the superseded snapshot (update only)
5. Attempt the mirror call, bounded by ``mirror_timeout``
6. Record the outcome in ``sync_status`` and persist again (best effort)

Local durability decides success. Mirror failures only move the record's
sync status:

    pending --mirror ok--> synced --mirror fails--> error --mirror ok--> synced
       ^                                                |
       +------ update of a never-mirrored record -------+ (stays pending)

Deletion removes the index entry first, then the files, then the mirror
document. File and mirror cleanup failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime
from typing import Any

from .config import DEFAULT_MIRROR_TIMEOUT, StorageConfig
from .exceptions import (
    MirrorError,
    PartialCleanupError,
    PlanillaStorageError,
    StorageIOError,
    ValidationError,
)
from .local import FileStore, LocalIndex, OrphanReport
from .logging_utils import StorageLoggerAdapter
from .mirror import MirrorClient, MirrorResult, create_mirror_client
from .models import (
    Document,
    ImageRef,
    PlanillaRecord,
    SyncStatus,
    format_timestamp,
    next_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

# An attachment as handed over by the upload collaborator
Attachment = ImageRef | Mapping[str, Any]


def parse_payload(payload: Any, field: str = "planilla") -> Document:
    """Interpret a caller payload as structured data.

    Mappings and lists are taken as-is; ``str``/``bytes`` are parsed as JSON
    (the multipart text field form).

    Raises:
        ValidationError: If the payload is missing, not valid JSON, or a bare scalar
    """
    if payload is None:
        raise ValidationError(field, "is required")

    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(field, "is not valid UTF-8") from e

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(field, "is not valid JSON") from e

    if isinstance(payload, Mapping):
        return dict(payload)
    if isinstance(payload, (list, tuple)):
        return list(payload)
    raise ValidationError(field, "must be a JSON object or array")


def _declared_images(meta: Document) -> list[Any]:
    """Images the caller wants to keep, taken from ``meta["images"]``."""
    if not isinstance(meta, dict):
        return []
    declared = meta.get("images")
    if declared is None:
        return []
    if not isinstance(declared, list):
        raise ValidationError("images", "must be a list")
    return declared


def _restore(record: PlanillaRecord, previous: PlanillaRecord) -> None:
    for f in fields(PlanillaRecord):
        setattr(record, f.name, getattr(previous, f.name))


class RecordStore:
    """Create, read, update and delete planillas across index, files and mirror.

    Operations on the same record id are serialized; different ids proceed
    independently. Returned records are copies, so callers cannot mutate
    indexed state without going through the store.
    """

    def __init__(
        self,
        index: LocalIndex,
        files: FileStore,
        mirror: MirrorClient | None = None,
        mirror_timeout: float = DEFAULT_MIRROR_TIMEOUT,
    ) -> None:
        """Initialize the record store.

        Args:
            index: Local index (loaded by ``start``)
            files: File store for snapshots and attachments
            mirror: Remote mirror client; None runs local-only and leaves
                records pending
            mirror_timeout: Seconds allowed per mirror call
        """
        self._index = index
        self._files = files
        self._mirror = mirror
        self.mirror_timeout = mirror_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        config: StorageConfig,
        mirror: MirrorClient | None = None,
    ) -> RecordStore:
        """Build a store from configuration.

        The Cosmos mirror is created from ``config`` unless ``mirror`` is given.
        """
        return cls(
            index=LocalIndex(config.db_file),
            files=FileStore.from_config(config),
            mirror=mirror if mirror is not None else create_mirror_client(config),
            mirror_timeout=config.mirror_timeout,
        )

    async def start(self) -> None:
        """Create storage directories and load the index."""
        await self._files.ensure_directories()
        if not self._index.loaded:
            await self._index.load()

    async def close(self) -> None:
        if self._mirror is not None:
            await self._mirror.close()

    async def __aenter__(self) -> RecordStore:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def files(self) -> FileStore:
        return self._files

    @asynccontextmanager
    async def _record_lock(self, record_id: str) -> AsyncIterator[None]:
        """Serialize operations on one record id.

        The lock entry lives only while some caller holds or awaits it.
        """
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        self._lock_users[record_id] = self._lock_users.get(record_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[record_id] -= 1
            if not self._lock_users[record_id]:
                del self._lock_users[record_id]
                del self._locks[record_id]

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_record(
        self,
        payload: Any,
        attachments: Iterable[Attachment] = (),
    ) -> PlanillaRecord:
        """Create a planilla from ``payload`` and already-uploaded attachments.

        Raises:
            ValidationError: If the payload or an attachment is invalid
            StorageIOError: If the snapshot or index cannot be written
        """
        meta = parse_payload(payload)
        images = await self._build_images([], attachments)

        record_id = str(uuid.uuid4())
        log = StorageLoggerAdapter.for_record(logger, record_id)

        async with self._record_lock(record_id):
            now = utc_now()
            ref = await self._files.write_snapshot(
                record_id, self._snapshot_payload(record_id, now, now, images, meta)
            )
            record = PlanillaRecord(
                id=record_id,
                snapshot=ref,
                created_at=now,
                updated_at=now,
                sync_status=SyncStatus.PENDING,
                images=images,
                meta=meta,
            )

            try:
                self._index.insert(record)
            except PlanillaStorageError:
                await self._discard_snapshot(ref.filename, log)
                raise

            try:
                await self._index.persist()
            except StorageIOError:
                self._index.remove(record_id)
                await self._discard_snapshot(ref.filename, log)
                raise

            log.info(f"Planilla created with {len(images)} image(s)")

            result = await self._mirror_call("create", lambda m: m.create(record.to_document()))
            if result.ok:
                record.remote_id = result.remote_id
                record.sync_status = SyncStatus.SYNCED
                log.info(f"Planilla mirrored as {result.remote_id}")
            else:
                log.warning(f"Mirror create failed, planilla left pending: {result.error}")
            await self._persist_sync_state(log)

            return copy.deepcopy(record)

    async def list_records(self) -> list[PlanillaRecord]:
        return [copy.deepcopy(record) for record in self._index.list_all()]

    async def get_record(self, record_id: str) -> PlanillaRecord:
        """Raises RecordNotFoundError for unknown ids."""
        return copy.deepcopy(self._index.get(record_id))

    async def acknowledge_sync(
        self,
        record_id: str,
        remote_id: str | None = None,
    ) -> PlanillaRecord:
        """Mark a record as synced after an external mirror write.

        ``remote_id`` replaces the stored one when given; otherwise the stored
        one is kept.

        Raises:
            RecordNotFoundError: For unknown ids
            ValidationError: If neither the caller nor the index has a remote id
        """
        async with self._record_lock(record_id):
            record = self._index.get(record_id)
            if not remote_id and record.remote_id is None:
                raise ValidationError(
                    "remoteId", "required for a planilla that has never been mirrored"
                )
            previous = copy.deepcopy(record)

            def acknowledge(r: PlanillaRecord) -> None:
                r.remote_id = remote_id or r.remote_id
                r.sync_status = SyncStatus.SYNCED

            self._index.update(record_id, acknowledge)
            await self._commit(record_id, previous)

            logger.info(
                f"Sync acknowledged for {record_id} (remote {record.remote_id})",
                extra={"record_id": record_id},
            )
            return copy.deepcopy(record)

    async def update_record(
        self,
        record_id: str,
        payload: Any,
        new_attachments: Iterable[Attachment] = (),
    ) -> PlanillaRecord:
        """Replace a planilla's metadata and image set.

        The final image list is the images the caller declares in
        ``payload["images"]`` followed by ``new_attachments``. Images left out
        are dropped from the record but their files stay on disk until
        ``cleanup_orphans`` runs.

        Raises:
            RecordNotFoundError: For unknown ids
            ValidationError: If the payload or an image reference is invalid
            StorageIOError: If the snapshot or index cannot be written
        """
        meta = parse_payload(payload)
        log = StorageLoggerAdapter.for_record(logger, record_id)

        async with self._record_lock(record_id):
            record = self._index.get(record_id)
            images = await self._build_images(_declared_images(meta), new_attachments)

            previous = copy.deepcopy(record)
            updated_at = next_timestamp(record.updated_at)
            new_ref = await self._files.write_snapshot(
                record_id,
                self._snapshot_payload(record_id, record.created_at, updated_at, images, meta),
            )

            def apply(r: PlanillaRecord) -> None:
                r.snapshot = new_ref
                r.images = images
                r.meta = meta
                r.sync_status = SyncStatus.PENDING

            self._index.update(record_id, apply, timestamp=updated_at)
            try:
                await self._index.persist()
            except StorageIOError:
                _restore(record, previous)
                await self._discard_snapshot(new_ref.filename, log)
                raise

            await self._discard_snapshot(previous.snapshot.filename, log)
            log.info(f"Planilla updated with {len(images)} image(s)")

            if record.remote_id:
                remote_id = record.remote_id
                result = await self._mirror_call(
                    "update", lambda m: m.update(remote_id, record.to_document())
                )
                record.sync_status = SyncStatus.SYNCED if result.ok else SyncStatus.ERROR
            else:
                result = await self._mirror_call("create", lambda m: m.create(record.to_document()))
                if result.ok:
                    record.remote_id = result.remote_id
                    record.sync_status = SyncStatus.SYNCED

            if not result.ok:
                log.warning(
                    f"Mirror write failed, planilla is {record.sync_status.value}: {result.error}"
                )
            await self._persist_sync_state(log)

            return copy.deepcopy(record)

    async def delete_record(self, record_id: str) -> None:
        """Delete a planilla, its snapshot, its attachments and its mirror.

        Only the index removal can fail the operation. File and mirror
        cleanup problems are logged.

        Raises:
            RecordNotFoundError: For unknown ids (nothing is touched)
            StorageIOError: If the index cannot be persisted
        """
        log = StorageLoggerAdapter.for_record(logger, record_id)

        async with self._record_lock(record_id):
            position = self._index.position(record_id)
            record = self._index.remove(record_id)
            try:
                await self._index.persist()
            except StorageIOError:
                self._index.insert(record, position)
                raise

            failures: list[tuple[str, str]] = []
            try:
                await self._files.delete_snapshot(record.snapshot.filename)
            except PlanillaStorageError as e:
                failures.append((record.snapshot.filename, str(e)))

            log.info(f"Removing {len(record.images)} attached image(s)")
            for image in record.images:
                try:
                    await self._files.delete_attachment(image.filename)
                except PlanillaStorageError as e:
                    failures.append((image.filename, str(e)))

            if failures:
                cleanup = PartialCleanupError(record_id, failures)
                log.warning(cleanup.message, extra={"failures": cleanup.details["failures"]})

            if record.remote_id:
                remote_id = record.remote_id
                result = await self._mirror_call("delete", lambda m: m.delete(remote_id))
                if not result.ok:
                    log.error(
                        f"Mirror document {remote_id} not deleted, needs manual cleanup: "
                        f"{result.error}"
                    )

            log.info("Planilla deleted")

    async def delete_attachment(self, filename: str) -> bool:
        """Delete a stand-alone uploaded file.

        Returns:
            True if the file was removed, False if it was not on disk

        Raises:
            ValidationError: If the name is unsafe or a planilla still references it
        """
        FileStore.validate_filename(filename)
        for record in self._index.list_all():
            if any(image.filename == filename for image in record.images):
                raise ValidationError("filename", f"still referenced by planilla {record.id}")
        return await self._files.delete_attachment(filename)

    async def cleanup_orphans(self, dry_run: bool = True, min_age: float = 60.0) -> OrphanReport:
        """Find, and unless ``dry_run`` remove, files no planilla references.

        Uploaded files whose name appears anywhere in a planilla's metadata
        (e.g. a static map URL) count as referenced.
        """
        records = self._index.list_all()
        live_snapshots = {record.snapshot.filename for record in records}
        live_attachments = {image.filename for record in records for image in record.images}

        report = await self._files.find_orphans(live_snapshots, live_attachments, min_age)
        meta_text = "\n".join(
            json.dumps(record.meta, default=str, ensure_ascii=False) for record in records
        )
        report.attachments = [name for name in report.attachments if name not in meta_text]

        logger.info(
            f"Orphan scan: {len(report.snapshots)} snapshot(s), "
            f"{len(report.attachments)} attachment(s)"
        )
        if not dry_run:
            await self._files.remove_orphans(report)
        return report

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _snapshot_payload(
        record_id: str,
        created_at: datetime,
        updated_at: datetime,
        images: list[ImageRef],
        meta: Document,
    ) -> dict[str, Any]:
        return {
            "id": record_id,
            "createdAt": format_timestamp(created_at),
            "updatedAt": format_timestamp(updated_at),
            "images": [image.to_dict() for image in images],
            "meta": meta,
        }

    async def _build_images(
        self,
        declared: list[Any],
        uploads: Iterable[Attachment],
    ) -> list[ImageRef]:
        """Resolve the final image list and check every file is on disk."""
        images: list[ImageRef] = []

        for entry in declared:
            image = ImageRef.coerce(entry)
            if image is None:
                raise ValidationError("images", "each image needs a filename")
            images.append(image)

        for upload in uploads:
            if isinstance(upload, ImageRef):
                images.append(upload)
            elif isinstance(upload, Mapping) and upload.get("filename"):
                images.append(ImageRef.from_dict({**upload, "url": None}))
            else:
                raise ValidationError("attachments", "each attachment needs a filename")

        seen: set[str] = set()
        resolved: list[ImageRef] = []
        for image in images:
            FileStore.validate_filename(image.filename, field="images")
            if image.filename in seen:
                raise ValidationError("images", "duplicate filename", image.filename)
            seen.add(image.filename)
            if not await self._files.attachment_exists(image.filename):
                raise ValidationError("images", "attachment not found", image.filename)
            if not image.url:
                image = ImageRef(
                    filename=image.filename,
                    url=self._files.resolve_public_url(image.filename),
                    original_name=image.original_name,
                )
            resolved.append(image)
        return resolved

    async def _commit(self, record_id: str, previous: PlanillaRecord) -> None:
        """Persist the index, restoring ``previous`` in memory on failure."""
        try:
            await self._index.persist()
        except StorageIOError:
            _restore(self._index.get(record_id), previous)
            raise

    async def _persist_sync_state(self, log: logging.LoggerAdapter) -> None:
        """Persist the outcome of a mirror call.

        The local change is already durable at this point, so a failure here
        only loses the sync status; it reloads as the previously persisted one.
        """
        try:
            await self._index.persist()
        except StorageIOError as e:
            log.error(f"Sync status not persisted, will be retried on next write: {e}")

    async def _discard_snapshot(self, filename: str, log: logging.LoggerAdapter) -> None:
        try:
            await self._files.delete_snapshot(filename)
        except PlanillaStorageError as e:
            log.warning(f"Could not remove snapshot {filename}, left as orphan: {e}")

    async def _mirror_call(
        self,
        operation: str,
        call: Callable[[MirrorClient], Awaitable[Any]],
    ) -> MirrorResult:
        """Run one mirror call and fold every failure into a MirrorResult."""
        if self._mirror is None:
            return MirrorResult.failure("mirror not configured")

        try:
            value = await asyncio.wait_for(call(self._mirror), timeout=self.mirror_timeout)
        except TimeoutError:
            error = MirrorError(operation, cause=f"timed out after {self.mirror_timeout}s")
            return MirrorResult.failure(str(error))
        except MirrorError as e:
            return MirrorResult.failure(str(e))
        except Exception as e:
            logger.exception(f"Unexpected mirror {operation} failure")
            return MirrorResult.failure(str(MirrorError(operation, cause=e)))

        if operation == "create":
            if not value:
                return MirrorResult.failure(
                    str(MirrorError(operation, cause="no remote id returned"))
                )
            return MirrorResult.success(str(value))
        return MirrorResult.success()
