"""
Data model for planilla records.

Records serialize to the same camelCase layout the service has always
written to its index document, so existing ``db.json`` files load as-is:

    {
        "id": "...",
        "filename": "planilla_<stamp>_<id>.json",
        "filePath": "/uploads/planillas/planilla_<stamp>_<id>.json",
        "createdAt": "2024-05-01T12:00:00.000Z",
        "updatedAt": "2024-05-01T12:00:00.000Z",
        "syncStatus": "pending",
        "remoteId": null,
        "images": [{"filename": "...", "url": "...", "originalname": "..."}],
        "meta": {...}
    }

Image entries stored as bare URLs are normalized on load; entries without a
file name are dropped with a warning.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, TypeAlias

logger = logging.getLogger(__name__)

# Opaque caller-supplied JSON tree (map / array / scalar)
Document: TypeAlias = dict[str, Any] | list[Any] | str | int | float | bool | None

SNAPSHOT_URL_PREFIX = "/uploads/planillas"


class SyncStatus(Enum):
    """Mirror state of a record."""

    PENDING = "pending"  # No confirmed mirror write for the latest mutation
    SYNCED = "synced"  # Last mirror write succeeded
    ERROR = "error"  # Last mirror write failed after a prior success


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def next_timestamp(previous: datetime | None = None) -> datetime:
    """Return now, or 1ms past ``previous`` when the clock has not moved on."""
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(milliseconds=1)
    return now


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | datetime | None) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not value:
        return utc_now()
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ImageRef:
    """Reference to an attachment file stored in the uploads directory."""

    filename: str
    url: str
    original_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "url": self.url,
            "originalname": self.original_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageRef:
        original = data.get("originalname", data.get("originalName", data.get("original_name")))
        return cls(
            filename=data["filename"],
            url=data.get("url") or "",
            original_name=original,
        )

    @classmethod
    def coerce(cls, value: Any) -> ImageRef | None:
        """Build from a stored image entry: a mapping or a bare URL / file name.

        Returns None when the entry carries no file name.
        """
        if isinstance(value, ImageRef):
            return value
        if isinstance(value, str):
            filename = value.rstrip("/").rsplit("/", 1)[-1]
            if not filename:
                return None
            return cls(filename=filename, url=value if "/" in value else "")
        if isinstance(value, Mapping) and isinstance(value.get("filename"), str):
            if value["filename"]:
                return cls.from_dict(dict(value))
        return None


@dataclass(frozen=True)
class SnapshotRef:
    """Handle to a snapshot file written by the file store."""

    filename: str
    public_path: str

    @classmethod
    def for_filename(cls, filename: str) -> SnapshotRef:
        return cls(filename=filename, public_path=f"{SNAPSHOT_URL_PREFIX}/{filename}")


@dataclass
class PlanillaRecord:
    """A planilla: caller metadata, attached images and mirror state.

    Attributes:
        id: Immutable record identifier
        snapshot: Current on-disk snapshot of this record
        created_at: Creation time (UTC)
        updated_at: Last mutation time (UTC)
        sync_status: Mirror state
        remote_id: Mirror document id, set only from a confirmed mirror response
        images: Ordered attachment references
        meta: Opaque caller payload
    """

    id: str
    snapshot: SnapshotRef
    created_at: datetime
    updated_at: datetime
    sync_status: SyncStatus = SyncStatus.PENDING
    remote_id: str | None = None
    images: list[ImageRef] = field(default_factory=list)
    meta: Document = None

    @property
    def snapshot_filename(self) -> str:
        return self.snapshot.filename

    @property
    def snapshot_path(self) -> str:
        return self.snapshot.public_path

    def to_document(self) -> dict[str, Any]:
        """Shape shared by the snapshot file and the mirror document."""
        return {
            "id": self.id,
            "filename": self.snapshot.filename,
            "filePath": self.snapshot.public_path,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "images": [image.to_dict() for image in self.images],
            "meta": self.meta,
        }

    def to_dict(self) -> dict[str, Any]:
        """Full index entry, including local sync state."""
        data = self.to_document()
        data["syncStatus"] = self.sync_status.value
        data["remoteId"] = self.remote_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanillaRecord:
        filename = data["filename"]
        public_path = data.get("filePath") or f"{SNAPSHOT_URL_PREFIX}/{filename}"
        created_at = parse_timestamp(data.get("createdAt"))
        return cls(
            id=data["id"],
            snapshot=SnapshotRef(filename=filename, public_path=public_path),
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updatedAt") or created_at),
            sync_status=SyncStatus(data.get("syncStatus", SyncStatus.PENDING.value)),
            remote_id=data.get("remoteId"),
            images=_load_images(data["id"], data.get("images") or []),
            meta=data.get("meta"),
        )


def _load_images(record_id: str, entries: list[Any]) -> list[ImageRef]:
    images = []
    for entry in entries:
        image = ImageRef.coerce(entry)
        if image is None:
            logger.warning(f"Planilla {record_id}: skipping image without filename: {entry!r}")
            continue
        images.append(image)
    return images
