"""
Local index of planilla records.

Keeps every record in memory, in insertion order, and flushes the whole
collection to a single JSON document:

    {"planillas": [...], "users": [...]}

The ``users`` section belongs to the account management side of the service
and is carried through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from ..exceptions import DuplicateIdError, RecordNotFoundError, StorageIOError
from ..models import PlanillaRecord, next_timestamp
from .file_ops import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class LocalIndex:
    """In-memory record index backed by one durable document.

    Mutations only touch memory; callers must ``await persist()`` before
    acknowledging a change.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._records: dict[str, PlanillaRecord] = {}
        self._users: list[Any] = []
        self._persist_lock = asyncio.Lock()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Replace in-memory state with the durable document, if any."""
        data = await read_json(self.path)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise StorageIOError(
                "load_index", str(self.path), ValueError("index document must be an object")
            )

        records: dict[str, PlanillaRecord] = {}
        for entry in data.get("planillas") or []:
            try:
                record = PlanillaRecord.from_dict(entry)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise StorageIOError("load_index", str(self.path), e) from e
            records[record.id] = record

        self._records = records
        self._users = list(data.get("users") or [])
        self._loaded = True
        logger.info(f"Loaded {len(records)} planilla(s) from {self.path}")

    async def persist(self) -> None:
        """Flush the whole index atomically."""
        async with self._persist_lock:
            document = {
                "planillas": [record.to_dict() for record in self._records.values()],
                "users": self._users,
            }
            await write_json_atomic(self.path, document)

    def insert(self, record: PlanillaRecord, position: int | None = None) -> None:
        """Add a record at the end, or at ``position`` when restoring one."""
        if record.id in self._records:
            raise DuplicateIdError(record.id)
        if position is None or position >= len(self._records):
            self._records[record.id] = record
            return
        items = list(self._records.items())
        items.insert(position, (record.id, record))
        self._records = dict(items)

    def position(self, record_id: str) -> int:
        for i, key in enumerate(self._records):
            if key == record_id:
                return i
        raise RecordNotFoundError(record_id)

    def get(self, record_id: str) -> PlanillaRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    def list_all(self) -> list[PlanillaRecord]:
        return list(self._records.values())

    def update(
        self,
        record_id: str,
        mutator: Callable[[PlanillaRecord], None],
        timestamp: datetime | None = None,
    ) -> PlanillaRecord:
        """Apply ``mutator`` in place and refresh ``updated_at``.

        ``timestamp`` pins the new ``updated_at`` (e.g. to match a snapshot
        already written); otherwise the clock is used, always moving forward.
        """
        record = self.get(record_id)
        mutator(record)
        record.updated_at = timestamp or next_timestamp(record.updated_at)
        return record

    def remove(self, record_id: str) -> PlanillaRecord:
        try:
            return self._records.pop(record_id)
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)
