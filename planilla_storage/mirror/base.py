"""
Remote mirror client interface.

A mirror is an opaque document service addressed by the id it assigns on
create. Implementations raise MirrorError on any failure; the record store
turns those into MirrorResult values and never lets them escape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class MirrorClient(ABC):
    """Create/update/delete-by-id access to the remote document store."""

    @abstractmethod
    async def create(self, document: dict[str, Any]) -> str:
        """Store a new document.

        Returns:
            The remote id assigned to the document

        Raises:
            MirrorError: If the remote store did not confirm the write
        """
        ...

    @abstractmethod
    async def update(self, remote_id: str, document: dict[str, Any]) -> None:
        """Replace the content of an existing remote document.

        Raises:
            MirrorError: If the document is missing or the write failed
        """
        ...

    @abstractmethod
    async def delete(self, remote_id: str) -> None:
        """Delete a remote document.

        Raises:
            MirrorError: If the delete failed
        """
        ...

    async def close(self) -> None:
        """Release connections held by the client."""


@dataclass(frozen=True)
class MirrorResult:
    """Outcome of a single mirror call."""

    ok: bool
    remote_id: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, remote_id: str | None = None) -> MirrorResult:
        return cls(ok=True, remote_id=remote_id)

    @classmethod
    def failure(cls, error: str) -> MirrorResult:
        return cls(ok=False, error=error)
