"""
Remote mirror clients.

The record store talks to the remote document store only through
MirrorClient. CosmosMirrorClient is the production implementation.
"""

from __future__ import annotations

from ..config import StorageConfig
from .base import MirrorClient, MirrorResult
from .cosmos import CosmosMirrorClient, CosmosMirrorConfig


def create_mirror_client(config: StorageConfig) -> MirrorClient | None:
    """Build the mirror client for ``config``, or None when mirroring is off."""
    if not config.mirror_enabled:
        return None
    return CosmosMirrorClient(CosmosMirrorConfig.from_storage_config(config))


__all__ = [
    "MirrorClient",
    "MirrorResult",
    "CosmosMirrorClient",
    "CosmosMirrorConfig",
    "create_mirror_client",
]
