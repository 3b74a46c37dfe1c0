"""
Local storage for planillas.

Key classes:
- FileStore: Attachment and snapshot files
- LocalIndex: Durable in-memory index of records
"""

from .file_ops import create_json, read_json, remove_file, write_json_atomic
from .file_store import FileStore, OrphanReport
from .index import LocalIndex

__all__ = [
    "FileStore",
    "OrphanReport",
    "LocalIndex",
    # Low-level file operations
    "read_json",
    "write_json_atomic",
    "create_json",
    "remove_file",
]
