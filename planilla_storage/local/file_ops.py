"""
JSON file operations for local storage.

Provides the primitives the file store and local index build on:
- Atomic replacement of a document using temp file + fsync + rename
- Exclusive creation of new documents (never overwrites)
- Idempotent removal
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating parents as needed."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_json(path: Path) -> Any | None:
    """Read a JSON document.

    Returns:
        Parsed JSON data, or None if the file doesn't exist or is empty
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
            return json.loads(content) if content.strip() else None
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e
    except OSError as e:
        raise StorageIOError("read_json", str(path), e) from e


async def write_json_atomic(path: Path, data: Any) -> None:
    """Replace a JSON document atomically.

    Readers see either the previous document or the new one, never a
    partially written file.
    """
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=".json",
    )
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, default=_json_serializer))
            await f.flush()
            os.fsync(f.fileno())

        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_json", str(path), e) from e


async def create_json(path: Path, data: Any) -> None:
    """Write a JSON document to a file that must not already exist.

    Raises:
        StorageIOError: If the file exists or the write fails. A partially
            written file is removed before raising.
    """
    await ensure_directory(path.parent)

    try:
        payload = json.dumps(data, indent=2, default=_json_serializer)
    except (TypeError, ValueError) as e:
        raise StorageIOError("serialize_json", str(path), e) from e

    try:
        f = await aiofiles.open(path, "x", encoding="utf-8")
    except OSError as e:
        raise StorageIOError("create_json", str(path), e) from e

    try:
        try:
            await f.write(payload)
            await f.flush()
            os.fsync(f.fileno())
        finally:
            await f.close()
    except OSError as e:
        try:
            await aiofiles.os.remove(path)
        except OSError:
            pass
        raise StorageIOError("create_json", str(path), e) from e


async def file_exists(path: Path) -> bool:
    try:
        return await aiofiles.os.path.isfile(path)
    except OSError:
        return False


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError("remove", str(path), e) from e


async def list_files(path: Path) -> list[str]:
    """List regular file names in a directory (hidden temp files excluded)."""
    try:
        if not await aiofiles.os.path.exists(path):
            return []

        names = []
        for entry in await aiofiles.os.listdir(path):
            if entry.startswith("."):
                continue
            if await aiofiles.os.path.isfile(path / entry):
                names.append(entry)
        return sorted(names)
    except OSError as e:
        raise StorageIOError("list_files", str(path), e) from e


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for types not handled by default."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
