"""
Durable JSON documents for the file-backed stores.

Sessions and the stream cursor each live in one small JSON object per
file. A save lands in a hidden sibling file that is fsynced and then
renamed over the target, so a concurrent load sees either the previous
document or the new one.
"""

import json
import os
import secrets
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from .exceptions import StoreIOError


async def load_document(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from ``path``.

    Returns:
        The object, or None when the file is missing or empty

    Raises:
        StoreIOError: The file is unreadable or does not hold a JSON object
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StoreIOError("read_json", str(path), e) from e

    if not content.strip():
        return None

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise StoreIOError("parse_json", str(path), e) from e
    if not isinstance(data, dict):
        raise StoreIOError("parse_json", str(path), ValueError("expected a JSON object"))
    return data


async def save_document(path: Path, data: dict[str, Any]) -> None:
    """Replace the document at ``path``, creating parent directories."""
    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
    except OSError as e:
        raise StoreIOError("create_directory", str(path.parent), e) from e

    staging = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    try:
        async with aiofiles.open(staging, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, sort_keys=True))
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(staging, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            await aiofiles.os.remove(staging)
        except OSError:
            pass
        raise StoreIOError("write_json", str(path), e) from e


async def delete_document(path: Path) -> bool:
    """Delete the document at ``path``.

    Returns:
        False if there was nothing to delete
    """
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StoreIOError("remove", str(path), e) from e
    return True
