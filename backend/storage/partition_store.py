# backend/storage/partition_store.py
import json
import logging
import os
import re
import uuid
from typing import Any, Dict, List

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

PARTITION_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class InvalidPartitionKey(ValueError):
    """Raised for keys that are not YYYY-MM-DD"""


class JsonPartitionStore:
    """One JSON array file per calendar day: <directory>/<YYYY-MM-DD>.json

    Reads are forgiving: a missing, unreadable or malformed file is an empty
    partition. Writes replace the whole file through a temporary file, and
    any I/O error is raised to the caller.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        if not PARTITION_KEY_PATTERN.match(key):
            raise InvalidPartitionKey(f"Invalid partition key: {key!r}")
        return os.path.join(self.directory, f"{key}.json")

    async def read_partition(self, key: str) -> List[Dict[str, Any]]:
        """Get all records stored for a day"""
        path = self._path(key)
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"⚠️ Could not read partition {key}, treating as empty: {e}")
            return []

        try:
            records = json.loads(content)
        except ValueError:
            logger.warning(f"⚠️ Partition {key} is not valid JSON, treating as empty")
            return []

        if not isinstance(records, list):
            logger.warning(f"⚠️ Partition {key} is not a JSON array, treating as empty")
            return []
        return records

    async def write_partition(self, key: str, records: List[Dict[str, Any]]) -> None:
        """Replace a day's file with the given records"""
        path = self._path(key)
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

        tmp_path = os.path.join(self.directory, f".{key}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(json.dumps(records, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, path)
        except BaseException:
            # Also runs on cancellation, so no awaiting here
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def list_partitions(self) -> List[str]:
        """Get the keys of all stored days, oldest first"""
        try:
            names = await aiofiles.os.listdir(self.directory)
        except FileNotFoundError:
            return []
        keys = [name[:-5] for name in names if name.endswith(".json")]
        return sorted(key for key in keys if PARTITION_KEY_PATTERN.match(key))

    async def is_writable(self) -> bool:
        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
        except OSError:
            return False
        return os.access(self.directory, os.W_OK)
