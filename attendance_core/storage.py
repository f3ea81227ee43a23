"""Key-value stores backing the offline queue.

JsonDirectoryStore keeps one JSON document per key in a directory so that
queued events survive process restarts. MemoryStore is a volatile drop-in
used when durability is not needed.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> None:
    if not _KEY_PATTERN.match(key) or key.startswith("."):
        raise ValueError(f"Invalid store key: {key!r}")


class JsonDirectoryStore:
    """Durable store writing each key to <root>/<key>.json.

    Writes go to a temporary file that atomically replaces the target, so a
    crash never leaves a half-written entry. File I/O runs in a worker
    thread to keep the event loop responsive.

    Example:
        >>> store = JsonDirectoryStore(Path("data/offline"))
        >>> await store.set("attendance_000001", {"type": "check-in"})
        >>> await store.list_keys("attendance_")
        ['attendance_000001']
    """

    SUFFIX = ".json"

    def __init__(self, root: Path | str):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        _check_key(key)
        return self._root / f"{key}{self.SUFFIX}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        return await asyncio.to_thread(self._read_file, path)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        path = self._path(key)
        body = json.dumps(value, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write_file, path, body)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    async def clear(self) -> None:
        keys = await self.list_keys()
        for key in keys:
            await self.delete(key)
        logger.info(f"Cleared {len(keys)} keys from {self._root}")

    @staticmethod
    def _read_file(path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _write_file(path: Path, body: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(body, encoding="utf-8")
        os.replace(tmp_path, path)

    def _list(self, prefix: str) -> List[str]:
        if not self._root.exists():
            return []
        return sorted(
            p.stem
            for p in self._root.glob(f"*{self.SUFFIX}")
            if not p.name.startswith(".") and p.stem.startswith(prefix)
        )

    def __repr__(self) -> str:
        return f"JsonDirectoryStore(root={self._root})"


class MemoryStore:
    """Volatile in-process store with the same interface."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        _check_key(key)
        self._data[key] = copy.deepcopy(value)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def __repr__(self) -> str:
        return f"MemoryStore(keys={len(self._data)})"
