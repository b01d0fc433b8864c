"""Durable shared-memory backend: one JSON snapshot file per namespace."""

import asyncio
import json
import os
import re
import threading
from datetime import datetime
from typing import Any, Dict, List

from loguru import logger
from pydantic import BaseModel, Field

from .memory import MemoryBackend


class MemorySnapshot(BaseModel):
    """Serializable contents of one memory namespace."""
    namespace: str
    updated_at: str
    values: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemorySnapshot':
        return cls.model_validate(data)


class FileMemoryBackend(MemoryBackend):
    """Values must be JSON-serializable; anything else is stored as its string form.

    File I/O runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, base_path: str = ".hivelang/memory"):
        self.base_path = base_path
        self._lock = threading.Lock()
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, namespace: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", namespace) or "_"
        return os.path.join(self.base_path, f"{safe}.json")

    def _read(self, namespace: str) -> MemorySnapshot:
        path = self._path(namespace)
        if not os.path.exists(path):
            return MemorySnapshot(namespace=namespace, updated_at=datetime.now().isoformat())
        with open(path, "r", encoding="utf-8") as f:
            return MemorySnapshot.from_dict(json.load(f))

    def _write(self, snapshot: MemorySnapshot) -> None:
        snapshot.updated_at = datetime.now().isoformat()
        path = self._path(snapshot.namespace)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2, default=str)
        os.replace(tmp, path)

    def _update(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            snapshot = self._read(namespace)
            snapshot.values[key] = value
            self._write(snapshot)

    def _remove(self, namespace: str) -> None:
        path = self._path(namespace)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)

    async def load(self, namespace: str, key: str) -> Any:
        snapshot = await asyncio.to_thread(self._read, namespace)
        return snapshot.values.get(key)

    async def store(self, namespace: str, key: str, value: Any) -> None:
        await asyncio.to_thread(self._update, namespace, key, value)
        logger.trace("persisted {}/{}", namespace, key)

    async def keys(self, namespace: str) -> List[str]:
        snapshot = await asyncio.to_thread(self._read, namespace)
        return list(snapshot.values)

    async def drop(self, namespace: str) -> None:
        await asyncio.to_thread(self._remove, namespace)

    def namespaces(self) -> List[str]:
        return sorted(name[:-5] for name in os.listdir(self.base_path) if name.endswith(".json"))
