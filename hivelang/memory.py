"""Per-run shared memory.

A :class:`SharedMemory` is a view of one namespace (the run id) of a
:class:`MemoryBackend`. Runs with different ids never see each other's keys.
"""

from __future__ import annotations
import copy
from typing import Any, Dict, List, Optional

from loguru import logger


class MemoryBackend:
    """Storage behind shared memory. Keys live inside a namespace."""

    async def load(self, namespace: str, key: str) -> Any:
        raise NotImplementedError

    async def store(self, namespace: str, key: str, value: Any) -> None:
        raise NotImplementedError

    async def keys(self, namespace: str) -> List[str]:
        raise NotImplementedError

    async def drop(self, namespace: str) -> None:
        raise NotImplementedError


class InMemoryBackend(MemoryBackend):
    def __init__(self):
        self._spaces: Dict[str, Dict[str, Any]] = {}

    async def load(self, namespace: str, key: str) -> Any:
        return copy.deepcopy(self._spaces.get(namespace, {}).get(key))

    async def store(self, namespace: str, key: str, value: Any) -> None:
        self._spaces.setdefault(namespace, {})[key] = copy.deepcopy(value)

    async def keys(self, namespace: str) -> List[str]:
        return list(self._spaces.get(namespace, {}))

    async def drop(self, namespace: str) -> None:
        self._spaces.pop(namespace, None)

    def namespaces(self) -> List[str]:
        return list(self._spaces)


class SharedMemory:
    """get / set / append over a single namespace."""

    def __init__(self, backend: MemoryBackend, namespace: str):
        self.backend = backend
        self.namespace = namespace

    async def get(self, key: str) -> Any:
        return await self.backend.load(self.namespace, key)

    async def set(self, key: str, value: Any) -> None:
        logger.trace("memory[{}] set {}", self.namespace, key)
        await self.backend.store(self.namespace, key, value)

    async def append(self, key: str, value: Any) -> None:
        existing = await self.get(key)
        if existing is None:
            updated = [value]
        elif isinstance(existing, list):
            updated = existing + [value]
        else:
            updated = [existing, value]
        await self.set(key, updated)

    async def snapshot(self) -> Dict[str, Any]:
        return {key: await self.get(key) for key in await self.backend.keys(self.namespace)}


class MemoryStore:
    """Hands out one SharedMemory scope per run id."""

    def __init__(self, backend: Optional[MemoryBackend] = None):
        self.backend = backend if backend is not None else InMemoryBackend()

    def scope(self, run_id: str) -> SharedMemory:
        return SharedMemory(self.backend, run_id)

    async def discard(self, run_id: str) -> None:
        await self.backend.drop(run_id)
