"""Persisted tool permissions (allow/deny lists)."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from .config import SETTINGS_PATH

logger = logging.getLogger(__name__)


class PermissionRecord(BaseModel):
    """Tool names the human has always allowed or always denied."""

    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    """Payload stored in settings.json."""

    permissions: PermissionRecord = Field(default_factory=PermissionRecord)


class SettingsStore(ABC):
    """Async access to the persisted permission record."""

    @abstractmethod
    async def fetch_record(self) -> PermissionRecord:
        ...

    @abstractmethod
    async def add_allowed(self, name: str) -> None:
        ...

    @abstractmethod
    async def add_denied(self, name: str) -> None:
        ...

    @abstractmethod
    async def remove_allowed(self, name: str) -> None:
        ...

    @abstractmethod
    async def remove_denied(self, name: str) -> None:
        ...

    async def is_allowed(self, name: str) -> bool:
        return name in (await self.fetch_record()).allow

    async def is_denied(self, name: str) -> bool:
        return name in (await self.fetch_record()).deny


def _allow(record: PermissionRecord, name: str) -> bool:
    changed = False
    if name in record.deny:
        record.deny.remove(name)
        changed = True
    if name not in record.allow:
        record.allow.append(name)
        changed = True
    return changed


def _deny(record: PermissionRecord, name: str) -> bool:
    changed = False
    if name in record.allow:
        record.allow.remove(name)
        changed = True
    if name not in record.deny:
        record.deny.append(name)
        changed = True
    return changed


def _discard(names: list[str], name: str) -> bool:
    if name in names:
        names.remove(name)
        return True
    return False


class InMemorySettingsStore(SettingsStore):
    """Process-local store; useful for tests and ephemeral sessions."""

    def __init__(self, record: PermissionRecord | None = None) -> None:
        self._record = record.model_copy(deep=True) if record else PermissionRecord()

    async def fetch_record(self) -> PermissionRecord:
        return self._record.model_copy(deep=True)

    async def add_allowed(self, name: str) -> None:
        _allow(self._record, name)

    async def add_denied(self, name: str) -> None:
        _deny(self._record, name)

    async def remove_allowed(self, name: str) -> None:
        _discard(self._record.allow, name)

    async def remove_denied(self, name: str) -> None:
        _discard(self._record.deny, name)


class JsonSettingsStore(SettingsStore):
    """settings.json on disk; every read goes to the file so other writers are seen.

    Writes are read-modify-write under one lock per store instance.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path or SETTINGS_PATH)
        self._lock = asyncio.Lock()

    def _read(self) -> Settings:
        if not self.path.exists():
            return Settings()
        with open(self.path) as f:
            raw = json.load(f)
        return Settings(**raw)

    def _write(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(settings.model_dump(), f, indent=2)
        tmp.replace(self.path)

    async def fetch_record(self) -> PermissionRecord:
        settings = await asyncio.to_thread(self._read)
        return settings.permissions

    async def _update(self, change, name: str) -> None:
        async with self._lock:
            settings = await asyncio.to_thread(self._read)
            if change(settings.permissions, name):
                await asyncio.to_thread(self._write, settings)
                logger.info("Updated tool permissions in %s: %s", self.path, name)

    async def add_allowed(self, name: str) -> None:
        await self._update(_allow, name)

    async def add_denied(self, name: str) -> None:
        await self._update(_deny, name)

    async def remove_allowed(self, name: str) -> None:
        await self._update(lambda record, n: _discard(record.allow, n), name)

    async def remove_denied(self, name: str) -> None:
        await self._update(lambda record, n: _discard(record.deny, n), name)
