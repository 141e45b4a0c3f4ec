from __future__ import annotations

from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Protocol

import duckdb

from abslot.core.config import StorageConfig

from .duckdb_adapter import DuckDBAdapter


class StorageError(Exception):
    """Durable storage could not be read or written."""


class StorageUnavailable(StorageError):
    """Storage is denied (privacy mode, blocked by policy) or disabled by config."""


class Storage(Protocol):
    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str) -> None: ...


@dataclass(slots=True)
class MemoryStorage:
    items: dict[str, str] = field(default_factory=dict)

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = str(value)


class DisabledStorage:
    def get_item(self, key: str) -> str | None:
        raise StorageUnavailable(f"storage disabled (get {key!r})")

    def set_item(self, key: str, value: str) -> None:
        raise StorageUnavailable(f"storage disabled (set {key!r})")


class DuckDBStorage:
    """
    Per-origin durable storage on top of DuckDBAdapter.
    Any DuckDB failure surfaces as StorageError.
    """

    def __init__(self, adapter: DuckDBAdapter, origin: str) -> None:
        self.adapter = adapter
        self.origin = origin

    def get_item(self, key: str) -> str | None:
        try:
            return self.adapter.get(self.origin, key)
        except (duckdb.Error, RuntimeError) as e:
            raise StorageError(f"get {key!r} failed") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self.adapter.put(self.origin, key, str(value))
        except (duckdb.Error, RuntimeError) as e:
            raise StorageError(f"set {key!r} failed") from e


def build_storage(cfg: StorageConfig, origin: str) -> tuple[Storage, DuckDBAdapter | None]:
    """
    Returns (storage, adapter). The adapter is returned so the owner can close it.
    """
    if cfg.backend == "memory":
        return MemoryStorage(), None
    if cfg.backend == "disabled":
        return DisabledStorage(), None

    adapter = DuckDBAdapter(path=str(cfg.duckdb_path), clean_slate=cfg.clean_slate)
    try:
        adapter.open()
    except (duckdb.Error, OSError):
        # unusable database file behaves like a browser with storage denied
        return DisabledStorage(), None
    return DuckDBStorage(adapter, origin), adapter


@dataclass(slots=True)
class CookieJar:
    """
    Session-scoped cookies for the current page. Nothing here outlives the page load
    unless the host serialises it back (see header()).
    """

    cookies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_header(cls, header: str | None) -> CookieJar:
        jar = cls()
        if not header:
            return jar
        parsed = SimpleCookie()
        try:
            parsed.load(header)
        except CookieError:
            return jar
        for name, morsel in parsed.items():
            jar.cookies[name] = morsel.value
        return jar

    def get(self, name: str) -> str | None:
        return self.cookies.get(name) or None

    def set(self, name: str, value: str) -> None:
        self.cookies[name] = value

    def header(self) -> str:
        return "; ".join(f"{k}={v}" for k, v in self.cookies.items())
