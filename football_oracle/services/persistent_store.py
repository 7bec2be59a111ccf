from __future__ import annotations

import datetime as dt
import json
import os
import sqlite3
import threading
from typing import Any

from loguru import logger


class KeyValueStore:
    """Durable key -> serialized string medium shared by every cache namespace."""

    backend = "base"

    def get_item(self, key: str) -> str | None:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)


class MemoryStore(KeyValueStore):
    backend = "memory"

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = str(value)

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._items if key.startswith(prefix))


class SqliteStore(KeyValueStore):
    backend = "sqlite"

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.table = "cache_entries"
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _ensure_schema(self) -> None:
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        conn = self._connect()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    f"SELECT value FROM {self.table} WHERE key = ?",
                    (key,),
                ).fetchone()
            finally:
                conn.close()

        if not row:
            return None
        return str(row[0])

    def set_item(self, key: str, value: str) -> None:
        updated_at = dt.datetime.now(dt.UTC).isoformat()
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    f"""
                    INSERT INTO {self.table} (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, str(value), updated_at),
                )
                conn.commit()
            finally:
                conn.close()

    def remove_item(self, key: str) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"SELECT key FROM {self.table} WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
            finally:
                conn.close()
        return [str(row[0]) for row in rows]

    def clear(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(f"DELETE FROM {self.table}")
                conn.commit()
            finally:
                conn.close()


class JsonFileStore(KeyValueStore):
    """Whole-map JSON file; every write rewrites the file."""

    backend = "json"

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    @staticmethod
    def _read_json_file(path: str) -> dict[str, Any] | None:
        if not path or not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Failed to read cache file {path}: {exc}")
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    @staticmethod
    def _write_json_file(path: str, payload: dict[str, Any]) -> None:
        if not path:
            return
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)

    def _load(self) -> dict[str, str]:
        data = self._read_json_file(self.path) or {}
        return {str(key): str(value) for key, value in data.items() if isinstance(value, str)}

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load()
            items[key] = str(value)
            self._write_json_file(self.path, items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load()
            if key not in items:
                return
            del items[key]
            self._write_json_file(self.path, items)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._load() if key.startswith(prefix))

    def clear(self) -> None:
        with self._lock:
            self._write_json_file(self.path, {})


def open_store(url: str | None = None) -> KeyValueStore:
    value = str(url or "").strip()
    if not value or value == "memory://":
        if not value:
            logger.warning("CACHE_URL is empty. Falling back to in-memory cache store.")
        return MemoryStore()
    if value.startswith("sqlite:///"):
        return SqliteStore(value[len("sqlite:///") :])
    if value.startswith("json:///"):
        return JsonFileStore(value[len("json:///") :])
    if value.lower().endswith(".json"):
        return JsonFileStore(value)
    return SqliteStore(value)
