"""
Key-value stores for the WinZO collections.

Every collection lives under one fixed string key as a UTF-8 JSON document.
Stores are async; the file and Mongo backends push their blocking I/O off
the event loop. Any I/O error surfaces as StorageFailure.
"""

import asyncio
import json
import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pymongo import MongoClient, ReplaceOne
from pymongo.errors import PyMongoError

from winzo import config
from winzo.errors import StorageFailure

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "USERS": "winzo_users",
    "PRODUCTS": "winzo_products",
    "COIN_PACKAGES": "winzo_coin_packages",
    "TRANSACTIONS": "winzo_transactions",
    "PAYMENT_METHODS": "winzo_payment_methods",
    "SETTINGS": "winzo_settings",
    "INITIALIZED": "winzo_initialized",
    "AUTH_TOKEN": "@winzo:authToken",
}


class KeyValueStore:
    """Async string-to-string store. Subclasses implement the multi_* calls."""

    async def multi_get(self, keys: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
        raise NotImplementedError

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        raise NotImplementedError

    async def multi_remove(self, keys: Sequence[str]) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> Optional[str]:
        [(_, value)] = await self.multi_get([key])
        return value

    async def set(self, key: str, value: str) -> None:
        await self.multi_set([(key, value)])

    async def remove(self, key: str) -> None:
        await self.multi_remove([key])


def _check_pairs(pairs: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    pairs = list(pairs)
    for key, value in pairs:
        if not isinstance(value, str):
            raise StorageFailure("write", key, TypeError("values must be strings"))
    return pairs


class MemoryStore(KeyValueStore):
    """In-process store. A multi_set is applied entirely or not at all."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    async def multi_get(self, keys):
        return [(key, self.data.get(key)) for key in keys]

    async def multi_set(self, pairs):
        self.data.update(_check_pairs(pairs))

    async def multi_remove(self, keys):
        for key in keys:
            self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Stores every key in one JSON file, standing in for device storage.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a multi_set survives a crash whole or not at all.
    Every load-update-dump holds _file_lock.
    """

    def __init__(self, path: str):
        self.path = path
        self._file_lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _dump(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".winzo-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _read_keys(self, keys):
        with self._file_lock:
            data = self._load()
        return [(key, data.get(key)) for key in keys]

    def _write_pairs(self, pairs):
        with self._file_lock:
            data = self._load()
            data.update(pairs)
            self._dump(data)

    def _remove_keys(self, keys):
        with self._file_lock:
            data = self._load()
            for key in keys:
                data.pop(key, None)
            self._dump(data)

    async def multi_get(self, keys):
        try:
            return await asyncio.to_thread(self._read_keys, list(keys))
        except (OSError, ValueError) as e:
            logger.exception("Error reading %s", self.path)
            raise StorageFailure("read", list(keys), e) from e

    async def multi_set(self, pairs):
        pairs = _check_pairs(pairs)
        try:
            await asyncio.to_thread(self._write_pairs, pairs)
        except (OSError, ValueError) as e:
            logger.exception("Error writing %s", self.path)
            raise StorageFailure("write", [k for k, _ in pairs], e) from e

    async def multi_remove(self, keys):
        try:
            await asyncio.to_thread(self._remove_keys, list(keys))
        except (OSError, ValueError) as e:
            logger.exception("Error removing keys from %s", self.path)
            raise StorageFailure("remove", list(keys), e) from e


class MongoStore(KeyValueStore):
    """
    One document per key: {"_id": key, "value": json_string}.

    multi_set is an ordered bulk write; MongoDB does not make it atomic
    across documents.
    """

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_url(cls, url: str, database_name: str = config.DATABASE_NAME, collection: str = "kv"):
        client = MongoClient(url)
        return cls(client[database_name][collection])

    def _read_keys(self, keys):
        docs = {d["_id"]: d.get("value") for d in self.collection.find({"_id": {"$in": keys}})}
        return [(key, docs.get(key)) for key in keys]

    def _write_pairs(self, pairs):
        if pairs:
            self.collection.bulk_write(
                [ReplaceOne({"_id": k}, {"_id": k, "value": v}, upsert=True) for k, v in pairs],
                ordered=True,
            )

    def _remove_keys(self, keys):
        self.collection.delete_many({"_id": {"$in": keys}})

    async def multi_get(self, keys):
        try:
            return await asyncio.to_thread(self._read_keys, list(keys))
        except PyMongoError as e:
            logger.exception("Error reading keys from MongoDB")
            raise StorageFailure("read", list(keys), e) from e

    async def multi_set(self, pairs):
        pairs = _check_pairs(pairs)
        try:
            await asyncio.to_thread(self._write_pairs, pairs)
        except PyMongoError as e:
            logger.exception("Error writing keys to MongoDB")
            raise StorageFailure("write", [k for k, _ in pairs], e) from e

    async def multi_remove(self, keys):
        try:
            await asyncio.to_thread(self._remove_keys, list(keys))
        except PyMongoError as e:
            logger.exception("Error removing keys from MongoDB")
            raise StorageFailure("remove", list(keys), e) from e


def create_store(backend: str = config.STORAGE_BACKEND) -> KeyValueStore:
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        return JsonFileStore(config.STORAGE_PATH)
    if backend == "mongo":
        if not config.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set for the mongo storage backend")
        return MongoStore.from_url(config.DATABASE_URL, config.DATABASE_NAME)
    raise ValueError(f"Unknown storage backend: {backend}")


async def check_connection(store: KeyValueStore) -> bool:
    try:
        await store.set("test_key", "test_value")
        await store.remove("test_key")
    except StorageFailure as e:
        logger.error("❌ Storage connection failed: %s", e)
        return False
    logger.info("✅ Storage connected successfully")
    return True
