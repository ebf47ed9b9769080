"""
Repositories: whole-collection reads and writes against the key-value store.

There is no partial update and no indexing. Callers read a collection,
change it and write it back, holding Database.lock for the whole cycle.
"""

import asyncio
import json
import logging
from typing import Generic, List, Sequence, Tuple, Type, TypeVar

from winzo.database import STORAGE_KEYS, KeyValueStore
from winzo.errors import StorageFailure
from winzo.schemas import (
    CoinPackage,
    CoinTransaction,
    DatabaseUser,
    PaymentMethod,
    Product,
    StoreModel,
    StoreSettings,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=StoreModel)


def next_id(items: Sequence) -> int:
    return max([0] + [item.id for item in items]) + 1


class Repository(Generic[T]):
    key: str
    model: Type[T]

    def __init__(self, store: KeyValueStore):
        self.store = store

    def decode(self, raw) -> List[T]:
        if raw is None:
            return []
        try:
            return [self.model.model_validate(item) for item in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.exception("Unreadable data under %s", self.key)
            raise StorageFailure("decode", self.key, e) from e

    def encode(self, items: Sequence[T]) -> str:
        return json.dumps([item.to_record() for item in items])

    async def get_all(self) -> List[T]:
        return self.decode(await self.store.get(self.key))

    async def save_all(self, items: Sequence[T]) -> None:
        await self.store.set(self.key, self.encode(items))


class UserRepository(Repository[DatabaseUser]):
    key = STORAGE_KEYS["USERS"]
    model = DatabaseUser


class ProductRepository(Repository[Product]):
    key = STORAGE_KEYS["PRODUCTS"]
    model = Product


class CoinPackageRepository(Repository[CoinPackage]):
    key = STORAGE_KEYS["COIN_PACKAGES"]
    model = CoinPackage


class TransactionRepository(Repository[CoinTransaction]):
    key = STORAGE_KEYS["TRANSACTIONS"]
    model = CoinTransaction


class PaymentMethodRepository(Repository[PaymentMethod]):
    key = STORAGE_KEYS["PAYMENT_METHODS"]
    model = PaymentMethod


class SettingsRepository:
    """The settings key holds one object rather than a list"""

    key = STORAGE_KEYS["SETTINGS"]

    def __init__(self, store: KeyValueStore):
        self.store = store

    def decode(self, raw) -> StoreSettings:
        if raw is None:
            return StoreSettings()
        try:
            return StoreSettings.model_validate(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.exception("Unreadable data under %s", self.key)
            raise StorageFailure("decode", self.key, e) from e

    def encode(self, settings: StoreSettings) -> str:
        return json.dumps(settings.to_record())

    async def get(self) -> StoreSettings:
        return self.decode(await self.store.get(self.key))

    async def save(self, settings: StoreSettings) -> None:
        await self.store.set(self.key, self.encode(settings))


class Database:
    """All repositories over one store, plus the write lock and commit."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.users = UserRepository(store)
        self.products = ProductRepository(store)
        self.coin_packages = CoinPackageRepository(store)
        self.transactions = TransactionRepository(store)
        self.payment_methods = PaymentMethodRepository(store)
        self.settings = SettingsRepository(store)
        # Held across every read-modify-write so updates within one process
        # are never interleaved.
        self.lock = asyncio.Lock()

    async def commit(self, *changes: Tuple[object, object]) -> None:
        """Write several collections with a single multi_set"""
        await self.store.multi_set([(repo.key, repo.encode(value)) for repo, value in changes])

    async def is_initialized(self) -> bool:
        return await self.store.get(STORAGE_KEYS["INITIALIZED"]) == "true"

    async def set_initialized(self) -> None:
        await self.store.set(STORAGE_KEYS["INITIALIZED"], "true")

    async def clear_all(self) -> None:
        await self.store.multi_remove(list(STORAGE_KEYS.values()))
