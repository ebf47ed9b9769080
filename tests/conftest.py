"""
Shared fixtures: an in-memory store, an empty and a seeded database, and the
service bundle built over them.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from winzo.database import MemoryStore
from winzo.repositories import Database
from winzo.schemas import DatabaseUser, Product, Role
from winzo.security import hash_password
from winzo.seed import initialize_database
from winzo.services import build_services

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def db(store):
    return Database(store)


@pytest_asyncio.fixture
async def seeded_db(db):
    await initialize_database(db, now=NOW)
    return db


@pytest.fixture
def services(seeded_db):
    return build_services(seeded_db)


@pytest.fixture
def loose_services(seeded_db):
    """Services that let an admin verify the same transaction again"""
    return build_services(seeded_db, strict_verification=False)


async def add_user(db: Database, user_id: int, coins: int, role: Role = Role.USER) -> DatabaseUser:
    users = await db.users.get_all()
    user = DatabaseUser(
        id=user_id,
        name=f"User {user_id}",
        email=f"user{user_id}@test.com",
        password=hash_password("secret123"),
        role=role,
        coins=coins,
        initial_coins=coins,
    )
    users.append(user)
    await db.users.save_all(users)
    return user


async def add_product(db: Database, product_id: int, ends_in: timedelta) -> Product:
    products = await db.products.get_all()
    product = Product(id=product_id, name=f"Item {product_id}", end_time=NOW + ends_in)
    products.append(product)
    await db.products.save_all(products)
    return product
