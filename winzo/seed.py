"""Sample data written the first time the store is opened."""

import logging
from datetime import timedelta

from winzo.repositories import Database
from winzo.schemas import (
    CoinPackage,
    DatabaseUser,
    PaymentMethod,
    PaymentMethodType,
    Product,
    Role,
    StoreFlags,
    StoreSettings,
    utcnow,
)
from winzo.security import hash_password

logger = logging.getLogger(__name__)

VODAFONE_NUMBERS = ["01234567890", "01987654321"]
PLACEHOLDER = "https://via.placeholder.com/300x200/{}?text={}"

# (name, description, image colours, hours until end, lowest bid, lowest bidder, hint)
SAMPLE_PRODUCTS = [
    ("iPhone 15 Pro Max", "Latest iPhone with 256GB storage, Titanium finish",
     "1a1a1a/FFD700", 2, 45, "user@test.com",
     "Hot item! Consider bidding between 40-50 coins for optimal chances"),
    ("MacBook Pro M3", "MacBook Pro with M3 chip, 16GB RAM, 512GB SSD",
     "2c2c2c/FFD700", 48, 120, "admin@winzo.com",
     "Premium item, consider strategic bidding around 115-125 coins"),
    ("Samsung Galaxy S24 Ultra", "Latest Samsung flagship with S Pen, 256GB",
     "1e3a8a/FFD700", 0.5, 38, "quickuser@test.com",
     "Ending soon! Last chance to bid around 35-40 coins"),
    ("PlayStation 5", "Sony PS5 Console with DualSense controller",
     "003087/FFD700", 6, 75, "gamer@test.com",
     "Gaming console in high demand, bid around 70-80 coins"),
    ("Apple Watch Series 9", "Apple Watch Series 9, 45mm, GPS + Cellular",
     "000000/FFD700", 12, 25, "watchlover@test.com",
     "Smart watch deal, consider bidding 22-28 coins"),
    ("Nintendo Switch OLED", "Nintendo Switch OLED model with enhanced display",
     "e60012/FFD700", 72, 55, "nintendo@test.com",
     "Popular gaming device, bid between 50-60 coins"),
    ("AirPods Pro 2nd Gen", "Apple AirPods Pro with USB-C, Active Noise Cancellation",
     "f5f5f7/000000", 4, 18, "music@test.com",
     "Premium earbuds, good value at 15-20 coins"),
    ("iPad Air M2", "iPad Air with M2 chip, 11-inch display, 256GB",
     "4a90e2/FFD700", 96, 85, "tablet@test.com",
     "Versatile tablet, consider bidding 80-90 coins"),
    ('Samsung 65" QLED TV', "65-inch 4K QLED Smart TV with HDR10+",
     "1f1f23/FFD700", -2, 150, "tvlover@test.com",
     "Auction ended - this was a premium TV deal"),
    ("MacBook Air M2", "MacBook Air with M2 chip, 13-inch, 512GB SSD",
     "silver/000000", -24, 95, "laptop@test.com",
     "Auction ended - this was a great laptop deal"),
]


def sample_users():
    def user(id, name, email, password, role, coins):
        return DatabaseUser(
            id=id, name=name, email=email, password=hash_password(password),
            role=role, coins=coins, initial_coins=coins,
        )

    return [
        user(1, "Admin User", "admin@winzo.com", "admin123", Role.ADMIN, 10000),
        user(2, "Test User", "user@winzo.com", "user123", Role.USER, 5500),
        user(3, "Quick User", "1", "1", Role.USER, 2000),
    ]


def sample_products(now=None):
    now = now or utcnow()
    products = []
    for i, (name, description, colours, hours, bid, bidder, hint) in enumerate(SAMPLE_PRODUCTS, 1):
        products.append(Product(
            id=i,
            name=name,
            description=description,
            image=PLACEHOLDER.format(colours, name.replace(" ", "+").replace('"', "")),
            end_time=now + timedelta(hours=hours),
            lowest_bid=bid,
            lowest_bidder=bidder,
            ai_hint=hint,
        ))
    return products


def sample_coin_packages():
    return [
        CoinPackage(id=1, name="Starter Pack", coins=100, price=10, popular=False, is_active=True),
        CoinPackage(id=2, name="Popular Pack", coins=500, price=45, original_price=50,
                    popular=True, bonus=50, is_active=True),
        CoinPackage(id=3, name="Premium Pack", coins=1000, price=80, original_price=100,
                    bonus=200, is_active=True),
    ]


def sample_payment_methods():
    return [
        PaymentMethod(
            id="vodafone_cash",
            name="Vodafone Cash",
            type=PaymentMethodType.VODAFONE_CASH,
            is_active=True,
            instructions=[
                "Send payment to one of our Vodafone Cash numbers",
                "Take a screenshot of the transaction",
                "Upload the screenshot in the payment form",
            ],
            account_numbers=list(VODAFONE_NUMBERS),
        )
    ]


async def seed_database(db: Database, now=None) -> None:
    settings = StoreSettings(
        vodafone_cash_numbers=list(VODAFONE_NUMBERS),
        store_settings=StoreFlags(is_store_enabled=True, support_contact="support@winzo.com"),
    )
    await db.commit(
        (db.users, sample_users()),
        (db.products, sample_products(now)),
        (db.coin_packages, sample_coin_packages()),
        (db.transactions, []),
        (db.payment_methods, sample_payment_methods()),
        (db.settings, settings),
    )
    logger.info("✅ Sample data seeded successfully")


async def initialize_database(db: Database, now=None) -> bool:
    """Seed once; returns True when data was written"""
    async with db.lock:
        if await db.is_initialized():
            logger.info("Database already initialized")
            return False
        logger.info("🚀 Initializing database...")
        await seed_database(db, now)
        await db.set_initialized()
    return True


async def force_reinitialize_database(db: Database, now=None) -> None:
    async with db.lock:
        logger.info("Force re-initializing database")
        await db.clear_all()
        await seed_database(db, now)
        await db.set_initialized()
