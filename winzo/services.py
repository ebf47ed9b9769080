import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from winzo import config
from winzo.database import STORAGE_KEYS
from winzo.errors import DuplicateEmail, InsufficientCoins, InvalidCredentials, InvalidToken
from winzo.ledger import BidService, TransactionService, index_of, new_transaction_id
from winzo.repositories import Database, next_id
from winzo.schemas import (
    ADMIN_GRANT,
    CoinPackage,
    CoinTransaction,
    DashboardStats,
    DatabaseUser,
    PaymentMethod,
    PaymentMethodType,
    Product,
    Role,
    TokenClaims,
    TransactionStatus,
    User,
    utcnow,
)
from winzo.security import hash_password, issue_token, verify_password, verify_token

logger = logging.getLogger(__name__)


def _same_email(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


# Authentication Services
class AuthService:
    def __init__(
        self,
        db: Database,
        signup_bonus: int = config.SIGNUP_BONUS_COINS,
        secret: str = config.JWT_SECRET,
    ):
        self.db = db
        self.signup_bonus = signup_bonus
        self.secret = secret

    def _token_for(self, user: DatabaseUser) -> str:
        return issue_token(user.id, user.email, user.role, secret=self.secret)

    async def login(self, email: str, password: str) -> Tuple[User, str]:
        users = await self.db.users.get_all()
        user = next((u for u in users if _same_email(u.email, email)), None)
        if not user or not verify_password(password, user.password):
            logger.warning("Failed login for %s", email)
            raise InvalidCredentials()
        return user.public(), self._token_for(user)

    async def signup(self, name: str, email: str, password: str) -> Tuple[User, str]:
        async with self.db.lock:
            users = await self.db.users.get_all()
            if any(_same_email(u.email, email) for u in users):
                raise DuplicateEmail(email)

            new_user = DatabaseUser(
                id=next_id(users),
                name=name,
                email=email,
                password=hash_password(password),
                role=Role.USER,
                coins=self.signup_bonus,
                initial_coins=self.signup_bonus,
            )
            users.append(new_user)
            await self.db.users.save_all(users)

        logger.info("User %s signed up as %s", new_user.id, email)
        return new_user.public(), self._token_for(new_user)

    def verify_token(self, token: str) -> TokenClaims:
        return verify_token(token, secret=self.secret)

    async def current_user(self, token: str) -> User:
        claims = self.verify_token(token)
        users = await self.db.users.get_all()
        user = next((u for u in users if u.id == claims.user_id), None)
        if user is None:
            raise InvalidToken("User no longer exists")
        return user.public()


class SessionService:
    """Keeps the signed-in user's token in the store, as the device app does"""

    def __init__(self, db: Database, auth: AuthService):
        self.db = db
        self.auth = auth

    async def store_token(self, token: str) -> None:
        await self.db.store.set(STORAGE_KEYS["AUTH_TOKEN"], token)

    async def get_token(self) -> Optional[str]:
        return await self.db.store.get(STORAGE_KEYS["AUTH_TOKEN"])

    async def clear_token(self) -> None:
        await self.db.store.remove(STORAGE_KEYS["AUTH_TOKEN"])

    async def current_user(self) -> Optional[User]:
        token = await self.get_token()
        if not token:
            return None
        return await self.auth.current_user(token)


# User Services
class UserService:
    def __init__(self, db: Database):
        self.db = db

    async def fetch_users(self) -> List[User]:
        return [u.public() for u in await self.db.users.get_all()]

    async def get_user(self, user_id: int) -> User:
        users = await self.db.users.get_all()
        return users[index_of(users, user_id, "User")].public()

    async def grant_coins(self, user_id: int, coins: int, admin_id: Optional[int] = None) -> User:
        """Add (or with a negative value, take back) coins and record an admin_grant entry"""
        async with self.db.lock:
            users = await self.db.users.get_all()
            user = users[index_of(users, user_id, "User")]
            if user.coins + coins < 0:
                raise InsufficientCoins(
                    -coins,
                    user.coins,
                    f"Cannot take back {-coins} coins. User {user_id} has {user.coins} coins.",
                )

            user.coins += coins
            now = utcnow()
            transactions = await self.db.transactions.get_all()
            transactions.append(CoinTransaction(
                id=new_transaction_id(now),
                user_id=user_id,
                package_id=0,
                amount=0,
                coins=coins,
                payment_method=ADMIN_GRANT,
                status=TransactionStatus.COMPLETED,
                created_at=now,
                completed_at=now,
                admin_notes=f"Granted {coins} coins",
                verified_by=admin_id,
            ))
            await self.db.commit(
                (self.db.users, users),
                (self.db.transactions, transactions),
            )

        logger.info("Admin %s granted %s coins to user %s", admin_id, coins, user_id)
        return user.public()

    async def update_user_coins(self, user_id: int, coins: int) -> User:
        """Overwrite a balance without a ledger record"""
        if coins < 0:
            raise ValueError("coins must not be negative")
        async with self.db.lock:
            users = await self.db.users.get_all()
            user = users[index_of(users, user_id, "User")]
            user.coins = coins
            await self.db.users.save_all(users)
        logger.warning("Balance of user %s overwritten to %s", user_id, coins)
        return user.public()

    async def delete_user(self, user_id: int) -> None:
        async with self.db.lock:
            users = await self.db.users.get_all()
            del users[index_of(users, user_id, "User")]
            await self.db.users.save_all(users)
        logger.info("User %s deleted", user_id)


# Product Services
class ProductService:
    def __init__(self, db: Database):
        self.db = db

    async def fetch_products(self) -> List[Product]:
        return await self.db.products.get_all()

    async def get_product(self, product_id: int) -> Product:
        products = await self.db.products.get_all()
        return products[index_of(products, product_id, "Product")]

    async def add_product(
        self,
        name: str,
        end_time: datetime,
        description: str = "",
        image: str = "",
        lowest_bid: float = 0,
        lowest_bidder: str = "",
        ai_hint: str = "",
    ) -> Product:
        async with self.db.lock:
            products = await self.db.products.get_all()
            product = Product(
                id=next_id(products),
                name=name,
                description=description,
                image=image,
                end_time=end_time,
                lowest_bid=lowest_bid,
                lowest_bidder=lowest_bidder,
                ai_hint=ai_hint,
            )
            products.append(product)
            await self.db.products.save_all(products)
        logger.info("Product %s added: %s", product.id, name)
        return product


# Coin Package Services
class CoinPackageService:
    def __init__(self, db: Database):
        self.db = db

    async def fetch_coin_packages(self) -> List[CoinPackage]:
        packages = await self.db.coin_packages.get_all()
        return sorted((p for p in packages if p.is_active), key=lambda p: p.price)

    async def fetch_all_coin_packages(self) -> List[CoinPackage]:
        return sorted(await self.db.coin_packages.get_all(), key=lambda p: p.price)

    async def get_package(self, package_id: int) -> CoinPackage:
        packages = await self.db.coin_packages.get_all()
        return packages[index_of(packages, package_id, "Coin package")]

    async def add_coin_package(self, **fields) -> CoinPackage:
        async with self.db.lock:
            packages = await self.db.coin_packages.get_all()
            package = CoinPackage(id=next_id(packages), **fields)
            packages.append(package)
            await self.db.coin_packages.save_all(packages)
        logger.info("Coin package %s added: %s", package.id, package.name)
        return package

    async def update_coin_package(self, package_id: int, updates: dict) -> CoinPackage:
        async with self.db.lock:
            packages = await self.db.coin_packages.get_all()
            i = index_of(packages, package_id, "Coin package")
            merged = {**packages[i].model_dump(), **updates, "id": package_id}
            packages[i] = CoinPackage.model_validate(merged)
            await self.db.coin_packages.save_all(packages)
        return packages[i]

    async def delete_coin_package(self, package_id: int) -> None:
        async with self.db.lock:
            packages = await self.db.coin_packages.get_all()
            del packages[index_of(packages, package_id, "Coin package")]
            await self.db.coin_packages.save_all(packages)
        logger.info("Coin package %s deleted", package_id)


# Payment Method Services
class PaymentMethodService:
    def __init__(self, db: Database):
        self.db = db

    async def fetch_payment_methods(self) -> List[PaymentMethod]:
        return [m for m in await self.db.payment_methods.get_all() if m.is_active]


# Settings Services
class SettingsService:
    def __init__(self, db: Database, default_numbers: Optional[List[str]] = None):
        self.db = db
        self.default_numbers = list(default_numbers or config.DEFAULT_VODAFONE_NUMBERS)

    async def fetch_vodafone_numbers(self) -> List[str]:
        settings = await self.db.settings.get()
        if settings.vodafone_cash_numbers is None:
            return list(self.default_numbers)
        return settings.vodafone_cash_numbers

    async def update_vodafone_numbers(self, numbers: List[str]) -> List[str]:
        numbers = [n.strip() for n in numbers if n and n.strip()]
        async with self.db.lock:
            settings = await self.db.settings.get()
            settings.vodafone_cash_numbers = numbers
            changes = [(self.db.settings, settings)]

            # Keep the Vodafone Cash payment method showing the same numbers
            methods = await self.db.payment_methods.get_all()
            for method in methods:
                if method.type == PaymentMethodType.VODAFONE_CASH:
                    method.account_numbers = numbers
                    changes.append((self.db.payment_methods, methods))
                    break
            await self.db.commit(*changes)
        logger.info("Vodafone Cash numbers updated: %s", ", ".join(numbers))
        return numbers


class AdminService:
    def __init__(self, db: Database):
        self.db = db

    async def dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        now = now or utcnow()
        users = await self.db.users.get_all()
        products = await self.db.products.get_all()
        transactions = await self.db.transactions.get_all()
        return DashboardStats(
            users=len(users),
            products=len(products),
            live_auctions=sum(1 for p in products if p.is_live(now)),
            pending_transactions=sum(1 for t in transactions if t.status == TransactionStatus.PENDING),
            coins_in_circulation=sum(u.coins for u in users),
        )


@dataclass
class Services:
    db: Database
    auth: AuthService
    sessions: SessionService
    users: UserService
    products: ProductService
    coin_packages: CoinPackageService
    payment_methods: PaymentMethodService
    settings: SettingsService
    transactions: TransactionService
    bids: BidService
    admin: AdminService


def build_services(
    db: Database,
    bid_cost: int = config.BID_COST,
    strict_verification: bool = config.STRICT_VERIFICATION,
    secret: str = config.JWT_SECRET,
) -> Services:
    auth = AuthService(db, secret=secret)
    return Services(
        db=db,
        auth=auth,
        sessions=SessionService(db, auth),
        users=UserService(db),
        products=ProductService(db),
        coin_packages=CoinPackageService(db),
        payment_methods=PaymentMethodService(db),
        settings=SettingsService(db),
        transactions=TransactionService(db, strict_verification=strict_verification),
        bids=BidService(db, bid_cost=bid_cost),
        admin=AdminService(db),
    )
