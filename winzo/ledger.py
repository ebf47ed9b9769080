"""
Coin ledger: purchase transactions, admin verification and bid debits.

A purchase starts pending and is credited to its owner exactly once, when an
admin approves it. A bid debit is written already completed. Every change to
a balance is committed together with the ledger record that explains it.
"""

import logging
import math
import random
import string
from datetime import datetime, timedelta
from typing import List, Optional

from winzo import config
from winzo.errors import (
    AuctionEnded,
    InsufficientCoins,
    InvalidBid,
    NotFound,
    TransactionAlreadyProcessed,
)
from winzo.repositories import Database
from winzo.schemas import (
    ADMIN_GRANT,
    ALLOWED_TRANSITIONS,
    BID_PLACEMENT,
    AuctionStatus,
    BidReceipt,
    CoinTransaction,
    Product,
    ReconciliationReport,
    TransactionStatus,
    VodafoneCashPayment,
    utcnow,
)

logger = logging.getLogger(__name__)

ENDING_SOON_WINDOW = timedelta(hours=24)


def new_transaction_id(now: Optional[datetime] = None) -> str:
    """txn_<epoch ms>_<9 random base36 chars>"""
    ms = int((now or utcnow()).timestamp() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"txn_{ms}_{suffix}"


def newest_first(transactions: List[CoinTransaction]) -> List[CoinTransaction]:
    return sorted(transactions, key=lambda t: t.created_at, reverse=True)


def index_of(items, key, entity: str) -> int:
    for i, item in enumerate(items):
        if item.id == key:
            return i
    raise NotFound(entity, key)


def auction_status(product: Product, now: Optional[datetime] = None) -> AuctionStatus:
    now = now or utcnow()
    if not product.is_live(now):
        return AuctionStatus.ENDED
    if product.end_time - now < ENDING_SOON_WINDOW:
        return AuctionStatus.ENDING_SOON
    return AuctionStatus.LIVE


class TransactionService:
    """
    Creates, updates and verifies coin-purchase transactions.

    With strict_verification (the default) a transaction can be verified
    once; verifying it again raises TransactionAlreadyProcessed. Without it
    the status is overwritten and an approval credits the coins again.
    """

    def __init__(self, db: Database, strict_verification: bool = config.STRICT_VERIFICATION):
        self.db = db
        self.strict_verification = strict_verification

    async def create_transaction(
        self,
        user_id: int,
        package_id: int,
        amount: float,
        coins: int,
        payment_method: str,
        payment_reference: str = "",
    ) -> CoinTransaction:
        async with self.db.lock:
            users = await self.db.users.get_all()
            index_of(users, user_id, "User")
            transactions = await self.db.transactions.get_all()
            transaction = CoinTransaction(
                id=new_transaction_id(),
                user_id=user_id,
                package_id=package_id,
                amount=amount,
                coins=coins,
                payment_method=payment_method,
                payment_reference=payment_reference,
                status=TransactionStatus.PENDING,
            )
            transactions.append(transaction)
            await self.db.transactions.save_all(transactions)

        logger.info(
            "Transaction %s created for user %s: %s coins via %s",
            transaction.id, user_id, coins, payment_method,
        )
        return transaction

    async def create_package_purchase(
        self, user_id: int, package_id: int, payment_method: str, payment_reference: str = ""
    ) -> CoinTransaction:
        packages = await self.db.coin_packages.get_all()
        package = next((p for p in packages if p.id == package_id and p.is_active), None)
        if package is None:
            raise NotFound("Coin package", package_id)
        return await self.create_transaction(
            user_id=user_id,
            package_id=package.id,
            amount=package.price,
            coins=package.total_coins,
            payment_method=payment_method,
            payment_reference=payment_reference,
        )

    async def attach_payment_proof(
        self, transaction_id: str, payment: VodafoneCashPayment
    ) -> CoinTransaction:
        async with self.db.lock:
            transactions = await self.db.transactions.get_all()
            i = index_of(transactions, transaction_id, "Transaction")
            transaction = transactions[i]
            if transaction.status != TransactionStatus.PENDING:
                raise TransactionAlreadyProcessed(transaction_id, transaction.status.value)

            updates = {
                "vodafone_number": payment.sender_number,
                "payment_reference": payment.reference,
            }
            if payment.payment_screenshot is not None:
                updates["payment_screenshot"] = payment.payment_screenshot
                updates["screenshot_file_name"] = payment.screenshot_file_name
            transactions[i] = transaction.model_copy(update=updates)
            await self.db.transactions.save_all(transactions)

        logger.info("Payment proof attached to transaction %s", transaction_id)
        return transactions[i]

    async def verify(
        self, transaction_id: str, approved: bool, admin_id: int, notes: Optional[str] = None
    ) -> CoinTransaction:
        async with self.db.lock:
            transactions = await self.db.transactions.get_all()
            i = index_of(transactions, transaction_id, "Transaction")
            transaction = transactions[i]
            new_status = TransactionStatus.COMPLETED if approved else TransactionStatus.FAILED

            # Bid debits and grants are settled when written
            if transaction.payment_method in (BID_PLACEMENT, ADMIN_GRANT):
                logger.warning(
                    "Refusing to verify %s record %s", transaction.payment_method, transaction_id
                )
                raise TransactionAlreadyProcessed(transaction_id, transaction.status.value)

            if new_status not in ALLOWED_TRANSITIONS[transaction.status]:
                if self.strict_verification:
                    logger.warning(
                        "Refusing to verify transaction %s: already %s",
                        transaction_id, transaction.status.value,
                    )
                    raise TransactionAlreadyProcessed(transaction_id, transaction.status.value)
                logger.warning(
                    "Re-verifying transaction %s (was %s)", transaction_id, transaction.status.value
                )

            transactions[i] = transaction.model_copy(update={
                "status": new_status,
                "completed_at": utcnow(),
                "admin_notes": notes,
                "verified_by": admin_id,
            })

            if not approved:
                await self.db.transactions.save_all(transactions)
            else:
                users = await self.db.users.get_all()
                u = index_of(users, transaction.user_id, "User")
                users[u].coins += transaction.coins
                await self.db.commit(
                    (self.db.transactions, transactions),
                    (self.db.users, users),
                )

        logger.info(
            "Transaction %s %s by admin %s",
            transaction_id, new_status.value, admin_id,
        )
        return transactions[i]

    async def get_transaction(self, transaction_id: str) -> CoinTransaction:
        transactions = await self.db.transactions.get_all()
        return transactions[index_of(transactions, transaction_id, "Transaction")]

    async def list_pending(self) -> List[CoinTransaction]:
        transactions = await self.db.transactions.get_all()
        return newest_first([t for t in transactions if t.status == TransactionStatus.PENDING])

    async def list_all(self) -> List[CoinTransaction]:
        return newest_first(await self.db.transactions.get_all())

    async def list_for_user(self, user_id: int) -> List[CoinTransaction]:
        transactions = await self.db.transactions.get_all()
        return newest_first([t for t in transactions if t.user_id == user_id])

    async def reconcile(self, user_id: int) -> ReconciliationReport:
        """Compare a stored balance with what the completed ledger records explain"""
        users = await self.db.users.get_all()
        user = users[index_of(users, user_id, "User")]
        completed = [
            t for t in await self.db.transactions.get_all()
            if t.user_id == user_id and t.status == TransactionStatus.COMPLETED
        ]

        purchased = sum(t.coins for t in completed if t.payment_method not in (BID_PLACEMENT, ADMIN_GRANT))
        granted = sum(t.coins for t in completed if t.payment_method == ADMIN_GRANT)
        bid_debits = sum(abs(t.coins) for t in completed if t.payment_method == BID_PLACEMENT)
        expected = user.initial_coins + purchased + granted - bid_debits

        return ReconciliationReport(
            user_id=user_id,
            initial_coins=user.initial_coins,
            purchased_coins=purchased,
            granted_coins=granted,
            bid_debits=bid_debits,
            expected_balance=expected,
            actual_balance=user.coins,
            discrepancy=user.coins - expected,
        )


def parse_bid_amount(value) -> float:
    if isinstance(value, bool) or value is None:
        raise InvalidBid()
    try:
        amount = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        raise InvalidBid()
    if not math.isfinite(amount):
        raise InvalidBid()
    if amount <= 0:
        raise InvalidBid("Please enter a positive amount.")
    return amount


class BidService:
    """
    Records bids. Each bid costs a fixed number of coins, debited from the
    bidder together with a completed bid_placement ledger record.

    The returned receipt only tells the client what to display; no lowest
    unique bid is worked out here and the product is left untouched.
    """

    def __init__(self, db: Database, bid_cost: int = config.BID_COST):
        self.db = db
        self.bid_cost = bid_cost

    async def place_bid(
        self, user_id: int, auction_id: int, bid_amount, now: Optional[datetime] = None
    ) -> BidReceipt:
        now = now or utcnow()

        async with self.db.lock:
            products = await self.db.products.get_all()
            product = products[index_of(products, auction_id, "Product")]
            if not product.is_live(now):
                logger.warning("Bid by user %s rejected: auction %s ended", user_id, auction_id)
                raise AuctionEnded(auction_id)

            amount = parse_bid_amount(bid_amount)

            users = await self.db.users.get_all()
            user = users[index_of(users, user_id, "User")]
            if user.coins < self.bid_cost:
                logger.warning(
                    "Bid by user %s rejected: %s coins, %s needed", user_id, user.coins, self.bid_cost
                )
                raise InsufficientCoins(self.bid_cost, user.coins)

            transactions = await self.db.transactions.get_all()
            user.coins -= self.bid_cost
            ms = int(now.timestamp() * 1000)
            transaction = CoinTransaction(
                id=new_transaction_id(now),
                user_id=user_id,
                package_id=0,
                amount=-self.bid_cost,
                coins=-self.bid_cost,
                payment_method=BID_PLACEMENT,
                payment_reference=f"bid_{auction_id}_{ms}",
                status=TransactionStatus.COMPLETED,
                created_at=now,
                completed_at=now,
                admin_notes=f"Bid placed: {amount:g} on {product.name}",
                auction_id=auction_id,
                bid_amount=amount,
            )
            transactions.append(transaction)
            await self.db.commit(
                (self.db.users, users),
                (self.db.transactions, transactions),
            )

        logger.info(
            "User %s bid %s on auction %s, balance now %s", user_id, amount, auction_id, user.coins
        )
        return BidReceipt(transaction=transaction, balance=user.coins, displayed_lowest_bid=amount)

    async def bid_history(self, user_id: int, auction_id: int) -> List[CoinTransaction]:
        transactions = await self.db.transactions.get_all()
        return newest_first([
            t for t in transactions
            if t.payment_method == BID_PLACEMENT and t.user_id == user_id and t.auction_id == auction_id
        ])
