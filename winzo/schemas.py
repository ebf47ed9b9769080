"""
Record Schemas for the WinZO auction store

Each persisted model is one element of a collection stored as a JSON array
under a fixed key of the key-value store. Records are written with camelCase
keys (userId, createdAt, lowestBid, ...) and accepted by either the camelCase
alias or the Python field name.

Collections:
- users (DatabaseUser)
- products (Product)
- coin packages (CoinPackage)
- transactions (CoinTransaction)
- payment methods (PaymentMethod)
- settings (StoreSettings, a single object)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


class StoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    # Declared for compatibility with stored data; no operation assigns it.
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
}

# Payment method sentinels that are not real payment rails
VODAFONE_CASH = "vodafone_cash"
BID_PLACEMENT = "bid_placement"
ADMIN_GRANT = "admin_grant"


class User(StoreModel):
    """
    Users collection schema, as returned by every read API (no password)
    Key: "winzo_users"
    """
    id: int = Field(..., description="Max existing id + 1")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Unique email address")
    role: Role = Field(Role.USER, description="Role: user or admin")
    coins: int = Field(0, ge=0, description="Current coin balance")
    initial_coins: int = Field(0, description="Opening balance granted at signup or seeding")


class DatabaseUser(User):
    """User record as persisted, including the password hash"""
    password: str = Field(..., description="Password hash (not plain text)")

    def public(self) -> User:
        return User(**self.model_dump(exclude={"password"}))


class Product(StoreModel):
    """
    Products collection schema: one auction item each
    Key: "winzo_products"
    """
    id: int
    name: str
    description: str = ""
    image: str = ""
    end_time: UTCDateTime = Field(..., description="Auction is live while now < end_time")
    lowest_bid: float = Field(0, description="Lowest bid shown to bidders")
    lowest_bidder: str = ""
    ai_hint: str = Field("", description="Free-text bidding advice")

    def is_live(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) < self.end_time


class AuctionStatus(str, Enum):
    LIVE = "live"
    ENDING_SOON = "ending_soon"
    ENDED = "ended"


class CoinPackage(StoreModel):
    """
    Coin packages collection schema
    Key: "winzo_coin_packages"
    """
    id: int
    name: str
    coins: int = Field(..., ge=0)
    price: float = Field(..., ge=0, description="Price in EGP")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    popular: bool = False
    bonus: Optional[int] = Field(None, ge=0, description="Extra coins on top of coins")
    description: Optional[str] = None
    is_active: bool = Field(True, description="Only active packages are offered to users")

    @property
    def total_coins(self) -> int:
        return self.coins + (self.bonus or 0)


class CoinTransaction(StoreModel):
    """
    Coin transactions collection schema: the coin ledger
    Key: "winzo_transactions"

    Purchases carry positive amount/coins and wait for admin verification.
    Bid debits (payment_method "bid_placement") carry negative amount/coins
    and are completed on creation.
    """
    id: str
    user_id: int
    package_id: int = Field(0, description="0 for bid debits and admin grants")
    amount: float = Field(..., description="EGP paid; negative for bid debits")
    coins: int = Field(..., description="Coins credited when completed; negative for bid debits")
    payment_method: str
    payment_reference: str = ""
    vodafone_number: Optional[str] = None
    payment_screenshot: Optional[str] = Field(None, description="Base64 encoded image or file URI")
    screenshot_file_name: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: UTCDateTime = Field(default_factory=utcnow)
    completed_at: Optional[UTCDateTime] = None
    admin_notes: Optional[str] = None
    verified_by: Optional[int] = Field(None, description="Admin id that verified the transaction")
    auction_id: Optional[int] = None
    bid_amount: Optional[float] = None


class PaymentMethodType(str, Enum):
    VODAFONE_CASH = "vodafone_cash"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"


class PaymentMethod(StoreModel):
    """
    Payment methods collection schema
    Key: "winzo_payment_methods"
    """
    id: str
    name: str
    type: PaymentMethodType
    is_active: bool = True
    instructions: List[str] = Field(default_factory=list)
    account_numbers: Optional[List[str]] = None


class StoreFlags(StoreModel):
    is_store_enabled: bool = True
    maintenance_message: Optional[str] = None
    support_contact: str = ""


class StoreSettings(StoreModel):
    """
    Settings object
    Key: "winzo_settings"
    """
    vodafone_cash_numbers: Optional[List[str]] = None
    store_settings: StoreFlags = Field(default_factory=StoreFlags)


class VodafoneCashPayment(StoreModel):
    """Payment evidence submitted for a pending purchase"""
    sender_number: str
    receiver_number: str = ""
    amount: float = 0
    reference: str
    transaction_id: Optional[str] = None
    payment_screenshot: Optional[str] = None
    screenshot_file_name: Optional[str] = None


class TokenClaims(StoreModel):
    user_id: int
    email: str
    role: Role
    issued_at: UTCDateTime
    expires_at: UTCDateTime


class BidReceipt(StoreModel):
    transaction: CoinTransaction
    balance: int = Field(..., description="Coin balance after the debit")
    displayed_lowest_bid: float = Field(..., description="Client-side display value only")


class ReconciliationReport(StoreModel):
    user_id: int
    initial_coins: int
    purchased_coins: int
    granted_coins: int
    bid_debits: int
    expected_balance: int
    actual_balance: int
    discrepancy: int


class DashboardStats(StoreModel):
    users: int
    products: int
    live_auctions: int
    pending_transactions: int
    coins_in_circulation: int
