import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from winzo import config
from winzo.database import check_connection, create_store
from winzo.errors import (
    AuctionEnded,
    DuplicateEmail,
    InsufficientCoins,
    InvalidBid,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    StorageFailure,
    TransactionAlreadyProcessed,
    WinzoError,
)
from winzo.ledger import auction_status
from winzo.repositories import Database
from winzo.schemas import (
    VODAFONE_CASH,
    AuctionStatus,
    BidReceipt,
    CoinPackage,
    CoinTransaction,
    DashboardStats,
    PaymentMethod,
    Product,
    ReconciliationReport,
    Role,
    StoreModel,
    TransactionStatus,
    User,
    VodafoneCashPayment,
)
from winzo.seed import force_reinitialize_database, initialize_database
from winzo.services import Services, build_services

logger = logging.getLogger(__name__)

# Security setup
http_bearer = HTTPBearer()

ERROR_STATUS = [
    (InvalidCredentials, 401),
    (InvalidToken, 401),
    (NotFound, 404),
    (DuplicateEmail, 409),
    (TransactionAlreadyProcessed, 409),
    (InsufficientCoins, 400),
    (AuctionEnded, 400),
    (InvalidBid, 400),
    (StorageFailure, 503),
]


def status_for(exc: WinzoError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def handle_store_error(request: Request, exc: WinzoError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("❌ %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(http_bearer),
    services: Services = Depends(get_services),
) -> User:
    try:
        return await services.auth.current_user(credentials.credentials)
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# Models
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    email: str
    role: str
    name: str
    coins: int


class ProductIn(StoreModel):
    name: str
    description: str = ""
    image: str = ""
    end_time: datetime
    lowest_bid: float = Field(0, ge=0)
    lowest_bidder: str = ""
    ai_hint: str = ""


class ProductOut(Product):
    status: AuctionStatus


class CoinPackageIn(StoreModel):
    name: str
    coins: int = Field(..., ge=0)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = None
    popular: bool = False
    bonus: Optional[int] = None
    description: Optional[str] = None
    is_active: bool = True


class CoinPackageUpdate(StoreModel):
    name: Optional[str] = None
    coins: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = None
    popular: Optional[bool] = None
    bonus: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class PurchaseRequest(StoreModel):
    package_id: int
    payment_method: str = VODAFONE_CASH
    payment_reference: str = ""


class BidRequest(StoreModel):
    amount: Union[float, str]


class VerifyRequest(StoreModel):
    approved: bool
    notes: Optional[str] = None


class GrantRequest(StoreModel):
    coins: int


class VodafoneNumbersRequest(StoreModel):
    numbers: List[str]


def _login_response(user: User, token: str) -> LoginResponse:
    return LoginResponse(
        access_token=token, email=user.email, role=user.role.value, name=user.name, coins=user.coins
    )


def _product_out(product: Product) -> ProductOut:
    return ProductOut(**product.model_dump(), status=auction_status(product))


router = APIRouter()


# Health
@router.get("/")
def read_root():
    return {"message": "WinZO Auction API running"}


@router.get("/test")
async def test_storage(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Available",
        "storage_backend": config.STORAGE_BACKEND,
        "initialized": False,
    }
    if await check_connection(services.db.store):
        response["storage"] = "✅ Connected & Working"
        response["initialized"] = await services.db.is_initialized()
    return response


# Auth endpoints
@router.post("/auth/register", response_model=LoginResponse)
async def register(data: RegisterRequest, services: Services = Depends(get_services)):
    if len(data.password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
    user, token = await services.auth.signup(data.name, str(data.email), data.password)
    return _login_response(user, token)


@router.post("/auth/login", response_model=LoginResponse)
async def login(data: LoginRequest, services: Services = Depends(get_services)):
    user, token = await services.auth.login(data.email, data.password)
    return _login_response(user, token)


@router.get("/auth/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
    return user


# Products - public
@router.get("/products", response_model=List[ProductOut])
async def list_products(services: Services = Depends(get_services)):
    return [_product_out(p) for p in await services.products.fetch_products()]


@router.get("/products/{product_id}", response_model=ProductOut)
async def get_product(product_id: int, services: Services = Depends(get_services)):
    return _product_out(await services.products.get_product(product_id))


# Products - admin
@router.post("/admin/products", response_model=ProductOut)
async def create_product(
    data: ProductIn, _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return _product_out(await services.products.add_product(**data.model_dump()))


# Coin packages
@router.get("/coin-packages", response_model=List[CoinPackage])
async def list_coin_packages(services: Services = Depends(get_services)):
    return await services.coin_packages.fetch_coin_packages()


@router.get("/admin/coin-packages", response_model=List[CoinPackage])
async def list_all_coin_packages(
    _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return await services.coin_packages.fetch_all_coin_packages()


@router.post("/admin/coin-packages", response_model=CoinPackage)
async def create_coin_package(
    data: CoinPackageIn, _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return await services.coin_packages.add_coin_package(**data.model_dump())


@router.put("/admin/coin-packages/{package_id}", response_model=CoinPackage)
async def update_coin_package(
    package_id: int,
    data: CoinPackageUpdate,
    _: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.coin_packages.update_coin_package(
        package_id, data.model_dump(exclude_unset=True, exclude_none=True)
    )


@router.delete("/admin/coin-packages/{package_id}")
async def delete_coin_package(
    package_id: int, _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    await services.coin_packages.delete_coin_package(package_id)
    return {"deleted": True}


# Payment methods and settings
@router.get("/payment-methods", response_model=List[PaymentMethod])
async def list_payment_methods(services: Services = Depends(get_services)):
    return await services.payment_methods.fetch_payment_methods()


@router.get("/settings/vodafone-numbers")
async def get_vodafone_numbers(services: Services = Depends(get_services)):
    return {"numbers": await services.settings.fetch_vodafone_numbers()}


@router.put("/admin/settings/vodafone-numbers")
async def update_vodafone_numbers(
    data: VodafoneNumbersRequest,
    _: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return {"numbers": await services.settings.update_vodafone_numbers(data.numbers)}


# Coin purchases
@router.post("/transactions", response_model=CoinTransaction)
async def create_purchase(
    data: PurchaseRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.transactions.create_package_purchase(
        user.id, data.package_id, data.payment_method, data.payment_reference
    )


@router.post("/transactions/{transaction_id}/payment-proof", response_model=CoinTransaction)
async def submit_payment_proof(
    transaction_id: str,
    data: VodafoneCashPayment,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    transaction = await services.transactions.get_transaction(transaction_id)
    if transaction.user_id != user.id and user.role != Role.ADMIN:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return await services.transactions.attach_payment_proof(transaction_id, data)


@router.get("/transactions/me", response_model=List[CoinTransaction])
async def my_transactions(
    user: User = Depends(get_current_user), services: Services = Depends(get_services)
):
    return await services.transactions.list_for_user(user.id)


# Bids
@router.post("/auctions/{auction_id}/bids", response_model=BidReceipt)
async def place_bid(
    auction_id: int,
    data: BidRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.bids.place_bid(user.id, auction_id, data.amount)


@router.get("/auctions/{auction_id}/bids", response_model=List[CoinTransaction])
async def my_bids(
    auction_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.bids.bid_history(user.id, auction_id)


# Transactions - admin
@router.get("/admin/transactions", response_model=List[CoinTransaction])
async def list_transactions(
    status: Optional[TransactionStatus] = None,
    _: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    transactions = await services.transactions.list_all()
    if status is not None:
        transactions = [t for t in transactions if t.status == status]
    return transactions


@router.get("/admin/transactions/pending", response_model=List[CoinTransaction])
async def list_pending_transactions(
    _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return await services.transactions.list_pending()


@router.patch("/admin/transactions/{transaction_id}/verify", response_model=CoinTransaction)
async def verify_transaction(
    transaction_id: str,
    data: VerifyRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    notes = data.notes.strip() if data.notes else None
    return await services.transactions.verify(transaction_id, data.approved, admin.id, notes or None)


# Users - admin
@router.get("/admin/users", response_model=List[User])
async def list_users(_: User = Depends(require_admin), services: Services = Depends(get_services)):
    return await services.users.fetch_users()


@router.post("/admin/users/{user_id}/grant", response_model=User)
async def grant_coins(
    user_id: int,
    data: GrantRequest,
    admin: User = Depends(require_admin),
    services: Services = Depends(get_services),
):
    if data.coins == 0:
        raise HTTPException(status_code=400, detail="Please enter a coin amount")
    return await services.users.grant_coins(user_id, data.coins, admin_id=admin.id)


@router.get("/admin/users/{user_id}/audit", response_model=ReconciliationReport)
async def audit_user(
    user_id: int, _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return await services.transactions.reconcile(user_id)


@router.get("/admin/stats", response_model=DashboardStats)
async def dashboard_stats(
    _: User = Depends(require_admin), services: Services = Depends(get_services)
):
    return await services.admin.dashboard_stats()


@router.post("/admin/reset")
async def reset_store(_: User = Depends(require_admin), services: Services = Depends(get_services)):
    if not config.DEV_MODE:
        raise HTTPException(status_code=404, detail="Not Found")
    await force_reinitialize_database(services.db)
    return {"reset": True}


def create_app(database: Optional[Database] = None, seed: bool = True) -> FastAPI:
    services = build_services(database or Database(create_store()))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if seed:
            await initialize_database(services.db)
        yield

    app = FastAPI(title="WinZO Auction API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WinzoError, handle_store_error)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config.configure_logging()
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
