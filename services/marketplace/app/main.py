"""
Marketplace Service API

This module implements the FastAPI application for the marketplace backend:
buyers place orders whose payment is held in escrow, delivery confirmation
releases the escrow into the sellers' wallets, and sellers request payouts
from their multi-currency balances.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    POST /orders: Place an order (payment held in escrow)
    GET /orders: List orders (buyers see their own, admins see all)
    GET /orders/{order_id}: Get a single order
    PUT /orders/{order_id}/confirm-delivery: Buyer confirms delivery, escrow released
    GET /orders/{order_id}/timeline: Order lifecycle events
    PUT /admin/orders/{order_id}/release-escrow: Admin confirms delivery on the buyer's behalf
    POST /products: List a product (sellers)
    GET /products/{product_id}: Get a product
    POST /products/convert-price: Convert a price between currencies
    GET /currency/rates: Current cached exchange rates
    POST /sellers: Provision a seller (admins)
    GET /sellers/{seller_id}: Seller profile with wallets
    GET /sellers/{seller_id}/wallets: Seller wallets
    GET /sellers/{seller_id}/orders: Recent orders containing the seller's products
    GET /sellers/{seller_id}/products: The seller's active products
    GET /sellers/{seller_id}/transactions: Seller ledger entries
    POST /sellers/{seller_id}/payout: Request a payout

Every failure is returned as {"success": false, "message": ...}.

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "marketplace-service"
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import auth, crud, currency, ledger, models, schemas, settlement
from .config import EXCHANGE_RATE_REFRESH_ENABLED, LOG_LEVEL
from .database import engine, get_db
from .errors import Forbidden, MarketplaceError, NotFound, ValidationError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the exchange rate refresher for the lifetime of the application."""
    refresher = None
    if EXCHANGE_RATE_REFRESH_ENABLED:
        refresher = asyncio.create_task(currency.run_rate_refresher())
    yield
    if refresher is not None:
        refresher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await refresher


app = FastAPI(title="marketplace-service", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        message = "Internal server error"
    else:
        message = exc.message
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


def _ensure_self_or_admin(current_user: auth.CurrentUser, seller_id: int) -> None:
    if current_user.role != "admin" and not (current_user.role == "seller" and current_user.id == seller_id):
        raise Forbidden("Not authorized")


def _get_order_or_404(db: Session, order_id: str) -> models.Order:
    order = crud.get_order(db, order_id=order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def _can_view_order(current_user: auth.CurrentUser, order: models.Order) -> bool:
    if current_user.role == "admin" or order.buyer_id == current_user.id:
        return True
    return current_user.role == "seller" and any(
        item.get("sellerId") == current_user.id for item in (order.items or [])
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the marketplace service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@app.post("/orders", response_model=schemas.OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Place a new order with stock reservation and escrow hold.

    This endpoint:
    - Reserves stock for every item (all-or-nothing)
    - Prices every item in the requested payment currency
    - Holds the payment in escrow and credits each seller's pending balance

    Raises:
        404 if a product or seller does not exist
        400 if stock is insufficient or the request is invalid
    """
    buyer = schemas.BuyerSnapshot(
        userId=current_user.id,
        name=current_user.name,
        email=current_user.email,
        phone=current_user.phone,
    )
    db_order = settlement.create_order(db, buyer, order)
    return schemas.OrderResponse(
        message="Order created successfully. Payment held in escrow.",
        order=crud.order_to_schema(db_order),
    )


@app.get("/orders", response_model=schemas.OrderListResponse)
def list_orders(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    List orders with pagination (buyers see their own, admins see all).
    """
    buyer_id = None if current_user.role == "admin" else current_user.id
    orders = crud.get_orders(db, buyer_id=buyer_id, skip=skip, limit=min(limit, 100))
    return schemas.OrderListResponse(count=len(orders), orders=[crud.order_to_schema(o) for o in orders])


@app.get("/orders/{order_id}", response_model=schemas.OrderResponse)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Get a single order (its buyer, a seller on the order, or an admin).
    """
    db_order = _get_order_or_404(db, order_id)
    if not _can_view_order(current_user, db_order):
        raise Forbidden("Not authorized to view this order")
    return schemas.OrderResponse(message="Order retrieved", order=crud.order_to_schema(db_order))


@app.put("/orders/{order_id}/confirm-delivery", response_model=schemas.OrderResponse)
def confirm_delivery(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Confirm delivery of an order, releasing its escrow to the sellers.

    Raises:
        403 if the requester is not the order's buyer
        404 if the order does not exist
        409 if the escrow was already released
    """
    db_order = settlement.confirm_delivery(db, order_id, current_user.id, schemas.DeliveryConfirmedBy.BUYER)
    return schemas.OrderResponse(
        message="Delivery confirmed. Funds released to sellers.",
        order=crud.order_to_schema(db_order),
    )


@app.put("/admin/orders/{order_id}/release-escrow", response_model=schemas.OrderResponse)
def admin_release_escrow(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """
    Confirm delivery on the buyer's behalf and release the escrow (admin only).
    """
    db_order = settlement.confirm_delivery(db, order_id, current_user.id, schemas.DeliveryConfirmedBy.ADMIN)
    return schemas.OrderResponse(
        message="Delivery confirmed by admin. Funds released to sellers.",
        order=crud.order_to_schema(db_order),
    )


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Get the timeline of events for an order (buyer, seller on the order, or admin).

    Returns:
        List of order events in chronological order
    """
    db_order = _get_order_or_404(db, order_id)
    if not _can_view_order(current_user, db_order):
        raise Forbidden("Not authorized to view this order's timeline")
    return crud.get_order_events(db, order_id)


# ---------------------------------------------------------------------------
# Products and currency
# ---------------------------------------------------------------------------

@app.post("/products", response_model=schemas.ProductResponse, status_code=status.HTTP_201_CREATED)
def create_product(
    product: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_seller)
):
    """
    List a new product for the authenticated seller.
    """
    seller = crud.get_seller(db, current_user.id)
    if seller is None:
        raise NotFound("Seller not found")
    if not seller.is_active:
        raise Forbidden("Seller account is not active")
    db_product = crud.create_product(db, seller.id, product)
    return schemas.ProductResponse(message="Product created", product=crud.product_to_schema(db_product))


@app.get("/products/{product_id}", response_model=schemas.ProductResponse)
def get_product(product_id: int, db: Session = Depends(get_db)):
    db_product = crud.get_product(db, product_id)
    if db_product is None:
        raise NotFound(f"Product not found: {product_id}")
    return schemas.ProductResponse(product=crud.product_to_schema(db_product))


@app.post("/products/convert-price", response_model=schemas.PriceConversionResponse)
def convert_price(request: schemas.PriceConversionRequest):
    """
    Convert a price into another currency using the cached rates.
    """
    from_currency = request.fromCurrency.upper()
    to_currency = request.toCurrency.upper()
    converted = currency.convert(request.price, from_currency, to_currency)
    return schemas.PriceConversionResponse(
        originalPrice=request.price,
        originalCurrency=from_currency,
        convertedPrice=converted,
        targetCurrency=to_currency,
        symbol=currency.currency_symbol(to_currency),
        formattedPrice=currency.format_price(converted, to_currency),
    )


@app.get("/currency/rates", response_model=schemas.RatesResponse)
def get_rates():
    table = currency.rate_table
    return schemas.RatesResponse(base=table.base, updatedAt=table.updated_at, rates=dict(table.rates))


# ---------------------------------------------------------------------------
# Sellers, wallets and payouts
# ---------------------------------------------------------------------------

@app.post("/sellers", response_model=schemas.SellerResponse, status_code=status.HTTP_201_CREATED)
def create_seller(
    seller: schemas.SellerCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """
    Provision a seller with empty USD, GBP, EUR and NGN wallets (admin only).

    Raises:
        400 if the id or email is already taken
    """
    if crud.get_seller(db, seller.id) is not None:
        raise ValidationError("Seller ID already exists")
    if crud.get_seller_by_email(db, seller.email) is not None:
        raise ValidationError("Email already registered")
    db_seller = crud.create_seller(db, seller)
    return schemas.SellerResponse(message="Seller created", seller=crud.seller_to_schema(db_seller))


@app.get("/sellers/{seller_id}", response_model=schemas.SellerResponse)
def get_seller(
    seller_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    _ensure_self_or_admin(current_user, seller_id)
    db_seller = crud.get_seller(db, seller_id)
    if db_seller is None:
        raise NotFound("Seller not found")
    return schemas.SellerResponse(seller=crud.seller_to_schema(db_seller))


@app.get("/sellers/{seller_id}/wallets", response_model=schemas.WalletsResponse)
def get_wallets(
    seller_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    _ensure_self_or_admin(current_user, seller_id)
    db_seller = crud.get_seller(db, seller_id)
    if db_seller is None:
        raise NotFound("Seller not found")
    return schemas.WalletsResponse(wallets=crud.seller_to_schema(db_seller).wallets)


@app.get("/sellers/{seller_id}/orders", response_model=schemas.OrderListResponse)
def list_seller_orders(
    seller_id: int,
    skip: int = 0,
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Recent orders containing the seller's products, newest first.

    Each order lists only this seller's line items.
    """
    _ensure_self_or_admin(current_user, seller_id)
    orders = crud.get_seller_orders(db, seller_id, skip=skip, limit=min(limit, 100))
    return schemas.OrderListResponse(
        count=len(orders),
        orders=[crud.order_to_schema(o, seller_id=seller_id) for o in orders],
    )


@app.get("/sellers/{seller_id}/products", response_model=schemas.ProductListResponse)
def list_seller_products(seller_id: int, skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    products = crud.get_seller_products(db, seller_id, skip=skip, limit=min(limit, 100))
    return schemas.ProductListResponse(
        count=len(products),
        products=[crud.product_to_schema(p) for p in products],
    )


@app.get("/sellers/{seller_id}/transactions", response_model=schemas.TransactionListResponse)
def list_transactions(
    seller_id: int,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    List a seller's ledger entries, newest first.
    """
    _ensure_self_or_admin(current_user, seller_id)
    entries = ledger.list_for_seller(db, seller_id, skip=skip, limit=min(limit, 100))
    return schemas.TransactionListResponse(
        count=len(entries),
        transactions=[crud.transaction_to_schema(e) for e in entries],
    )


@app.post("/sellers/{seller_id}/payout", response_model=schemas.PayoutResponse)
def request_payout(
    seller_id: int,
    payout: schemas.PayoutRequest,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_seller)
):
    """
    Request a payout from the seller's available balance.

    Raises:
        400 if the balance is insufficient
        403 if the requester is not this seller
    """
    if current_user.id != seller_id:
        raise Forbidden("Not authorized")
    wallet, entry = settlement.request_payout(db, seller_id, payout)
    return schemas.PayoutResponse(
        message="Payout request submitted successfully",
        wallet=crud.wallet_to_schema(wallet),
        transaction=crud.transaction_to_schema(entry),
    )
