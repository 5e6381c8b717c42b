"""
Pydantic schemas for request/response validation in the Marketplace service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class Currency(str, Enum):
    """Currencies accepted for prices, payments, wallets and ledger entries."""
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    NGN = "NGN"
    GHS = "GHS"
    ZAR = "ZAR"
    KES = "KES"
    JPY = "JPY"
    CNY = "CNY"
    INR = "INR"
    CAD = "CAD"
    AUD = "AUD"
    BRL = "BRL"
    MXN = "MXN"


# Wallet buckets every seller starts with
DEFAULT_WALLET_CURRENCIES = (Currency.USD, Currency.GBP, Currency.EUR, Currency.NGN)


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    STRIPE = "stripe"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class EscrowStatus(str, Enum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DeliveryConfirmedBy(str, Enum):
    BUYER = "buyer"
    AUTO = "auto"
    ADMIN = "admin"


class TransactionType(str, Enum):
    SALE = "sale"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"
    ESCROW_HOLD = "escrow_hold"
    ESCROW_RELEASE = "escrow_release"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Price(BaseModel):
    """An amount in a given currency."""
    amount: Decimal = Field(..., ge=0)
    currency: Currency


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderItemRequest(BaseModel):
    """Schema for one requested line item."""
    productId: int = Field(..., description="Product to buy")
    quantity: int = Field(..., gt=0, le=10000, description="Quantity ordered")


class ShippingAddress(BaseModel):
    fullName: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postalCode: Optional[str] = None
    phone: Optional[str] = None


class OrderCreate(BaseModel):
    """Schema for placing a new order."""
    items: List[OrderItemRequest] = Field(..., description="Requested line items")
    shippingAddress: Optional[ShippingAddress] = None
    paymentMethod: PaymentMethod
    paymentCurrency: Currency


class BuyerSnapshot(BaseModel):
    userId: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class OrderItem(BaseModel):
    """Line item as persisted on an order, priced in the payment currency."""
    productId: int
    sellerId: int
    name: str
    price: Price
    quantity: int
    subtotal: Decimal


class Payment(BaseModel):
    method: PaymentMethod
    currency: Currency
    amount: Decimal
    status: PaymentStatus


class Escrow(BaseModel):
    status: EscrowStatus
    heldAt: Optional[datetime] = None
    releasedAt: Optional[datetime] = None
    releaseScheduledFor: Optional[datetime] = None


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (str): Order number
        buyer (BuyerSnapshot): Buyer details captured at order time
        items (List[OrderItem]): Line items
        payment (Payment): Payment method, currency, amount and status
        escrow (Escrow): Escrow status and timestamps
        status (str): Order lifecycle status
    """
    id: str
    buyer: BuyerSnapshot
    items: List[OrderItem]
    shippingAddress: Optional[ShippingAddress] = None
    payment: Payment
    escrow: Escrow
    shippingStatus: str
    status: OrderStatus
    deliveryConfirmed: bool
    deliveryConfirmedBy: Optional[DeliveryConfirmedBy] = None
    deliveryConfirmedAt: Optional[datetime] = None
    createdAt: datetime


class OrderResponse(BaseModel):
    success: bool = True
    message: str
    order: Order


class OrderListResponse(BaseModel):
    success: bool = True
    count: int
    orders: List[Order]


class OrderEvent(BaseModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (str): Order identifier
        event_type (str): Type of event (created, escrow_held, escrow_released)
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User who triggered the event (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: str
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

class ProductCreate(BaseModel):
    """Schema for listing a new product."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Price
    stock: int = Field(0, ge=0)


class Product(BaseModel):
    id: int
    sellerId: int
    name: str
    description: Optional[str] = None
    price: Price
    stock: int
    isActive: bool


class ProductResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    product: Product


class ProductListResponse(BaseModel):
    success: bool = True
    count: int
    products: List[Product]


class PriceConversionRequest(BaseModel):
    price: Decimal = Field(..., ge=0)
    fromCurrency: str = Field(..., min_length=3, max_length=3)
    toCurrency: str = Field(..., min_length=3, max_length=3)


class PriceConversionResponse(BaseModel):
    success: bool = True
    originalPrice: Decimal
    originalCurrency: str
    convertedPrice: Decimal
    targetCurrency: str
    symbol: str
    formattedPrice: str


class RatesResponse(BaseModel):
    success: bool = True
    base: str
    updatedAt: Optional[datetime] = None
    rates: Dict[str, Decimal]


# ---------------------------------------------------------------------------
# Sellers, wallets and the ledger
# ---------------------------------------------------------------------------

class SellerCreate(BaseModel):
    """Schema for provisioning a seller. The id must match the seller's user id."""
    id: int
    storeName: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class Wallet(BaseModel):
    currency: str
    balance: Decimal
    pendingBalance: Decimal
    totalEarnings: Decimal


class Seller(BaseModel):
    id: int
    storeName: str
    email: str
    isActive: bool
    wallets: Dict[str, Wallet]


class SellerResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    seller: Seller


class WalletsResponse(BaseModel):
    success: bool = True
    wallets: Dict[str, Wallet]


class PayoutRequest(BaseModel):
    currency: Currency
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class Transaction(BaseModel):
    id: int
    orderId: Optional[str] = None
    sellerId: int
    type: TransactionType
    amount: Decimal
    currency: str
    status: TransactionStatus
    description: Optional[str] = None
    createdAt: datetime


class PayoutResponse(BaseModel):
    success: bool = True
    message: str
    wallet: Wallet
    transaction: Transaction


class TransactionListResponse(BaseModel):
    success: bool = True
    count: int
    transactions: List[Transaction]
