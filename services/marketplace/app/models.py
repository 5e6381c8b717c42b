"""
SQLAlchemy ORM models for the Marketplace service.

Defines the database schema for products, sellers and their wallets, orders,
the order timeline and the transaction ledger.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .database import Base

# JSONB on PostgreSQL, plain JSON everywhere else
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

Money = Numeric(14, 2)


class Seller(Base):
    """
    Seller account owning products and one wallet per currency.

    Attributes:
        id (int): Primary key, matches the seller's user id in issued tokens
        store_name (str): Public store name
        email (str): Business email (unique)
        is_active (bool): Whether the seller can list products
        created_at (datetime): Timestamp when the seller was provisioned
    """
    __tablename__ = "sellers"

    id = Column(Integer, primary_key=True, index=True)
    store_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    wallets = relationship(
        "SellerWallet",
        back_populates="seller",
        cascade="all, delete-orphan",
        order_by="SellerWallet.currency",
    )


class SellerWallet(Base):
    """
    One currency bucket of a seller's wallet.

    Attributes:
        seller_id (int): Owning seller
        currency (str): ISO currency code
        balance (Decimal): Funds available for payout
        pending_balance (Decimal): Funds held in escrow for undelivered orders
        total_earnings (Decimal): Lifetime released funds, never decreases
    """
    __tablename__ = "seller_wallets"
    __table_args__ = (UniqueConstraint("seller_id", "currency", name="uq_seller_wallet_currency"),)

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id"), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    balance = Column(Money, nullable=False, default=0)
    pending_balance = Column(Money, nullable=False, default=0)
    total_earnings = Column(Money, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    seller = relationship("Seller", back_populates="wallets")


class Product(Base):
    """
    Catalog entry listed by a seller.

    Attributes:
        id (int): Primary key
        seller_id (int): Seller who listed the product
        name (str): Product name
        price_amount (Decimal): Canonical price in price_currency
        price_currency (str): Currency the seller priced the product in
        stock (int): Units available, never negative
        is_active (bool): Inactive products cannot be ordered
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price_amount = Column(Money, nullable=False)
    price_currency = Column(String(3), nullable=False, default="USD")
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Order(Base):
    """
    Order model representing one buyer purchase.

    The buyer snapshot, line items and shipping address are stored as JSON
    documents so that later profile or catalog edits never rewrite history.
    Monetary values inside `items` are serialized as strings.

    Attributes:
        id (str): Primary key, human-readable order number (e.g. "ORD-1718000000000-K3J9X2QAB")
        buyer_id (int): ID of the buying user
        buyer (dict): Snapshot of buyer id, name, email, phone
        items (list): Line items with product, seller, price, quantity, subtotal
        payment_* : Payment method, currency, total amount and status
        escrow_* : Escrow status and its timestamps
        status (str): Overall order lifecycle status
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    buyer = Column(JSONDocument, nullable=False)
    items = Column(JSONDocument, nullable=False, default=list)
    shipping_address = Column(JSONDocument, nullable=True)

    payment_method = Column(String, nullable=False)
    payment_currency = Column(String(3), nullable=False)
    payment_amount = Column(Money, nullable=False, default=0)
    payment_status = Column(String, nullable=False, default="pending")

    escrow_status = Column(String, nullable=False, default="held")
    escrow_held_at = Column(DateTime, nullable=True)
    escrow_released_at = Column(DateTime, nullable=True)
    escrow_release_scheduled_for = Column(DateTime, nullable=True)

    shipping_status = Column(String, nullable=False, default="pending")
    status = Column(String, nullable=False, default="pending")

    delivery_confirmed = Column(Boolean, nullable=False, default=False)
    delivery_confirmed_by = Column(String, nullable=True)
    delivery_confirmed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (str): Foreign key to the order
        event_type (str): Type of event (e.g., "created", "escrow_held", "escrow_released")
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user who triggered the event (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Transaction(Base):
    """
    Append-only ledger record of a money movement.

    Rows are only ever inserted. Withdrawals carry no order id.

    Attributes:
        order_id (str): Order the movement belongs to (optional)
        seller_id (int): Seller whose wallet the movement concerns
        type (str): sale, refund, withdrawal, escrow_hold or escrow_release
        amount (Decimal): Amount moved, in `currency`
        status (str): pending, completed or failed
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, default="pending")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
