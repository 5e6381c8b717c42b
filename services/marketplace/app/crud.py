"""
CRUD (Create, Read, Update, Delete) operations for the Marketplace service.

This module contains the plain database reads and writes, plus the
conversions from ORM rows to response schemas. Money-moving workflows live
in `settlement`.
"""
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging
from . import models, schemas, wallets

# Set up logging
logger = logging.getLogger(__name__)


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    """
    Retrieve a single order by its order number.

    Args:
        db: Database session
        order_id: Order number

    Returns:
        Order object or None if not found
    """
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_orders(db: Session, buyer_id: Optional[int] = None, skip: int = 0, limit: int = 100) -> List[models.Order]:
    """
    Retrieve orders, newest first, optionally restricted to one buyer.

    Args:
        db: Database session
        buyer_id: Only return this buyer's orders when given
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of Order objects
    """
    query = db.query(models.Order)
    if buyer_id is not None:
        query = query.filter(models.Order.buyer_id == buyer_id)
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_seller_orders(db: Session, seller_id: int, skip: int = 0, limit: int = 100) -> List[models.Order]:
    """
    Retrieve orders containing at least one of a seller's products, newest first.

    Every order line leaves an escrow_hold ledger entry for its seller, so
    the ledger says which orders a seller takes part in.

    Args:
        db: Database session
        seller_id: Seller whose orders to list
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of Order objects
    """
    order_ids = select(models.Transaction.order_id).where(
        models.Transaction.seller_id == seller_id,
        models.Transaction.type == schemas.TransactionType.ESCROW_HOLD.value,
    )
    return db.query(models.Order).filter(
        models.Order.id.in_(order_ids)
    ).order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_order_events(db: Session, order_id: str) -> List[models.OrderEvent]:
    return db.query(models.OrderEvent).filter(
        models.OrderEvent.order_id == order_id
    ).order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc()).all()


def get_product(db: Session, product_id: int) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_seller_products(db: Session, seller_id: int, skip: int = 0, limit: int = 100) -> List[models.Product]:
    return db.query(models.Product).filter(
        models.Product.seller_id == seller_id,
        models.Product.is_active.is_(True),
    ).order_by(models.Product.id.asc()).offset(skip).limit(limit).all()


def create_product(db: Session, seller_id: int, product: schemas.ProductCreate) -> models.Product:
    """
    List a new product for a seller.

    Args:
        db: Database session
        seller_id: Seller listing the product
        product: Product data

    Returns:
        Created Product object
    """
    db_product = models.Product(
        seller_id=seller_id,
        name=product.name,
        description=product.description,
        price_amount=product.price.amount,
        price_currency=product.price.currency.value,
        stock=product.stock,
        is_active=True,
    )
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    logger.info(f"Seller {seller_id} listed product {db_product.id} with stock {db_product.stock}")
    return db_product


def get_seller(db: Session, seller_id: int) -> Optional[models.Seller]:
    return db.query(models.Seller).filter(models.Seller.id == seller_id).first()


def get_seller_by_email(db: Session, email: str) -> Optional[models.Seller]:
    return db.query(models.Seller).filter(models.Seller.email == email.lower()).first()


def create_seller(db: Session, seller: schemas.SellerCreate) -> models.Seller:
    """
    Provision a seller with empty wallets in the default currencies.

    Args:
        db: Database session
        seller: Seller data

    Returns:
        Created Seller object
    """
    db_seller = models.Seller(
        id=seller.id,
        store_name=seller.storeName,
        email=seller.email.lower(),
        is_active=True,
    )
    wallets.open_wallets(db_seller, [c.value for c in schemas.DEFAULT_WALLET_CURRENCIES])
    db.add(db_seller)
    db.commit()
    db.refresh(db_seller)
    logger.info(f"Provisioned seller {db_seller.id} ({db_seller.store_name})")
    return db_seller


# ---------------------------------------------------------------------------
# Row -> schema conversions
# ---------------------------------------------------------------------------

def order_to_schema(order: models.Order, seller_id: Optional[int] = None) -> schemas.Order:
    """Convert an order; with `seller_id`, only that seller's line items are included."""
    items = order.items or []
    if seller_id is not None:
        items = [item for item in items if item["sellerId"] == seller_id]
    return schemas.Order(
        id=order.id,
        buyer=order.buyer,
        items=items,
        shippingAddress=order.shipping_address,
        payment=schemas.Payment(
            method=order.payment_method,
            currency=order.payment_currency,
            amount=order.payment_amount,
            status=order.payment_status,
        ),
        escrow=schemas.Escrow(
            status=order.escrow_status,
            heldAt=order.escrow_held_at,
            releasedAt=order.escrow_released_at,
            releaseScheduledFor=order.escrow_release_scheduled_for,
        ),
        shippingStatus=order.shipping_status,
        status=order.status,
        deliveryConfirmed=order.delivery_confirmed,
        deliveryConfirmedBy=order.delivery_confirmed_by,
        deliveryConfirmedAt=order.delivery_confirmed_at,
        createdAt=order.created_at,
    )


def product_to_schema(product: models.Product) -> schemas.Product:
    return schemas.Product(
        id=product.id,
        sellerId=product.seller_id,
        name=product.name,
        description=product.description,
        price=schemas.Price(amount=product.price_amount, currency=product.price_currency),
        stock=product.stock,
        isActive=product.is_active,
    )


def wallet_to_schema(wallet: models.SellerWallet) -> schemas.Wallet:
    return schemas.Wallet(
        currency=wallet.currency,
        balance=wallet.balance,
        pendingBalance=wallet.pending_balance,
        totalEarnings=wallet.total_earnings,
    )


def seller_to_schema(seller: models.Seller) -> schemas.Seller:
    return schemas.Seller(
        id=seller.id,
        storeName=seller.store_name,
        email=seller.email,
        isActive=seller.is_active,
        wallets={wallet.currency: wallet_to_schema(wallet) for wallet in seller.wallets},
    )


def transaction_to_schema(entry: models.Transaction) -> schemas.Transaction:
    return schemas.Transaction(
        id=entry.id,
        orderId=entry.order_id,
        sellerId=entry.seller_id,
        type=entry.type,
        amount=entry.amount,
        currency=entry.currency,
        status=entry.status,
        description=entry.description,
        createdAt=entry.created_at,
    )
