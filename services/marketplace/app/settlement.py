"""
Order settlement: escrow hold at purchase, escrow release on delivery.

Both workflows run inside the caller's session as one database transaction.
Nothing is committed until every step has succeeded; any failure rolls back
stock reservations, the order, ledger entries and wallet changes together.

Order states:
    created -> escrow held (status "pending", payment "processing")
            -> delivery confirmed, escrow released (status "completed")
"""
import logging
import random
import string
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import currency, inventory, ledger, models, schemas, validators, wallets
from .config import ESCROW_RELEASE_DAYS
from .errors import EscrowStateError, Forbidden, NotFound
from .schemas import (
    DeliveryConfirmedBy, EscrowStatus, OrderStatus, PaymentStatus, TransactionStatus, TransactionType,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """Human-readable unique order number, e.g. ORD-1718000000000-K3J9X2QAB."""
    suffix = "".join(random.choices(ORDER_NUMBER_ALPHABET, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def log_order_event(
    db: Session,
    order_id: str,
    event_type: str,
    description: str,
    old_value: str = None,
    new_value: str = None,
    user_id: int = None
) -> None:
    """
    Append an event to the order timeline (committed with the surrounding transaction).

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "escrow_held", "escrow_released")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User who triggered the event (optional)
    """
    db.add(models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id
    ))


def amounts_by_seller(items: List[dict]) -> List[Tuple[int, Decimal]]:
    """
    Sum line item subtotals per seller.

    Returned in seller id order, which is the order wallet rows are locked in.
    """
    totals: Dict[int, Decimal] = {}
    for item in items:
        seller_id = item["sellerId"]
        totals[seller_id] = totals.get(seller_id, Decimal("0.00")) + Decimal(str(item["subtotal"]))
    return sorted(totals.items())


def create_order(db: Session, buyer: schemas.BuyerSnapshot, order_in: schemas.OrderCreate) -> models.Order:
    """
    Place an order and hold its payment in escrow.

    Steps, in order:
        1. Reserve stock for each product, in product id order.
        2. Price each item in the payment currency and compute its subtotal,
           keeping the items in request order.
        3. Persist the order with payment "processing" and escrow "held", and
           check the stored total against the stored items.
        4. For each item append an escrow_hold ledger entry, then add each
           seller's share to their pending balance in seller id order.

    Args:
        db: Database session
        buyer: Buyer snapshot captured from the authenticated user
        order_in: Validated order request

    Returns:
        The committed order

    Raises:
        ValidationError: If the item list breaks business rules
        NotFound: If a product or seller does not exist
        InsufficientStock: If a product cannot cover the requested quantity
    """
    validators.validate_order_items(order_in.items)
    payment_currency = order_in.paymentCurrency.value

    try:
        # Stock rows are locked in product id order so concurrent orders cannot deadlock
        quantities: Dict[int, int] = {}
        for item in order_in.items:
            quantities[item.productId] = quantities.get(item.productId, 0) + item.quantity
        products = {
            product_id: inventory.reserve_stock(db, product_id, quantities[product_id])
            for product_id in sorted(quantities)
        }

        order_items: List[dict] = []
        total = Decimal("0.00")
        for item in order_in.items:
            product = products[item.productId]
            unit_price = currency.convert(product.price_amount, product.price_currency, payment_currency)
            subtotal = unit_price * item.quantity
            order_items.append({
                "productId": product.id,
                "sellerId": product.seller_id,
                "name": product.name,
                "price": {"amount": str(unit_price), "currency": payment_currency},
                "quantity": item.quantity,
                "subtotal": str(subtotal),
            })
            total += subtotal

        now = datetime.utcnow()
        order = models.Order(
            id=generate_order_number(),
            buyer_id=buyer.userId,
            buyer=buyer.model_dump(),
            items=order_items,
            shipping_address=order_in.shippingAddress.model_dump() if order_in.shippingAddress else None,
            payment_method=order_in.paymentMethod.value,
            payment_currency=payment_currency,
            payment_amount=total,
            payment_status=PaymentStatus.PROCESSING.value,
            escrow_status=EscrowStatus.HELD.value,
            escrow_held_at=now,
            escrow_release_scheduled_for=now + timedelta(days=ESCROW_RELEASE_DAYS),
            status=OrderStatus.PENDING.value,
            created_at=now,
        )
        db.add(order)
        db.flush()
        db.refresh(order)
        validators.validate_order_total(order.items, order.payment_amount)
        log_order_event(
            db, order.id, "created",
            f"Order created with {len(order_items)} item(s), total {total} {payment_currency}",
            new_value=order.status, user_id=buyer.userId,
        )

        for item in order_items:
            ledger.record(
                db, order.id, item["sellerId"], TransactionType.ESCROW_HOLD, Decimal(item["subtotal"]),
                payment_currency, TransactionStatus.PENDING, f"Payment held in escrow for order {order.id}",
            )
        for seller_id, amount in amounts_by_seller(order_items):
            wallet = wallets.get_wallet_for_update(db, seller_id, payment_currency, create=True)
            wallets.hold(wallet, amount)

        log_order_event(
            db, order.id, "escrow_held", f"Payment of {total} {payment_currency} held in escrow",
            new_value=EscrowStatus.HELD.value, user_id=buyer.userId,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(f"Order {order.id} created for buyer {buyer.userId}: {total} {payment_currency} held in escrow")
    return order


def confirm_delivery(
    db: Session,
    order_id: str,
    requesting_user_id: Optional[int],
    confirmed_by: DeliveryConfirmedBy = DeliveryConfirmedBy.BUYER,
) -> models.Order:
    """
    Confirm delivery of an order and release its escrow to the sellers.

    The escrow transition is a conditional update from "held" to "released",
    so of two concurrent confirmations exactly one proceeds; the other, and any
    later repeat, fails with EscrowStateError and changes nothing.

    Args:
        db: Database session
        order_id: Order to confirm
        requesting_user_id: User confirming; must be the buyer unless confirmed_by is admin/auto
        confirmed_by: Who confirmed delivery

    Returns:
        The committed, completed order

    Raises:
        NotFound: If the order or a seller wallet does not exist
        Forbidden: If a buyer confirmation comes from someone other than the buyer
        EscrowStateError: If the escrow is not currently held
        WalletInvariantError: If a seller has less pending than is being released
    """
    confirmed_by = DeliveryConfirmedBy(confirmed_by)
    order = db.query(models.Order).filter(models.Order.id == order_id).first()
    if order is None:
        raise NotFound("Order not found")
    if confirmed_by == DeliveryConfirmedBy.BUYER and order.buyer_id != requesting_user_id:
        raise Forbidden("Not authorized")

    try:
        now = datetime.utcnow()
        result = db.execute(
            update(models.Order)
            .where(models.Order.id == order_id, models.Order.escrow_status == EscrowStatus.HELD.value)
            .values(
                escrow_status=EscrowStatus.RELEASED.value,
                escrow_released_at=now,
                delivery_confirmed=True,
                delivery_confirmed_by=confirmed_by.value,
                delivery_confirmed_at=now,
                status=OrderStatus.COMPLETED.value,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.refresh(order)
            raise EscrowStateError(f"Escrow for order {order_id} is already {order.escrow_status}")

        payment_currency = order.payment_currency
        for item in order.items:
            ledger.record(
                db, order.id, item["sellerId"], TransactionType.ESCROW_RELEASE, Decimal(str(item["subtotal"])),
                payment_currency, TransactionStatus.COMPLETED, f"Payment released from escrow for order {order.id}",
            )
        for seller_id, amount in amounts_by_seller(order.items):
            wallet = wallets.get_wallet_for_update(db, seller_id, payment_currency)
            wallets.release(wallet, amount)

        log_order_event(
            db, order.id, "delivery_confirmed", f"Delivery confirmed by {confirmed_by.value}",
            old_value=EscrowStatus.HELD.value, new_value=OrderStatus.COMPLETED.value, user_id=requesting_user_id,
        )
        log_order_event(
            db, order.id, "escrow_released",
            f"Payment of {order.payment_amount} {payment_currency} released to sellers",
            old_value=EscrowStatus.HELD.value, new_value=EscrowStatus.RELEASED.value, user_id=requesting_user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(f"Order {order.id} delivery confirmed by {confirmed_by.value}; escrow released")
    return order


def request_payout(db: Session, seller_id: int, payout: schemas.PayoutRequest):
    """
    Withdraw from a seller's available balance and record the withdrawal.

    Returns:
        Tuple of (wallet, ledger entry), both committed

    Raises:
        NotFound: If the seller or wallet does not exist
        InsufficientBalance: If the balance cannot cover the payout
    """
    payout_currency = payout.currency.value
    try:
        wallet = wallets.get_wallet_for_update(db, seller_id, payout_currency)
        wallets.withdraw(wallet, payout.amount)
        entry = ledger.record(
            db, None, seller_id, TransactionType.WITHDRAWAL, payout.amount, payout_currency,
            TransactionStatus.PENDING, f"Payout of {currency.quantize_money(payout.amount)} {payout_currency} requested",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(wallet)
    db.refresh(entry)
    logger.info(f"Seller {seller_id} payout of {payout.amount} {payout_currency} submitted")
    return wallet, entry
