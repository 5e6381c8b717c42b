"""
Append-only ledger of money movements.

Ledger rows are an audit trail. Wallet rows remain the source of truth for
balances; both are written in the same database transaction by the callers.
"""
import logging
from typing import List, Optional
from sqlalchemy.orm import Session

from . import models
from .currency import quantize_money
from .errors import ValidationError
from .schemas import TransactionStatus, TransactionType

logger = logging.getLogger(__name__)


def record(
    db: Session,
    order_id: Optional[str],
    seller_id: int,
    type: TransactionType,
    amount,
    currency: str,
    status: TransactionStatus,
    description: str,
) -> models.Transaction:
    """
    Append a ledger entry. The entry is flushed but not committed.

    Args:
        db: Database session
        order_id: Order the movement belongs to (None for withdrawals)
        seller_id: Seller whose wallet is affected
        type: Kind of movement
        amount: Non-negative amount in `currency`
        currency: Currency code
        status: Entry status
        description: Free-text description

    Returns:
        The new Transaction row
    """
    amount = quantize_money(amount)
    if amount < 0:
        raise ValidationError(f"Ledger amount must not be negative: {amount}")

    entry = models.Transaction(
        order_id=order_id,
        seller_id=seller_id,
        type=TransactionType(type).value,
        amount=amount,
        currency=currency,
        status=TransactionStatus(status).value,
        description=description,
    )
    db.add(entry)
    db.flush()
    logger.info(f"Ledger: {entry.type} {amount} {currency} seller={seller_id} order={order_id}")
    return entry


def list_for_seller(db: Session, seller_id: int, skip: int = 0, limit: int = 100) -> List[models.Transaction]:
    """Ledger entries for a seller, newest first."""
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.seller_id == seller_id)
        .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_for_order(db: Session, order_id: str) -> List[models.Transaction]:
    """Ledger entries for an order in the order they were written."""
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.order_id == order_id)
        .order_by(models.Transaction.id.asc())
        .all()
    )
