"""
Seller wallet accounting.

Each seller owns one `SellerWallet` row per currency. `hold`, `release` and
`withdraw` mutate a single bucket in memory; the caller commits the session.
Balances are never clamped: an operation that would leave `balance` or
`pending_balance` negative raises instead.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional
from sqlalchemy.orm import Session

from . import models
from .currency import quantize_money
from .errors import InsufficientBalance, NotFound, ValidationError, WalletInvariantError

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _checked_amount(amount) -> Decimal:
    quantized = quantize_money(amount)
    if quantized != Decimal(str(amount)):
        raise ValidationError(f"Amount must have at most 2 decimal places: {amount}")
    if quantized < 0:
        raise ValidationError(f"Amount must not be negative: {quantized}")
    return quantized


def hold(wallet: models.SellerWallet, amount) -> models.SellerWallet:
    """Move funds into escrow: pending_balance += amount."""
    amount = _checked_amount(amount)
    wallet.pending_balance = quantize_money(wallet.pending_balance) + amount
    return wallet


def release(wallet: models.SellerWallet, amount) -> models.SellerWallet:
    """
    Release escrowed funds to the seller.

    pending_balance -= amount, balance += amount, total_earnings += amount.

    Raises:
        WalletInvariantError: If fewer funds are pending than are being released
    """
    amount = _checked_amount(amount)
    pending = quantize_money(wallet.pending_balance)
    if pending < amount:
        raise WalletInvariantError(
            f"Cannot release {amount} {wallet.currency} for seller {wallet.seller_id}: "
            f"only {pending} pending"
        )
    wallet.pending_balance = pending - amount
    wallet.balance = quantize_money(wallet.balance) + amount
    wallet.total_earnings = quantize_money(wallet.total_earnings) + amount
    return wallet


def withdraw(wallet: models.SellerWallet, amount) -> models.SellerWallet:
    """
    Take funds out of the available balance for a payout.

    Raises:
        ValidationError: If amount is not a positive number of cents
        InsufficientBalance: If balance < amount
    """
    amount = _checked_amount(amount)
    if amount == 0:
        raise ValidationError("Payout amount must be positive")
    balance = quantize_money(wallet.balance)
    if balance < amount:
        raise InsufficientBalance(
            f"Insufficient balance: {balance} {wallet.currency} available, {amount} requested"
        )
    wallet.balance = balance - amount
    return wallet


def new_wallet(seller_id: int, currency: str) -> models.SellerWallet:
    return models.SellerWallet(
        seller_id=seller_id,
        currency=currency,
        balance=ZERO,
        pending_balance=ZERO,
        total_earnings=ZERO,
    )


def open_wallets(seller: models.Seller, currencies: Iterable[str]) -> None:
    """Create empty wallet buckets for any of `currencies` the seller lacks."""
    existing = {wallet.currency for wallet in seller.wallets}
    for currency in currencies:
        if currency not in existing:
            seller.wallets.append(new_wallet(seller.id, currency))


def get_wallet_for_update(db: Session, seller_id: int, currency: str, create: bool = False) -> models.SellerWallet:
    """
    Load a seller's wallet bucket with a row lock held until commit.

    Args:
        db: Database session
        seller_id: Seller owning the wallet
        currency: Currency of the bucket
        create: Open the bucket if the seller exists but has none in this currency

    Raises:
        NotFound: If the seller (or, with create=False, the bucket) does not exist
    """
    wallet = _locked_wallet(db, seller_id, currency)
    if wallet is not None:
        return wallet

    seller = db.query(models.Seller).filter(models.Seller.id == seller_id).first()
    if seller is None:
        raise NotFound(f"Seller not found: {seller_id}")
    if not create:
        raise NotFound(f"Seller {seller_id} has no {currency} wallet")

    wallet = new_wallet(seller_id, currency)
    db.add(wallet)
    db.flush()
    logger.info(f"Opened {currency} wallet for seller {seller_id}")
    return wallet


def _locked_wallet(db: Session, seller_id: int, currency: str) -> Optional[models.SellerWallet]:
    return (
        db.query(models.SellerWallet)
        .filter(
            models.SellerWallet.seller_id == seller_id,
            models.SellerWallet.currency == currency,
        )
        .with_for_update()
        .first()
    )
