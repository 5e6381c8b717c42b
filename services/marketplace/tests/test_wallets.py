from decimal import Decimal

import pytest

from app import models, wallets
from app.errors import InsufficientBalance, NotFound, ValidationError, WalletInvariantError

from conftest import SELLER_ID, get_wallet


def bucket(balance="0", pending="0", earnings="0"):
    return models.SellerWallet(
        seller_id=SELLER_ID,
        currency="USD",
        balance=Decimal(balance),
        pending_balance=Decimal(pending),
        total_earnings=Decimal(earnings),
    )


def test_hold_then_release_conserves_pending():
    wallet = bucket(balance="10.00", pending="5.00", earnings="10.00")

    wallets.hold(wallet, Decimal("25.50"))
    wallets.release(wallet, Decimal("25.50"))

    assert wallet.pending_balance == Decimal("5.00")
    assert wallet.balance == Decimal("35.50")
    assert wallet.total_earnings == Decimal("35.50")


def test_release_more_than_pending_fails_loudly():
    wallet = bucket(pending="10.00")

    with pytest.raises(WalletInvariantError):
        wallets.release(wallet, Decimal("10.01"))

    assert wallet.pending_balance == Decimal("10.00")
    assert wallet.balance == Decimal("0")


def test_withdraw_reduces_balance():
    wallet = bucket(balance="100.00", earnings="100.00")

    wallets.withdraw(wallet, Decimal("40.00"))

    assert wallet.balance == Decimal("60.00")
    assert wallet.total_earnings == Decimal("100.00")


def test_withdraw_rejects_overdraft():
    wallet = bucket(balance="30.00")

    with pytest.raises(InsufficientBalance):
        wallets.withdraw(wallet, Decimal("30.01"))

    assert wallet.balance == Decimal("30.00")


@pytest.mark.parametrize("operation", [wallets.hold, wallets.release, wallets.withdraw])
def test_negative_amounts_are_rejected(operation):
    wallet = bucket(balance="50.00", pending="50.00")

    with pytest.raises(ValidationError):
        operation(wallet, Decimal("-1.00"))


@pytest.mark.parametrize("amount", ["0.004", "10.005", "0.00"])
def test_withdraw_rejects_sub_cent_and_zero_amounts(amount):
    wallet = bucket(balance="50.00")

    with pytest.raises(ValidationError):
        wallets.withdraw(wallet, Decimal(amount))

    assert wallet.balance == Decimal("50.00")


def test_seller_starts_with_default_wallets(db, seller):
    assert sorted(w.currency for w in seller.wallets) == ["EUR", "GBP", "NGN", "USD"]
    usd = get_wallet(db, seller.id, "USD")
    assert usd.balance == 0 and usd.pending_balance == 0 and usd.total_earnings == 0


def test_get_wallet_opens_missing_bucket_on_request(db, seller):
    wallet = wallets.get_wallet_for_update(db, seller.id, "KES", create=True)
    db.commit()

    assert wallet.currency == "KES"
    assert get_wallet(db, seller.id, "KES").pending_balance == 0


def test_get_wallet_missing_bucket_without_create(db, seller):
    with pytest.raises(NotFound):
        wallets.get_wallet_for_update(db, seller.id, "KES")


def test_get_wallet_for_unknown_seller(db):
    with pytest.raises(NotFound):
        wallets.get_wallet_for_update(db, 12345, "USD", create=True)
