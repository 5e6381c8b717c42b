from decimal import Decimal

import pytest

from app import crud, inventory, ledger, models, schemas, settlement, validators, wallets
from app.errors import (
    EscrowStateError, Forbidden, InsufficientBalance, InsufficientStock, NotFound, ValidationError, WalletInvariantError,
)
from app.schemas import DeliveryConfirmedBy
from app.validators import validate_order_total

from conftest import BUYER_ID, OTHER_BUYER_ID, SECOND_SELLER_ID, SELLER_ID, get_stock, get_wallet


def order_request(*lines, currency_code="NGN"):
    return schemas.OrderCreate(
        items=[schemas.OrderItemRequest(productId=pid, quantity=qty) for pid, qty in lines],
        shippingAddress=schemas.ShippingAddress(fullName="Ada Buyer", city="Lagos", country="NG"),
        paymentMethod="card",
        paymentCurrency=currency_code,
    )


def test_create_order_holds_escrow(db, rates, buyer, seller, make_product):
    product = make_product(amount="100.00", currency_code="USD", stock=5)

    order = settlement.create_order(db, buyer, order_request((product.id, 3)))

    assert order.id.startswith("ORD-")
    assert get_stock(db, product.id) == 2
    assert order.escrow_status == "held"
    assert order.payment_status == "processing"
    assert order.status == "pending"
    assert order.escrow_held_at is not None
    assert (order.escrow_release_scheduled_for - order.escrow_held_at).days == 14
    assert order.items[0]["price"] == {"amount": "150000.00", "currency": "NGN"}
    assert Decimal(order.items[0]["subtotal"]) == Decimal("450000.00")
    assert order.payment_amount == Decimal("450000.00")
    assert order.buyer["userId"] == BUYER_ID

    wallet = get_wallet(db, SELLER_ID, "NGN")
    assert wallet.pending_balance == Decimal("450000.00")
    assert wallet.balance == 0

    entries = ledger.list_for_order(db, order.id)
    assert [(e.type, e.status, e.amount, e.currency) for e in entries] == [
        ("escrow_hold", "pending", Decimal("450000.00"), "NGN"),
    ]


def test_order_total_equals_sum_of_subtotals(db, rates, buyer, seller, second_seller, make_product):
    first = make_product(amount="19.99", currency_code="USD", stock=10)
    second = make_product(seller_id=SECOND_SELLER_ID, amount="7.35", currency_code="GBP", stock=10)

    order = settlement.create_order(db, buyer, order_request((first.id, 3), (second.id, 2), currency_code="EUR"))

    subtotals = sum(Decimal(item["subtotal"]) for item in order.items)
    assert abs(subtotals - order.payment_amount) <= Decimal("0.01")
    assert get_wallet(db, SELLER_ID, "EUR").pending_balance == Decimal(order.items[0]["subtotal"])
    assert get_wallet(db, SECOND_SELLER_ID, "EUR").pending_balance == Decimal(order.items[1]["subtotal"])


def test_insufficient_stock_creates_nothing(db, rates, buyer, seller, make_product):
    product = make_product(stock=2)

    with pytest.raises(InsufficientStock):
        settlement.create_order(db, buyer, order_request((product.id, 5)))

    assert get_stock(db, product.id) == 2
    assert db.query(models.Order).count() == 0
    assert db.query(models.Transaction).count() == 0
    assert get_wallet(db, SELLER_ID, "NGN").pending_balance == 0


def test_failure_on_later_item_rolls_back_earlier_reservations(db, rates, buyer, seller, make_product):
    plenty = make_product(stock=10, name="Plenty")
    scarce = make_product(stock=1, name="Scarce")

    with pytest.raises(InsufficientStock):
        settlement.create_order(db, buyer, order_request((plenty.id, 4), (scarce.id, 2)))

    assert get_stock(db, plenty.id) == 10
    assert get_stock(db, scarce.id) == 1
    assert db.query(models.Order).count() == 0


def test_missing_product_fails_not_found(db, rates, buyer, seller):
    with pytest.raises(NotFound):
        settlement.create_order(db, buyer, order_request((4242, 1)))


def test_missing_seller_rolls_back_whole_order(db, rates, buyer, make_product):
    orphan = make_product(seller_id=777, stock=3)

    with pytest.raises(NotFound):
        settlement.create_order(db, buyer, order_request((orphan.id, 1)))

    assert get_stock(db, orphan.id) == 3
    assert db.query(models.Order).count() == 0
    assert db.query(models.Transaction).count() == 0


def test_rows_are_locked_in_id_order_and_items_keep_request_order(
    db, rates, buyer, seller, second_seller, make_product, monkeypatch
):
    low = make_product(seller_id=SECOND_SELLER_ID, stock=10, name="Low")
    high = make_product(seller_id=SELLER_ID, stock=10, name="High")
    reserved, locked = [], []
    reserve_stock = inventory.reserve_stock
    get_wallet_for_update = wallets.get_wallet_for_update

    def recording_reserve(db, product_id, quantity):
        reserved.append(product_id)
        return reserve_stock(db, product_id, quantity)

    def recording_lock(db, seller_id, currency_code, create=False):
        locked.append(seller_id)
        return get_wallet_for_update(db, seller_id, currency_code, create=create)

    monkeypatch.setattr(inventory, "reserve_stock", recording_reserve)
    monkeypatch.setattr(wallets, "get_wallet_for_update", recording_lock)

    order = settlement.create_order(db, buyer, order_request((high.id, 1), (low.id, 2)))

    assert reserved == [low.id, high.id]
    assert locked == [SELLER_ID, SECOND_SELLER_ID]
    assert [item["productId"] for item in order.items] == [high.id, low.id]
    assert [item["sellerId"] for item in order.items] == [SELLER_ID, SECOND_SELLER_ID]

    locked.clear()
    settlement.confirm_delivery(db, order.id, BUYER_ID)

    assert locked == [SELLER_ID, SECOND_SELLER_ID]
    assert get_wallet(db, SELLER_ID, "NGN").balance == Decimal("150000.00")
    assert get_wallet(db, SECOND_SELLER_ID, "NGN").balance == Decimal("300000.00")


def test_repeated_product_lines_reserve_combined_quantity(db, rates, buyer, seller, make_product):
    product = make_product(stock=5)

    order = settlement.create_order(db, buyer, order_request((product.id, 2), (product.id, 1)))

    assert get_stock(db, product.id) == 2
    assert [item["quantity"] for item in order.items] == [2, 1]
    assert get_wallet(db, SELLER_ID, "NGN").pending_balance == Decimal("450000.00")
    assert len(ledger.list_for_order(db, order.id)) == 2


def test_repeated_product_lines_beyond_stock_fail(db, rates, buyer, seller, make_product):
    product = make_product(stock=3)

    with pytest.raises(InsufficientStock):
        settlement.create_order(db, buyer, order_request((product.id, 2), (product.id, 2)))

    assert get_stock(db, product.id) == 3


def test_total_mismatch_after_persisting_rolls_back(db, rates, buyer, seller, make_product, monkeypatch):
    product = make_product(stock=5)
    checked = []

    def mismatched_total(items, claimed_total):
        checked.append(claimed_total)
        validate_order_total(items, claimed_total + Decimal("1.00"))

    monkeypatch.setattr(validators, "validate_order_total", mismatched_total)

    with pytest.raises(ValidationError):
        settlement.create_order(db, buyer, order_request((product.id, 1)))

    assert checked == [Decimal("150000.00")]
    assert get_stock(db, product.id) == 5
    assert db.query(models.Order).count() == 0
    assert get_wallet(db, SELLER_ID, "NGN").pending_balance == 0


def test_validate_order_total_rejects_mismatch():
    items = [{"subtotal": "10.00"}, {"subtotal": "5.50"}]

    validate_order_total(items, Decimal("15.50"))
    validate_order_total(items, Decimal("15.51"))
    with pytest.raises(ValidationError):
        validate_order_total(items, Decimal("15.52"))


def test_confirm_delivery_releases_escrow(db, rates, buyer, seller, make_product):
    product = make_product(amount="100.00", currency_code="USD", stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 3)))

    confirmed = settlement.confirm_delivery(db, order.id, BUYER_ID)

    assert confirmed.status == "completed"
    assert confirmed.escrow_status == "released"
    assert confirmed.escrow_released_at is not None
    assert confirmed.delivery_confirmed is True
    assert confirmed.delivery_confirmed_by == "buyer"
    assert confirmed.delivery_confirmed_at is not None

    wallet = get_wallet(db, SELLER_ID, "NGN")
    assert wallet.pending_balance == Decimal("0.00")
    assert wallet.balance == Decimal("450000.00")
    assert wallet.total_earnings == Decimal("450000.00")

    types = [e.type for e in ledger.list_for_order(db, order.id)]
    assert types == ["escrow_hold", "escrow_release"]
    events = [e.event_type for e in crud.get_order_events(db, order.id)]
    assert events == ["created", "escrow_held", "delivery_confirmed", "escrow_released"]


def test_confirm_delivery_twice_does_not_double_release(db, rates, buyer, seller, make_product):
    product = make_product(amount="100.00", currency_code="USD", stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 1)))
    settlement.confirm_delivery(db, order.id, BUYER_ID)

    with pytest.raises(EscrowStateError):
        settlement.confirm_delivery(db, order.id, BUYER_ID)

    wallet = get_wallet(db, SELLER_ID, "NGN")
    assert wallet.balance == Decimal("150000.00")
    assert wallet.total_earnings == Decimal("150000.00")
    assert wallet.pending_balance == Decimal("0.00")
    assert len(ledger.list_for_order(db, order.id)) == 2


def test_confirm_delivery_by_other_user_is_forbidden(db, rates, buyer, seller, make_product):
    product = make_product(stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 3)))

    with pytest.raises(Forbidden):
        settlement.confirm_delivery(db, order.id, OTHER_BUYER_ID)

    db.expire_all()
    unchanged = crud.get_order(db, order.id)
    assert unchanged.escrow_status == "held"
    assert unchanged.status == "pending"
    assert unchanged.delivery_confirmed is False
    wallet = get_wallet(db, SELLER_ID, "NGN")
    assert wallet.pending_balance == Decimal("450000.00")
    assert wallet.balance == 0


def test_confirm_delivery_unknown_order(db):
    with pytest.raises(NotFound):
        settlement.confirm_delivery(db, "ORD-0-MISSING", BUYER_ID)


def test_admin_release_skips_buyer_check(db, rates, buyer, seller, make_product):
    product = make_product(stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 1)))

    confirmed = settlement.confirm_delivery(db, order.id, 99, DeliveryConfirmedBy.ADMIN)

    assert confirmed.delivery_confirmed_by == "admin"
    assert get_wallet(db, SELLER_ID, "NGN").balance == Decimal("150000.00")


def test_release_failure_rolls_back_confirmation(db, rates, buyer, seller, make_product):
    product = make_product(stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 1)))
    wallet = get_wallet(db, SELLER_ID, "NGN")
    wallet.pending_balance = Decimal("0.00")
    db.commit()

    with pytest.raises(WalletInvariantError):
        settlement.confirm_delivery(db, order.id, BUYER_ID)

    db.expire_all()
    assert crud.get_order(db, order.id).escrow_status == "held"
    assert len(ledger.list_for_order(db, order.id)) == 1
    assert get_wallet(db, SELLER_ID, "NGN").balance == 0


def test_payout_after_release(db, rates, buyer, seller, make_product):
    product = make_product(amount="100.00", currency_code="USD", stock=5)
    order = settlement.create_order(db, buyer, order_request((product.id, 1), currency_code="USD"))
    settlement.confirm_delivery(db, order.id, BUYER_ID)

    wallet, entry = settlement.request_payout(db, SELLER_ID, schemas.PayoutRequest(currency="USD", amount=Decimal("60")))

    assert wallet.balance == Decimal("40.00")
    assert wallet.total_earnings == Decimal("100.00")
    assert entry.type == "withdrawal"
    assert entry.order_id is None
    assert entry.amount == Decimal("60.00")


def test_payout_beyond_balance_is_rejected(db, seller):
    with pytest.raises(InsufficientBalance):
        settlement.request_payout(db, SELLER_ID, schemas.PayoutRequest(currency="GBP", amount=Decimal("1")))

    assert get_wallet(db, SELLER_ID, "GBP").balance == 0
    assert db.query(models.Transaction).count() == 0


def test_order_numbers_are_unique():
    numbers = {settlement.generate_order_number() for _ in range(200)}
    assert len(numbers) == 200
