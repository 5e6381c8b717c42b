"""
Business-rule validation for the Marketplace service.

Provides validation beyond what the request schemas enforce.
"""
from decimal import Decimal
from typing import List

from . import schemas
from .errors import ValidationError

MAX_ORDER_ITEMS = 100
MAX_ITEM_QUANTITY = 10000


def validate_order_items(items: List[schemas.OrderItemRequest]) -> None:
    """
    Validate requested order items.

    Raises:
        ValidationError: If the item list is empty, too long or has bad quantities
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    if len(items) > MAX_ORDER_ITEMS:
        raise ValidationError(f"Order cannot contain more than {MAX_ORDER_ITEMS} items")

    for item in items:
        if item.quantity <= 0:
            raise ValidationError(f"Product {item.productId}: quantity must be positive")

        if item.quantity > MAX_ITEM_QUANTITY:
            raise ValidationError(f"Product {item.productId}: quantity exceeds maximum ({MAX_ITEM_QUANTITY})")


def validate_order_total(items: List[dict], claimed_total: Decimal) -> None:
    """
    Check that an order's total matches the sum of its line item subtotals.

    Args:
        items: Persisted line items (subtotals serialized as strings)
        claimed_total: The order's payment amount

    Raises:
        ValidationError: If they differ by more than 0.01
    """
    calculated_total = sum((Decimal(str(item["subtotal"])) for item in items), Decimal("0"))

    # Allow small rounding differences (up to 0.01)
    if abs(calculated_total - Decimal(str(claimed_total))) > Decimal("0.01"):
        raise ValidationError(f"Order total mismatch: calculated {calculated_total}, recorded {claimed_total}")
