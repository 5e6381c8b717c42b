"""
Stock reservation for order placement.

Stock is checked and decremented in a single conditional UPDATE
(`stock = stock - q WHERE stock >= q`), so two concurrent orders can never
both take the last units.
"""
import logging
from sqlalchemy import update
from sqlalchemy.orm import Session

from . import models
from .errors import InsufficientStock, NotFound

logger = logging.getLogger(__name__)


def reserve_stock(db: Session, product_id: int, quantity: int) -> models.Product:
    """
    Decrement a product's stock by `quantity` if enough units are available.

    The change is flushed in the caller's transaction and rolled back with it.

    Args:
        db: Database session
        product_id: Product to reserve
        quantity: Units to take

    Returns:
        The product with its updated stock

    Raises:
        NotFound: If the product does not exist or is not active
        InsufficientStock: If fewer than `quantity` units are in stock
    """
    result = db.execute(
        update(models.Product)
        .where(
            models.Product.id == product_id,
            models.Product.is_active.is_(True),
            models.Product.stock >= quantity,
        )
        .values(stock=models.Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )

    product = db.query(models.Product).populate_existing().filter(models.Product.id == product_id).first()
    if result.rowcount == 0:
        if product is None or not product.is_active:
            raise NotFound(f"Product not found: {product_id}")
        raise InsufficientStock(
            f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {quantity}"
        )

    logger.info(f"Reserved {quantity} units of product {product_id} ({product.stock} left)")
    return product
