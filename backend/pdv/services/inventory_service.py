# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Inventory Ledger Invariants (authoritative)

Stock model:
- Product.stock is a mutable on-hand count. Every change goes through
  apply_delta() and is paired with one StockMovement (type "in" for a
  positive delta, "out" for a negative one, quantity = |delta|).
- Final stock is initial + sum(deltas) regardless of the order in which
  deltas land: each write is a compare-and-swap on Product.version_id and
  a lost race is retried on fresh data.
- No floor is enforced here. Negative stock is logged as a warning.

Step policy:
- The stock write is primary: its errors propagate.
- The movement log entry is secondary: if it fails the stock change stands
  and the caller gets a warning string instead of a movement.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import STOCK_IN, STOCK_OUT
from ..validation import require_int
from .concurrency import commit_or_raise, lock_for_update, run_with_retry


@dataclass
class StockDelta:
    product: Product
    movement: StockMovement | None
    warning: str | None = None


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product #{product_id} not found")
    return product


def _record_movement(
    product: Product,
    quantity_delta: int,
    reason: str,
    actor_user_id: int | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        product_name=product.name,
        type=STOCK_IN if quantity_delta > 0 else STOCK_OUT,
        quantity=abs(quantity_delta),
        reason=reason,
        created_by_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.commit()
    return movement


def apply_delta(
    product_id: int,
    quantity_delta: int,
    reason: str,
    *,
    actor_user_id: int | None = None,
) -> StockDelta:
    """
    Apply a signed stock change to one product and log it.

    Args:
        product_id: Product to move
        quantity_delta: Non-zero signed quantity (negative = exit)
        reason: Free text naming the originating document ("Sale #12")
        actor_user_id: Operator to stamp on the movement

    Returns:
        StockDelta with the refreshed product, the movement (None when the
        log entry failed) and an optional warning.

    Raises:
        ValidationError: zero or non-integer delta, blank reason
        NotFoundError: unknown product
        TransientError: stock row kept changing or the store is unavailable
    """
    quantity_delta = require_int(quantity_delta, "quantity_delta")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _write() -> Product:
        product = _get_product(product_id, lock=True)
        product.stock = product.stock + quantity_delta
        commit_or_raise()
        return product

    product = run_with_retry(_write)

    if product.stock < 0:
        current_app.logger.warning(
            "Product #%s stock is negative (%s) after %s",
            product.id, product.stock, reason,
        )

    try:
        movement = _record_movement(product, quantity_delta, reason, actor_user_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Stock movement log failed for product #%s (%s): %s", product_id, reason, exc,
        )
        return StockDelta(
            product=product,
            movement=None,
            warning=f"Stock for {product.name} was updated, but its movement log entry failed",
        )

    return StockDelta(product=product, movement=movement)


def adjust_stock(product_id: int, quantity_delta: int, reason: str, operator) -> StockDelta:
    """Manual stock entry/exit from the stock room."""
    result = apply_delta(
        product_id,
        quantity_delta,
        reason,
        actor_user_id=operator.user_id if operator else None,
    )
    current_app.logger.info(
        "Manual stock adjustment product=%s delta=%s by %s",
        product_id, quantity_delta, operator.username if operator else "system",
    )
    return result


def list_movements(product_id: int | None = None, limit: int = 200) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    return (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
