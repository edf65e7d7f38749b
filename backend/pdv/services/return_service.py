"""
Return / Exchange Reconciler

WHY: Goods come back against a specific sale. The refund must use the
price the customer actually paid (the sale's snapshot), and the returned
quantity can never exceed what was sold.

DESIGN PRINCIPLES:
- Every return references an existing Sale (and its customer, if any)
- Selections are keyed by product on the original sale
- Quantity limits are cumulative over all non-cancelled returns of the sale
- total_refund_cents = sum(quantity * sale unit price snapshot)
- Plain returns restock every line whose condition is not "damaged";
  damaged goods are scrapped and never restocked
- Exchanges do not restock at creation; the replacement sale goes through
  the normal checkout path and is linked afterwards

LIFECYCLE:
1. process_return() creates the document (PENDING) and restocks
2. set_return_status() moves it to PROCESSED (stamps processed_at) or
   CANCELLED; both are terminal. Cancelling takes back out the units that
   were actually restocked (ReturnLine.restocked_quantity).
   A linked Exchange mirrors the transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, PdvError, ValidationError
from ..models import Exchange, Return, ReturnLine, Sale, StockMovement
from ..models.returns import (
    CONDITION_DAMAGED,
    CONDITION_NEW,
    ITEM_CONDITIONS,
    RETURN_STATUS_CANCELLED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_PROCESSED,
    RETURN_STATUSES,
    RETURN_TYPE_EXCHANGE,
    RETURN_TYPE_RETURN,
    RETURN_TYPES,
)
from ..validation import require_choice, require_int
from pdv.time_utils import utcnow
from .concurrency import commit_or_raise
from .inventory_service import apply_delta
from .sales_service import CartLine, SaleOutcome, finalize_sale


@dataclass(frozen=True)
class ReturnSelection:
    product_id: int
    quantity: int
    condition: str = CONDITION_NEW


@dataclass
class ReturnOutcome:
    return_doc: Return
    exchange: Exchange | None = None
    stock_movements: list[StockMovement] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "return": self.return_doc.to_dict(),
            "exchange": self.exchange.to_dict() if self.exchange else None,
            "stock_movements": [movement.to_dict() for movement in self.stock_movements],
            "warnings": self.warnings,
        }


def parse_selections(raw_items) -> list[ReturnSelection]:
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    selections = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        selections.append(ReturnSelection(
            product_id=require_int(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=require_int(raw.get("quantity"), f"items[{index}].quantity", minimum=0),
            condition=raw.get("condition") or CONDITION_NEW,
        ))
    return selections


# =============================================================================
# HELPERS
# =============================================================================

def _get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale #{sale_id} not found")
    return sale


def _already_returned(sale_id: int) -> dict[int, int]:
    """sale_item_id -> quantity already covered by non-cancelled returns."""
    rows = (
        db.session.query(ReturnLine.sale_item_id, func.sum(ReturnLine.quantity))
        .join(Return, Return.id == ReturnLine.return_id)
        .filter(Return.sale_id == sale_id, Return.status != RETURN_STATUS_CANCELLED)
        .group_by(ReturnLine.sale_item_id)
        .all()
    )
    return {sale_item_id: int(quantity or 0) for sale_item_id, quantity in rows}


def _restock_quantities(return_doc: Return, *, recorded: bool = False) -> dict[int, int]:
    """
    product_id -> units to move for this return.

    With recorded=False: what creation should put back on the shelf.
    With recorded=True: what creation actually put back, per restocked_quantity.
    """
    if return_doc.type != RETURN_TYPE_RETURN:
        return {}
    quantities: dict[int, int] = {}
    for line in return_doc.lines:
        if recorded:
            quantity = line.restocked_quantity
        else:
            quantity = 0 if line.condition == CONDITION_DAMAGED else line.quantity
        if quantity:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + quantity
    return quantities


def _move_stock(quantities: dict[int, int], sign: int, reason: str, operator, outcome) -> set[int]:
    """Apply one delta per product; returns the product ids whose stock moved."""
    moved: set[int] = set()
    for product_id, quantity in quantities.items():
        try:
            delta = apply_delta(
                product_id,
                sign * quantity,
                reason,
                actor_user_id=operator.user_id if operator else None,
            )
        except PdvError as exc:
            db.session.rollback()
            current_app.logger.warning("Stock update failed for product #%s (%s): %s", product_id, reason, exc)
            outcome.warnings.append(f"Stock for product #{product_id} was not updated: {exc.message}")
            continue
        moved.add(product_id)
        if delta.movement is not None:
            outcome.stock_movements.append(delta.movement)
        if delta.warning:
            outcome.warnings.append(delta.warning)
    return moved


def _record_restock(return_doc: Return, product_ids: set[int], restocked: bool, outcome) -> None:
    if not product_ids:
        return
    for line in return_doc.lines:
        if line.product_id not in product_ids or line.condition == CONDITION_DAMAGED:
            continue
        line.restocked_quantity = line.quantity if restocked else 0
    try:
        commit_or_raise()
    except PdvError as exc:
        current_app.logger.warning("Restock bookkeeping failed for return #%s: %s", return_doc.id, exc)
        outcome.warnings.append(f"Return #{return_doc.id}: restocked quantities were not recorded ({exc.message})")


# =============================================================================
# RETURN CREATION
# =============================================================================

def process_return(
    sale_id: int,
    selections: list[ReturnSelection],
    reason: str,
    operator,
    *,
    return_type: str = RETURN_TYPE_RETURN,
) -> ReturnOutcome:
    """
    Record goods coming back from a sale.

    Args:
        sale_id: Original sale
        selections: Products and quantities coming back (zero quantities are ignored)
        reason: Why the customer is returning (required)
        operator: OperatorContext stamped on the return
        return_type: "return" (refund + restock) or "exchange"

    Returns:
        ReturnOutcome with the PENDING return, the exchange (exchanges only),
        restock movements and warnings.

    Raises:
        ValidationError: nothing selected, product not on the sale,
            quantity above what is still returnable, bad condition/type
        NotFoundError: sale not found
    """
    if operator is None:
        raise ValidationError("An operator is required to record a return")
    require_choice(return_type, "type", RETURN_TYPES)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    chosen = []
    for selection in selections or []:
        if selection.quantity < 0:
            raise ValidationError(
                "Return quantities must be >= 0",
                details={"product_id": selection.product_id},
            )
        if selection.quantity == 0:
            continue
        require_choice(selection.condition, "condition", ITEM_CONDITIONS)
        chosen.append(selection)
    if not chosen:
        raise ValidationError("Select at least one item to return")

    sale = _get_sale(require_int(sale_id, "sale_id"))
    returned = _already_returned(sale.id)

    requested: dict[int, int] = {}
    lines = []
    for selection in chosen:
        item = sale.item_for_product(selection.product_id)
        if item is None:
            raise ValidationError(
                f"Product #{selection.product_id} is not on sale #{sale.id}",
                details={"product_id": selection.product_id},
            )
        requested[item.id] = requested.get(item.id, 0) + selection.quantity
        returnable = item.quantity - returned.get(item.id, 0)
        if requested[item.id] > returnable:
            raise ValidationError(
                f"Cannot return more {item.product_name} than was sold",
                details={
                    "product_id": item.product_id,
                    "sold": item.quantity,
                    "already_returned": returned.get(item.id, 0),
                    "requested": requested[item.id],
                },
            )
        lines.append(ReturnLine(
            sale_item_id=item.id,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=selection.quantity,
            unit_price_cents=item.unit_price_cents,
            line_refund_cents=selection.quantity * item.unit_price_cents,
            condition=selection.condition,
        ))

    return_doc = Return(
        sale_id=sale.id,
        type=return_type,
        reason=reason,
        total_refund_cents=sum(line.line_refund_cents for line in lines),
        status=RETURN_STATUS_PENDING,
        user_id=operator.user_id,
        customer_id=sale.customer_id,
        lines=lines,
    )
    db.session.add(return_doc)

    exchange = None
    if return_type == RETURN_TYPE_EXCHANGE:
        exchange = Exchange(
            return_doc=return_doc,
            original_sale_id=sale.id,
            reason=reason,
            returned_items=[
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "condition": line.condition,
                }
                for line in lines
            ],
            new_items=[],
            status=RETURN_STATUS_PENDING,
            user_id=operator.user_id,
            customer_id=sale.customer_id,
        )
        db.session.add(exchange)

    commit_or_raise()
    current_app.logger.info(
        "Return #%s (%s) recorded for sale #%s: refund %s cents",
        return_doc.id, return_type, sale.id, return_doc.total_refund_cents,
    )

    outcome = ReturnOutcome(return_doc=return_doc, exchange=exchange)
    moved = _move_stock(_restock_quantities(return_doc), 1, f"Return - {reason}", operator, outcome)
    _record_restock(return_doc, moved, True, outcome)
    return outcome


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def set_return_status(return_id: int, status: str, operator=None) -> ReturnOutcome:
    """
    Move a PENDING return to PROCESSED or CANCELLED.

    Cancelling a plain return takes back out of stock only the units that
    were actually restocked when it was created.
    """
    require_choice(status, "status", (RETURN_STATUS_PROCESSED, RETURN_STATUS_CANCELLED))
    return_doc = get_return(return_id)
    if return_doc.status != RETURN_STATUS_PENDING:
        raise ValidationError(
            f"Return #{return_id} is already {return_doc.status}",
            details={"status": return_doc.status},
        )

    now = utcnow()
    return_doc.status = status
    if status == RETURN_STATUS_PROCESSED:
        return_doc.processed_at = now

    exchange = return_doc.exchange
    if exchange is not None:
        exchange.status = status
        if status == RETURN_STATUS_PROCESSED:
            exchange.processed_at = now

    commit_or_raise()
    current_app.logger.info("Return #%s marked %s", return_id, status)

    outcome = ReturnOutcome(return_doc=return_doc, exchange=exchange)
    if status == RETURN_STATUS_CANCELLED:
        moved = _move_stock(
            _restock_quantities(return_doc, recorded=True), -1, f"Return #{return_id} cancelled", operator, outcome,
        )
        _record_restock(return_doc, moved, False, outcome)
    return outcome


def complete_exchange(
    exchange_id: int,
    cart: list[CartLine],
    payment_method: str,
    operator,
    *,
    discount_cents: int = 0,
    installments: int | None = None,
) -> SaleOutcome:
    """
    Ring up the replacement sale for an exchange and link it.

    The replacement goes through finalize_sale() (stock, credit and
    warnings behave exactly like a normal checkout).
    """
    exchange = get_exchange(exchange_id)
    if exchange.status != RETURN_STATUS_PENDING:
        raise ValidationError(f"Exchange #{exchange_id} is already {exchange.status}")
    if exchange.new_sale_id is not None:
        raise ValidationError(
            f"Exchange #{exchange_id} already has replacement sale #{exchange.new_sale_id}"
        )

    outcome = finalize_sale(
        cart,
        payment_method,
        operator,
        discount_cents=discount_cents,
        customer_id=exchange.customer_id,
        installments=installments,
    )
    sale = outcome.sale

    exchange = get_exchange(exchange_id)
    exchange.new_sale_id = sale.id
    exchange.new_items = [
        {
            "product_id": item.product_id,
            "product_name": item.product_name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
        }
        for item in sale.items
    ]
    try:
        commit_or_raise()
    except PdvError as exc:
        current_app.logger.warning("Linking sale #%s to exchange #%s failed: %s", sale.id, exchange_id, exc)
        outcome.warnings.append(
            f"Replacement sale #{sale.id} recorded, but linking it to exchange #{exchange_id} failed"
        )
    return outcome


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if return_doc is None:
        raise NotFoundError(f"Return #{return_id} not found")
    return return_doc


def get_exchange(exchange_id: int) -> Exchange:
    exchange = db.session.get(Exchange, exchange_id)
    if exchange is None:
        raise NotFoundError(f"Exchange #{exchange_id} not found")
    return exchange


def list_returns(status: str | None = None, sale_id: int | None = None) -> list[Return]:
    query = db.session.query(Return)
    if status:
        require_choice(status, "status", RETURN_STATUSES)
        query = query.filter(Return.status == status)
    if sale_id is not None:
        query = query.filter(Return.sale_id == sale_id)
    return query.order_by(Return.created_at.desc(), Return.id.desc()).all()


def list_exchanges(status: str | None = None) -> list[Exchange]:
    query = db.session.query(Exchange)
    if status:
        require_choice(status, "status", RETURN_STATUSES)
        query = query.filter(Exchange.status == status)
    return query.order_by(Exchange.created_at.desc(), Exchange.id.desc()).all()
