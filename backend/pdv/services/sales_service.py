# Overview: Service-layer operations for sales; encapsulates business logic and database work.

"""
Sale Builder Invariants (authoritative)

- A sale is an append-only fact: it is committed once, with its items, and
  never edited afterwards.
- total_cents == sum(quantity * unit_price_cents) - discount_cents, exactly,
  with unit prices snapshotted from the catalog at checkout.
- 0 <= discount_cents <= subtotal_cents.
- Cart lines for the same product are merged, so a sale has one item and
  produces one stock movement per product.
- Credit sales require a customer and installments >= 1;
  installment_value_cents is the first share of split_cents(total, n).

Checkout steps (each commits on its own):
1. Pre-flight validation; nothing is written if it fails.
2. Sale row with items (primary: errors propagate).
3. One stock delta per item (secondary: failures become warnings).
4. Credit sales open a creditor (secondary: a failure leaves the sale
   committed with creditor=None and a warning telling the operator to add
   the ledger entry manually).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, PdvError, ValidationError
from ..models import Creditor, Customer, Product, Sale, SaleItem, StockMovement
from ..models.sales import PAYMENT_CREDIT, PAYMENT_METHODS
from ..validation import require_choice, require_int
from .concurrency import commit_or_raise
from .credit_service import open_creditor_for_sale, split_cents
from .inventory_service import apply_delta


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass
class SaleOutcome:
    sale: Sale
    creditor: Creditor | None = None
    stock_movements: list[StockMovement] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "creditor": self.creditor.to_dict() if self.creditor else None,
            "stock_movements": [movement.to_dict() for movement in self.stock_movements],
            "warnings": self.warnings,
        }


def parse_cart(raw_items) -> list[CartLine]:
    """Turn a JSON items array into CartLines (no merging yet)."""
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        lines.append(CartLine(
            product_id=require_int(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=require_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1),
        ))
    return lines


def _merge_cart(cart: list[CartLine]) -> dict[int, int]:
    if not cart:
        raise ValidationError("Cart is empty")
    merged: dict[int, int] = {}
    for line in cart:
        if line.quantity <= 0:
            raise ValidationError(
                "Cart quantities must be > 0",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


def finalize_sale(
    cart: list[CartLine],
    payment_method: str,
    operator,
    *,
    discount_cents: int = 0,
    customer_id: int | None = None,
    installments: int | None = None,
) -> SaleOutcome:
    """
    Validate a cart, commit the sale, move stock and open credit.

    Args:
        cart: CartLines (duplicates of a product are merged)
        payment_method: cash, card, pix or credit
        operator: OperatorContext stamped on the sale and its movements
        discount_cents: Whole-sale discount (0 <= discount <= subtotal)
        customer_id: Required for credit sales
        installments: Required (>= 1) for credit sales

    Returns:
        SaleOutcome with the committed sale, creditor (credit sales) and any
        warnings from secondary steps.

    Raises:
        ValidationError / NotFoundError: before anything is written
        ConstraintError / TransientError: the sale row itself failed
    """
    if operator is None:
        raise ValidationError("An operator is required to record a sale")

    quantities = _merge_cart(cart)
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)
    discount_cents = require_int(discount_cents, "discount_cents", minimum=0)

    if payment_method == PAYMENT_CREDIT:
        if customer_id is None:
            raise ValidationError("customer_id is required for credit sales")
        installments = require_int(installments, "installments", minimum=1)
    else:
        installments = None

    customer = None
    if customer_id is not None:
        customer_id = require_int(customer_id, "customer_id")
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer #{customer_id} not found")

    items = []
    for product_id, quantity in quantities.items():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product #{product_id} not found")
        items.append(SaleItem(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=quantity * product.price_cents,
        ))

    subtotal = sum(item.line_total_cents for item in items)
    if discount_cents > subtotal:
        raise ValidationError(
            "discount_cents cannot exceed the subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount_cents},
        )
    total = subtotal - discount_cents

    sale = Sale(
        payment_method=payment_method,
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        total_cents=total,
        customer_id=customer.id if customer else None,
        installments=installments,
        installment_value_cents=split_cents(total, installments)[0] if installments else None,
        user_id=operator.user_id,
        items=items,
    )
    db.session.add(sale)
    commit_or_raise()

    current_app.logger.info(
        "Sale #%s recorded: %s %s cents by %s",
        sale.id, payment_method, total, operator.username,
    )

    outcome = SaleOutcome(sale=sale)

    for item in list(sale.items):
        try:
            delta = apply_delta(
                item.product_id,
                -item.quantity,
                f"Sale #{sale.id}",
                actor_user_id=operator.user_id,
            )
        except PdvError as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Stock update failed for sale #%s product #%s: %s",
                sale.id, item.product_id, exc,
            )
            outcome.warnings.append(
                f"Sale #{sale.id} recorded, but the stock update for {item.product_name} failed: {exc.message}"
            )
            continue
        if delta.movement is not None:
            outcome.stock_movements.append(delta.movement)
        if delta.warning:
            outcome.warnings.append(delta.warning)

    if payment_method == PAYMENT_CREDIT:
        try:
            outcome.creditor = open_creditor_for_sale(sale, customer.id, installments)
        except PdvError as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Creditor creation failed for sale #%s: %s", sale.id, exc,
            )
            outcome.warnings.append(
                f"Sale #{sale.id} recorded, but the credit ledger entry failed ({exc.message}); add it manually"
            )

    return outcome


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale #{sale_id} not found")
    return sale


def list_sales(
    customer_id: int | None = None,
    payment_method: str | None = None,
    limit: int = 200,
) -> list[Sale]:
    query = db.session.query(Sale)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_method:
        require_choice(payment_method, "payment_method", PAYMENT_METHODS)
        query = query.filter(Sale.payment_method == payment_method)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
