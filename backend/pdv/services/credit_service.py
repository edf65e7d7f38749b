# Overview: Service-layer operations for the credit ledger (crediário); encapsulates business logic and database work.

"""
Credit Ledger Invariants (authoritative)

Amounts:
- All amounts are integer cents.
- remaining_amount_cents == total_debt_cents - paid_amount_cents after
  every write made here.
- Stored status is "paid" iff remaining_amount_cents == 0, else "pending".
- "overdue" is never written. Creditor.effective_status(now) projects it
  for pending creditors whose due_date has passed, and list filters use
  the same projection.

Opening:
- A credit sale opens at most one creditor (creditors.sale_id is unique);
  opening again returns the existing row.
- due_date = now + CREDIT_TERM_DAYS (30 by default).
- Opening never creates installments; the carnê schedule is a separate,
  explicit step.

Carnê schedule:
- split_cents() divides remaining_amount_cents into N parts that sum to it
  exactly; the first (remaining mod N) parts carry one extra cent.
- Installment i is due add_months(creditor.due_date, i - 1).
- The batch is committed once: a failure leaves no partial schedule.

Payments:
- mark_installment_paid() only flags the slip. It does not move the
  creditor balance; record_payment() and mark_creditor_paid() do.
  creditor_summary() reports the installment-derived view next to the
  balance so the two can be compared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import and_, func

from ..extensions import db
from ..errors import NotFoundError, PdvError, ValidationError
from ..models import Creditor, CarneInstallment, CreditorPayment, Customer, Sale
from ..models.credit import (
    CREDITOR_STATUS_OVERDUE,
    CREDITOR_STATUS_PAID,
    CREDITOR_STATUS_PENDING,
    CREDITOR_STATUSES,
)
from ..validation import coerce_datetime, require_choice, require_int
from pdv.time_utils import add_months, to_utc_z, utcnow
from .concurrency import commit_or_raise, lock_for_update, run_with_retry
from .document_service import (
    DELIVERY_CUSTOMER,
    DELIVERY_OPTIONS,
    DOCUMENT_CARNE,
    build_carne_payload,
    render_document,
)


@dataclass
class CarneSchedule:
    creditor: Creditor
    installments: list[CarneInstallment]
    document: object | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "creditor": self.creditor.to_dict(),
            "installments": [inst.to_dict() for inst in self.installments],
            "document": self.document,
            "warnings": self.warnings,
        }


# =============================================================================
# HELPERS
# =============================================================================

def split_cents(total_cents: int, parts: int) -> list[int]:
    """
    Split an amount into `parts` integer shares that sum to it exactly.

    split_cents(1000, 3) -> [334, 333, 333]
    """
    if parts < 1:
        raise ValidationError("parts must be >= 1")
    base, remainder = divmod(total_cents, parts)
    return [base + 1 if i < remainder else base for i in range(parts)]


def _credit_term() -> timedelta:
    return timedelta(days=int(current_app.config.get("CREDIT_TERM_DAYS", 30)))


def _get_creditor(creditor_id: int, *, lock: bool = False) -> Creditor:
    query = db.session.query(Creditor).filter_by(id=creditor_id)
    if lock:
        query = lock_for_update(query)
    creditor = query.first()
    if creditor is None:
        raise NotFoundError(f"Creditor #{creditor_id} not found")
    return creditor


def _get_installment(installment_id: int) -> CarneInstallment:
    installment = db.session.get(CarneInstallment, installment_id)
    if installment is None:
        raise NotFoundError(f"Installment #{installment_id} not found")
    return installment


def _set_balance(creditor: Creditor, total_cents: int, paid_cents: int) -> None:
    if paid_cents > total_cents:
        raise ValidationError(
            "paid_amount_cents cannot exceed total_debt_cents",
            details={"total_debt_cents": total_cents, "paid_amount_cents": paid_cents},
        )
    creditor.total_debt_cents = total_cents
    creditor.paid_amount_cents = paid_cents
    creditor.remaining_amount_cents = total_cents - paid_cents
    creditor.status = CREDITOR_STATUS_PAID if creditor.remaining_amount_cents == 0 else CREDITOR_STATUS_PENDING


def get_creditor(creditor_id: int) -> Creditor:
    return _get_creditor(creditor_id)


# =============================================================================
# OPENING / MAINTENANCE
# =============================================================================

def open_creditor_for_sale(sale: Sale, customer_id: int, installments: int) -> Creditor:
    """
    Open the ledger entry for a committed credit sale.

    Returns the existing creditor when the sale already has one.

    Raises:
        NotFoundError: customer does not exist
        ValidationError: installments < 1
        ConstraintError: the store rejected the insert
    """
    existing = db.session.query(Creditor).filter_by(sale_id=sale.id).first()
    if existing is not None:
        return existing

    installments = require_int(installments, "installments", minimum=1)
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer #{customer_id} not found")

    creditor = Creditor(
        customer_id=customer.id,
        customer_name=customer.name,
        sale_id=sale.id,
        due_date=utcnow() + _credit_term(),
        description=f"Sale #{sale.id} ({installments}x)",
    )
    _set_balance(creditor, sale.total_cents, 0)
    db.session.add(creditor)
    commit_or_raise()

    current_app.logger.info(
        "Creditor #%s opened for sale #%s: %s cents",
        creditor.id, sale.id, creditor.total_debt_cents,
    )
    return creditor


def create_creditor(payload: dict) -> Creditor:
    """Manual ledger entry (debt not tied to a sale recorded here)."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    customer_id = require_int(payload.get("customer_id"), "customer_id")
    total = require_int(payload.get("total_debt_cents"), "total_debt_cents", minimum=0)
    paid = require_int(payload.get("paid_amount_cents", 0), "paid_amount_cents", minimum=0)
    due_date = payload.get("due_date")
    due_date = coerce_datetime(due_date, "due_date") if due_date else utcnow() + _credit_term()

    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer #{customer_id} not found")

    creditor = Creditor(
        customer_id=customer.id,
        customer_name=customer.name,
        due_date=due_date,
        description=str(payload.get("description") or "").strip(),
    )
    _set_balance(creditor, total, paid)
    db.session.add(creditor)
    commit_or_raise()
    return creditor


def update_creditor(creditor_id: int, payload: dict) -> Creditor:
    """Patch total/paid/due date/description; remaining and status are recomputed."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    allowed = {"total_debt_cents", "paid_amount_cents", "due_date", "description"}
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    def _apply() -> Creditor:
        creditor = _get_creditor(creditor_id, lock=True)
        total = creditor.total_debt_cents
        paid = creditor.paid_amount_cents
        if "total_debt_cents" in payload:
            total = require_int(payload["total_debt_cents"], "total_debt_cents", minimum=0)
        if "paid_amount_cents" in payload:
            paid = require_int(payload["paid_amount_cents"], "paid_amount_cents", minimum=0)
        if "due_date" in payload:
            creditor.due_date = coerce_datetime(payload["due_date"], "due_date")
        if "description" in payload:
            creditor.description = str(payload["description"] or "").strip()
        _set_balance(creditor, total, paid)
        commit_or_raise()
        return creditor

    try:
        return run_with_retry(_apply)
    except PdvError:
        db.session.rollback()
        raise


def delete_creditor(creditor_id: int) -> None:
    """Remove a creditor with its installments and payment history."""
    creditor = _get_creditor(creditor_id)
    db.session.delete(creditor)
    commit_or_raise()
    current_app.logger.info("Creditor #%s deleted", creditor_id)


# =============================================================================
# CARNÊ SCHEDULE
# =============================================================================

def generate_installment_schedule(
    creditor_id: int,
    count: int,
    delivery_via: str = DELIVERY_CUSTOMER,
) -> CarneSchedule:
    """
    Split the outstanding balance into `count` monthly installments.

    Args:
        creditor_id: Creditor to bill
        count: Number of installments (>= 1)
        delivery_via: Which booklet copies to render (customer, store, both)

    Returns:
        CarneSchedule with the committed installments, the rendered
        document (None if rendering failed) and warnings.

    Raises:
        ValidationError: bad count/via, schedule already exists, nothing owed
        NotFoundError: unknown creditor
        ConstraintError: the batch insert was rejected (nothing is kept)
    """
    count = require_int(count, "count", minimum=1)
    require_choice(delivery_via, "delivery_via", DELIVERY_OPTIONS)

    creditor = _get_creditor(creditor_id)
    if creditor.installments:
        raise ValidationError(
            f"Creditor #{creditor.id} already has an installment schedule",
            details={"installments": len(creditor.installments)},
        )
    if creditor.remaining_amount_cents <= 0:
        raise ValidationError(f"Creditor #{creditor.id} has no outstanding balance")

    amounts = split_cents(creditor.remaining_amount_cents, count)
    installments = [
        CarneInstallment(
            creditor_id=creditor.id,
            installment_number=number,
            due_date=add_months(creditor.due_date, number - 1),
            amount_cents=amount,
            paid=False,
        )
        for number, amount in enumerate(amounts, start=1)
    ]
    db.session.add_all(installments)
    commit_or_raise()

    current_app.logger.info(
        "Carnê generated for creditor #%s: %s x ~%s cents",
        creditor.id, count, amounts[0],
    )

    schedule = CarneSchedule(creditor=creditor, installments=installments)
    try:
        payload = build_carne_payload(creditor, installments, delivery_via)
        schedule.document = render_document(DOCUMENT_CARNE, payload)
    except Exception as exc:
        # Renderer is deployment-supplied code; the schedule is already committed
        current_app.logger.warning("Carnê rendering failed for creditor #%s: %s", creditor.id, exc)
        schedule.warnings.append(
            f"Installments for creditor #{creditor.id} were created, but the carnê document could not be generated"
        )
    return schedule


def list_installments(creditor_id: int) -> list[CarneInstallment]:
    return _get_creditor(creditor_id).installments


def mark_installment_paid(installment_id: int, paid_at: datetime | None = None) -> CarneInstallment:
    """Flag one slip as paid. The creditor balance is left untouched."""
    installment = _get_installment(installment_id)
    if installment.paid:
        raise ValidationError(f"Installment #{installment_id} is already paid")
    installment.paid = True
    installment.paid_at = paid_at or utcnow()
    commit_or_raise()
    return installment


def reschedule_installment(installment_id: int, due_date) -> CarneInstallment:
    installment = _get_installment(installment_id)
    if installment.paid:
        raise ValidationError(f"Installment #{installment_id} is already paid")
    installment.due_date = coerce_datetime(due_date, "due_date")
    commit_or_raise()
    return installment


# =============================================================================
# PAYMENTS
# =============================================================================

def mark_creditor_paid(creditor_id: int) -> Creditor:
    """Settle the whole debt regardless of installment state."""
    def _apply() -> Creditor:
        creditor = _get_creditor(creditor_id, lock=True)
        _set_balance(creditor, creditor.total_debt_cents, creditor.total_debt_cents)
        commit_or_raise()
        return creditor

    creditor = run_with_retry(_apply)
    current_app.logger.info("Creditor #%s settled", creditor.id)
    return creditor


def record_payment(creditor_id: int, amount_cents, operator=None, notes: str | None = None) -> CreditorPayment:
    """
    Record money received against a creditor and move its balance.

    Raises:
        ValidationError: amount <= 0 or larger than the remaining balance
        NotFoundError: unknown creditor
    """
    amount = require_int(amount_cents, "amount_cents", minimum=1)

    def _apply() -> CreditorPayment:
        creditor = _get_creditor(creditor_id, lock=True)
        if amount > creditor.remaining_amount_cents:
            raise ValidationError(
                "Payment exceeds the remaining balance",
                details={"remaining_amount_cents": creditor.remaining_amount_cents},
            )
        _set_balance(creditor, creditor.total_debt_cents, creditor.paid_amount_cents + amount)
        payment = CreditorPayment(
            creditor_id=creditor.id,
            amount_cents=amount,
            payment_date=utcnow(),
            notes=(notes or "").strip() or None,
            created_by_user_id=operator.user_id if operator else None,
        )
        db.session.add(payment)
        commit_or_raise()
        return payment

    try:
        return run_with_retry(_apply)
    except PdvError:
        db.session.rollback()
        raise


# =============================================================================
# QUERIES
# =============================================================================

def _status_filter(status: str, now: datetime):
    if status == CREDITOR_STATUS_PAID:
        return Creditor.status == CREDITOR_STATUS_PAID
    if status == CREDITOR_STATUS_OVERDUE:
        return and_(Creditor.status == CREDITOR_STATUS_PENDING, Creditor.due_date < now)
    return and_(Creditor.status == CREDITOR_STATUS_PENDING, Creditor.due_date >= now)


def list_creditors(
    status: str | None = None,
    customer_id: int | None = None,
    now: datetime | None = None,
) -> list[Creditor]:
    """
    List creditors, optionally filtered by effective status.

    Status filtering matches Creditor.effective_status(now).
    """
    now = now or utcnow()
    query = db.session.query(Creditor)
    if status:
        require_choice(status, "status", CREDITOR_STATUSES)
        query = query.filter(_status_filter(status, now))
    if customer_id is not None:
        query = query.filter(Creditor.customer_id == customer_id)
    return query.order_by(Creditor.due_date.asc(), Creditor.id.asc()).all()


def creditor_summary(creditor: Creditor, now: datetime | None = None) -> dict:
    now = now or utcnow()
    installments = creditor.installments
    paid = [inst for inst in installments if inst.paid]
    unpaid = [inst for inst in installments if not inst.paid]
    next_due = min((inst.due_date for inst in unpaid), default=None)
    return {
        "creditor": creditor.to_dict(now),
        "installments": [inst.to_dict() for inst in installments],
        "payments": [payment.to_dict() for payment in creditor.payments],
        "total_installments": len(installments),
        "paid_installments": len(paid),
        "installments_paid_cents": sum(inst.amount_cents for inst in paid),
        "installments_remaining_cents": sum(inst.amount_cents for inst in unpaid),
        "overdue_installments": sum(1 for inst in unpaid if inst.due_date < now),
        "next_due_date": to_utc_z(next_due) if next_due else None,
    }


def ledger_overview(now: datetime | None = None) -> dict:
    now = now or utcnow()
    outstanding = db.session.query(
        func.coalesce(func.sum(Creditor.remaining_amount_cents), 0)
    ).filter(Creditor.status == CREDITOR_STATUS_PENDING).scalar()

    counts = {}
    for status in CREDITOR_STATUSES:
        counts[status] = db.session.query(func.count(Creditor.id)).filter(_status_filter(status, now)).scalar()

    return {
        "outstanding_cents": int(outstanding or 0),
        "pending_count": counts[CREDITOR_STATUS_PENDING],
        "overdue_count": counts[CREDITOR_STATUS_OVERDUE],
        "paid_count": counts[CREDITOR_STATUS_PAID],
    }
