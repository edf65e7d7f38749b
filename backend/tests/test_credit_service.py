"""
Credit ledger tests: creditor opening, carnê schedule, payments and the
read-time overdue projection.
"""

from datetime import datetime, timedelta

import pytest

from pdv.errors import NotFoundError, ValidationError
from pdv.models import CarneInstallment, Creditor, CreditorPayment
from pdv.services import credit_service
from pdv.services.credit_service import split_cents
from pdv.services.sales_service import CartLine, finalize_sale
from pdv.time_utils import add_months, utcnow


@pytest.fixture
def credit_sale(db_session, product, customer, operator):
    """Two units at 1000 on credit, 4 installments."""
    return finalize_sale(
        [CartLine(product.id, 2)], "credit", operator,
        customer_id=customer.id, installments=4,
    )


@pytest.fixture
def creditor(credit_sale):
    return credit_sale.creditor


def _reload(db_session, creditor_id: int) -> Creditor:
    db_session.expire_all()
    return db_session.get(Creditor, creditor_id)


# =============================================================================
# HELPERS
# =============================================================================

@pytest.mark.parametrize("total,parts,expected", [
    (2000, 4, [500, 500, 500, 500]),
    (1000, 3, [334, 333, 333]),
    (1001, 4, [251, 250, 250, 250]),
    (5, 7, [1, 1, 1, 1, 1, 0, 0]),
    (0, 2, [0, 0]),
])
def test_split_cents(total, parts, expected):
    assert split_cents(total, parts) == expected
    assert sum(split_cents(total, parts)) == total


def test_split_cents_rejects_zero_parts():
    with pytest.raises(ValidationError):
        split_cents(100, 0)


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2024, 1, 31, 10, 30), 1) == datetime(2024, 2, 29, 10, 30)
    assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)
    assert add_months(datetime(2024, 5, 10), 0) == datetime(2024, 5, 10)


# =============================================================================
# OPENING
# =============================================================================

def test_creditor_due_date_uses_credit_term(creditor):
    expected = utcnow() + timedelta(days=30)
    assert abs((creditor.due_date - expected).total_seconds()) < 60


def test_opening_twice_returns_existing_creditor(db_session, credit_sale):
    again = credit_service.open_creditor_for_sale(credit_sale.sale, credit_sale.sale.customer_id, 4)
    assert again.id == credit_sale.creditor.id
    assert db_session.query(Creditor).count() == 1


def test_manual_creditor_and_update(db_session, customer):
    creditor = credit_service.create_creditor({
        "customer_id": customer.id,
        "total_debt_cents": 5000,
        "paid_amount_cents": 1000,
        "description": "Fiado antigo",
    })
    assert creditor.sale_id is None
    assert creditor.remaining_amount_cents == 4000
    assert creditor.status == "pending"

    updated = credit_service.update_creditor(creditor.id, {"paid_amount_cents": 5000})
    assert updated.remaining_amount_cents == 0
    assert updated.status == "paid"

    with pytest.raises(ValidationError):
        credit_service.update_creditor(creditor.id, {"total_debt_cents": 100})
    with pytest.raises(ValidationError):
        credit_service.update_creditor(creditor.id, {"status": "overdue"})
    assert _reload(db_session, creditor.id).total_debt_cents == 5000


def test_manual_creditor_requires_known_customer(db_session):
    with pytest.raises(NotFoundError):
        credit_service.create_creditor({"customer_id": 999, "total_debt_cents": 100})


# =============================================================================
# CARNÊ SCHEDULE
# =============================================================================

def test_schedule_for_credit_sale(db_session, creditor):
    schedule = credit_service.generate_installment_schedule(creditor.id, 4)

    installments = schedule.installments
    assert [i.installment_number for i in installments] == [1, 2, 3, 4]
    assert [i.amount_cents for i in installments] == [500, 500, 500, 500]
    assert [i.due_date for i in installments] == [add_months(creditor.due_date, n) for n in range(4)]
    assert not any(i.paid for i in installments)
    assert schedule.warnings == []
    # No renderer configured: the payload is the document
    assert schedule.document["kind"] == "carne"
    assert schedule.document["total_cents"] == 2000


def test_schedule_sums_to_remaining_balance(db_session, customer):
    creditor = credit_service.create_creditor({"customer_id": customer.id, "total_debt_cents": 10001})
    schedule = credit_service.generate_installment_schedule(creditor.id, 6)

    assert sum(i.amount_cents for i in schedule.installments) == 10001
    assert db_session.query(CarneInstallment).filter_by(creditor_id=creditor.id).count() == 6


def test_schedule_uses_remaining_not_total(db_session, creditor):
    credit_service.record_payment(creditor.id, 800)
    schedule = credit_service.generate_installment_schedule(creditor.id, 3)
    assert [i.amount_cents for i in schedule.installments] == [400, 400, 400]


def test_schedule_rejections(db_session, creditor):
    with pytest.raises(ValidationError):
        credit_service.generate_installment_schedule(creditor.id, 0)
    with pytest.raises(ValidationError):
        credit_service.generate_installment_schedule(creditor.id, 2, delivery_via="email")
    with pytest.raises(NotFoundError):
        credit_service.generate_installment_schedule(9999, 2)

    credit_service.generate_installment_schedule(creditor.id, 2)
    with pytest.raises(ValidationError):
        credit_service.generate_installment_schedule(creditor.id, 2)


def test_schedule_rejected_when_nothing_is_owed(db_session, creditor):
    credit_service.mark_creditor_paid(creditor.id)
    with pytest.raises(ValidationError):
        credit_service.generate_installment_schedule(creditor.id, 2)


def test_both_copies_in_document(db_session, creditor):
    schedule = credit_service.generate_installment_schedule(creditor.id, 2, delivery_via="both")
    copies = schedule.document["copies"]
    assert [c["via"] for c in copies] == ["customer", "store"]
    assert all(len(c["slips"]) == 2 for c in copies)


def test_renderer_is_called_with_payload(app, db_session, creditor, monkeypatch):
    calls = []

    def _renderer(kind, payload):
        calls.append((kind, payload["creditor_id"]))
        return {"pdf": "data:application/pdf;base64,AAA"}

    monkeypatch.setitem(app.config, "DOCUMENT_RENDERER", _renderer)

    schedule = credit_service.generate_installment_schedule(creditor.id, 2)

    assert calls == [("carne", creditor.id)]
    assert schedule.document == {"pdf": "data:application/pdf;base64,AAA"}


def test_renderer_failure_keeps_schedule(app, db_session, creditor, monkeypatch):
    def _broken(kind, payload):
        raise RuntimeError("printer on fire")

    monkeypatch.setitem(app.config, "DOCUMENT_RENDERER", _broken)

    schedule = credit_service.generate_installment_schedule(creditor.id, 4)

    assert schedule.document is None
    assert len(schedule.warnings) == 1
    assert "carnê document could not be generated" in schedule.warnings[0]
    assert db_session.query(CarneInstallment).filter_by(creditor_id=creditor.id).count() == 4


# =============================================================================
# PAYMENTS
# =============================================================================

def test_paying_an_installment_leaves_balance_alone(db_session, creditor):
    schedule = credit_service.generate_installment_schedule(creditor.id, 4)
    first = schedule.installments[0]

    paid = credit_service.mark_installment_paid(first.id)

    assert paid.paid is True
    assert paid.paid_at is not None
    reloaded = _reload(db_session, creditor.id)
    assert reloaded.remaining_amount_cents == 2000
    assert reloaded.paid_amount_cents == 0
    assert reloaded.status == "pending"

    summary = credit_service.creditor_summary(reloaded)
    assert summary["paid_installments"] == 1
    assert summary["installments_paid_cents"] == 500
    assert summary["installments_remaining_cents"] == 1500

    with pytest.raises(ValidationError):
        credit_service.mark_installment_paid(first.id)


def test_reschedule_unpaid_installment(db_session, creditor):
    schedule = credit_service.generate_installment_schedule(creditor.id, 2)
    target = schedule.installments[1]

    moved = credit_service.reschedule_installment(target.id, "2030-06-15T00:00:00Z")
    assert moved.due_date == datetime(2030, 6, 15)

    credit_service.mark_installment_paid(target.id)
    with pytest.raises(ValidationError):
        credit_service.reschedule_installment(target.id, "2030-07-15T00:00:00Z")


def test_mark_creditor_paid_settles_everything(db_session, creditor):
    credit_service.generate_installment_schedule(creditor.id, 4)

    settled = credit_service.mark_creditor_paid(creditor.id)

    assert settled.status == "paid"
    assert settled.paid_amount_cents == settled.total_debt_cents == 2000
    assert settled.remaining_amount_cents == 0
    # Slips are not touched
    assert not any(i.paid for i in settled.installments)


def test_record_payment_moves_balance(db_session, creditor, operator):
    payment = credit_service.record_payment(creditor.id, 700, operator=operator, notes="Pix")

    assert payment.amount_cents == 700
    assert payment.created_by_user_id == operator.user_id
    reloaded = _reload(db_session, creditor.id)
    assert reloaded.paid_amount_cents == 700
    assert reloaded.remaining_amount_cents == 1300
    assert reloaded.status == "pending"

    with pytest.raises(ValidationError):
        credit_service.record_payment(creditor.id, 1301)
    with pytest.raises(ValidationError):
        credit_service.record_payment(creditor.id, 0)

    credit_service.record_payment(creditor.id, 1300)
    reloaded = _reload(db_session, creditor.id)
    assert reloaded.remaining_amount_cents == 0
    assert reloaded.status == "paid"
    assert db_session.query(CreditorPayment).filter_by(creditor_id=creditor.id).count() == 2


def test_delete_creditor_removes_schedule(db_session, creditor):
    credit_service.generate_installment_schedule(creditor.id, 3)
    credit_service.record_payment(creditor.id, 100)

    credit_service.delete_creditor(creditor.id)

    assert db_session.query(Creditor).count() == 0
    assert db_session.query(CarneInstallment).count() == 0
    assert db_session.query(CreditorPayment).count() == 0


# =============================================================================
# OVERDUE PROJECTION
# =============================================================================

def test_overdue_is_projected_not_stored(db_session, customer):
    late = credit_service.create_creditor({
        "customer_id": customer.id, "total_debt_cents": 3000, "due_date": "2020-01-10T00:00:00Z",
    })
    current = credit_service.create_creditor({"customer_id": customer.id, "total_debt_cents": 1000})
    settled_late = credit_service.create_creditor({
        "customer_id": customer.id, "total_debt_cents": 500, "paid_amount_cents": 500,
        "due_date": "2020-01-10T00:00:00Z",
    })

    assert late.effective_status() == "overdue"
    assert late.to_dict()["status"] == "overdue"
    assert _reload(db_session, late.id).status == "pending"
    assert current.effective_status() == "pending"
    assert settled_late.effective_status() == "paid"

    assert [c.id for c in credit_service.list_creditors(status="overdue")] == [late.id]
    assert [c.id for c in credit_service.list_creditors(status="pending")] == [current.id]
    assert [c.id for c in credit_service.list_creditors(status="paid")] == [settled_late.id]

    # Before the due date the same row is merely pending
    early = datetime(2019, 12, 1)
    assert _reload(db_session, late.id).effective_status(early) == "pending"

    overview = credit_service.ledger_overview()
    assert overview["outstanding_cents"] == 4000
    assert overview["overdue_count"] == 1
    assert overview["pending_count"] == 1
    assert overview["paid_count"] == 1

    with pytest.raises(ValidationError):
        credit_service.list_creditors(status="late")
