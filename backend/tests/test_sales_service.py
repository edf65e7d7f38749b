"""
Checkout tests: totals, stock effects, credit opening and the partial
failure policy (sale stands, warnings describe what failed).
"""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from pdv.errors import ConstraintError, NotFoundError, TransientError, ValidationError
from pdv.models import Creditor, Product, Sale, StockMovement
from pdv.services import sales_service
from pdv.services.document_service import build_sale_report
from pdv.services.sales_service import CartLine, finalize_sale


def _stock(db_session, product_id: int) -> int:
    db_session.expire_all()
    return db_session.get(Product, product_id).stock


@pytest.fixture
def locked_table():
    """Make inserts into a mapped table fail the way a locked database does."""
    registered = []

    def _lock(model):
        def _raise(mapper, connection, target):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        event.listen(model, "before_insert", _raise)
        registered.append((model, _raise))

    yield _lock
    for model, fn in registered:
        event.remove(model, "before_insert", fn)


def test_cash_sale_moves_stock(db_session, product, operator):
    outcome = finalize_sale([CartLine(product.id, 2)], "cash", operator)

    sale = outcome.sale
    assert sale.total_cents == 2000
    assert sale.subtotal_cents == 2000
    assert sale.user_id == operator.user_id
    assert sale.installments is None
    assert outcome.creditor is None
    assert outcome.warnings == []

    assert len(outcome.stock_movements) == 1
    movement = outcome.stock_movements[0]
    assert (movement.product_id, movement.type, movement.quantity) == (product.id, "out", 2)
    assert movement.reason == f"Sale #{sale.id}"
    assert _stock(db_session, product.id) == 8


def test_total_is_lines_minus_discount(db_session, product, product_b, operator):
    outcome = finalize_sale(
        [CartLine(product.id, 2), CartLine(product_b.id, 1)],
        "pix",
        operator,
        discount_cents=300,
    )

    sale = outcome.sale
    assert sale.subtotal_cents == 4500
    assert sale.discount_cents == 300
    assert sale.total_cents == sum(i.quantity * i.unit_price_cents for i in sale.items) - 300
    assert len(outcome.stock_movements) == 2


def test_item_snapshots_survive_catalog_changes(db_session, product, operator):
    sale_id = finalize_sale([CartLine(product.id, 1)], "card", operator).sale.id

    product.name = "Camiseta Nova"
    product.price_cents = 4000
    db_session.commit()

    db_session.expire_all()
    item = db_session.get(Sale, sale_id).items[0]
    assert item.product_name == "Camiseta"
    assert item.unit_price_cents == 1000


def test_duplicate_cart_lines_are_merged(db_session, product, operator):
    outcome = finalize_sale([CartLine(product.id, 1), CartLine(product.id, 2)], "cash", operator)

    assert len(outcome.sale.items) == 1
    assert outcome.sale.items[0].quantity == 3
    assert len(outcome.stock_movements) == 1
    assert _stock(db_session, product.id) == 7


@pytest.mark.parametrize("kwargs", [
    {"cart": []},
    {"payment_method": "cheque"},
    {"discount_cents": -1},
    {"discount_cents": 2001},
    {"payment_method": "credit"},
    {"payment_method": "credit", "customer_id": "customer", "installments": 0},
])
def test_invalid_checkout_writes_nothing(db_session, product, customer, operator, kwargs):
    args = {"cart": [CartLine(product.id, 2)], "payment_method": "cash"}
    args.update(kwargs)
    if args.get("customer_id") == "customer":
        args["customer_id"] = customer.id
    cart = args.pop("cart")
    payment_method = args.pop("payment_method")

    with pytest.raises(ValidationError):
        finalize_sale(cart, payment_method, operator, **args)

    assert db_session.query(Sale).count() == 0
    assert db_session.query(StockMovement).count() == 0
    assert _stock(db_session, product.id) == 10


def test_unknown_product_or_customer(db_session, product, operator):
    with pytest.raises(NotFoundError):
        finalize_sale([CartLine(product.id, 1), CartLine(9999, 1)], "cash", operator)
    with pytest.raises(NotFoundError):
        finalize_sale([CartLine(product.id, 1)], "credit", operator, customer_id=9999, installments=2)
    assert db_session.query(Sale).count() == 0


def test_credit_sale_opens_creditor(db_session, product, customer, operator):
    outcome = finalize_sale(
        [CartLine(product.id, 2)], "credit", operator,
        customer_id=customer.id, installments=4,
    )

    sale = outcome.sale
    creditor = outcome.creditor
    assert outcome.warnings == []
    assert sale.installments == 4
    assert sale.installment_value_cents == 500
    assert creditor.sale_id == sale.id
    assert creditor.customer_id == customer.id
    assert creditor.customer_name == "Maria Silva"
    assert creditor.total_debt_cents == creditor.remaining_amount_cents == sale.total_cents == 2000
    assert creditor.paid_amount_cents == 0
    assert creditor.status == "pending"
    assert creditor.installments == []


def test_installment_value_is_first_share(db_session, product, customer, operator):
    outcome = finalize_sale(
        [CartLine(product.id, 1)], "credit", operator,
        customer_id=customer.id, installments=3,
    )
    assert outcome.sale.installment_value_cents == 334


def test_zero_total_credit_sale_opens_settled_creditor(db_session, product, customer, operator):
    outcome = finalize_sale(
        [CartLine(product.id, 1)], "credit", operator,
        discount_cents=1000, customer_id=customer.id, installments=1,
    )
    assert outcome.sale.total_cents == 0
    assert outcome.creditor.status == "paid"
    assert outcome.creditor.remaining_amount_cents == 0


def test_creditor_failure_keeps_the_sale(db_session, product, customer, operator, monkeypatch):
    def _reject(*args, **kwargs):
        raise ConstraintError("Store rejected the write")

    monkeypatch.setattr(sales_service, "open_creditor_for_sale", _reject)

    outcome = finalize_sale(
        [CartLine(product.id, 2)], "credit", operator,
        customer_id=customer.id, installments=2,
    )

    assert outcome.creditor is None
    assert len(outcome.warnings) == 1
    assert "credit ledger entry failed" in outcome.warnings[0]
    assert "add it manually" in outcome.warnings[0]
    assert db_session.query(Sale).count() == 1
    assert db_session.query(Creditor).count() == 0
    assert _stock(db_session, product.id) == 8


def test_locked_creditor_table_keeps_the_sale(db_session, product, customer, operator, locked_table):
    locked_table(Creditor)

    outcome = finalize_sale(
        [CartLine(product.id, 2)], "credit", operator,
        customer_id=customer.id, installments=2,
    )

    assert outcome.sale.id is not None
    assert outcome.creditor is None
    assert len(outcome.warnings) == 1
    assert "add it manually" in outcome.warnings[0]
    assert db_session.query(Sale).count() == 1
    assert db_session.query(Creditor).count() == 0
    assert _stock(db_session, product.id) == 8


def test_locked_sales_table_is_transient(db_session, product, operator, locked_table):
    locked_table(Sale)

    with pytest.raises(TransientError) as exc_info:
        finalize_sale([CartLine(product.id, 2)], "cash", operator)

    assert exc_info.value.status_code == 503
    assert db_session.query(Sale).count() == 0
    assert db_session.query(StockMovement).count() == 0
    assert _stock(db_session, product.id) == 10


def test_stock_failure_on_one_line_keeps_the_sale(db_session, product, product_b, operator, monkeypatch):
    real_apply_delta = sales_service.apply_delta

    def _flaky(product_id, *args, **kwargs):
        if product_id == product_b.id:
            raise TransientError("Store unavailable")
        return real_apply_delta(product_id, *args, **kwargs)

    monkeypatch.setattr(sales_service, "apply_delta", _flaky)

    outcome = finalize_sale([CartLine(product.id, 1), CartLine(product_b.id, 1)], "cash", operator)

    assert outcome.sale.id is not None
    assert len(outcome.stock_movements) == 1
    assert len(outcome.warnings) == 1
    assert "Calça Jeans" in outcome.warnings[0]
    assert _stock(db_session, product.id) == 9
    assert _stock(db_session, product_b.id) == 5


def test_parse_cart_rejects_bad_lines():
    with pytest.raises(ValidationError):
        sales_service.parse_cart({"product_id": 1})
    with pytest.raises(ValidationError):
        sales_service.parse_cart([{"product_id": 1, "quantity": 0}])
    with pytest.raises(ValidationError):
        sales_service.parse_cart([{"product_id": 1, "quantity": 1.5}])
    assert sales_service.parse_cart([{"product_id": "3", "quantity": 2}]) == [CartLine(3, 2)]


def test_list_sales_filters(db_session, product, customer, operator):
    finalize_sale([CartLine(product.id, 1)], "cash", operator)
    finalize_sale([CartLine(product.id, 1)], "credit", operator, customer_id=customer.id, installments=1)

    assert len(sales_service.list_sales()) == 2
    credit_sales = sales_service.list_sales(payment_method="credit")
    assert [s.payment_method for s in credit_sales] == ["credit"]
    assert len(sales_service.list_sales(customer_id=customer.id)) == 1


def test_sale_report_names_the_operator(db_session, product, customer, operator):
    outcome = finalize_sale(
        [CartLine(product.id, 1)], "credit", operator,
        customer_id=customer.id, installments=1,
    )

    document = build_sale_report(outcome.sale)

    assert document["operator"] == "vendedor"
    assert document["customer_name"] == "Maria Silva"
    assert document["lines"][0]["line_total_cents"] == 1000
