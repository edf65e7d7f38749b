"""
Legacy import tests: dependency order, id remapping, cents conversion,
enum translation and rerun behavior.
"""

import copy

import pytest

from pdv.errors import ValidationError
from pdv.models import (
    CarneInstallment,
    Creditor,
    Customer,
    Exchange,
    LegacyIdMapping,
    Product,
    Return,
    Sale,
    StockMovement,
    User,
)
from pdv.services import return_service
from pdv.services.migration_service import IMPORT_ORDER, migrate_legacy_export, to_cents


LEGACY_EXPORT = {
    "users": [
        {"id": "u1", "username": "joana", "password": "1234", "role": "vendedor"},
    ],
    "customers": [
        {"id": "c1", "name": "João Souza", "phone": "1133334444", "cpf": "111.222.333-44"},
    ],
    "products": [
        {"id": "p1", "name": "Vestido", "category": "Roupas", "price": 89.9, "stock": 4, "minStock": 1},
    ],
    "sales": [
        {
            "id": "s1",
            "items": [{"productId": "p1", "productName": "Vestido", "quantity": 2, "price": 89.9}],
            "discount": 9.8,
            "total": 170,
            "paymentMethod": "crediario",
            "customerId": "c1",
            "userId": "u1",
            "installments": 2,
            "installmentValue": 85,
            "createdAt": "2024-03-01T10:00:00Z",
        },
    ],
    "creditors": [
        {
            "id": "k1",
            "customerId": "c1",
            "customerName": "João Souza",
            "totalDebt": 170,
            "paidAmount": 50,
            "remainingAmount": 120,
            "dueDate": "2024-04-01T00:00:00Z",
            "status": "overdue",
            "description": "Venda s1",
        },
    ],
    "carneInstallments": [
        {"id": "i1", "creditorId": "k1", "installmentNumber": 1, "dueDate": "2024-04-01T00:00:00Z",
         "amount": 85, "paid": True, "paidAt": "2024-03-30T12:00:00Z"},
        {"id": "i2", "creditorId": "k1", "installmentNumber": 2, "dueDate": "2024-05-01T00:00:00Z",
         "amount": 85, "paid": False},
    ],
    "creditSales": [{"id": "cs1"}],
    "stockMovements": [
        {"id": "m1", "productId": "p1", "productName": "Vestido", "type": "saida", "quantity": 2, "reason": "Venda"},
    ],
    "expenses": [{"id": "e1"}, {"id": "e2"}],
    "returns": [
        {
            "id": "r1",
            "saleId": "s1",
            "type": "devolucao",
            "items": [{"productId": "p1", "productName": "Vestido", "quantity": 1, "condition": "danificado"}],
            "reason": "defeito",
            "totalRefund": 89.9,
            "status": "processada",
            "userId": "u1",
            "customerId": "c1",
            "processedAt": "2024-03-05T09:00:00Z",
        },
    ],
    "exchanges": [
        {"id": "x1", "originalSaleId": "s1", "reason": "tamanho", "returnedItems": [], "newItems": [],
         "status": "pendente", "customerId": "c1"},
    ],
}


def _new_id(db_session, entity_type: str, legacy_id: str) -> int:
    return db_session.query(LegacyIdMapping).filter_by(entity_type=entity_type, legacy_id=legacy_id).one().new_id


def _statuses(report) -> dict:
    return {c.name: c.status for c in report.collections}


@pytest.mark.parametrize("value,expected", [
    (89.9, 8990),
    ("19.99", 1999),
    ("10.005", 1001),
    ("0.125", 13),
    (170, 17000),
    (None, 0),
    ("", 0),
])
def test_to_cents_rounds_half_up(value, expected):
    assert to_cents(value) == expected


def test_to_cents_rejects_garbage():
    with pytest.raises(ValidationError):
        to_cents("dez reais")


def test_full_export_is_remapped(db_session, admin_user):
    report = migrate_legacy_export(copy.deepcopy(LEGACY_EXPORT), fallback_user_id=admin_user.id)

    assert report.ok
    assert [c.name for c in report.collections] == [key for key, _ in IMPORT_ORDER]
    statuses = _statuses(report)
    assert statuses["creditSales"] == "skipped"
    assert statuses["expenses"] == "skipped"
    assert all(s == "success" for name, s in statuses.items() if name not in ("creditSales", "expenses"))
    assert report.warnings == []

    user = db_session.get(User, _new_id(db_session, "user", "u1"))
    assert user.username == "joana"
    assert user.role == "seller"

    customer = db_session.get(Customer, _new_id(db_session, "customer", "c1"))
    product = db_session.get(Product, _new_id(db_session, "product", "p1"))
    assert product.price_cents == 8990
    assert product.min_stock == 1

    sale = db_session.get(Sale, _new_id(db_session, "sale", "s1"))
    assert sale.payment_method == "credit"
    assert sale.customer_id == customer.id
    assert sale.user_id == user.id
    assert (sale.subtotal_cents, sale.discount_cents, sale.total_cents) == (17980, 980, 17000)
    assert sale.installment_value_cents == 8500
    assert [(i.product_id, i.quantity, i.unit_price_cents) for i in sale.items] == [(product.id, 2, 8990)]

    creditor = db_session.get(Creditor, _new_id(db_session, "creditor", "k1"))
    assert creditor.customer_id == customer.id
    assert creditor.remaining_amount_cents == 12000
    assert creditor.status == "pending"
    assert creditor.effective_status() == "overdue"

    installments = db_session.query(CarneInstallment).order_by(CarneInstallment.installment_number).all()
    assert [(i.creditor_id, i.amount_cents, i.paid) for i in installments] == [
        (creditor.id, 8500, True),
        (creditor.id, 8500, False),
    ]

    movement = db_session.query(StockMovement).one()
    assert (movement.product_id, movement.type, movement.quantity) == (product.id, "out", 2)

    return_doc = db_session.query(Return).one()
    assert return_doc.sale_id == sale.id
    assert return_doc.status == "processed"
    assert return_doc.total_refund_cents == 8990
    assert [(line.condition, line.unit_price_cents) for line in return_doc.lines] == [("damaged", 8990)]

    exchange = db_session.query(Exchange).one()
    assert exchange.original_sale_id == sale.id
    assert exchange.status == "pending"
    assert exchange.user_id == admin_user.id


def test_rerun_skips_mapped_rows(db_session, admin_user):
    migrate_legacy_export(copy.deepcopy(LEGACY_EXPORT), fallback_user_id=admin_user.id)

    report = migrate_legacy_export(copy.deepcopy(LEGACY_EXPORT), fallback_user_id=admin_user.id)

    assert report.ok
    by_name = {c.name: c for c in report.collections}
    assert by_name["sales"].migrated == 0
    assert by_name["sales"].skipped == 1
    assert by_name["carneInstallments"].skipped == 2
    assert db_session.query(Sale).count() == 1
    assert db_session.query(User).count() == 2


def test_inconsistent_amounts_are_normalized(db_session, admin_user):
    export = copy.deepcopy(LEGACY_EXPORT)
    export["sales"][0]["total"] = 180
    export["creditors"][0]["remainingAmount"] = 100

    report = migrate_legacy_export(export, fallback_user_id=admin_user.id)

    assert report.ok
    assert len(report.warnings) == 2
    assert db_session.query(Sale).one().total_cents == 17000
    assert db_session.query(Creditor).one().remaining_amount_cents == 12000


def test_same_product_at_different_prices_stays_separate(db_session, admin_user):
    export = copy.deepcopy(LEGACY_EXPORT)
    export["sales"][0]["items"] = [
        {"productId": "p1", "productName": "Vestido", "quantity": 2, "price": 89.9},
        {"productId": "p1", "productName": "Vestido", "quantity": 1, "price": 79.9},
        {"productId": "p1", "productName": "Vestido", "quantity": 1, "price": 89.9},
    ]
    export["sales"][0]["total"] = 339.8

    report = migrate_legacy_export(export, fallback_user_id=admin_user.id)

    assert report.ok
    assert len(report.warnings) == 1
    assert "different prices" in report.warnings[0]
    sale = db_session.query(Sale).one()
    items = sorted(sale.items, key=lambda item: item.unit_price_cents)
    assert [(i.quantity, i.unit_price_cents, i.line_total_cents) for i in items] == [
        (1, 7990, 7990),
        (3, 8990, 26970),
    ]
    assert sale.subtotal_cents == 34960
    assert sale.total_cents == 33980


def test_cancelling_imported_return_takes_its_units_back(db_session, admin_user):
    export = copy.deepcopy(LEGACY_EXPORT)
    export["returns"][0]["items"][0]["condition"] = "novo"
    export["returns"][0]["status"] = "pendente"
    export["returns"][0]["processedAt"] = None
    migrate_legacy_export(export, fallback_user_id=admin_user.id)

    return_id = _new_id(db_session, "return", "r1")
    assert [line.restocked_quantity for line in db_session.get(Return, return_id).lines] == [1]

    return_service.set_return_status(return_id, "cancelled")

    db_session.expire_all()
    assert db_session.get(Product, _new_id(db_session, "product", "p1")).stock == 3


def test_failing_collection_stops_the_run(db_session, admin_user):
    export = copy.deepcopy(LEGACY_EXPORT)
    export["sales"][0]["items"][0]["productId"] = "missing"

    report = migrate_legacy_export(export, fallback_user_id=admin_user.id)

    assert not report.ok
    statuses = _statuses(report)
    assert statuses["products"] == "success"
    assert statuses["sales"] == "error"
    assert statuses["creditors"] == "pending"
    assert statuses["exchanges"] == "pending"
    failed = next(c for c in report.collections if c.name == "sales")
    assert "missing" in failed.error
    assert failed.migrated == 0

    assert db_session.query(Product).count() == 1
    assert db_session.query(Sale).count() == 0
    assert db_session.query(Creditor).count() == 0


def test_unknown_legacy_enum_fails_collection(db_session, admin_user):
    export = copy.deepcopy(LEGACY_EXPORT)
    export["sales"][0]["paymentMethod"] = "cheque"

    report = migrate_legacy_export(export, fallback_user_id=admin_user.id)

    assert _statuses(report)["sales"] == "error"


def test_export_and_fallback_user_are_checked(db_session, admin_user):
    with pytest.raises(ValidationError):
        migrate_legacy_export([], fallback_user_id=admin_user.id)
    with pytest.raises(ValidationError):
        migrate_legacy_export({}, fallback_user_id=9999)
