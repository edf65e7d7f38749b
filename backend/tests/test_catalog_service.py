"""
Product and customer registry tests.
"""

import pytest

from pdv.errors import ConstraintError, NotFoundError, ValidationError
from pdv.services import customer_service, products_service


def test_create_product_from_payload(db_session):
    product = products_service.create_product({
        "name": "  Boné  ",
        "price_cents": "1990",
        "stock": 3,
        "min_stock": 5,
        "barcode": "",
    })

    assert product.name == "Boné"
    assert product.price_cents == 1990
    assert product.barcode is None
    assert product.category == "Geral"
    assert product.is_low_stock()


@pytest.mark.parametrize("payload", [
    {"price_cents": 100},
    {"name": "X", "price_cents": -1},
    {"name": "X", "price_cents": 12.5},
    {"name": "X", "price_cents": "1e3"},
    {"name": "", "price_cents": 100},
    {"name": "X", "price_cents": 100, "version_id": 7},
])
def test_invalid_product_payloads(db_session, payload):
    with pytest.raises(ValidationError):
        products_service.create_product(payload)


def test_stock_is_not_writable_on_update(db_session, product):
    with pytest.raises(ValidationError):
        products_service.update_product(product.id, {"stock": 99})

    updated = products_service.update_product(product.id, {"price_cents": 1200, "min_stock": 4})
    assert updated.price_cents == 1200
    assert updated.stock == 10


def test_duplicate_barcode_is_a_conflict(db_session):
    products_service.create_product({"name": "A", "price_cents": 100, "barcode": "789000"})
    with pytest.raises(ConstraintError):
        products_service.create_product({"name": "B", "price_cents": 100, "barcode": "789000"})


def test_product_listing(db_session, product, product_b):
    products_service.create_product({"name": "Meia", "category": "Acessórios", "price_cents": 500, "stock": 0})

    assert [p.name for p in products_service.list_products(search="cal")] == ["Calça Jeans"]
    assert [p.name for p in products_service.list_products(category="Acessórios")] == ["Meia"]
    assert [p.name for p in products_service.list_low_stock_products()] == ["Meia"]

    with pytest.raises(NotFoundError):
        products_service.get_product(9999)


def test_customer_registry(db_session, customer):
    other = customer_service.create_customer({"name": "Pedro Alves", "phone": "", "cpf": ""})
    assert other.phone is None
    assert other.cpf is None

    assert [c.name for c in customer_service.list_customers(search="123.456")] == ["Maria Silva"]
    assert len(customer_service.list_customers()) == 2

    updated = customer_service.update_customer(other.id, {"email": "pedro@example.com"})
    assert updated.email == "pedro@example.com"

    with pytest.raises(ConstraintError):
        customer_service.create_customer({"name": "Clone", "cpf": "123.456.789-00"})
    with pytest.raises(ValidationError):
        customer_service.create_customer({"phone": "1190000000"})
    with pytest.raises(NotFoundError):
        customer_service.get_customer(9999)
