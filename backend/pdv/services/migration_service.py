# Overview: Service-layer operations for the legacy data import; copies an exported local store into the database.

"""
Legacy Store Import

The previous version of the application kept everything in a local
embedded store. Its export is a JSON object with one array per collection,
camelCase fields, decimal currency amounts and Portuguese enum values.

Import rules:
- Collections are copied in dependency order (IMPORT_ORDER); each one
  commits on its own.
- Every copied row records (entity_type, legacy_id) -> new_id in
  LegacyIdMapping. Dependent collections rewrite their foreign keys through
  it, and a rerun skips rows that already have a mapping.
- Amounts are converted to integer cents (half-up).
- Creditor balances are normalized: remaining = total - paid and
  "overdue" is not stored.
- Collections with no counterpart here (credit sales, expenses) are
  reported as skipped.
- A failing collection is rolled back and reported, and the run stops:
  later collections depend on its mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import PdvError, ValidationError
from ..models import (
    CarneInstallment,
    Creditor,
    Customer,
    Exchange,
    LegacyIdMapping,
    Product,
    Return,
    ReturnLine,
    Sale,
    SaleItem,
    StockMovement,
    User,
)
from ..models.credit import CREDITOR_STATUS_PAID, CREDITOR_STATUS_PENDING
from ..models.inventory import STOCK_IN, STOCK_OUT
from ..models.returns import CONDITION_DAMAGED, CONDITION_NEW, RETURN_STATUS_PENDING, RETURN_TYPE_RETURN
from ..permissions import ROLE_ADMIN, ROLE_SELLER, ROLE_STOCK_CLERK, ROLE_TRAINEE
from ..validation import coerce_datetime
from pdv.time_utils import utcnow
from .auth_service import hash_password

STATUS_MIGRATED = "success"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "error"
STATUS_NOT_RUN = "pending"

# (export key, handler name); order matters
IMPORT_ORDER = (
    ("users", "_import_users"),
    ("customers", "_import_customers"),
    ("products", "_import_products"),
    ("sales", "_import_sales"),
    ("creditors", "_import_creditors"),
    ("carneInstallments", "_import_installments"),
    ("creditSales", None),
    ("stockMovements", "_import_stock_movements"),
    ("expenses", None),
    ("returns", "_import_returns"),
    ("exchanges", "_import_exchanges"),
)

LEGACY_ROLES = {
    "admin": ROLE_ADMIN,
    "vendedor": ROLE_SELLER,
    "estagiario": ROLE_TRAINEE,
    "estoquista": ROLE_STOCK_CLERK,
}
LEGACY_PAYMENT_METHODS = {
    "dinheiro": "cash",
    "cartao": "card",
    "pix": "pix",
    "crediario": "credit",
}
LEGACY_MOVEMENT_TYPES = {"entrada": STOCK_IN, "saida": STOCK_OUT}
LEGACY_CONDITIONS = {"novo": "new", "usado": "used", "danificado": "damaged"}
LEGACY_RETURN_TYPES = {"devolucao": "return", "troca": "exchange"}
LEGACY_RETURN_STATUSES = {"pendente": "pending", "processada": "processed", "cancelada": "cancelled"}


@dataclass
class CollectionResult:
    name: str
    status: str = STATUS_NOT_RUN
    migrated: int = 0
    skipped: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class MigrationReport:
    collections: list[CollectionResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.status in (STATUS_MIGRATED, STATUS_SKIPPED) for c in self.collections)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "collections": [c.to_dict() for c in self.collections],
            "warnings": self.warnings,
        }


# =============================================================================
# CONVERSION HELPERS
# =============================================================================

def to_cents(value) -> int:
    """Decimal currency amount -> integer cents, half-up. None -> 0."""
    if value is None or value == "":
        return 0
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _map_enum(table: dict, value, field_name: str) -> str:
    if value in table.values():
        return value
    if value not in table:
        raise ValidationError(f"Unknown legacy {field_name}: {value!r}")
    return table[value]


def _date(value, field_name: str):
    if value in (None, ""):
        return None
    return coerce_datetime(value, field_name)


class _Importer:
    """One import run: holds the export, the report and mapping lookups."""

    def __init__(self, export: dict, fallback_user_id: int, report: MigrationReport):
        self.export = export
        self.fallback_user_id = fallback_user_id
        self.report = report

    # ---- mapping table -----------------------------------------------------

    def existing(self, entity_type: str, legacy_id) -> int | None:
        if legacy_id is None:
            return None
        row = db.session.query(LegacyIdMapping).filter_by(
            entity_type=entity_type, legacy_id=str(legacy_id)
        ).first()
        return row.new_id if row else None

    def require(self, entity_type: str, legacy_id, context: str) -> int:
        new_id = self.existing(entity_type, legacy_id)
        if new_id is None:
            raise ValidationError(
                f"{context}: no migrated {entity_type} for legacy id {legacy_id!r}",
                details={"entity_type": entity_type, "legacy_id": legacy_id},
            )
        return new_id

    def optional(self, entity_type: str, legacy_id, context: str) -> int | None:
        if legacy_id in (None, ""):
            return None
        new_id = self.existing(entity_type, legacy_id)
        if new_id is None:
            self.report.warnings.append(
                f"{context}: legacy {entity_type} {legacy_id!r} not found, link dropped"
            )
        return new_id

    def remember(self, entity_type: str, legacy_id, obj) -> None:
        db.session.flush()
        if legacy_id is None:
            return
        db.session.add(LegacyIdMapping(entity_type=entity_type, legacy_id=str(legacy_id), new_id=obj.id))

    def rows(self, key: str, result: CollectionResult, entity_type: str):
        """Yield legacy rows not yet mapped; counts the rest as skipped."""
        for row in self.export.get(key) or []:
            if not isinstance(row, dict):
                raise ValidationError(f"{key} rows must be objects")
            if self.existing(entity_type, row.get("id")) is not None:
                result.skipped += 1
                continue
            yield row
            result.migrated += 1

    # ---- collections -------------------------------------------------------

    def _import_users(self, result: CollectionResult) -> None:
        for row in self.rows("users", result, "user"):
            username = str(row.get("username") or "").strip()
            if not username:
                raise ValidationError("users: username is required")
            user = db.session.query(User).filter_by(username=username).first()
            if user is None:
                user = User(
                    username=username,
                    # Legacy passwords predate the strength rules
                    password_hash=hash_password(str(row.get("password") or ""), validate=False),
                    role=_map_enum(LEGACY_ROLES, row.get("role", "vendedor"), "role"),
                    is_active=True,
                    created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
                )
                db.session.add(user)
            else:
                self.report.warnings.append(f"users: {username!r} already exists, reusing it")
            self.remember("user", row.get("id"), user)

    def _import_customers(self, result: CollectionResult) -> None:
        for row in self.rows("customers", result, "customer"):
            customer = Customer(
                name=str(row.get("name") or "").strip() or "Sem nome",
                phone=row.get("phone") or None,
                email=row.get("email") or None,
                cpf=row.get("cpf") or None,
                address=row.get("address") or None,
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
            )
            db.session.add(customer)
            self.remember("customer", row.get("id"), customer)

    def _import_products(self, result: CollectionResult) -> None:
        for row in self.rows("products", result, "product"):
            product = Product(
                name=str(row.get("name") or "").strip(),
                description=row.get("description") or None,
                category=row.get("category") or "Geral",
                price_cents=to_cents(row.get("price")),
                stock=int(row.get("stock") or 0),
                min_stock=int(row.get("minStock") or 0),
                barcode=row.get("barcode") or None,
                supplier=row.get("supplier") or None,
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
            )
            db.session.add(product)
            self.remember("product", row.get("id"), product)

    def _import_sales(self, result: CollectionResult) -> None:
        for row in self.rows("sales", result, "sale"):
            context = f"sales[{row.get('id')}]"
            merged: dict[tuple[int, int], SaleItem] = {}
            for raw in row.get("items") or []:
                product_id = self.require("product", raw.get("productId"), context)
                quantity = int(raw.get("quantity") or 0)
                unit_price = to_cents(raw.get("price"))
                # Lines merge only when product and price agree, so every item
                # keeps line_total_cents == quantity * unit_price_cents.
                item = merged.get((product_id, unit_price))
                if item is None:
                    if any(key[0] == product_id for key in merged):
                        self.report.warnings.append(
                            f"{context}: product {raw.get('productName')!r} listed at different prices, "
                            "kept as separate items"
                        )
                    merged[(product_id, unit_price)] = SaleItem(
                        product_id=product_id,
                        product_name=raw.get("productName") or "",
                        quantity=quantity,
                        unit_price_cents=unit_price,
                        line_total_cents=quantity * unit_price,
                    )
                else:
                    item.quantity += quantity
                    item.line_total_cents = item.quantity * unit_price

            subtotal = sum(item.line_total_cents for item in merged.values())
            discount = to_cents(row.get("discount"))
            total = subtotal - discount
            legacy_total = to_cents(row.get("total"))
            if legacy_total != total:
                self.report.warnings.append(
                    f"{context}: stored total {legacy_total} cents differs from lines minus discount ({total})"
                )

            installments = row.get("installments")
            sale = Sale(
                payment_method=_map_enum(LEGACY_PAYMENT_METHODS, row.get("paymentMethod"), "payment method"),
                subtotal_cents=subtotal,
                discount_cents=discount,
                total_cents=total,
                customer_id=self.optional("customer", row.get("customerId"), context),
                installments=int(installments) if installments else None,
                installment_value_cents=to_cents(row.get("installmentValue")) if installments else None,
                user_id=self.existing("user", row.get("userId")) or self.fallback_user_id,
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
                items=list(merged.values()),
            )
            db.session.add(sale)
            self.remember("sale", row.get("id"), sale)

    def _import_creditors(self, result: CollectionResult) -> None:
        for row in self.rows("creditors", result, "creditor"):
            context = f"creditors[{row.get('id')}]"
            total = to_cents(row.get("totalDebt"))
            paid = min(to_cents(row.get("paidAmount")), total)
            if to_cents(row.get("remainingAmount")) != total - paid:
                self.report.warnings.append(f"{context}: remaining amount recomputed as total minus paid")
            creditor = Creditor(
                customer_id=self.require("customer", row.get("customerId"), context),
                customer_name=row.get("customerName") or "",
                total_debt_cents=total,
                paid_amount_cents=paid,
                remaining_amount_cents=total - paid,
                due_date=_date(row.get("dueDate"), "dueDate") or utcnow(),
                description=row.get("description") or "",
                status=CREDITOR_STATUS_PAID if total == paid else CREDITOR_STATUS_PENDING,
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
            )
            db.session.add(creditor)
            self.remember("creditor", row.get("id"), creditor)

    def _import_installments(self, result: CollectionResult) -> None:
        for row in self.rows("carneInstallments", result, "installment"):
            context = f"carneInstallments[{row.get('id')}]"
            installment = CarneInstallment(
                creditor_id=self.require("creditor", row.get("creditorId"), context),
                installment_number=int(row.get("installmentNumber") or 0),
                due_date=_date(row.get("dueDate"), "dueDate"),
                amount_cents=to_cents(row.get("amount")),
                paid=bool(row.get("paid")),
                paid_at=_date(row.get("paidAt"), "paidAt"),
            )
            db.session.add(installment)
            self.remember("installment", row.get("id"), installment)

    def _import_stock_movements(self, result: CollectionResult) -> None:
        for row in self.rows("stockMovements", result, "stock_movement"):
            context = f"stockMovements[{row.get('id')}]"
            movement = StockMovement(
                product_id=self.require("product", row.get("productId"), context),
                product_name=row.get("productName") or "",
                type=_map_enum(LEGACY_MOVEMENT_TYPES, row.get("type"), "movement type"),
                quantity=abs(int(row.get("quantity") or 0)),
                reason=row.get("reason") or "Legacy import",
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
            )
            db.session.add(movement)
            self.remember("stock_movement", row.get("id"), movement)

    def _import_returns(self, result: CollectionResult) -> None:
        for row in self.rows("returns", result, "return"):
            context = f"returns[{row.get('id')}]"
            sale = db.session.get(Sale, self.require("sale", row.get("saleId"), context))
            lines = []
            for raw in row.get("items") or []:
                product_id = self.existing("product", raw.get("productId"))
                item = sale.item_for_product(product_id) if product_id else None
                if item is None:
                    self.report.warnings.append(
                        f"{context}: item {raw.get('productName')!r} is not on the sale, line dropped"
                    )
                    continue
                quantity = int(raw.get("quantity") or 0)
                lines.append(ReturnLine(
                    sale_item_id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=quantity,
                    unit_price_cents=item.unit_price_cents,
                    line_refund_cents=quantity * item.unit_price_cents,
                    condition=_map_enum(LEGACY_CONDITIONS, raw.get("condition") or CONDITION_NEW, "condition"),
                ))
            return_doc = Return(
                sale_id=sale.id,
                type=_map_enum(LEGACY_RETURN_TYPES, row.get("type") or RETURN_TYPE_RETURN, "return type"),
                reason=row.get("reason") or "Legacy import",
                total_refund_cents=to_cents(row.get("totalRefund")),
                status=_map_enum(LEGACY_RETURN_STATUSES, row.get("status") or RETURN_STATUS_PENDING, "status"),
                user_id=self.existing("user", row.get("userId")) or self.fallback_user_id,
                customer_id=self.optional("customer", row.get("customerId"), context),
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
                processed_at=_date(row.get("processedAt"), "processedAt"),
                lines=lines,
            )
            if return_doc.type == RETURN_TYPE_RETURN:
                # The imported stock snapshot already includes these units.
                for line in lines:
                    line.restocked_quantity = 0 if line.condition == CONDITION_DAMAGED else line.quantity
            db.session.add(return_doc)
            self.remember("return", row.get("id"), return_doc)

    def _import_exchanges(self, result: CollectionResult) -> None:
        for row in self.rows("exchanges", result, "exchange"):
            context = f"exchanges[{row.get('id')}]"
            exchange = Exchange(
                original_sale_id=self.require("sale", row.get("originalSaleId"), context),
                new_sale_id=self.optional("sale", row.get("newSaleId"), context),
                reason=row.get("reason") or "Legacy import",
                returned_items=row.get("returnedItems") or [],
                new_items=row.get("newItems") or [],
                status=_map_enum(LEGACY_RETURN_STATUSES, row.get("status") or RETURN_STATUS_PENDING, "status"),
                user_id=self.existing("user", row.get("userId")) or self.fallback_user_id,
                customer_id=self.optional("customer", row.get("customerId"), context),
                created_at=_date(row.get("createdAt"), "createdAt") or utcnow(),
                processed_at=_date(row.get("processedAt"), "processedAt"),
            )
            db.session.add(exchange)
            self.remember("exchange", row.get("id"), exchange)


def migrate_legacy_export(export: dict, *, fallback_user_id: int) -> MigrationReport:
    """
    Copy a legacy export into the database.

    Args:
        export: Parsed JSON export (collection name -> list of rows)
        fallback_user_id: Operator stamped on sales/returns whose legacy
            user cannot be resolved

    Returns:
        MigrationReport; `ok` is False when a collection failed.
    """
    if not isinstance(export, dict):
        raise ValidationError("Export must be a JSON object of collections")
    if db.session.get(User, fallback_user_id) is None:
        raise ValidationError(f"Fallback user #{fallback_user_id} not found")

    report = MigrationReport(collections=[CollectionResult(name=key) for key, _ in IMPORT_ORDER])
    importer = _Importer(export, fallback_user_id, report)

    for result, (key, handler_name) in zip(report.collections, IMPORT_ORDER):
        if handler_name is None:
            result.status = STATUS_SKIPPED
            result.skipped = len(export.get(key) or [])
            continue
        try:
            getattr(importer, handler_name)(result)
            db.session.commit()
        except (PdvError, SQLAlchemyError, TypeError, ValueError) as exc:
            db.session.rollback()
            result.status = STATUS_FAILED
            result.error = str(exc)
            result.migrated = 0
            current_app.logger.warning("Legacy import of %s failed: %s", key, exc)
            break
        result.status = STATUS_MIGRATED
        current_app.logger.info(
            "Legacy import of %s: %s migrated, %s skipped", key, result.migrated, result.skipped,
        )

    return report
