from .auth import User, SessionToken
from .customers import Customer
from .inventory import Product, StockMovement
from .sales import Sale, SaleItem
from .credit import Creditor, CarneInstallment, CreditorPayment
from .returns import Return, ReturnLine, Exchange
from .imports import LegacyIdMapping

__all__ = [
    'User', 'SessionToken',
    'Customer',
    'Product', 'StockMovement',
    'Sale', 'SaleItem',
    'Creditor', 'CarneInstallment', 'CreditorPayment',
    'Return', 'ReturnLine', 'Exchange',
    'LegacyIdMapping',
]
