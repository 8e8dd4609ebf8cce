from .customers import Customer
from .inventory import Product, StockMovement
from .orders import Order, OrderItem
from .credit import CreditAccount, CreditPayment
from .finance import FinancialTransaction
from .events import ReconciliationEvent
from .documents import DocumentSequence

__all__ = [
    'Customer',
    'Product', 'StockMovement',
    'Order', 'OrderItem',
    'CreditAccount', 'CreditPayment',
    'FinancialTransaction',
    'ReconciliationEvent',
    'DocumentSequence',
]
