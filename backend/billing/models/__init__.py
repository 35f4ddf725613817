from .inventory import Product, StockMovement
from .customers import Customer, BalanceEntry
from .invoices import Invoice, InvoiceLine, Payment
from .documents import ManualEntry, ActivityEvent, DocumentSequence

__all__ = [
    'Product', 'StockMovement',
    'Customer', 'BalanceEntry',
    'Invoice', 'InvoiceLine', 'Payment',
    'ManualEntry', 'ActivityEvent', 'DocumentSequence',
]
